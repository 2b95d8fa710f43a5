"""
Command-line tests: exit codes and printed reports.
"""

from __future__ import annotations

import pytest
import yaml

from paystress.cli import EXIT_PASS, EXIT_SCRIPT_ERROR, EXIT_THRESHOLD_BREACH, main

pytestmark = pytest.mark.integration


def _profile(tmp_path, **data) -> str:
    profile = {
        "stages": [{"duration": "300ms", "target": 2}, {"duration": "200ms", "target": 2}],
        "thresholds": {"http_req_duration": ["p(95)<500"], "errors": ["rate<0.1"]},
        "request_timeout": "2s",
        "pacing": {"min": 0, "max": "10ms"},
        "tick_interval": "50ms",
    }
    profile.update(data)
    path = tmp_path / "profile.yml"
    path.write_text(yaml.safe_dump(profile), encoding="utf-8")
    return str(path)


def test_check_prints_bundled_schedule(capsys):
    assert main(["check"]) == EXIT_PASS

    out = capsys.readouterr().out
    assert "Total duration: 300s, peak users: 200" in out
    assert "http_req_duration: p(95)<500" in out
    assert "errors: rate<0.1" in out


def test_check_rejects_empty_stage_list(tmp_path, capsys):
    path = _profile(tmp_path, stages=[])

    assert main(["check", "--profile", path]) == EXIT_SCRIPT_ERROR
    assert "Configuration error" in capsys.readouterr().err


def test_missing_profile_is_a_script_error(tmp_path):
    assert main(["run", "--profile", str(tmp_path / "missing.yml")]) == EXIT_SCRIPT_ERROR


def test_bad_threshold_expression_is_a_script_error(tmp_path):
    path = _profile(tmp_path, thresholds={"errors": ["rate lots"]})

    assert main(["check", "--profile", path]) == EXIT_SCRIPT_ERROR


def test_run_against_healthy_gateway_passes(live_gateway, tmp_path, capsys):
    base_url, _ = live_gateway()
    path = _profile(tmp_path)

    code = main(["run", "--profile", path, "--base-url", base_url, "--seed", "1"])

    out = capsys.readouterr().out
    assert code == EXIT_PASS
    assert "Stress Test Results" in out
    assert "Overall: PASS" in out
    assert "Failed Iterations: 0" in out


def test_run_with_breached_threshold_exits_one(live_gateway, tmp_path, capsys):
    base_url, _ = live_gateway(failures={"health": 503, "channels": 503})
    path = _profile(tmp_path)

    code = main(["run", "--profile", path, "--base-url", base_url])

    out = capsys.readouterr().out
    assert code == EXIT_THRESHOLD_BREACH
    assert "FAIL" in out
    assert "Overall: FAIL" in out


@pytest.mark.parametrize("command", ["check", "run"])
def test_unknown_log_level_is_a_script_error(tmp_path, capsys, command):
    path = _profile(tmp_path)

    code = main([command, "--profile", path, "--log-level", "verbose"])

    assert code == EXIT_SCRIPT_ERROR
    assert "Unknown log level" in capsys.readouterr().err


def test_nan_stage_duration_is_a_script_error(tmp_path):
    path = tmp_path / "nan.yml"
    path.write_text("stages:\n  - {duration: .nan, target: 1}\n", encoding="utf-8")

    assert main(["check", "--profile", str(path)]) == EXIT_SCRIPT_ERROR
