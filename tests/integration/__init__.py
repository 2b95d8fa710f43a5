"""
Integration tests for the load generator.

These tests run real virtual users against the Flask stub gateway on
an ephemeral local port and demonstrate:
- End-to-end runs through the runner and the CLI
- Threshold breaches driven by injected gateway failures
- Configuration errors rejected before any traffic is sent
"""
