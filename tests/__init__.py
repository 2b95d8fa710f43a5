"""
Test suite for the paystress load generator.

This package contains:
- unit/: schedule, metrics, scenarios, scheduler, thresholds and config
  tests against in-memory fakes
- integration/: full runs and CLI invocations against the stub gateway
- stub_gateway.py: Flask app standing in for the payment gateway
"""
