"""
Unit tests for the load generator.

No sockets are opened here; targets are in-memory fakes.
"""
