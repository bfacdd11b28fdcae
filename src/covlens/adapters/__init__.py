"""Adapters for coverage report formats and test-runner configuration."""
