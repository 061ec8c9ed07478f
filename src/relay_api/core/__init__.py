"""
Core Infrastructure for relay-api.

This package provides foundational components:
    - config.py: Configuration loading and validation
    - errors.py: Error taxonomy and response envelopes
    - logging/: Structured logging with numeric levels
    - metrics.py: Prometheus metrics collection
"""
