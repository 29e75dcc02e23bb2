"""Durable alert-remediation orchestrator."""

__version__ = "0.4.0"
