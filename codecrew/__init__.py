"""Multi-agent code generation orchestrator."""

__version__ = "0.1.0"
