"""HTTP API for the headshot generation orchestrator."""

__version__ = "0.3.0"
