"""Headshot generation orchestration engine."""

__version__ = "0.3.0"
