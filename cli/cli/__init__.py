"""Operator CLI for the headshot generation orchestrator."""
