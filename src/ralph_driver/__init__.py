"""Orchestration core for the Ralph autonomous coding-agent driver."""

__version__ = "0.1.0"
