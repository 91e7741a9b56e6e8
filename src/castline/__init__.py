"""Casting workflow state machine and archival consistency engine."""

__version__ = "0.1.0"
