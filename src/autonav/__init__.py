"""Harness/session layer and iteration loops for autonomous coding agents."""

__version__ = "0.1.0"
