"""Strangler Fig gateway and event pipeline."""

__version__ = "0.1.0"
