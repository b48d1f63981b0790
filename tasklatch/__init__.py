"""Flat-file task tracking with multi-agent claims and a shared advisory lock."""

__version__ = "0.1.0"
