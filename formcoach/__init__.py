"""Squat form coaching backend."""

__version__ = "0.1.0"
