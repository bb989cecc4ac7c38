"""Attendance streak and reward ledger service."""

__version__ = "1.0.0"
