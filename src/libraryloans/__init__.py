"""Lending engine for a shared physical book inventory."""

__version__ = "0.1.0"
