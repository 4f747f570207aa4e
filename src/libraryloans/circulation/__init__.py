"""Circulation: inventory ledger, loan records and the lending engine."""

from .. import __version__

__all__ = ["__version__"]
