"""
ledger_service - Assignment ledger for NextUp

Stores which match is on which arena, one row per (tournament, match).
The ledger never reads the bracket; it just records what operators decide.
"""

from .server import app
from .db import LedgerDB

__all__ = ["app", "LedgerDB"]
