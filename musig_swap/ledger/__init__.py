"""Ledger clients."""

from .base import LedgerClient
from .http import HttpLedgerClient
from .memory import InMemoryLedger

__all__ = ["LedgerClient", "HttpLedgerClient", "InMemoryLedger"]
