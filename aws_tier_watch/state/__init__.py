"""Local persistence for usage tracking."""

from .ledger import LedgerEntry, OpenStint, UsageLedger

__all__ = ['LedgerEntry', 'OpenStint', 'UsageLedger']
