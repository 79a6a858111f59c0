"""Ledger service package: cash accounts, macro entities and the transaction log."""

from .journal import TransactionLog
from .store import LedgerStore
from .uow import atomic
