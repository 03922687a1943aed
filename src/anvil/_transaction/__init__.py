"""Transactions: staged batches of changes with preview and atomic commit.

This module contains:
- TransactionEngine: The craft / temper / inspect / anneal / quench / forge / smelt verbs
- Transaction: A staged batch and its snapshot
- Result types returned by the verbs
"""

from ._engine import DEFAULT_HISTORY_LIMIT, TransactionEngine
from ._types import (
    AnnealResult,
    ChangeKind,
    ChangeSummary,
    ForgeResult,
    PendingChange,
    TemperEntry,
    Transaction,
    TransactionState,
    TransactionSummary,
)

__all__ = [
    "DEFAULT_HISTORY_LIMIT",
    "AnnealResult",
    "ChangeKind",
    "ChangeSummary",
    "ForgeResult",
    "PendingChange",
    "TemperEntry",
    "Transaction",
    "TransactionEngine",
    "TransactionState",
    "TransactionSummary",
]
