"""Receipt-to-transaction reconciliation and category splits.

Public entry points live in :mod:`receipt_splits.api`; the HTTP surface in
:mod:`receipt_splits.web` and the console interface in
:mod:`receipt_splits.cli` are thin adapters over it.
"""

from .api import (
    analyze_receipt,
    apply_split_groups,
    match_receipt,
    smart_analysis,
    split_transaction,
    undo_split,
)
from .config import SplitSettings
from .outcome import Err, ErrorKind, Ok
from .store import SqlTransactionStore, StoreError, TransactionStore

__all__ = [
    "analyze_receipt",
    "apply_split_groups",
    "match_receipt",
    "smart_analysis",
    "split_transaction",
    "undo_split",
    "SplitSettings",
    "Err",
    "ErrorKind",
    "Ok",
    "SqlTransactionStore",
    "StoreError",
    "TransactionStore",
]
