"""Materialize validated splits as child transactions, and undo them.

Both operations run inside a single ``store.atomic()`` batch: either every
child exists and the parent is flagged, or nothing changed.
"""

from __future__ import annotations

from .logging_setup import get_logger
from .models import (
    NewTransaction,
    ResolvedSplit,
    SplitOutcome,
    TransactionView,
    UndoOutcome,
    ValidatedSplit,
)
from .outcome import Err, ErrorKind, Ok
from .store import StoreError, TransactionStore

_logger = get_logger("receipt_splits.splitting")


def child_external_id(parent_external_id: str, index: int) -> str:
    """External id of the ``index``-th (1-based) child of a split."""

    return f"{parent_external_id}_split_{index}"


def check_splittable(
    parent: TransactionView | None, transaction_id: str
) -> TransactionView | Err:
    """Return ``parent`` when it may be split, else the precondition failure."""

    if parent is None:
        return Err(
            ErrorKind.NOT_FOUND,
            f"Transaction not found: {transaction_id}",
            {"transaction_id": transaction_id},
        )
    if parent.is_split:
        return Err(
            ErrorKind.ALREADY_SPLIT,
            "Transaction is already split",
            {"transaction_id": parent.id},
        )
    if parent.is_split_child:
        return Err(
            ErrorKind.CHILD_TRANSACTION,
            "Cannot split a transaction that is itself a split",
            {"transaction_id": parent.id, "parent_id": parent.parent_transaction_id},
        )
    return parent


def build_child(
    parent: TransactionView, split: ResolvedSplit, index: int, count: int
) -> NewTransaction:
    # Children keep the parent's sign: an expense splits into expenses.
    amount = -split.amount if parent.amount < 0 else split.amount
    return NewTransaction(
        external_id=child_external_id(parent.external_id, index),
        account_id=parent.account_id,
        amount=amount,
        date=parent.date,
        datetime=parent.datetime,
        currency_code=parent.currency_code,
        pending=parent.pending,
        merchant_name=parent.merchant_name,
        name=f"{parent.name} - {split.summary}",
        notes=f"[split {index}/{count}] {split.summary}",
        category=split.category,
        subcategory=split.subcategory,
        parent_transaction_id=parent.id,
        original_transaction_id=parent.external_id,
        is_split=False,
        is_manual=True,
    )


def apply_split(
    store: TransactionStore, transaction_id: str, validated: ValidatedSplit
) -> Ok[SplitOutcome] | Err:
    """Create one child per validated split and flag the parent.

    Preconditions are re-checked inside the batch so that two concurrent
    requests cannot both split the same parent through this path.
    """

    count = len(validated.splits)
    try:
        with store.atomic():
            parent = check_splittable(store.get_transaction(transaction_id), transaction_id)
            if isinstance(parent, Err):
                return parent
            child_ids: list[str] = []
            for index, split in enumerate(validated.splits, start=1):
                child_ids.append(store.create_transaction(build_child(parent, split, index, count)))
            store.mark_split(parent.id, True)
    except StoreError as e:
        _logger.error(
            "split_apply:failed transaction_id=%s error=%s", transaction_id, e.__class__.__name__
        )
        return Err(
            ErrorKind.STORE_FAILURE,
            "Failed to split transaction",
            {"transaction_id": transaction_id, "reason": str(e)},
        )

    _logger.info(
        "split_apply:done parent_id=%s children=%d total=%s",
        transaction_id,
        len(child_ids),
        validated.total,
    )
    return Ok(
        SplitOutcome(
            parent_id=transaction_id,
            child_ids=tuple(child_ids),
            message=f"Transaction split into {len(child_ids)} parts",
        )
    )


def undo_split(store: TransactionStore, transaction_id: str) -> Ok[UndoOutcome] | Err:
    """Delete every child of ``transaction_id`` and clear its split flag."""

    try:
        with store.atomic():
            parent = store.get_transaction(transaction_id)
            if parent is None:
                return Err(
                    ErrorKind.NOT_FOUND,
                    f"Transaction not found: {transaction_id}",
                    {"transaction_id": transaction_id},
                )
            if not parent.is_split:
                return Err(
                    ErrorKind.NOT_SPLIT,
                    "Transaction is not split",
                    {"transaction_id": transaction_id},
                )
            removed = tuple(c.id for c in store.list_children(parent.id))
            store.delete_transactions(removed)
            store.mark_split(parent.id, False)
    except StoreError as e:
        _logger.error(
            "split_undo:failed transaction_id=%s error=%s", transaction_id, e.__class__.__name__
        )
        return Err(
            ErrorKind.STORE_FAILURE,
            "Failed to undo split",
            {"transaction_id": transaction_id, "reason": str(e)},
        )

    _logger.info("split_undo:done parent_id=%s removed=%d", transaction_id, len(removed))
    return Ok(UndoOutcome(parent_id=transaction_id, removed_ids=removed))


__all__ = [
    "apply_split",
    "undo_split",
    "build_child",
    "check_splittable",
    "child_external_id",
]
