"""Public API for ``receipt_splits``.

Every function takes the store (and settings) explicitly and returns an
``Ok | Err`` outcome. The HTTP layer and CLI are thin adapters over these.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

from . import analysis, matching, splitting, validation
from .config import SplitSettings
from .logging_setup import get_logger
from .models import (
    AnalyzedReceipt,
    LineItem,
    MatchCandidate,
    SmartSuggestion,
    SplitGroup,
    SplitOutcome,
    UndoOutcome,
)
from .outcome import Err, ErrorKind, Ok
from .store import StoreError, TransactionStore

_logger = get_logger("receipt_splits.api")


def _store_failure(op: str, e: StoreError) -> Err:
    _logger.error("%s:store_failed error=%s", op, e.__class__.__name__)
    return Err(ErrorKind.STORE_FAILURE, f"Store failure during {op}", {"reason": str(e)})


def match_receipt(
    store: TransactionStore,
    *,
    merchant_name: str,
    total_amount: Decimal,
    receipt_date: dt.date | None,
    settings: SplitSettings,
    account_id: str | None = None,
    today: dt.date | None = None,
) -> Ok[list[MatchCandidate]] | Err:
    """Rank stored transactions that may correspond to a receipt."""

    if total_amount <= 0:
        return Err(
            ErrorKind.INVALID_INPUT,
            "Receipt total must be positive",
            {"total_amount": str(total_amount)},
        )
    try:
        return Ok(
            matching.find_matches(
                store,
                merchant_name=merchant_name,
                total_amount=total_amount,
                receipt_date=receipt_date,
                settings=settings,
                account_id=account_id,
                today=today,
            )
        )
    except StoreError as e:
        return _store_failure("match_receipt", e)


def analyze_receipt(
    store: TransactionStore,
    data: bytes,
    content_type: str,
    *,
    settings: SplitSettings,
    client: Any | None = None,
    today: dt.date | None = None,
) -> Ok[AnalyzedReceipt] | Err:
    """Extract a receipt, resolve its categories and rank matching transactions."""

    if (err := analysis.check_receipt_upload(data, content_type)) is not None:
        return err
    try:
        taxonomy = store.load_taxonomy()
    except StoreError as e:
        return _store_failure("analyze_receipt", e)

    extracted = analysis.analyze_receipt_image(
        data, content_type, taxonomy=taxonomy, settings=settings, client=client
    )
    if isinstance(extracted, Err):
        return extracted
    resolved = analysis.resolve_line_items(extracted.value, taxonomy)

    matches: list[MatchCandidate] = []
    if resolved.merchant_name and resolved.total_amount is not None and resolved.total_amount > 0:
        found = match_receipt(
            store,
            merchant_name=resolved.merchant_name,
            total_amount=abs(resolved.total_amount),
            receipt_date=resolved.receipt_date,
            settings=settings,
            today=today,
        )
        if isinstance(found, Err):
            return found
        matches = found.value
    return Ok(AnalyzedReceipt(analysis=resolved, matches=tuple(matches)))


def smart_analysis(
    store: TransactionStore,
    transaction_id: str,
    *,
    settings: SplitSettings,
    client: Any | None = None,
) -> Ok[SmartSuggestion] | Err:
    """Suggest split / recategorize / confirm for a stored transaction.

    The model also sees similar past transactions and recent categorization
    history from the store.

    Split suggestions are run through the same validator as user splits, so a
    suggestion that does not reconcile is reported instead of returned.
    """

    try:
        tx = splitting.check_splittable(store.get_transaction(transaction_id), transaction_id)
        if isinstance(tx, Err):
            return tx
        taxonomy = store.load_taxonomy()
        similar = store.similar_transactions(
            merchant_name=tx.merchant_name,
            name=tx.name,
            exclude_id=tx.id,
            limit=settings.similar_limit,
        )
        history = store.recent_categorized(limit=settings.history_limit, exclude_id=tx.id)
    except StoreError as e:
        return _store_failure("smart_analysis", e)

    raw = analysis.suggest_for_transaction(
        tx,
        taxonomy=taxonomy,
        settings=settings,
        client=client,
        similar=similar,
        history=history,
    )
    if isinstance(raw, Err):
        return raw
    s = raw.value

    if s.type == "split":
        checked = validation.validate_split_groups(
            abs(tx.amount), s.splits, taxonomy, tolerance=settings.tolerance
        )
        if isinstance(checked, Err):
            return checked
        return Ok(
            SmartSuggestion(
                kind="split", confidence=s.confidence, reasoning=s.reasoning, split=checked.value
            )
        )

    if s.type == "recategorize":
        cat = taxonomy.category_code(s.category_name)
        if cat is None:
            return Err(
                ErrorKind.UNKNOWN_CATEGORY,
                f"Unknown category: {s.category_name!r}",
                {"unknown": [s.category_name]},
            )
        sub = taxonomy.subcategory_code(cat, s.subcategory_name)
        if s.subcategory_name and sub is None:
            _logger.warning(
                "smart_analysis:unknown_subcategory category=%r subcategory=%r",
                s.category_name,
                s.subcategory_name,
            )
        return Ok(
            SmartSuggestion(
                kind="recategorize",
                confidence=s.confidence,
                reasoning=s.reasoning,
                category=cat,
                subcategory=sub,
            )
        )

    return Ok(
        SmartSuggestion(
            kind="confirm",
            confidence=s.confidence,
            reasoning=s.reasoning,
            category=tx.category,
            subcategory=tx.subcategory,
        )
    )


def apply_split_groups(
    store: TransactionStore,
    transaction_id: str,
    groups: Sequence[SplitGroup],
    *,
    settings: SplitSettings,
) -> Ok[SplitOutcome] | Err:
    """Validate name-based groups against the parent and apply them."""

    try:
        parent = splitting.check_splittable(store.get_transaction(transaction_id), transaction_id)
        if isinstance(parent, Err):
            return parent
        taxonomy = store.load_taxonomy()
    except StoreError as e:
        return _store_failure("apply_split_groups", e)

    checked = validation.validate_split_groups(
        abs(parent.amount), groups, taxonomy, tolerance=settings.tolerance
    )
    if isinstance(checked, Err):
        return checked
    return splitting.apply_split(store, transaction_id, checked.value)


def split_transaction(
    store: TransactionStore,
    transaction_id: str,
    line_items: Sequence[LineItem],
    *,
    settings: SplitSettings,
) -> Ok[SplitOutcome] | Err:
    """Validate id-based line items against the parent and apply them."""

    try:
        parent = splitting.check_splittable(store.get_transaction(transaction_id), transaction_id)
        if isinstance(parent, Err):
            return parent
        taxonomy = store.load_taxonomy()
    except StoreError as e:
        return _store_failure("split_transaction", e)

    checked = validation.validate_line_items(
        abs(parent.amount), line_items, taxonomy, tolerance=settings.tolerance
    )
    if isinstance(checked, Err):
        return checked
    return splitting.apply_split(store, transaction_id, checked.value)


def undo_split(store: TransactionStore, transaction_id: str) -> Ok[UndoOutcome] | Err:
    return splitting.undo_split(store, transaction_id)


__all__ = [
    "match_receipt",
    "analyze_receipt",
    "smart_analysis",
    "apply_split_groups",
    "split_transaction",
    "undo_split",
]
