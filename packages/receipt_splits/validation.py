"""Parsing and reconciliation of proposed splits.

Parsing turns untrusted payloads into typed models and reports shape errors
as ``INVALID_INPUT``. Validation then applies, in order:

1. fewer than two groups: ``NO_SPLIT_NEEDED`` (not a failure of the input,
   just nothing to do);
2. reconciliation: the absolute difference between the group sum and the
   parent total must not exceed the tolerance, otherwise
   ``AMOUNT_MISMATCH``. Amounts are never adjusted to make them fit;
3. category resolution against the taxonomy: an unknown category rejects
   the whole batch (``UNKNOWN_CATEGORY``); an unknown subcategory is dropped
   with a warning.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ValidationError

from .categories import Taxonomy
from .logging_setup import get_logger
from .models import (
    AiSplitRequest,
    LineItem,
    ResolvedSplit,
    SplitGroup,
    SplitRequest,
    ValidatedSplit,
)
from .outcome import Err, ErrorKind, Ok

_logger = get_logger("receipt_splits.validation")

_MIN_GROUPS = 2


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _validation_errors(e: ValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": [str(p) for p in err.get("loc", ())], "msg": str(err.get("msg", ""))}
        for err in e.errors(include_url=False)
    ]


def _parse[M: BaseModel](model: type[M], payload: Any, what: str) -> Ok[M] | Err:
    if not isinstance(payload, Mapping):
        return Err(ErrorKind.INVALID_INPUT, f"Invalid {what}: expected a JSON object")
    try:
        return Ok(model.model_validate(payload))
    except ValidationError as e:
        return Err(
            ErrorKind.INVALID_INPUT,
            f"Invalid {what}",
            {"errors": _validation_errors(e)},
        )


def parse_split_request(payload: Any) -> Ok[SplitRequest] | Err:
    """Parse ``{transactionId, lineItems: [...]}``."""

    return _parse(SplitRequest, payload, "split request")


def parse_ai_split_request(payload: Any) -> Ok[AiSplitRequest] | Err:
    """Parse ``{splits: [{categoryName, subcategoryName, amount, itemsSummary}]}``."""

    return _parse(AiSplitRequest, payload, "AI split request")


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


def _check_count(n: int) -> Err | None:
    if n < _MIN_GROUPS:
        return Err(
            ErrorKind.NO_SPLIT_NEEDED,
            f"A split needs at least {_MIN_GROUPS} groups; got {n}",
            {"groups": n},
        )
    return None


def check_reconciliation(
    original_amount: Decimal, amounts: Sequence[Decimal], *, tolerance: Decimal
) -> Ok[Decimal] | Err:
    """Return ``Ok(sum)`` when ``amounts`` reconcile with ``original_amount``."""

    if original_amount <= 0:
        return Err(
            ErrorKind.INVALID_INPUT,
            "Original amount must be positive",
            {"original_amount": str(original_amount)},
        )
    actual = sum(amounts, Decimal("0"))
    difference = abs(actual - original_amount)
    if difference > tolerance:
        return Err(
            ErrorKind.AMOUNT_MISMATCH,
            (
                f"Split amounts total ${actual:.2f} but the transaction total is "
                f"${original_amount:.2f} (difference ${difference:.2f})"
            ),
            {
                "expected": f"{original_amount:.2f}",
                "actual": f"{actual:.2f}",
                "difference": f"{difference:.2f}",
            },
        )
    return Ok(actual)


def _finish(
    resolved: list[ResolvedSplit], total: Decimal, warnings: list[str]
) -> Ok[ValidatedSplit]:
    for w in warnings:
        _logger.warning("split_validate:%s", w)
    _logger.info("split_validate:ok groups=%d total=%s", len(resolved), total)
    return Ok(ValidatedSplit(splits=tuple(resolved), total=total, warnings=tuple(warnings)))


def validate_split_groups(
    original_amount: Decimal,
    groups: Sequence[SplitGroup],
    taxonomy: Taxonomy,
    *,
    tolerance: Decimal,
) -> Ok[ValidatedSplit] | Err:
    """Validate name-based groups (as proposed by analysis)."""

    if (err := _check_count(len(groups))) is not None:
        return err
    rec = check_reconciliation(original_amount, [g.amount for g in groups], tolerance=tolerance)
    if isinstance(rec, Err):
        _logger.info("split_validate:mismatch %s", dict(rec.context))
        return rec

    resolved: list[ResolvedSplit] = []
    warnings: list[str] = []
    unknown: list[str] = []
    for g in groups:
        cat_code = taxonomy.category_code(g.category_name)
        if cat_code is None:
            unknown.append(g.category_name)
            continue
        sub_code = taxonomy.subcategory_code(cat_code, g.subcategory_name)
        if g.subcategory_name is not None and sub_code is None:
            warnings.append(
                f"unknown_subcategory category={g.category_name!r} "
                f"subcategory={g.subcategory_name!r}"
            )
        resolved.append(
            ResolvedSplit(
                amount=g.amount,
                summary=g.items_summary,
                category=cat_code,
                subcategory=sub_code,
            )
        )

    if unknown:
        return Err(
            ErrorKind.UNKNOWN_CATEGORY,
            f"Unknown category: {unknown[0]!r}",
            {"unknown": unknown},
        )
    return _finish(resolved, rec.value, warnings)


def validate_line_items(
    original_amount: Decimal,
    items: Sequence[LineItem],
    taxonomy: Taxonomy,
    *,
    tolerance: Decimal,
) -> Ok[ValidatedSplit] | Err:
    """Validate id-based line items (as edited by a user).

    A null ``category_id`` leaves that child uncategorized.
    """

    if (err := _check_count(len(items))) is not None:
        return err
    rec = check_reconciliation(original_amount, [i.amount for i in items], tolerance=tolerance)
    if isinstance(rec, Err):
        _logger.info("split_validate:mismatch %s", dict(rec.context))
        return rec

    resolved: list[ResolvedSplit] = []
    warnings: list[str] = []
    unknown: list[str] = []
    for item in items:
        cat = item.category_id
        sub = item.subcategory_id
        if cat is not None and not taxonomy.is_category(cat):
            unknown.append(cat)
            continue
        if sub is not None and (cat is None or not taxonomy.belongs_to(sub, cat)):
            warnings.append(f"unknown_subcategory category={cat!r} subcategory={sub!r}")
            sub = None
        resolved.append(
            ResolvedSplit(amount=item.amount, summary=item.description, category=cat, subcategory=sub)
        )

    if unknown:
        return Err(
            ErrorKind.UNKNOWN_CATEGORY,
            f"Unknown category id: {unknown[0]!r}",
            {"unknown": unknown},
        )
    return _finish(resolved, rec.value, warnings)


__all__ = [
    "parse_split_request",
    "parse_ai_split_request",
    "check_reconciliation",
    "validate_split_groups",
    "validate_line_items",
]
