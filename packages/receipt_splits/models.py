"""Data models for ``receipt_splits``.

Two families live here:

- Frozen dataclasses describing ledger rows and workflow results
  (:class:`TransactionView`, :class:`MatchCandidate`, :class:`ValidatedSplit`,
  ...). These are produced by trusted code and never validated again.
- Pydantic models for untrusted input crossing a boundary: HTTP request
  bodies (:class:`SplitRequest`, :class:`AiSplitRequest`) and vision-model
  output (:class:`ReceiptAnalysis`, :class:`SmartAnalysis`). Request models
  accept the camelCase field names used on the wire as well as snake_case.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

CENT = Decimal("0.01")


def to_cents(value: Decimal) -> Decimal:
    """Quantize ``value`` to two decimal places (half-up)."""

    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _positive_cents(value: Decimal) -> Decimal:
    # Runs after ``gt=0``: a sub-cent amount passes that check but rounds to zero.
    cents = to_cents(value)
    if cents <= 0:
        raise ValueError("amount must be at least 0.01")
    return cents


# ---------------------------------------------------------------------------
# Ledger rows
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TransactionView:
    """Read-only snapshot of a stored transaction.

    ``amount`` is signed: negative for expenses, positive for income.
    ``files`` holds attached receipt references (URLs).
    """

    id: str
    external_id: str
    account_id: str
    amount: Decimal
    date: dt.date
    name: str
    currency_code: str = "USD"
    datetime: dt.datetime | None = None
    pending: bool = False
    merchant_name: str | None = None
    category: str | None = None
    subcategory: str | None = None
    notes: str | None = None
    files: tuple[str, ...] = ()
    is_split: bool = False
    is_manual: bool = False
    parent_transaction_id: str | None = None
    original_transaction_id: str | None = None

    @property
    def is_split_child(self) -> bool:
        return self.parent_transaction_id is not None


@dataclass(frozen=True, slots=True)
class NewTransaction:
    """Values for a transaction about to be inserted (no id yet)."""

    external_id: str
    account_id: str
    amount: Decimal
    date: dt.date
    name: str
    currency_code: str
    datetime: dt.datetime | None
    pending: bool
    merchant_name: str | None
    category: str | None
    subcategory: str | None
    notes: str | None
    parent_transaction_id: str | None
    original_transaction_id: str | None
    is_split: bool = False
    is_manual: bool = True


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MatchCandidate:
    transaction: TransactionView
    score: int
    match_reasons: tuple[str, ...]
    # ``None`` when the receipt carried no date.
    day_distance: int | None
    amount_difference: Decimal


# ---------------------------------------------------------------------------
# Split proposals and results
# ---------------------------------------------------------------------------


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class SplitGroup(_WireModel):
    """One proposed category group (name-based), as produced by analysis."""

    category_name: str = Field(min_length=1)
    subcategory_name: str | None = None
    amount: Decimal = Field(gt=0)
    items_summary: str = Field(min_length=1)

    @field_validator("subcategory_name")
    @classmethod
    def _blank_subcategory_is_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v or None

    @field_validator("amount")
    @classmethod
    def _amount_to_cents(cls, v: Decimal) -> Decimal:
        return _positive_cents(v)


class LineItem(_WireModel):
    """One user-edited line item (id-based) from the split endpoint."""

    description: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    category_id: str | None = None
    subcategory_id: str | None = None

    @field_validator("category_id", "subcategory_id")
    @classmethod
    def _blank_id_is_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v or None

    @field_validator("amount")
    @classmethod
    def _amount_to_cents(cls, v: Decimal) -> Decimal:
        return _positive_cents(v)


class SplitRequest(_WireModel):
    transaction_id: str = Field(min_length=1)
    line_items: list[LineItem]


class AiSplitRequest(_WireModel):
    splits: list[SplitGroup]


@dataclass(frozen=True, slots=True)
class ResolvedSplit:
    """A split group whose category names have been resolved to codes."""

    amount: Decimal
    summary: str
    category: str | None
    subcategory: str | None


@dataclass(frozen=True, slots=True)
class ValidatedSplit:
    splits: tuple[ResolvedSplit, ...]
    # Computed sum of ``splits`` amounts (never the caller-reported total).
    total: Decimal
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class SplitOutcome:
    parent_id: str
    child_ids: tuple[str, ...]
    message: str


@dataclass(frozen=True, slots=True)
class UndoOutcome:
    parent_id: str
    removed_ids: tuple[str, ...]


# ---------------------------------------------------------------------------
# Vision-model output
# ---------------------------------------------------------------------------


class ReceiptLineItem(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    description: str
    amount: Decimal
    suggested_category: str | None = None
    suggested_subcategory: str | None = None
    # Filled in after taxonomy resolution; ``None`` when the suggestion is unknown.
    category_id: str | None = None
    subcategory_id: str | None = None


class ReceiptAnalysis(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    merchant_name: str | None = None
    total_amount: Decimal | None = None
    receipt_date: dt.date | None = None
    line_items: list[ReceiptLineItem] = Field(default_factory=list)
    confidence: float = 0.0
    reasoning: str = ""

    @field_validator("merchant_name")
    @classmethod
    def _blank_merchant_is_none(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v or None

    @field_validator("receipt_date", mode="before")
    @classmethod
    def _lenient_date(cls, v: Any) -> Any:
        # Models occasionally return "" or a full timestamp for the date.
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return None
            return s[:10]
        return v

    @field_validator("confidence")
    @classmethod
    def _confidence_in_range(cls, v: float) -> float:
        if 0.0 <= v <= 1.0:
            return v
        raise ValueError("confidence must be in [0,1]")


class SmartAnalysis(BaseModel):
    """Raw decision returned by the smart-analysis prompt."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    type: Literal["split", "recategorize", "confirm"]
    reasoning: str = ""
    confidence: float = 0.0
    splits: list[SplitGroup] = Field(default_factory=list)
    category_name: str | None = None
    subcategory_name: str | None = None


@dataclass(frozen=True, slots=True)
class AnalyzedReceipt:
    analysis: ReceiptAnalysis
    matches: Sequence[MatchCandidate] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class SmartSuggestion:
    """Validated outcome of smart analysis for one transaction."""

    kind: Literal["split", "recategorize", "confirm"]
    confidence: float
    reasoning: str
    split: ValidatedSplit | None = None
    category: str | None = None
    subcategory: str | None = None
