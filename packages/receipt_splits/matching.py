"""Rank stored transactions against a receipt.

Scoring sums three independent signals:

========  =====================================================  ======
signal    rule                                                   points
========  =====================================================  ======
amount    ``| |tx.amount| - total |`` within one cent                50
          otherwise linear decay below a 5% difference           40..0
merchant  normalized names equal                                     30
          one name contains the other                                25
          a shared word longer than three characters                15
date      same day / 1 / 3 / 7 days apart                20/15/10/5
========  =====================================================  ======

The date signal is omitted entirely when the receipt has no date.
:func:`rank_candidates` is pure; :func:`find_matches` adds the store lookup.
"""

from __future__ import annotations

import datetime as dt
import re
import unicodedata
from collections.abc import Sequence
from decimal import Decimal

from .config import SplitSettings
from .logging_setup import get_logger
from .models import MatchCandidate, TransactionView
from .store import TransactionStore

_EXACT_AMOUNT_EPSILON = Decimal("0.01")
_AMOUNT_EXACT_POINTS = 50
_AMOUNT_NEAR_POINTS = 40
_AMOUNT_NEAR_PCT = Decimal("5")

_MERCHANT_EQUAL_POINTS = 30
_MERCHANT_CONTAINS_POINTS = 25
_MERCHANT_WORD_POINTS = 15
_MIN_SHARED_WORD_LEN = 4

# (max day distance, points, reason), checked in order.
_DATE_BANDS: tuple[tuple[int, int, str], ...] = (
    (0, 20, "Same day"),
    (1, 15, "Within 1 day"),
    (3, 10, "Within 3 days"),
    (7, 5, "Within 7 days"),
)

_WORD_RE = re.compile(r"\w+")

_logger = get_logger("receipt_splits.matching")


def normalize_merchant(raw: str | None) -> str:
    """NFKC-normalize, casefold and collapse whitespace; ``""`` for blanks."""

    if not raw:
        return ""
    s = unicodedata.normalize("NFKC", raw)
    return " ".join(s.split()).casefold()


def _amount_signal(tx_amount: Decimal, total: Decimal) -> tuple[int, str | None]:
    diff = abs(abs(tx_amount) - total)
    if diff <= _EXACT_AMOUNT_EPSILON:
        return _AMOUNT_EXACT_POINTS, "Exact amount match"
    pct = diff / total * 100
    if pct >= _AMOUNT_NEAR_PCT:
        return 0, None
    points = int(
        (_AMOUNT_NEAR_POINTS * (1 - pct / _AMOUNT_NEAR_PCT)).to_integral_value()
    )
    if points <= 0:
        return 0, None
    return points, f"Amount match ({pct:.1f}% diff)"


def _merchant_points(receipt: str, candidate: str) -> int:
    if not receipt or not candidate:
        return 0
    if receipt == candidate:
        return _MERCHANT_EQUAL_POINTS
    if receipt in candidate or candidate in receipt:
        return _MERCHANT_CONTAINS_POINTS
    receipt_words = {w for w in _WORD_RE.findall(receipt) if len(w) >= _MIN_SHARED_WORD_LEN}
    if receipt_words.intersection(_WORD_RE.findall(candidate)):
        return _MERCHANT_WORD_POINTS
    return 0


def _merchant_signal(receipt_norm: str, tx: TransactionView) -> tuple[int, str | None]:
    best = max(
        _merchant_points(receipt_norm, normalize_merchant(tx.merchant_name)),
        _merchant_points(receipt_norm, normalize_merchant(tx.name)),
    )
    if best >= _MERCHANT_CONTAINS_POINTS:
        return best, "Merchant name match"
    if best > 0:
        return best, "Partial merchant name match"
    return 0, None


def _date_signal(days: int) -> tuple[int, str | None]:
    for max_days, points, reason in _DATE_BANDS:
        if days <= max_days:
            return points, reason
    return 0, None


def is_eligible(tx: TransactionView) -> bool:
    """Split parents, split children and receipt-linked rows never match."""

    return not tx.is_split and not tx.is_split_child and not tx.files


def score_transaction(
    tx: TransactionView,
    *,
    merchant_name: str,
    total_amount: Decimal,
    receipt_date: dt.date | None,
) -> MatchCandidate:
    reasons: list[str] = []
    score = 0

    points, reason = _amount_signal(tx.amount, total_amount)
    score += points
    if reason:
        reasons.append(reason)

    points, reason = _merchant_signal(normalize_merchant(merchant_name), tx)
    score += points
    if reason:
        reasons.append(reason)

    day_distance: int | None = None
    if receipt_date is not None:
        day_distance = abs((tx.date - receipt_date).days)
        points, reason = _date_signal(day_distance)
        score += points
        if reason:
            reasons.append(reason)

    return MatchCandidate(
        transaction=tx,
        score=score,
        match_reasons=tuple(reasons),
        day_distance=day_distance,
        amount_difference=abs(abs(tx.amount) - total_amount),
    )


def rank_candidates(
    pool: Sequence[TransactionView],
    *,
    merchant_name: str,
    total_amount: Decimal,
    receipt_date: dt.date | None,
    settings: SplitSettings,
) -> list[MatchCandidate]:
    """Score ``pool`` and return the best ``settings.match_top_k`` candidates.

    Ineligible rows are skipped and scores below ``settings.match_min_score``
    dropped. Order is score descending, then nearer date, then smaller amount
    difference, then position in ``pool``.
    """

    if total_amount <= 0:
        raise ValueError("total_amount must be positive")

    scored: list[tuple[int, MatchCandidate]] = []
    for pos, tx in enumerate(pool):
        if not is_eligible(tx):
            continue
        cand = score_transaction(
            tx,
            merchant_name=merchant_name,
            total_amount=total_amount,
            receipt_date=receipt_date,
        )
        if cand.score < settings.match_min_score:
            continue
        scored.append((pos, cand))

    scored.sort(
        key=lambda pc: (
            -pc[1].score,
            pc[1].day_distance if pc[1].day_distance is not None else 0,
            pc[1].amount_difference,
            pc[0],
        )
    )
    return [c for _, c in scored[: settings.match_top_k]]


def candidate_window(
    receipt_date: dt.date | None,
    *,
    settings: SplitSettings,
    today: dt.date | None = None,
) -> tuple[dt.date, dt.date]:
    """Return the inclusive ``(start, end)`` date range to search."""

    if receipt_date is not None:
        span = dt.timedelta(days=settings.match_window_days)
        return receipt_date - span, receipt_date + span
    end = today or dt.date.today()
    return end - dt.timedelta(days=settings.match_lookback_days), end


def find_matches(
    store: TransactionStore,
    *,
    merchant_name: str,
    total_amount: Decimal,
    receipt_date: dt.date | None,
    settings: SplitSettings,
    account_id: str | None = None,
    today: dt.date | None = None,
) -> list[MatchCandidate]:
    start, end = candidate_window(receipt_date, settings=settings, today=today)
    pool = store.find_match_candidates(start, end, account_id=account_id)
    ranked = rank_candidates(
        pool,
        merchant_name=merchant_name,
        total_amount=total_amount,
        receipt_date=receipt_date,
        settings=settings,
    )
    _logger.info(
        "match:done window=%s..%s pool=%d matches=%d top_score=%s",
        start.isoformat(),
        end.isoformat(),
        len(pool),
        len(ranked),
        ranked[0].score if ranked else "-",
    )
    return ranked
