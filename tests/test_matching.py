from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from receipt_splits.config import SplitSettings
from receipt_splits.matching import (
    candidate_window,
    find_matches,
    normalize_merchant,
    rank_candidates,
    score_transaction,
)
from tests.helpers.fake_store import InMemoryTransactionStore, make_tx

D = dt.date(2024, 3, 1)


def _rank(pool, *, merchant="STARBUCKS #1234", total="5.75", date=D, settings=None):
    return rank_candidates(
        pool,
        merchant_name=merchant,
        total_amount=Decimal(total),
        receipt_date=date,
        settings=settings or SplitSettings(),
    )


def test_starbucks_receipt_ranks_same_day_exact_match_first():
    pool = [
        make_tx("other", amount="-5.75", date=D, merchant_name="Blue Bottle"),
        make_tx("sbux", amount="-5.75", date=D, merchant_name="Starbucks"),
    ]

    ranked = _rank(pool)

    assert ranked[0].transaction.id == "sbux"
    assert ranked[0].match_reasons == ("Exact amount match", "Merchant name match", "Same day")
    assert ranked[0].score == 50 + 25 + 20


def test_matching_is_idempotent():
    pool = [
        make_tx("a", amount="-5.75", date=D, merchant_name="Starbucks"),
        make_tx("b", amount="-5.80", date=D - dt.timedelta(days=2), name="STARBUCKS STORE"),
        make_tx("c", amount="-5.75", date=D + dt.timedelta(days=6)),
    ]

    assert _rank(pool) == _rank(pool)


def test_empty_pool_returns_empty_list():
    assert _rank([]) == []


def test_split_parents_children_and_receipt_linked_rows_are_skipped():
    pool = [
        make_tx("parent", amount="-5.75", merchant_name="Starbucks", is_split=True),
        make_tx("child", amount="-5.75", merchant_name="Starbucks", parent_transaction_id="p"),
        make_tx("linked", amount="-5.75", merchant_name="Starbucks", files=("https://x/r.jpg",)),
        make_tx("free", amount="-5.75", merchant_name="Starbucks"),
    ]

    assert [c.transaction.id for c in _rank(pool)] == ["free"]


def test_amount_within_five_percent_decays_linearly():
    tx = make_tx("t", amount="-98.00", date=D, merchant_name="Shell")

    cand = score_transaction(
        tx, merchant_name="Target", total_amount=Decimal("100.00"), receipt_date=D
    )

    assert cand.match_reasons == ("Amount match (2.0% diff)", "Same day")
    assert cand.score == 24 + 20


def test_amount_beyond_five_percent_scores_nothing():
    tx = make_tx("t", amount="-90.00", date=D, merchant_name="Target")

    cand = score_transaction(
        tx, merchant_name="Target", total_amount=Decimal("100.00"), receipt_date=None
    )

    assert cand.match_reasons == ("Merchant name match",)
    assert cand.score == 30


@pytest.mark.parametrize(
    ("receipt", "merchant", "points", "reason"),
    [
        ("Trader Joe's", "TRADER  JOE'S", 30, "Merchant name match"),
        ("WHOLE FOODS MARKET #10", "Whole Foods Market", 25, "Merchant name match"),
        ("Costco Wholesale", "COSTCO GAS", 15, "Partial merchant name match"),
        ("The Gap", "Gap Inc", 0, None),
    ],
)
def test_merchant_signal(receipt, merchant, points, reason):
    tx = make_tx("t", amount="-1.00", merchant_name=merchant)

    cand = score_transaction(
        tx, merchant_name=receipt, total_amount=Decimal("500.00"), receipt_date=None
    )

    assert cand.score == points
    assert cand.match_reasons == ((reason,) if reason else ())


def test_merchant_signal_uses_display_name_when_merchant_missing():
    tx = make_tx("t", amount="-5.75", name="SQ *STARBUCKS 1234", merchant_name=None)

    cand = score_transaction(
        tx, merchant_name="Starbucks", total_amount=Decimal("5.75"), receipt_date=None
    )

    assert "Merchant name match" in cand.match_reasons


@pytest.mark.parametrize(
    ("days", "points"),
    [(0, 20), (1, 15), (2, 10), (3, 10), (5, 5), (7, 5), (8, 0)],
)
def test_date_proximity_bands(days, points):
    tx = make_tx("t", amount="-1.00", date=D + dt.timedelta(days=days))

    cand = score_transaction(tx, merchant_name="x", total_amount=Decimal("500"), receipt_date=D)

    assert cand.day_distance == days
    assert cand.score == points


def test_no_receipt_date_omits_date_signal():
    tx = make_tx("t", amount="-5.75", date=D, merchant_name="Starbucks")

    cand = score_transaction(
        tx, merchant_name="Starbucks", total_amount=Decimal("5.75"), receipt_date=None
    )

    assert cand.day_distance is None
    assert cand.match_reasons == ("Exact amount match", "Merchant name match")


def test_ties_break_on_date_then_amount_then_pool_order():
    pool = [
        make_tx("far", amount="-5.75", date=D + dt.timedelta(days=1), merchant_name="Starbucks"),
        make_tx("cent_off", amount="-5.76", date=D, merchant_name="Starbucks"),
        make_tx("exact_2", amount="-5.75", date=D, merchant_name="Starbucks"),
        make_tx("exact_1", amount="-5.75", date=D, merchant_name="Starbucks"),
    ]

    ranked = _rank(pool, merchant="Starbucks", settings=SplitSettings(match_min_score=0))

    # "far" scores lower (15 vs 20 for the date); the other three tie on score.
    assert [c.transaction.id for c in ranked] == ["exact_2", "exact_1", "cent_off", "far"]


def test_min_score_and_top_k():
    pool = [make_tx(f"t{i}", amount="-5.75", date=D, merchant_name="Starbucks") for i in range(7)]
    pool.append(make_tx("weak", amount="-1.00", date=D + dt.timedelta(days=6)))

    ranked = _rank(pool, settings=SplitSettings(match_top_k=3))

    assert [c.transaction.id for c in ranked] == ["t0", "t1", "t2"]
    assert all(c.score >= 20 for c in ranked)


def test_candidate_window_with_and_without_date():
    s = SplitSettings(match_window_days=7, match_lookback_days=30)

    assert candidate_window(D, settings=s) == (dt.date(2024, 2, 23), dt.date(2024, 3, 8))
    assert candidate_window(None, settings=s, today=D) == (dt.date(2024, 1, 31), D)


def test_find_matches_only_searches_the_window(taxonomy):
    store = InMemoryTransactionStore(
        [
            make_tx("inside", amount="-5.75", date=D, merchant_name="Starbucks"),
            make_tx("outside", amount="-5.75", date=D + dt.timedelta(days=8), merchant_name="Starbucks"),
        ],
        taxonomy=taxonomy,
    )

    ranked = find_matches(
        store,
        merchant_name="Starbucks",
        total_amount=Decimal("5.75"),
        receipt_date=D,
        settings=SplitSettings(),
    )

    assert [c.transaction.id for c in ranked] == ["inside"]


def test_normalize_merchant_collapses_case_and_whitespace():
    assert normalize_merchant("  Trader\tJOE'S  ") == "trader joe's"
    assert normalize_merchant(None) == ""
