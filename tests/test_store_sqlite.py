"""End-to-end split/undo against a real SQLite database via ``SqlTransactionStore``."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest
from db.models.finance import FaCategory, FaTransaction
from sqlalchemy import select

from receipt_splits import api
from receipt_splits.categories import load_taxonomy
from receipt_splits.ingest.seed_taxonomy import reseed_taxonomy
from receipt_splits.models import SplitGroup
from receipt_splits.outcome import Err, ErrorKind, Ok
from receipt_splits.store import SqlTransactionStore
from tests.helpers.db import (
    add_account,
    add_transaction,
    bootstrap_sqlite_db,
    fetch_transactions,
    seed_taxonomy,
)
from tests.helpers.taxonomy import TAXONOMY_SEED

D = dt.date(2024, 3, 1)

GROUPS = [
    SplitGroup(
        category_name="Food",
        subcategory_name="Groceries",
        amount=Decimal("20.00"),
        items_summary="milk, bread",
    ),
    SplitGroup(category_name="Household", amount=Decimal("22.00"), items_summary="detergent"),
]


@pytest.fixture
def factory(tmp_path):
    _, factory = bootstrap_sqlite_db(tmp_path / "splits.sqlite3")
    seed_taxonomy(factory, TAXONOMY_SEED)
    add_account(factory)
    return factory


@pytest.fixture
def parent_id(factory):
    return add_transaction(
        factory,
        external_id="plaid-abc",
        amount="-42.00",
        date=D,
        name="TARGET T-1234",
        merchant_name="Target",
    )


def test_split_and_undo_round_trip(factory, parent_id, settings):
    store = SqlTransactionStore(factory)

    res = api.apply_split_groups(store, parent_id, GROUPS, settings=settings)

    assert isinstance(res, Ok)
    rows = {r.external_id: r for r in fetch_transactions(factory)}
    assert set(rows) == {"plaid-abc", "plaid-abc_split_1", "plaid-abc_split_2"}
    assert rows["plaid-abc"].is_split is True
    child = rows["plaid-abc_split_1"]
    assert child.parent_transaction_id == parent_id
    assert child.amount == Decimal("-20.00")
    assert (child.category, child.subcategory) == ("food", "food_groceries")
    assert child.notes == "[split 1/2] milk, bread"
    assert child.is_manual is True
    assert rows["plaid-abc_split_2"].subcategory is None

    undone = api.undo_split(store, parent_id)

    assert isinstance(undone, Ok)
    assert set(undone.value.removed_ids) == set(res.value.child_ids)
    remaining = fetch_transactions(factory)
    assert [r.external_id for r in remaining] == ["plaid-abc"]
    assert remaining[0].is_split is False


def test_failed_insert_rolls_back_every_child(factory, parent_id, settings):
    # Occupies the second child's external id so its insert violates uniqueness.
    add_transaction(
        factory,
        external_id="plaid-abc_split_2",
        amount="-1.00",
        date=D - dt.timedelta(days=90),
        name="squatter",
    )
    store = SqlTransactionStore(factory)

    res = api.apply_split_groups(store, parent_id, GROUPS, settings=settings)

    assert isinstance(res, Err)
    assert res.kind is ErrorKind.STORE_FAILURE
    rows = {r.external_id: r for r in fetch_transactions(factory)}
    assert set(rows) == {"plaid-abc", "plaid-abc_split_2"}
    assert rows["plaid-abc"].is_split is False
    assert rows["plaid-abc_split_2"].parent_transaction_id is None


def test_second_split_is_rejected_without_writes(factory, parent_id, settings):
    store = SqlTransactionStore(factory)
    assert isinstance(api.apply_split_groups(store, parent_id, GROUPS, settings=settings), Ok)

    res = api.apply_split_groups(store, parent_id, GROUPS, settings=settings)

    assert isinstance(res, Err)
    assert res.kind is ErrorKind.ALREADY_SPLIT
    assert len(fetch_transactions(factory)) == 3


def test_deleting_parent_cascades_to_children(factory, parent_id, settings):
    store = SqlTransactionStore(factory)
    assert isinstance(api.apply_split_groups(store, parent_id, GROUPS, settings=settings), Ok)

    with factory.begin() as s:
        s.delete(s.get(FaTransaction, parent_id))

    assert fetch_transactions(factory) == []


def test_match_candidates_skip_split_rows_and_respect_window(factory, parent_id, settings):
    store = SqlTransactionStore(factory)
    add_transaction(factory, external_id="coffee", amount="-5.75", date=D, name="Starbucks")
    add_transaction(
        factory,
        external_id="old",
        amount="-5.75",
        date=D - dt.timedelta(days=10),
        name="Starbucks",
    )
    add_account(factory, "acct-2")
    add_transaction(
        factory, external_id="other-acct", amount="-5.75", date=D, name="Starbucks", account_id="acct-2"
    )
    assert isinstance(api.apply_split_groups(store, parent_id, GROUPS, settings=settings), Ok)

    pool = store.find_match_candidates(D - dt.timedelta(days=7), D + dt.timedelta(days=7))
    assert {t.external_id for t in pool} == {"coffee", "other-acct"}

    scoped = store.find_match_candidates(D, D, account_id="acct-1")
    assert [t.external_id for t in scoped] == ["coffee"]


def test_match_receipt_through_sql_store(factory, settings):
    add_transaction(
        factory, external_id="sbux", amount="-5.75", date=D, name="STARBUCKS", merchant_name="Starbucks"
    )
    add_transaction(
        factory,
        external_id="linked",
        amount="-5.75",
        date=D,
        name="Starbucks",
        files=["https://files.example/receipt.jpg"],
    )

    res = api.match_receipt(
        SqlTransactionStore(factory),
        merchant_name="STARBUCKS #1234",
        total_amount=Decimal("5.75"),
        receipt_date=D,
        settings=settings,
    )

    assert isinstance(res, Ok)
    assert [m.transaction.external_id for m in res.value] == ["sbux"]
    assert res.value[0].match_reasons == ("Exact amount match", "Merchant name match", "Same day")


def test_reseeding_taxonomy_is_idempotent_and_retires_missing_codes(factory):
    with factory.begin() as s:
        assert reseed_taxonomy(s, TAXONOMY_SEED) == 7

    trimmed = [p for p in TAXONOMY_SEED if p["code"] != "shopping"]
    with factory.begin() as s:
        assert reseed_taxonomy(s, trimmed) == 6

    with factory() as s:
        codes = {c.code: c.is_active for c in s.execute(select(FaCategory)).scalars()}
        taxonomy = load_taxonomy(s)

    assert codes["shopping"] is False
    assert taxonomy.category_code("Shopping") is None
    assert taxonomy.category_code("Food") == "food"
    assert taxonomy.subcategory_code("food", "Coffee Shops") == "food_coffee"
    assert [e.code for e in taxonomy.children_of("household")] == ["household_cleaning"]


def test_similar_and_recent_categorized_rows(factory, parent_id):
    past = add_transaction(
        factory,
        external_id="past-target",
        amount="-30.00",
        date=dt.date(2024, 2, 20),
        name="Target T-99 100% OFF",
        merchant_name="Target",
        category="food",
    )
    coffee = add_transaction(
        factory,
        external_id="past-coffee",
        amount="-5.75",
        date=dt.date(2024, 2, 25),
        name="STARBUCKS",
        merchant_name="Starbucks",
        category="food",
        subcategory="food_coffee",
    )
    add_transaction(
        factory,
        external_id="split-target",
        amount="-12.00",
        date=dt.date(2024, 2, 26),
        name="TARGET T-55",
        merchant_name="Target",
        category="shopping",
        is_split=True,
    )
    add_transaction(
        factory, external_id="uncat", amount="-8.00", date=dt.date(2024, 2, 27), name="TARGET"
    )
    store = SqlTransactionStore(factory)

    similar = store.similar_transactions(
        merchant_name="TARGET", name="TARGET T-1234", exclude_id=parent_id
    )
    by_name = store.similar_transactions(merchant_name=None, name="T-99 100% OFF AGAIN")
    recent = store.recent_categorized(limit=10, exclude_id=parent_id)

    assert [t.id for t in similar] == [past]
    assert [t.id for t in by_name] == [past]
    assert [t.id for t in recent] == [coffee, past]
    assert [t.id for t in store.recent_categorized(limit=1)] == [coffee]
    assert store.similar_transactions(merchant_name=" ", name=" ") == []
