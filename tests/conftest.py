"""Pytest configuration shared by all tests.

Puts the workspace packages on ``sys.path`` (``packages/`` for
``receipt_splits``, ``libs/db/src`` for ``db`` and the repo root for
``tests.helpers``) and provides the common fixtures: settings, a small
taxonomy, and an in-memory store.
"""

from __future__ import annotations

import sys
from pathlib import Path

_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in [str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT)]
    if p not in sys.path
]

import pytest  # noqa: E402

from receipt_splits.categories import Taxonomy  # noqa: E402
from receipt_splits.config import SplitSettings  # noqa: E402
from tests.helpers.fake_store import InMemoryTransactionStore  # noqa: E402
from tests.helpers.taxonomy import TAXONOMY_SEED, taxonomy_rows  # noqa: E402


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer ``.env``/shell settings from leaking into tests."""

    for name in (
        "RECEIPT_SPLITS_TOLERANCE",
        "RECEIPT_SPLITS_MATCH_WINDOW_DAYS",
        "RECEIPT_SPLITS_MATCH_LOOKBACK_DAYS",
        "RECEIPT_SPLITS_MATCH_TOP_K",
        "RECEIPT_SPLITS_MATCH_MIN_SCORE",
        "RECEIPT_SPLITS_VISION_MODEL",
        "RECEIPT_SPLITS_SIMILAR_LIMIT",
        "RECEIPT_SPLITS_HISTORY_LIMIT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings() -> SplitSettings:
    return SplitSettings()


@pytest.fixture
def taxonomy() -> Taxonomy:
    return Taxonomy.from_rows(taxonomy_rows(TAXONOMY_SEED))


@pytest.fixture
def store(taxonomy: Taxonomy) -> InMemoryTransactionStore:
    return InMemoryTransactionStore(taxonomy=taxonomy)
