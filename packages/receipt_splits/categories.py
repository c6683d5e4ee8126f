"""Two-level category taxonomy helpers.

The taxonomy is carried around as an immutable :class:`Taxonomy` built from
``fa_categories`` rows (or plain dicts in tests). Name lookups are exact
after trimming surrounding whitespace; case is significant so that a
model-invented variant such as ``"food"`` never silently lands on ``"Food"``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from db.models.finance import FaCategory
from sqlalchemy import func, select
from sqlalchemy.orm import Session


@dataclass(frozen=True, slots=True)
class CategoryEntry:
    code: str
    display_name: str
    parent_code: str | None = None


class Taxonomy:
    """Immutable view over categories and their subcategories."""

    __slots__ = ("_entries", "_by_code", "_top_by_name", "_child_by_name")

    def __init__(self, entries: Iterable[CategoryEntry]) -> None:
        self._entries: tuple[CategoryEntry, ...] = tuple(entries)
        self._by_code: dict[str, CategoryEntry] = {e.code: e for e in self._entries}
        self._top_by_name: dict[str, str] = {}
        self._child_by_name: dict[tuple[str, str], str] = {}
        for e in self._entries:
            if e.parent_code is None:
                self._top_by_name.setdefault(e.display_name, e.code)
            else:
                self._child_by_name.setdefault((e.parent_code, e.display_name), e.code)

    @classmethod
    def from_rows(cls, rows: Iterable[Mapping[str, Any]]) -> Taxonomy:
        """Build from mappings with ``code``, ``display_name`` and ``parent_code``.

        Blank codes are dropped; a blank display name falls back to the code.
        """

        entries: list[CategoryEntry] = []
        for r in rows:
            code = str(r.get("code") or "").strip()
            if not code:
                continue
            name = str(r.get("display_name") or "").strip() or code
            parent = str(r.get("parent_code") or "").strip() or None
            entries.append(CategoryEntry(code=code, display_name=name, parent_code=parent))
        return cls(entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    # ---- lookups -----------------------------------------------------------

    def category_code(self, name: str | None) -> str | None:
        if name is None:
            return None
        return self._top_by_name.get(name.strip())

    def subcategory_code(self, category_code: str, name: str | None) -> str | None:
        if name is None:
            return None
        return self._child_by_name.get((category_code, name.strip()))

    def is_category(self, code: str) -> bool:
        entry = self._by_code.get(code)
        return entry is not None and entry.parent_code is None

    def belongs_to(self, subcategory_code: str, category_code: str) -> bool:
        entry = self._by_code.get(subcategory_code)
        return entry is not None and entry.parent_code == category_code

    def display_name(self, code: str | None) -> str | None:
        if code is None:
            return None
        entry = self._by_code.get(code)
        return entry.display_name if entry else None

    # ---- views -------------------------------------------------------------

    def categories(self) -> list[CategoryEntry]:
        return [e for e in self._entries if e.parent_code is None]

    def children_of(self, category_code: str) -> list[CategoryEntry]:
        return [e for e in self._entries if e.parent_code == category_code]

    def to_rows(self) -> list[dict[str, Any]]:
        return [
            {"code": e.code, "display_name": e.display_name, "parent_code": e.parent_code}
            for e in self._entries
        ]


def load_taxonomy(session: Session) -> Taxonomy:
    """Return the active taxonomy from ``fa_categories``.

    Rows are ordered by ``sort_order`` (nulls last) then display name so that
    prompts built from the taxonomy are deterministic.
    """

    rows = (
        session.execute(
            select(FaCategory)
            .where(FaCategory.is_active.is_(True))
            .order_by(func.coalesce(FaCategory.sort_order, 10_000), FaCategory.display_name)
        )
        .scalars()
        .all()
    )
    return Taxonomy.from_rows(
        {"code": r.code, "display_name": r.display_name, "parent_code": r.parent_code}
        for r in rows
    )


__all__ = ["CategoryEntry", "Taxonomy", "load_taxonomy"]
