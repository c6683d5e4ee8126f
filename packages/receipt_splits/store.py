"""Transaction store: the collaborator the workflows read and write through.

Workflows receive a :class:`TransactionStore` explicitly. The SQL
implementation wraps a SQLAlchemy ``sessionmaker``; tests use an in-memory
fake with the same surface.

Batching contract
-----------------
``atomic()`` opens a unit of work. Every call made inside it shares one
session and is committed together when the block exits normally, or rolled
back when it raises. Nested ``atomic()`` blocks join the outer one. Calls
made outside ``atomic()`` run in their own short transaction.

Infrastructure failures surface as :class:`StoreError`.
"""

from __future__ import annotations

import datetime as dt
from collections.abc import Iterator, Sequence
from contextlib import AbstractContextManager, contextmanager
from decimal import Decimal
from typing import Any, Protocol

from db.models.finance import FaTransaction
from sqlalchemy import Select, delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .categories import Taxonomy, load_taxonomy
from .logging_setup import get_logger
from .models import NewTransaction, TransactionView

_logger = get_logger("receipt_splits.store")


class StoreError(RuntimeError):
    """Raised when the backing store cannot complete an operation."""


class TransactionStore(Protocol):
    def atomic(self) -> AbstractContextManager[None]: ...

    def get_transaction(self, transaction_id: str) -> TransactionView | None: ...

    def find_match_candidates(
        self, start: dt.date, end: dt.date, *, account_id: str | None = None
    ) -> list[TransactionView]: ...

    def load_taxonomy(self) -> Taxonomy: ...

    def similar_transactions(
        self,
        *,
        merchant_name: str | None,
        name: str,
        exclude_id: str | None = None,
        limit: int = 50,
    ) -> list[TransactionView]: ...

    def recent_categorized(
        self, *, limit: int, exclude_id: str | None = None
    ) -> list[TransactionView]: ...

    def create_transaction(self, new: NewTransaction) -> str: ...

    def mark_split(self, transaction_id: str, is_split: bool) -> None: ...

    def list_children(self, parent_id: str) -> list[TransactionView]: ...

    def delete_transactions(self, transaction_ids: Sequence[str]) -> int: ...


def _file_refs(raw: Any) -> tuple[str, ...]:
    """Normalize the JSON ``files`` column into a tuple of URL strings."""

    if not raw:
        return ()
    out: list[str] = []
    for item in raw:
        if isinstance(item, str) and item.strip():
            out.append(item.strip())
        elif isinstance(item, dict):
            url = item.get("url")
            if isinstance(url, str) and url.strip():
                out.append(url.strip())
    return tuple(out)


def _categorized(exclude_id: str | None) -> Select[tuple[FaTransaction]]:
    """Categorized, unsplit rows, newest first."""

    stmt = (
        select(FaTransaction)
        .where(FaTransaction.category.is_not(None), FaTransaction.is_split.is_(False))
        .order_by(FaTransaction.date.desc(), FaTransaction.external_id)
    )
    if exclude_id is not None:
        stmt = stmt.where(FaTransaction.id != exclude_id)
    return stmt


def to_view(row: FaTransaction) -> TransactionView:
    return TransactionView(
        id=row.id,
        external_id=row.external_id,
        account_id=row.account_id,
        amount=Decimal(row.amount),
        date=row.date,
        name=row.name,
        currency_code=row.currency_code,
        datetime=row.datetime,
        pending=bool(row.pending),
        merchant_name=row.merchant_name,
        category=row.category,
        subcategory=row.subcategory,
        notes=row.notes,
        files=_file_refs(row.files),
        is_split=bool(row.is_split),
        is_manual=bool(row.is_manual),
        parent_transaction_id=row.parent_transaction_id,
        original_transaction_id=row.original_transaction_id,
    )


class SqlTransactionStore:
    """:class:`TransactionStore` backed by SQLAlchemy.

    Instances are cheap; create one per request or command. An instance is
    not safe to share across threads while an ``atomic()`` block is open.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self._active: Session | None = None

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if self._active is not None:
            yield
            return
        with self._unit_of_work():
            yield

    @contextmanager
    def _unit_of_work(self) -> Iterator[Session]:
        session = self._session_factory()
        self._active = session
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            _logger.error("store:rollback error=%s", e.__class__.__name__)
            raise StoreError(str(e)) from e
        except BaseException:
            session.rollback()
            raise
        finally:
            self._active = None
            session.close()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self._active is not None:
            try:
                yield self._active
            except SQLAlchemyError as e:
                raise StoreError(str(e)) from e
            return
        with self._unit_of_work() as session:
            yield session

    # ---- reads -------------------------------------------------------------

    def get_transaction(self, transaction_id: str) -> TransactionView | None:
        with self._session() as s:
            row = s.get(FaTransaction, transaction_id)
            return to_view(row) if row is not None else None

    def find_match_candidates(
        self, start: dt.date, end: dt.date, *, account_id: str | None = None
    ) -> list[TransactionView]:
        stmt = (
            select(FaTransaction)
            .where(
                FaTransaction.date >= start,
                FaTransaction.date <= end,
                FaTransaction.is_split.is_(False),
                FaTransaction.parent_transaction_id.is_(None),
            )
            .order_by(FaTransaction.date.desc(), FaTransaction.external_id)
        )
        if account_id is not None:
            stmt = stmt.where(FaTransaction.account_id == account_id)
        with self._session() as s:
            return [to_view(r) for r in s.execute(stmt).scalars().all()]

    def load_taxonomy(self) -> Taxonomy:
        with self._session() as s:
            return load_taxonomy(s)

    def similar_transactions(
        self,
        *,
        merchant_name: str | None,
        name: str,
        exclude_id: str | None = None,
        limit: int = 50,
    ) -> list[TransactionView]:
        """Categorized rows sharing the merchant or the start of ``name``.

        Matching is case-insensitive: an equal merchant name, or a name that
        contains the first ten characters of ``name``.
        """

        clauses = []
        merchant = (merchant_name or "").strip().lower()
        if merchant:
            clauses.append(func.lower(FaTransaction.merchant_name) == merchant)
        prefix = name.strip()[:10].lower()
        if prefix:
            clauses.append(func.lower(FaTransaction.name).contains(prefix, autoescape=True))
        if not clauses:
            return []
        stmt = _categorized(exclude_id).where(or_(*clauses)).limit(limit)
        with self._session() as s:
            return [to_view(r) for r in s.execute(stmt).scalars().all()]

    def recent_categorized(
        self, *, limit: int, exclude_id: str | None = None
    ) -> list[TransactionView]:
        stmt = _categorized(exclude_id).limit(limit)
        with self._session() as s:
            return [to_view(r) for r in s.execute(stmt).scalars().all()]

    def list_children(self, parent_id: str) -> list[TransactionView]:
        stmt = (
            select(FaTransaction)
            .where(FaTransaction.parent_transaction_id == parent_id)
            .order_by(FaTransaction.external_id)
        )
        with self._session() as s:
            return [to_view(r) for r in s.execute(stmt).scalars().all()]

    # ---- writes ------------------------------------------------------------

    def create_transaction(self, new: NewTransaction) -> str:
        with self._session() as s:
            row = FaTransaction(
                external_id=new.external_id,
                account_id=new.account_id,
                amount=new.amount,
                currency_code=new.currency_code,
                date=new.date,
                datetime=new.datetime,
                pending=new.pending,
                merchant_name=new.merchant_name,
                name=new.name,
                category=new.category,
                subcategory=new.subcategory,
                notes=new.notes,
                files=[],
                is_split=new.is_split,
                is_manual=new.is_manual,
                parent_transaction_id=new.parent_transaction_id,
                original_transaction_id=new.original_transaction_id,
            )
            s.add(row)
            # Flush so constraint violations surface inside the batch.
            s.flush()
            return row.id

    def mark_split(self, transaction_id: str, is_split: bool) -> None:
        with self._session() as s:
            row = s.get(FaTransaction, transaction_id)
            if row is None:
                raise StoreError(f"transaction not found: {transaction_id}")
            row.is_split = is_split
            s.flush()

    def delete_transactions(self, transaction_ids: Sequence[str]) -> int:
        if not transaction_ids:
            return 0
        with self._session() as s:
            result = s.execute(
                delete(FaTransaction).where(FaTransaction.id.in_(list(transaction_ids)))
            )
            return int(result.rowcount or 0)


__all__ = ["StoreError", "TransactionStore", "SqlTransactionStore", "to_view"]
