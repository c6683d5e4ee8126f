"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ledger models used by ``receipt_splits``.
"""

from .finance import Base, FaAccount, FaCategory, FaTransaction

__all__ = [
    "Base",
    "FaAccount",
    "FaCategory",
    "FaTransaction",
]
