"""Tagged results for the reconciliation workflow.

Every public operation returns either :class:`Ok` wrapping a value or
:class:`Err` carrying an :class:`ErrorKind`, a human-readable ``detail`` and
an optional ``context`` mapping with structured facts (for example the
expected/actual totals of a mismatch). Infrastructure exceptions are
translated into ``Err`` only at the seams that own them (store writes and
vision calls); everything else propagates.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(StrEnum):
    INVALID_INPUT = "INVALID_INPUT"
    NO_SPLIT_NEEDED = "NO_SPLIT_NEEDED"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    UNKNOWN_CATEGORY = "UNKNOWN_CATEGORY"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_SPLIT = "ALREADY_SPLIT"
    CHILD_TRANSACTION = "CHILD_TRANSACTION"
    NOT_SPLIT = "NOT_SPLIT"
    STORE_FAILURE = "STORE_FAILURE"
    ANALYSIS_UNAVAILABLE = "ANALYSIS_UNAVAILABLE"


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Err:
    """A failed outcome.

    ``context`` holds JSON-friendly values only so that the HTTP layer can
    return it verbatim under ``details``.
    """

    kind: ErrorKind
    detail: str
    context: Mapping[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return False


type Outcome[V] = Ok[V] | Err


__all__ = ["ErrorKind", "Ok", "Err", "Outcome"]
