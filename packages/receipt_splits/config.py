"""Runtime settings for matching and split validation.

Values come from the process environment (entry points load ``.env`` first
via ``python-dotenv``). Library code never reads the environment directly; it
receives a :class:`SplitSettings` instance from the caller.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

_ENV_PREFIX = "RECEIPT_SPLITS_"


@dataclass(frozen=True, slots=True)
class SplitSettings:
    """Tunables shared by the matcher, validator and vision client.

    Attributes
    ----------
    tolerance:
        Maximum absolute difference (in currency units) between the sum of the
        split amounts and the parent total for a split to be accepted.
    match_window_days:
        Half-width of the candidate window around a receipt date.
    match_lookback_days:
        Lookback used when the receipt carries no date.
    match_top_k:
        Maximum number of ranked candidates returned.
    match_min_score:
        Candidates scoring below this are discarded.
    vision_model:
        Model name passed to the Responses API.
    similar_limit:
        Most similar past transactions shown to smart analysis.
    history_limit:
        Most recent categorized transactions shown to smart analysis.
    """

    tolerance: Decimal = Decimal("0.01")
    match_window_days: int = 7
    match_lookback_days: int = 30
    match_top_k: int = 5
    match_min_score: int = 20
    vision_model: str = "gpt-4o"
    similar_limit: int = 50
    history_limit: int = 100

    def __post_init__(self) -> None:
        if self.tolerance < 0:
            raise ValueError("tolerance must be non-negative")
        for name in (
            "match_window_days",
            "match_lookback_days",
            "match_top_k",
            "similar_limit",
            "history_limit",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be a positive integer")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> SplitSettings:
        env = os.environ if environ is None else environ
        defaults = cls()

        def _int(name: str, default: int) -> int:
            raw = env.get(_ENV_PREFIX + name)
            if raw is None or not raw.strip():
                return default
            try:
                return int(raw.strip())
            except ValueError as e:
                raise ValueError(f"{_ENV_PREFIX}{name} must be an integer: {raw!r}") from e

        raw_tol = env.get(_ENV_PREFIX + "TOLERANCE")
        tolerance = defaults.tolerance
        if raw_tol is not None and raw_tol.strip():
            try:
                tolerance = Decimal(raw_tol.strip())
            except InvalidOperation as e:
                raise ValueError(f"{_ENV_PREFIX}TOLERANCE must be a decimal: {raw_tol!r}") from e

        return cls(
            tolerance=tolerance,
            match_window_days=_int("MATCH_WINDOW_DAYS", defaults.match_window_days),
            match_lookback_days=_int("MATCH_LOOKBACK_DAYS", defaults.match_lookback_days),
            match_top_k=_int("MATCH_TOP_K", defaults.match_top_k),
            match_min_score=_int("MATCH_MIN_SCORE", defaults.match_min_score),
            vision_model=(env.get(_ENV_PREFIX + "VISION_MODEL") or defaults.vision_model).strip(),
            similar_limit=_int("SIMILAR_LIMIT", defaults.similar_limit),
            history_limit=_int("HISTORY_LIMIT", defaults.history_limit),
        )
