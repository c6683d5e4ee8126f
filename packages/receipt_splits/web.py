"""HTTP surface (FastAPI) over :mod:`receipt_splits.api`.

``create_app()`` builds the application; the store, settings and vision
client are provided through dependencies so tests can override them with
``app.dependency_overrides``. Failed outcomes are rendered as
``{"error": <detail>, "details": {"kind": <ErrorKind>, ...context}}`` with
a status code derived from the error kind.
"""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, FastAPI, File, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session, sessionmaker

from . import analysis, api, validation
from .config import SplitSettings
from .logging_setup import get_logger
from .models import (
    AnalyzedReceipt,
    MatchCandidate,
    SmartSuggestion,
    SplitOutcome,
    UndoOutcome,
    ValidatedSplit,
)
from .outcome import Err, ErrorKind, Ok
from .store import SqlTransactionStore, TransactionStore

_logger = get_logger("receipt_splits.web")

_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.NO_SPLIT_NEEDED: 400,
    ErrorKind.AMOUNT_MISMATCH: 400,
    ErrorKind.UNKNOWN_CATEGORY: 400,
    ErrorKind.ALREADY_SPLIT: 400,
    ErrorKind.CHILD_TRANSACTION: 400,
    ErrorKind.NOT_SPLIT: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.STORE_FAILURE: 500,
    ErrorKind.ANALYSIS_UNAVAILABLE: 503,
}


class OutcomeError(Exception):
    def __init__(self, err: Err) -> None:
        super().__init__(err.detail)
        self.err = err


def _unwrap[V](result: Ok[V] | Err) -> V:
    if isinstance(result, Err):
        raise OutcomeError(result)
    return result.value


def _error_body(err: Err) -> dict[str, Any]:
    return {"error": err.detail, "details": {"kind": err.kind.value, **dict(err.context)}}


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SplitResponse(_CamelModel):
    success: bool = True
    parent_id: str
    child_ids: list[str]
    message: str

    @classmethod
    def of(cls, outcome: SplitOutcome) -> SplitResponse:
        return cls(
            parent_id=outcome.parent_id, child_ids=list(outcome.child_ids), message=outcome.message
        )


class UndoResponse(_CamelModel):
    success: bool = True
    parent_id: str
    removed_ids: list[str]
    message: str

    @classmethod
    def of(cls, outcome: UndoOutcome) -> UndoResponse:
        return cls(
            parent_id=outcome.parent_id,
            removed_ids=list(outcome.removed_ids),
            message=f"Removed {len(outcome.removed_ids)} split transactions",
        )


class MatchedTransaction(_CamelModel):
    id: str
    name: str
    merchant_name: str | None
    amount: float
    date: str


class MatchResponse(_CamelModel):
    transaction: MatchedTransaction
    score: int
    match_reasons: list[str]

    @classmethod
    def of(cls, c: MatchCandidate) -> MatchResponse:
        tx = c.transaction
        return cls(
            transaction=MatchedTransaction(
                id=tx.id,
                name=tx.name,
                merchant_name=tx.merchant_name,
                amount=float(tx.amount),
                date=tx.date.isoformat(),
            ),
            score=c.score,
            match_reasons=list(c.match_reasons),
        )


class ReceiptLineItemResponse(_CamelModel):
    description: str
    amount: float
    suggested_category: str | None
    suggested_subcategory: str | None
    category_id: str | None
    subcategory_id: str | None


class ReceiptAnalysisResponse(_CamelModel):
    merchant_name: str | None
    total_amount: float | None
    receipt_date: str | None
    line_items: list[ReceiptLineItemResponse]
    confidence: float
    reasoning: str
    matches: list[MatchResponse]

    @classmethod
    def of(cls, result: AnalyzedReceipt) -> ReceiptAnalysisResponse:
        a = result.analysis
        return cls(
            merchant_name=a.merchant_name,
            total_amount=float(a.total_amount) if a.total_amount is not None else None,
            receipt_date=a.receipt_date.isoformat() if a.receipt_date else None,
            line_items=[
                ReceiptLineItemResponse(
                    description=i.description,
                    amount=float(i.amount),
                    suggested_category=i.suggested_category,
                    suggested_subcategory=i.suggested_subcategory,
                    category_id=i.category_id,
                    subcategory_id=i.subcategory_id,
                )
                for i in a.line_items
            ],
            confidence=a.confidence,
            reasoning=a.reasoning,
            matches=[MatchResponse.of(m) for m in result.matches],
        )


class SuggestedSplitResponse(_CamelModel):
    amount: float
    summary: str
    category_id: str | None
    subcategory_id: str | None


class SmartAnalysisResponse(_CamelModel):
    type: str
    confidence: float
    reasoning: str
    splits: list[SuggestedSplitResponse]
    total: float | None
    warnings: list[str]
    category_id: str | None
    subcategory_id: str | None

    @classmethod
    def of(cls, s: SmartSuggestion) -> SmartAnalysisResponse:
        split: ValidatedSplit | None = s.split
        return cls(
            type=s.kind,
            confidence=s.confidence,
            reasoning=s.reasoning,
            splits=[
                SuggestedSplitResponse(
                    amount=float(r.amount),
                    summary=r.summary,
                    category_id=r.category,
                    subcategory_id=r.subcategory,
                )
                for r in (split.splits if split else ())
            ],
            total=float(split.total) if split else None,
            warnings=list(split.warnings) if split else [],
            category_id=s.category,
            subcategory_id=s.subcategory,
        )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_settings(request: Request) -> SplitSettings:
    return request.app.state.settings


def get_store(request: Request) -> TransactionStore:
    factory: sessionmaker[Session] | None = request.app.state.session_factory
    if factory is None:
        from db.client import get_session_factory

        factory = get_session_factory()
        request.app.state.session_factory = factory
    return SqlTransactionStore(factory)


def get_vision_client(request: Request) -> Any | None:
    return request.app.state.vision_client


StoreDep = Annotated[TransactionStore, Depends(get_store)]
SettingsDep = Annotated[SplitSettings, Depends(get_settings)]
VisionDep = Annotated[Any, Depends(get_vision_client)]


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api")


@router.post("/receipts/split", response_model=SplitResponse)
def split_receipt(
    payload: Annotated[Any, Body()],
    store: StoreDep,
    settings: SettingsDep,
) -> SplitResponse:
    req = _unwrap(validation.parse_split_request(payload))
    outcome = _unwrap(
        api.split_transaction(store, req.transaction_id, req.line_items, settings=settings)
    )
    return SplitResponse.of(outcome)


@router.post("/receipts/analyze", response_model=ReceiptAnalysisResponse)
def analyze_receipt(
    file: Annotated[UploadFile, File()],
    store: StoreDep,
    settings: SettingsDep,
    client: VisionDep,
) -> ReceiptAnalysisResponse:
    # One byte past the limit is enough for the size check to reject it.
    data = file.file.read(analysis.MAX_IMAGE_BYTES + 1)
    result = _unwrap(
        api.analyze_receipt(
            store, data, file.content_type or "", settings=settings, client=client
        )
    )
    return ReceiptAnalysisResponse.of(result)


@router.post("/transactions/{transaction_id}/smart-analysis", response_model=SmartAnalysisResponse)
def smart_analysis(
    transaction_id: str,
    store: StoreDep,
    settings: SettingsDep,
    client: VisionDep,
) -> SmartAnalysisResponse:
    suggestion = _unwrap(
        api.smart_analysis(store, transaction_id, settings=settings, client=client)
    )
    return SmartAnalysisResponse.of(suggestion)


@router.post("/transactions/{transaction_id}/ai-split", response_model=SplitResponse)
def ai_split(
    transaction_id: str,
    payload: Annotated[Any, Body()],
    store: StoreDep,
    settings: SettingsDep,
) -> SplitResponse:
    req = _unwrap(validation.parse_ai_split_request(payload))
    outcome = _unwrap(
        api.apply_split_groups(store, transaction_id, req.splits, settings=settings)
    )
    return SplitResponse.of(outcome)


@router.delete("/transactions/{transaction_id}/split", response_model=UndoResponse)
def undo_split(transaction_id: str, store: StoreDep) -> UndoResponse:
    return UndoResponse.of(_unwrap(api.undo_split(store, transaction_id)))


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def _outcome_error_handler(_request: Request, exc: OutcomeError) -> JSONResponse:
    err = exc.err
    status = _STATUS_BY_KIND.get(err.kind, 500)
    _logger.info("http:error kind=%s status=%d", err.kind.value, status)
    return JSONResponse(status_code=status, content=_error_body(err))


def _request_validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": [str(p) for p in e.get("loc", ())], "msg": str(e.get("msg", ""))}
        for e in exc.errors()
    ]
    err = Err(ErrorKind.INVALID_INPUT, "Invalid request", {"errors": errors})
    return JSONResponse(status_code=400, content=_error_body(err))


def create_app(
    *,
    session_factory: sessionmaker[Session] | None = None,
    settings: SplitSettings | None = None,
    vision_client: Any | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    ``session_factory`` defaults to the process-wide one from ``db.client``
    (resolved lazily on the first request, from ``DATABASE_URL``).
    """

    app = FastAPI(title="receipt-splits")
    app.state.session_factory = session_factory
    app.state.settings = settings or SplitSettings.from_env()
    app.state.vision_client = vision_client
    app.include_router(router)
    app.add_exception_handler(OutcomeError, _outcome_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    return app


__all__ = ["create_app", "get_store", "get_settings", "get_vision_client", "router"]
