"""Vision-model calls: receipt extraction and smart analysis.

Public API:
    - :func:`check_receipt_upload`
    - :func:`analyze_receipt_image`
    - :func:`resolve_line_items`
    - :func:`suggest_for_transaction`

Model output is untrusted: it is decoded from the Responses API, validated
with Pydantic, and only then handed to the caller. Any failure on that path
(network, HTTP, decoding, schema) becomes ``ANALYSIS_UNAVAILABLE``; the
caller never sees an exception from here. No client is created at import
time.
"""

from __future__ import annotations

import base64
import json
import random
import time
from collections.abc import Mapping, Sequence
from typing import Any

from openai import OpenAI
from openai.types.responses import ResponseTextConfigParam
from pydantic import ValidationError

from . import prompting
from .categories import Taxonomy
from .config import SplitSettings
from .logging_setup import get_logger
from .models import ReceiptAnalysis, SmartAnalysis, TransactionView
from .outcome import Err, ErrorKind, Ok

# ---- Tunables (private) ------------------------------------------------------

_MAX_ATTEMPTS: int = 3
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20

ALLOWED_IMAGE_TYPES: frozenset[str] = frozenset({"image/jpeg", "image/png", "image/webp"})
MAX_IMAGE_BYTES: int = 10 * 1024 * 1024

_logger = get_logger("receipt_splits.analysis")


class _NoSuggestions(ValueError):
    """The model answered, but with nothing usable."""


# ---- Internal helpers --------------------------------------------------------


def _create_client() -> OpenAI:
    return OpenAI()


def _extract_response_json_mapping(resp: Any) -> Mapping[str, Any]:
    """Decode the JSON object from a Responses API result.

    Prefers ``resp.output_text`` and falls back to
    ``resp.output[0].content[0].text``. Raises ``ValueError`` when no text is
    present or it is not a JSON object.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        try:
            first = resp.output[0] if getattr(resp, "output", None) else None
            content = getattr(first, "content", None)
            if content:
                txt_obj = getattr(content[0], "text", None)
                if isinstance(txt_obj, str):
                    text = txt_obj
                else:
                    maybe_val = getattr(txt_obj, "value", None)
                    if isinstance(maybe_val, str):
                        text = maybe_val
        except (AttributeError, IndexError, TypeError):
            text = None
    if not text or not isinstance(text, str) or not text.strip():
        raise _NoSuggestions("empty model response")

    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError("Model output was not valid JSON per the requested schema") from e
    if not isinstance(decoded, Mapping):
        raise ValueError("Model output must be a JSON object")
    return decoded


def _is_retryable(exc: BaseException) -> bool:
    """Only HTTP 429 and 5xx are retried; decoding errors are terminal."""

    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


def _sleep_backoff(attempt_no: int) -> None:
    if attempt_no - 1 < len(_BACKOFF_SCHEDULE_SEC):
        base = _BACKOFF_SCHEDULE_SEC[attempt_no - 1]
    else:
        base = _BACKOFF_SCHEDULE_SEC[-1]
    jitter = base * _JITTER_PCT
    time.sleep(max(0.0, base + random.uniform(-jitter, jitter)))


def _request_json(
    client: Any,
    *,
    event: str,
    model: str,
    instructions: str,
    content: list[dict[str, Any]],
    text_cfg: ResponseTextConfigParam,
) -> Mapping[str, Any]:
    """Call ``responses.create`` with retries and return the decoded object."""

    attempt = 1
    while True:
        t0 = time.perf_counter()
        try:
            resp = client.responses.create(
                model=model,
                instructions=instructions,
                input=[{"role": "user", "content": content}],
                text=text_cfg,
            )
            decoded = _extract_response_json_mapping(resp)
            _logger.info(
                "%s:model_done attempt=%d latency_ms=%.2f",
                event,
                attempt,
                (time.perf_counter() - t0) * 1000.0,
            )
            return decoded
        except Exception as e:  # noqa: BLE001 - SDK raises a wide family of errors
            dt_ms = (time.perf_counter() - t0) * 1000.0
            if attempt >= _MAX_ATTEMPTS or not _is_retryable(e):
                _logger.error(
                    "%s:model_failed_terminal attempt=%d latency_ms=%.2f error=%s",
                    event,
                    attempt,
                    dt_ms,
                    e.__class__.__name__,
                )
                raise
            _logger.warning(
                "%s:model_retry attempt=%d latency_ms=%.2f error=%s",
                event,
                attempt,
                dt_ms,
                e.__class__.__name__,
            )
            _sleep_backoff(attempt)
            attempt += 1


def _unavailable(event: str, e: BaseException) -> Err:
    if isinstance(e, _NoSuggestions):
        detail = "No suggestions available"
    else:
        detail = "Receipt analysis is unavailable"
    return Err(ErrorKind.ANALYSIS_UNAVAILABLE, detail, {"event": event, "error": e.__class__.__name__})


def _image_part(url: str) -> dict[str, Any]:
    return {"type": "input_image", "image_url": url, "detail": "auto"}


def _data_url(data: bytes, content_type: str) -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


# ---- Public API --------------------------------------------------------------


def check_receipt_upload(data: bytes, content_type: str | None) -> Err | None:
    """Reject uploads that are empty, too large, or not JPEG/PNG/WebP."""

    ctype = (content_type or "").split(";", 1)[0].strip().lower()
    if ctype not in ALLOWED_IMAGE_TYPES:
        return Err(
            ErrorKind.INVALID_INPUT,
            "Invalid file type. Only JPEG, PNG, and WebP images are supported.",
            {"content_type": ctype or None},
        )
    if not data:
        return Err(ErrorKind.INVALID_INPUT, "Empty file upload")
    if len(data) > MAX_IMAGE_BYTES:
        return Err(
            ErrorKind.INVALID_INPUT,
            "File too large. Maximum size is 10MB.",
            {"size": len(data), "max_size": MAX_IMAGE_BYTES},
        )
    return None


def analyze_receipt_image(
    data: bytes,
    content_type: str,
    *,
    taxonomy: Taxonomy,
    settings: SplitSettings,
    client: Any | None = None,
) -> Ok[ReceiptAnalysis] | Err:
    """Extract merchant, total, date and line items from one receipt image.

    Suggested category names are returned as-is; see :func:`resolve_line_items`.
    """

    if (err := check_receipt_upload(data, content_type)) is not None:
        return err

    event = "receipt_analyze"
    _logger.info("%s:start bytes=%d content_type=%s", event, len(data), content_type)
    try:
        body = _request_json(
            client or _create_client(),
            event=event,
            model=settings.vision_model,
            instructions=prompting.build_receipt_instructions(),
            content=[
                {"type": "input_text", "text": prompting.build_receipt_user_text(taxonomy)},
                _image_part(_data_url(data, content_type)),
            ],
            text_cfg={"format": prompting.build_receipt_response_format()},
        )
        analysis = ReceiptAnalysis.model_validate(body)
        if not analysis.line_items and analysis.total_amount is None:
            raise _NoSuggestions("receipt had no line items and no total")
    except (ValidationError, ValueError) as e:
        _logger.warning("%s:unusable_output error=%s", event, e.__class__.__name__)
        return _unavailable(event, e)
    except Exception as e:  # noqa: BLE001 - network/SDK failures after retries
        return _unavailable(event, e)

    _logger.info(
        "%s:done items=%d confidence=%.2f", event, len(analysis.line_items), analysis.confidence
    )
    return Ok(analysis)


def resolve_line_items(analysis: ReceiptAnalysis, taxonomy: Taxonomy) -> ReceiptAnalysis:
    """Attach category/subcategory codes to each suggested line item.

    Unknown names leave the item uncategorized rather than failing.
    """

    items = []
    for item in analysis.line_items:
        cat = taxonomy.category_code(item.suggested_category)
        sub = taxonomy.subcategory_code(cat, item.suggested_subcategory) if cat else None
        items.append(item.model_copy(update={"category_id": cat, "subcategory_id": sub}))
    return analysis.model_copy(update={"line_items": items})


def suggest_for_transaction(
    tx: TransactionView,
    *,
    taxonomy: Taxonomy,
    settings: SplitSettings,
    client: Any | None = None,
    receipt_urls: Sequence[str] | None = None,
    similar: Sequence[TransactionView] = (),
    history: Sequence[TransactionView] = (),
) -> Ok[SmartAnalysis] | Err:
    """Ask the model whether ``tx`` should be split, recategorized, or confirmed.

    Uses ``receipt_urls`` (defaults to the transaction's attached files) as
    image input. ``similar`` and ``history`` are past categorized transactions
    shown to the model as the user's own patterns. A split answer without any
    receipt is discarded.
    """

    urls = list(tx.files if receipt_urls is None else receipt_urls)
    has_receipts = bool(urls)
    event = "smart_analyze"
    _logger.info(
        "%s:start transaction_id=%s receipts=%d similar=%d history=%d",
        event,
        tx.id,
        len(urls),
        len(similar),
        len(history),
    )

    content: list[dict[str, Any]] = [
        {
            "type": "input_text",
            "text": prompting.build_smart_user_text(
                tx, taxonomy, similar=similar, history=history
            ),
        }
    ]
    content.extend(_image_part(u) for u in urls)
    try:
        body = _request_json(
            client or _create_client(),
            event=event,
            model=settings.vision_model,
            instructions=prompting.build_smart_instructions(has_receipts=has_receipts),
            content=content,
            text_cfg={"format": prompting.build_smart_response_format()},
        )
        suggestion = SmartAnalysis.model_validate(body)
    except (ValidationError, ValueError) as e:
        _logger.warning("%s:unusable_output error=%s", event, e.__class__.__name__)
        return _unavailable(event, e)
    except Exception as e:  # noqa: BLE001 - network/SDK failures after retries
        return _unavailable(event, e)

    if suggestion.type == "split" and not has_receipts:
        _logger.warning("%s:split_without_receipt transaction_id=%s", event, tx.id)
        return Err(
            ErrorKind.ANALYSIS_UNAVAILABLE,
            "Split suggested without a receipt; suggestion discarded",
            {"event": event},
        )
    _logger.info("%s:done transaction_id=%s type=%s", event, tx.id, suggestion.type)
    return Ok(suggestion)


__all__ = [
    "ALLOWED_IMAGE_TYPES",
    "MAX_IMAGE_BYTES",
    "analyze_receipt_image",
    "check_receipt_upload",
    "resolve_line_items",
    "suggest_for_transaction",
]
