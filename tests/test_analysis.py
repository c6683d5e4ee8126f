from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from receipt_splits import analysis
from receipt_splits.outcome import Err, ErrorKind, Ok
from tests.helpers.fake_store import make_tx
from tests.helpers.openai_stub import OpenAIStub, StatusError

PNG = b"\x89PNG\r\n\x1a\n fake image bytes"

RECEIPT_REPLY = {
    "merchant_name": "Starbucks",
    "total_amount": 5.75,
    "receipt_date": "2024-03-01",
    "line_items": [
        {
            "description": "Latte",
            "amount": 4.5,
            "suggested_category": "Food",
            "suggested_subcategory": "Coffee Shops",
        },
        {
            "description": "Sponge",
            "amount": 1.25,
            "suggested_category": "Housing",
            "suggested_subcategory": None,
        },
    ],
    "confidence": 0.9,
    "reasoning": "Clear print",
}

_real_sleep_backoff = analysis._sleep_backoff


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch):
    monkeypatch.setattr(analysis, "_sleep_backoff", lambda attempt_no: None)


def _analyze(client, taxonomy, settings, data=PNG, content_type="image/png"):
    return analysis.analyze_receipt_image(
        data, content_type, taxonomy=taxonomy, settings=settings, client=client
    )


def test_receipt_extraction_sends_image_and_taxonomy(taxonomy, settings):
    client = OpenAIStub(RECEIPT_REPLY)

    res = _analyze(client, taxonomy, settings)

    assert isinstance(res, Ok)
    assert res.value.merchant_name == "Starbucks"
    assert res.value.total_amount == Decimal("5.75")
    assert res.value.receipt_date == dt.date(2024, 3, 1)
    assert [i.description for i in res.value.line_items] == ["Latte", "Sponge"]

    call = client.calls[0]
    assert call["model"] == settings.vision_model
    assert call["text"]["format"]["name"] == "receipt_analysis"
    text_part, image_part = client.input_parts(0)
    assert "Coffee Shops" in text_part["text"]
    assert image_part["type"] == "input_image"
    assert image_part["image_url"].startswith("data:image/png;base64,")


def test_resolve_line_items_attaches_codes(taxonomy, settings):
    res = _analyze(OpenAIStub(RECEIPT_REPLY), taxonomy, settings)
    assert isinstance(res, Ok)

    resolved = analysis.resolve_line_items(res.value, taxonomy)

    assert [(i.category_id, i.subcategory_id) for i in resolved.line_items] == [
        ("food", "food_coffee"),
        (None, None),
    ]


def test_rate_limit_is_retried(taxonomy, settings):
    client = OpenAIStub(StatusError(429), RECEIPT_REPLY)

    res = _analyze(client, taxonomy, settings)

    assert isinstance(res, Ok)
    assert len(client.calls) == 2


def test_server_errors_give_up_after_three_attempts(taxonomy, settings):
    client = OpenAIStub(StatusError(503))

    res = _analyze(client, taxonomy, settings)

    assert isinstance(res, Err)
    assert res.kind is ErrorKind.ANALYSIS_UNAVAILABLE
    assert res.detail == "Receipt analysis is unavailable"
    assert len(client.calls) == 3


def test_client_errors_are_not_retried(taxonomy, settings):
    client = OpenAIStub(StatusError(400), RECEIPT_REPLY)

    res = _analyze(client, taxonomy, settings)

    assert isinstance(res, Err)
    assert len(client.calls) == 1


def test_malformed_output_is_not_retried(taxonomy, settings):
    client = OpenAIStub("{not json", RECEIPT_REPLY)

    res = _analyze(client, taxonomy, settings)

    assert isinstance(res, Err)
    assert res.kind is ErrorKind.ANALYSIS_UNAVAILABLE
    assert len(client.calls) == 1


def test_empty_output_means_no_suggestions(taxonomy, settings):
    res = _analyze(OpenAIStub(""), taxonomy, settings)

    assert isinstance(res, Err)
    assert res.detail == "No suggestions available"


def test_schema_violation_is_unavailable(taxonomy, settings):
    bad = dict(RECEIPT_REPLY, confidence=7)

    res = _analyze(OpenAIStub(bad), taxonomy, settings)

    assert isinstance(res, Err)
    assert res.kind is ErrorKind.ANALYSIS_UNAVAILABLE


def test_blank_receipt_date_is_tolerated(taxonomy, settings):
    res = _analyze(OpenAIStub(dict(RECEIPT_REPLY, receipt_date="")), taxonomy, settings)

    assert isinstance(res, Ok)
    assert res.value.receipt_date is None


def test_default_client_is_created_lazily(monkeypatch, taxonomy, settings):
    stub = OpenAIStub(RECEIPT_REPLY)
    monkeypatch.setattr(analysis, "OpenAI", lambda: stub)

    res = analysis.analyze_receipt_image(PNG, "image/png", taxonomy=taxonomy, settings=settings)

    assert isinstance(res, Ok)
    assert len(stub.calls) == 1


@pytest.mark.parametrize(
    ("data", "content_type", "detail"),
    [
        (PNG, "application/pdf", "Invalid file type. Only JPEG, PNG, and WebP images are supported."),
        (PNG, None, "Invalid file type. Only JPEG, PNG, and WebP images are supported."),
        (b"", "image/jpeg", "Empty file upload"),
        (b"x" * (analysis.MAX_IMAGE_BYTES + 1), "image/webp", "File too large. Maximum size is 10MB."),
    ],
)
def test_upload_checks(data, content_type, detail):
    err = analysis.check_receipt_upload(data, content_type)

    assert isinstance(err, Err)
    assert err.kind is ErrorKind.INVALID_INPUT
    assert err.detail == detail


def test_upload_check_accepts_content_type_parameters():
    assert analysis.check_receipt_upload(PNG, "image/JPEG; charset=binary") is None


def test_invalid_upload_never_reaches_the_model(taxonomy, settings):
    client = OpenAIStub(RECEIPT_REPLY)

    res = _analyze(client, taxonomy, settings, content_type="text/plain")

    assert isinstance(res, Err)
    assert client.calls == []


def test_backoff_follows_schedule_with_bounded_jitter(monkeypatch):
    sleeps: list[float] = []
    monkeypatch.setattr(analysis.time, "sleep", sleeps.append)
    monkeypatch.setattr(analysis.random, "uniform", lambda lo, hi: hi)

    _real_sleep_backoff(1)
    _real_sleep_backoff(2)
    _real_sleep_backoff(5)

    assert sleeps == pytest.approx([0.6, 2.4, 2.4])


# ---- smart analysis ---------------------------------------------------------


SPLIT_REPLY = {
    "type": "split",
    "reasoning": "Groceries and cleaning supplies",
    "confidence": 0.8,
    "splits": [
        {
            "category_name": "Food",
            "subcategory_name": "Groceries",
            "amount": 20,
            "items_summary": "milk",
        },
        {
            "category_name": "Household",
            "subcategory_name": None,
            "amount": 22,
            "items_summary": "soap",
        },
    ],
    "category_name": None,
    "subcategory_name": None,
}


def test_smart_analysis_attaches_receipt_images(taxonomy, settings):
    tx = make_tx("t1", amount="-42.00", name="TARGET", files=("https://files.example/r1.jpg",))
    client = OpenAIStub(SPLIT_REPLY)

    res = analysis.suggest_for_transaction(tx, taxonomy=taxonomy, settings=settings, client=client)

    assert isinstance(res, Ok)
    assert res.value.type == "split"
    assert [s.amount for s in res.value.splits] == [Decimal("20.00"), Decimal("22.00")]
    parts = client.input_parts(0)
    assert "Total: $42.00 (expense)" in parts[0]["text"]
    assert parts[1]["image_url"] == "https://files.example/r1.jpg"
    assert "Receipt images are attached" in client.calls[0]["instructions"]


def test_smart_split_without_receipt_is_discarded(taxonomy, settings):
    tx = make_tx("t1", amount="-42.00")
    client = OpenAIStub(SPLIT_REPLY)

    res = analysis.suggest_for_transaction(tx, taxonomy=taxonomy, settings=settings, client=client)

    assert isinstance(res, Err)
    assert res.kind is ErrorKind.ANALYSIS_UNAVAILABLE
    assert "never suggest a split" in client.calls[0]["instructions"]


def test_smart_recategorize_without_receipt_is_allowed(taxonomy, settings):
    tx = make_tx("t1", amount="-6.00", name="STARBUCKS", category="shopping")
    reply = dict(
        SPLIT_REPLY,
        type="recategorize",
        splits=[],
        category_name="Food",
        subcategory_name="Coffee Shops",
    )

    client = OpenAIStub(reply)

    res = analysis.suggest_for_transaction(tx, taxonomy=taxonomy, settings=settings, client=client)

    assert isinstance(res, Ok)
    assert res.value.category_name == "Food"
    assert "Current category: Shopping" in client.input_parts(0)[0]["text"]
    assert len(client.input_parts(0)) == 1


def test_smart_analysis_unknown_type_is_unavailable(taxonomy, settings):
    tx = make_tx("t1")
    reply = dict(SPLIT_REPLY, type="merge")

    res = analysis.suggest_for_transaction(
        tx, taxonomy=taxonomy, settings=settings, client=OpenAIStub(reply)
    )

    assert isinstance(res, Err)
    assert res.kind is ErrorKind.ANALYSIS_UNAVAILABLE


def test_smart_prompt_lists_past_transactions_or_placeholders(taxonomy, settings):
    tx = make_tx("t1", amount="-6.00", name="STARBUCKS #12", merchant_name="Starbucks")
    past = make_tx(
        "p1",
        amount="-4.50",
        name="STARBUCKS #99",
        merchant_name="Starbucks",
        category="food",
        subcategory="food_coffee",
    )
    client = OpenAIStub(dict(SPLIT_REPLY, type="confirm", splits=[]))

    analysis.suggest_for_transaction(
        tx, taxonomy=taxonomy, settings=settings, client=client, similar=[past], history=[past]
    )
    analysis.suggest_for_transaction(tx, taxonomy=taxonomy, settings=settings, client=client)

    with_rows = client.input_parts(0)[0]["text"]
    assert '  - "STARBUCKS #99" | $4.50 | Food > Coffee Shops' in with_rows
    assert '  - "Starbucks" | $4.50 | Food > Coffee Shops' in with_rows
    empty = client.input_parts(1)[0]["text"]
    assert "  No similar transactions found" in empty
    assert "  No recent history" in empty
