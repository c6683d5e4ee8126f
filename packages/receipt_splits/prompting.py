"""Prompt construction and strict response formats for the vision model.

Two tasks are supported:

- receipt extraction: merchant, total, date and line items with suggested
  category names, from an uploaded receipt image;
- smart analysis: decide whether a stored transaction should be split,
  recategorized, or left as is, using its attached receipts when present.

Category context is rendered from the taxonomy by display name because the
split validator resolves names, not codes.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

from .categories import Taxonomy
from .models import TransactionView


def render_taxonomy(taxonomy: Taxonomy) -> str:
    """Render the two-level taxonomy as an indented list of display names."""

    lines: list[str] = ["Categories (two levels):"]
    for parent in taxonomy.categories():
        lines.append(f"  • {parent.display_name}")
        for child in taxonomy.children_of(parent.code):
            lines.append(f"    - {child.display_name}")
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Receipt extraction
# ---------------------------------------------------------------------------


def build_receipt_instructions() -> str:
    return (
        "You extract structured data from photographed or scanned receipts. Read every "
        "line item with its final price (after item-level discounts). Suggest a category "
        "for each item using only names from the provided category list; use null when "
        "nothing fits. Never invent categories. Output JSON only that conforms to the "
        "specified schema."
    )


def build_receipt_user_text(taxonomy: Taxonomy) -> str:
    return (
        "Extract the merchant name, the receipt total, the purchase date (YYYY-MM-DD, "
        "or null when not printed) and the line items from the attached receipt.\n"
        "Allocate tax, tips and fees proportionally across the items they apply to so "
        "that the line items sum to the total.\n"
        "Report confidence as a number between 0 and 1.\n\n" + render_taxonomy(taxonomy)
    )


def build_receipt_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    return {
        "type": "json_schema",
        "name": "receipt_analysis",
        "schema": {
            "type": "object",
            "properties": {
                "merchant_name": {"type": ["string", "null"]},
                "total_amount": {"type": ["number", "null"]},
                "receipt_date": {"type": ["string", "null"]},
                "line_items": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "description": {"type": "string"},
                            "amount": {"type": "number"},
                            "suggested_category": {"type": ["string", "null"]},
                            "suggested_subcategory": {"type": ["string", "null"]},
                        },
                        "required": [
                            "description",
                            "amount",
                            "suggested_category",
                            "suggested_subcategory",
                        ],
                        "additionalProperties": False,
                    },
                },
                "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                "reasoning": {"type": "string"},
            },
            "required": [
                "merchant_name",
                "total_amount",
                "receipt_date",
                "line_items",
                "confidence",
                "reasoning",
            ],
            "additionalProperties": False,
        },
        "strict": True,
    }


# ---------------------------------------------------------------------------
# Smart analysis
# ---------------------------------------------------------------------------


def build_smart_instructions(*, has_receipts: bool) -> str:
    base = (
        "You review a single ledger transaction and recommend one action: 'split' when "
        "the purchase spans two or more distinct categories, 'recategorize' when one "
        "other category fits clearly better than the current one, or 'confirm' when the "
        "current category is appropriate. Be conservative. Use only names from the "
        "provided category list. Follow the user's past categorization patterns shown in "
        "the similar transactions and recent history when they apply. Output JSON only "
        "that conforms to the specified schema."
    )
    if has_receipts:
        return base + (
            " Receipt images are attached: group items by category, sum each group, and "
            "make the groups add up exactly to the transaction total. Never return a split "
            "with fewer than two groups."
        )
    return base + " No receipt is attached: never suggest a split."


def build_smart_user_text(
    tx: TransactionView,
    taxonomy: Taxonomy,
    *,
    similar: Sequence[TransactionView] = (),
    history: Sequence[TransactionView] = (),
) -> str:
    total = abs(tx.amount)
    kind = "expense" if tx.amount < 0 else "income"
    current = taxonomy.display_name(tx.category) or "None (uncategorized)"
    sub = taxonomy.display_name(tx.subcategory)
    if sub:
        current = f"{current} > {sub}"

    lines = [
        "Transaction:",
        f"  Name: {tx.name}",
        f"  Merchant: {tx.merchant_name or 'N/A'}",
        f"  Total: ${_money(total)} ({kind})",
        f"  Date: {tx.date.isoformat()}",
        f"  Notes: {tx.notes or 'N/A'}",
        f"  Current category: {current}",
        "",
        render_taxonomy(taxonomy),
        "Similar transactions (same merchant or description):",
        *(
            [_past_line(t.name, t, taxonomy) for t in similar]
            or ["  No similar transactions found"]
        ),
        "",
        "Recent categorization history (newest first):",
        *(
            [_past_line(t.merchant_name or t.name, t, taxonomy) for t in history]
            or ["  No recent history"]
        ),
    ]
    return "\n".join(lines) + "\n"


def _past_line(label: str, t: TransactionView, taxonomy: Taxonomy) -> str:
    category = taxonomy.display_name(t.category) or "N/A"
    sub = taxonomy.display_name(t.subcategory)
    if sub:
        category = f"{category} > {sub}"
    return f'  - "{label}" | ${_money(abs(t.amount))} | {category}'


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


def build_smart_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    """Strict schema for the smart-analysis decision.

    Strict mode forbids ``oneOf`` at the top level, so the three outcomes share
    one flat object keyed by ``type``; fields that do not apply are null/empty.
    """

    return {
        "type": "json_schema",
        "name": "smart_analysis",
        "schema": {
            "type": "object",
            "properties": {
                "type": {"type": "string", "enum": ["split", "recategorize", "confirm"]},
                "reasoning": {"type": "string"},
                "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                "splits": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "category_name": {"type": "string"},
                            "subcategory_name": {"type": ["string", "null"]},
                            "amount": {"type": "number"},
                            "items_summary": {"type": "string"},
                        },
                        "required": [
                            "category_name",
                            "subcategory_name",
                            "amount",
                            "items_summary",
                        ],
                        "additionalProperties": False,
                    },
                },
                "category_name": {"type": ["string", "null"]},
                "subcategory_name": {"type": ["string", "null"]},
            },
            "required": [
                "type",
                "reasoning",
                "confidence",
                "splits",
                "category_name",
                "subcategory_name",
            ],
            "additionalProperties": False,
        },
        "strict": True,
    }
