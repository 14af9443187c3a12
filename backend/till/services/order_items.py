# Overview: Order-line validation and the JSON codec for OrderSession.items.

"""
Order Items Codec

WHY: OrderSession.items is an opaque text blob to the database. Every
write goes through normalize_items + encode_items and every read through
decode_items, so the rest of the code only ever sees a list of dicts.

Wire shape of one line (camelCase, as sent by the till client):
    {"id": "line-1", "variantId": 3, "productId": 1, "name": "Espresso",
     "price": 2.5, "quantity": 2, "effectiveTaxRate": 0.1}
"""

from __future__ import annotations

import json
from typing import Any

from flask import current_app

from ..validation import (
    MAX_ITEMS_PER_SESSION,
    MAX_PRICE,
    ValidationError,
    coerce_int,
    coerce_number,
    coerce_str,
)


ITEM_FIELDS = ("id", "variantId", "productId", "name", "price", "quantity", "effectiveTaxRate")


def _normalize_item(raw: Any, index: int) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError(f"items[{index}] must be an object")

    missing = [f for f in ITEM_FIELDS if f not in raw or raw[f] is None]
    if missing:
        raise ValidationError(f"items[{index}] missing required fields: {', '.join(missing)}")

    prefix = f"items[{index}]"
    line_id = coerce_str(raw["id"], f"{prefix}.id", max_length=64)
    variant_id = coerce_int(raw["variantId"], f"{prefix}.variantId")
    product_id = coerce_int(raw["productId"], f"{prefix}.productId")
    name = coerce_str(raw["name"], f"{prefix}.name", max_length=255)
    price = coerce_number(raw["price"], f"{prefix}.price")
    quantity = coerce_int(raw["quantity"], f"{prefix}.quantity")
    tax_rate = coerce_number(raw["effectiveTaxRate"], f"{prefix}.effectiveTaxRate")

    if price < 0:
        raise ValidationError(f"{prefix}.price must be >= 0")
    if price > MAX_PRICE:
        raise ValidationError(f"{prefix}.price cannot exceed {MAX_PRICE:,.2f}")
    if quantity < 1:
        raise ValidationError(f"{prefix}.quantity must be >= 1")
    if tax_rate < 0:
        raise ValidationError(f"{prefix}.effectiveTaxRate must be >= 0")

    return {
        "id": line_id,
        "variantId": variant_id,
        "productId": product_id,
        "name": name,
        "price": price,
        "quantity": quantity,
        "effectiveTaxRate": tax_rate,
    }


def normalize_items(payload: Any) -> list[dict]:
    """
    Validate and normalize an incoming item list.

    None is treated as an empty cart. Unknown keys on a line are dropped.
    Raises ValidationError naming the offending line and field.
    """
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise ValidationError("items must be an array")
    if len(payload) > MAX_ITEMS_PER_SESSION:
        raise ValidationError(f"items cannot contain more than {MAX_ITEMS_PER_SESSION} lines")

    items = [_normalize_item(raw, i) for i, raw in enumerate(payload)]

    seen: set[str] = set()
    for i, item in enumerate(items):
        if item["id"] in seen:
            raise ValidationError(f"items[{i}].id is duplicated: {item['id']}")
        seen.add(item["id"])

    return items


def encode_items(items: list[dict]) -> str:
    return json.dumps(items, separators=(",", ":"))


def decode_items(raw: Any, *, session_id: str | None = None) -> list[dict]:
    """
    Decode the stored blob back into a list of order lines.

    A blob that does not parse to a list is logged and read as an empty
    cart rather than failing the request.
    """
    if raw is None:
        return []
    if isinstance(raw, list):
        return raw

    try:
        value = json.loads(raw)
    except (TypeError, ValueError) as exc:
        current_app.logger.error(
            "Failed to decode order session items session_id=%s error=%s preview=%r",
            session_id, exc, str(raw)[:100],
        )
        return []

    if not isinstance(value, list):
        current_app.logger.error(
            "Order session items is not a list session_id=%s type=%s",
            session_id, type(value).__name__,
        )
        return []
    return value
