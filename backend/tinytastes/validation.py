from __future__ import annotations
from datetime import datetime
from tinytastes.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .models import Order, OrderItem, PAYMENT_STATUSES
from .services.order_lifecycle_service import PUBLIC_STATUSES


# Upper bound for a single restock or order line; guards against typos like 10000
MAX_LINE_QUANTITY = 10_000
MAX_BULK_ITEMS = 500


class ValidationError(ValueError):
    """400-level input problem."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


ORDER_POLICY = ModelValidationPolicy(
    writable_fields={"customer_id", "address_id", "delivery_date"},
    required_on_create={"customer_id"},
)

ORDER_ITEM_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "portion_size_id", "quantity"},
    required_on_create={"product_id", "portion_size_id", "quantity"},
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(name: str, value: Any) -> int:
    """Strict integer parsing: rejects bools, floats, decimals and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _require_json_object(payload) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def parse_order_request(payload) -> tuple[dict, list[dict]]:
    """
    POST /api/orders body -> (header, items).

    {"customer_id": 1, "address_id": 2, "delivery_date": "...Z",
     "items": [{"product_id": 1, "portion_size_id": 1, "quantity": 2}]}
    """
    payload = dict(_require_json_object(payload))
    raw_items = payload.pop("items", None)
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")

    header = validate_payload(model=Order, payload=payload, policy=ORDER_POLICY, partial=False)
    items = [
        validate_payload(model=OrderItem, payload=raw, policy=ORDER_ITEM_POLICY, partial=False)
        for raw in raw_items
    ]
    for item in items:
        enforce_rules_quantity(item["quantity"], field="quantity")
    return header, items


def parse_restock_items(payload) -> list[dict]:
    """
    POST /api/admin/bulk-restock body -> list of item dicts.

    Shape problems fail the whole request with 400; business failures (limits,
    missing entries) are reported per item by the ledger.
    """
    payload = _require_json_object(payload)
    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")
    if len(raw_items) > MAX_BULK_ITEMS:
        raise ValidationError(f"at most {MAX_BULK_ITEMS} items per request")

    items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        unknown = set(raw) - {"product_id", "portion_size_id", "amount", "weekly_limit"}
        if unknown:
            raise ValidationError(f"items[{index}]: field not allowed: {', '.join(sorted(unknown))}")
        for key in ("product_id", "portion_size_id", "amount"):
            if raw.get(key) is None:
                raise ValidationError(f"items[{index}].{key} is required")
        item = {
            "product_id": coerce_int("product_id", raw["product_id"]),
            "portion_size_id": coerce_int("portion_size_id", raw["portion_size_id"]),
            "amount": coerce_int("amount", raw["amount"]),
        }
        enforce_rules_quantity(item["amount"], field=f"items[{index}].amount")
        if raw.get("weekly_limit") is not None:
            weekly_limit = coerce_int("weekly_limit", raw["weekly_limit"])
            if weekly_limit < 0:
                raise ValidationError(f"items[{index}].weekly_limit must be >= 0")
            item["weekly_limit"] = weekly_limit
        items.append(item)
    return items


def parse_order_status_payload(payload) -> tuple[int, str, str | None]:
    payload = _require_json_object(payload)
    if payload.get("order_id") is None:
        raise ValidationError("order_id is required")
    order_id = coerce_int("order_id", payload["order_id"])

    status = str(payload.get("status") or "").strip().upper()
    if status not in PUBLIC_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(PUBLIC_STATUSES)}")

    reason = payload.get("reason")
    if reason is not None:
        reason = str(reason).strip()[:64] or None
    return order_id, status, reason


def parse_payment_status_payload(payload) -> tuple[int, str]:
    payload = _require_json_object(payload)
    if payload.get("order_id") is None:
        raise ValidationError("order_id is required")
    order_id = coerce_int("order_id", payload["order_id"])

    payment_status = str(payload.get("payment_status") or "").strip().upper()
    allowed = [s for s in PAYMENT_STATUSES if s != "PENDING"]
    if payment_status not in allowed:
        raise ValidationError(f"payment_status must be one of: {', '.join(allowed)}")
    return order_id, payment_status


def enforce_rules_quantity(value: int, *, field: str) -> None:
    if value <= 0:
        raise ValidationError(f"{field} must be > 0")
    if value > MAX_LINE_QUANTITY:
        raise ValidationError(f"{field} cannot exceed {MAX_LINE_QUANTITY}")


def parse_availability_args(args) -> tuple[int, int, int]:
    """GET /api/orders/availability query string -> (product_id, portion_size_id, quantity)."""
    values = []
    for key in ("product_id", "portion_size_id"):
        if args.get(key) is None:
            raise ValidationError(f"{key} is required")
        values.append(coerce_int(key, args[key]))
    quantity = coerce_int("quantity", args.get("quantity", "1"))
    enforce_rules_quantity(quantity, field="quantity")
    return values[0], values[1], quantity
