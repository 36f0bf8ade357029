"""
Request payload parsing for the commerce engine.

Services call these on plain dicts (JSON bodies or CLI input) and get typed,
validated values back, or a ValidationError naming the bad field.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from .errors import ValidationError
from .numeric import ZERO, qty, to_decimal


PAYMENT_MODES = {"cash", "upi", "card", "mixed", "credit"}
REFUND_MODES = {"cash", "upi", "card", "credit"}

# Header fields a client may set on create/edit, per document type.
COUNTERPARTY_FIELDS = {
    "bill": ("customer_name", "customer_phone", "customer_email", "customer_address"),
    "purchase": (
        "supplier_name",
        "supplier_phone",
        "supplier_email",
        "supplier_address",
        "supplier_invoice_number",
    ),
}

MAX_TEXT = 255


@dataclass(frozen=True)
class LineInput:
    product_id: int
    quantity: Decimal
    discount_amount: Decimal = ZERO
    unit_price: Decimal | None = None
    gst_rate: Decimal | None = None
    # Existing line item id (edits of documents with returns)
    item_id: int | None = None


@dataclass(frozen=True)
class ReturnLineInput:
    item_id: int
    quantity: Decimal


def parse_int(value: Any, field: str) -> int:
    # Reject bools and floats; accept plain digit strings
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer")


def parse_optional_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    return parse_int(value, field)


def parse_decimal(value: Any, field: str, *, required: bool = False) -> Decimal | None:
    try:
        result = to_decimal(value)
    except ValueError:
        raise ValidationError(f"{field} must be a number")
    if result is None and required:
        raise ValidationError(f"{field} is required")
    return result


def parse_positive_quantity(value: Any, field: str) -> Decimal:
    # Quantities are stored at 3 places; check the stored value
    quantity = qty(parse_decimal(value, field, required=True))
    if quantity <= ZERO:
        raise ValidationError(f"{field} must be greater than 0")
    return quantity


def parse_text(value: Any, field: str, max_len: int = MAX_TEXT) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if len(value) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters")
    return value or None


def parse_payment_mode(value: Any, default: str = "cash") -> str:
    mode = (value or default)
    if mode not in PAYMENT_MODES:
        raise ValidationError(
            f"Invalid payment mode: {mode}",
            details={"allowed": sorted(PAYMENT_MODES)},
        )
    return mode


def parse_refund_mode(value: Any, default: str = "cash") -> str:
    mode = (value or default)
    if mode not in REFUND_MODES:
        raise ValidationError(
            f"Invalid refund mode: {mode}",
            details={"allowed": sorted(REFUND_MODES)},
        )
    return mode


def parse_line_items(raw: Any, *, allow_price_override: bool = False) -> list[LineInput]:
    """
    Validate the `items` list of a bill/purchase payload.

    At least one line; each line needs product_id and quantity > 0.
    unit_price / gst_rate overrides are honoured only when allowed (purchases).
    """
    if not isinstance(raw, list) or not raw:
        raise ValidationError("At least one item is required")

    lines = []
    for index, item in enumerate(raw):
        field = f"items[{index}]"
        if not isinstance(item, dict):
            raise ValidationError(f"{field} must be an object")
        if item.get("product_id") is None:
            raise ValidationError(f"{field}.product_id is required")

        unit_price = None
        gst_rate = None
        if allow_price_override:
            unit_price = parse_decimal(item.get("unit_price"), f"{field}.unit_price")
            gst_rate = parse_decimal(item.get("gst_rate"), f"{field}.gst_rate")
            if unit_price is not None and unit_price < ZERO:
                raise ValidationError(f"{field}.unit_price cannot be negative")

        discount = parse_decimal(item.get("discount_amount"), f"{field}.discount_amount") or ZERO
        if discount < ZERO:
            raise ValidationError(f"{field}.discount_amount cannot be negative")

        item_id = item.get("item_id")
        lines.append(
            LineInput(
                product_id=parse_int(item["product_id"], f"{field}.product_id"),
                quantity=parse_positive_quantity(item.get("quantity"), f"{field}.quantity"),
                discount_amount=discount,
                unit_price=unit_price,
                gst_rate=gst_rate,
                item_id=parse_int(item_id, f"{field}.item_id") if item_id is not None else None,
            )
        )
    return lines


def parse_return_lines(raw: Any, item_key: str) -> list[ReturnLineInput]:
    """
    Validate the `items` list of a return payload. Each line references an
    original line item by `item_key` (bill_item_id / purchase_item_id).
    """
    if not isinstance(raw, list) or not raw:
        raise ValidationError("At least one item is required")

    lines = []
    seen = set()
    for index, item in enumerate(raw):
        field = f"items[{index}]"
        if not isinstance(item, dict):
            raise ValidationError(f"{field} must be an object")
        if item.get(item_key) is None:
            raise ValidationError(f"{field}.{item_key} is required")
        item_id = parse_int(item[item_key], f"{field}.{item_key}")
        if item_id in seen:
            raise ValidationError(f"{field}.{item_key} appears more than once")
        seen.add(item_id)
        lines.append(
            ReturnLineInput(
                item_id=item_id,
                quantity=parse_positive_quantity(item.get("quantity"), f"{field}.quantity"),
            )
        )
    return lines


def parse_header(payload: dict, document_type: str) -> dict:
    """Counterparty, payment and discount fields of a bill/purchase payload."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    header = {}
    for field in COUNTERPARTY_FIELDS[document_type]:
        max_len = 2000 if field.endswith("_address") else MAX_TEXT
        header[field] = parse_text(payload.get(field), field, max_len=max_len)

    header["payment_mode"] = parse_payment_mode(payload.get("payment_mode"))
    payment_details = payload.get("payment_details")
    if payment_details is not None and not isinstance(payment_details, (dict, list)):
        raise ValidationError("payment_details must be an object")
    header["payment_details"] = payment_details
    header["notes"] = parse_text(payload.get("notes"), "notes", max_len=2000)

    include_gst = payload.get("include_gst", True)
    if not isinstance(include_gst, bool):
        raise ValidationError("include_gst must be a boolean")
    header["include_gst"] = include_gst

    header["discount_amount"] = parse_decimal(payload.get("discount_amount"), "discount_amount") or ZERO
    header["discount_percent"] = parse_decimal(payload.get("discount_percent"), "discount_percent") or ZERO
    if header["discount_amount"] < ZERO or header["discount_percent"] < ZERO:
        raise ValidationError("Discounts cannot be negative")
    return header
