# Overview: Line and document money arithmetic shared by bills, purchases, returns and edits.

"""
All amounts are Decimal, quantized to 2 places half-up at each stored field.

LINE:
    subtotal = unit_price * quantity
    gst      = (subtotal - discount) * gst_rate / 100   (0 when GST is off)
    total    = subtotal - discount + gst

DOCUMENT:
    discount = explicit amount, else discount_percent of subtotal
    total    = subtotal - discount + gst + round_off   (exactly)

round_off is whatever the rounding policy moves the total by.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Iterable

from ..errors import ValidationError
from ..numeric import ZERO, money, to_decimal


HUNDRED = Decimal("100")


def _nearest_unit(amount: Decimal) -> Decimal:
    return amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def _two_decimals(amount: Decimal) -> Decimal:
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _no_rounding(amount: Decimal) -> Decimal:
    return amount


ROUNDING_POLICIES: dict[str, Callable[[Decimal], Decimal]] = {
    "nearest_unit": _nearest_unit,
    "two_decimals": _two_decimals,
    "none": _no_rounding,
}


def get_rounding_policy(name: str | None) -> Callable[[Decimal], Decimal]:
    try:
        return ROUNDING_POLICIES[name or "nearest_unit"]
    except KeyError:
        raise ValidationError(f"Unknown rounding policy: {name}")


@dataclass(frozen=True)
class LinePrice:
    subtotal: Decimal
    discount: Decimal
    gst: Decimal
    total: Decimal


@dataclass(frozen=True)
class DocumentTotals:
    subtotal: Decimal
    discount_amount: Decimal
    discount_percent: Decimal
    gst_amount: Decimal
    round_off: Decimal
    total_amount: Decimal

    def as_columns(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "discount_percent": self.discount_percent,
            "gst_amount": self.gst_amount,
            "round_off": self.round_off,
            "total_amount": self.total_amount,
        }


def price_line(
    unit_price,
    quantity,
    gst_rate,
    discount_amount=ZERO,
    include_gst: bool = True,
) -> LinePrice:
    unit_price = to_decimal(unit_price, ZERO)
    quantity = to_decimal(quantity, ZERO)
    gst_rate = to_decimal(gst_rate, ZERO)
    discount = money(to_decimal(discount_amount, ZERO))

    if unit_price < ZERO:
        raise ValidationError("unit_price cannot be negative")
    if gst_rate < ZERO or gst_rate > HUNDRED:
        raise ValidationError("gst_rate must be between 0 and 100")

    subtotal = money(unit_price * quantity)
    if discount < ZERO or discount > subtotal:
        raise ValidationError(
            "Line discount must be between 0 and the line subtotal",
            details={"subtotal": str(subtotal), "discount_amount": str(discount)},
        )

    gst = money((subtotal - discount) * gst_rate / HUNDRED) if include_gst else ZERO
    return LinePrice(
        subtotal=subtotal,
        discount=discount,
        gst=money(gst),
        total=money(subtotal - discount + gst),
    )


def compute_document_totals(
    lines: Iterable[LinePrice],
    discount_amount=None,
    discount_percent=None,
    rounding: str | None = "nearest_unit",
) -> DocumentTotals:
    """
    Aggregate priced lines and apply the document discount and rounding.

    An explicit non-zero discount_amount wins over discount_percent.
    """
    round_fn = get_rounding_policy(rounding)

    subtotal = ZERO
    gst = ZERO
    for line in lines:
        subtotal += line.subtotal
        gst += line.gst
    subtotal = money(subtotal)
    gst = money(gst)

    amount = to_decimal(discount_amount, ZERO)
    percent = to_decimal(discount_percent, ZERO)
    if percent < ZERO or percent > HUNDRED:
        raise ValidationError("discount_percent must be between 0 and 100")

    if amount:
        discount = money(amount)
    else:
        discount = money(subtotal * percent / HUNDRED)
    if discount < ZERO or discount > subtotal:
        raise ValidationError(
            "Discount must be between 0 and the subtotal",
            details={"subtotal": str(subtotal), "discount_amount": str(discount)},
        )

    before_round = subtotal - discount + gst
    total = round_fn(before_round)
    return DocumentTotals(
        subtotal=subtotal,
        discount_amount=discount,
        discount_percent=money(percent),
        gst_amount=gst,
        round_off=money(total - before_round),
        total_amount=money(total),
    )
