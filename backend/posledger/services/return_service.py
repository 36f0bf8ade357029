# Overview: Service-layer operations for returns; encapsulates business logic and database work.

"""
Return Engine

Partial returns against completed bills (sales returns, stock comes back in)
and completed purchases (purchase returns, stock goes back to the supplier).

RULES:
- Every return line references one original line item of the parent.
- Cumulative returned quantity per original line, over all completed
  returns, never exceeds the original quantity (OverReturnError otherwise).
- The parent header is locked FOR UPDATE for the whole script, so two
  concurrent returns against the same document are serialized.
- The returned portion carries a proportional share of the line discount:
    discount = line.discount_amount * returned / original
  and GST is recomputed on the returned net amount at the original rate.
- Purchase returns never allow negative stock.
- A violation on any line aborts the whole return.
"""

from __future__ import annotations

from flask import current_app

from ..context import ActorContext
from ..errors import NotFoundError, OverReturnError, ValidationError
from ..models import (
    DOCUMENT_STATUS_COMPLETED,
    PurchaseReturn,
    PurchaseReturnItem,
    SalesReturn,
    SalesReturnItem,
)
from ..numeric import ZERO, money, qty
from ..time_utils import utcnow
from ..validation import (
    parse_decimal,
    parse_int,
    parse_optional_int,
    parse_refund_mode,
    parse_return_lines,
    parse_text,
)
from .concurrency import TransactionScript, run_script
from .document_service import (
    LABELS,
    completed_returns,
    insert_document,
    list_documents,
    load_document,
    parse_listing_filters,
    returned_quantities,
)
from .numbering_service import allocate_document_number
from .pricing import compute_document_totals, price_line
from .stock_ledger_service import STOCK_DIRECTION, TX_RETURN, post_stock


# parent type -> (return type, return model, return item model, item fk, parent fk)
RETURN_KINDS = {
    "bill": ("sales_return", SalesReturn, SalesReturnItem, "bill_item_id", "bill_id"),
    "purchase": ("purchase_return", PurchaseReturn, PurchaseReturnItem, "purchase_item_id", "purchase_id"),
}


def _load_parent(state: dict) -> None:
    ctx = state["ctx"]
    parent = load_document(ctx.tenant_id, state["parent_type"], state["parent_id"], lock=True)
    if parent.status != DOCUMENT_STATUS_COMPLETED:
        raise ValidationError(
            f"Returns can only be created against completed {LABELS[parent.document_type].lower()}s",
            details={"id": parent.id, "status": parent.status},
        )
    state["parent"] = parent


def _allocate_number(state: dict) -> None:
    return_type, return_model, _, _, _ = RETURN_KINDS[state["parent_type"]]
    state["document_number"] = allocate_document_number(
        tenant_id=state["ctx"].tenant_id,
        document_type=return_type,
        model=return_model,
    )


def _check_lines(state: dict) -> None:
    """Over-return guard: requested <= original - already returned, per line."""
    parent = state["parent"]
    items = {item.id: item for item in parent.items}
    already = returned_quantities(parent)

    checked = []
    for line in state["lines"]:
        original = items.get(line.item_id)
        if original is None:
            raise NotFoundError(
                f"Line item {line.item_id} not found on {parent.document_number}",
                details={"item_id": line.item_id},
            )
        returned = already.get(original.id, ZERO)
        returnable = qty(original.quantity) - returned
        if qty(line.quantity) > returnable:
            raise OverReturnError(
                f"Return quantity exceeds returnable quantity for {original.product_name}",
                details={
                    "item_id": original.id,
                    "product_id": original.product_id,
                    "original_quantity": str(qty(original.quantity)),
                    "already_returned": str(returned),
                    "requested": str(qty(line.quantity)),
                    "returnable": str(returnable),
                },
            )
        checked.append((original, qty(line.quantity)))
    state["checked"] = checked


def _price_lines(state: dict) -> None:
    parent = state["parent"]
    priced = []
    for original, quantity in state["checked"]:
        original_qty = qty(original.quantity)
        discount = money(original.discount_amount * quantity / original_qty) if original_qty else ZERO
        price = price_line(original.unit_price, quantity, original.gst_rate, discount, parent.include_gst)
        priced.append((original, quantity, price))

    state["priced"] = priced
    state["totals"] = compute_document_totals(
        [price for _, _, price in priced],
        discount_amount=state["discount_amount"],
        rounding=current_app.config.get("ROUNDING_POLICY", "nearest_unit"),
    )


def _insert_return(state: dict) -> None:
    ctx = state["ctx"]
    parent = state["parent"]
    _, return_model, item_model, item_fk, parent_fk = RETURN_KINDS[state["parent_type"]]
    totals = state["totals"]
    now = utcnow()

    document = return_model(
        tenant_id=ctx.tenant_id,
        document_number=state["document_number"],
        subtotal=totals.subtotal,
        discount_amount=totals.discount_amount,
        gst_amount=totals.gst_amount,
        round_off=totals.round_off,
        total_amount=totals.total_amount,
        return_reason=state["return_reason"],
        refund_mode=state["refund_mode"],
        notes=state["notes"],
        status=DOCUMENT_STATUS_COMPLETED,
        created_by=ctx.actor_id,
        created_at=now,
    )
    setattr(document, parent_fk, parent.id)
    if parent.document_type == "bill":
        document.customer_name = parent.customer_name
        document.customer_phone = parent.customer_phone
    else:
        document.supplier_name = parent.supplier_name

    for original, quantity, price in state["priced"]:
        item = item_model(
            product_id=original.product_id,
            product_name=original.product_name,
            sku=original.sku,
            unit=original.unit,
            quantity=quantity,
            unit_price=original.unit_price,
            discount_amount=price.discount,
            gst_rate=original.gst_rate,
            gst_amount=price.gst,
            line_total=price.total,
            created_at=now,
        )
        setattr(item, item_fk, original.id)
        document.items.append(item)

    insert_document(document)
    state["document"] = document


def _post_stock(state: dict) -> None:
    document = state["document"]
    direction = STOCK_DIRECTION[document.document_type]
    label = "Sales Return" if document.document_type == "sales_return" else "Purchase Return"
    for item in document.items:
        post_stock(
            tenant_id=document.tenant_id,
            product_id=item.product_id,
            delta=direction * qty(item.quantity),
            transaction_type=TX_RETURN,
            reference_id=document.id,
            reference_type=document.document_type,
            note=f"{label} - {document.document_number}",
            actor_id=state["ctx"].actor_id,
            allow_negative=False,
        )


CREATE_RETURN = (
    TransactionScript("create_return")
    .step("load_parent", _load_parent)
    .step("allocate_number", _allocate_number)
    .step("check_lines", _check_lines)
    .step("price_lines", _price_lines)
    .step("insert_return", _insert_return)
    .step("post_stock", _post_stock)
)


def _create_return(ctx: ActorContext, parent_type: str, parent_key: str, item_key: str, payload: dict):
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    if payload.get(parent_key) is None:
        raise ValidationError(f"{parent_key} is required")

    parent_id = parse_int(payload[parent_key], parent_key)
    lines = parse_return_lines(payload.get("items"), item_key)
    discount_amount = parse_decimal(payload.get("discount_amount"), "discount_amount") or ZERO
    if discount_amount < ZERO:
        raise ValidationError("discount_amount cannot be negative")
    return_reason = parse_text(payload.get("return_reason"), "return_reason", max_len=2000)
    refund_mode = parse_refund_mode(payload.get("refund_mode"))
    notes = parse_text(payload.get("notes"), "notes", max_len=2000)

    state = run_script(
        CREATE_RETURN,
        lambda: {
            "ctx": ctx,
            "parent_type": parent_type,
            "parent_id": parent_id,
            "lines": lines,
            "discount_amount": discount_amount,
            "return_reason": return_reason,
            "refund_mode": refund_mode,
            "notes": notes,
        },
    )
    document = state["document"]
    current_app.logger.info(
        "%s %s created against %s: tenant=%s total=%s",
        LABELS[document.document_type], document.document_number,
        state["parent"].document_number, ctx.tenant_id, document.total_amount,
    )
    return document


def create_sales_return(ctx: ActorContext, payload: dict) -> SalesReturn:
    """
    Payload: bill_id, items[{bill_item_id, quantity}], return_reason,
    refund_mode, discount_amount, notes.
    """
    return _create_return(ctx, "bill", "bill_id", "bill_item_id", payload)


def create_purchase_return(ctx: ActorContext, payload: dict) -> PurchaseReturn:
    """Payload: purchase_id, items[{purchase_item_id, quantity}], ... (as sales returns)."""
    return _create_return(ctx, "purchase", "purchase_id", "purchase_item_id", payload)


def get_returnable_quantities(ctx: ActorContext, document_type: str, document_id: int) -> list[dict]:
    """Per original line: sold/bought quantity, returned so far and still returnable."""
    if document_type not in RETURN_KINDS:
        raise ValidationError(f"Unknown document type: {document_type}")
    document = load_document(ctx.tenant_id, document_type, document_id)
    returned = returned_quantities(document)
    rows = []
    for item in document.items:
        already = returned.get(item.id, ZERO)
        rows.append({
            "item_id": item.id,
            "product_id": item.product_id,
            "product_name": item.product_name,
            "quantity": str(qty(item.quantity)),
            "returned": str(already),
            "returnable": str(qty(item.quantity) - already),
        })
    return rows


def get_sales_return(ctx: ActorContext, return_id: int) -> SalesReturn:
    return load_document(ctx.tenant_id, "sales_return", return_id)


def get_purchase_return(ctx: ActorContext, return_id: int) -> PurchaseReturn:
    return load_document(ctx.tenant_id, "purchase_return", return_id)


def list_returns_for_document(ctx: ActorContext, document_type: str, document_id: int) -> list:
    if document_type not in RETURN_KINDS:
        raise ValidationError(f"Unknown document type: {document_type}")
    document = load_document(ctx.tenant_id, document_type, document_id)
    return completed_returns(document)


def _list(ctx: ActorContext, parent_type: str, filters: dict):
    _, return_model, _, _, parent_fk = RETURN_KINDS[parent_type]
    return list_documents(
        return_model,
        tenant_id=ctx.tenant_id,
        status=filters.get("status"),
        **{parent_fk: parse_optional_int(filters.get(parent_fk), parent_fk)},
        **parse_listing_filters(filters),
    )


def list_sales_returns(ctx: ActorContext, **filters):
    """(returns, total) newest first. Filters: bill_id, status, start_date, end_date, page, limit."""
    return _list(ctx, "bill", filters)


def list_purchase_returns(ctx: ActorContext, **filters):
    """As list_sales_returns, filtered by purchase_id instead of bill_id."""
    return _list(ctx, "purchase", filters)
