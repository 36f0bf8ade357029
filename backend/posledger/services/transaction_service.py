# Overview: Service-layer operations for bills and purchases; encapsulates business logic and database work.

"""
Transaction Engine

Creates and cancels bills (sales) and purchases. Every operation is a
TransactionScript: an ordered list of named steps sharing one rollback
boundary. Any exception in any step (insufficient stock, unknown product,
number collision) rolls back every row the script touched.

CREATE:
    allocate_number -> price_lines -> insert_document -> post_stock

CANCEL:
    load_document -> check_cancellable -> reverse_stock -> mark_cancelled

Only completed documents touch stock. Draft purchases are stored without any
ledger entries.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from flask import current_app

from ..context import ActorContext
from ..extensions import db
from ..errors import EditabilityError, InsufficientStockError, NotFoundError, ValidationError
from ..models import (
    DOCUMENT_STATUS_CANCELLED,
    DOCUMENT_STATUS_COMPLETED,
    DOCUMENT_STATUS_DRAFT,
    Bill,
    BillItem,
    Product,
    Purchase,
    PurchaseItem,
)
from ..numeric import ZERO, qty
from ..time_utils import utcnow
from ..validation import LineInput, parse_header, parse_line_items, parse_text
from .concurrency import TransactionScript, run_script
from .document_service import (
    LABELS,
    get_transaction_model,
    insert_document,
    list_documents,
    load_document,
    parse_listing_filters,
    returned_quantities,
)
from .numbering_service import allocate_document_number
from .pricing import DocumentTotals, LinePrice, compute_document_totals, price_line
from .stock_ledger_service import (
    STOCK_DIRECTION,
    TX_PURCHASE,
    TX_SALE,
    post_stock,
    reverse_document_stock,
    tenant_allows_negative_stock,
)


ITEM_MODELS = {
    "bill": BillItem,
    "purchase": PurchaseItem,
}

POSTING_TYPES = {
    "bill": TX_SALE,
    "purchase": TX_PURCHASE,
}

PURCHASE_STATUSES = {DOCUMENT_STATUS_COMPLETED, DOCUMENT_STATUS_DRAFT}


# =============================================================================
# Shared building blocks (also used by the edit engine)
# =============================================================================

def load_line_products(tenant_id: int, lines: list[LineInput]) -> dict[int, Product]:
    """Active products of this tenant referenced by the lines. Raises NotFoundError."""
    product_ids = {line.product_id for line in lines}
    products = {
        p.id: p
        for p in db.session.query(Product)
        .filter(Product.tenant_id == tenant_id, Product.id.in_(product_ids))
        .all()
    }
    for product_id in sorted(product_ids):
        product = products.get(product_id)
        if product is None or not product.is_active:
            raise NotFoundError(
                f"Product {product_id} not found",
                details={"product_id": product_id},
            )
    return products


def check_available_stock(tenant_id: int, lines: list[LineInput], products: dict[int, Product]) -> None:
    """Bill pre-check: requested quantity per product (aggregated) vs on hand."""
    if tenant_allows_negative_stock(tenant_id):
        return

    requested: dict[int, Decimal] = defaultdict(lambda: ZERO)
    for line in lines:
        requested[line.product_id] += line.quantity

    for product_id, quantity in requested.items():
        product = products[product_id]
        available = qty(product.stock_quantity or ZERO)
        if available < quantity:
            raise InsufficientStockError(product.id, product.name, available, qty(quantity))


def price_document_lines(
    document_type: str,
    lines: list[LineInput],
    products: dict[int, Product],
    include_gst: bool,
) -> list[tuple[LineInput, dict, LinePrice]]:
    """
    Snapshot product data and price every line.

    Bills sell at the product's selling price and GST rate. Purchases default
    to cost price and GST rate, both overridable per line.
    """
    priced = []
    for line in lines:
        product = products[line.product_id]
        if document_type == "bill":
            unit_price = product.selling_price
            gst_rate = product.gst_rate
        else:
            unit_price = line.unit_price if line.unit_price is not None else product.cost_price
            gst_rate = line.gst_rate if line.gst_rate is not None else product.gst_rate

        price = price_line(unit_price, line.quantity, gst_rate, line.discount_amount, include_gst)
        fields = {
            "product_id": product.id,
            "product_name": product.name,
            "sku": product.sku,
            "unit": product.unit,
            "quantity": qty(line.quantity),
            "unit_price": unit_price,
            "discount_amount": price.discount,
            "gst_rate": gst_rate,
            "gst_amount": price.gst,
            "line_total": price.total,
        }
        priced.append((line, fields, price))
    return priced


def compute_totals(priced: list, header: dict) -> DocumentTotals:
    return compute_document_totals(
        [price for _, _, price in priced],
        discount_amount=header.get("discount_amount"),
        discount_percent=header.get("discount_percent"),
        rounding=current_app.config.get("ROUNDING_POLICY", "nearest_unit"),
    )


def posting_note(document) -> str:
    if document.document_type == "bill":
        return f"Sale - Bill {document.document_number}"
    return f"Purchase {document.document_number}"


def post_document_stock(document, *, actor_id: int | None, returned: dict | None = None) -> None:
    """
    Post every line of a completed document to the stock ledger.

    `returned` maps line item id to quantity already moved back by completed
    returns; only the remainder is posted.
    """
    direction = STOCK_DIRECTION[document.document_type]
    allow_negative = direction < 0 and tenant_allows_negative_stock(document.tenant_id)
    returned = returned or {}
    for item in document.items:
        net = qty(item.quantity) - qty(returned.get(item.id, ZERO))
        if net <= ZERO:
            continue
        post_stock(
            tenant_id=document.tenant_id,
            product_id=item.product_id,
            delta=direction * net,
            transaction_type=POSTING_TYPES[document.document_type],
            reference_id=document.id,
            reference_type=document.document_type,
            note=posting_note(document),
            actor_id=actor_id,
            allow_negative=allow_negative,
        )


# =============================================================================
# Create
# =============================================================================

def _allocate_number(state: dict) -> None:
    ctx = state["ctx"]
    state["document_number"] = allocate_document_number(
        tenant_id=ctx.tenant_id,
        document_type=state["document_type"],
        model=get_transaction_model(state["document_type"]),
    )


def _price_lines(state: dict) -> None:
    ctx = state["ctx"]
    lines = state["lines"]
    products = load_line_products(ctx.tenant_id, lines)
    if state["document_type"] == "bill":
        check_available_stock(ctx.tenant_id, lines, products)
    state["priced"] = price_document_lines(
        state["document_type"], lines, products, state["header"]["include_gst"]
    )
    state["totals"] = compute_totals(state["priced"], state["header"])


def _insert_document(state: dict) -> None:
    ctx = state["ctx"]
    header = state["header"]
    document_type = state["document_type"]
    model = get_transaction_model(document_type)
    item_model = ITEM_MODELS[document_type]
    now = utcnow()

    document = model(
        tenant_id=ctx.tenant_id,
        document_number=state["document_number"],
        include_gst=header["include_gst"],
        payment_mode=header["payment_mode"],
        payment_details=header["payment_details"],
        notes=header["notes"],
        status=state["status"],
        created_by=ctx.actor_id,
        created_at=now,
        updated_at=now,
        **state["totals"].as_columns(),
    )
    for field in model.counterparty_fields:
        setattr(document, field, header.get(field))
    for _, fields, _ in state["priced"]:
        document.items.append(item_model(created_at=now, **fields))

    insert_document(document)
    state["document"] = document


def _post_stock(state: dict) -> None:
    document = state["document"]
    if document.status == DOCUMENT_STATUS_COMPLETED:
        post_document_stock(document, actor_id=state["ctx"].actor_id)


def _creation_script(document_type: str) -> TransactionScript:
    return (
        TransactionScript(f"create_{document_type}")
        .step("allocate_number", _allocate_number)
        .step("price_lines", _price_lines)
        .step("insert_document", _insert_document)
        .step("post_stock", _post_stock)
    )


CREATE_BILL = _creation_script("bill")
CREATE_PURCHASE = _creation_script("purchase")


def create_bill(ctx: ActorContext, payload: dict) -> Bill:
    """
    Create a completed bill and debit stock for every line.

    Payload: items[{product_id, quantity, discount_amount?}], customer_*,
    payment_mode, payment_details, discount_amount | discount_percent,
    include_gst, notes.
    """
    header = parse_header(payload, "bill")
    lines = parse_line_items(payload.get("items"))

    state = run_script(
        CREATE_BILL,
        lambda: {
            "ctx": ctx,
            "document_type": "bill",
            "status": DOCUMENT_STATUS_COMPLETED,
            "header": header,
            "lines": lines,
        },
    )
    bill = state["document"]
    current_app.logger.info(
        "Bill %s created: tenant=%s lines=%d total=%s",
        bill.document_number, ctx.tenant_id, len(bill.items), bill.total_amount,
    )
    return bill


def create_purchase(ctx: ActorContext, payload: dict) -> Purchase:
    """
    Create a purchase. status=completed (default) credits stock; status=draft
    stores the document without touching stock.

    Lines may override unit_price (defaults to cost price) and gst_rate.
    """
    header = parse_header(payload, "purchase")
    lines = parse_line_items(payload.get("items"), allow_price_override=True)
    status = payload.get("status") or DOCUMENT_STATUS_COMPLETED
    if status not in PURCHASE_STATUSES:
        raise ValidationError(f"Invalid purchase status: {status}")

    state = run_script(
        CREATE_PURCHASE,
        lambda: {
            "ctx": ctx,
            "document_type": "purchase",
            "status": status,
            "header": header,
            "lines": lines,
        },
    )
    purchase = state["document"]
    current_app.logger.info(
        "Purchase %s created (%s): tenant=%s lines=%d total=%s",
        purchase.document_number, status, ctx.tenant_id, len(purchase.items), purchase.total_amount,
    )
    return purchase


# =============================================================================
# Cancel
# =============================================================================

def _load_for_cancel(state: dict) -> None:
    ctx = state["ctx"]
    state["document"] = load_document(
        ctx.tenant_id, state["document_type"], state["document_id"], lock=True
    )


def _check_cancellable(state: dict) -> None:
    ctx = state["ctx"]
    document = state["document"]
    label = LABELS[document.document_type]

    if document.status != DOCUMENT_STATUS_COMPLETED:
        raise NotFoundError(
            f"{label} not found or not completed",
            details={"id": document.id, "status": document.status},
        )
    if document.is_locked and not ctx.is_admin:
        raise EditabilityError(
            f"{label} is locked: {document.locked_reason or 'no reason given'}",
            "locked",
            details={"locked_by": document.locked_by},
        )


def _reverse_stock(state: dict) -> None:
    document = state["document"]
    reverse_document_stock(
        document,
        actor_id=state["ctx"].actor_id,
        note=f"Cancelled {document.document_number}",
        returned=returned_quantities(document),
    )


def _mark_cancelled(state: dict) -> None:
    ctx = state["ctx"]
    document = state["document"]
    now = utcnow()
    document.status = DOCUMENT_STATUS_CANCELLED
    document.cancel_reason = state["reason"]
    document.cancelled_at = now
    document.cancelled_by = ctx.actor_id
    document.updated_at = now


CANCEL_DOCUMENT = (
    TransactionScript("cancel_document")
    .step("load_document", _load_for_cancel)
    .step("check_cancellable", _check_cancellable)
    .step("reverse_stock", _reverse_stock)
    .step("mark_cancelled", _mark_cancelled)
)


def _cancel(ctx: ActorContext, document_type: str, document_id: int, reason: str | None):
    reason = parse_text(reason, "reason")
    state = run_script(
        CANCEL_DOCUMENT,
        lambda: {
            "ctx": ctx,
            "document_type": document_type,
            "document_id": document_id,
            "reason": reason,
        },
    )
    document = state["document"]
    current_app.logger.info(
        "%s %s cancelled by actor %s (tenant=%s)",
        LABELS[document_type], document.document_number, ctx.actor_id, ctx.tenant_id,
    )
    return document


def cancel_bill(ctx: ActorContext, bill_id: int, reason: str | None = None) -> Bill:
    """Cancel a completed bill and credit back what was not already returned."""
    return _cancel(ctx, "bill", bill_id, reason)


def cancel_purchase(ctx: ActorContext, purchase_id: int, reason: str | None = None) -> Purchase:
    """Cancel a completed purchase. Fails if the stock has already been sold."""
    return _cancel(ctx, "purchase", purchase_id, reason)


# =============================================================================
# Read
# =============================================================================

def get_bill(ctx: ActorContext, bill_id: int) -> Bill:
    return load_document(ctx.tenant_id, "bill", bill_id)


def get_purchase(ctx: ActorContext, purchase_id: int) -> Purchase:
    return load_document(ctx.tenant_id, "purchase", purchase_id)


def _list(ctx: ActorContext, model, filters: dict):
    return list_documents(
        model,
        tenant_id=ctx.tenant_id,
        status=filters.get("status"),
        payment_mode=filters.get("payment_mode"),
        **parse_listing_filters(filters),
    )


def list_bills(ctx: ActorContext, **filters):
    """(bills, total) newest first. Filters: status, payment_mode, start_date, end_date, page, limit."""
    return _list(ctx, Bill, filters)


def list_purchases(ctx: ActorContext, **filters):
    return _list(ctx, Purchase, filters)
