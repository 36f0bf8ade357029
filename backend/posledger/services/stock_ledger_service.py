# Overview: Service-layer operations for the stock ledger; encapsulates business logic and database work.

"""
Stock Ledger Invariants (authoritative)

- Product.stock_quantity is written ONLY by post_stock(), in the same DB
  transaction as the StockLedgerEntry that records the change.
- Ledger rows are append-only: this module never issues UPDATE or DELETE
  against stock_ledger.
- quantity_after = quantity_before + quantity_change on every row, and per
  product the rows ordered by id form an unbroken chain ending at the
  product's current stock_quantity (checked by verify_ledger()).
- A post that would leave stock below zero raises InsufficientStockError,
  unless the caller explicitly allows it. Purchase-side debits never do.

post_stock() and reverse_document_stock() never commit. They are steps inside
the caller's transaction script.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app

from ..extensions import db
from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import Product, StockLedgerEntry, Tenant
from ..numeric import ZERO, qty, to_decimal
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry


TX_SALE = "sale"
TX_PURCHASE = "purchase"
TX_RETURN = "return"
TX_ADJUSTMENT = "adjustment"

TRANSACTION_TYPES = {TX_SALE, TX_PURCHASE, TX_RETURN, TX_ADJUSTMENT}

# Sign of the stock movement when a document of this type is posted.
STOCK_DIRECTION = {
    "bill": -1,
    "purchase": 1,
    "sales_return": 1,
    "purchase_return": -1,
}


def tenant_allows_negative_stock(tenant_id: int) -> bool:
    flag = db.session.query(Tenant.allow_negative_stock).filter_by(id=tenant_id).scalar()
    return bool(flag)


def get_locked_product(tenant_id: int, product_id: int) -> Product:
    """Load a tenant's product with a row lock. Raises NotFoundError."""
    product = lock_for_update(
        db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id)
    ).populate_existing().first()
    if product is None:
        raise NotFoundError(
            f"Product {product_id} not found",
            details={"product_id": product_id},
        )
    return product


def _append_entry(
    *,
    tenant_id: int,
    product_id: int,
    delta,
    transaction_type: str,
    reference_id: int | None,
    reference_type: str | None,
    note: str | None,
    actor_id: int | None,
    allow_negative: bool,
) -> StockLedgerEntry:
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"Unknown stock transaction type: {transaction_type}")

    delta = qty(to_decimal(delta))
    product = get_locked_product(tenant_id, product_id)

    before = qty(product.stock_quantity or ZERO)
    after = before + delta
    if after < ZERO and not allow_negative:
        raise InsufficientStockError(product.id, product.name, before, -delta)

    product.stock_quantity = after
    entry = StockLedgerEntry(
        tenant_id=tenant_id,
        product_id=product.id,
        transaction_type=transaction_type,
        reference_id=reference_id,
        reference_type=reference_type,
        quantity_change=delta,
        quantity_before=before,
        quantity_after=after,
        notes=note[:255] if note else None,
        created_by=actor_id,
        created_at=utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def post_stock(
    *,
    tenant_id: int,
    product_id: int,
    delta,
    transaction_type: str,
    reference_id: int | None = None,
    reference_type: str | None = None,
    note: str | None = None,
    actor_id: int | None = None,
    allow_negative: bool = False,
) -> Decimal:
    """
    Post one stock movement and return the product's new quantity.

    Locks the product row, computes before/after, writes the product and
    appends exactly one ledger entry. Does not commit.
    """
    entry = _append_entry(
        tenant_id=tenant_id,
        product_id=product_id,
        delta=delta,
        transaction_type=transaction_type,
        reference_id=reference_id,
        reference_type=reference_type,
        note=note,
        actor_id=actor_id,
        allow_negative=allow_negative,
    )
    return entry.quantity_after


def reverse_document_stock(
    document,
    *,
    actor_id: int | None,
    note: str | None = None,
    returned: dict | None = None,
    items=None,
) -> list[Decimal]:
    """
    Undo the stock effect of a posted document, line by line.

    Each line is posted with the negated original delta as a `return` entry
    referencing the same document. `returned` maps line item id to quantity
    already sent back through completed returns; only the remainder is
    reversed, since the returns already moved the rest. `items` overrides the
    document's current lines (objects with id, product_id and quantity).

    Reversals never allow negative stock.
    """
    direction = STOCK_DIRECTION[document.document_type]
    returned = returned or {}
    results = []
    for item in (document.items if items is None else items):
        net = qty(item.quantity) - qty(returned.get(item.id, ZERO))
        if net <= ZERO:
            continue
        results.append(
            post_stock(
                tenant_id=document.tenant_id,
                product_id=item.product_id,
                delta=-direction * net,
                transaction_type=TX_RETURN,
                reference_id=document.id,
                reference_type=document.document_type,
                note=note or f"Reversal of {document.document_number}",
                actor_id=actor_id,
                allow_negative=False,
            )
        )
    return results


def adjust_stock(
    *,
    tenant_id: int,
    product_id: int,
    quantity_change,
    reason: str,
    actor_id: int | None = None,
) -> StockLedgerEntry:
    """
    Manual stock correction (damage, count variance, opening stock).

    Runs as its own transaction. Negative results are rejected unless the
    tenant allows negative stock.
    """
    try:
        delta = to_decimal(quantity_change)
    except ValueError:
        raise ValidationError("quantity_change must be a number")
    if delta is None or delta == ZERO:
        raise ValidationError("quantity_change must be non-zero")
    if not (reason or "").strip():
        raise ValidationError("reason is required for stock adjustments")

    def _op():
        entry = _append_entry(
            tenant_id=tenant_id,
            product_id=product_id,
            delta=delta,
            transaction_type=TX_ADJUSTMENT,
            reference_id=None,
            reference_type=TX_ADJUSTMENT,
            note=reason.strip(),
            actor_id=actor_id,
            allow_negative=tenant_allows_negative_stock(tenant_id),
        )
        db.session.commit()
        return entry

    try:
        entry = run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Stock adjusted: tenant=%s product=%s change=%s after=%s",
        tenant_id, product_id, entry.quantity_change, entry.quantity_after,
    )
    return entry


def list_ledger_entries(
    *,
    tenant_id: int,
    product_id: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    limit: int = 200,
) -> list[StockLedgerEntry]:
    """Ledger rows in write order (oldest first)."""
    q = StockLedgerEntry.query.filter_by(tenant_id=tenant_id)
    if product_id is not None:
        q = q.filter_by(product_id=product_id)
    if reference_type is not None:
        q = q.filter_by(reference_type=reference_type)
    if reference_id is not None:
        q = q.filter_by(reference_id=reference_id)
    return q.order_by(StockLedgerEntry.id.asc()).limit(limit).all()


def verify_ledger(*, tenant_id: int, product_id: int | None = None) -> dict:
    """
    Replay ledger rows per product and report every inconsistency.

    Products with no ledger rows are skipped: their stock predates the ledger
    (catalog-owned opening stock).
    """
    products_q = Product.query.filter_by(tenant_id=tenant_id)
    if product_id is not None:
        products_q = products_q.filter_by(id=product_id)

    problems = []
    checked = 0
    for product in products_q.order_by(Product.id).all():
        entries = (
            StockLedgerEntry.query.filter_by(tenant_id=tenant_id, product_id=product.id)
            .order_by(StockLedgerEntry.id.asc())
            .all()
        )
        if not entries:
            continue
        checked += 1

        previous_after = None
        for entry in entries:
            if entry.quantity_before + entry.quantity_change != entry.quantity_after:
                problems.append({
                    "product_id": product.id,
                    "entry_id": entry.id,
                    "problem": "arithmetic",
                    "expected": str(entry.quantity_before + entry.quantity_change),
                    "actual": str(entry.quantity_after),
                })
            if previous_after is not None and entry.quantity_before != previous_after:
                problems.append({
                    "product_id": product.id,
                    "entry_id": entry.id,
                    "problem": "broken_chain",
                    "expected": str(previous_after),
                    "actual": str(entry.quantity_before),
                })
            previous_after = entry.quantity_after

        if previous_after != qty(product.stock_quantity):
            problems.append({
                "product_id": product.id,
                "entry_id": entries[-1].id,
                "problem": "stock_mismatch",
                "expected": str(previous_after),
                "actual": str(product.stock_quantity),
            })

    if problems:
        current_app.logger.warning(
            "Ledger verification for tenant %s found %d problem(s)", tenant_id, len(problems)
        )
    return {
        "tenant_id": tenant_id,
        "products_checked": checked,
        "ok": not problems,
        "problems": problems,
    }
