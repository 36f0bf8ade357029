# Overview: Service-layer operations for documents; shared lookups used by every engine.

from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import DocumentNumberConflict, NotFoundError, ValidationError
from ..models import (
    DOCUMENT_STATUS_COMPLETED,
    Bill,
    Purchase,
    PurchaseReturn,
    PurchaseReturnItem,
    SalesReturn,
    SalesReturnItem,
)
from ..numeric import qty
from ..time_utils import is_date_only, parse_iso_datetime
from .concurrency import lock_for_update


# =============================================================================
# Document registry
# =============================================================================

TRANSACTION_MODELS = {
    "bill": Bill,
    "purchase": Purchase,
}

RETURN_MODELS = {
    "sales_return": SalesReturn,
    "purchase_return": PurchaseReturn,
}

# parent type -> (return model, return item model, item fk on return item, parent fk on return)
RETURN_LINKS = {
    "bill": (SalesReturn, SalesReturnItem, "bill_item_id", "bill_id"),
    "purchase": (PurchaseReturn, PurchaseReturnItem, "purchase_item_id", "purchase_id"),
}

LABELS = {
    "bill": "Bill",
    "purchase": "Purchase",
    "sales_return": "Sales return",
    "purchase_return": "Purchase return",
}


def get_transaction_model(document_type: str):
    try:
        return TRANSACTION_MODELS[document_type]
    except KeyError:
        raise ValidationError(f"Unknown document type: {document_type}")


def load_document(tenant_id: int, document_type: str, document_id: int, *, lock: bool = False):
    """
    Tenant-scoped lookup of a bill, purchase or return.

    With lock=True the header row is selected FOR UPDATE and refreshed from
    the database, so checks made on it hold until the transaction ends.
    """
    model = TRANSACTION_MODELS.get(document_type) or RETURN_MODELS.get(document_type)
    if model is None:
        raise ValidationError(f"Unknown document type: {document_type}")

    q = db.session.query(model).filter_by(id=document_id, tenant_id=tenant_id)
    if lock:
        q = lock_for_update(q).populate_existing()
    document = q.first()
    if document is None:
        raise NotFoundError(
            f"{LABELS[document_type]} not found",
            details={"document_type": document_type, "id": document_id},
        )
    return document


def insert_document(document) -> None:
    """
    Add and flush a new document header.

    The (tenant_id, document_number) unique constraint is the final arbiter of
    number uniqueness; hitting it raises DocumentNumberConflict so the whole
    operation is rolled back and re-run with a fresh number.
    """
    db.session.add(document)
    try:
        db.session.flush()
    except IntegrityError as exc:
        message = str(exc.orig).lower()
        if "document_number" in message or "docnum" in message:
            raise DocumentNumberConflict(document.document_number) from exc
        raise


def returned_quantities(document) -> dict[int, Decimal]:
    """Quantity returned per original line item, over completed returns only."""
    return_model, item_model, item_fk, parent_fk = RETURN_LINKS[document.document_type]
    item_col = getattr(item_model, item_fk)

    rows = (
        db.session.query(item_col, func.sum(item_model.quantity))
        .join(return_model, item_model.document)
        .filter(
            return_model.tenant_id == document.tenant_id,
            getattr(return_model, parent_fk) == document.id,
            return_model.status == DOCUMENT_STATUS_COMPLETED,
        )
        .group_by(item_col)
        .all()
    )
    return {item_id: qty(total) for item_id, total in rows if total is not None}


def completed_returns(document) -> list:
    return_model, _, _, parent_fk = RETURN_LINKS[document.document_type]
    return (
        db.session.query(return_model)
        .filter(
            return_model.tenant_id == document.tenant_id,
            getattr(return_model, parent_fk) == document.id,
            return_model.status == DOCUMENT_STATUS_COMPLETED,
        )
        .order_by(return_model.id)
        .all()
    )


def parse_listing_filters(filters: dict) -> dict:
    """
    Query-string filters shared by every listing: start_date, end_date,
    page and limit.

    A date-only end_date covers that whole day; a full timestamp is an
    inclusive upper bound.
    """
    end_raw = filters.get("end_date")
    try:
        start = parse_iso_datetime(filters.get("start_date"))
        end = parse_iso_datetime(end_raw)
    except ValueError:
        raise ValidationError("start_date/end_date must be ISO-8601 dates or datetimes")
    try:
        page = int(filters.get("page") or 1)
        limit = int(filters.get("limit") or 50)
    except (TypeError, ValueError):
        raise ValidationError("page and limit must be integers")

    end_before = None
    if end is not None and is_date_only(end_raw):
        end, end_before = None, end + timedelta(days=1)
    return {"start": start, "end": end, "end_before": end_before, "page": page, "limit": limit}


def list_documents(
    model,
    *,
    tenant_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
    end_before: datetime | None = None,
    page: int = 1,
    limit: int = 50,
    **equals,
) -> tuple[list, int]:
    """
    Newest first, paginated. Returns (documents, total).

    `equals` filters columns by value (status, payment_mode, bill_id, ...);
    None and empty values are ignored.
    """
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1 or limit > 500:
        raise ValidationError("limit must be between 1 and 500")

    q = db.session.query(model).filter(model.tenant_id == tenant_id)
    for column, value in equals.items():
        if value not in (None, ""):
            q = q.filter(getattr(model, column) == value)
    if start:
        q = q.filter(model.created_at >= start)
    if end:
        q = q.filter(model.created_at <= end)
    if end_before:
        q = q.filter(model.created_at < end_before)

    total = q.count()
    documents = (
        q.order_by(model.created_at.desc(), model.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return documents, total
