# Overview: Service-layer operations for editing and locking posted documents.

"""
Edit & Lock

EDITABILITY (evaluated fresh on every attempt, inside the editing transaction):

    cancelled                               -> CANCELLED            (terminal)
    is_locked                               -> LOCKED               (until unlocked)
    older than tax_lock_days, not super_admin -> PERIOD_LOCKED
    cashier, older than operator window     -> ROLE_WINDOW_EXPIRED
    otherwise                               -> EDITABLE
                                               (+ returned_items warning when
                                                completed returns exist)

evaluate_editability() is a pure function of (document, actor, now, policy,
returned items). Call sites never branch on raw flags.

EDIT SCRIPT (one rollback boundary):
    load_document -> check_editable -> snapshot -> price_lines
    -> record_history -> replace_lines -> apply_stock -> update_header

STOCK ON EDIT: the old lines are reversed and the new lines posted, credits
before debits. For a bill that is reverse-then-post; for a purchase it is
post-then-reverse. Each product's stock only dips at the very end, so no
intermediate ledger row goes negative when the final quantity is valid.

LINES WITH RETURNS: a line referenced by completed returns is updated in
place (same item id) and may not be removed, change product, or drop below
its returned quantity. All other lines are replaced wholesale.
"""

from __future__ import annotations

from collections import namedtuple
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation

from flask import current_app

from ..context import ActorContext
from ..extensions import db
from ..errors import EditabilityError, NotFoundError, OverReturnError, PermissionDeniedError, ValidationError
from ..models import (
    DOCUMENT_STATUS_CANCELLED,
    DOCUMENT_STATUS_COMPLETED,
    Tenant,
    TransactionEditHistory,
)
from ..numeric import ZERO, dec_str, qty
from ..time_utils import elapsed_since, utcnow
from ..validation import parse_header, parse_line_items, parse_text
from .concurrency import TransactionScript, run_script
from .document_service import LABELS, get_transaction_model, load_document, returned_quantities
from .stock_ledger_service import STOCK_DIRECTION, reverse_document_stock
from .transaction_service import (
    ITEM_MODELS,
    PURCHASE_STATUSES,
    compute_totals,
    load_line_products,
    post_document_stock,
    price_document_lines,
)


EDITABLE = "editable"
LOCKED = "locked"
PERIOD_LOCKED = "period_locked"
ROLE_WINDOW_EXPIRED = "role_window_expired"
CANCELLED = "cancelled"

SNAPSHOT_SCHEMA_VERSION = 1

# Header fields compared in the changes summary, besides counterparty fields
SUMMARY_FIELDS = (
    "discount_amount",
    "discount_percent",
    "payment_mode",
    "notes",
    "include_gst",
    "status",
    "total_amount",
)

# Header fields that keep their stored value when an edit payload omits them,
# besides counterparty fields and the document discount
KEEP_WHEN_ABSENT = ("payment_mode", "payment_details", "include_gst", "notes")

StockLine = namedtuple("StockLine", "id product_id quantity")


@dataclass(frozen=True)
class EditPolicy:
    tax_lock_days: int = 30
    operator_edit_window_hours: int = 24

    @classmethod
    def for_tenant(cls, tenant_id: int) -> "EditPolicy":
        """Application defaults, overridden by the tenant's own columns."""
        config = current_app.config
        tax_lock_days = config.get("TAX_LOCK_DAYS", 30)
        window_hours = config.get("OPERATOR_EDIT_WINDOW_HOURS", 24)

        tenant = db.session.get(Tenant, tenant_id)
        if tenant is not None:
            if tenant.tax_lock_days is not None:
                tax_lock_days = tenant.tax_lock_days
            if tenant.operator_edit_window_hours is not None:
                window_hours = tenant.operator_edit_window_hours
        return cls(tax_lock_days=tax_lock_days, operator_edit_window_hours=window_hours)


@dataclass(frozen=True)
class EditabilityResult:
    state: str
    reason: str | None = None
    returned_items: tuple = ()

    @property
    def can_edit(self) -> bool:
        return self.state == EDITABLE

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "can_edit": self.can_edit,
            "reason": self.reason,
            "has_returns": bool(self.returned_items),
            "returned_items": list(self.returned_items),
        }

    def raise_for_state(self) -> None:
        if not self.can_edit:
            raise EditabilityError(self.reason or "Document cannot be edited", self.state)


def evaluate_editability(
    document,
    actor: ActorContext,
    now: datetime,
    policy: EditPolicy,
    returned_items=(),
) -> EditabilityResult:
    label = LABELS[document.document_type]

    if document.status == DOCUMENT_STATUS_CANCELLED:
        return EditabilityResult(CANCELLED, f"Cannot edit a cancelled {label.lower()}")

    if document.is_locked:
        return EditabilityResult(
            LOCKED, document.locked_reason or f"{label} is locked and cannot be edited"
        )

    # Whole elapsed units: a document is period locked from day tax_lock_days + 1
    age = elapsed_since(document.created_at, now)
    age_days = age.days
    age_hours = int(age.total_seconds() // 3600)

    if age_days > policy.tax_lock_days and not actor.is_privileged:
        return EditabilityResult(
            PERIOD_LOCKED,
            f"{label} is older than {policy.tax_lock_days} days and is locked for GST filing",
        )

    if actor.is_operator and age_hours > policy.operator_edit_window_hours:
        return EditabilityResult(
            ROLE_WINDOW_EXPIRED,
            f"Cashiers can only edit {label.lower()}s within "
            f"{policy.operator_edit_window_hours} hours of creation",
        )

    if returned_items:
        return EditabilityResult(
            EDITABLE,
            f"{label} has {len(returned_items)} returned line(s). Returned lines cannot be "
            "removed or reduced below the returned quantity.",
            tuple(returned_items),
        )

    return EditabilityResult(EDITABLE)


def returned_item_warnings(document, returned: dict) -> list[dict]:
    rows = []
    for item in document.items:
        already = returned.get(item.id, ZERO)
        if already > ZERO:
            rows.append({
                "item_id": item.id,
                "product_id": item.product_id,
                "product_name": item.product_name,
                "quantity": str(qty(item.quantity)),
                "returned_quantity": str(already),
            })
    return rows


def snapshot_document(document) -> dict:
    """Schema-versioned copy of the header and line items, JSON-ready."""
    return {
        "schema_version": SNAPSHOT_SCHEMA_VERSION,
        "document_type": document.document_type,
        "document": document.header_dict(),
        "items": [item.to_dict() for item in document.items],
    }


# =============================================================================
# Changes summary
# =============================================================================

def _normalized(value):
    if isinstance(value, (str, Decimal)):
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return value
    return value


def _group_by_product(rows) -> dict:
    grouped = {}
    for row in rows:
        entry = grouped.setdefault(row["product_id"], {
            "product_id": row["product_id"],
            "product_name": row["product_name"],
            "quantity": ZERO,
            "unit_price": Decimal(str(row["unit_price"])),
        })
        entry["quantity"] += Decimal(str(row["quantity"]))
    return grouped


def build_changes_summary(snapshot: dict, new_header: dict, new_items: list[dict]) -> dict:
    """Changed header fields plus added/removed/modified lines, keyed by product."""
    old = snapshot["document"]
    fields = []
    for field, new_value in new_header.items():
        old_value = old.get(field)
        if _normalized(old_value) != _normalized(new_value):
            fields.append({"field": field, "old": old_value, "new": new_value})

    old_lines = _group_by_product(snapshot["items"])
    new_lines = _group_by_product(new_items)

    added = [
        {"product_id": pid, "product_name": line["product_name"], "quantity": str(line["quantity"])}
        for pid, line in new_lines.items()
        if pid not in old_lines
    ]
    removed = [
        {"product_id": pid, "product_name": line["product_name"], "quantity": str(line["quantity"])}
        for pid, line in old_lines.items()
        if pid not in new_lines
    ]
    modified = []
    for pid, line in new_lines.items():
        before = old_lines.get(pid)
        if before is None:
            continue
        if before["quantity"] != line["quantity"] or before["unit_price"] != line["unit_price"]:
            modified.append({
                "product_id": pid,
                "product_name": line["product_name"],
                "old_quantity": str(before["quantity"]),
                "new_quantity": str(line["quantity"]),
                "old_unit_price": str(before["unit_price"]),
                "new_unit_price": str(line["unit_price"]),
            })

    return {
        "fields": fields,
        "items": {"added": added, "removed": removed, "modified": modified},
    }


# =============================================================================
# Edit script steps
# =============================================================================

def _load_document(state: dict) -> None:
    ctx = state["ctx"]
    state["document"] = load_document(
        ctx.tenant_id, state["document_type"], state["document_id"], lock=True
    )


def _check_editable(state: dict) -> None:
    ctx = state["ctx"]
    document = state["document"]
    returned = returned_quantities(document)
    result = evaluate_editability(
        document,
        ctx,
        utcnow(),
        EditPolicy.for_tenant(ctx.tenant_id),
        returned_item_warnings(document, returned),
    )
    result.raise_for_state()
    state["returned"] = {item_id: q for item_id, q in returned.items() if q > ZERO}


def _snapshot(state: dict) -> None:
    document = state["document"]
    state["snapshot"] = snapshot_document(document)
    state["old_status"] = document.status
    state["old_lines"] = [
        StockLine(item.id, item.product_id, qty(item.quantity)) for item in document.items
    ]


def _check_returned_lines(document, lines, returned: dict) -> None:
    existing = {item.id: item for item in document.items}
    by_item = {}
    for line in lines:
        if line.item_id is None:
            continue
        if line.item_id not in existing:
            raise NotFoundError(
                f"Line item {line.item_id} not found on {document.document_number}",
                details={"item_id": line.item_id},
            )
        if line.item_id in by_item:
            raise ValidationError(f"Line item {line.item_id} appears more than once")
        by_item[line.item_id] = line

    for item_id, already in returned.items():
        original = existing[item_id]
        line = by_item.get(item_id)
        if line is None:
            raise ValidationError(
                f"{original.product_name} has returns and cannot be removed",
                details={"item_id": item_id, "returned_quantity": str(already)},
            )
        if line.product_id != original.product_id:
            raise ValidationError(
                f"{original.product_name} has returns and cannot change product",
                details={"item_id": item_id},
            )
        if qty(line.quantity) < already:
            raise OverReturnError(
                f"Quantity for {original.product_name} cannot be below the returned quantity",
                details={
                    "item_id": item_id,
                    "returned_quantity": str(already),
                    "requested": str(qty(line.quantity)),
                },
            )


def _price_lines(state: dict) -> None:
    ctx = state["ctx"]
    document = state["document"]
    lines = state["lines"]
    returned = state["returned"]

    header = dict(state["header"])
    present = state["present"]
    for field in KEEP_WHEN_ABSENT + tuple(document.counterparty_fields):
        if field not in present:
            header[field] = getattr(document, field)
    if not present & {"discount_amount", "discount_percent"}:
        # A percent discount is re-applied to the new subtotal
        if document.discount_percent:
            header["discount_amount"] = ZERO
            header["discount_percent"] = document.discount_percent
        else:
            header["discount_amount"] = document.discount_amount
            header["discount_percent"] = ZERO

    new_status = document.status
    if document.document_type == "purchase" and state["status"]:
        new_status = state["status"]
    if returned and new_status != DOCUMENT_STATUS_COMPLETED:
        raise ValidationError("A document with returns must stay completed")

    _check_returned_lines(document, lines, returned)
    products = load_line_products(ctx.tenant_id, lines)
    priced = price_document_lines(document.document_type, lines, products, header["include_gst"])

    state["header"] = header
    state["new_status"] = new_status
    state["priced"] = priced
    state["totals"] = compute_totals(priced, header)


def _record_history(state: dict) -> None:
    ctx = state["ctx"]
    document = state["document"]
    totals = state["totals"]
    header = state["header"]

    compared = {field: header.get(field) for field in document.counterparty_fields}
    compared.update({
        "discount_amount": dec_str(totals.discount_amount),
        "discount_percent": dec_str(totals.discount_percent),
        "payment_mode": header["payment_mode"],
        "notes": header["notes"],
        "include_gst": header["include_gst"],
        "status": state["new_status"],
        "total_amount": dec_str(totals.total_amount),
    })
    try:
        summary = build_changes_summary(
            state["snapshot"], compared, [fields for _, fields, _ in state["priced"]]
        )
    except (ArithmeticError, KeyError, TypeError, ValueError):
        current_app.logger.warning(
            "Could not summarize changes for %s %s", document.document_type, document.id, exc_info=True
        )
        summary = None

    history = TransactionEditHistory(
        tenant_id=ctx.tenant_id,
        transaction_type=document.document_type,
        transaction_id=document.id,
        edit_number=(document.edit_count or 0) + 1,
        edited_by=ctx.actor_id,
        edit_reason=state["reason"],
        changes_summary=summary,
        original_data=state["snapshot"],
        created_at=utcnow(),
    )
    db.session.add(history)
    db.session.flush()
    state["history"] = history


def _replace_lines(state: dict) -> None:
    document = state["document"]
    item_model = ITEM_MODELS[document.document_type]
    existing = {item.id: item for item in document.items}
    returned = state["returned"]
    now = utcnow()

    new_items = []
    for line, fields, _ in state["priced"]:
        if line.item_id in returned:
            item = existing[line.item_id]
            for key, value in fields.items():
                setattr(item, key, value)
        else:
            item = item_model(created_at=now, **fields)
        new_items.append(item)

    document.items = new_items
    db.session.flush()


def _apply_stock(state: dict) -> None:
    ctx = state["ctx"]
    document = state["document"]
    label = LABELS[document.document_type]

    def _reverse_old():
        if state["old_status"] == DOCUMENT_STATUS_COMPLETED:
            reverse_document_stock(
                document,
                actor_id=ctx.actor_id,
                note=f"{label} edit reversal - {document.document_number}",
                returned=state["returned"],
                items=state["old_lines"],
            )

    def _post_new():
        if state["new_status"] == DOCUMENT_STATUS_COMPLETED:
            post_document_stock(document, actor_id=ctx.actor_id, returned=state["returned"])

    # Credits first
    if STOCK_DIRECTION[document.document_type] < 0:
        _reverse_old()
        _post_new()
    else:
        _post_new()
        _reverse_old()


def _update_header(state: dict) -> None:
    ctx = state["ctx"]
    document = state["document"]
    header = state["header"]
    now = utcnow()

    for column, value in state["totals"].as_columns().items():
        setattr(document, column, value)
    for field in document.counterparty_fields:
        setattr(document, field, header.get(field))
    document.payment_mode = header["payment_mode"]
    document.payment_details = header["payment_details"]
    document.notes = header["notes"]
    document.include_gst = header["include_gst"]
    document.status = state["new_status"]
    document.edit_count = (document.edit_count or 0) + 1
    document.last_edited_at = now
    document.last_edited_by = ctx.actor_id
    document.updated_at = now


EDIT_DOCUMENT = (
    TransactionScript("edit_document")
    .step("load_document", _load_document)
    .step("check_editable", _check_editable)
    .step("snapshot", _snapshot)
    .step("price_lines", _price_lines)
    .step("record_history", _record_history)
    .step("replace_lines", _replace_lines)
    .step("apply_stock", _apply_stock)
    .step("update_header", _update_header)
)


# =============================================================================
# Public operations
# =============================================================================

def preview_editability(ctx: ActorContext, document_type: str, document_id: int) -> EditabilityResult:
    """Read-only editability check. edit_transaction() re-checks under lock."""
    get_transaction_model(document_type)
    document = load_document(ctx.tenant_id, document_type, document_id)
    returned = returned_quantities(document)
    return evaluate_editability(
        document,
        ctx,
        utcnow(),
        EditPolicy.for_tenant(ctx.tenant_id),
        returned_item_warnings(document, returned),
    )


def edit_transaction(
    ctx: ActorContext,
    document_type: str,
    document_id: int,
    payload: dict,
    reason: str | None = None,
):
    """
    Rewrite a bill or purchase in place.

    Payload is the create payload (items, counterparty, payment, discounts,
    include_gst, notes; purchases may also set status). `items` is always
    required and replaces the lines. Header fields left out of the payload
    keep their stored values; send null to clear one. Lines that carry
    returns must be sent with their `item_id`.
    """
    get_transaction_model(document_type)
    header = parse_header(payload, document_type)
    present = set(header) & set(payload)
    lines = parse_line_items(payload.get("items"), allow_price_override=document_type == "purchase")

    status = None
    if document_type == "purchase" and payload.get("status"):
        status = payload["status"]
        if status not in PURCHASE_STATUSES:
            raise ValidationError(f"Invalid purchase status: {status}")

    reason = parse_text(reason if reason is not None else payload.get("edit_reason"), "edit_reason", max_len=2000)
    if current_app.config.get("REQUIRE_EDIT_REASON", True) and not reason:
        raise ValidationError("Edit reason is required")

    state = run_script(
        EDIT_DOCUMENT,
        lambda: {
            "ctx": ctx,
            "document_type": document_type,
            "document_id": document_id,
            "header": header,
            "present": present,
            "lines": lines,
            "status": status,
            "reason": reason,
        },
    )
    document = state["document"]
    current_app.logger.info(
        "%s %s edited (edit #%d) by actor %s: tenant=%s total=%s",
        LABELS[document_type], document.document_number, state["history"].edit_number,
        ctx.actor_id, ctx.tenant_id, document.total_amount,
    )
    return document


def _require_admin(ctx: ActorContext, action: str, document_type: str) -> None:
    if not ctx.is_admin:
        raise PermissionDeniedError(
            f"Only admins can {action} {LABELS[document_type].lower()}s",
            details={"role": ctx.actor_role},
        )


def _load_for_lock(state: dict) -> None:
    ctx = state["ctx"]
    state["document"] = load_document(
        ctx.tenant_id, state["document_type"], state["document_id"], lock=True
    )


def _set_lock(state: dict) -> None:
    document = state["document"]
    now = utcnow()
    document.is_locked = True
    document.locked_reason = state["reason"]
    document.locked_by = state["ctx"].actor_id
    document.locked_at = now
    document.updated_at = now


def _clear_lock(state: dict) -> None:
    document = state["document"]
    document.is_locked = False
    document.locked_reason = None
    document.locked_by = None
    document.locked_at = None
    document.updated_at = utcnow()


LOCK_DOCUMENT = (
    TransactionScript("lock_document")
    .step("load_document", _load_for_lock)
    .step("set_lock", _set_lock)
)

UNLOCK_DOCUMENT = (
    TransactionScript("unlock_document")
    .step("load_document", _load_for_lock)
    .step("clear_lock", _clear_lock)
)


def lock_document(ctx: ActorContext, document_type: str, document_id: int, reason: str | None = None):
    """Block edits to a document regardless of its age (admin only)."""
    get_transaction_model(document_type)
    _require_admin(ctx, "lock", document_type)
    reason = parse_text(reason, "reason") or "Locked by administrator"

    state = run_script(
        LOCK_DOCUMENT,
        lambda: {"ctx": ctx, "document_type": document_type, "document_id": document_id, "reason": reason},
    )
    document = state["document"]
    current_app.logger.info(
        "%s %s locked by actor %s", LABELS[document_type], document.document_number, ctx.actor_id
    )
    return document


def unlock_document(ctx: ActorContext, document_type: str, document_id: int):
    get_transaction_model(document_type)
    _require_admin(ctx, "unlock", document_type)

    state = run_script(
        UNLOCK_DOCUMENT,
        lambda: {"ctx": ctx, "document_type": document_type, "document_id": document_id},
    )
    document = state["document"]
    current_app.logger.info(
        "%s %s unlocked by actor %s", LABELS[document_type], document.document_number, ctx.actor_id
    )
    return document


def get_edit_history(ctx: ActorContext, document_type: str, document_id: int) -> list[TransactionEditHistory]:
    """Edit history of one document, oldest edit first."""
    get_transaction_model(document_type)
    load_document(ctx.tenant_id, document_type, document_id)
    return (
        db.session.query(TransactionEditHistory)
        .filter_by(tenant_id=ctx.tenant_id, transaction_type=document_type, transaction_id=document_id)
        .order_by(TransactionEditHistory.edit_number.asc())
        .all()
    )
