from __future__ import annotations

from sqlalchemy.orm import declared_attr

from ..extensions import db
from ..numeric import dec_str
from ..time_utils import to_utc_z


DOCUMENT_STATUS_COMPLETED = "completed"
DOCUMENT_STATUS_DRAFT = "draft"
DOCUMENT_STATUS_CANCELLED = "cancelled"


class TransactionDocumentMixin:
    """
    Columns shared by Bill and Purchase headers.

    WHY: Both documents go through the same engine (numbering, pricing, stock
    posting, edit/lock). Keeping the columns identical lets the services treat
    them generically while each keeps its own table and counterparty fields.

    LIFECYCLE:
    - completed: stock posted (created by the transaction engine)
    - draft: purchases only, no stock effect
    - cancelled: terminal, stock reversed
    """

    id = db.Column(db.Integer, primary_key=True)

    @declared_attr
    def tenant_id(cls):
        return db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    # Human-readable number, unique per tenant (e.g., "BILL-20260118-0001")
    document_number = db.Column(db.String(64), nullable=False)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    gst_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    round_off = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    include_gst = db.Column(db.Boolean, nullable=False, default=True)

    payment_mode = db.Column(db.String(16), nullable=False, default="cash")
    payment_details = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=DOCUMENT_STATUS_COMPLETED, index=True)
    cancel_reason = db.Column(db.String(255), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by = db.Column(db.Integer, nullable=True)

    # Administrative lock (blocks edits regardless of age)
    is_locked = db.Column(db.Boolean, nullable=False, default=False)
    locked_reason = db.Column(db.String(255), nullable=True)
    locked_by = db.Column(db.Integer, nullable=True)
    locked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Edit tracking
    edit_count = db.Column(db.Integer, nullable=False, default=0)
    last_edited_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_edited_by = db.Column(db.Integer, nullable=True)

    created_by = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    # Subclasses set these
    document_type = None
    counterparty_fields = ()

    def header_dict(self) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "document_type": self.document_type,
            "document_number": self.document_number,
            "subtotal": dec_str(self.subtotal),
            "discount_amount": dec_str(self.discount_amount),
            "discount_percent": dec_str(self.discount_percent),
            "gst_amount": dec_str(self.gst_amount),
            "round_off": dec_str(self.round_off),
            "total_amount": dec_str(self.total_amount),
            "include_gst": self.include_gst,
            "payment_mode": self.payment_mode,
            "payment_details": self.payment_details,
            "notes": self.notes,
            "status": self.status,
            "cancel_reason": self.cancel_reason,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancelled_by": self.cancelled_by,
            "is_locked": self.is_locked,
            "locked_reason": self.locked_reason,
            "locked_by": self.locked_by,
            "locked_at": to_utc_z(self.locked_at),
            "edit_count": self.edit_count,
            "last_edited_at": to_utc_z(self.last_edited_at),
            "last_edited_by": self.last_edited_by,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        for field in self.counterparty_fields:
            data[field] = getattr(self, field)
        return data

    def to_dict(self, include_items: bool = True) -> dict:
        data = self.header_dict()
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class LineItemMixin:
    """
    Snapshot of a product at the time of the transaction.

    Immutable once the parent exists, except for wholesale replacement
    during an edit.
    """

    id = db.Column(db.Integer, primary_key=True)

    @declared_attr
    def product_id(cls):
        return db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    unit = db.Column(db.String(16), nullable=True)

    quantity = db.Column(db.Numeric(12, 3), nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    gst_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    gst_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    line_total = db.Column(db.Numeric(12, 2), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def line_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "sku": self.sku,
            "unit": self.unit,
            "quantity": dec_str(self.quantity),
            "unit_price": dec_str(self.unit_price),
            "discount_amount": dec_str(self.discount_amount),
            "gst_rate": dec_str(self.gst_rate),
            "gst_amount": dec_str(self.gst_amount),
            "line_total": dec_str(self.line_total),
        }


# =============================================================================
# SALES
# =============================================================================

class Bill(TransactionDocumentMixin, db.Model):
    """Sales document. Posting debits stock (transaction_type=sale)."""
    __tablename__ = "bills"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "document_number", name="uq_bills_tenant_docnum"),
        db.Index("ix_bills_tenant_status_created", "tenant_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    document_type = "bill"
    counterparty_fields = ("customer_name", "customer_phone", "customer_email", "customer_address")

    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_address = db.Column(db.Text, nullable=True)

    items = db.relationship(
        "BillItem",
        back_populates="document",
        order_by="BillItem.id",
        cascade="all, delete-orphan",
    )


class BillItem(LineItemMixin, db.Model):
    __tablename__ = "bill_items"
    __table_args__ = {"sqlite_autoincrement": True}

    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)
    document = db.relationship("Bill", back_populates="items")

    def to_dict(self) -> dict:
        data = self.line_dict()
        data["bill_id"] = self.bill_id
        return data


# =============================================================================
# PURCHASES
# =============================================================================

class Purchase(TransactionDocumentMixin, db.Model):
    """Purchase document. Posting credits stock (transaction_type=purchase)."""
    __tablename__ = "purchases"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "document_number", name="uq_purchases_tenant_docnum"),
        db.Index("ix_purchases_tenant_status_created", "tenant_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    document_type = "purchase"
    counterparty_fields = ("supplier_name", "supplier_phone", "supplier_email", "supplier_address", "supplier_invoice_number")

    supplier_name = db.Column(db.String(255), nullable=True)
    supplier_phone = db.Column(db.String(32), nullable=True)
    supplier_email = db.Column(db.String(255), nullable=True)
    supplier_address = db.Column(db.Text, nullable=True)
    supplier_invoice_number = db.Column(db.String(64), nullable=True)

    items = db.relationship(
        "PurchaseItem",
        back_populates="document",
        order_by="PurchaseItem.id",
        cascade="all, delete-orphan",
    )


class PurchaseItem(LineItemMixin, db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = {"sqlite_autoincrement": True}

    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    document = db.relationship("Purchase", back_populates="items")

    def to_dict(self) -> dict:
        data = self.line_dict()
        data["purchase_id"] = self.purchase_id
        return data


# =============================================================================
# RETURNS
# =============================================================================

class ReturnDocumentMixin:
    """
    Columns shared by SalesReturn and PurchaseReturn.

    Returns are partial: each return line references one original line item
    and the cumulative returned quantity on that line never exceeds its
    original quantity.
    """

    id = db.Column(db.Integer, primary_key=True)

    @declared_attr
    def tenant_id(cls):
        return db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    document_number = db.Column(db.String(64), nullable=False)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    gst_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    round_off = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    return_reason = db.Column(db.Text, nullable=True)
    refund_mode = db.Column(db.String(16), nullable=False, default="cash")
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(16), nullable=False, default=DOCUMENT_STATUS_COMPLETED, index=True)

    created_by = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    document_type = None
    parent_key = None

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "document_type": self.document_type,
            "document_number": self.document_number,
            self.parent_key: getattr(self, self.parent_key),
            "subtotal": dec_str(self.subtotal),
            "discount_amount": dec_str(self.discount_amount),
            "gst_amount": dec_str(self.gst_amount),
            "round_off": dec_str(self.round_off),
            "total_amount": dec_str(self.total_amount),
            "return_reason": self.return_reason,
            "refund_mode": self.refund_mode,
            "notes": self.notes,
            "status": self.status,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SalesReturn(ReturnDocumentMixin, db.Model):
    """Customer returns goods from a bill. Posting credits stock."""
    __tablename__ = "sales_returns"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "document_number", name="uq_sales_returns_tenant_docnum"),
        {"sqlite_autoincrement": True},
    )

    document_type = "sales_return"
    parent_key = "bill_id"

    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    bill = db.relationship("Bill", backref=db.backref("returns", lazy=True))
    items = db.relationship(
        "SalesReturnItem",
        back_populates="document",
        order_by="SalesReturnItem.id",
        cascade="all, delete-orphan",
    )


class SalesReturnItem(LineItemMixin, db.Model):
    __tablename__ = "sales_return_items"
    __table_args__ = {"sqlite_autoincrement": True}

    sales_return_id = db.Column(db.Integer, db.ForeignKey("sales_returns.id"), nullable=False, index=True)
    bill_item_id = db.Column(db.Integer, db.ForeignKey("bill_items.id"), nullable=False, index=True)

    document = db.relationship("SalesReturn", back_populates="items")
    original_item = db.relationship("BillItem")

    def to_dict(self) -> dict:
        data = self.line_dict()
        data["sales_return_id"] = self.sales_return_id
        data["bill_item_id"] = self.bill_item_id
        return data


class PurchaseReturn(ReturnDocumentMixin, db.Model):
    """Goods sent back to a supplier. Posting debits stock."""
    __tablename__ = "purchase_returns"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "document_number", name="uq_purchase_returns_tenant_docnum"),
        {"sqlite_autoincrement": True},
    )

    document_type = "purchase_return"
    parent_key = "purchase_id"

    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    supplier_name = db.Column(db.String(255), nullable=True)

    purchase = db.relationship("Purchase", backref=db.backref("returns", lazy=True))
    items = db.relationship(
        "PurchaseReturnItem",
        back_populates="document",
        order_by="PurchaseReturnItem.id",
        cascade="all, delete-orphan",
    )


class PurchaseReturnItem(LineItemMixin, db.Model):
    __tablename__ = "purchase_return_items"
    __table_args__ = {"sqlite_autoincrement": True}

    purchase_return_id = db.Column(db.Integer, db.ForeignKey("purchase_returns.id"), nullable=False, index=True)
    purchase_item_id = db.Column(db.Integer, db.ForeignKey("purchase_items.id"), nullable=False, index=True)

    document = db.relationship("PurchaseReturn", back_populates="items")
    original_item = db.relationship("PurchaseItem")

    def to_dict(self) -> dict:
        data = self.line_dict()
        data["purchase_return_id"] = self.purchase_return_id
        data["purchase_item_id"] = self.purchase_item_id
        return data
