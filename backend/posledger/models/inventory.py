from __future__ import annotations

from ..extensions import db
from ..numeric import dec_str
from ..time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data (catalog-owned, read by the engine).

    MULTI-TENANT: Products are scoped to tenants via tenant_id.

    STOCK: stock_quantity is the current on-hand quantity. It is written ONLY
    by stock_ledger_service.post_stock(), in the same DB transaction as the
    StockLedgerEntry that records the change.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),
        db.Index("ix_products_tenant_name", "tenant_id", "name"),
        db.Index("ix_products_tenant_active", "tenant_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="pcs")

    cost_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    selling_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    gst_rate = db.Column(db.Numeric(5, 2), nullable=False, default=0)  # percent

    stock_quantity = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    min_stock_level = db.Column(db.Numeric(12, 3), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    tenant = db.relationship("Tenant", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sku": self.sku,
            "name": self.name,
            "unit": self.unit,
            "cost_price": dec_str(self.cost_price),
            "selling_price": dec_str(self.selling_price),
            "gst_rate": dec_str(self.gst_rate),
            "stock_quantity": dec_str(self.stock_quantity),
            "min_stock_level": dec_str(self.min_stock_level),
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockLedgerEntry(db.Model):
    """
    Append-only record of one stock quantity change.

    INVARIANTS:
    - Rows are never updated or deleted.
    - quantity_after = quantity_before + quantity_change.
    - Per product, entries ordered by id form a chain: each entry's
      quantity_before equals the previous entry's quantity_after, and the
      last quantity_after equals Product.stock_quantity.
    """
    __tablename__ = "stock_ledger"
    __table_args__ = (
        db.Index("ix_stock_ledger_tenant_product", "tenant_id", "product_id", "id"),
        db.Index("ix_stock_ledger_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)  # sale, purchase, return, adjustment

    # Which document caused the movement
    reference_id = db.Column(db.Integer, nullable=True)
    reference_type = db.Column(db.String(32), nullable=True)  # bill, purchase, sales_return, purchase_return, adjustment

    quantity_change = db.Column(db.Numeric(12, 3), nullable=False)
    quantity_before = db.Column(db.Numeric(12, 3), nullable=False)
    quantity_after = db.Column(db.Numeric(12, 3), nullable=False)

    notes = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "transaction_type": self.transaction_type,
            "reference_id": self.reference_id,
            "reference_type": self.reference_type,
            "quantity_change": dec_str(self.quantity_change),
            "quantity_before": dec_str(self.quantity_before),
            "quantity_after": dec_str(self.quantity_after),
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
        }
