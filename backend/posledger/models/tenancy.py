from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Tenant(db.Model):
    """
    Multi-tenant root: every shop is a Tenant.

    WHY: Shared-database multi-tenancy with strict isolation.
    Products, documents, ledger entries and sequences all carry tenant_id
    and every service query filters on it.

    The edit-window columns override the application defaults for this tenant.
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    # Days after which documents are locked for tax filing
    tax_lock_days = db.Column(db.Integer, nullable=True)
    # Hours a cashier may still edit their documents
    operator_edit_window_hours = db.Column(db.Integer, nullable=True)
    allow_negative_stock = db.Column(db.Boolean, nullable=False, default=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "tax_lock_days": self.tax_lock_days,
            "operator_edit_window_hours": self.operator_edit_window_hours,
            "allow_negative_stock": self.allow_negative_stock,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class DocumentSequence(db.Model):
    """
    Per-tenant document numbering configuration and durable counter.

    WHY: next_sequence is incremented inside the same transaction as the
    document insert. The counter is an optimization; the unique constraint on
    (tenant_id, document_number) of each document table is the final arbiter.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "document_type", name="uq_doc_sequences_tenant_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)  # bill, purchase, sales_return, purchase_return

    prefix = db.Column(db.String(32), nullable=False)
    pattern = db.Column(db.String(128), nullable=False, default="{PREFIX}-{DATE}-{SEQUENCE4}")
    next_sequence = db.Column(db.Integer, nullable=False, default=1)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("document_sequences", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "document_type": self.document_type,
            "prefix": self.prefix,
            "pattern": self.pattern,
            "next_sequence": self.next_sequence,
            "updated_at": to_utc_z(self.updated_at),
        }
