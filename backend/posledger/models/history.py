from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class TransactionEditHistory(db.Model):
    """
    Append-only snapshot of a Bill or Purchase taken immediately before an edit.

    WHY: Edits rewrite a posted document in place. The snapshot keeps the
    pre-edit header and line items so the document stays auditable.

    INVARIANTS:
    - Rows are never updated or deleted.
    - (transaction_type, transaction_id, edit_number) is unique; edit_number
      starts at 1 and follows the document's edit_count.
    - original_data is a schema-versioned payload:
        {"schema_version": 1, "document_type": "bill",
         "document": {...header...}, "items": [{...line...}, ...]}
    """
    __tablename__ = "transaction_edit_history"
    __table_args__ = (
        db.UniqueConstraint(
            "transaction_type", "transaction_id", "edit_number",
            name="uq_edit_history_txn_edit_number",
        ),
        db.Index("ix_edit_history_tenant_txn", "tenant_id", "transaction_type", "transaction_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False)  # bill, purchase
    transaction_id = db.Column(db.Integer, nullable=False)
    edit_number = db.Column(db.Integer, nullable=False)

    edited_by = db.Column(db.Integer, nullable=False)
    edit_reason = db.Column(db.Text, nullable=True)
    changes_summary = db.Column(db.JSON, nullable=True)
    original_data = db.Column(db.JSON, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "transaction_type": self.transaction_type,
            "transaction_id": self.transaction_id,
            "edit_number": self.edit_number,
            "edited_by": self.edited_by,
            "edit_reason": self.edit_reason,
            "changes_summary": self.changes_summary,
            "original_data": self.original_data,
            "created_at": to_utc_z(self.created_at),
        }
