from __future__ import annotations

from ..extensions import db
from agrisupply.time_utils import to_utc_z, utcnow


class DocumentSequence(db.Model):
    """
    Atomic per-owner document sequences.

    WHY: Prevent race conditions when generating human-readable document
    numbers (orders, invoices). Counting existing rows is not safe under
    concurrent checkouts.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("created_by_user_id", "document_type", name="uq_doc_sequences_owner_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_by_user_id": self.created_by_user_id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
