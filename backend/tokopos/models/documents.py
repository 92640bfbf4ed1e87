from __future__ import annotations

from ..extensions import db


# Document types and their printed prefixes
DOC_INVOICE = "INV"
DOC_RETURN = "RET"
DOC_PURCHASE = "PO"


class DocumentSequence(db.Model):
    """
    Atomic per-type document sequences.

    WHY: Invoice, return and purchase numbers must be unique and gap-free
    under concurrent checkouts. Counting existing rows is not safe for that.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "next_number": self.next_number,
        }
