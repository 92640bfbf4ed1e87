# Overview: Service-layer operations for document numbering.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence
from ..models.documents import DOC_INVOICE, DOC_PURCHASE, DOC_RETURN

# Zero padding per document type: INV-0000001, RET-0000001, PO-000001
DOCUMENT_PADDING = {
    DOC_INVOICE: 7,
    DOC_RETURN: 7,
    DOC_PURCHASE: 6,
}


def next_document_number(document_type: str) -> str:
    """
    Allocate the next document number for a type, inside the caller's transaction.

    The sequence row is bumped with a single UPDATE ... SET n = n + 1 so two
    writers can never read the same value. A missing row is created on first
    use. If two first-uses race, the unique constraint fails the second
    transaction, which then rolls back as a whole (no gap, no duplicate).
    """
    if document_type not in DOCUMENT_PADDING:
        raise ValueError(f"Unknown document type: {document_type}")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        number = current - 1
    else:
        db.session.add(DocumentSequence(document_type=document_type, next_number=2))
        db.session.flush()
        number = 1

    return f"{document_type}-{number:0{DOCUMENT_PADDING[document_type]}d}"
