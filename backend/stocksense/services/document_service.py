# Overview: Per-company invoice number allocation.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence

SALE_PREFIX = "INV"
PURCHASE_PREFIX = "PUR"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(
    *,
    company_id: int,
    document_type: str,
    prefix: str,
    pad: int = 4,
) -> str:
    """
    Allocate the next document number for a company/type.

    Runs inside the caller's transaction and never commits. The UPDATE takes
    the row lock on (company_id, document_type); the first allocation inserts
    the row, and a concurrent first insert fails with IntegrityError, which
    the caller's run_in_transaction(retry_integrity=True) retries.
    """
    if not company_id:
        raise DocumentSequenceError("company_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.company_id == company_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(company_id=company_id, document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        db.session.add(DocumentSequence(company_id=company_id, document_type=document_type, next_number=2))
        db.session.flush()
        next_num = 1

    return f"{prefix}-{company_id:03d}-{next_num:0{pad}d}"
