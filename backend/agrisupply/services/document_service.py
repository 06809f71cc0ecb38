# Overview: Service-layer operations for document numbering; atomic per-owner sequences.

from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence

logger = logging.getLogger(__name__)


DOC_ORDER = "ORDER"
DOC_INVOICE = "INVOICE"

DOCUMENT_PREFIXES = {
    DOC_ORDER: "ORD",
    DOC_INVOICE: "INV",
}


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def format_document_number(prefix: str, number: int, pad: int = 6) -> str:
    return f"{prefix}-{number:0{pad}d}"


def next_document_number(
    *,
    owner_id: int,
    document_type: str,
    pad: int = 6,
) -> str:
    """
    Atomically allocate the next document number for an owner/type.

    The increment is a single UPDATE, so two transactions can never read the
    same value. Runs inside the caller's transaction: the number is only
    consumed if the caller commits. The first allocation for an owner/type
    creates the counter row inside a savepoint, so losing a creation race
    does not disturb the caller's pending work.
    """
    if not owner_id:
        raise DocumentSequenceError("owner_id is required")
    if document_type not in DOCUMENT_PREFIXES:
        raise DocumentSequenceError(f"Unknown document_type: {document_type}")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.created_by_user_id == owner_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(
                    created_by_user_id=owner_id,
                    document_type=document_type,
                    next_number=1,
                ))
        except IntegrityError:
            logger.debug("Sequence row for %s/%s created concurrently", owner_id, document_type)
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise DocumentSequenceError(f"Could not allocate {document_type} number")

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(created_by_user_id=owner_id, document_type=document_type)
        .scalar()
    )
    return format_document_number(DOCUMENT_PREFIXES[document_type], current - 1, pad)
