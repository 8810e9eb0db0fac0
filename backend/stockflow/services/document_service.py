# Overview: Atomic document numbering for purchases, adjustments and orders.

from __future__ import annotations

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..errors import DuplicateReference

PURCHASE = ("PURCHASE", "PUR")
ADJUSTMENT = ("ADJUSTMENT", "ADJ")
ORDER = ("ORDER", "ORD")


def _increment(document_type: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = db.session.execute(
        select(DocumentSequence.next_number).where(DocumentSequence.document_type == document_type)
    ).scalar_one()
    return current - 1


def next_document_number(document_type: str, prefix: str, *, pad: int | None = None) -> str:
    """
    Atomically allocate the next number for a document type.

    Runs inside the caller's write transaction: the counter increment
    commits or rolls back together with the document it numbers, so a
    failed purchase does not burn a number.
    """
    if not document_type:
        raise ValueError("document_type is required")
    if pad is None:
        pad = current_app.config.get("DOCUMENT_NUMBER_PAD", 6)

    number = _increment(document_type)
    if number is None:
        # First document of this type: create the counter row
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            number = 1
        except IntegrityError:
            # Another writer created it first
            number = _increment(document_type)
            if number is None:
                raise DuplicateReference(f"Could not allocate {prefix} number, please retry")

    return f"{prefix}-{number:0{pad}d}"


def allocate(kind: tuple[str, str]) -> str:
    document_type, prefix = kind
    return next_document_number(document_type, prefix)


def raise_if_duplicate(exc: IntegrityError, number: str) -> None:
    """Map a unique-number collision on flush/commit to a retryable conflict."""
    message = str(getattr(exc, "orig", exc)).lower()
    if "unique" in message and "number" in message:
        raise DuplicateReference(
            f"Document number {number} already exists, please retry",
            details={"document_number": number},
        ) from exc
