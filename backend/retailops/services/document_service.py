# Overview: Allocation of human-readable document numbers.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import date_stamp, utcnow


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def next_document_number(*, document_type: str, prefix: str, pad: int = 6) -> str:
    """
    Allocate the next number for ``document_type`` as PREFIX-YYYYMMDD-NNNNNN.

    The counter row is bumped with a single UPDATE, so concurrent callers are
    serialized by the database and can never receive the same number. The
    date part is informational; uniqueness comes from the counter.

    Does not commit: the bump becomes durable together with the document
    that uses it, and is rolled back with it.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )

    def _current() -> int:
        return (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current() - 1
    else:
        seq = DocumentSequence(document_type=document_type, next_number=2)
        db.session.add(seq)
        try:
            db.session.flush()
            next_num = 1
        except IntegrityError:
            # Another request created the row first
            db.session.rollback()
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current() - 1

    return f"{prefix}-{date_stamp()}-{next_num:0{pad}d}"
