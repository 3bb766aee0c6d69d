# Overview: Tenant/type/period scoped monotonic counters that number invoices.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import SequenceCounter
from ..validation import ConcurrencyError, ValidationError

NUMBER_PAD = 6

# Invoice type -> series prefix
SERIES_PREFIXES = {
    "ordinary": "FAC",
    "corrective": "REC",
    "proforma": "PRO",
    "simplified": "TIC",
}


def series_for(document_type: str) -> str:
    try:
        return SERIES_PREFIXES[document_type]
    except KeyError:
        raise ValidationError(
            f"Unknown document type '{document_type}'",
            details={"allowed": sorted(SERIES_PREFIXES)},
        )


def format_number(prefix: str, period_key: str, value: int, *, pad: int = NUMBER_PAD) -> str:
    """FAC + 2026 + 1 -> "FAC-2026-000001"."""
    return f"{prefix}-{period_key}-{value:0{pad}d}"


def next_value(tenant_id: int, document_type: str, period_key: str) -> int:
    """
    Allocate the next value for (tenant, document_type, period_key).

    Runs inside the caller's transaction and never commits: the number and
    the document that carries it are persisted or rolled back together.

    One atomic UPDATE advances the counter (taking the row's write lock), then
    the new value is read back. On first use the row is inserted at 2 and 1 is
    returned. Two first-use allocators racing on the insert: the loser hits
    the unique constraint and raises ConcurrencyError so the caller's whole
    operation is retried from a clean transaction.
    """
    if not tenant_id:
        raise ValidationError("tenant_id is required")
    if not document_type:
        raise ValidationError("document_type is required")
    if not period_key:
        raise ValidationError("period_key is required")

    stmt = (
        update(SequenceCounter)
        .where(
            SequenceCounter.tenant_id == tenant_id,
            SequenceCounter.document_type == document_type,
            SequenceCounter.period_key == period_key,
        )
        .values(next_value=SequenceCounter.next_value + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(SequenceCounter.next_value)
            .filter_by(tenant_id=tenant_id, document_type=document_type, period_key=period_key)
            .scalar()
        )
        return current - 1

    counter = SequenceCounter(
        tenant_id=tenant_id,
        document_type=document_type,
        period_key=period_key,
        next_value=2,
    )
    db.session.add(counter)
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise ConcurrencyError(
            "Sequence counter was created concurrently",
            details={"tenant_id": tenant_id, "document_type": document_type, "period_key": period_key},
        ) from exc
    return 1


def peek(tenant_id: int, document_type: str, period_key: str) -> int:
    """Value the next allocation would return, without allocating."""
    current = (
        db.session.query(SequenceCounter.next_value)
        .filter_by(tenant_id=tenant_id, document_type=document_type, period_key=period_key)
        .scalar()
    )
    return current or 1


def list_counters(tenant_id: int) -> list[SequenceCounter]:
    return (
        db.session.query(SequenceCounter)
        .filter_by(tenant_id=tenant_id)
        .order_by(SequenceCounter.document_type, SequenceCounter.period_key)
        .all()
    )
