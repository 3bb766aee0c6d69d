"""
Cash Session Ledger Service (Caja)

WHY: Track the physical cash drawer of a salon through the working day and
reconcile what the ledger says should be in it against what is counted.

DESIGN PRINCIPLES:
- One open session per tenant at a time
- Movements are append-only; a mistake is fixed with a compensating movement
- Balances are always recomputed from movements, never stored running totals
- Sessions are immutable once closed; close stamps expected cash and the
  difference and writes a closing reconciliation in the same transaction
- Every query is scoped by tenant_id

CONCURRENCY:
- open_session takes the tenant row lock, checks, then inserts. The partial
  unique index turns a lost race into SessionAlreadyOpen.
- register_movement bumps the session version, so a movement racing a close
  either lands before the close (and is counted) or is rejected after it.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import date

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashMovement, CashSession, ReconciliationRecord
from ..models.cash import (
    INFLOW_TYPES,
    METHOD_CASH,
    MOVEMENT_CASH_IN,
    MOVEMENT_CASH_OUT,
    MOVEMENT_EXPENSE,
    MOVEMENT_SALE,
    MOVEMENT_TYPES,
    PAYMENT_METHODS,
    RECONCILIATION_BALANCED,
    RECONCILIATION_SHORTFALL,
    RECONCILIATION_SURPLUS,
    SESSION_CLOSED,
    SESSION_OPEN,
)
from ..money_utils import format_cents, to_cents
from ..time_utils import day_bounds, to_utc_z, utcnow
from ..validation import (
    InvalidAmount,
    SessionAlreadyOpen,
    SessionClosed,
    SessionNotOpen,
    ValidationError,
    clean_text,
    coerce_int,
    require_choice,
)
from .concurrency import lock_for_update, run_with_retry
from .invoice_service import get_invoice
from .tenant_service import lock_tenant

DEFAULT_EXPENSE_CATEGORY = "general"

EXPENSE_CATEGORIES = [
    {"id": "general", "name": "General"},
    {"id": "proveedores", "name": "Proveedores"},
    {"id": "servicios", "name": "Servicios (luz, agua, etc)"},
    {"id": "sueldos", "name": "Sueldos y salarios"},
    {"id": "materiales", "name": "Materiales de trabajo"},
    {"id": "limpieza", "name": "Limpieza"},
    {"id": "marketing", "name": "Marketing/Publicidad"},
    {"id": "mantenimiento", "name": "Mantenimiento"},
    {"id": "impuestos", "name": "Impuestos"},
    {"id": "otros", "name": "Otros"},
]
EXPENSE_CATEGORY_IDS = [c["id"] for c in EXPENSE_CATEGORIES]


def expense_categories() -> list[dict]:
    return [dict(c) for c in EXPENSE_CATEGORIES]


# =============================================================================
# LOOKUPS
# =============================================================================

def _session_query(tenant_id: int, session_id: int):
    return db.session.query(CashSession).filter_by(id=session_id, tenant_id=tenant_id)


def _find_open_session(tenant_id: int) -> CashSession | None:
    return (
        db.session.query(CashSession)
        .filter_by(tenant_id=tenant_id, status=SESSION_OPEN)
        .first()
    )


def get_session(tenant_id: int, session_id: int) -> CashSession:
    session = _session_query(tenant_id, session_id).first()
    if not session:
        raise SessionNotOpen("Cash session not found", details={"session_id": session_id})
    return session


def _lock_open_session(tenant_id: int, session_id: int) -> CashSession:
    session = lock_for_update(_session_query(tenant_id, session_id)).first()
    if not session:
        raise SessionNotOpen("Cash session not found", details={"session_id": session_id})
    if session.status != SESSION_OPEN:
        raise SessionClosed(
            f"Cash session {session.id} is closed",
            details={"session_id": session.id, "closed_at": to_utc_z(session.closed_at)},
        )
    return session


def _already_open_error(existing: CashSession) -> SessionAlreadyOpen:
    opened_at = to_utc_z(existing.opened_at)
    return SessionAlreadyOpen(
        f"A cash session is already open (session {existing.id}, opened at {opened_at})",
        details={"session_id": existing.id, "opened_at": opened_at},
    )


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

def open_session(
    tenant_id: int,
    initial_amount,
    *,
    notes: str | None = None,
    opened_by: str | None = None,
) -> CashSession:
    """
    Open the tenant's cash session with the float placed in the drawer.

    Raises:
        InvalidAmount: initial amount negative or malformed
        SessionAlreadyOpen: tenant already has an open session
    """
    initial_cents = to_cents(initial_amount, "initial_amount")
    if initial_cents < 0:
        raise InvalidAmount("initial_amount cannot be negative", details={"value": format_cents(initial_cents)})
    notes = clean_text(notes, max_length=2000)

    def _op() -> CashSession:
        lock_tenant(tenant_id)

        existing = _find_open_session(tenant_id)
        if existing:
            raise _already_open_error(existing)

        session = CashSession(
            tenant_id=tenant_id,
            status=SESSION_OPEN,
            initial_amount_cents=initial_cents,
            opened_at=utcnow(),
            opened_by=opened_by,
            notes=notes,
        )
        db.session.add(session)
        try:
            db.session.commit()
        except IntegrityError:
            # Another terminal won the race for the partial unique index
            db.session.rollback()
            existing = _find_open_session(tenant_id)
            if existing:
                raise _already_open_error(existing)
            raise
        return session

    session = run_with_retry(_op)
    current_app.logger.info(
        "Cash session opened tenant=%s session=%s initial=%s",
        tenant_id, session.id, format_cents(session.initial_amount_cents),
    )
    return session


def close_session(
    tenant_id: int,
    session_id: int,
    final_amount_counted,
    *,
    notes: str | None = None,
    closed_by: str | None = None,
) -> CashSession:
    """
    Close a session against the counted cash.

    Stamps expected cash and difference (counted - expected) on the session
    and writes the closing reconciliation in the same commit.

    Raises:
        ValidationError: counted amount missing
        SessionNotOpen: session missing or already closed
    """
    if final_amount_counted is None or final_amount_counted == "":
        raise ValidationError("final_amount is required to close a cash session", details={"field": "final_amount"})
    counted_cents = to_cents(final_amount_counted, "final_amount")
    if counted_cents < 0:
        raise InvalidAmount("final_amount cannot be negative", details={"value": format_cents(counted_cents)})
    notes = clean_text(notes, max_length=2000)

    def _op() -> CashSession:
        session = lock_for_update(_session_query(tenant_id, session_id)).first()
        if not session:
            raise SessionNotOpen("Cash session not found", details={"session_id": session_id})
        if session.status != SESSION_OPEN:
            raise SessionNotOpen(
                f"Cash session {session.id} is already closed",
                details={"session_id": session.id, "status": session.status},
            )

        breakdown = _cash_breakdown(session)
        expected = breakdown["expected_cash"]
        difference = counted_cents - expected
        now = utcnow()

        session.status = SESSION_CLOSED
        session.closed_at = now
        session.closed_by = closed_by
        session.final_amount_counted_cents = counted_cents
        session.expected_cash_cents = expected
        session.difference_cents = difference
        session.closing_notes = notes

        db.session.add(_reconciliation_record(
            session, breakdown, counted_cents,
            is_closing=True, notes=notes, performed_by=closed_by, performed_at=now,
        ))
        db.session.commit()
        return session

    session = run_with_retry(_op)
    current_app.logger.info(
        "Cash session closed tenant=%s session=%s expected=%s counted=%s difference=%s",
        tenant_id, session.id,
        format_cents(session.expected_cash_cents),
        format_cents(session.final_amount_counted_cents),
        format_cents(session.difference_cents),
    )
    return session


# =============================================================================
# MOVEMENTS
# =============================================================================

def register_movement(
    tenant_id: int,
    session_id: int,
    movement_type: str,
    amount,
    *,
    method: str | None = None,
    concept: str | None = None,
    category: str | None = None,
    created_by: str | None = None,
    invoice_id: int | None = None,
) -> CashMovement:
    """
    Append a movement to an open session.

    `amount` is a positive magnitude; the stored sign comes from the type
    (sale/cash_in positive, expense/cash_out negative).

    Raises:
        ValidationError: unknown type, method or category
        InvalidAmount: amount <= 0 or malformed
        NotFoundError: invoice_id is not an invoice of this tenant
        SessionNotOpen: session not found for this tenant
        SessionClosed: session already closed
    """
    movement_type = require_choice("type", movement_type, MOVEMENT_TYPES)
    method = require_choice("method", method or METHOD_CASH, PAYMENT_METHODS)
    cents = to_cents(amount, "amount")
    if cents <= 0:
        raise InvalidAmount("amount must be greater than zero", details={"value": format_cents(cents)})

    if movement_type == MOVEMENT_EXPENSE:
        category = require_choice("category", category or DEFAULT_EXPENSE_CATEGORY, EXPENSE_CATEGORY_IDS)
    else:
        category = None
    concept = clean_text(concept, max_length=255)
    signed = cents if movement_type in INFLOW_TYPES else -cents
    if invoice_id is not None and invoice_id != "":
        invoice_id = coerce_int("invoice_id", invoice_id, minimum=1)
    else:
        invoice_id = None

    def _op() -> CashMovement:
        if invoice_id is not None:
            get_invoice(tenant_id, invoice_id)
        session = _lock_open_session(tenant_id, session_id)
        now = utcnow()
        session.last_movement_at = now

        movement = CashMovement(
            tenant_id=tenant_id,
            session_id=session.id,
            movement_type=movement_type,
            amount_cents=signed,
            payment_method=method,
            concept=concept,
            category=category,
            invoice_id=invoice_id,
            created_at=now,
            created_by=created_by,
        )
        db.session.add(movement)
        db.session.commit()
        return movement

    movement = run_with_retry(_op)
    current_app.logger.info(
        "Cash movement tenant=%s session=%s type=%s method=%s amount=%s",
        tenant_id, session_id, movement_type, method, format_cents(signed),
    )
    return movement


def register_sale(tenant_id: int, session_id: int, amount, *, method: str | None = None, **kwargs) -> CashMovement:
    return register_movement(tenant_id, session_id, MOVEMENT_SALE, amount, method=method, **kwargs)


def register_expense(tenant_id: int, session_id: int, amount, *, category: str | None = None, **kwargs) -> CashMovement:
    kwargs.setdefault("method", METHOD_CASH)
    return register_movement(tenant_id, session_id, MOVEMENT_EXPENSE, amount, category=category, **kwargs)


def register_cash_in(tenant_id: int, session_id: int, amount, **kwargs) -> CashMovement:
    kwargs.setdefault("method", METHOD_CASH)
    return register_movement(tenant_id, session_id, MOVEMENT_CASH_IN, amount, **kwargs)


def register_cash_out(tenant_id: int, session_id: int, amount, **kwargs) -> CashMovement:
    kwargs.setdefault("method", METHOD_CASH)
    return register_movement(tenant_id, session_id, MOVEMENT_CASH_OUT, amount, **kwargs)


# =============================================================================
# BALANCES AND RECONCILIATION
# =============================================================================

def _movements_for(session: CashSession) -> list[CashMovement]:
    return (
        db.session.query(CashMovement)
        .filter_by(tenant_id=session.tenant_id, session_id=session.id)
        .order_by(CashMovement.id.asc())
        .all()
    )


def _cash_breakdown(session: CashSession, movements: list[CashMovement] | None = None) -> dict:
    """Expected cash in the drawer and how it is composed (cents)."""
    if movements is None:
        movements = _movements_for(session)
    parts = {MOVEMENT_SALE: 0, MOVEMENT_EXPENSE: 0, MOVEMENT_CASH_IN: 0, MOVEMENT_CASH_OUT: 0}
    for m in movements:
        if m.payment_method == METHOD_CASH:
            parts[m.movement_type] += abs(m.amount_cents)
    expected = (
        session.initial_amount_cents
        + parts[MOVEMENT_SALE]
        - parts[MOVEMENT_EXPENSE]
        + parts[MOVEMENT_CASH_IN]
        - parts[MOVEMENT_CASH_OUT]
    )
    return {
        "initial_amount": session.initial_amount_cents,
        "cash_sales": parts[MOVEMENT_SALE],
        "expenses": parts[MOVEMENT_EXPENSE],
        "cash_in": parts[MOVEMENT_CASH_IN],
        "cash_out": parts[MOVEMENT_CASH_OUT],
        "expected_cash": expected,
    }


def balance_cents(session: CashSession) -> dict:
    """
    Running balance of a session, recomputed from its movements (cents).

    cash  = initial + signed cash-method movements (what the drawer holds)
    total = initial + all signed movements
    """
    movements = _movements_for(session)
    by_method = OrderedDict((m, 0) for m in PAYMENT_METHODS)
    by_type = OrderedDict((t, 0) for t in MOVEMENT_TYPES)
    for m in movements:
        by_method[m.payment_method] += m.amount_cents
        by_type[m.movement_type] += m.amount_cents
    return {
        "initial": session.initial_amount_cents,
        "by_method": dict(by_method),
        "by_type": dict(by_type),
        "cash": session.initial_amount_cents + by_method[METHOD_CASH],
        "total": session.initial_amount_cents + sum(by_type.values()),
        "movement_count": len(movements),
    }


def current_balance(tenant_id: int, session_id: int) -> dict:
    """Balance of a session with amounts formatted for JSON."""
    cents = balance_cents(get_session(tenant_id, session_id))
    return {
        "initial": format_cents(cents["initial"]),
        "by_method": {k: format_cents(v) for k, v in cents["by_method"].items()},
        "by_type": {k: format_cents(v) for k, v in cents["by_type"].items()},
        "cash": format_cents(cents["cash"]),
        "total": format_cents(cents["total"]),
        "movement_count": cents["movement_count"],
    }


def classify_difference(difference_cents: int) -> str:
    if difference_cents == 0:
        return RECONCILIATION_BALANCED
    return RECONCILIATION_SURPLUS if difference_cents > 0 else RECONCILIATION_SHORTFALL


def _reconciliation_record(
    session: CashSession,
    breakdown: dict,
    counted_cents: int,
    *,
    is_closing: bool,
    notes: str | None,
    performed_by: str | None,
    performed_at=None,
) -> ReconciliationRecord:
    expected = breakdown["expected_cash"]
    difference = counted_cents - expected
    return ReconciliationRecord(
        tenant_id=session.tenant_id,
        session_id=session.id,
        expected_cash_cents=expected,
        counted_cash_cents=counted_cents,
        difference_cents=difference,
        state=classify_difference(difference),
        is_closing=is_closing,
        initial_amount_cents=breakdown["initial_amount"],
        cash_sales_cents=breakdown["cash_sales"],
        expenses_cents=breakdown["expenses"],
        cash_in_cents=breakdown["cash_in"],
        cash_out_cents=breakdown["cash_out"],
        notes=notes,
        performed_at=performed_at or utcnow(),
        performed_by=performed_by,
    )


def reconcile(
    tenant_id: int,
    session_id: int,
    counted_cash,
    *,
    notes: str | None = None,
    performed_by: str | None = None,
) -> ReconciliationRecord:
    """
    Arqueo: compare counted cash against expected cash without closing.

    Raises:
        InvalidAmount: counted amount negative or malformed
        SessionNotOpen / SessionClosed: session missing or closed
    """
    if counted_cash is None or counted_cash == "":
        raise ValidationError("counted_cash is required", details={"field": "counted_cash"})
    counted_cents = to_cents(counted_cash, "counted_cash")
    if counted_cents < 0:
        raise InvalidAmount("counted_cash cannot be negative", details={"value": format_cents(counted_cents)})
    notes = clean_text(notes, max_length=2000)

    def _op() -> ReconciliationRecord:
        session = _lock_open_session(tenant_id, session_id)
        record = _reconciliation_record(
            session, _cash_breakdown(session), counted_cents,
            is_closing=False, notes=notes, performed_by=performed_by,
        )
        db.session.add(record)
        db.session.commit()
        return record

    record = run_with_retry(_op)
    current_app.logger.info(
        "Cash reconciliation tenant=%s session=%s state=%s difference=%s",
        tenant_id, session_id, record.state, format_cents(record.difference_cents),
    )
    return record


# =============================================================================
# READS
# =============================================================================

def get_current_session(tenant_id: int) -> dict | None:
    """The open session with its live balance, or None."""
    session = _find_open_session(tenant_id)
    if not session:
        return None
    data = session.to_dict()
    data["balance"] = current_balance(tenant_id, session.id)
    breakdown = _cash_breakdown(session)
    data["expected_cash"] = format_cents(breakdown["expected_cash"])
    return data


def get_session_history(tenant_id: int, *, limit: int = 30, offset: int = 0) -> list[CashSession]:
    return (
        db.session.query(CashSession)
        .filter_by(tenant_id=tenant_id)
        .order_by(CashSession.opened_at.desc(), CashSession.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_session_detail(tenant_id: int, session_id: int) -> dict:
    session = get_session(tenant_id, session_id)
    movements = _movements_for(session)
    data = session.to_dict()
    data["balance"] = current_balance(tenant_id, session.id)
    data["movements"] = [m.to_dict() for m in movements]
    data["reconciliations"] = [
        r.to_dict()
        for r in db.session.query(ReconciliationRecord)
        .filter_by(tenant_id=tenant_id, session_id=session.id)
        .order_by(ReconciliationRecord.id.asc())
        .all()
    ]
    return data


def list_movements(tenant_id: int, *, session_id: int | None = None, day: date | None = None) -> dict:
    """
    Movements of one session, or of one UTC calendar day when no session is
    given (today by default), with income/outflow/balance totals.
    """
    query = db.session.query(CashMovement).filter(CashMovement.tenant_id == tenant_id)
    if session_id is not None:
        get_session(tenant_id, session_id)
        query = query.filter(CashMovement.session_id == session_id)
    else:
        start, end = day_bounds(day or utcnow().date())
        query = query.filter(CashMovement.created_at >= start, CashMovement.created_at < end)

    movements = query.order_by(CashMovement.created_at.asc(), CashMovement.id.asc()).all()
    income = sum(m.amount_cents for m in movements if m.amount_cents > 0)
    outflow = sum(-m.amount_cents for m in movements if m.amount_cents < 0)
    return {
        "movements": [m.to_dict() for m in movements],
        "totals": {
            "income": format_cents(income),
            "outflow": format_cents(outflow),
            "balance": format_cents(income - outflow),
        },
    }


def list_reconciliations(
    tenant_id: int,
    *,
    session_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[ReconciliationRecord]:
    query = db.session.query(ReconciliationRecord).filter_by(tenant_id=tenant_id)
    if session_id is not None:
        query = query.filter_by(session_id=session_id)
    return (
        query.order_by(ReconciliationRecord.performed_at.desc(), ReconciliationRecord.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
