# Overview: Read-only rollups over invoices and the cash ledger for dashboards.

from __future__ import annotations

from collections import OrderedDict
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import CashMovement, CashSession, Invoice, InvoicePayment, ReconciliationRecord
from ..models.cash import MOVEMENT_EXPENSE, MOVEMENT_SALE, PAYMENT_METHODS, SESSION_CLOSED
from ..models.invoicing import PAYMENT_PAID, STATUS_VOID
from ..money_utils import HUNDRED, format_cents, round_money
from ..time_utils import period_start, to_iso_date, to_utc_z, utcnow
from ..validation import ValidationError

PERIODS = ["day", "week", "month", "year", "all"]

AGING_BUCKETS = [
    ("0-30", 0, 30),
    ("31-60", 31, 60),
    ("61-90", 61, 90),
    ("90+", 91, None),
]


def _resolve_window(period: str | None, start: date | None, end: date | None, now: datetime) -> tuple[datetime | None, datetime | None]:
    """Explicit start/end win over the period keyword; end is inclusive."""
    if start or end:
        start_dt = datetime(start.year, start.month, start.day) if start else None
        end_dt = datetime(end.year, end.month, end.day, 23, 59, 59, 999999) if end else None
        return start_dt, end_dt
    period = (period or "month").strip().lower()
    if period not in PERIODS:
        raise ValidationError(f"period must be one of {PERIODS}", details={"field": "period", "value": period})
    return period_start(period, now), None


def _pct(part: int, whole: int) -> str:
    if not whole:
        return "0.00"
    return str(round_money(Decimal(part) * HUNDRED / Decimal(whole)))


def _average_cents(total: int, count: int) -> str:
    if not count:
        return "0.00"
    return str(round_money(Decimal(total) / Decimal(count) / HUNDRED))


# =============================================================================
# INVOICES
# =============================================================================

def invoice_statistics(
    tenant_id: int,
    *,
    period: str | None = "month",
    start: date | None = None,
    end: date | None = None,
    as_of: date | None = None,
) -> dict:
    """
    Invoice KPIs for a window of issue dates.

    Void invoices are counted but excluded from every amount; collection
    rate is amount_paid / total over the non-void invoices.
    """
    now = utcnow()
    as_of = as_of or now.date()
    start_dt, end_dt = _resolve_window(period, start, end, now)

    query = db.session.query(
        Invoice.status,
        Invoice.payment_status,
        Invoice.issue_date,
        Invoice.due_date,
        Invoice.total_cents,
        Invoice.tax_amount_cents,
        Invoice.taxable_base_cents,
        Invoice.amount_paid_cents,
    ).filter(Invoice.tenant_id == tenant_id)
    if start_dt:
        query = query.filter(Invoice.issue_date >= start_dt.date())
    if end_dt:
        query = query.filter(Invoice.issue_date <= end_dt.date())
    rows = query.all()

    counts = {"total": len(rows), "issued": 0, "paid": 0, "pending": 0, "overdue": 0, "void": 0}
    sums = {"total": 0, "tax": 0, "taxable_base": 0, "paid": 0}
    by_month: dict[str, dict] = {}

    for row in rows:
        if row.status == STATUS_VOID:
            counts["void"] += 1
            continue
        counts["issued"] += 1
        if row.payment_status == PAYMENT_PAID:
            counts["paid"] += 1
        else:
            counts["pending"] += 1
            if row.due_date < as_of:
                counts["overdue"] += 1
        sums["total"] += row.total_cents
        sums["tax"] += row.tax_amount_cents
        sums["taxable_base"] += row.taxable_base_cents
        sums["paid"] += row.amount_paid_cents

        month = row.issue_date.strftime("%Y-%m")
        bucket = by_month.setdefault(month, {"count": 0, "total_cents": 0})
        bucket["count"] += 1
        bucket["total_cents"] += row.total_cents

    return {
        "period": period if not (start or end) else None,
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt) if end_dt else to_utc_z(now),
        "counts": counts,
        "total_invoiced": format_cents(sums["total"]),
        "total_tax": format_cents(sums["tax"]),
        "total_taxable_base": format_cents(sums["taxable_base"]),
        "amount_paid": format_cents(sums["paid"]),
        "amount_pending": format_cents(sums["total"] - sums["paid"]),
        "average_invoice": _average_cents(sums["total"], counts["issued"]),
        "collection_rate": _pct(sums["paid"], sums["total"]),
        "by_month": [
            {"month": month, "count": b["count"], "total": format_cents(b["total_cents"])}
            for month, b in sorted(by_month.items())
        ],
    }


def payment_method_breakdown(
    tenant_id: int,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict:
    """Money received per method: invoice payments and cash-ledger sales."""
    payments = db.session.query(
        InvoicePayment.method,
        func.coalesce(func.sum(InvoicePayment.amount_cents), 0),
        func.count(InvoicePayment.id),
    ).filter(InvoicePayment.tenant_id == tenant_id)
    sales = db.session.query(
        CashMovement.payment_method,
        func.coalesce(func.sum(CashMovement.amount_cents), 0),
        func.count(CashMovement.id),
    ).filter(CashMovement.tenant_id == tenant_id, CashMovement.movement_type == MOVEMENT_SALE)

    if start:
        payments = payments.filter(InvoicePayment.received_at >= start)
        sales = sales.filter(CashMovement.created_at >= start)
    if end:
        payments = payments.filter(InvoicePayment.received_at <= end)
        sales = sales.filter(CashMovement.created_at <= end)

    def _rollup(rows) -> dict:
        result = OrderedDict((m, {"amount_cents": 0, "count": 0}) for m in PAYMENT_METHODS)
        for method, amount, count in rows:
            entry = result.setdefault(method, {"amount_cents": 0, "count": 0})
            entry["amount_cents"] += int(amount or 0)
            entry["count"] += int(count or 0)
        return result

    invoice_rollup = _rollup(payments.group_by(InvoicePayment.method).all())
    sales_rollup = _rollup(sales.group_by(CashMovement.payment_method).all())

    combined = OrderedDict()
    for method in set(invoice_rollup) | set(sales_rollup):
        combined[method] = (
            invoice_rollup.get(method, {}).get("amount_cents", 0)
            + sales_rollup.get(method, {}).get("amount_cents", 0)
        )

    def _fmt(rollup: dict) -> dict:
        return {m: {"amount": format_cents(v["amount_cents"]), "count": v["count"]} for m, v in rollup.items()}

    return {
        "invoice_payments": _fmt(invoice_rollup),
        "cash_sales": _fmt(sales_rollup),
        "combined": {m: format_cents(combined[m]) for m in sorted(combined)},
    }


def overdue_aging(tenant_id: int, *, as_of: date | None = None) -> dict:
    """Unpaid, non-void invoices past due, bucketed by days overdue."""
    as_of = as_of or utcnow().date()
    rows = (
        db.session.query(Invoice.due_date, Invoice.total_cents, Invoice.amount_paid_cents)
        .filter(
            Invoice.tenant_id == tenant_id,
            Invoice.status != STATUS_VOID,
            Invoice.payment_status != PAYMENT_PAID,
            Invoice.due_date < as_of,
        )
        .all()
    )

    buckets = OrderedDict((label, {"count": 0, "amount_due_cents": 0}) for label, _, _ in AGING_BUCKETS)
    for due_date, total_cents, paid_cents in rows:
        days = (as_of - due_date).days
        for label, low, high in AGING_BUCKETS:
            if days >= low and (high is None or days <= high):
                buckets[label]["count"] += 1
                buckets[label]["amount_due_cents"] += total_cents - paid_cents
                break

    return {
        "as_of": to_iso_date(as_of),
        "buckets": [
            {"range": label, "count": b["count"], "amount_due": format_cents(b["amount_due_cents"])}
            for label, b in buckets.items()
        ],
        "total_count": sum(b["count"] for b in buckets.values()),
        "total_due": format_cents(sum(b["amount_due_cents"] for b in buckets.values())),
    }


# =============================================================================
# CASH LEDGER
# =============================================================================

def cash_statistics(tenant_id: int, *, period: str | None = "week") -> dict:
    """
    Sales/expense rollup of the cash ledger since the start of `period`.

    Includes closed sessions in the window and the mean absolute arqueo
    difference, the usual signal of drawer discipline.
    """
    now = utcnow()
    start_dt, _ = _resolve_window(period or "week", None, None, now)

    query = db.session.query(CashMovement).filter(CashMovement.tenant_id == tenant_id)
    if start_dt:
        query = query.filter(CashMovement.created_at >= start_dt)
    movements = query.order_by(CashMovement.created_at.asc(), CashMovement.id.asc()).all()

    sales = [m for m in movements if m.movement_type == MOVEMENT_SALE]
    expenses = [m for m in movements if m.movement_type == MOVEMENT_EXPENSE]
    total_sales = sum(m.amount_cents for m in sales)
    total_expenses = sum(-m.amount_cents for m in expenses)

    by_method = OrderedDict((method, 0) for method in PAYMENT_METHODS)
    by_day: dict[str, int] = OrderedDict()
    for m in sales:
        by_method[m.payment_method] = by_method.get(m.payment_method, 0) + m.amount_cents
        day = m.created_at.date().isoformat()
        by_day[day] = by_day.get(day, 0) + m.amount_cents

    by_category: dict[str, int] = OrderedDict()
    for m in expenses:
        category = m.category or "general"
        by_category[category] = by_category.get(category, 0) + -m.amount_cents

    sessions = db.session.query(func.count(CashSession.id)).filter(
        CashSession.tenant_id == tenant_id,
        CashSession.status == SESSION_CLOSED,
    )
    reconciliations = db.session.query(ReconciliationRecord.difference_cents).filter(
        ReconciliationRecord.tenant_id == tenant_id,
    )
    if start_dt:
        sessions = sessions.filter(CashSession.closed_at >= start_dt)
        reconciliations = reconciliations.filter(ReconciliationRecord.performed_at >= start_dt)
    differences = [abs(row[0]) for row in reconciliations.all()]

    return {
        "period": period or "week",
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(now),
        "total_sales": format_cents(total_sales),
        "total_expenses": format_cents(total_expenses),
        "balance": format_cents(total_sales - total_expenses),
        "sales_count": len(sales),
        "expenses_count": len(expenses),
        "average_ticket": _average_cents(total_sales, len(sales)),
        "sales_by_method": {m: format_cents(v) for m, v in by_method.items()},
        "sales_by_day": [{"date": d, "total": format_cents(v)} for d, v in by_day.items()],
        "expenses_by_category": [{"category": c, "total": format_cents(v)} for c, v in by_category.items()],
        "closed_sessions": sessions.scalar() or 0,
        "reconciliations_count": len(differences),
        "average_reconciliation_difference": _average_cents(sum(differences), len(differences)),
    }


def dashboard(tenant_id: int, *, period: str | None = "month", as_of: date | None = None) -> dict:
    """Invoice KPIs, method breakdown and overdue aging for one period."""
    now = utcnow()
    start_dt, _ = _resolve_window(period, None, None, now)
    return {
        "invoices": invoice_statistics(tenant_id, period=period, as_of=as_of),
        "payment_methods": payment_method_breakdown(tenant_id, start=start_dt),
        "overdue_aging": overdue_aging(tenant_id, as_of=as_of),
    }
