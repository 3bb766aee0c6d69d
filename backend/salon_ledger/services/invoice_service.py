"""
Invoice Lifecycle Service (Facturación)

WHY: Issue fiscally numbered invoices, track partial payments against them
and move them through their states without ever renumbering or silently
changing an issued amount.

DESIGN PRINCIPLES:
- The number is allocated in the same transaction as the invoice insert,
  so a failed creation leaves no gap
- Totals come from money_utils.compute_totals and are stored once
- Payments are append-only; amount_paid never exceeds total
- A void invoice keeps its payments and accepts no more
- Overdue is derived at read time; sweep_overdue only materializes it

CONCURRENCY:
- Payments and voids lock the invoice row and rely on the optimistic
  version_id; a stale write is retried from a fresh read
"""

from __future__ import annotations

import hashlib
import re
from datetime import date, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy import and_, update

from ..extensions import db
from ..models import Invoice, InvoiceLine, InvoicePayment
from ..models.cash import METHOD_CASH, PAYMENT_METHODS
from ..models.invoicing import (
    INVOICE_CORRECTIVE,
    INVOICE_ORDINARY,
    INVOICE_STATUSES,
    INVOICE_TYPES,
    PAYMENT_PAID,
    PAYMENT_PARTIAL,
    PAYMENT_PENDING,
    QUANTITY_SCALE,
    STATUS_ISSUED,
    STATUS_OVERDUE,
    STATUS_PAID,
    STATUS_VOID,
)
from ..money_utils import (
    HUNDRED,
    LineAmounts,
    ZERO,
    check_amount_limit,
    compute_totals,
    format_cents,
    pct_to_bps,
    round_money,
    to_cents,
    to_decimal,
    bps_to_pct,
)
from ..time_utils import utcnow
from ..validation import (
    AlreadyVoid,
    InvalidAmount,
    InvoiceVoid,
    NotFoundError,
    OverPayment,
    ValidationError,
    clean_text,
    coerce_int,
    require_choice,
)
from .concurrency import lock_for_update, run_with_retry
from .sequence_service import format_number, next_value, series_for
from .tenant_service import get_tenant

# IVA rate codes -> percent
TAX_RATES = {
    "general": Decimal("21"),
    "reduced": Decimal("10"),
    "super_reduced": Decimal("4"),
    "exempt": Decimal("0"),
}
DEFAULT_TAX_RATE_CODE = "general"
DEFAULT_DUE_DAYS = 30

# quantity_milli stays inside a 32-bit integer
MAX_LINE_QUANTITY = Decimal("100000")

NIF_LETTERS = "TRWAGMYFPDXBNJZSQVHLCKE"
_DNI_RE = re.compile(r"^\d{8}[A-Z]$")
_NIE_RE = re.compile(r"^[XYZ]\d{7}[A-Z]$")
_CIF_RE = re.compile(r"^[ABCDEFGHJNPQRSUVW]\d{7}[A-Z0-9]$")


# =============================================================================
# TAX IDS AND HASHES
# =============================================================================

def validate_tax_id(value: str | None) -> bool:
    """
    Spanish tax id check.

    DNI: 8 digits + check letter (number mod 23)
    NIE: X/Y/Z (read as 0/1/2) + 7 digits + check letter
    CIF: organization letter + 7 digits + control character (shape only)
    """
    if not value:
        return False
    tax_id = re.sub(r"\s", "", str(value)).upper()

    if _DNI_RE.match(tax_id):
        return tax_id[8] == NIF_LETTERS[int(tax_id[:8]) % 23]

    if _NIE_RE.match(tax_id):
        number = "012"["XYZ".index(tax_id[0])] + tax_id[1:8]
        return tax_id[8] == NIF_LETTERS[int(number) % 23]

    return bool(_CIF_RE.match(tax_id))


def document_hash(number: str, issue_date: date, total_cents: int) -> str:
    payload = f"{number}|{issue_date.isoformat()}|{format_cents(total_cents)}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# =============================================================================
# INPUT PARSING
# =============================================================================

def _tax_rate(code: str | None) -> tuple[str, Decimal]:
    code = require_choice("tax_rate_code", code or DEFAULT_TAX_RATE_CODE, TAX_RATES.keys())
    return code, TAX_RATES[code]


def _parse_customer(customer) -> dict:
    if not isinstance(customer, dict):
        raise ValidationError("customer is required", details={"field": "customer"})
    name = clean_text(customer.get("name"), max_length=255)
    if not name:
        raise ValidationError("customer.name is required", details={"field": "customer.name"})
    tax_id = clean_text(customer.get("tax_id"), max_length=32)
    return {
        "customer_name": name,
        "customer_tax_id": re.sub(r"\s", "", tax_id).upper() if tax_id else None,
        "customer_address": clean_text(customer.get("address"), max_length=255),
        "customer_postal_code": clean_text(customer.get("postal_code"), max_length=16),
        "customer_city": clean_text(customer.get("city"), max_length=128),
        "customer_province": clean_text(customer.get("province"), max_length=128),
        "customer_country": (clean_text(customer.get("country"), max_length=3) or "ESP").upper(),
        "customer_email": clean_text(customer.get("email"), max_length=255),
        "customer_phone": clean_text(customer.get("phone"), max_length=32),
    }


def _parse_line(index: int, raw) -> tuple[dict, LineAmounts]:
    field = f"lines[{index}]"
    if not isinstance(raw, dict):
        raise ValidationError(f"{field} must be an object")

    description = clean_text(raw.get("description"), max_length=255)
    if not description:
        raise ValidationError(f"{field}.description is required", details={"field": f"{field}.description"})

    quantity = to_decimal(raw.get("quantity", 1), f"{field}.quantity")
    if quantity <= ZERO:
        raise InvalidAmount(f"{field}.quantity must be greater than zero", details={"value": str(quantity)})
    if quantity > MAX_LINE_QUANTITY:
        raise InvalidAmount(
            f"{field}.quantity cannot exceed {MAX_LINE_QUANTITY}",
            details={"value": str(quantity), "max": str(MAX_LINE_QUANTITY)},
        )
    milli = quantity * QUANTITY_SCALE
    if milli != milli.to_integral_value():
        raise InvalidAmount(f"{field}.quantity cannot have more than 3 decimal places", details={"value": str(quantity)})

    unit_price_cents = to_cents(raw.get("unit_price"), f"{field}.unit_price")
    if unit_price_cents < 0:
        raise InvalidAmount(f"{field}.unit_price cannot be negative", details={"value": format_cents(unit_price_cents)})

    discount = raw.get("discount_pct", raw.get("discount", 0)) or 0
    discount_bps = pct_to_bps(discount, f"{field}.discount_pct")

    amounts = LineAmounts(
        quantity=quantity,
        unit_price=Decimal(unit_price_cents) / HUNDRED,
        discount_pct=bps_to_pct(discount_bps),
    )
    columns = {
        "position": index + 1,
        "description": description,
        "quantity_milli": int(milli),
        "unit": clean_text(raw.get("unit"), max_length=16),
        "unit_price_cents": unit_price_cents,
        "line_discount_bps": discount_bps,
        "base_cents": int(round_money(check_amount_limit(amounts.base, f"{field}.base")) * HUNDRED),
    }
    return columns, amounts


def _parse_lines(lines) -> list[tuple[dict, LineAmounts]]:
    max_lines = int(current_app.config.get("INVOICE_MAX_LINES", 100))
    if not isinstance(lines, list) or not lines:
        raise ValidationError("An invoice needs at least one line", details={"field": "lines"})
    if len(lines) > max_lines:
        raise ValidationError(
            f"An invoice can have at most {max_lines} lines",
            details={"field": "lines", "count": len(lines), "max": max_lines},
        )
    return [_parse_line(i, raw) for i, raw in enumerate(lines)]


def _global_discount_bps(value) -> int:
    max_pct = Decimal(str(current_app.config.get("INVOICE_MAX_GLOBAL_DISCOUNT_PCT", 50)))
    bps = pct_to_bps(value or 0, "discount_pct")
    if bps_to_pct(bps) > max_pct:
        raise ValidationError(
            f"Global discount cannot exceed {max_pct}%",
            details={"field": "discount_pct", "max": str(max_pct)},
        )
    return bps


def _due_days(value) -> int:
    max_days = int(current_app.config.get("INVOICE_MAX_DUE_DAYS", 365))
    if value is None or value == "":
        return DEFAULT_DUE_DAYS
    return coerce_int("due_days", value, minimum=0, maximum=max_days)


# =============================================================================
# CREATION
# =============================================================================

def create_invoice(
    tenant_id: int,
    *,
    customer: dict,
    lines: list,
    invoice_type: str | None = None,
    tax_rate_code: str | None = None,
    global_discount_pct=0,
    due_in_days=None,
    notes: str | None = None,
    payment_method_hint: str | None = None,
    issue_date: date | None = None,
    created_by: str | None = None,
    source_reference: str | None = None,
    corrects_invoice_id: int | None = None,
    correction_reason: str | None = None,
) -> Invoice:
    """
    Validate, total, number and persist a new invoice in one transaction.

    Raises:
        ValidationError / InvalidAmount: any input outside its limits
        ValidationError: corrective type without an original invoice and reason
        NotFoundError: unknown tenant
    """
    invoice_type = require_choice("type", invoice_type or INVOICE_ORDINARY, INVOICE_TYPES)
    if invoice_type == INVOICE_CORRECTIVE and (corrects_invoice_id is None or not correction_reason):
        raise ValidationError(
            "Corrective invoices are issued from the invoice they correct",
            details={"field": "type", "value": invoice_type},
        )
    customer_columns = _parse_customer(customer)
    parsed_lines = _parse_lines(lines)
    rate_code, rate_pct = _tax_rate(tax_rate_code)
    discount_bps = _global_discount_bps(global_discount_pct)
    due_days = _due_days(due_in_days)
    if payment_method_hint:
        payment_method_hint = require_choice("payment_method", payment_method_hint, PAYMENT_METHODS)
    notes = clean_text(notes, max_length=2000)

    totals = compute_totals([amounts for _, amounts in parsed_lines], rate_pct, bps_to_pct(discount_bps))
    total_columns = totals.as_cents()
    prefix = series_for(invoice_type)

    def _op() -> Invoice:
        tenant = get_tenant(tenant_id)
        issued_on = issue_date or utcnow().date()
        period_key = str(issued_on.year)

        value = next_value(tenant_id, invoice_type, period_key)
        number = format_number(prefix, period_key, value)

        invoice = Invoice(
            tenant_id=tenant_id,
            number=number,
            series=prefix,
            sequence_number=value,
            period_key=period_key,
            invoice_type=invoice_type,
            status=STATUS_ISSUED,
            payment_status=PAYMENT_PENDING,
            issue_date=issued_on,
            due_date=issued_on + timedelta(days=due_days),
            currency=tenant.currency,
            tax_rate_code=rate_code,
            tax_rate_bps=int(rate_pct * HUNDRED),
            global_discount_bps=discount_bps,
            amount_paid_cents=0,
            payment_method_hint=payment_method_hint,
            notes=notes,
            corrects_invoice_id=corrects_invoice_id,
            correction_reason=correction_reason,
            source_reference=source_reference,
            created_by=created_by,
            document_hash=document_hash(number, issued_on, total_columns["total_cents"]),
            **customer_columns,
            **total_columns,
        )
        for columns, _ in parsed_lines:
            invoice.lines.append(InvoiceLine(**columns))

        db.session.add(invoice)
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    current_app.logger.info(
        "Invoice issued tenant=%s number=%s total=%s",
        tenant_id, invoice.number, format_cents(invoice.total_cents),
    )
    return invoice


def create_from_sale(tenant_id: int, sale: dict, customer: dict, *, created_by: str | None = None) -> Invoice:
    """
    Invoice a point-of-sale ticket.

    `sale` carries id, items [{name, quantity, price, discount}] and an
    optional payment_method.
    """
    if not isinstance(sale, dict):
        raise ValidationError("sale is required", details={"field": "sale"})
    items = sale.get("items")
    if not isinstance(items, list) or not items:
        raise ValidationError("sale.items must be a non-empty list", details={"field": "sale.items"})

    lines = []
    for item in items:
        if not isinstance(item, dict):
            raise ValidationError("sale.items entries must be objects")
        lines.append({
            "description": item.get("name") or item.get("description"),
            "quantity": item.get("quantity", 1),
            "unit_price": item.get("price", item.get("unit_price")),
            "discount_pct": item.get("discount", 0),
            "unit": item.get("unit") or "unit",
        })

    sale_id = sale.get("id")
    return create_invoice(
        tenant_id,
        customer=customer,
        lines=lines,
        invoice_type=sale.get("invoice_type"),
        tax_rate_code=sale.get("tax_rate_code"),
        payment_method_hint=sale.get("payment_method") or METHOD_CASH,
        notes=f"Generated from sale #{sale_id}" if sale_id is not None else None,
        source_reference=f"sale:{sale_id}" if sale_id is not None else None,
        created_by=created_by,
    )


def create_corrective(
    tenant_id: int,
    original_invoice_id: int,
    *,
    reason: str,
    lines: list | None = None,
    tax_rate_code: str | None = None,
    created_by: str | None = None,
) -> Invoice:
    """
    Corrective invoice (factura rectificativa) in the REC series.

    Customer snapshot, tax rate and global discount are copied from the
    original; lines default to the original's lines.
    """
    reason = clean_text(reason, max_length=2000)
    if not reason:
        raise ValidationError("reason is required for a corrective invoice", details={"field": "reason"})

    original = get_invoice(tenant_id, original_invoice_id)
    if original.status == STATUS_VOID:
        raise InvoiceVoid(
            f"Invoice {original.number} is void and cannot be corrected",
            details={"invoice_id": original.id, "status": original.status},
        )

    if lines is None:
        lines = [
            {
                "description": line.description,
                "quantity": line.quantity,
                "unit_price": Decimal(line.unit_price_cents) / HUNDRED,
                "discount_pct": bps_to_pct(line.line_discount_bps),
                "unit": line.unit,
            }
            for line in original.lines
        ]

    customer = original.customer_dict()
    return create_invoice(
        tenant_id,
        customer=customer,
        lines=lines,
        invoice_type=INVOICE_CORRECTIVE,
        tax_rate_code=tax_rate_code or original.tax_rate_code,
        global_discount_pct=bps_to_pct(original.global_discount_bps),
        notes=f"Corrects invoice {original.number}. Reason: {reason}",
        corrects_invoice_id=original.id,
        correction_reason=reason,
        created_by=created_by,
    )


# =============================================================================
# PAYMENTS AND STATE TRANSITIONS
# =============================================================================

def _lock_invoice(tenant_id: int, invoice_id: int) -> Invoice:
    invoice = lock_for_update(
        db.session.query(Invoice).filter_by(id=invoice_id, tenant_id=tenant_id)
    ).first()
    if not invoice:
        raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


def apply_payment(
    tenant_id: int,
    invoice_id: int,
    amount,
    *,
    method: str | None = None,
    reference: str | None = None,
    received_by: str | None = None,
) -> InvoicePayment:
    """
    Record a (partial) payment.

    Raises:
        InvalidAmount: amount <= 0 or malformed
        InvoiceVoid: invoice is void
        OverPayment: amount exceeds what is still due (states by how much)
    """
    cents = to_cents(amount, "amount")
    if cents <= 0:
        raise InvalidAmount("Payment amount must be greater than zero", details={"value": format_cents(cents)})
    method = require_choice("method", method or METHOD_CASH, PAYMENT_METHODS)
    reference = clean_text(reference, max_length=128)

    def _op() -> InvoicePayment:
        invoice = _lock_invoice(tenant_id, invoice_id)
        if invoice.status == STATUS_VOID:
            raise InvoiceVoid(
                f"Invoice {invoice.number} is void and accepts no payments",
                details={"invoice_id": invoice.id, "status": invoice.status},
            )

        new_paid = invoice.amount_paid_cents + cents
        if new_paid > invoice.total_cents:
            excess = new_paid - invoice.total_cents
            raise OverPayment(
                f"Payment exceeds the amount due by {format_cents(excess)}",
                details={
                    "invoice_id": invoice.id,
                    "total": format_cents(invoice.total_cents),
                    "amount_paid": format_cents(invoice.amount_paid_cents),
                    "amount_due": format_cents(invoice.amount_due_cents),
                    "attempted": format_cents(cents),
                    "excess": format_cents(excess),
                },
            )

        now = utcnow()
        invoice.amount_paid_cents = new_paid
        if new_paid == invoice.total_cents:
            invoice.payment_status = PAYMENT_PAID
            invoice.status = STATUS_PAID
            invoice.paid_at = now
        else:
            invoice.payment_status = PAYMENT_PARTIAL

        payment = InvoicePayment(
            tenant_id=tenant_id,
            invoice_id=invoice.id,
            amount_cents=cents,
            method=method,
            reference=reference,
            received_at=now,
            received_by=received_by,
        )
        db.session.add(payment)
        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    current_app.logger.info(
        "Invoice payment tenant=%s invoice=%s amount=%s method=%s",
        tenant_id, invoice_id, format_cents(cents), method,
    )
    return payment


def void_invoice(
    tenant_id: int,
    invoice_id: int,
    *,
    reason: str,
    voided_by: str | None = None,
) -> Invoice:
    """
    Void (anular) an invoice from any non-void state.

    Payments already recorded are kept; lines and totals stay frozen.
    """
    reason = clean_text(reason, max_length=2000)
    if not reason:
        raise ValidationError("reason is required to void an invoice", details={"field": "reason"})

    def _op() -> Invoice:
        invoice = _lock_invoice(tenant_id, invoice_id)
        if invoice.status == STATUS_VOID:
            raise AlreadyVoid(
                f"Invoice {invoice.number} is already void",
                details={"invoice_id": invoice.id, "voided_at": invoice.voided_at.isoformat() if invoice.voided_at else None},
            )
        invoice.status = STATUS_VOID
        invoice.void_reason = reason
        invoice.voided_at = utcnow()
        invoice.voided_by = voided_by
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    current_app.logger.info("Invoice voided tenant=%s number=%s", tenant_id, invoice.number)
    return invoice


def effective_status(invoice: Invoice, as_of: date | None = None) -> str:
    return invoice.effective_status(as_of)


def sweep_overdue(tenant_id: int | None = None, *, as_of: date | None = None) -> int:
    """
    Materialize the overdue view: issued, unpaid invoices past due become
    status=overdue. Returns the number of invoices updated.
    """
    as_of = as_of or utcnow().date()

    def _op() -> int:
        stmt = (
            update(Invoice)
            .where(
                Invoice.status == STATUS_ISSUED,
                Invoice.payment_status != PAYMENT_PAID,
                Invoice.due_date < as_of,
            )
            .values(status=STATUS_OVERDUE, version_id=Invoice.version_id + 1)
            .execution_options(synchronize_session=False)
        )
        if tenant_id is not None:
            stmt = stmt.where(Invoice.tenant_id == tenant_id)
        result = db.session.execute(stmt)
        db.session.commit()
        return result.rowcount or 0

    count = run_with_retry(_op)
    current_app.logger.info("Overdue sweep tenant=%s as_of=%s updated=%s", tenant_id, as_of, count)
    return count


# =============================================================================
# READS
# =============================================================================

def get_invoice(tenant_id: int, invoice_id: int) -> Invoice:
    invoice = db.session.query(Invoice).filter_by(id=invoice_id, tenant_id=tenant_id).first()
    if not invoice:
        raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


def get_payments(tenant_id: int, invoice_id: int) -> list[InvoicePayment]:
    get_invoice(tenant_id, invoice_id)
    return (
        db.session.query(InvoicePayment)
        .filter_by(tenant_id=tenant_id, invoice_id=invoice_id)
        .order_by(InvoicePayment.id.asc())
        .all()
    )


def _open_unpaid():
    return and_(
        Invoice.status.in_([STATUS_ISSUED, STATUS_OVERDUE]),
        Invoice.payment_status != PAYMENT_PAID,
    )


def _status_filter(status: str, as_of: date):
    if status == STATUS_VOID:
        return Invoice.status == STATUS_VOID
    if status == STATUS_PAID:
        return and_(Invoice.status != STATUS_VOID, Invoice.payment_status == PAYMENT_PAID)
    if status == STATUS_OVERDUE:
        return and_(_open_unpaid(), Invoice.due_date < as_of)
    return and_(_open_unpaid(), Invoice.due_date >= as_of)


def list_invoices(
    tenant_id: int,
    *,
    status: str | None = None,
    invoice_type: str | None = None,
    start: date | None = None,
    end: date | None = None,
    customer_name: str | None = None,
    min_total=None,
    max_total=None,
    limit: int = 50,
    offset: int = 0,
    as_of: date | None = None,
) -> list[Invoice]:
    """
    Filtered invoice listing, newest first.

    `status` filters on the effective status, so "overdue" and "issued"
    partition the open unpaid invoices by due date as of `as_of`.
    """
    as_of = as_of or utcnow().date()
    query = db.session.query(Invoice).filter(Invoice.tenant_id == tenant_id)

    if status:
        status = require_choice("status", status, INVOICE_STATUSES)
        query = query.filter(_status_filter(status, as_of))
    if invoice_type:
        invoice_type = require_choice("type", invoice_type, INVOICE_TYPES)
        query = query.filter(Invoice.invoice_type == invoice_type)
    if start:
        query = query.filter(Invoice.issue_date >= start)
    if end:
        query = query.filter(Invoice.issue_date <= end)
    if customer_name:
        query = query.filter(Invoice.customer_name.ilike(f"%{customer_name.strip()}%"))
    if min_total not in (None, ""):
        query = query.filter(Invoice.total_cents >= to_cents(min_total, "min_total"))
    if max_total not in (None, ""):
        query = query.filter(Invoice.total_cents <= to_cents(max_total, "max_total"))

    return (
        query.order_by(Invoice.issue_date.desc(), Invoice.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def list_overdue(tenant_id: int, *, as_of: date | None = None) -> list[dict]:
    """Overdue invoices (oldest due first) with days_overdue as of `as_of`."""
    as_of = as_of or utcnow().date()
    invoices = (
        db.session.query(Invoice)
        .filter(Invoice.tenant_id == tenant_id, _status_filter(STATUS_OVERDUE, as_of))
        .order_by(Invoice.due_date.asc(), Invoice.id.asc())
        .all()
    )
    result = []
    for invoice in invoices:
        data = invoice.to_dict(as_of=as_of, include_lines=False)
        data["days_overdue"] = invoice.days_overdue(as_of)
        result.append(data)
    return result


def tax_rates() -> list[dict]:
    return [{"code": code, "rate": str(rate)} for code, rate in TAX_RATES.items()]
