from __future__ import annotations

from datetime import date
from decimal import Decimal

from ..extensions import db
from ..money_utils import bps_to_pct, format_cents
from ..time_utils import to_iso_date, to_utc_z, utcnow

INVOICE_ORDINARY = "ordinary"
INVOICE_SIMPLIFIED = "simplified"
INVOICE_PROFORMA = "proforma"
INVOICE_CORRECTIVE = "corrective"
INVOICE_TYPES = [INVOICE_ORDINARY, INVOICE_SIMPLIFIED, INVOICE_PROFORMA, INVOICE_CORRECTIVE]

STATUS_ISSUED = "issued"
STATUS_PAID = "paid"
STATUS_OVERDUE = "overdue"
STATUS_VOID = "void"
INVOICE_STATUSES = [STATUS_ISSUED, STATUS_PAID, STATUS_OVERDUE, STATUS_VOID]

PAYMENT_PENDING = "pending"
PAYMENT_PARTIAL = "partial"
PAYMENT_PAID = "paid"

QUANTITY_SCALE = 1000


class Invoice(db.Model):
    """
    Fiscal invoice (Factura).

    LIFECYCLE:
    1. ISSUED: created with its number; payment_status pending
    2. partial payments move payment_status pending -> partial
    3. PAID: amount_paid reached total (terminal for payments)
    4. VOID: cancelled; reachable from any non-void state (terminal)

    OVERDUE is a derived view (see effective_status). sweep_overdue may
    materialize it for reporting, but no write path depends on it.

    DESIGN PRINCIPLES:
    - number is allocated once, in the same transaction as the insert,
      and never changes
    - totals are derived from lines + tax rate + global discount and are
      never edited directly
    - customer and issuer data are snapshots taken at issue time
    - version_id serializes concurrent payment writers
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "number", name="uq_invoices_tenant_number"),
        db.Index("ix_invoices_tenant_status_issue", "tenant_id", "status", "issue_date"),
        db.Index("ix_invoices_tenant_due", "tenant_id", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    # Human-readable number (e.g., "FAC-2026-000001")
    number = db.Column(db.String(64), nullable=False)
    series = db.Column(db.String(8), nullable=False)
    sequence_number = db.Column(db.Integer, nullable=False)
    period_key = db.Column(db.String(16), nullable=False)

    invoice_type = db.Column(db.String(16), nullable=False, default=INVOICE_ORDINARY, index=True)
    status = db.Column(db.String(16), nullable=False, default=STATUS_ISSUED, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING, index=True)

    issue_date = db.Column(db.Date, nullable=False, index=True)
    due_date = db.Column(db.Date, nullable=False)

    # Customer snapshot
    customer_name = db.Column(db.String(255), nullable=False)
    customer_tax_id = db.Column(db.String(32), nullable=True)
    customer_address = db.Column(db.String(255), nullable=True)
    customer_postal_code = db.Column(db.String(16), nullable=True)
    customer_city = db.Column(db.String(128), nullable=True)
    customer_province = db.Column(db.String(128), nullable=True)
    customer_country = db.Column(db.String(3), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    currency = db.Column(db.String(3), nullable=False, default="EUR")
    tax_rate_code = db.Column(db.String(16), nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False)
    global_discount_bps = db.Column(db.Integer, nullable=False, default=0)

    # Totals (cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    taxable_base_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method_hint = db.Column(db.String(16), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.Text, nullable=True)
    voided_by = db.Column(db.String(128), nullable=True)

    # Corrective invoices point at the invoice they rectify
    corrects_invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    correction_reason = db.Column(db.Text, nullable=True)

    # e.g. "sale:1234" when generated from a POS sale
    source_reference = db.Column(db.String(64), nullable=True, index=True)

    document_hash = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_by = db.Column(db.String(128), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    tenant = db.relationship("Tenant", backref=db.backref("invoices", lazy=True))
    corrects_invoice = db.relationship("Invoice", remote_side=[id], backref=db.backref("corrections", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def amount_due_cents(self) -> int:
        return max((self.total_cents or 0) - (self.amount_paid_cents or 0), 0)

    def effective_status(self, as_of: date | None = None) -> str:
        """Stored status with overdue derived for unpaid invoices past due."""
        as_of = as_of or utcnow().date()
        if self.status == STATUS_VOID:
            return STATUS_VOID
        if self.payment_status == PAYMENT_PAID:
            return STATUS_PAID
        if self.due_date is not None and self.due_date < as_of:
            return STATUS_OVERDUE
        return STATUS_ISSUED

    def days_overdue(self, as_of: date | None = None) -> int:
        as_of = as_of or utcnow().date()
        if self.effective_status(as_of) != STATUS_OVERDUE:
            return 0
        return (as_of - self.due_date).days

    def customer_dict(self) -> dict:
        return {
            "name": self.customer_name,
            "tax_id": self.customer_tax_id,
            "address": self.customer_address,
            "postal_code": self.customer_postal_code,
            "city": self.customer_city,
            "province": self.customer_province,
            "country": self.customer_country,
            "email": self.customer_email,
            "phone": self.customer_phone,
        }

    def totals_dict(self) -> dict:
        return {
            "subtotal": format_cents(self.subtotal_cents),
            "discount_amount": format_cents(self.discount_amount_cents),
            "taxable_base": format_cents(self.taxable_base_cents),
            "tax_amount": format_cents(self.tax_amount_cents),
            "total": format_cents(self.total_cents),
        }

    def to_dict(self, *, as_of: date | None = None, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "number": self.number,
            "series": self.series,
            "sequence_number": self.sequence_number,
            "period_key": self.period_key,
            "type": self.invoice_type,
            "status": self.effective_status(as_of),
            "stored_status": self.status,
            "payment_status": self.payment_status,
            "issue_date": to_iso_date(self.issue_date),
            "due_date": to_iso_date(self.due_date),
            "customer": self.customer_dict(),
            "currency": self.currency,
            "tax_rate_code": self.tax_rate_code,
            "tax_rate": str(bps_to_pct(self.tax_rate_bps)),
            "global_discount_pct": str(bps_to_pct(self.global_discount_bps)),
            "totals": self.totals_dict(),
            "amount_paid": format_cents(self.amount_paid_cents),
            "amount_due": format_cents(self.amount_due_cents),
            "payment_method_hint": self.payment_method_hint,
            "notes": self.notes,
            "paid_at": to_utc_z(self.paid_at) if self.paid_at else None,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
            "corrects_invoice_id": self.corrects_invoice_id,
            "correction_reason": self.correction_reason,
            "source_reference": self.source_reference,
            "document_hash": self.document_hash,
            "created_at": to_utc_z(self.created_at),
            "created_by": self.created_by,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class InvoiceLine(db.Model):
    """
    Invoice line item.

    Quantity is stored in thousandths (quantity_milli) so that 1.5 hours of
    service survives storage without float drift. base_cents is the rounded
    display value; invoice totals are computed from the unrounded bases.
    """
    __tablename__ = "invoice_lines"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "position", name="uq_invoice_lines_invoice_position"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    description = db.Column(db.String(255), nullable=False)
    quantity_milli = db.Column(db.Integer, nullable=False)
    unit = db.Column(db.String(16), nullable=True)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_discount_bps = db.Column(db.Integer, nullable=False, default=0)
    base_cents = db.Column(db.Integer, nullable=False)

    invoice = db.relationship(
        "Invoice",
        backref=db.backref("lines", lazy=True, order_by="InvoiceLine.position", cascade="all, delete-orphan"),
    )

    @property
    def quantity(self) -> Decimal:
        return Decimal(self.quantity_milli) / QUANTITY_SCALE

    @property
    def unit_price(self) -> Decimal:
        return Decimal(self.unit_price_cents) / 100

    @property
    def discount_pct(self) -> Decimal:
        return bps_to_pct(self.line_discount_bps)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "position": self.position,
            "description": self.description,
            "quantity": format(self.quantity.normalize(), "f"),
            "unit": self.unit,
            "unit_price": format_cents(self.unit_price_cents),
            "discount_pct": str(self.discount_pct),
            "base": format_cents(self.base_cents),
        }


class InvoicePayment(db.Model):
    """Append-only payment against an invoice."""
    __tablename__ = "invoice_payments"
    __table_args__ = (
        db.Index("ix_invoice_payments_tenant_received", "tenant_id", "received_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(16), nullable=False, index=True)
    reference = db.Column(db.String(128), nullable=True)

    received_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    received_by = db.Column(db.String(128), nullable=True)

    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy=True, order_by="InvoicePayment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount": format_cents(self.amount_cents),
            "method": self.method,
            "reference": self.reference,
            "received_at": to_utc_z(self.received_at),
            "received_by": self.received_by,
        }
