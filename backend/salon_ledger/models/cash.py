from __future__ import annotations

from ..extensions import db
from ..money_utils import format_cents
from ..time_utils import to_utc_z

SESSION_OPEN = "open"
SESSION_CLOSED = "closed"

MOVEMENT_SALE = "sale"
MOVEMENT_EXPENSE = "expense"
MOVEMENT_CASH_IN = "cash_in"
MOVEMENT_CASH_OUT = "cash_out"
MOVEMENT_TYPES = [MOVEMENT_SALE, MOVEMENT_EXPENSE, MOVEMENT_CASH_IN, MOVEMENT_CASH_OUT]
INFLOW_TYPES = {MOVEMENT_SALE, MOVEMENT_CASH_IN}

METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_TRANSFER = "transfer"
PAYMENT_METHODS = [METHOD_CASH, METHOD_CARD, METHOD_TRANSFER]

RECONCILIATION_BALANCED = "balanced"
RECONCILIATION_SURPLUS = "surplus"
RECONCILIATION_SHORTFALL = "shortfall"


class CashSession(db.Model):
    """
    Cash register session (Caja): one open-to-close working period of a till.

    LIFECYCLE:
    - open: movements and reconciliations may be appended
    - closed: counted, difference stamped; terminal

    IMMUTABLE: Once closed, the session is never reopened or deleted. The
    next working period is a new row.

    At most one open session per tenant: enforced by the service under a
    tenant row lock and, as a second line of defense, by the partial unique
    index below.
    """
    __tablename__ = "cash_sessions"
    __table_args__ = (
        db.Index(
            "uq_cash_sessions_one_open_per_tenant",
            "tenant_id",
            unique=True,
            sqlite_where=db.text("status = 'open'"),
            postgresql_where=db.text("status = 'open'"),
        ),
        db.Index("ix_cash_sessions_tenant_opened", "tenant_id", "opened_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=SESSION_OPEN, index=True)

    # All amounts in cents
    initial_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    final_amount_counted_cents = db.Column(db.Integer, nullable=True)  # Set when closing
    expected_cash_cents = db.Column(db.Integer, nullable=True)  # Stamped at close
    difference_cents = db.Column(db.Integer, nullable=True)  # counted - expected

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    # Touched by every movement so a concurrent close sees a version bump
    last_movement_at = db.Column(db.DateTime(timezone=True), nullable=True)

    opened_by = db.Column(db.String(128), nullable=True)
    closed_by = db.Column(db.String(128), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    closing_notes = db.Column(db.Text, nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    tenant = db.relationship("Tenant", backref=db.backref("cash_sessions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == SESSION_OPEN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "status": self.status,
            "initial_amount": format_cents(self.initial_amount_cents),
            "final_amount_counted": format_cents(self.final_amount_counted_cents),
            "expected_cash": format_cents(self.expected_cash_cents),
            "difference": format_cents(self.difference_cents),
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "last_movement_at": to_utc_z(self.last_movement_at) if self.last_movement_at else None,
            "opened_by": self.opened_by,
            "closed_by": self.closed_by,
            "notes": self.notes,
            "closing_notes": self.closing_notes,
            "version_id": self.version_id,
        }


class CashMovement(db.Model):
    """
    Append-only money movement inside a cash session.

    The stored amount is signed: sale/cash_in positive, expense/cash_out
    negative. Callers always supply a magnitude; the sign comes from the
    type. Rows are never updated; a correction is a compensating movement.
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.Index("ix_cash_movements_session_created", "session_id", "created_at"),
        db.Index("ix_cash_movements_tenant_created", "tenant_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False, default=METHOD_CASH, index=True)

    concept = db.Column(db.String(255), nullable=True)
    category = db.Column(db.String(64), nullable=True)  # Expenses only

    # Optional link to the invoice a sale settles
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_by = db.Column(db.String(128), nullable=True)

    session = db.relationship("CashSession", backref=db.backref("movements", lazy=True, order_by="CashMovement.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "session_id": self.session_id,
            "type": self.movement_type,
            "amount": format_cents(self.amount_cents),
            "payment_method": self.payment_method,
            "concept": self.concept,
            "category": self.category,
            "invoice_id": self.invoice_id,
            "created_at": to_utc_z(self.created_at),
            "created_by": self.created_by,
        }


class ReconciliationRecord(db.Model):
    """
    Arqueo: counted physical cash compared against the ledger-expected cash.

    Spot checks happen mid-session; close writes one more with
    is_closing=True. The breakdown columns freeze how expected_cash was
    derived at that moment.
    """
    __tablename__ = "reconciliation_records"
    __table_args__ = (
        db.Index("ix_reconciliations_tenant_performed", "tenant_id", "performed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)

    expected_cash_cents = db.Column(db.Integer, nullable=False)
    counted_cash_cents = db.Column(db.Integer, nullable=False)
    difference_cents = db.Column(db.Integer, nullable=False)
    state = db.Column(db.String(16), nullable=False, index=True)  # balanced, surplus, shortfall
    is_closing = db.Column(db.Boolean, nullable=False, default=False)

    # Breakdown of expected_cash
    initial_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_sales_cents = db.Column(db.Integer, nullable=False, default=0)
    expenses_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_in_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_out_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    performed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    performed_by = db.Column(db.String(128), nullable=True)

    session = db.relationship("CashSession", backref=db.backref("reconciliations", lazy=True, order_by="ReconciliationRecord.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "session_id": self.session_id,
            "expected_cash": format_cents(self.expected_cash_cents),
            "counted_cash": format_cents(self.counted_cash_cents),
            "difference": format_cents(self.difference_cents),
            "state": self.state,
            "is_closing": self.is_closing,
            "breakdown": {
                "initial_amount": format_cents(self.initial_amount_cents),
                "cash_sales": format_cents(self.cash_sales_cents),
                "expenses": format_cents(self.expenses_cents),
                "cash_in": format_cents(self.cash_in_cents),
                "cash_out": format_cents(self.cash_out_cents),
            },
            "notes": self.notes,
            "performed_at": to_utc_z(self.performed_at),
            "performed_by": self.performed_by,
        }
