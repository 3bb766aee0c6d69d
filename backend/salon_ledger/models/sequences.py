from __future__ import annotations

from ..extensions import db


class SequenceCounter(db.Model):
    """
    Monotonic document counter per (tenant, document type, period).

    next_value is the value the next allocation returns. It is only ever
    advanced by a single atomic UPDATE inside the transaction that inserts
    the numbered document, so a rolled-back insert releases its number.
    """
    __tablename__ = "sequence_counters"
    __table_args__ = (
        db.UniqueConstraint(
            "tenant_id", "document_type", "period_key",
            name="uq_sequence_counters_tenant_type_period",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False)
    period_key = db.Column(db.String(16), nullable=False)
    next_value = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "tenant_id": self.tenant_id,
            "document_type": self.document_type,
            "period_key": self.period_key,
            "next_value": self.next_value,
        }
