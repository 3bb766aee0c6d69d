from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Tenant(db.Model):
    """
    Multi-tenant root: every salon account is a Tenant.

    WHY: Shared-database multi-tenancy with strict isolation. Cash sessions,
    invoices and sequence counters all belong to exactly one tenant and no
    invariant spans two tenants.

    The fiscal fields identify the tenant as the invoice issuer (seller
    party) in exported documents.
    """
    __tablename__ = "tenants"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # Issuer data for invoices
    legal_name = db.Column(db.String(255), nullable=True)
    tax_id = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    postal_code = db.Column(db.String(16), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    province = db.Column(db.String(128), nullable=True)
    country_code = db.Column(db.String(3), nullable=False, default="ESP")
    currency = db.Column(db.String(3), nullable=False, default="EUR")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} code={self.code!r}>"

    def issuer_dict(self) -> dict:
        return {
            "name": self.legal_name or self.name,
            "tax_id": self.tax_id or "",
            "address": self.address or "",
            "postal_code": self.postal_code or "",
            "city": self.city or "",
            "province": self.province or "",
            "country_code": self.country_code,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "issuer": self.issuer_dict(),
            "currency": self.currency,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
