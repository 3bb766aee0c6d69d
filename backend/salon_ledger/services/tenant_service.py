"""
Tenant Service: Lookup, Creation and Scoping Helpers

WHY: Every ledger and invoice operation runs on behalf of exactly one
tenant. Services take the tenant id as an explicit argument and scope every
query with it; this module is the single place that resolves it.

SECURITY INVARIANTS:
1. A tenant id from the request must resolve to an active Tenant row
2. Entity lookups filter by tenant_id, so another tenant's id reads as
   "not found" rather than "forbidden"
3. No operation locks or reads rows of two tenants at once
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Tenant
from ..validation import NotFoundError, ValidationError, clean_text
from .concurrency import lock_for_update, run_with_retry


def get_tenant(tenant_id: int) -> Tenant:
    tenant = db.session.query(Tenant).filter_by(id=tenant_id, is_active=True).first()
    if not tenant:
        raise NotFoundError("Tenant not found", details={"tenant_id": tenant_id})
    return tenant


def lock_tenant(tenant_id: int) -> Tenant:
    """Take the tenant row lock that serializes per-tenant critical sections."""
    tenant = lock_for_update(db.session.query(Tenant).filter_by(id=tenant_id, is_active=True)).first()
    if not tenant:
        raise NotFoundError("Tenant not found", details={"tenant_id": tenant_id})
    return tenant


def create_tenant(
    *,
    name: str,
    code: str,
    legal_name: str | None = None,
    tax_id: str | None = None,
    address: str | None = None,
    postal_code: str | None = None,
    city: str | None = None,
    province: str | None = None,
    country_code: str | None = None,
    currency: str | None = None,
) -> Tenant:
    name = clean_text(name, max_length=255)
    code = clean_text(code, max_length=32)
    if not name or not code:
        raise ValidationError("name and code are required")

    tenant = Tenant(
        name=name,
        code=code.upper(),
        legal_name=clean_text(legal_name, max_length=255),
        tax_id=(clean_text(tax_id, max_length=32) or "").upper() or None,
        address=clean_text(address, max_length=255),
        postal_code=clean_text(postal_code, max_length=16),
        city=clean_text(city, max_length=128),
        province=clean_text(province, max_length=128),
        country_code=(country_code or "ESP").upper(),
        currency=(currency or current_app.config.get("DEFAULT_CURRENCY", "EUR")).upper(),
    )
    db.session.add(tenant)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError(f"Tenant code '{code.upper()}' already exists", details={"code": code.upper()})

    current_app.logger.info("Tenant created id=%s code=%s", tenant.id, tenant.code)
    return tenant


def list_tenants(*, include_inactive: bool = False) -> list[Tenant]:
    query = db.session.query(Tenant)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    return query.order_by(Tenant.id.asc()).all()


# Tenant columns an issuer update may touch, with their max lengths
ISSUER_FIELDS = {
    "legal_name": 255,
    "tax_id": 32,
    "address": 255,
    "postal_code": 16,
    "city": 128,
    "province": 128,
    "country_code": 3,
}


def update_issuer(tenant_id: int, **fields) -> Tenant:
    """
    Update the issuer fiscal data printed on exported invoices.

    Only the keys in ISSUER_FIELDS are accepted; a key set to None or ""
    clears the value (country_code falls back to ESP). Issued invoices are
    not touched: exports read the issuer at export time, while the customer
    side of each invoice is a snapshot.

    Raises:
        ValidationError: no fields, or a field outside ISSUER_FIELDS
        NotFoundError: unknown or inactive tenant
    """
    unknown = sorted(set(fields) - set(ISSUER_FIELDS))
    if unknown:
        raise ValidationError(
            "Unknown issuer fields",
            details={"unknown": unknown, "allowed": sorted(ISSUER_FIELDS)},
        )
    if not fields:
        raise ValidationError("No issuer fields to update", details={"allowed": sorted(ISSUER_FIELDS)})

    values = {}
    for key, value in fields.items():
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"{key} must be a string", details={"field": key})
        values[key] = clean_text(value, max_length=ISSUER_FIELDS[key])
    if "tax_id" in values and values["tax_id"]:
        values["tax_id"] = "".join(values["tax_id"].split()).upper()
    if "country_code" in values:
        values["country_code"] = (values["country_code"] or "ESP").upper()

    def _op() -> Tenant:
        tenant = lock_tenant(tenant_id)
        for key, value in values.items():
            setattr(tenant, key, value)
        db.session.commit()
        return tenant

    tenant = run_with_retry(_op)
    current_app.logger.info("Issuer data updated tenant=%s fields=%s", tenant_id, ",".join(sorted(values)))
    return tenant
