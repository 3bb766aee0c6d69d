# Overview: Flask API routes for invoices; parses input and returns JSON responses.

# backend/salon_ledger/routes/invoices.py
"""
Invoice API Routes (Facturación)

WHY: Issue, collect, void and export fiscally numbered invoices.

DESIGN:
- Creation allocates the number atomically with the insert
- Payments are append-only; over-payment is rejected with the excess
- Void is terminal and keeps recorded payments
- Status in responses is the effective status (overdue derived at read time)
"""

from flask import Blueprint, request, jsonify, g, current_app, Response

from ..decorators import require_tenant, error_response
from ..services import invoice_service, export_service, tenant_service
from ..time_utils import parse_iso_date
from ..validation import LedgerError, ValidationError, coerce_int, require_fields


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


def _body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _date_arg(name: str):
    value = request.args.get(name)
    if not value:
        return None
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{name} must be YYYY-MM-DD", details={"field": name, "value": value})


def _invoice_payload(invoice) -> dict:
    data = invoice.to_dict()
    data["payments"] = [p.to_dict() for p in invoice.payments]
    return data


# =============================================================================
# CREATION
# =============================================================================

@invoices_bp.post("/")
@invoices_bp.post("")
@require_tenant
def create_invoice_route():
    """
    Issue an invoice.

    Request body:
    {
        "type": "ordinary",  (optional: ordinary, simplified, proforma)
        "customer": {"name": "Ana López", "tax_id": "12345678Z", ...},
        "lines": [{"description": "Corte", "quantity": 1, "unit_price": "100.00", "discount_pct": 10}],
        "tax_rate_code": "general",  (optional: general, reduced, super_reduced, exempt)
        "discount_pct": 0,  (optional, global, max 50)
        "due_days": 30,  (optional, 0-365)
        "payment_method": "card",  (optional hint)
        "notes": "..."  (optional)
    }
    """
    try:
        data = _body()
        require_fields(data, "customer", "lines")
        invoice = invoice_service.create_invoice(
            g.tenant_id,
            customer=data.get("customer"),
            lines=data.get("lines"),
            invoice_type=data.get("type"),
            tax_rate_code=data.get("tax_rate_code"),
            global_discount_pct=data.get("discount_pct", 0),
            due_in_days=data.get("due_days"),
            notes=data.get("notes"),
            payment_method_hint=data.get("payment_method"),
            created_by=g.actor,
        )
        return jsonify({"invoice": _invoice_payload(invoice)}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@invoices_bp.post("/from-sale")
@require_tenant
def create_from_sale_route():
    """
    Invoice a POS sale.

    Request body:
    {
        "sale": {"id": 1234, "items": [{"name": "Tinte", "quantity": 1, "price": "45.00"}], "payment_method": "card"},
        "customer": {"name": "Ana López"}
    }
    """
    try:
        data = _body()
        require_fields(data, "sale", "customer")
        invoice = invoice_service.create_from_sale(
            g.tenant_id, data.get("sale"), data.get("customer"), created_by=g.actor,
        )
        return jsonify({"invoice": _invoice_payload(invoice)}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice from sale")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/corrective")
@require_tenant
def create_corrective_route(invoice_id: int):
    """
    Issue a corrective invoice (REC series) for an existing invoice.

    Request body:
    {
        "reason": "Wrong price",
        "lines": [...]  (optional, defaults to the original lines)
    }
    """
    try:
        data = _body()
        require_fields(data, "reason")
        invoice = invoice_service.create_corrective(
            g.tenant_id,
            invoice_id,
            reason=data.get("reason"),
            lines=data.get("lines"),
            tax_rate_code=data.get("tax_rate_code"),
            created_by=g.actor,
        )
        return jsonify({"invoice": _invoice_payload(invoice)}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create corrective invoice")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


# =============================================================================
# PAYMENTS AND VOID
# =============================================================================

@invoices_bp.post("/<int:invoice_id>/payments")
@require_tenant
def apply_payment_route(invoice_id: int):
    """
    Record a payment.

    Request body:
    {
        "amount": "60.00",
        "method": "cash" | "card" | "transfer",
        "reference": "TPV-0001"  (optional)
    }
    """
    try:
        data = _body()
        require_fields(data, "amount")
        payment = invoice_service.apply_payment(
            g.tenant_id,
            invoice_id,
            data.get("amount"),
            method=data.get("method"),
            reference=data.get("reference"),
            received_by=g.actor,
        )
        invoice = invoice_service.get_invoice(g.tenant_id, invoice_id)
        return jsonify({"payment": payment.to_dict(), "invoice": _invoice_payload(invoice)}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to apply invoice payment")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>/payments")
@require_tenant
def list_payments_route(invoice_id: int):
    try:
        payments = invoice_service.get_payments(g.tenant_id, invoice_id)
        return jsonify({"payments": [p.to_dict() for p in payments]}), 200
    except LedgerError as e:
        return error_response(e)


@invoices_bp.post("/<int:invoice_id>/void")
@require_tenant
def void_invoice_route(invoice_id: int):
    """
    Void an invoice.

    Request body:
    {
        "reason": "Duplicated"
    }
    """
    try:
        data = _body()
        require_fields(data, "reason")
        invoice = invoice_service.void_invoice(
            g.tenant_id, invoice_id, reason=data.get("reason"), voided_by=g.actor,
        )
        return jsonify({"invoice": _invoice_payload(invoice)}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to void invoice")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


# =============================================================================
# READS AND EXPORTS
# =============================================================================

@invoices_bp.get("/")
@invoices_bp.get("")
@require_tenant
def list_invoices_route():
    """
    List invoices.

    Query params: status, type, start, end (YYYY-MM-DD, issue date),
    customer, min_total, max_total, limit, offset
    """
    try:
        limit = coerce_int("limit", request.args.get("limit", 50), minimum=1, maximum=500)
        offset = coerce_int("offset", request.args.get("offset", 0), minimum=0)
        invoices = invoice_service.list_invoices(
            g.tenant_id,
            status=request.args.get("status"),
            invoice_type=request.args.get("type"),
            start=_date_arg("start"),
            end=_date_arg("end"),
            customer_name=request.args.get("customer"),
            min_total=request.args.get("min_total"),
            max_total=request.args.get("max_total"),
            limit=limit,
            offset=offset,
        )
        return jsonify({
            "invoices": [i.to_dict(include_lines=False) for i in invoices],
            "limit": limit,
            "offset": offset,
        }), 200
    except LedgerError as e:
        return error_response(e)


@invoices_bp.get("/overdue")
@require_tenant
def list_overdue_route():
    try:
        return jsonify({"invoices": invoice_service.list_overdue(g.tenant_id, as_of=_date_arg("as_of"))}), 200
    except LedgerError as e:
        return error_response(e)


@invoices_bp.get("/tax-rates")
@require_tenant
def tax_rates_route():
    return jsonify({"tax_rates": invoice_service.tax_rates()}), 200


@invoices_bp.post("/validate-tax-id")
@require_tenant
def validate_tax_id_route():
    try:
        data = _body()
        require_fields(data, "tax_id")
        return jsonify({"tax_id": data["tax_id"], "valid": invoice_service.validate_tax_id(data["tax_id"])}), 200
    except LedgerError as e:
        return error_response(e)


# =============================================================================
# ISSUER CONFIGURATION
# =============================================================================

def _issuer_payload(tenant) -> dict:
    issuer = tenant.issuer_dict()
    return {
        "issuer": issuer,
        "tax_id_valid": invoice_service.validate_tax_id(issuer["tax_id"]),
        "currency": tenant.currency,
        "export_formats": list(export_service.EXPORT_FORMATS),
    }


@invoices_bp.get("/config/issuer")
@require_tenant
def get_issuer_route():
    try:
        return jsonify(_issuer_payload(tenant_service.get_tenant(g.tenant_id))), 200
    except LedgerError as e:
        return error_response(e)


@invoices_bp.put("/config/issuer")
@require_tenant
def update_issuer_route():
    """
    Update the issuer data printed on exports.

    Request body (any subset):
    {
        "legal_name": "Peluquería Lola SL",
        "tax_id": "B12345678",
        "address": "Calle Mayor 1",
        "postal_code": "28013",
        "city": "Madrid",
        "province": "Madrid",
        "country_code": "ESP"
    }
    """
    try:
        tenant = tenant_service.update_issuer(g.tenant_id, **_body())
        return jsonify(_issuer_payload(tenant)), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update issuer data")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_tenant
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(g.tenant_id, invoice_id)
        return jsonify({"invoice": _invoice_payload(invoice)}), 200
    except LedgerError as e:
        return error_response(e)


@invoices_bp.get("/<int:invoice_id>/export/<fmt>")
@require_tenant
def export_invoice_route(invoice_id: int, fmt: str):
    try:
        payload, content_type, filename = export_service.export_invoice(g.tenant_id, invoice_id, fmt)
        return Response(
            payload,
            status=200,
            content_type=f"{content_type}; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )
    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to export invoice")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500
