from flask import Blueprint, jsonify, request, g

from ..decorators import require_tenant, error_response
from ..services import statistics_service
from ..time_utils import parse_iso_date
from ..validation import LedgerError, ValidationError


statistics_bp = Blueprint("statistics", __name__, url_prefix="/api/statistics")


def _date_arg(name: str):
    value = request.args.get(name)
    if not value:
        return None
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{name} must be YYYY-MM-DD", details={"field": name, "value": value})


@statistics_bp.get("/")
@statistics_bp.get("")
@require_tenant
def dashboard_route():
    period = request.args.get("period", "month")
    try:
        report = statistics_service.dashboard(g.tenant_id, period=period, as_of=_date_arg("as_of"))
        return jsonify(report), 200
    except LedgerError as exc:
        return error_response(exc)


@statistics_bp.get("/invoices")
@require_tenant
def invoice_statistics_route():
    try:
        report = statistics_service.invoice_statistics(
            g.tenant_id,
            period=request.args.get("period", "month"),
            start=_date_arg("start"),
            end=_date_arg("end"),
            as_of=_date_arg("as_of"),
        )
        return jsonify(report), 200
    except LedgerError as exc:
        return error_response(exc)


@statistics_bp.get("/overdue-aging")
@require_tenant
def overdue_aging_route():
    try:
        return jsonify(statistics_service.overdue_aging(g.tenant_id, as_of=_date_arg("as_of"))), 200
    except LedgerError as exc:
        return error_response(exc)
