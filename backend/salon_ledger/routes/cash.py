# Overview: Flask API routes for the cash session ledger; parses input and returns JSON responses.

# backend/salon_ledger/routes/cash.py
"""
Cash Session API Routes (Caja)

WHY: Let the front desk open the till, record sales, expenses and manual
cash in/out, count the drawer (arqueo) and close the day.

DESIGN:
- Session lifecycle: open -> movements/reconciliations -> close (immutable)
- Write endpoints act on the tenant's open session unless session_id is given
- Amounts accepted as strings or numbers, returned as "0.00" strings

TENANCY:
- X-Tenant-Id header resolved by require_tenant; X-Actor used for attribution
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant, error_response
from ..services import cash_service, statistics_service
from ..time_utils import parse_iso_date
from ..validation import LedgerError, SessionNotOpen, ValidationError, coerce_int, require_fields


cash_bp = Blueprint("cash", __name__, url_prefix="/api/cash")


def _body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _page_args(default_limit: int = 30) -> tuple[int, int]:
    limit = coerce_int("limit", request.args.get("limit", default_limit), minimum=1, maximum=500)
    offset = coerce_int("offset", request.args.get("offset", 0), minimum=0)
    return limit, offset


def _target_session_id(data: dict) -> int:
    """session_id from the body, else the tenant's open session."""
    if data.get("session_id") not in (None, ""):
        return coerce_int("session_id", data["session_id"], minimum=1)
    current = cash_service.get_current_session(g.tenant_id)
    if not current:
        raise SessionNotOpen("No open cash session")
    return current["id"]


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

@cash_bp.post("/sessions/open")
@require_tenant
def open_session_route():
    """
    Open the tenant's cash session.

    Request body:
    {
        "initial_amount": "100.00",
        "notes": "Morning float"  (optional)
    }
    """
    try:
        data = _body()
        session = cash_service.open_session(
            g.tenant_id,
            data.get("initial_amount", 0),
            notes=data.get("notes"),
            opened_by=g.actor,
        )
        return jsonify({"session": session.to_dict()}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open cash session")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@cash_bp.post("/sessions/close")
@require_tenant
def close_session_route():
    """
    Close the open session against the counted drawer.

    Request body:
    {
        "final_amount": "133.50",
        "notes": "All good"  (optional)
    }
    """
    try:
        data = _body()
        require_fields(data, "final_amount")
        session = cash_service.close_session(
            g.tenant_id,
            _target_session_id(data),
            data.get("final_amount"),
            notes=data.get("notes"),
            closed_by=g.actor,
        )
        return jsonify({"session": session.to_dict()}), 200

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close cash session")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@cash_bp.get("/sessions/current")
@require_tenant
def current_session_route():
    try:
        return jsonify({"session": cash_service.get_current_session(g.tenant_id)}), 200
    except LedgerError as e:
        return error_response(e)


@cash_bp.get("/sessions/history")
@require_tenant
def session_history_route():
    try:
        limit, offset = _page_args()
        sessions = cash_service.get_session_history(g.tenant_id, limit=limit, offset=offset)
        return jsonify({
            "sessions": [s.to_dict() for s in sessions],
            "limit": limit,
            "offset": offset,
        }), 200
    except LedgerError as e:
        return error_response(e)


@cash_bp.get("/sessions/<int:session_id>")
@require_tenant
def session_detail_route(session_id: int):
    try:
        return jsonify({"session": cash_service.get_session_detail(g.tenant_id, session_id)}), 200
    except LedgerError as e:
        return error_response(e)


# =============================================================================
# MOVEMENTS AND ARQUEO
# =============================================================================

@cash_bp.post("/movements")
@require_tenant
def register_movement_route():
    """
    Register a movement in the open session.

    Request body:
    {
        "type": "sale" | "expense" | "cash_in" | "cash_out",
        "amount": "45.50",
        "method": "cash" | "card" | "transfer"  (optional, default cash),
        "concept": "Haircut",  (optional)
        "category": "materiales",  (expenses only, default general)
        "invoice_id": 42  (optional, an invoice of the same tenant)
    }
    """
    try:
        data = _body()
        require_fields(data, "type", "amount")
        movement = cash_service.register_movement(
            g.tenant_id,
            _target_session_id(data),
            data.get("type"),
            data.get("amount"),
            method=data.get("method"),
            concept=data.get("concept"),
            category=data.get("category"),
            created_by=g.actor,
            invoice_id=data.get("invoice_id"),
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register cash movement")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@cash_bp.get("/movements")
@require_tenant
def list_movements_route():
    """Movements of ?session_id= or of ?date=YYYY-MM-DD (default today)."""
    try:
        session_id = request.args.get("session_id")
        day = request.args.get("date")
        try:
            parsed_day = parse_iso_date(day) if day else None
        except ValueError:
            raise ValidationError("date must be YYYY-MM-DD", details={"field": "date", "value": day})
        result = cash_service.list_movements(
            g.tenant_id,
            session_id=coerce_int("session_id", session_id, minimum=1) if session_id else None,
            day=parsed_day,
        )
        return jsonify(result), 200
    except LedgerError as e:
        return error_response(e)


@cash_bp.post("/reconcile")
@require_tenant
def reconcile_route():
    """
    Arqueo of the open session (does not close it).

    Request body:
    {
        "counted_cash": "133.50",
        "notes": "Mid-day count"  (optional)
    }
    """
    try:
        data = _body()
        require_fields(data, "counted_cash")
        record = cash_service.reconcile(
            g.tenant_id,
            _target_session_id(data),
            data.get("counted_cash"),
            notes=data.get("notes"),
            performed_by=g.actor,
        )
        return jsonify({"reconciliation": record.to_dict()}), 201

    except LedgerError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile cash session")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@cash_bp.get("/reconciliations")
@require_tenant
def list_reconciliations_route():
    try:
        limit, offset = _page_args(default_limit=50)
        session_id = request.args.get("session_id")
        records = cash_service.list_reconciliations(
            g.tenant_id,
            session_id=coerce_int("session_id", session_id, minimum=1) if session_id else None,
            limit=limit,
            offset=offset,
        )
        return jsonify({"reconciliations": [r.to_dict() for r in records]}), 200
    except LedgerError as e:
        return error_response(e)


@cash_bp.get("/expense-categories")
@require_tenant
def expense_categories_route():
    return jsonify({"categories": cash_service.expense_categories()}), 200


@cash_bp.get("/statistics")
@require_tenant
def cash_statistics_route():
    try:
        period = request.args.get("period", "week")
        return jsonify(statistics_service.cash_statistics(g.tenant_id, period=period)), 200
    except LedgerError as e:
        return error_response(e)
