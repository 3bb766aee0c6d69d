from __future__ import annotations

from typing import Any, Iterable


class LedgerError(Exception):
    """
    Base of every domain error raised by the services.

    `code` is the machine-readable invariant name surfaced to callers,
    `details` carries current vs attempted state so the UI can render a
    precise message.
    """
    code = "ledger_error"
    http_status = 400

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(LedgerError, ValueError):
    """400-level input problem. Always recoverable by correcting the input."""
    code = "validation_error"


class InvalidAmount(ValidationError):
    code = "invalid_amount"


class NotFoundError(LedgerError):
    code = "not_found"
    http_status = 404


class StateConflictError(LedgerError):
    """409-level: operation invalid for the entity's current state."""
    code = "state_conflict"
    http_status = 409


class SessionAlreadyOpen(StateConflictError):
    code = "session_already_open"


class SessionNotOpen(StateConflictError):
    code = "session_not_open"


class SessionClosed(StateConflictError):
    code = "session_closed"


class InvoiceVoid(StateConflictError):
    code = "invoice_void"


class AlreadyVoid(StateConflictError):
    code = "already_void"


class OverPayment(StateConflictError):
    code = "over_payment"


class ConcurrencyError(LedgerError):
    """Lost a race for an atomic resource. Safe to retry the whole operation."""
    code = "concurrency_conflict"
    http_status = 409


class PersistenceError(LedgerError):
    """Storage failure. The transaction was rolled back."""
    code = "persistence_error"
    http_status = 500


# =============================================================================
# INPUT COERCION
# =============================================================================

def require_fields(payload: dict | None, *names: str) -> dict:
    """Reject a missing JSON body or missing/empty required keys."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    missing = [n for n in names if payload.get(n) in (None, "")]
    if missing:
        raise ValidationError(
            f"{', '.join(missing)} required",
            details={"missing": missing},
        )
    return payload


def require_choice(field: str, value: Any, choices: Iterable[str]) -> str:
    choices = list(choices)
    if not isinstance(value, str) or value.strip().lower() not in choices:
        raise ValidationError(
            f"{field} must be one of {choices}",
            details={"field": field, "value": value, "allowed": choices},
        )
    return value.strip().lower()


def coerce_int(field: str, value: Any, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer parsing: rejects bools, floats, decimals and scientific
    notation ("1e3").
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", details={"field": field, "value": result})
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be <= {maximum}", details={"field": field, "value": result})
    return result


def clean_text(value: Any, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"Text exceeds {max_length} characters")
    return text
