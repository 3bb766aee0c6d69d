# Overview: Request decorators and the shared JSON error response for API routes.

from functools import wraps
from flask import request, jsonify, g

from .validation import LedgerError, ValidationError
from .services.tenant_service import get_tenant


TENANT_HEADER = "X-Tenant-Id"
ACTOR_HEADER = "X-Actor"


def error_response(exc: LedgerError):
    """JSON body + status for a domain error."""
    return jsonify(exc.to_dict()), exc.http_status


def require_tenant(f):
    """
    Establish tenant context for the request.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.tenant_id: The tenant every service call is scoped to - REQUIRED
    - g.tenant: The active Tenant row
    - g.actor: Free-form actor label for attribution (may be None)

    Authentication itself happens upstream; this only resolves which
    tenant the already-authenticated caller is acting for.

    Returns 400 if the header is missing or malformed, 404 if the tenant
    does not exist or is inactive.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = (request.headers.get(TENANT_HEADER) or "").strip()
        if not raw:
            return error_response(ValidationError(f"{TENANT_HEADER} header required"))
        if not raw.isdigit():
            return error_response(ValidationError(f"{TENANT_HEADER} must be an integer"))

        try:
            tenant = get_tenant(int(raw))
        except LedgerError as e:
            return error_response(e)

        g.tenant = tenant
        g.tenant_id = tenant.id
        g.actor = (request.headers.get(ACTOR_HEADER) or "").strip()[:128] or None

        return f(*args, **kwargs)

    return decorated_function
