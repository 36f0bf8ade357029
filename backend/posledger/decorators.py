# Overview: Request context decorator for API routes.

from functools import wraps

from flask import g, jsonify, request

from .context import ActorContext
from .errors import ValidationError


TENANT_HEADER = "X-Tenant-Id"
ACTOR_HEADER = "X-Actor-Id"
ROLE_HEADER = "X-Actor-Role"


def require_context(f):
    """
    Establish the actor context from gateway headers.

    MULTI-TENANT: Authentication happens upstream; the gateway forwards the
    authenticated tenant, actor and role. Sets g.ctx (ActorContext).

    Returns 401 when any header is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        tenant_raw = request.headers.get(TENANT_HEADER, "")
        actor_raw = request.headers.get(ACTOR_HEADER, "")
        role = request.headers.get(ROLE_HEADER, "").strip().lower()

        if not tenant_raw.isdigit() or not actor_raw.isdigit() or not role:
            return jsonify({"error": "Missing or invalid request context"}), 401

        try:
            g.ctx = ActorContext(
                tenant_id=int(tenant_raw),
                actor_id=int(actor_raw),
                actor_role=role,
            )
        except ValidationError as e:
            return jsonify({"error": e.message}), 401

        return f(*args, **kwargs)

    return decorated_function
