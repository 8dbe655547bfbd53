# Overview: Request decorators for API routes.

from functools import wraps

from flask import current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from .errors import DomainError, ValidationError
from .extensions import db


def _header_int(name: str):
    raw = request.headers.get(name)
    if raw is None or not raw.strip():
        return None
    return int(raw.strip())


def require_actor(f):
    """
    Establish the acting user for the request.

    Sets on Flask g:
    - g.actor_id: from X-Actor-Id (required, 401 when missing)
    - g.on_behalf_of: from X-On-Behalf-Of (optional, delegated execution)

    Authentication itself happens upstream; capability checks happen in
    the services, which raise PermissionDenied.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            actor_id = _header_int("X-Actor-Id")
            on_behalf_of = _header_int("X-On-Behalf-Of")
        except ValueError:
            return jsonify({"error": "Actor headers must be integers"}), 400

        if actor_id is None:
            return jsonify({"error": "Authentication required"}), 401

        g.actor_id = actor_id
        g.on_behalf_of = on_behalf_of
        return f(*args, **kwargs)

    return decorated_function


def handle_domain_errors(f):
    """
    Map service exceptions onto JSON responses.

    DomainError subclasses carry their own status; anything unexpected is
    logged and answered with a generic 500. The session is always rolled
    back on error.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except DomainError as e:
            db.session.rollback()
            return jsonify(e.to_dict()), e.http_status
        except HTTPException:
            db.session.rollback()
            raise
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Unhandled error on %s %s", request.method, request.path)
            return jsonify({"error": "Internal server error"}), 500

    return decorated_function


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data
