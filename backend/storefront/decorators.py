# Overview: Request and role decorators for API routes.

import hmac
from functools import wraps

from flask import current_app, g, jsonify, request

from .extensions import db
from .models import User
from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def _bypass_user() -> User | None:
    """
    Testing-only bypass. validate_config refuses to start production with
    AUTH_BYPASS_ENABLED, so reaching here means a non-production app.
    """
    user_id = current_app.config.get("AUTH_BYPASS_USER_ID")
    current_app.logger.warning("AUTH BYPASS: %s %s served as user %s", request.method, request.path, user_id)
    return db.session.query(User).filter_by(id=user_id, is_active=True).first()


def require_auth(f):
    """
    Require a valid bearer session.

    Sets g.current_user (the authenticated User) and g.session_token.

    Returns 401 if:
    - No Authorization header
    - Invalid, expired, or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_app.config.get("AUTH_BYPASS_ENABLED"):
            user = _bypass_user()
            if user is None:
                return jsonify({"error": "Bypass user not found", "code": "AuthError"}), 401
            g.current_user = user
            g.session_token = None
            return f(*args, **kwargs)

        token = _bearer_token()
        if token is None:
            return jsonify({"error": "Authentication required", "code": "AuthError"}), 401

        user = session_service.validate_session(token)
        if user is None:
            return jsonify({"error": "Invalid or expired token", "code": "AuthError"}), 401

        g.current_user = user
        g.session_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """Require the authenticated user to hold one of `roles`. Use after @require_auth."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user"):
                return jsonify({"error": "Authentication required", "code": "AuthError"}), 401
            if g.current_user.role not in roles:
                return jsonify({
                    "error": "Permission denied",
                    "code": "PermissionDenied",
                    "required_roles": list(roles),
                }), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


require_staff = require_role("STAFF", "ADMIN")
require_admin = require_role("ADMIN")


def require_cron_secret(f):
    """
    Require `Authorization: Bearer <CRON_SECRET>`.

    An unset CRON_SECRET rejects every call; there is no default secret.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        secret = current_app.config.get("CRON_SECRET") or ""
        if not secret:
            current_app.logger.error("CRON_SECRET is not configured; rejecting maintenance trigger")
            return jsonify({"error": "Unauthorized", "code": "ConfigurationError"}), 401

        token = _bearer_token() or ""
        if not hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8")):
            current_app.logger.warning("Rejected maintenance trigger from %s", request.remote_addr)
            return jsonify({"error": "Unauthorized", "code": "AuthError"}), 401

        return f(*args, **kwargs)

    return decorated_function
