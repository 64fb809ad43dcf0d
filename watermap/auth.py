"""
WaterMap Catalog
Authentication & Authorization Middleware.

Provides:
    - Bearer token resolution: ``g.current_user`` from the JWT ``sub`` claim,
      looked up in the ``users`` mirror table
    - ``require_auth`` / ``require_roles(*roles)`` route decorators
    - Content-Type enforcement for state-changing API requests

Security model:
    - Public catalog reads need no token
    - Every other endpoint declares its allowed roles explicitly; roles are
      capability sets, there is no hierarchy
    - The role stored in the users table wins over the token's ``role``
      claim, so a role change takes effect without re-issuing tokens
"""

import functools
import logging

import jwt as pyjwt
from flask import g, jsonify, request

from watermap.models import db
from watermap.models.auth import User
from watermap.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)


def _resolve_bearer_user() -> User | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    token = auth_header[7:]  # Strip "Bearer "
    try:
        payload = decode_access_token(token)
        user_id = int(payload.get("sub"))
    except pyjwt.ExpiredSignatureError:
        logger.info("Expired token on %s", request.path)
        g.auth_error = "Token expired"
        return None
    except (pyjwt.InvalidTokenError, TypeError, ValueError):
        logger.warning("Invalid token on %s", request.path)
        g.auth_error = "Invalid token"
        return None

    user = db.session.get(User, user_id)
    if user is None:
        logger.warning("Token for unknown user %s on %s", user_id, request.path)
        g.auth_error = "Unknown user"
    return user


# ── Decorators ───────────────────────────────────────────────────────────────

def require_auth(f):
    """Decorator: require a valid bearer token (any role)."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "current_user", None) is None:
            message = getattr(g, "auth_error", None) or "Authentication required"
            return jsonify({"error": message, "code": "ERR_UNAUTHENTICATED"}), 401
        return f(*args, **kwargs)
    return decorated


def require_roles(*roles: str):
    """
    Decorator: require the authenticated user's role to be one of *roles*.

    Usage:
        @water_object_bp.route("/water-objects", methods=["POST"])
        @require_roles("expert", "admin")
        def create_water_object(): ...
    """
    allowed = frozenset(roles)

    def decorator(f):
        @functools.wraps(f)
        @require_auth
        def decorated(*args, **kwargs):
            user = g.current_user
            if user.role not in allowed:
                logger.warning(
                    "Access denied: user %s role '%s' on %s (allowed: %s)",
                    user.id, user.role, request.path, sorted(allowed),
                )
                return jsonify({"error": "Insufficient permissions", "code": "ERR_FORBIDDEN"}), 403
            return f(*args, **kwargs)
        return decorated
    return decorator


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests with a body, require
    Content-Type: application/json.  HTML forms cannot send that type.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return jsonify({
                "error": "Content-Type must be application/json for state-changing requests"
            }), 415
    return None


def init_auth(app):
    """
    Install the authentication hook.

    - Skips non-API and health routes
    - Sets g.current_user (None for anonymous requests)
    """
    @app.before_request
    def _before_request_auth():
        g.current_user = None
        g.auth_error = None

        if not request.path.startswith("/api/v1/"):
            return None
        if request.path == "/api/v1/health" or request.path.startswith("/api/v1/health/"):
            return None
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        g.current_user = _resolve_bearer_user()
        return None

    logger.info("Auth middleware installed")
