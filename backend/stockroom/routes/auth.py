# Overview: Flask API routes for the identity bridge and permission checks.

# backend/stockroom/routes/auth.py
"""
Authentication API Routes

The identity provider authenticates the caller; these endpoints mirror the
principal into a local user and expose the authorization guard so the
presentation layer can hide what the user may not do.
"""

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy import Column, String

from ..decorators import require_auth, require_principal
from ..errors import StockroomError, error_response, internal_error_response
from ..services import identity_service
from ..services.authorization_service import evaluate, permissions_for
from ..validation import RequestSchema, validate_request


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

CHECK_PERMISSIONS_SCHEMA = RequestSchema(
    fields=(
        Column("role", String(32)),
        Column("permission", String(64)),
    ),
)


@auth_bp.post("/sync-user")
@require_principal
def sync_user_route():
    """
    Create or refresh the local user for the calling principal.

    Returns:
        201: user created
        200: user already existed (possibly promoted)
        400: principal has no email
        401: no principal
    """
    try:
        result = identity_service.sync_user(g.principal)
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to sync user")
        return internal_error_response()

    return jsonify({
        "user": result.user.to_dict(),
        "created": result.created,
        "promoted": result.promoted,
    }), 201 if result.created else 200


@auth_bp.get("/me")
@require_auth
def me_route():
    """Current user, role, and the permissions that role grants."""
    user = g.current_user
    return jsonify({
        "user": user.to_dict(),
        "permissions": permissions_for(user),
    }), 200


@auth_bp.post("/check-permissions")
@require_auth
def check_permissions_route():
    """
    Evaluate a role and/or permission requirement for the current user.

    Request body: {"role": "admin"} or {"permission": "inventory:adjust"}
    A role, when given, decides on its own.
    """
    try:
        patch = validate_request(payload=request.get_json(silent=True) or {}, schema=CHECK_PERMISSIONS_SCHEMA)
    except StockroomError as e:
        return error_response(e)

    result = evaluate(
        g.current_user,
        role=patch.get("role") or None,
        permission=patch.get("permission") or None,
    )
    return jsonify(result.to_dict()), 200
