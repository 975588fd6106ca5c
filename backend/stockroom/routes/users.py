# Overview: Flask API routes for users and roles; admin-only role assignment.

from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy import Column, Integer

from ..decorators import require_auth, require_permission, require_role
from ..errors import StockroomError, error_response, internal_error_response
from ..services import identity_service, permission_service
from ..validation import RequestSchema, validate_request


users_bp = Blueprint("users", __name__, url_prefix="/api")

ASSIGN_ROLE_SCHEMA = RequestSchema(
    fields=(Column("role_id", Integer, nullable=False),),
    required=frozenset({"role_id"}),
)


@users_bp.get("/users")
@require_auth
@require_permission("user:read")
def list_users_route():
    users = identity_service.list_users()
    return jsonify({"items": [u.to_dict() for u in users], "count": len(users)}), 200


@users_bp.get("/roles")
@require_auth
@require_permission("user:read")
def list_roles_route():
    roles = permission_service.list_roles()
    return jsonify({"items": [r.to_dict(include_permissions=True) for r in roles], "count": len(roles)}), 200


@users_bp.put("/users/<int:user_id>/role")
@require_auth
@require_role("admin")
def assign_role_route(user_id: int):
    """
    Reassign a user's role.

    Request body: {"role_id": 2}
    """
    try:
        patch = validate_request(payload=request.get_json(silent=True) or {}, schema=ASSIGN_ROLE_SCHEMA)
        user = identity_service.assign_role(
            user_id=user_id,
            role_id=patch["role_id"],
            acting_user_id=g.current_user.id,
        )
    except StockroomError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to assign role")
        return internal_error_response()

    return jsonify({"user": user.to_dict()}), 200
