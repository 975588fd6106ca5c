# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .errors import UnauthenticatedError, UnauthorizedError, error_response
from .services import identity_service, permission_service
from .services.authorization_service import authorize


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'principal')


def _unauthenticated():
    return error_response(UnauthenticatedError("Authentication required"))


def require_principal(f):
    """
    Require a verified principal (identity headers) without a local user.

    Used by the sync endpoint, which is what creates the local user.
    Sets g.principal.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        principal = identity_service.principal_from_request(request)
        if principal is None:
            return _unauthenticated()
        g.principal = principal
        return f(*args, **kwargs)

    return decorated_function


def require_auth(f):
    """
    Require an authenticated, synced user.

    Sets the following Flask g attributes:
    - g.principal: identity asserted by the identity provider
    - g.current_user: the local User row for that principal

    SECURITY: Returns 401 if:
    - No identity subject header
    - Principal has never been synced to a local user
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        principal = identity_service.principal_from_request(request)
        try:
            result = authorize(principal)
        except UnauthenticatedError as e:
            return error_response(e)

        g.principal = principal
        g.current_user = result.user

        return f(*args, **kwargs)

    return decorated_function


def _deny(result, *, required: str, label: str):
    user = result.user
    permission_service.log_security_event(
        user_id=user.id,
        event_type="PERMISSION_DENIED",
        success=False,
        resource=request.path,
        action=request.method,
        reason=result.debug_info.get("reason"),
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )
    current_app.logger.warning(
        "Denied %s %s for user %s: %s", request.method, request.path, user.id, result.debug_info.get("reason")
    )
    denied = UnauthorizedError("Permission denied")
    body = denied.to_dict()
    body.update({
        label: required,
        "message": result.debug_info.get("reason"),
        "debug_info": result.debug_info,
    })
    return jsonify(body), denied.http_status


def _guarded(*, role: str | None = None, permission: str | None = None):
    required, label = (role, "required_role") if role else (permission, "required_permission")

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return _unauthenticated()

            try:
                result = authorize(g.principal, role=role, permission=permission)
            except UnauthenticatedError as e:
                return error_response(e)
            if not result.authorized:
                return _deny(result, required=required, label=label)

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_role(role_name: str):
    """Require the user's role to be exactly ``role_name``."""
    return _guarded(role=role_name)


def require_permission(permission_code: str):
    """Require the user's role to grant ``permission_code``."""
    return _guarded(permission=permission_code)
