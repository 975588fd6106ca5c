# Overview: Identity bridge; mirrors identity-provider principals into local users.

"""
Identity Bridge

The identity provider authenticates people; an upstream gateway forwards the
verified principal as trusted request headers (names configured in Config).
This module turns that principal into exactly one local User row and keeps
its role in line with the elevated-access rule.

ROLE RULE:
- email == ELEVATED_ACCESS_EMAIL (case-insensitive) -> ELEVATED_ROLE
- anyone else is created with DEFAULT_ROLE and keeps whatever role an
  admin assigns later
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, InvalidArgumentError, NotFoundError, UnauthenticatedError
from ..extensions import db
from ..models import Role, User
from .permission_service import log_security_event


@dataclass(frozen=True)
class Principal:
    """Authenticated identity as asserted by the identity provider."""

    external_id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None


@dataclass(frozen=True)
class SyncResult:
    user: User
    created: bool = False
    promoted: bool = False


def _header(request, config_key: str) -> str | None:
    value = request.headers.get(current_app.config[config_key])
    if value is None:
        return None
    value = value.strip()
    return value or None


def principal_from_request(request) -> Principal | None:
    """Read the trusted identity headers; None when no subject is present."""
    external_id = _header(request, "IDENTITY_HEADER_SUBJECT")
    if not external_id:
        return None
    return Principal(
        external_id=external_id,
        email=_header(request, "IDENTITY_HEADER_EMAIL"),
        first_name=_header(request, "IDENTITY_HEADER_FIRST_NAME"),
        last_name=_header(request, "IDENTITY_HEADER_LAST_NAME"),
    )


def normalize_email(email: str | None) -> str | None:
    if email is None:
        return None
    email = email.strip().lower()
    return email or None


def is_elevated_email(email: str | None) -> bool:
    designated = normalize_email(current_app.config.get("ELEVATED_ACCESS_EMAIL"))
    return designated is not None and normalize_email(email) == designated


def _get_role(name: str) -> Role:
    role = db.session.query(Role).filter_by(name=name).first()
    if role is None:
        raise NotFoundError(
            f"Role '{name}' not found; run 'flask system init' to seed roles",
            details={"role": name},
        )
    return role


def get_user_by_external_id(external_id: str) -> User | None:
    return db.session.query(User).filter_by(external_id=external_id).first()


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(f"User {user_id} not found")
    return user


def list_users() -> list[User]:
    return db.session.query(User).order_by(User.id.asc()).all()


def _promote(user: User, elevated: Role) -> None:
    previous = user.role.name if user.role else None
    user.role_id = elevated.id
    user.role = elevated
    log_security_event(
        user_id=user.id,
        event_type="ROLE_ELEVATED",
        success=True,
        action="SYNC",
        reason=f"Designated email promoted from '{previous}' to '{elevated.name}'",
        commit=False,
    )
    current_app.logger.info(
        "Promoted user %s (%s) from %s to %s", user.id, user.email, previous, elevated.name
    )


def sync_user(principal: Principal | None) -> SyncResult:
    """
    Ensure a local user exists for ``principal`` and carries the right role.

    Idempotent: repeated calls never create a second row and never flip the
    role once it is at its target. Two concurrent first syncs race on the
    unique external_id; the loser re-reads the winner's row.
    """
    if principal is None or not principal.external_id:
        raise UnauthenticatedError("Authentication required")

    email = normalize_email(principal.email)
    if not email:
        raise InvalidArgumentError("Principal has no primary email address")

    elevated_name = current_app.config["ELEVATED_ROLE"]
    default_name = current_app.config["DEFAULT_ROLE"]

    existing = get_user_by_external_id(principal.external_id)
    if existing is not None:
        if is_elevated_email(email) and (existing.role is None or existing.role.name != elevated_name):
            _promote(existing, _get_role(elevated_name))
            db.session.commit()
            return SyncResult(user=existing, promoted=True)
        return SyncResult(user=existing)

    role = _get_role(elevated_name if is_elevated_email(email) else default_name)
    user = User(
        external_id=principal.external_id,
        email=email,
        first_name=principal.first_name,
        last_name=principal.last_name,
        role_id=role.id,
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        winner = get_user_by_external_id(principal.external_id)
        if winner is not None:
            return SyncResult(user=winner)
        raise ConflictError(
            "Email address is already linked to another identity",
            details={"email": email},
        )

    current_app.logger.info("Created user %s (%s) with role %s", user.id, user.email, role.name)
    return SyncResult(user=user, created=True)


def assign_role(*, user_id: int, role_id: int, acting_user_id: int | None = None) -> User:
    """Reassign a user's role (admin operation)."""
    user = get_user(user_id)
    role = db.session.get(Role, role_id)
    if role is None:
        raise NotFoundError(f"Role {role_id} not found")

    previous = user.role.name if user.role else None
    user.role_id = role.id
    user.role = role
    log_security_event(
        user_id=acting_user_id,
        event_type="ROLE_ASSIGNED",
        success=True,
        resource=f"user:{user.id}",
        action="ASSIGN_ROLE",
        reason=f"Role changed from '{previous}' to '{role.name}'",
        commit=False,
    )
    db.session.commit()
    return user


def assign_role_by_name(*, email: str, role_name: str) -> User:
    """Offline role assignment used by the CLI."""
    user = db.session.query(User).filter_by(email=normalize_email(email)).first()
    if user is None:
        raise NotFoundError(f"User with email '{email}' not found")
    return assign_role(user_id=user.id, role_id=_get_role(role_name).id)


def resync_elevated_users() -> int:
    """Re-apply the elevated-email rule to every stored user. Returns how many were promoted."""
    elevated_name = current_app.config["ELEVATED_ROLE"]
    promoted = 0
    elevated = None
    for user in list_users():
        if is_elevated_email(user.email) and (user.role is None or user.role.name != elevated_name):
            elevated = elevated or _get_role(elevated_name)
            _promote(user, elevated)
            promoted += 1
    db.session.commit()
    return promoted
