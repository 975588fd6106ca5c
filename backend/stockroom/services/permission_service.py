# Overview: Role/permission store: seeding, the read-only role catalog, and the security audit log.

"""
Role and permission reference data.

Roles, permissions and their grants are static: they are written by the
idempotent seeders below and otherwise only read. Authorization checks run
against RoleCatalog, an immutable snapshot of the same definitions that is
built once per application and stored in ``app.extensions``.

DESIGN PRINCIPLES:
- Fail closed: an unknown role grants nothing
- Log denials only: granted checks are not written to the audit log
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from flask import current_app

from ..extensions import db
from ..models import Role, RolePermission, Permission, SecurityEvent
from ..permissions import PERMISSION_DEFINITIONS, DEFAULT_ROLE_PERMISSIONS, ROLE_DESCRIPTIONS
from stockroom.time_utils import utcnow


CATALOG_EXTENSION_KEY = "role_catalog"


@dataclass(frozen=True)
class RoleCatalog:
    """Read-only lookup of role name -> granted permission names."""

    grants: Mapping[str, frozenset[str]]

    @classmethod
    def from_definitions(cls, role_permissions: Mapping[str, list[str]] | None = None) -> "RoleCatalog":
        source = DEFAULT_ROLE_PERMISSIONS if role_permissions is None else role_permissions
        return cls(MappingProxyType({
            role: frozenset(codes) for role, codes in source.items()
        }))

    @property
    def role_names(self) -> list[str]:
        return sorted(self.grants)

    def permissions_for(self, role_name: str | None) -> frozenset[str]:
        if role_name is None:
            return frozenset()
        return self.grants.get(role_name, frozenset())

    def has_permission(self, role_name: str | None, permission: str) -> bool:
        return permission in self.permissions_for(role_name)


def init_role_catalog(app) -> RoleCatalog:
    catalog = RoleCatalog.from_definitions()
    app.extensions[CATALOG_EXTENSION_KEY] = catalog
    return catalog


def get_role_catalog() -> RoleCatalog:
    return current_app.extensions[CATALOG_EXTENSION_KEY]


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    commit: bool = True,
) -> SecurityEvent:
    """
    Log security event to audit trail.

    event_type examples:
    - PERMISSION_DENIED
    - ROLE_ASSIGNED
    - ROLE_ELEVATED
    """
    event = SecurityEvent(
        user_id=user_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow()
    )

    db.session.add(event)
    if commit:
        db.session.commit()

    return event


def create_default_roles():
    """Create the four default roles. Idempotent."""
    created_count = 0

    for role_name in DEFAULT_ROLE_PERMISSIONS:
        existing = db.session.query(Role).filter_by(name=role_name).first()
        if not existing:
            db.session.add(Role(name=role_name, description=ROLE_DESCRIPTIONS.get(role_name)))
            created_count += 1

    db.session.commit()
    return created_count


def initialize_permissions():
    """
    Initialize all permission definitions in database.

    Creates Permission records for all names in PERMISSION_DEFINITIONS.
    Idempotent: Safe to run multiple times.
    """
    created_count = 0

    for name, label, description, category in PERMISSION_DEFINITIONS:
        existing = db.session.query(Permission).filter_by(name=name).first()

        if not existing:
            permission = Permission(
                name=name,
                label=label,
                description=description,
                category=category
            )
            db.session.add(permission)
            created_count += 1

    db.session.commit()
    return created_count


def assign_default_role_permissions():
    """
    Assign default permissions to roles based on DEFAULT_ROLE_PERMISSIONS.

    Creates RolePermission records linking roles to their default permissions.
    Idempotent: Safe to run multiple times (skips existing).
    """
    created_count = 0

    for role_name, permission_names in DEFAULT_ROLE_PERMISSIONS.items():
        role = db.session.query(Role).filter_by(name=role_name).first()

        if not role:
            continue  # Role doesn't exist, skip

        for permission_name in permission_names:
            permission = db.session.query(Permission).filter_by(name=permission_name).first()

            if not permission:
                continue  # Permission doesn't exist, skip

            # Check if already assigned
            existing = db.session.query(RolePermission).filter_by(
                role_id=role.id,
                permission_id=permission.id
            ).first()

            if not existing:
                role_permission = RolePermission(
                    role_id=role.id,
                    permission_id=permission.id
                )
                db.session.add(role_permission)
                created_count += 1

    db.session.commit()
    return created_count


def seed_roles_and_permissions() -> dict:
    """Run all three seeders in dependency order."""
    return {
        "roles_created": create_default_roles(),
        "permissions_created": initialize_permissions(),
        "grants_created": assign_default_role_permissions(),
    }


def list_roles() -> list[Role]:
    return db.session.query(Role).order_by(Role.id.asc()).all()


def missing_default_roles() -> list[str]:
    existing = {name for (name,) in db.session.query(Role.name).all()}
    return [name for name in DEFAULT_ROLE_PERMISSIONS if name not in existing]
