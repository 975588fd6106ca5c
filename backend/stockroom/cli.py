# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/stockroom/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables, roles, permissions and role grants.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Permission inspection:
# - python -m flask perms list [--role operator] [--category SALES]
#   List permissions (optionally only those granted to a role).
#
# User inspection/repair:
# - python -m flask users list
#   List synced users with their roles.
# - python -m flask users set-role owner@example.com manager
#   Reassign a user's role.
# - python -m flask users resync-elevated
#   Promote any stored user whose email matches ELEVATED_ACCESS_EMAIL.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import StockroomError
from .permissions import PERMISSION_DEFINITIONS, get_permissions_by_category
from .services import identity_service, permission_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create tables and seed roles, permissions and default grants."""
    click.echo("START Initializing Stockroom...")

    db.create_all()
    click.echo("PASS Tables ready")

    counts = permission_service.seed_roles_and_permissions()
    click.echo(
        f"PASS Created {counts['roles_created']} roles, "
        f"{counts['permissions_created']} permissions, "
        f"{counts['grants_created']} role grants"
    )

    roles = permission_service.list_roles()
    click.echo(f"PASS Roles: {', '.join(r.name for r in roles)}")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to seed roles.")


@click.group('perms')
def perms_group():
    """Permission inspection commands."""


@perms_group.command('list')
@click.option('--role', 'role_name', help='Only permissions granted to this role')
@click.option('--category', help='Only permissions in this category (e.g. INVENTORY)')
@with_appcontext
def list_permissions(role_name, category):
    """List permissions from the role catalog."""
    catalog = permission_service.get_role_catalog()

    if role_name and role_name not in catalog.grants:
        raise click.ClickException(f"Unknown role '{role_name}'. Known roles: {', '.join(catalog.role_names)}")

    definitions = get_permissions_by_category(category.upper()) if category else PERMISSION_DEFINITIONS
    if category and not definitions:
        raise click.ClickException(f"Unknown category '{category}'")

    granted = catalog.permissions_for(role_name) if role_name else None

    click.echo(f"\n{'Permission':<22} {'Category':<12} {'Roles'}")
    click.echo("=" * 70)
    for name, _label, _description, perm_category in definitions:
        if granted is not None and name not in granted:
            continue
        roles = [r for r in catalog.role_names if catalog.has_permission(r, name)]
        click.echo(f"{name:<22} {perm_category:<12} {', '.join(roles)}")
    click.echo("")


@click.group('users')
def users_group():
    """User inspection and role management commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = identity_service.list_users()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Email':<35} {'Name':<30} {'Role'}")
    click.echo("="*90)

    for user in users:
        name = " ".join(part for part in (user.first_name, user.last_name) if part) or "-"
        role = user.role.name if user.role else "none"
        click.echo(f"{user.id:<5} {user.email:<35} {name:<30} {role}")

    click.echo("="*90 + "\n")


@users_group.command('set-role')
@click.argument('email')
@click.argument('role_name')
@with_appcontext
def set_role(email, role_name):
    """Assign ROLE_NAME to the user with EMAIL."""
    try:
        user = identity_service.assign_role_by_name(email=email, role_name=role_name)
    except StockroomError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS {user.email} is now '{user.role.name}'")


@users_group.command('resync-elevated')
@with_appcontext
def resync_elevated():
    """Promote stored users whose email matches ELEVATED_ACCESS_EMAIL."""
    try:
        promoted = identity_service.resync_elevated_users()
    except StockroomError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Promoted {promoted} user(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(perms_group)
    app.cli.add_command(users_group)
