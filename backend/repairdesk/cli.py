# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/repairdesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--no-users]
#   Idempotent bootstrap: order statuses, roles, and one default user per staff role.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Staff users:
# - python -m flask users list
# - python -m flask users create --username ana --email ana@repairdesk.local --password "Password123!" --role Technician
# - python -m flask users deactivate ana
#
# Clients:
# - python -m flask clients create --name "Maria Perez" --email maria@example.com --password "Password123!"
#
# Invoices:
# - python -m flask invoices verify-key 20240315011790012345001100100100000000112311
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .permissions import STAFF_ROLES, ADMINISTRATOR, RECEPTIONIST, TECHNICIAN, SALES
from .services import lifecycle_service, session_service
from .services.auth_service import (
    PasswordValidationError,
    create_client,
    create_default_roles,
    create_user,
    deactivate_user,
)
from .services.identifier_service import decode_access_key
from .validation import ConflictError, ValidationError


DEFAULT_PASSWORD = "Password123!"

DEFAULT_USERS = (
    ("admin", "admin@repairdesk.local", ADMINISTRATOR),
    ("reception", "reception@repairdesk.local", RECEPTIONIST),
    ("tech", "tech@repairdesk.local", TECHNICIAN),
    ("sales", "sales@repairdesk.local", SALES),
)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--no-users', is_flag=True, help='Only seed reference data')
@with_appcontext
def init_system(no_users):
    """
    Initialize reference data: order statuses, roles and default staff users.

    All default passwords are "Password123!". Change them in production.
    """
    click.echo("START Initializing RepairDesk...")

    created = lifecycle_service.ensure_order_statuses()
    db.session.commit()
    click.echo(f"PASS Order statuses ready ({created} created)")

    roles = create_default_roles()
    click.echo(f"PASS Roles ready: {', '.join(sorted(r.name for r in roles))}")

    if no_users:
        return

    click.echo("\nUSERS Creating default users...")
    for username, email, role_name in DEFAULT_USERS:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(username, email, DEFAULT_PASSWORD, roles=[role_name])
            click.echo(f"PASS Created user: {username} ({email}) with role '{role_name}'")
        except (ValidationError, ConflictError) as e:
            click.echo(f"FAIL Failed to create user '{username}': {e}")

    click.echo("\nDONE RepairDesk initialized. Default password: Password123!")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """Staff user management commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', 'roles', multiple=True, required=True, type=click.Choice(sorted(STAFF_ROLES)), help='Role (repeatable, at least one)')
@with_appcontext
def create_user_cli(username, email, password, roles):
    """
    Create a staff user.

    Password must be 8+ characters with upper and lower case letters,
    a digit and a special character.
    """
    try:
        user = create_user(username, email, password, roles=roles)
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
        return
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created user {user.username} (ID {user.id}) roles: {', '.join(user.role_names) or 'none'}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all staff users with their roles."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<32} {'Active':<8} {'Roles'}")
    click.echo("="*90)
    for user in users:
        roles_str = ", ".join(user.role_names) or "none"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<32} {active_str:<8} {roles_str}")
    click.echo("="*90 + "\n")


@users_group.command('deactivate')
@click.argument('username')
@with_appcontext
def deactivate_user_cli(username):
    """Deactivate a staff user. Existing tokens stop working at once."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
        return
    deactivate_user(user.id)
    click.echo(f"PASS User '{username}' deactivated")


@click.group('clients')
def clients_group():
    """Client management commands."""


@clients_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', default=None, hide_input=True, help='Portal password (optional)')
@click.option('--id-number', default=None, help='National id / tax id')
@with_appcontext
def create_client_cli(name, email, password, id_number):
    """Register a client, optionally with portal access."""
    try:
        client = create_client(name, email=email, password=password, id_number=id_number)
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created client {client.display_name} (ID {client.id})")


@click.group('invoices')
def invoices_group():
    """Electronic invoice tools."""


@invoices_group.command('verify-key')
@click.argument('key')
def verify_key_cli(key):
    """Check an access key's length and mod-11 check digit and print its fields."""
    try:
        parts = decode_access_key(key.strip())
    except ValidationError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    for name, value in parts.items():
        if name != "valid":
            click.echo(f"{name:<16} {value}")
    if not parts["valid"]:
        click.echo("FAIL Check digit mismatch")
        raise SystemExit(1)
    click.echo("PASS Access key is valid")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    """Delete revoked, expired and idle client sessions."""
    deleted = session_service.cleanup_sessions()
    click.echo(f"Deleted {deleted} client sessions.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(clients_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(maintenance_group)
