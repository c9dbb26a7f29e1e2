# Overview: Flask CLI command groups for bootstrap, user administration and QR maintenance.

# backend/qradmin/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init
#   Create tables and the first SUPER_ADMIN (admin / Password123!).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Load demo branches, users, merchants, QR codes, requests and audit items.
#
# Users:
# - python -m flask users list [--branch-id 1] [--role SALES_USER]
# - python -m flask users create --username jdoe --email jdoe@bank.local --name "J Doe" --role SALES_USER --branch-id 1
#
# QR codes:
# - python -m flask qr generate --count 100 [--bank-name "Demo Bank"] [--type dynamic]
# - python -m flask qr sync
#   Return QR codes held by deactivated branches/users.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .permissions import ROLES
from .services import auth_service, demo_data, qr_service
from .validation import ConflictError, NotFoundError, ValidationError


DEFAULT_ADMIN_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--password', default=DEFAULT_ADMIN_PASSWORD, help='Password for the admin user')
@with_appcontext
def init_system(password):
    """
    Create all tables and the first SUPER_ADMIN. Idempotent.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing QR admin system...")
    db.create_all()
    click.echo("PASS Schema ready")

    existing = db.session.query(User).filter_by(username="admin").first()
    if existing:
        click.echo("WARN  User 'admin' already exists, skipping...")
        return

    try:
        auth_service.create_user(
            {
                "username": "admin",
                "email": "admin@qradmin.local",
                "name": "System Administrator",
                "role": "SUPER_ADMIN",
            },
            password,
        )
        db.session.commit()
    except (ValidationError, ConflictError) as e:
        db.session.rollback()
        raise click.ClickException(f"Failed to create admin user: {e}")

    click.echo("PASS Created user: admin (admin@qradmin.local) with role 'SUPER_ADMIN'")
    click.echo("\nSECURITY Change the admin password immediately in production!")


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


@system_group.command('seed-demo')
@click.option('--qr-count', default=200, show_default=True, type=int, help='Unallocated QR codes to generate')
@with_appcontext
def seed_demo(qr_count):
    """Load a connected demo dataset (skipped if branches already exist)."""
    db.create_all()
    try:
        summary = demo_data.seed_demo_data(qr_count=qr_count)
        db.session.commit()
    except ValueError as e:
        db.session.rollback()
        raise click.ClickException(f"Demo seed failed: {e}")

    if not summary["seeded"]:
        click.echo("WARN  Branches already exist, demo data not loaded")
        return

    click.echo(
        f"PASS Seeded {summary['branches']} branches, {summary['users']} users, "
        f"{summary['merchants']} merchants, {summary['qr_codes']} QR codes, "
        f"{summary['audit_items']} audit items"
    )
    click.echo(f"   All demo users share the password: {demo_data.DEMO_PASSWORD}")


# =============================================================================
# USER MANAGEMENT COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', prompt=True, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(ROLES)), prompt=True, help='Role')
@click.option('--branch-id', type=int, default=None, help='Branch (required for branch roles)')
@with_appcontext
def create_user_cli(username, email, name, password, role, branch_id):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    payload = {"username": username, "email": email, "name": name, "role": role}
    if branch_id is not None:
        payload["branch_id"] = branch_id

    try:
        user = auth_service.create_user(payload, password)
        db.session.commit()
    except (ValidationError, ConflictError, NotFoundError) as e:
        db.session.rollback()
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")


@users_group.command('list')
@click.option('--branch-id', type=int, help='Filter by branch ID')
@click.option('--role', type=click.Choice(list(ROLES)), help='Filter by role')
@with_appcontext
def list_users(branch_id, role):
    """List users with their roles and branches."""
    users = auth_service.list_users(branch_id=branch_id, role=role)

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 100)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<18} {'Branch':<8} {'Active'}")
    click.echo("=" * 100)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        branch_str = str(user.branch_id) if user.branch_id is not None else "-"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {user.role:<18} {branch_str:<8} {active_str}")

    click.echo("=" * 100 + "\n")


# =============================================================================
# QR CODE COMMANDS
# =============================================================================

@click.group('qr')
def qr_group():
    """QR code generation and maintenance."""


@qr_group.command('generate')
@click.option('--count', type=int, required=True, help='Number of QR codes')
@click.option('--bank-name', default=None, help='Bank name (defaults to DEFAULT_BANK_NAME)')
@click.option('--type', 'qr_type', type=click.Choice(list(qr_service.QR_TYPES)), default='static', show_default=True)
@with_appcontext
def generate_qr_cli(count, bank_name, qr_type):
    """Generate unallocated QR codes into the pool."""
    try:
        qrs = qr_service.generate_qr_codes(
            count=count,
            qr_type=qr_type,
            bank_name=bank_name or current_app.config["DEFAULT_BANK_NAME"],
        )
        db.session.commit()
    except ValidationError as e:
        db.session.rollback()
        click.echo(f"FAIL {e}")
        return

    click.echo(f"PASS Generated {len(qrs)} {qr_type} QR codes (IDs {qrs[0].id}-{qrs[-1].id})")


@qr_group.command('sync')
@with_appcontext
def sync_qr_cli():
    """Release QR codes held by inactive branches or sellers."""
    summary = qr_service.sync_qr_assignments()
    db.session.commit()
    click.echo(
        f"PASS Sync complete: {summary['released_to_pool']} released to pool, "
        f"{summary['returned_to_branch']} returned to branch "
        f"({summary['qr_count']} QR codes, {summary['user_count']} users, {summary['branch_count']} branches)"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(qr_group)
