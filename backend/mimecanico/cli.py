# Overview: Flask CLI command groups for bootstrap, user repair, and maintenance.

# backend/mimecanico/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables, the default admin, and default parameters.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/repair:
# - python -m flask users list [--role mechanic]
#   List users with role and active status.
# - python -m flask users create --username maria --email maria@taller.local --password "Password123!" --role mechanic
#   Create a user (prompts if options are omitted).
# - python -m flask users reset-password --username admin --password "NewPassword1!"
#   Reset a password; creates the admin account when it is missing.
#
# Maintenance:
# - python -m flask invoices mark-overdue [--as-of 2025-01-31]
#   Flag pending/partial invoices past their due date as overdue.
# - python -m flask tokens purge
#   Delete revocation records of tokens that have expired anyway.

import click
from flask.cli import with_appcontext

from .errors import WorkshopError
from .extensions import db
from .models import User
from .models.auth import ROLE_ADMIN, VALID_ROLES
from .services import auth_service, invoice_service, parameter_service, token_service
from .time_utils import parse_iso_date

DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_EMAIL = "admin@mimecanico.local"
DEFAULT_ADMIN_PASSWORD = "Password123!"


def _ensure_admin(password: str) -> tuple[User, bool]:
    """Return (admin user, created). Creates the default admin when missing."""
    existing = db.session.query(User).filter_by(username=DEFAULT_ADMIN_USERNAME).first()
    if existing:
        return existing, False
    user = auth_service.create_user(
        DEFAULT_ADMIN_USERNAME,
        DEFAULT_ADMIN_EMAIL,
        password,
        "Admin",
        "User",
        role=ROLE_ADMIN,
    )
    return user, True


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the workshop database.

    Creates:
    - All tables (safe to re-run)
    - Default admin: admin / Password123!
    - Default system parameters (company, billing, inventory)

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing MiMecanico...")

    db.create_all()
    click.echo("PASS Tables ready")

    try:
        user, created = _ensure_admin(DEFAULT_ADMIN_PASSWORD)
    except WorkshopError as e:
        click.echo(f"FAIL Could not create admin user: {e.message}")
        raise SystemExit(1)
    if created:
        click.echo(f"PASS Created user: {user.username} ({user.email}) with role 'admin'")
    else:
        click.echo(f"WARN  User '{user.username}' already exists, skipping...")

    added = parameter_service.seed_defaults()
    click.echo(f"PASS Seeded {added} default parameter(s)")

    click.echo("\n" + "="*60)
    click.echo("DONE MiMecanico initialized")
    click.echo("="*60)
    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo(f"   admin -> {DEFAULT_ADMIN_EMAIL} / {DEFAULT_ADMIN_PASSWORD}")
    click.echo("")


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


# =============================================================================
# USER COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and repair commands."""


@users_group.command('list')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), help='Only users with this role')
@with_appcontext
def list_users_cli(role):
    """List users with role and active status."""
    q = db.session.query(User)
    if role:
        q = q.filter_by(role=role)
    users = q.order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<14} {'Active'}")
    click.echo("="*80)
    for u in users:
        active_str = "Yes" if u.is_active else "No"
        click.echo(f"{u.id:<5} {u.username:<20} {u.email:<30} {u.role:<14} {active_str}")
    click.echo("="*80 + "\n")


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--first-name', default='Staff', help='First name')
@click.option('--last-name', default='User', help='Last name')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, email, password, first_name, last_name, role):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = auth_service.create_user(username, email, password, first_name, last_name, role=role)
    except WorkshopError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS Created user: {user.username} ({user.email}) with role '{user.role}'")


@users_group.command('reset-password')
@click.option('--username', default=DEFAULT_ADMIN_USERNAME, show_default=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='New password')
@with_appcontext
def reset_password_cli(username, password):
    """
    Reset a user's password.

    For the admin account this is also the repair path: a missing admin is
    recreated with the given password.
    """
    user = db.session.query(User).filter_by(username=username).first()
    try:
        if user is None:
            if username != DEFAULT_ADMIN_USERNAME:
                click.echo(f"FAIL User '{username}' not found")
                raise SystemExit(1)
            user, _ = _ensure_admin(password)
            click.echo(f"PASS Created admin user: {user.username} ({user.email})")
            return
        auth_service.set_password(user.id, password)
    except WorkshopError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    if not user.is_active:
        user.is_active = True
        db.session.commit()
        click.echo(f"PASS Reactivated user '{username}'")
    click.echo(f"PASS Password updated for '{username}'")


# =============================================================================
# MAINTENANCE COMMANDS
# =============================================================================

@click.group('invoices')
def invoices_group():
    """Invoice maintenance commands."""


@invoices_group.command('mark-overdue')
@click.option('--as-of', default=None, help='Reference date YYYY-MM-DD (default: today)')
@with_appcontext
def mark_overdue_cli(as_of):
    """Flag pending/partial invoices whose due date has passed."""
    try:
        as_of_date = parse_iso_date(as_of)
    except ValueError:
        click.echo("FAIL --as-of must be a YYYY-MM-DD date")
        raise SystemExit(1)
    count = invoice_service.mark_overdue(as_of_date)
    click.echo(f"PASS Marked {count} invoice(s) overdue")


@click.group('tokens')
def tokens_group():
    """Token revocation list maintenance."""


@tokens_group.command('purge')
@with_appcontext
def purge_tokens_cli():
    """Delete revocation records for tokens past their expiry."""
    count = token_service.purge_expired_revocations()
    click.echo(f"PASS Purged {count} expired revocation record(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(tokens_group)
