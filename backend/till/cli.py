# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/till/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to till (PowerShell: $env:FLASK_APP="till").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default cashier user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with active status.
# - python -m flask users create --username cashier2 --password "Password123!"
#   Create a user (prompts if options are omitted).
#
# Order session inspection (read-only):
# - python -m flask order-sessions show --username cashier
#   Show the user's active/pending_logout session and recent history.
# - python -m flask order-sessions list --status pending_logout
#   List sessions across users, optionally filtered by status.
#
# Maintenance:
# - python -m flask maintenance cleanup-tokens --retention-days 30
#   Delete expired/revoked login tokens older than the retention window.
from __future__ import annotations

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, OrderSession
from .models.order_sessions import STATUSES, STATUS_ACTIVE, STATUS_PENDING_LOGOUT
from .services.auth_service import create_user, PasswordValidationError
from .services import order_session_service
from .services import session_service
from .time_utils import to_utc_z


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the till backend: schema and a default cashier.

    Default credentials: cashier / Password123!
    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing till backend...")

    db.create_all()
    click.echo("PASS Tables created")

    existing = db.session.query(User).filter_by(username="cashier").first()
    if existing:
        click.echo("WARN  User 'cashier' already exists, skipping...")
    else:
        try:
            user = create_user(username="cashier", password="Password123!")
            click.echo(f"PASS Created user: {user.username} (ID: {user.id})")
        except (PasswordValidationError, ValueError) as e:
            click.echo(f"FAIL Failed to create user 'cashier': {str(e)}")

    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo("   cashier -> Password123!")


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
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_user_cli(username, password):
    """Create a user."""
    try:
        user = create_user(username=username, password=password)
    except (PasswordValidationError, ValueError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user: {user.username} (ID: {user.id})")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id).all()

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<5} {'Username':<20} {'Active':<8} {'Last login'}")
    click.echo("="*60)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        last_login = to_utc_z(user.last_login_at) if user.last_login_at else "-"
        click.echo(f"{user.id:<5} {user.username:<20} {active_str:<8} {last_login}")
    click.echo("="*60 + "\n")


@click.group('order-sessions')
def order_sessions_group():
    """Order session inspection commands (read-only)."""


def _echo_session(record) -> None:
    logout = to_utc_z(record.logout_time) if record.logout_time else "-"
    via = record.completed_via or "-"
    click.echo(
        f"{record.id}  {record.status:<15} items={len(record.items):<4} "
        f"updated={to_utc_z(record.updated_at)} logout={logout} via={via}"
    )


@order_sessions_group.command('show')
@click.option('--username', help='Username')
@click.option('--user-id', type=int, help='User ID')
@click.option('--limit', type=int, default=10, show_default=True, help='History rows to show')
@with_appcontext
def show_user_sessions(username, user_id, limit):
    """Show a user's current session and recent history."""
    if not username and user_id is None:
        raise click.UsageError("Pass --username or --user-id")

    query = db.session.query(User)
    user = query.filter_by(username=username).first() if username else query.filter_by(id=user_id).first()
    if not user:
        raise click.ClickException("User not found")

    click.echo(f"\nUser: {user.username} (ID: {user.id})")

    current = None
    for status in (STATUS_ACTIVE, STATUS_PENDING_LOGOUT):
        found = order_session_service.list_sessions(user.id, status=status, limit=1)
        if found:
            current = found[0]
            break

    if current:
        click.echo("\nCurrent:")
        _echo_session(current)
        for item in current.items:
            click.echo(f"   {item.get('quantity')} x {item.get('name')} @ {item.get('price')}")
    else:
        click.echo("\nCurrent: none")

    click.echo("\nHistory:")
    for record in order_session_service.list_sessions(user.id, limit=limit):
        _echo_session(record)
    click.echo("")


@order_sessions_group.command('list')
@click.option('--status', type=click.Choice(list(STATUSES)), help='Filter by status')
@click.option('--limit', type=int, default=50, show_default=True)
@with_appcontext
def list_order_sessions(status, limit):
    """List order sessions across all users, newest first."""
    query = db.session.query(OrderSession, User).join(User, OrderSession.user_id == User.id)
    if status:
        query = query.filter(OrderSession.status == status)
    rows = query.order_by(OrderSession.updated_at.desc()).limit(limit).all()

    for session, user in rows:
        record = order_session_service.OrderSessionRecord.from_model(session)
        click.echo(f"{user.username:<20} ", nl=False)
        _echo_session(record)


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-tokens')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_tokens_cli(retention_days):
    """Delete expired/revoked login tokens older than the retention window."""
    deleted = session_service.cleanup_expired_sessions(retention_days=retention_days)
    click.echo(f"PASS Deleted {deleted} login tokens")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(order_sessions_group)
    app.cli.add_command(maintenance_group)
