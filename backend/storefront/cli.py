# Overview: Flask CLI command groups for bootstrap, catalog, maintenance, and batch inspection.

# backend/storefront/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-admin --email admin@example.com --password "Password123!" --name "Admin"
#   Create the first ADMIN account (idempotent on email).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users and catalog:
# - python -m flask users create --email staff@example.com --password "..." --name "Counter" --role STAFF
# - python -m flask users list
# - python -m flask catalog add-bundle --name "Family Box" --price 150000
# - python -m flask catalog list
#
# Maintenance:
# - python -m flask maintenance run [--now 2024-05-01T08:00:00Z] [--pass payment_reminders]
#   One reminder/expiry pass, same as POST /api/cron/maintenance (default: all passes).
# - python -m flask maintenance stats [--now 2024-05-01T08:00:00Z]
#   Pending/overdue counts, same as GET /api/cron/maintenance.
#
# Batch calendar:
# - python -m flask batches show [--at 2024-05-01T08:00:00Z]
#   Print the batch and phase at an instant (default now).

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import StorefrontError
from .extensions import db
from .models import Bundle, User
from .services import auth_service, maintenance_service
from .services.batch_calendar import compute_status, current_batches, pickup_batch_for, resolve_batch
from .time_utils import parse_iso_datetime, utcnow


def _parse_instant(value):
    try:
        return parse_iso_datetime(value) or utcnow()
    except ValueError as e:
        raise click.BadParameter(str(e))


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-admin')
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--name', default='Administrator', show_default=True)
@with_appcontext
def init_admin(email, password, name):
    """
    Create the first ADMIN user.

    SECURITY: Change the password immediately in production!
    """
    existing = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if existing:
        click.echo(f"WARN  User {existing.email} already exists (role {existing.role}), skipping")
        return

    try:
        user = auth_service.create_user(name, email, password, role=auth_service.ROLE_ADMIN)
    except StorefrontError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created admin {user.email} (ID: {user.id})")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if current_app.config.get("APP_ENV") == "production":
        raise click.ClickException("Refusing to reset a production database")
    if not yes:
        raise click.ClickException("Pass --yes to confirm")
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('users')
def users_group():
    """User management."""


@users_group.command('create')
@click.option('--email', prompt=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@click.option('--name', prompt=True)
@click.option('--role', type=click.Choice(auth_service.ROLES), default=auth_service.ROLE_CUSTOMER, show_default=True)
@click.option('--phone', default=None)
@with_appcontext
def create_user_cli(email, password, name, role, phone):
    try:
        user = auth_service.create_user(name, email, password, role=role, phone=phone)
    except StorefrontError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user {user.email} (ID: {user.id}, role {user.role})")


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.email:<32} {user.role:<9} {status}")


@click.group('catalog')
def catalog_group():
    """Bundle catalog."""


@catalog_group.command('add-bundle')
@click.option('--name', required=True)
@click.option('--price', type=int, required=True, help='Price in the smallest currency unit')
@with_appcontext
def add_bundle(name, price):
    if price <= 0:
        raise click.BadParameter("price must be positive", param_hint="--price")
    bundle = Bundle(name=name, price=price, is_active=True)
    db.session.add(bundle)
    db.session.commit()
    click.echo(f"PASS Created bundle {bundle.name} (ID: {bundle.id}, price {bundle.price})")


@catalog_group.command('list')
@with_appcontext
def list_bundles():
    for bundle in db.session.query(Bundle).order_by(Bundle.id).all():
        flag = "" if bundle.is_active else " (inactive)"
        click.echo(f"{bundle.id:>4}  {bundle.name:<32} {bundle.price:>10}{flag}")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('run')
@click.option('--now', 'now_value', default=None, help='Evaluate as of this ISO 8601 instant (default: now)')
@click.option(
    '--pass', 'pass_name',
    type=click.Choice(maintenance_service.PASS_NAMES + ("all",)),
    default="all", show_default=True,
)
@with_appcontext
def run_maintenance_cli(now_value, pass_name):
    """
    Run one reminder/expiry pass.

    Safe to run any number of times; each pass only acts on orders that
    have not been handled yet.
    """
    now = _parse_instant(now_value)
    summary = maintenance_service.run_single_pass(pass_name, now)
    click.echo(json.dumps(summary.to_dict(), indent=2))
    if summary.errors:
        click.echo(f"WARN  {len(summary.errors)} error(s) during maintenance", err=True)


@maintenance_group.command('stats')
@click.option('--now', 'now_value', default=None, help='Evaluate as of this ISO 8601 instant (default: now)')
@with_appcontext
def maintenance_stats_cli(now_value):
    """Print what the next pass would pick up, plus order progress."""
    stats = maintenance_service.maintenance_stats(_parse_instant(now_value))
    click.echo(json.dumps(stats, indent=2))


@click.group('batches')
def batches_group():
    """Batch calendar inspection."""


@batches_group.command('show')
@click.option('--at', 'at_value', default=None, help='ISO 8601 instant (default: now)')
@with_appcontext
def show_batches(at_value):
    at = _parse_instant(at_value)
    zone = current_app.config["VENUE_TIMEZONE"]

    window = resolve_batch(at, zone)
    click.echo(f"Timezone:       {zone}")
    click.echo(f"Current batch:  {window.batch_id} ({compute_status(window, at)})")
    click.echo(f"Checkout now -> pickup in {pickup_batch_for(at, zone).batch_id}")
    for data in current_batches(at, zone):
        click.echo(
            f"  {data['batch_id']:<8} {data['status']:<12} "
            f"cutoff {data['cutoff_time']}  pickup {data['pickup_start']} - {data['pickup_end']}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(maintenance_group)
    app.cli.add_command(batches_group)
