# Overview: Flask CLI command groups for bootstrap, stock audit, offline sync and maintenance.

# backend/compliance/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: default region, one user per role, a demo client.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --name "Ana" --email ana@example.com --role inspector [--level Basic]
#
# Stock audit:
# - python -m flask stock lots [--status ACTIVE]
# - python -m flask stock reconcile [--fix]
#   Conservation audit: issued = sum(holdings), available = total - issued.
#
# Offline queue:
# - python -m flask sync status
# - python -m flask sync online | offline
# - python -m flask sync run [--watch] [--interval 30]
#
# Maintenance:
# - python -m flask maintenance purge-activity [--retention-days 1089] [--max-rows 10000]

import time

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Client, Region, User
from .permissions import LEVEL_ADVANCED, VALID_LEVELS, VALID_ROLES
from .services import activity_service, lot_service, sync_service
from .services.concurrency import commit_with_retry


DEFAULT_USERS = (
    # (name, email, role, level)
    ("General Manager", "gm@compliance.local", "gm", LEVEL_ADVANCED),
    ("Stock Manager", "manager@compliance.local", "manager", None),
    ("Field Supervisor", "supervisor@compliance.local", "supervisor", None),
    ("Accountant", "accountant@compliance.local", "accountant", None),
    ("Field Inspector", "inspector@compliance.local", "inspector", None),
    ("Client Contact", "client@compliance.local", "client", None),
)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--region', 'region_name', default='Head Office', help='Default region name')
@click.option('--region-code', default='HQ', help='Default region code')
@with_appcontext
def init_system(region_name, region_code):
    """
    Initialize a usable system: default region, one user per role and a
    demo client linked to the client user. Safe to run repeatedly.
    """
    click.echo("START Initializing compliance system...")

    db.create_all()

    region = db.session.query(Region).filter_by(code=region_code).first()
    if not region:
        region = Region(name=region_name, code=region_code)
        db.session.add(region)
        db.session.flush()
        click.echo(f"PASS Created region: {region.name} ({region.code})")
    else:
        click.echo(f"PASS Using existing region: {region.name}")

    for name, email, role, level in DEFAULT_USERS:
        user = db.session.query(User).filter_by(email=email).first()
        if user:
            click.echo(f"PASS User exists: {email}")
            continue
        user = User(
            name=name,
            email=email,
            roles=[role],
            current_role=role,
            permission_level=level,
            region_id=region.id,
        )
        db.session.add(user)
        db.session.flush()
        click.echo(f"PASS Created {role}: {email} (ID: {user.id})")

    client_user = db.session.query(User).filter_by(email="client@compliance.local").first()
    if not db.session.query(Client).filter_by(user_id=client_user.id).first():
        db.session.add(Client(
            name="Demo Client Ltd",
            email=client_user.email,
            user_id=client_user.id,
            region_id=region.id,
            business_type="Company",
        ))
        click.echo("PASS Created demo client")

    commit_with_retry()
    click.echo("DONE System initialized.")


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
    click.echo("BUILD Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and creation."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(
            f"{user.id:>4}  {user.name:<24} {user.email:<32} roles={','.join(user.roles or [])} "
            f"level={user.permission_level or '-'} {status}"
        )


@users_group.command('create')
@click.option('--name', prompt=True)
@click.option('--email', prompt=True)
@click.option('--role', type=click.Choice(VALID_ROLES), prompt=True)
@click.option('--level', type=click.Choice(VALID_LEVELS), default=None)
@click.option('--region-id', type=int, default=None)
@with_appcontext
def create_user_cli(name, email, role, level, region_id):
    if db.session.query(User).filter_by(email=email).first():
        raise click.ClickException(f"User with email {email} already exists")
    user = User(
        name=name,
        email=email,
        roles=[role],
        current_role=role,
        permission_level=level,
        region_id=region_id,
    )
    db.session.add(user)
    commit_with_retry()
    click.echo(f"PASS Created user {user.email} (ID: {user.id})")


@click.group('stock')
def stock_group():
    """Sticker lot inspection and audit."""


@stock_group.command('lots')
@click.option('--status', default=None, help='ACTIVE, DEPLETED or ARCHIVED')
@with_appcontext
def list_lots_cli(status):
    lots = lot_service.list_lots(status=status)
    if not lots:
        click.echo("No lots found.")
        return
    for lot in lots:
        click.echo(
            f"{lot.lot_number:<16} {lot.size:<6} total={lot.total_qty:<6} issued={lot.issued_qty:<6} "
            f"available={lot.available_qty:<6} {lot.status:<9} "
            f"{lot_service.format_serial(lot.start_sequence)}-{lot_service.format_serial(lot.end_sequence)}"
        )


@stock_group.command('reconcile')
@click.option('--fix', is_flag=True, help='Write the derived totals back')
@with_appcontext
def reconcile_cli(fix):
    """Conservation audit across all lots."""
    discrepancies = lot_service.reconcile_lots(fix=fix)
    if not discrepancies:
        click.echo("PASS All lots balance.")
        return
    for d in discrepancies:
        s, dv = d["stored"], d["derived"]
        click.echo(
            f"WARN {d['lot_number']}: issued {s['issued_qty']}->{dv['issued_qty']}, "
            f"available {s['available_qty']}->{dv['available_qty']}, status {s['status']}->{dv['status']}"
        )
    click.echo(f"{'Fixed' if fix else 'Found'} {len(discrepancies)} lot(s).")


@click.group('sync')
def sync_group():
    """Offline job-order queue."""


@sync_group.command('status')
@with_appcontext
def sync_status_cli():
    status = sync_service.get_sync_status()
    for key, value in status.items():
        click.echo(f"{key}: {value}")


@sync_group.command('online')
@with_appcontext
def sync_online_cli():
    status = sync_service.set_online(True)
    replay = status.get("replay")
    if replay:
        click.echo(f"Online. Replayed: {replay['synced']} synced, {replay['failed']} failed.")
    else:
        click.echo("Online.")


@sync_group.command('offline')
@with_appcontext
def sync_offline_cli():
    sync_service.set_online(False)
    click.echo("Offline. New job orders will be queued.")


@sync_group.command('run')
@click.option('--watch', is_flag=True, help='Keep replaying at a fixed interval')
@click.option('--interval', type=int, default=None, help='Seconds between passes (default OFFLINE_SYNC_INTERVAL_SECONDS)')
@with_appcontext
def sync_run_cli(watch, interval):
    """Replay the offline queue once, or periodically with --watch."""
    interval = interval or current_app.config["OFFLINE_SYNC_INTERVAL_SECONDS"]
    while True:
        result = sync_service.sync_offline_queue()
        if result.get("offline"):
            click.echo("Offline; nothing replayed.")
        else:
            click.echo(f"Replayed: {result['synced']} synced, {result['failed']} failed.")
        if not watch:
            break
        time.sleep(interval)


@click.group('maintenance')
def maintenance_group():
    """Maintenance and cleanup commands."""


@maintenance_group.command('purge-activity')
@click.option('--retention-days', type=int, default=None, help='Default ACTIVITY_LOG_RETENTION_DAYS')
@click.option('--max-rows', type=int, default=None, help='Default ACTIVITY_LOG_MAX_ROWS')
@with_appcontext
def purge_activity_cli(retention_days, max_rows):
    """Delete activity rows past the retention window and beyond the row cap."""
    retention_days = retention_days or current_app.config["ACTIVITY_LOG_RETENTION_DAYS"]
    max_rows = max_rows or current_app.config["ACTIVITY_LOG_MAX_ROWS"]
    deleted = activity_service.purge_activity(retention_days=retention_days, max_rows=max_rows)
    commit_with_retry()
    click.echo(f"Deleted {deleted} activity rows (retention {retention_days} days, cap {max_rows}).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(sync_group)
    app.cli.add_command(maintenance_group)
