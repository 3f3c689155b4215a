# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/channelstock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use "flask db upgrade" for migrated databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Channel inspection:
# - python -m flask channels list [--status active] [--type EVENT]
#   List channels with status and INITIAL request status.
# - python -m flask channels show 12
#   Show one channel: ledger per barcode and close-out entries.
# - python -m flask channels check-ledger
#   Report ledger rows violating 0 <= sold <= received (exit code 1 if any).

import click
from flask.cli import with_appcontext

from .errors import ChannelStockError
from .extensions import db
from .services import channel_service, closeout_service, ledger_service
from .state_machine import CHANNEL_MACHINE, CHANNEL_TYPES, REQUEST_TYPE_INITIAL


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables. Existing tables and data are left alone."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    click.echo("PASS Database reset complete.")


@click.group('channels')
def channels_group():
    """Sales channel inspection commands."""


@channels_group.command('list')
@click.option('--status', type=click.Choice(sorted(CHANNEL_MACHINE.states)), default=None)
@click.option('--type', 'channel_type', type=click.Choice(sorted(CHANNEL_TYPES)), default=None)
@with_appcontext
def list_channels(status, channel_type):
    """List channels (newest first)."""
    channels = channel_service.list_channels(status=status, channel_type=channel_type)
    if not channels:
        click.echo("No channels found.")
        return

    click.echo(f"{'ID':>5}  {'CODE':<16} {'TYPE':<7} {'STATUS':<17} {'INITIAL':<10} NAME")
    for c in channels:
        initial = next((r for r in c.stock_requests if r.request_type == REQUEST_TYPE_INITIAL), None)
        click.echo(
            f"{c.id:>5}  {c.code:<16} {c.type:<7} {c.status:<17} "
            f"{(initial.status if initial else '-'):<10} {c.name}"
        )


@channels_group.command('show')
@click.argument('channel_id', type=int)
@with_appcontext
def show_channel(channel_id):
    """Show one channel's ledger and close-out table."""
    try:
        channel = channel_service.get_channel(channel_id)
    except ChannelStockError as e:
        raise click.ClickException(e.message)

    click.echo(f"{channel.code}  {channel.name}  [{channel.type}]  status={channel.status}")
    if channel.start_date:
        click.echo(f"Dates: {channel.start_date.isoformat()} .. {channel.end_date.isoformat()}")

    click.echo("\nStock requests:")
    for r in channel.stock_requests:
        click.echo(f"  #{r.id:<5} {r.request_type:<8} {r.status:<10} qty={r.requested_total_quantity}")

    rows = ledger_service.get_channel_stock(channel.id)
    click.echo("\nLedger:")
    if not rows:
        click.echo("  (empty)")
    for row in rows:
        click.echo(f"  {row.barcode:<32} received={row.received:<6} sold={row.sold:<6} remaining={row.remaining}")

    entries = closeout_service.get_closeout(channel.id)
    if entries:
        click.echo("\nClose-out:")
        for e in entries:
            flag = " (clamped)" if e.clamped else ""
            click.echo(
                f"  {e.barcode:<32} remaining={e.remaining:<6} damaged={e.damaged:<5} "
                f"missing={e.missing:<5} returned={e.returned}{flag}"
            )


@channels_group.command('check-ledger')
@with_appcontext
def check_ledger():
    """Report ledger rows that violate 0 <= sold <= received."""
    violations = ledger_service.find_invariant_violations()
    if not violations:
        click.echo("PASS Ledger invariant holds for every row.")
        return

    for row in violations:
        click.echo(
            f"FAIL channel={row.channel_id} barcode={row.barcode} "
            f"received={row.received} sold={row.sold}"
        )
    raise click.ClickException(f"{len(violations)} ledger rows violate the invariant")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(channels_group)
