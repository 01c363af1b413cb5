# Overview: Flask CLI command groups for cache maintenance and inspection.

# backend/equiptrack/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP=equiptrack (PowerShell: $env:FLASK_APP="equiptrack").
# - Use: python -m flask <group> <command> [options]
#
# Derived state:
# - python -m flask allocations sync-all
#   Recompute the Machine/Extension cache columns from the approved event log.
# - python -m flask allocations state <UNIT_ID> [--as-of 2026-01-31]
#   Print the derived state of one unit (or self-allocated extension).
# - python -m flask allocations snapshots --period-start 2026-01-01 --period-end 2026-01-31 [--regenerate]
#   Persist financial snapshots for rented units with billable days.
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .validation import NotFoundError, StoreError, ValidationError
from .services import financial_service, state_service, sync_service


@click.group('allocations')
def allocations_group():
    """Derived allocation state commands."""


@allocations_group.command('sync-all')
@with_appcontext
def sync_all():
    """Rebuild the derived-state cache for every active unit and extension."""
    result = sync_service.sync_all_states()
    click.echo(f"OK  Synced {result.synced} subjects")
    for error in result.errors:
        click.echo(f"ERR {error['id']}: {error['error']}", err=True)
    if not result.success:
        raise SystemExit(1)


@allocations_group.command('state')
@click.argument('unit_id')
@click.option('--as-of', 'as_of', default=None, help='ISO-8601 reference time (default: now)')
@with_appcontext
def show_state(unit_id, as_of):
    """Print the derived state of one unit as JSON."""
    try:
        state = state_service.compute_state(unit_id, as_of)
    except (NotFoundError, StoreError, ValueError) as e:
        raise click.ClickException(str(e))
    click.echo(json.dumps(state.to_dict(), indent=2))


@allocations_group.command('snapshots')
@click.option('--period-start', required=True, help='First day (YYYY-MM-DD)')
@click.option('--period-end', required=True, help='Last day, inclusive (YYYY-MM-DD)')
@click.option('--site-id', default=None)
@click.option('--supplier-id', default=None)
@click.option('--regenerate', is_flag=True, help='Overwrite existing snapshots for the period')
@with_appcontext
def snapshots(period_start, period_end, site_id, supplier_id, regenerate):
    """Persist financial snapshots for a period."""
    try:
        result = financial_service.generate_financial_snapshots(
            period_start,
            period_end,
            site_id=site_id,
            supplier_id=supplier_id,
            regenerate=regenerate,
        )
    except ValidationError as e:
        raise click.ClickException(str(e))
    click.echo(
        f"OK  created={result['created']} updated={result['updated']} skipped={result['skipped']}"
    )


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the event log.
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("OK  Database reset complete")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(allocations_group)
    app.cli.add_command(system_group)
