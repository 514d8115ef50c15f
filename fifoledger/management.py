"""
Management commands for ledger maintenance
"""
import sys
from datetime import datetime

import click
from flask.cli import with_appcontext

from .extensions import db


@click.group('ledger')
def ledger_cli():
    """FIFO layer ledger maintenance"""


@ledger_cli.command('verify')
@click.option('--sku', 'sku_id', default=None, help='Limit the check to one SKU')
@with_appcontext
def verify_command(sku_id):
    """Check layer, movement, work order and SKU cache integrity"""
    from .services.layer_ledger import verify_integrity

    is_valid, issues = verify_integrity(sku_id.upper() if sku_id else None)
    if is_valid:
        click.echo("✅ Ledger is consistent")
        return

    click.echo(f"❌ {len(issues)} integrity issue(s) found:")
    for issue in issues:
        click.echo(f"   - [{issue.get('kind', 'issue')}] {issue.get('message', issue)}")
    sys.exit(1)


@ledger_cli.command('expire-layers')
@click.option('--as-of', default=None, help='ISO-8601 cutoff; defaults to now (UTC)')
@with_appcontext
def expire_layers_command(as_of):
    """Mark ACTIVE layers past their expiration date as EXPIRED"""
    from .services.layer_ledger import expire_layers

    cutoff = None
    if as_of:
        try:
            cutoff = datetime.fromisoformat(as_of)
        except ValueError:
            raise click.BadParameter('must be an ISO-8601 timestamp', param_hint='--as-of')

    success, value = expire_layers(cutoff)
    if not success:
        click.echo(f"❌ Expiry sweep failed: {value.message}")
        sys.exit(1)
    for row in value['expired']:
        click.echo(f"   {row['layer_code']} ({row['sku_id']}): {row['remaining_quantity']} remaining")
    click.echo(f"✅ {len(value['expired'])} layer(s) expired")


@ledger_cli.command('summary')
@with_appcontext
def summary_command():
    """Print on-hand quantity and value per SKU"""
    from .services.layer_ledger import inventory_summary

    rows = inventory_summary()
    if not rows:
        click.echo("ℹ️  No SKUs defined.")
        return
    for row in rows:
        flag = ' (below minimum)' if row['below_minimum'] else ''
        click.echo(
            f"{row['sku_id']:<20} {row['on_hand_quantity']:>14} {row['unit']:<8} "
            f"${row['value']:>12}{flag}"
        )


@click.command('create-db')
@with_appcontext
def create_db_command():
    """Create ledger tables directly (development only; use `flask db upgrade` otherwise)"""
    db.create_all()
    click.echo("✅ Ledger tables created")


def register_commands(app):
    """Register CLI commands"""
    app.cli.add_command(ledger_cli)
    app.cli.add_command(create_db_command)
