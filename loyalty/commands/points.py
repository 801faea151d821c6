"""
CLI Commands for points maintenance.

These commands can be run manually or via cron jobs:

# Inactivity expiry (run daily at midnight)
0 0 * * * cd /app && flask points expire --shop=example.myshopify.com

# Ledger consistency check (run nightly)
30 0 * * * cd /app && flask points verify-ledger
"""

import click
from flask import current_app
from flask.cli import with_appcontext
from ..models import StoreConfig
from ..services.points_engine import PointsEngine
from ..utils.exceptions import CustomerNotFoundError, LoyaltyError


@click.group('points')
def points_cli():
    """Loyalty points maintenance commands."""
    pass


def _shops(shop):
    """The requested shop, or every active configured shop."""
    if shop:
        return [shop]
    shops = [c.shop_domain for c in StoreConfig.query.filter_by(active=True).order_by(StoreConfig.id).all()]
    return shops or [current_app.config['SHOPIFY_STORE_DOMAIN']]


@points_cli.command('expire')
@click.option('--shop', help='Shop domain (or all active shops if not specified)')
@with_appcontext
def expire_points(shop):
    """
    Expire balances of customers inactive past the shop's expiry window.

    Run this daily.
    """
    total_customers = 0
    total_points = 0

    for shop_domain in _shops(shop):
        click.echo(f"\nProcessing shop: {shop_domain}")
        report = PointsEngine(shop_domain).expire_inactive_balances()

        click.echo(f"  Checked: {report.processed} customers")
        click.echo(f"  Expired: {report.changed} customers, {report.points} points")
        if report.errors:
            click.echo(f"  Errors: {len(report.errors)}")
            for error in report.errors[:5]:
                click.echo(f"    - {error}")

        total_customers += report.changed
        total_points += report.points

    click.echo(f"\nTOTAL: {total_customers} customers, {total_points} points expired")


@points_cli.command('verify-ledger')
@click.option('--shop', help='Shop domain (or all active shops if not specified)')
@click.option('--customer', 'customer_id', help='Check a single customer')
@with_appcontext
def verify_ledger(shop, customer_id):
    """Replay the ledger and report customers whose stored balances drifted."""
    drifted = 0
    found = False
    not_found_message = None

    for shop_domain in _shops(shop):
        engine = PointsEngine(shop_domain)
        if customer_id:
            try:
                results = [engine.verify_ledger(customer_id)]
            except CustomerNotFoundError as e:
                not_found_message = e.message
                continue
            except LoyaltyError as e:
                raise click.ClickException(e.message)
            found = True
            results = [r for r in results if not r['consistent']]
        else:
            results = engine.verify_all()

        click.echo(f"\n{shop_domain}: {len(results)} inconsistent account(s)")
        for result in results:
            click.echo(
                f"  {result['customer_id']}: stored {result['stored']['current_balance']}, "
                f"replayed {result['replayed']['current_balance']} (drift {result['drift']})"
            )
        drifted += len(results)

    if customer_id and not found:
        raise click.ClickException(not_found_message)
    if drifted:
        raise click.ClickException(f"{drifted} account(s) out of step with the ledger")
    click.echo("\nLedger consistent")


@points_cli.command('backfill-emails')
@click.option('--shop', help='Shop domain (or all active shops if not specified)')
@click.option('--limit', type=int, default=None, help='Maximum customers to look up per shop')
@with_appcontext
def backfill_emails(shop, limit):
    """Replace placeholder emails with real addresses from Shopify."""
    for shop_domain in _shops(shop):
        click.echo(f"\nProcessing shop: {shop_domain}")
        report = PointsEngine(shop_domain).backfill_placeholder_emails(limit=limit)

        click.echo(f"  Checked: {report.processed} customers")
        click.echo(f"  Updated: {report.changed}")
        if report.errors:
            click.echo(f"  Not updated: {len(report.errors)}")


@points_cli.command('adjust')
@click.option('--shop', help='Shop domain (default: configured store)')
@click.option('--customer', 'customer_id', required=True, help='Shopify customer ID')
@click.option('--points', type=int, required=True, help='Points to add (negative to remove)')
@click.option('--note', default=None, help='Admin note stored with the entry')
@with_appcontext
def adjust_points(shop, customer_id, points, note):
    """Manually add or remove a customer's points."""
    engine = PointsEngine(shop or current_app.config['SHOPIFY_STORE_DOMAIN'])
    try:
        account = engine.adjust(customer_id, points, admin_note=note)
    except LoyaltyError as e:
        raise click.ClickException(e.message)

    click.echo(f"Customer {customer_id}: balance {account.current_balance}, tier {account.tier}")


@points_cli.command('stats')
@click.option('--shop', help='Shop domain (default: configured store)')
@with_appcontext
def points_stats(shop):
    """Show points totals and tier distribution."""
    shop_domain = shop or current_app.config['SHOPIFY_STORE_DOMAIN']
    stats = PointsEngine(shop_domain).analytics()

    click.echo(f"\nPoints Stats for {shop_domain}:")
    click.echo(f"  Customers: {stats['total_customers']}")
    click.echo(f"  Issued: {stats['total_points_issued']}")
    click.echo(f"  Redeemed: {stats['total_points_redeemed']}")
    click.echo(f"  Expired: {stats['total_points_expired']}")
    click.echo(f"  Outstanding: {stats['points_outstanding']}")

    if stats['tier_distribution']:
        click.echo(f"\n  Tiers:")
        for tier, count in sorted(stats['tier_distribution'].items()):
            click.echo(f"    {tier}: {count}")


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(points_cli)
