"""
CLI Commands for the loyalty service.

Usage:
    flask points expire --shop example.myshopify.com          # Expire inactive balances
    flask points verify-ledger                                # Replay ledger, report drift
    flask points backfill-emails --shop example.myshopify.com # Fix placeholder emails
    flask points adjust --customer 123 --points 50            # Manual adjustment
    flask points stats --shop example.myshopify.com           # Totals and tiers
"""
from .points import init_app as init_points_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_points_commands(app)
