"""
Tests for the `flask points` CLI commands.
"""
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from loyalty.extensions import db
from loyalty.models import CustomerAccount
from loyalty.services.points_engine import PointsEngine


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestPointsCli:
    """Tests for the points command group."""

    def test_stats(self, runner, engine, make_order, shop_domain):
        engine.credit_order(make_order('A'))

        result = runner.invoke(args=['points', 'stats', '--shop', shop_domain])

        assert result.exit_code == 0
        assert 'Customers: 1' in result.output
        assert 'Issued: 150' in result.output
        assert 'bronze: 1' in result.output

    def test_adjust(self, runner, engine, shop_domain):
        result = runner.invoke(args=['points', 'adjust', '--shop', shop_domain,
                                     '--customer', '1001', '--points', '600', '--note', 'migration'])

        assert result.exit_code == 0
        assert 'balance 600, tier silver' in result.output
        assert engine.get_balance('1001').current_balance == 600

    def test_adjust_overdraw_fails(self, runner, shop_domain):
        result = runner.invoke(args=['points', 'adjust', '--shop', shop_domain,
                                     '--customer', '1001', '--points', '-5'])

        assert result.exit_code != 0
        assert 'Insufficient points' in result.output

    def test_verify_ledger_clean(self, runner, engine, make_order, shop_domain):
        engine.credit_order(make_order('A'))

        result = runner.invoke(args=['points', 'verify-ledger', '--shop', shop_domain])

        assert result.exit_code == 0
        assert 'Ledger consistent' in result.output

    def test_verify_ledger_reports_drift(self, runner, engine, make_order, shop_domain):
        engine.credit_order(make_order('A'))
        CustomerAccount.query.filter_by(customer_id='1001').one().current_balance = 10
        db.session.commit()

        result = runner.invoke(args=['points', 'verify-ledger', '--shop', shop_domain])

        assert result.exit_code != 0
        assert '1001: stored 10, replayed 150' in result.output

    def test_verify_ledger_unknown_customer(self, runner, shop_domain):
        result = runner.invoke(args=['points', 'verify-ledger', '--shop', shop_domain,
                                     '--customer', '9999'])

        assert result.exit_code != 0
        assert 'Customer with ID 9999 not found' in result.output

    def test_verify_ledger_customer_in_later_shop(self, runner, engine, make_order):
        PointsEngine('first-shop.myshopify.com').get_config()
        engine.credit_order(make_order('A'))

        result = runner.invoke(args=['points', 'verify-ledger', '--customer', '1001'])

        assert result.exit_code == 0
        assert 'Ledger consistent' in result.output

    def test_expire_all_active_shops(self, runner, engine, make_order):
        engine.credit_order(make_order('A'))
        later = datetime.utcnow() + timedelta(days=400)

        with patch('loyalty.services.points_engine.datetime') as mock_datetime:
            mock_datetime.utcnow.return_value = later
            result = runner.invoke(args=['points', 'expire'])

        assert result.exit_code == 0
        assert 'TOTAL: 1 customers, 150 points expired' in result.output
        assert engine.get_balance('1001').current_balance == 0

    def test_backfill_emails(self, runner, engine, make_order, shop_domain):
        engine.credit_order(make_order('A'))

        with patch('loyalty.services.points_engine.ShopifyClient') as client_class:
            client_class.from_app_config.return_value.get_customer_by_id.return_value = {
                'email': 'real@example.com', 'firstName': None, 'lastName': None,
            }
            result = runner.invoke(args=['points', 'backfill-emails', '--shop', shop_domain])

        assert result.exit_code == 0
        assert 'Updated: 1' in result.output
        assert engine.get_balance('1001').email == 'real@example.com'
