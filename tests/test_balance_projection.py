"""
Tests for the balance projection.

Tests cover:
- Transient zero-balance accounts for unknown customers
- Earn with welcome bonus and placeholder emails
- Debit, release, adjustment and expiry counters
- Email lookup and leaderboard ordering
"""
from datetime import datetime, timedelta

import pytest

from loyalty.extensions import db
from loyalty.models import CustomerAccount, LedgerEntry
from loyalty.services.balance_projection import BalanceProjection
from loyalty.utils.exceptions import InsufficientBalanceError, DuplicateEntryError, ValidationError

TABLE = {'bronze': 0, 'silver': 500, 'gold': 1500, 'platinum': 5000}


@pytest.fixture
def projection(app, shop_domain):
    return BalanceProjection(shop_domain)


class TestGetBalance:
    """Tests for BalanceProjection.get_balance."""

    def test_unknown_customer_gets_transient_account(self, projection):
        account = projection.get_balance('404')

        assert account.current_balance == 0
        assert account.tier == 'bronze'
        assert account.exists is False
        assert account not in db.session
        assert CustomerAccount.query.count() == 0

    def test_existing_customer(self, projection):
        projection.apply_earn('1001', 50, TABLE, welcome_bonus=100, order_id='1')
        db.session.commit()

        account = projection.get_balance('1001')

        assert account.exists is True
        assert account.current_balance == 150


class TestApplyEarn:
    """Tests for BalanceProjection.apply_earn."""

    def test_new_account_gets_welcome_entry_first(self, projection):
        account, welcome, previous_tier = projection.apply_earn(
            '1001', 50, TABLE, welcome_bonus=100, order_id='1', email='ana@example.com'
        )
        db.session.commit()

        assert welcome == 100
        assert previous_tier is None
        assert account.current_balance == 150
        assert account.total_earned == 150
        assert account.email == 'ana@example.com'
        assert account.email_is_placeholder is False

        entries = LedgerEntry.query.order_by(LedgerEntry.id).all()
        assert [(e.dedupe_key, e.points) for e in entries] == [('welcome_bonus', 100), ('1', 50)]
        assert entries[0].created_at == entries[1].created_at

    def test_zero_welcome_bonus_writes_single_entry(self, projection):
        projection.apply_earn('1001', 50, TABLE, welcome_bonus=0, order_id='1')
        db.session.commit()

        assert LedgerEntry.query.count() == 1

    def test_missing_email_is_flagged_placeholder(self, app, projection):
        account, _, _ = projection.apply_earn('1001', 50, TABLE, order_id='1')

        domain = app.config['PLACEHOLDER_EMAIL_DOMAIN']
        assert account.email == f'customer_1001@{domain}'
        assert account.email_is_placeholder is True

    def test_placeholder_replaced_by_real_email(self, projection):
        projection.apply_earn('1001', 50, TABLE, order_id='1')
        db.session.commit()

        account, _, _ = projection.apply_earn('1001', 50, TABLE, order_id='2', email='real@example.com',
                                              first_name='Ana')
        db.session.commit()

        assert account.email == 'real@example.com'
        assert account.email_is_placeholder is False
        assert account.first_name == 'Ana'

    def test_real_email_not_overwritten(self, projection):
        projection.apply_earn('1001', 50, TABLE, order_id='1', email='first@example.com')
        db.session.commit()

        account, _, _ = projection.apply_earn('1001', 50, TABLE, order_id='2', email='second@example.com')

        assert account.email == 'first@example.com'

    def test_duplicate_order_raises_before_changes(self, projection):
        projection.apply_earn('1001', 50, TABLE, welcome_bonus=100, order_id='1')
        db.session.commit()

        with pytest.raises(DuplicateEntryError):
            projection.apply_earn('1001', 50, TABLE, order_id='1')
        db.session.rollback()

        assert projection.get_balance('1001').current_balance == 150

    def test_tier_recomputed(self, projection):
        account, _, _ = projection.apply_earn('1001', 450, TABLE, welcome_bonus=100, order_id='1')

        assert account.tier == 'silver'


class TestDebitAndRelease:
    """Tests for apply_debit and release_debit."""

    def test_debit_then_release_restores_counters(self, projection):
        projection.apply_earn('1001', 400, TABLE, welcome_bonus=100, order_id='1')
        db.session.commit()

        account = projection.apply_debit('1001', 200)
        db.session.commit()
        assert account.current_balance == 300
        assert account.total_redeemed == 200

        account = projection.release_debit('1001', 200)
        db.session.commit()
        assert account.current_balance == 500
        assert account.total_redeemed == 0

    def test_debit_more_than_balance(self, projection):
        projection.apply_earn('1001', 50, TABLE, welcome_bonus=100, order_id='1')
        db.session.commit()

        with pytest.raises(InsufficientBalanceError) as exc_info:
            projection.apply_debit('1001', 200)

        assert exc_info.value.current == 150
        assert exc_info.value.required == 200

    def test_debit_unknown_customer(self, projection):
        with pytest.raises(InsufficientBalanceError):
            projection.apply_debit('404', 100)

    def test_debit_keeps_tier(self, projection):
        projection.apply_earn('1001', 1500, TABLE, welcome_bonus=100, order_id='1')
        db.session.commit()

        account = projection.apply_debit('1001', 1200)

        assert account.tier == 'gold'


class TestAdjustmentAndExpiry:
    """Tests for apply_adjustment and apply_expiry."""

    def test_adjustment_creates_account_without_welcome(self, projection):
        account, previous_tier = projection.apply_adjustment('1001', 30, TABLE, description='Goodwill')
        db.session.commit()

        assert previous_tier is None
        assert account.current_balance == 30
        assert account.total_earned == 30
        assert LedgerEntry.query.count() == 1

    def test_negative_adjustment_keeps_total_earned(self, projection):
        projection.apply_adjustment('1001', 600, TABLE)
        db.session.commit()

        account, previous_tier = projection.apply_adjustment('1001', -200, TABLE)

        assert previous_tier == 'silver'
        assert account.current_balance == 400
        assert account.total_earned == 600
        assert account.tier == 'silver'

    def test_negative_adjustment_cannot_overdraw(self, projection):
        projection.apply_adjustment('1001', 50, TABLE)
        db.session.commit()

        with pytest.raises(InsufficientBalanceError):
            projection.apply_adjustment('1001', -51, TABLE)

    def test_zero_adjustment_rejected(self, projection):
        with pytest.raises(ValidationError):
            projection.apply_adjustment('1001', 0, TABLE)

    def test_expiry_zeroes_balance(self, projection):
        projection.apply_adjustment('1001', 120, TABLE)
        db.session.commit()

        expired = projection.apply_expiry('1001')
        db.session.commit()

        account = projection.get_balance('1001')
        assert expired == 120
        assert account.current_balance == 0
        assert account.total_expired == 120

    def test_expiry_skips_recent_activity(self, projection):
        projection.apply_earn('1001', 50, TABLE, welcome_bonus=100, order_id='1')
        db.session.commit()

        expired = projection.apply_expiry('1001', inactive_since=datetime.utcnow() - timedelta(days=365))

        assert expired == 0


class TestQueries:
    """Tests for lookups."""

    def test_find_by_email_case_insensitive(self, projection):
        projection.apply_earn('1001', 50, TABLE, order_id='1', email='Ana@Example.com')
        db.session.commit()

        account = projection.find_by_email('ana@example.COM ')

        assert account.customer_id == '1001'
        assert projection.find_by_email('nobody@example.com') is None
        assert projection.find_by_email('') is None

    def test_leaderboard_orders_by_balance(self, projection):
        projection.apply_adjustment('a', 100, TABLE)
        projection.apply_adjustment('b', 300, TABLE)
        projection.apply_adjustment('c', 200, TABLE)
        projection.apply_adjustment('d', 10, TABLE)
        projection.apply_adjustment('d', -10, TABLE)
        db.session.commit()

        board = projection.leaderboard(limit=5)

        assert [a.customer_id for a in board] == ['b', 'c', 'a']
