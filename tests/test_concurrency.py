"""
Concurrency tests for the points engine.

Each worker thread runs in its own app context (and so its own database
session) against a file-backed SQLite database, the way request threads
share a worker process.
"""
import threading

import pytest

from loyalty import create_app
from loyalty.extensions import db
from loyalty.services.points_engine import PointsEngine, OrderEvent, Credited, Skipped
from loyalty.utils.exceptions import InsufficientBalanceError


@pytest.fixture
def threaded_app(tmp_path):
    app = create_app('testing', {
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'loyalty.db'}",
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def run_concurrently(app, count, work):
    """Run work(index) in `count` threads released together; collect results or exceptions."""
    barrier = threading.Barrier(count)
    results = [None] * count

    def worker(index):
        with app.app_context():
            barrier.wait()
            try:
                results[index] = work(index)
            except Exception as e:
                results[index] = e
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results


def _order(order_id, customer_id='1001'):
    return OrderEvent(order_id=order_id, customer_id=customer_id, order_number=f'#{order_id}')


class TestConcurrentRedemption:
    """No double-spend under parallel redemption."""

    def test_two_redemptions_against_150(self, threaded_app, fake_issuer):
        fake_issuer.delay = 0.2
        shop = threaded_app.config['SHOPIFY_STORE_DOMAIN']
        with threaded_app.app_context():
            PointsEngine(shop, issuer=fake_issuer).credit_order(_order('A'))
            assert PointsEngine(shop).get_balance('1001').current_balance == 150

        results = run_concurrently(
            threaded_app, 2,
            lambda i: PointsEngine(shop, issuer=fake_issuer).redeem('1001', 100),
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], InsufficientBalanceError)
        assert len(fake_issuer.calls) == 1

        with threaded_app.app_context():
            engine = PointsEngine(shop)
            assert engine.get_balance('1001').current_balance == 50
            assert engine.verify_ledger('1001')['consistent'] is True

    def test_parallel_redemptions_never_overdraw(self, threaded_app, fake_issuer):
        fake_issuer.delay = 0.05
        shop = threaded_app.config['SHOPIFY_STORE_DOMAIN']
        with threaded_app.app_context():
            PointsEngine(shop, issuer=fake_issuer).adjust('1001', 500)

        results = run_concurrently(
            threaded_app, 8,
            lambda i: PointsEngine(shop, issuer=fake_issuer).redeem('1001', 100),
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 5
        assert all(isinstance(r, InsufficientBalanceError) for r in results if isinstance(r, Exception))

        with threaded_app.app_context():
            account = PointsEngine(shop).get_balance('1001')
            assert account.current_balance == 0
            assert account.total_redeemed == 500


class TestConcurrentCredit:
    """Idempotent credit under parallel redelivery."""

    def test_same_order_delivered_in_parallel(self, threaded_app):
        shop = threaded_app.config['SHOPIFY_STORE_DOMAIN']
        with threaded_app.app_context():
            PointsEngine(shop).get_config()

        results = run_concurrently(
            threaded_app, 6,
            lambda i: PointsEngine(shop).credit_order(_order('A')),
        )

        assert not [r for r in results if isinstance(r, Exception)]
        assert len([r for r in results if isinstance(r, Credited)]) == 1
        assert all(r.reason == 'duplicate' for r in results if isinstance(r, Skipped))

        with threaded_app.app_context():
            assert PointsEngine(shop).get_balance('1001').current_balance == 150

    def test_different_orders_in_parallel(self, threaded_app):
        shop = threaded_app.config['SHOPIFY_STORE_DOMAIN']
        with threaded_app.app_context():
            PointsEngine(shop).get_config()

        results = run_concurrently(
            threaded_app, 5,
            lambda i: PointsEngine(shop).credit_order(_order(f'order-{i}')),
        )

        assert all(isinstance(r, Credited) for r in results)
        assert sum(r.welcome_bonus for r in results) == 100

        with threaded_app.app_context():
            engine = PointsEngine(shop)
            assert engine.get_balance('1001').current_balance == 100 + 5 * 50
            assert engine.verify_ledger('1001')['consistent'] is True

    def test_different_customers_in_parallel(self, threaded_app):
        shop = threaded_app.config['SHOPIFY_STORE_DOMAIN']
        with threaded_app.app_context():
            PointsEngine(shop).get_config()

        results = run_concurrently(
            threaded_app, 4,
            lambda i: PointsEngine(shop).credit_order(_order('A', customer_id=f'cust-{i}')),
        )

        assert all(isinstance(r, Credited) for r in results)
        with threaded_app.app_context():
            engine = PointsEngine(shop)
            assert [engine.get_balance(f'cust-{i}').current_balance for i in range(4)] == [150] * 4
