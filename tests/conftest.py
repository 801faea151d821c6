"""
Shared fixtures for the loyalty test suite.

The app fixture pushes an application context backed by an in-memory SQLite
database; tests run inside it and call services directly.
"""
import time
import threading
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from loyalty import create_app
from loyalty.extensions import db
from loyalty.services.discount_issuer import IssuedDiscount
from loyalty.services.points_engine import PointsEngine, OrderEvent
from loyalty.utils.exceptions import DiscountIssuanceError


class FakeIssuer:
    """In-memory discount issuer that records calls and can fail or stall."""

    def __init__(self):
        self.calls = []
        self.fail_with = None
        self.delay = 0
        self._lock = threading.Lock()

    def issue(self, customer_id, points, discount_amount):
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.calls.append((customer_id, points, discount_amount))
            number = len(self.calls)
        if self.fail_with is not None:
            raise self.fail_with
        return IssuedDiscount(
            code=f'TEST-{number:04d}',
            amount=Decimal(discount_amount),
            expires_at=datetime.utcnow() + timedelta(days=30),
            discount_id=f'gid://shopify/DiscountCodeNode/{number}',
        )


@pytest.fixture
def app():
    """Testing app with a fresh schema, inside an app context."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def shop_domain(app):
    return app.config['SHOPIFY_STORE_DOMAIN']


@pytest.fixture
def fake_issuer():
    return FakeIssuer()


@pytest.fixture
def customer_lookup():
    lookup = MagicMock()
    lookup.get_customer_by_id.return_value = None
    return lookup


@pytest.fixture
def engine(app, shop_domain, fake_issuer, customer_lookup):
    return PointsEngine(shop_domain, issuer=fake_issuer, customer_lookup=customer_lookup)


@pytest.fixture
def make_order():
    """Factory for order events."""
    def _make(order_id='5001', customer_id='1001', total='25.00', number=None, email=None,
              first_name=None, last_name=None):
        return OrderEvent(
            order_id=str(order_id),
            customer_id=str(customer_id) if customer_id is not None else None,
            order_total=Decimal(total),
            order_number=number or f'#{order_id}',
            email=email,
            first_name=first_name,
            last_name=last_name,
        )
    return _make


@pytest.fixture
def funded_customer(engine):
    """Customer '2002' holding 500 points from an adjustment."""
    engine.adjust('2002', 500, description='Opening balance')
    return '2002'
