"""
Tests for the orders/create webhook with realistic Shopify payloads.

Tests cover:
- Points credited for customer orders
- Redelivery acknowledged without re-crediting
- Guest checkouts acknowledged
- Malformed payloads rejected
- Engine failures answered with 500 so Shopify redelivers
"""
import json
from copy import deepcopy
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from loyalty.models import CustomerAccount, LedgerEntry
from loyalty.utils.exceptions import InsufficientBalanceError


SAMPLE_ORDER_CREATED = {
    "id": 5678901234567,
    "admin_graphql_api_id": "gid://shopify/Order/5678901234567",
    "contact_email": "customer@example.com",
    "created_at": "2026-01-20T12:00:00-05:00",
    "currency": "USD",
    "current_total_price": "99.99",
    "email": "customer@example.com",
    "financial_status": "pending",
    "name": "#1001",
    "order_number": 1001,
    "subtotal_price": "89.99",
    "total_price": "99.99",
    "customer": {
        "id": 7890123456789,
        "email": "customer@example.com",
        "first_name": "Jane",
        "last_name": "Doe",
        "admin_graphql_api_id": "gid://shopify/Customer/7890123456789",
    },
    "line_items": [
        {"id": 1, "title": "Test Product", "price": "89.99", "quantity": 1},
    ],
}


def post_order(client, payload, shop='test-shop.myshopify.com'):
    headers = {'X-Shopify-Topic': 'orders/create'}
    if shop:
        headers['X-Shopify-Shop-Domain'] = shop
    return client.post(
        '/webhook/orders/create',
        data=json.dumps(payload),
        content_type='application/json',
        headers=headers,
    )


class TestOrderCreatedWebhook:
    """Tests for POST /webhook/orders/create."""

    def test_credits_points(self, client):
        response = post_order(client, SAMPLE_ORDER_CREATED)

        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'credited'
        assert data['order_id'] == '5678901234567'
        assert data['points_awarded'] == 50
        assert data['welcome_bonus'] == 100
        assert data['new_balance'] == 150

        account = CustomerAccount.query.filter_by(customer_id='7890123456789').one()
        assert account.email == 'customer@example.com'
        assert account.first_name == 'Jane'
        assert account.shop_domain == 'test-shop.myshopify.com'

    def test_redelivery_acknowledged(self, client):
        post_order(client, SAMPLE_ORDER_CREATED)

        response = post_order(client, SAMPLE_ORDER_CREATED)

        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'skipped'
        assert data['reason'] == 'duplicate'
        assert CustomerAccount.query.one().current_balance == 150

    def test_guest_checkout_acknowledged(self, client):
        payload = deepcopy(SAMPLE_ORDER_CREATED)
        payload['customer'] = None

        response = post_order(client, payload)

        assert response.status_code == 200
        assert response.get_json()['reason'] == 'guest'
        assert LedgerEntry.query.count() == 0

    def test_shop_header_scopes_credit(self, client):
        post_order(client, SAMPLE_ORDER_CREATED, shop='other-shop.myshopify.com')

        account = CustomerAccount.query.one()
        assert account.shop_domain == 'other-shop.myshopify.com'

    def test_missing_shop_header_uses_default_store(self, client, shop_domain):
        post_order(client, SAMPLE_ORDER_CREATED, shop=None)

        assert CustomerAccount.query.one().shop_domain == shop_domain

    @pytest.mark.parametrize('payload', [
        {},
        {'customer': {'id': 1}},
        [1, 2, 3],
        {**SAMPLE_ORDER_CREATED, 'total_price': 'NaN'},
        {**SAMPLE_ORDER_CREATED, 'total_price': 'Infinity'},
        {**SAMPLE_ORDER_CREATED, 'customer': [7890123456789]},
    ])
    def test_malformed_payload_rejected(self, client, payload):
        response = post_order(client, payload)

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'VALIDATION_ERROR'

    @pytest.mark.parametrize('total', ['NaN', 'Infinity', '-Infinity'])
    def test_non_finite_total_rejected_in_proportional_mode(self, client, engine, total):
        engine.update_config({'points': {'use_static_points': False, 'points_per_dollar': 1}})

        response = post_order(client, {**SAMPLE_ORDER_CREATED, 'total_price': total})

        assert response.status_code == 400
        assert LedgerEntry.query.count() == 0

    def test_non_json_body_rejected(self, client):
        response = client.post('/webhook/orders/create', data='not json', content_type='text/plain')

        assert response.status_code == 400

    def test_engine_failure_returns_500(self, client):
        with patch('loyalty.webhooks.order_lifecycle.PointsEngine.credit_order',
                   side_effect=OperationalError('INSERT', {}, Exception('db down'))):
            response = post_order(client, SAMPLE_ORDER_CREATED)

        assert response.status_code == 500
        assert response.get_json()['error']['code'] == 'INTERNAL_ERROR'

        retry = post_order(client, SAMPLE_ORDER_CREATED)
        assert retry.get_json()['status'] == 'credited'


class TestAppShell:
    """Tests for app-level routes and error handling."""

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'healthy'

    def test_unknown_route_uses_error_envelope(self, client):
        response = client.get('/nope')

        assert response.status_code == 404
        assert response.get_json()['error']['code'] == 'NOT_FOUND'

    def test_loyalty_error_mapped_to_status(self, app):
        def overdraw():
            raise InsufficientBalanceError(100, 500)

        app.add_url_rule('/overdraw', 'overdraw', overdraw)
        response = app.test_client().get('/overdraw')

        assert response.status_code == 422
        error = response.get_json()['error']
        assert error['code'] == 'INSUFFICIENT_BALANCE'
        assert 'Current: 100, Required: 500' in error['message']
