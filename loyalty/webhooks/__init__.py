"""
Webhook handlers for the loyalty service.
Processes Shopify order webhooks into points credits.
"""
from flask import request, current_app


def get_shop_domain_from_headers() -> str:
    """
    Shop the webhook was sent for.

    Falls back to the configured default store when the header is absent.
    """
    shop_domain = request.headers.get('X-Shopify-Shop-Domain', '').strip()
    return shop_domain or current_app.config['SHOPIFY_STORE_DOMAIN']


from .order_lifecycle import order_lifecycle_bp

__all__ = [
    'order_lifecycle_bp',
    'get_shop_domain_from_headers',
]
