"""
Shopify Admin API client.
Handles customer lookups and points discount codes.
"""
import httpx
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from flask import current_app

from ..utils.exceptions import ShopifyError


class ShopifyClient:
    """
    Client for Shopify Admin GraphQL API.

    Supports:
    - Customer lookup (placeholder email backfill)
    - Single-use fixed-amount discount codes for points redemption
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str = None,
        api_version: str = '2024-10',
        timeout: float = 30.0,
    ):
        self.shop_domain = shop_domain.replace('https://', '').replace('http://', '').rstrip('/')
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout
        self.graphql_url = f'https://{self.shop_domain}/admin/api/{api_version}/graphql.json'

    @classmethod
    def from_app_config(cls, shop_domain: str = None) -> 'ShopifyClient':
        """Build a client from the Flask app's Shopify settings."""
        config = current_app.config
        return cls(
            shop_domain or config['SHOPIFY_STORE_DOMAIN'],
            access_token=config.get('SHOPIFY_ACCESS_TOKEN'),
            api_version=config.get('SHOPIFY_API_VERSION', '2024-10'),
            timeout=config.get('DISCOUNT_ISSUANCE_TIMEOUT', 10.0),
        )

    def _execute_query(self, query: str, variables: Optional[Dict] = None) -> Dict[str, Any]:
        """
        Execute a GraphQL query.

        Raises:
            ShopifyError: transport failure, timeout, non-2xx status or GraphQL errors
        """
        headers = {
            'X-Shopify-Access-Token': self.access_token or '',
            'Content-Type': 'application/json'
        }

        payload = {'query': query}
        if variables:
            payload['variables'] = variables

        try:
            with httpx.Client() as client:
                response = client.post(
                    self.graphql_url,
                    headers=headers,
                    json=payload,
                    timeout=self.timeout
                )
                response.raise_for_status()
                result = response.json()
        except httpx.TimeoutException as e:
            raise ShopifyError(f'Shopify request timed out after {self.timeout}s', e)
        except httpx.HTTPStatusError as e:
            raise ShopifyError(f'Shopify returned HTTP {e.response.status_code}', e)
        except httpx.HTTPError as e:
            raise ShopifyError(f'Shopify request failed: {e}', e)

        if 'errors' in result:
            raise ShopifyError(f"GraphQL errors: {result['errors']}")

        return result.get('data') or {}

    def get_customer_by_id(self, customer_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a customer directly by their Shopify ID.

        Args:
            customer_id: Shopify customer ID (numeric or GID)

        Returns:
            Customer data or None if not found or the lookup failed
        """
        customer_id = str(customer_id)
        # Convert to GID if needed
        if not customer_id.startswith('gid://'):
            gid = f'gid://shopify/Customer/{customer_id}'
        else:
            gid = customer_id
            customer_id = gid.split('/')[-1]

        query = """
        query getCustomerById($id: ID!) {
            customer(id: $id) {
                id
                email
                firstName
                lastName
                displayName
            }
        }
        """

        try:
            result = self._execute_query(query, {'id': gid})
        except ShopifyError as e:
            current_app.logger.warning(f'[Shopify] Customer lookup failed for {customer_id}: {e.message}')
            return None

        node = result.get('customer')
        if not node:
            return None

        return {
            'id': customer_id,
            'gid': gid,
            'email': node.get('email'),
            'firstName': node.get('firstName'),
            'lastName': node.get('lastName'),
            'name': node.get('displayName') or f"{node.get('firstName') or ''} {node.get('lastName') or ''}".strip(),
        }

    def create_points_discount_code(
        self,
        customer_id: str,
        code: str,
        amount: Decimal,
        ends_at: datetime = None,
        title: str = None,
    ) -> Dict[str, Any]:
        """
        Create a single-use fixed-amount discount code for one customer.

        Args:
            customer_id: Shopify customer ID (numeric or GID)
            code: Discount code to create
            amount: Fixed amount off the order
            ends_at: Optional expiry
            title: Admin-facing title

        Returns:
            Dict with success flag and either the code details or the errors
        """
        customer_id = str(customer_id)
        if not customer_id.startswith('gid://'):
            customer_id = f'gid://shopify/Customer/{customer_id}'

        mutation = """
        mutation discountCodeBasicCreate($basicCodeDiscount: DiscountCodeBasicInput!) {
            discountCodeBasicCreate(basicCodeDiscount: $basicCodeDiscount) {
                codeDiscountNode {
                    id
                    codeDiscount {
                        ... on DiscountCodeBasic {
                            title
                            status
                            endsAt
                            codes(first: 1) {
                                nodes {
                                    code
                                }
                            }
                        }
                    }
                }
                userErrors {
                    field
                    message
                }
            }
        }
        """

        variables = {
            'basicCodeDiscount': {
                'title': title or f'Loyalty points redemption ({code})',
                'code': code,
                'startsAt': datetime.utcnow().isoformat() + 'Z',
                'usageLimit': 1,
                'appliesOncePerCustomer': True,
                'customerSelection': {
                    'customers': {
                        'add': [customer_id]
                    }
                },
                'customerGets': {
                    'value': {
                        'discountAmount': {
                            'amount': str(amount),
                            'appliesOnEachItem': False
                        }
                    },
                    'items': {
                        'all': True
                    }
                },
                'combinesWith': {
                    'productDiscounts': False,
                    'orderDiscounts': False,
                    'shippingDiscounts': True
                }
            }
        }
        if ends_at:
            variables['basicCodeDiscount']['endsAt'] = ends_at.isoformat() + 'Z'

        try:
            result = self._execute_query(mutation, variables)
        except ShopifyError as e:
            return {
                'success': False,
                'error': e.message
            }

        data = result.get('discountCodeBasicCreate') or {}
        errors = data.get('userErrors') or []
        if errors:
            return {
                'success': False,
                'errors': errors,
                'error': '; '.join(e.get('message', '') for e in errors)
            }

        node = data.get('codeDiscountNode') or {}
        discount = node.get('codeDiscount') or {}
        codes = (discount.get('codes') or {}).get('nodes') or []

        return {
            'success': True,
            'discount_id': node.get('id'),
            'title': discount.get('title'),
            'code': codes[0].get('code') if codes else code,
            'amount': str(amount),
            'ends_at': discount.get('endsAt'),
        }
