"""
Discount issuance collaborator.

The engine only needs something with issue(customer_id, points, discount_amount)
that returns an IssuedDiscount or raises. ShopifyDiscountIssuer is the
production implementation; tests pass their own.
"""
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

from flask import current_app

from ..utils.exceptions import DiscountIssuanceError
from .shopify_client import ShopifyClient


@dataclass(frozen=True)
class IssuedDiscount:
    code: str
    amount: Decimal
    expires_at: Optional[datetime] = None
    discount_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'code': self.code,
            'amount': float(self.amount),
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'discount_id': self.discount_id,
        }


class DiscountIssuer(Protocol):
    """
    What PointsEngine.redeem calls while the customer's points are reserved.

    The engine does not interrupt issue(); implementations must bound their
    own I/O (ShopifyDiscountIssuer uses DISCOUNT_ISSUANCE_TIMEOUT as its httpx
    timeout) and raise once it elapses. An issuer that can block forever keeps
    the reservation in place for as long as it blocks.
    """

    def issue(self, customer_id: str, points: int, discount_amount: Decimal) -> IssuedDiscount:
        """Mint a discount worth discount_amount; raise DiscountIssuanceError on failure."""
        ...


def generate_code(points: int) -> str:
    return f'POINTS{points}-{secrets.token_hex(4).upper()}'


class ShopifyDiscountIssuer:
    """
    Mints single-use, customer-restricted fixed-amount codes via the Admin API.

    The client's timeout bounds the call; a timeout surfaces as
    DiscountIssuanceError like any other failure.
    """

    def __init__(self, client: ShopifyClient = None, ttl_days: int = None):
        self.client = client or ShopifyClient.from_app_config()
        if ttl_days is None:
            ttl_days = current_app.config.get('DISCOUNT_CODE_TTL_DAYS', 30)
        self.ttl_days = ttl_days

    def issue(self, customer_id: str, points: int, discount_amount: Decimal) -> IssuedDiscount:
        code = generate_code(points)
        expires_at = datetime.utcnow() + timedelta(days=self.ttl_days) if self.ttl_days else None

        result = self.client.create_points_discount_code(
            customer_id=customer_id,
            code=code,
            amount=Decimal(discount_amount),
            ends_at=expires_at,
            title=f'{points} loyalty points redemption',
        )
        if not result.get('success'):
            reason = result.get('error') or 'unknown error'
            current_app.logger.error(f'[Discounts] Shopify rejected code for customer {customer_id}: {reason}')
            raise DiscountIssuanceError(f'Discount code creation failed: {reason}')

        return IssuedDiscount(
            code=result.get('code') or code,
            amount=Decimal(discount_amount),
            expires_at=expires_at,
            discount_id=result.get('discount_id'),
        )
