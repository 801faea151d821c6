"""
Business logic services for the loyalty points ledger.
"""
from .config_service import StoreConfigService, PointsSettings
from .ledger_store import LedgerStore
from .balance_projection import BalanceProjection
from .discount_issuer import DiscountIssuer, IssuedDiscount, ShopifyDiscountIssuer
from .shopify_client import ShopifyClient
from .points_engine import (
    PointsEngine,
    OrderEvent,
    Credited,
    Skipped,
    RedemptionStatus,
    RedemptionResult,
    ValidationResult,
    MaintenanceReport,
)

__all__ = [
    'StoreConfigService',
    'PointsSettings',
    'LedgerStore',
    'BalanceProjection',
    'DiscountIssuer',
    'IssuedDiscount',
    'ShopifyDiscountIssuer',
    'ShopifyClient',
    'PointsEngine',
    'OrderEvent',
    'Credited',
    'Skipped',
    'RedemptionStatus',
    'RedemptionResult',
    'ValidationResult',
    'MaintenanceReport',
]
