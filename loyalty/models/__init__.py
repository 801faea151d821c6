"""
Database models for the loyalty points ledger.
Merchant settings, customer balances and the append-only points ledger.
"""
from .store_config import StoreConfig
from .customer import CustomerAccount
from .ledger import LedgerEntry, LedgerEntryKind, WELCOME_BONUS_KEY

__all__ = [
    'StoreConfig',
    'CustomerAccount',
    'LedgerEntry',
    'LedgerEntryKind',
    'WELCOME_BONUS_KEY',
]
