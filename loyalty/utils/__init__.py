"""
Utility modules for the loyalty service.
"""
from .logging_config import setup_logging, get_logger
from .errors import (
    ErrorCode,
    error_response,
    loyalty_error_response,
    bad_request
)
from .exceptions import (
    LoyaltyError,
    NotFoundError,
    CustomerNotFoundError,
    ValidationError,
    DuplicateEntryError,
    InsufficientBalanceError,
    InvalidRedemptionAmountError,
    DiscountIssuanceError,
    IssuanceFailedError,
    ShopifyError,
    ConfigurationError
)
from .locks import CustomerLockRegistry, customer_locks
