"""
Custom exceptions for loyalty points business logic.

These exceptions provide more specific error handling than generic Exception,
allowing for better error messages and appropriate HTTP status codes.
"""


class LoyaltyError(Exception):
    """Base exception for all loyalty business logic errors."""

    def __init__(self, message: str, code: str = "LOYALTY_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(LoyaltyError):
    """Resource not found."""

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with ID {identifier} not found"
        super().__init__(message, f"{resource.upper()}_NOT_FOUND")


class CustomerNotFoundError(NotFoundError):
    """Customer account not found."""

    def __init__(self, identifier=None):
        super().__init__("Customer", identifier)


class ValidationError(LoyaltyError):
    """Invalid input data."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)


class DuplicateEntryError(LoyaltyError):
    """A ledger entry with the same idempotency key already exists."""

    def __init__(self, customer_id: str, dedupe_key: str):
        self.customer_id = customer_id
        self.dedupe_key = dedupe_key
        message = f"Ledger entry {dedupe_key} already recorded for customer {customer_id}"
        super().__init__(message, "DUPLICATE_ENTRY")


class InsufficientBalanceError(LoyaltyError):
    """Not enough points for the operation."""

    def __init__(self, current: int, required: int):
        self.current = current
        self.required = required
        message = f"Insufficient points. Current: {current}, Required: {required}"
        super().__init__(message, "INSUFFICIENT_BALANCE")


class InvalidRedemptionAmountError(ValidationError):
    """Requested points are not a redeemable amount."""

    def __init__(self, message: str):
        super().__init__(message, "points")
        self.code = "INVALID_REDEMPTION_AMOUNT"


class DiscountIssuanceError(LoyaltyError):
    """The discount-issuance collaborator could not mint a code."""

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(message, "DISCOUNT_ISSUANCE_ERROR")


class IssuanceFailedError(LoyaltyError):
    """Redemption failed after reservation; the reserved points were restored."""

    def __init__(self, customer_id: str, points: int, reason: str):
        self.customer_id = customer_id
        self.points = points
        self.reason = reason
        message = (
            f"Could not issue a discount for {points} points: {reason}. "
            f"No points were deducted, please try again."
        )
        super().__init__(message, "ISSUANCE_FAILED")


class ShopifyError(LoyaltyError):
    """Error communicating with Shopify API."""

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(message, "SHOPIFY_ERROR")


class ConfigurationError(LoyaltyError):
    """Merchant or application configuration error."""

    def __init__(self, message: str):
        super().__init__(message, "CONFIGURATION_ERROR")
