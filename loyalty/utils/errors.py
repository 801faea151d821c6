"""
Standardized error response utilities for the loyalty API.

Provides consistent error response format across all endpoints:
{
    "error": {
        "message": "User-friendly error message",
        "code": "ERROR_CODE"
    }
}

Usage:
    from loyalty.utils.errors import error_response, ErrorCode

    return error_response("Customer not found", ErrorCode.NOT_FOUND, 404)
"""
import logging
from enum import Enum
from flask import jsonify
from typing import Optional

from .exceptions import (
    LoyaltyError,
    NotFoundError,
    ValidationError,
    DuplicateEntryError,
    InsufficientBalanceError,
    IssuanceFailedError,
    DiscountIssuanceError,
    ShopifyError,
    ConfigurationError,
)

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Validation Errors (400)
    INVALID_REQUEST = "INVALID_REQUEST"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_REDEMPTION_AMOUNT = "INVALID_REDEMPTION_AMOUNT"

    # Not Found (404)
    NOT_FOUND = "NOT_FOUND"
    CUSTOMER_NOT_FOUND = "CUSTOMER_NOT_FOUND"

    # Conflict (409)
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"

    # Business Logic Errors (422)
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"

    # External Service Errors (502)
    SHOPIFY_ERROR = "SHOPIFY_ERROR"
    ISSUANCE_FAILED = "ISSUANCE_FAILED"

    # Server Errors (500)
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Most specific class first
STATUS_BY_EXCEPTION = (
    (NotFoundError, 404),
    (DuplicateEntryError, 409),
    (InsufficientBalanceError, 422),
    (ValidationError, 400),
    (IssuanceFailedError, 502),
    (DiscountIssuanceError, 502),
    (ShopifyError, 502),
    (ConfigurationError, 500),
)


def error_response(
    message: str,
    code=ErrorCode.INTERNAL_ERROR,
    status_code: int = 500,
    log_error: bool = True,
    details: Optional[dict] = None
) -> tuple:
    """
    Create a standardized error response.

    Args:
        message: User-friendly error message
        code: Error code from ErrorCode enum (or a raw code string)
        status_code: HTTP status code
        log_error: Whether to log the error
        details: Optional additional details (only logged, not returned to user)

    Returns:
        Tuple of (response, status_code) for Flask
    """
    if log_error and status_code >= 500:
        logger.error(f"API Error [{code}]: {message}", extra={"details": details})
    elif log_error and status_code >= 400:
        logger.warning(f"API Error [{code}]: {message}", extra={"details": details})

    response = {
        "error": {
            "message": message,
            "code": code.value if isinstance(code, ErrorCode) else code
        }
    }

    return jsonify(response), status_code


def status_for_exception(error: LoyaltyError) -> int:
    """Map a business exception to its HTTP status code."""
    for exc_class, status in STATUS_BY_EXCEPTION:
        if isinstance(error, exc_class):
            return status
    return 400


def loyalty_error_response(error: LoyaltyError) -> tuple:
    """Render a LoyaltyError as a standardized error response."""
    return error_response(error.message, error.code, status_for_exception(error))


def bad_request(message: str, code: ErrorCode = ErrorCode.INVALID_REQUEST) -> tuple:
    """400 Bad Request error."""
    return error_response(message, code, 400, log_error=False)

