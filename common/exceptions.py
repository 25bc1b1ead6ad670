"""
Teemplot Billing - Custom Exceptions
=====================================
Business-level exceptions that can be caught and converted to HTTP responses.
main.py registers a single handler that maps them via ERROR_STATUS_CODES.
"""

from fastapi import status


class BillingError(Exception):
    """Base exception for all business logic errors."""
    def __init__(self, message: str = "An unexpected billing error occurred."):
        self.message = message
        super().__init__(self.message)


class ValidationError(BillingError):
    """Raised for malformed or out-of-range input."""
    pass


class AuthorizationError(BillingError):
    """Raised when user lacks permission or touches another company's data."""
    pass


class NotFoundError(BillingError):
    """Raised when a requested resource doesn't exist."""
    pass


class ProviderError(BillingError):
    """Raised when the payment gateway rejects a request or reports a failed charge."""
    def __init__(self, message: str = "Payment provider error", provider: str = ""):
        self.provider = provider
        super().__init__(message)


class ProviderUnavailableError(ProviderError):
    """Gateway could not be reached (timeout, connection error, 5xx). Safe to retry."""
    pass


class SignatureError(BillingError):
    """Raised when a webhook payload signature does not match."""
    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


# Most specific class first: lookups walk the exception's MRO.
ERROR_STATUS_CODES = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    SignatureError: status.HTTP_400_BAD_REQUEST,
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ProviderUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    ProviderError: status.HTTP_502_BAD_GATEWAY,
}


def status_code_for(error: BillingError) -> int:
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return status.HTTP_400_BAD_REQUEST

