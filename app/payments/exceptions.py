"""
Payment-specific exceptions for payment operations.

This module provides a hierarchy of exceptions for payment operations,
covering payment domain errors and Razorpay gateway errors.

Exception Hierarchy:
    PaymentError (base for payment domain)
    └── PaymentProcessingError - Payment processing failures
        └── RazorpayError - Base for all Razorpay errors
            ├── RazorpayBadRequestError - Invalid request params (permanent)
            ├── RazorpayAuthenticationError - Bad API keys (permanent)
            ├── RazorpayGatewayError - Bank/gateway declined (permanent)
            ├── RazorpayAPIUnavailableError - API unavailable (transient, retry)
            └── RazorpayTimeoutError - Request timeout (transient, retry)

Usage:
    from payments.exceptions import RazorpayError

    try:
        RazorpayAdapter.create_order(params)
    except RazorpayError as e:
        if e.is_retryable:
            schedule_retry()
        else:
            return ServiceResult.from_exception(e)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import BaseApplicationError

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for all payment operations.

    All payment-specific exceptions inherit from this class,
    which itself inherits from BaseApplicationError for
    consistent API error responses.
    """

    default_error_code: str = "PAYMENT_ERROR"


class PaymentProcessingError(PaymentError):
    """Raised when the payment gateway could not complete an operation."""

    default_error_code: str = "PAYMENT_PROCESSING_ERROR"


# =============================================================================
# Razorpay-Specific Exceptions
# =============================================================================


class RazorpayError(PaymentProcessingError):
    """
    Base exception for all Razorpay-related errors.

    Provides common attributes for Razorpay error handling:
    - razorpay_code: Razorpay's error code (BAD_REQUEST_ERROR, GATEWAY_ERROR, ...)
    - is_retryable: Whether the operation can be retried

    Use is_retryable to determine retry behavior:
    - True: Transient error, safe to retry with backoff
    - False: Permanent error, do not retry

    Example:
        try:
            RazorpayAdapter.fetch_payment(payment_id)
        except RazorpayError as e:
            if e.is_retryable:
                raise self.retry(exc=e)
            raise
    """

    default_error_code: str = "RAZORPAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        razorpay_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if razorpay_code:
            details["razorpay_code"] = razorpay_code
        super().__init__(message, error_code=error_code, details=details)
        self.razorpay_code = razorpay_code


# -----------------------------------------------------------------------------
# Permanent Errors (do not retry)
# -----------------------------------------------------------------------------


class RazorpayBadRequestError(RazorpayError):
    """
    Invalid request parameters sent to Razorpay.

    Possible causes:
    - Unknown order, payment or refund id
    - Amount below the minimum or refund above the captured amount
    - Receipt longer than 40 characters

    This usually indicates a bug in our code or stale client data.
    """

    default_error_code: str = "RAZORPAY_BAD_REQUEST"
    is_retryable: bool = False


class RazorpayAuthenticationError(RazorpayError):
    """
    Razorpay rejected the API key pair.

    Operational issue: RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET are wrong
    or belong to a different mode (test vs live).
    """

    default_error_code: str = "RAZORPAY_AUTHENTICATION_FAILED"
    is_retryable: bool = False


class RazorpayGatewayError(RazorpayError):
    """
    The bank or payment gateway behind Razorpay rejected the operation.

    User action is required before a retry can succeed.
    """

    default_error_code: str = "RAZORPAY_GATEWAY_ERROR"
    is_retryable: bool = False


# -----------------------------------------------------------------------------
# Transient Errors (safe to retry with backoff)
# -----------------------------------------------------------------------------


class RazorpayAPIUnavailableError(RazorpayError):
    """
    Razorpay API is temporarily unavailable.

    This covers:
    - Network connectivity issues
    - Razorpay server errors (5xx)

    Retry with exponential backoff.
    """

    default_error_code: str = "RAZORPAY_UNAVAILABLE"
    is_retryable: bool = True


class RazorpayTimeoutError(RazorpayError):
    """
    Razorpay API call timed out.

    The request was sent but no response arrived within
    RAZORPAY_API_TIMEOUT_SECONDS.

    IMPORTANT: The operation may have succeeded on Razorpay's side. Fetch
    the order or refund before creating a new one.
    """

    default_error_code: str = "RAZORPAY_TIMEOUT"
    is_retryable: bool = True


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Payment domain
    "PaymentError",
    "PaymentProcessingError",
    # Razorpay-specific
    "RazorpayError",
    "RazorpayBadRequestError",
    "RazorpayAuthenticationError",
    "RazorpayGatewayError",
    "RazorpayAPIUnavailableError",
    "RazorpayTimeoutError",
]
