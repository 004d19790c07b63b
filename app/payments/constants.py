"""
Constants and configuration for the payments app.

This module centralizes:
- Razorpay order limits (currency, minimum amount, receipt and notes size)
- Webhook event types the app reacts to
- Error codes returned by payment services

Import example:
    from payments.constants import PAYMENT_CONFIG, PaymentErrorCode
"""

from decimal import Decimal
from typing import Final


# =============================================================================
# Payment Configuration
# =============================================================================


class PAYMENT_CONFIG:
    """Configuration for Razorpay orders."""

    # Razorpay orders for this marketplace are rupee-only
    CURRENCY: Final[str] = "INR"

    # Razorpay minimum order amount is ₹1.00 (100 paise)
    MIN_AMOUNT: Final[Decimal] = Decimal("1.00")
    MAX_AMOUNT: Final[Decimal] = Decimal("500000.00")

    # Razorpay API limits
    MAX_RECEIPT_LENGTH: Final[int] = 40
    MAX_NOTES: Final[int] = 15


# =============================================================================
# Webhook Events
# =============================================================================


class WebhookEventType:
    """Razorpay webhook events handled by the app; others are recorded and ignored."""

    PAYMENT_CAPTURED: Final[str] = "payment.captured"
    PAYMENT_FAILED: Final[str] = "payment.failed"

    HANDLED: Final[tuple] = (PAYMENT_CAPTURED, PAYMENT_FAILED)


# =============================================================================
# Error Codes
# =============================================================================


class PaymentErrorCode:
    """Error codes returned by PaymentService."""

    PAYMENT_NOT_FOUND: Final[str] = "PAYMENT_NOT_FOUND"
    USER_NOT_FOUND: Final[str] = "USER_NOT_FOUND"
    SAME_USER: Final[str] = "SAME_USER"
    NOT_PAYER: Final[str] = "NOT_PAYER"
    NOT_PARTICIPANT: Final[str] = "NOT_PARTICIPANT"
    INVALID_SIGNATURE: Final[str] = "INVALID_SIGNATURE"
    INVALID_STATUS: Final[str] = "INVALID_STATUS"
    INVALID_AMOUNT: Final[str] = "INVALID_AMOUNT"
    PAYMENT_MISMATCH: Final[str] = "PAYMENT_MISMATCH"

    NOT_FOUND_CODES: Final[frozenset] = frozenset({PAYMENT_NOT_FOUND, USER_NOT_FOUND})
    FORBIDDEN_CODES: Final[frozenset] = frozenset({NOT_PAYER, NOT_PARTICIPANT})
