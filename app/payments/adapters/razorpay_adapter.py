"""
Razorpay API adapter for payment operations.

This module provides the RazorpayAdapter class which encapsulates all
Razorpay API interactions. All Razorpay calls should go through this
adapter to ensure consistent error handling, timeouts and observability.

Features:
- Configurable timeouts on all API calls
- Automatic error translation to domain exceptions
- Structured logging with timing metrics
- Constant-time signature verification for checkout and webhooks

Configuration (via settings):
- RAZORPAY_KEY_ID: Razorpay API key id
- RAZORPAY_KEY_SECRET: Razorpay API key secret (also signs checkout results)
- RAZORPAY_WEBHOOK_SECRET: Webhook signing secret
- RAZORPAY_API_TIMEOUT_SECONDS: API call timeout (default: 10)

Usage:
    from payments.adapters import RazorpayAdapter, CreateOrderParams

    # Create an order for ₹1,500
    result = RazorpayAdapter.create_order(
        CreateOrderParams(
            amount=Decimal("1500.00"),
            receipt=ReceiptGenerator.generate(payer.pk),
            notes={"gig_id": "gig-42"},
        )
    )

    # Check the signature returned by Razorpay Checkout
    if RazorpayAdapter.verify_payment_signature(order_id, payment_id, signature):
        ...
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
import uuid
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import razorpay
import requests
from django.conf import settings
from razorpay.errors import BadRequestError, GatewayError, ServerError

from payments.constants import PAYMENT_CONFIG
from payments.exceptions import (
    RazorpayAPIUnavailableError,
    RazorpayAuthenticationError,
    RazorpayBadRequestError,
    RazorpayGatewayError,
    RazorpayTimeoutError,
)


# =============================================================================
# Amount Conversion
# =============================================================================


def rupees_to_paise(amount: Decimal) -> int:
    """Convert a rupee amount to integer paise (₹15.50 -> 1550)."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def paise_to_rupees(amount_paise: int) -> Decimal:
    """Convert integer paise to a two-place rupee Decimal (1550 -> ₹15.50)."""
    return (Decimal(amount_paise) / 100).quantize(Decimal("0.01"))


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreateOrderParams:
    """
    Parameters for creating a Razorpay order.

    Attributes:
        amount: Order amount in rupees (converted to paise for the API)
        receipt: Merchant receipt id, at most 40 characters
        currency: ISO 4217 currency code (only INR is supported)
        notes: Up to 15 string key-value pairs stored on the order
    """

    amount: Decimal
    receipt: str
    currency: str = PAYMENT_CONFIG.CURRENCY
    notes: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        self.amount = Decimal(self.amount)
        if self.amount < PAYMENT_CONFIG.MIN_AMOUNT:
            raise ValueError(f"amount must be at least {PAYMENT_CONFIG.MIN_AMOUNT}")
        if self.amount != self.amount.quantize(Decimal("0.01")):
            raise ValueError("amount cannot have more than 2 decimal places")
        if not self.receipt:
            raise ValueError("receipt is required")
        if len(self.receipt) > PAYMENT_CONFIG.MAX_RECEIPT_LENGTH:
            raise ValueError(
                f"receipt cannot exceed {PAYMENT_CONFIG.MAX_RECEIPT_LENGTH} characters"
            )
        if self.currency != PAYMENT_CONFIG.CURRENCY:
            raise ValueError(f"currency must be {PAYMENT_CONFIG.CURRENCY}")
        if len(self.notes) > PAYMENT_CONFIG.MAX_NOTES:
            raise ValueError(f"notes cannot have more than {PAYMENT_CONFIG.MAX_NOTES} keys")

    @property
    def amount_paise(self) -> int:
        return rupees_to_paise(self.amount)


@dataclass
class OrderResult:
    """
    Result from Razorpay order operations.

    Attributes:
        id: Order ID (order_xxx)
        amount_paise: Order amount in paise
        currency: Currency code
        receipt: Merchant receipt id
        status: Order status (created, attempted, paid)
        attempts: Number of payment attempts on the order
        notes: Attached notes
        raw_response: Full Razorpay response dict (for debugging)
    """

    id: str
    amount_paise: int
    currency: str
    receipt: str
    status: str
    attempts: int = 0
    notes: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def amount(self) -> Decimal:
        return paise_to_rupees(self.amount_paise)


@dataclass
class PaymentResult:
    """
    Result from Razorpay payment operations.

    Attributes:
        id: Payment ID (pay_xxx)
        order_id: Order the payment belongs to
        amount_paise: Payment amount in paise
        currency: Currency code
        status: Payment status (created, authorized, captured, refunded, failed)
        method: Payment method (card, upi, netbanking, wallet)
        email: Payer email as entered at checkout
        contact: Payer phone as entered at checkout
        raw_response: Full Razorpay response dict
    """

    id: str
    order_id: str
    amount_paise: int
    currency: str
    status: str
    method: str = ""
    email: str = ""
    contact: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def amount(self) -> Decimal:
        return paise_to_rupees(self.amount_paise)

    @property
    def captured(self) -> bool:
        return self.status == "captured"


@dataclass
class RefundResult:
    """
    Result from Razorpay refund operations.

    Attributes:
        id: Refund ID (rfnd_xxx)
        payment_id: Refunded payment ID
        amount_paise: Refunded amount in paise
        currency: Currency code
        status: Refund status (pending, processed, failed)
        notes: Attached notes
        raw_response: Full Razorpay response dict
    """

    id: str
    payment_id: str
    amount_paise: int
    currency: str
    status: str
    notes: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def amount(self) -> Decimal:
        return paise_to_rupees(self.amount_paise)


# =============================================================================
# Receipt Generator
# =============================================================================


class ReceiptGenerator:
    """
    Generate merchant receipt ids for Razorpay orders.

    Format: "rcpt_{payer_id}_{random}", capped at 40 characters.

    The payer id makes receipts easy to correlate on the Razorpay dashboard;
    the random part keeps every order's receipt unique.

    Example:
        receipt = ReceiptGenerator.generate(payer_id=17)
        # Result: "rcpt_17_4f9c2a1b0d3e4c5f8a7b"
    """

    @staticmethod
    def generate(payer_id: int | str) -> str:
        receipt = f"rcpt_{payer_id}_{uuid.uuid4().hex[:20]}"
        return receipt[: PAYMENT_CONFIG.MAX_RECEIPT_LENGTH]


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys stamped on Razorpay requests.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    Razorpay echoes notes back on the refund and in webhooks, so the key
    ties a gateway object to the local request that created it.

    Example:
        key = IdempotencyKeyGenerator.generate("refund", payment.pk)
        # Result: "refund:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(operation: str, entity_id: uuid.UUID | str, attempt: int = 1) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Razorpay Adapter
# =============================================================================


class RazorpayAdapter:
    """
    Adapter for Razorpay API operations.

    All methods are class methods - no instance state is maintained.
    A fresh SDK client is built per call from settings, so key rotation
    takes effect without a restart and tests can patch _get_client.

    Features:
    - Configurable timeouts on all API calls
    - Automatic error translation to domain exceptions
    - Structured logging with timing metrics

    Usage:
        order = RazorpayAdapter.create_order(params)
        payment = RazorpayAdapter.fetch_payment("pay_xxx")
        refund = RazorpayAdapter.create_refund("pay_xxx", amount_paise=50000)
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def _get_client() -> razorpay.Client:
        """Build a Razorpay client from the configured key pair."""
        return razorpay.Client(
            auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)
        )

    @staticmethod
    def _timeout() -> int:
        return getattr(settings, "RAZORPAY_API_TIMEOUT_SECONDS", 10)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def _call(cls, log_context: dict[str, Any], func, *args, **kwargs) -> dict[str, Any]:
        """
        Run one SDK call with timing, logging and error translation.

        Args:
            log_context: Structured logging context, must include "operation"
            func: Bound SDK resource method (client.order.create, ...)

        Returns:
            The SDK response dict
        """
        logger = cls.get_logger()
        start_time = time.time()
        logger.info("Starting Razorpay operation", extra=log_context)

        try:
            response = func(*args, timeout=cls._timeout(), **kwargs)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_razorpay_error(e, log_context, duration_ms)
            raise  # Never reached, but satisfies type checker

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Razorpay operation completed",
            extra={
                **log_context,
                "razorpay_id": response.get("id"),
                "status": response.get("status"),
                "duration_ms": duration_ms,
            },
        )
        return response

    # =========================================================================
    # Orders
    # =========================================================================

    @classmethod
    def create_order(cls, params: CreateOrderParams) -> OrderResult:
        """
        Create a Razorpay order.

        The order is created with payment_capture=1, so payments are
        captured automatically once authorized.

        Raises:
            RazorpayBadRequestError: Invalid parameters
            RazorpayAuthenticationError: Bad API keys
            RazorpayAPIUnavailableError: Razorpay service unavailable
            RazorpayTimeoutError: Request timed out
        """
        client = cls._get_client()
        log_context = {
            "operation": "create_order",
            "amount_paise": params.amount_paise,
            "currency": params.currency,
            "receipt": params.receipt,
        }

        order = cls._call(
            log_context,
            client.order.create,
            data={
                "amount": params.amount_paise,
                "currency": params.currency,
                "receipt": params.receipt,
                "notes": params.notes,
                "payment_capture": 1,
            },
        )
        return cls._order_result(order)

    @classmethod
    def fetch_order(cls, order_id: str) -> OrderResult:
        """Fetch an order by id (order_xxx)."""
        client = cls._get_client()
        order = cls._call(
            {"operation": "fetch_order", "order_id": order_id},
            client.order.fetch,
            order_id,
        )
        return cls._order_result(order)

    @staticmethod
    def _order_result(order: dict[str, Any]) -> OrderResult:
        return OrderResult(
            id=order["id"],
            amount_paise=order["amount"],
            currency=order["currency"],
            receipt=order.get("receipt") or "",
            status=order["status"],
            attempts=order.get("attempts", 0),
            notes=dict(order.get("notes") or {}),
            raw_response=order,
        )

    # =========================================================================
    # Payments
    # =========================================================================

    @classmethod
    def fetch_payment(cls, payment_id: str) -> PaymentResult:
        """Fetch a payment by id (pay_xxx)."""
        client = cls._get_client()
        payment = cls._call(
            {"operation": "fetch_payment", "payment_id": payment_id},
            client.payment.fetch,
            payment_id,
        )
        return PaymentResult(
            id=payment["id"],
            order_id=payment.get("order_id") or "",
            amount_paise=payment["amount"],
            currency=payment["currency"],
            status=payment["status"],
            method=payment.get("method") or "",
            email=payment.get("email") or "",
            contact=payment.get("contact") or "",
            raw_response=payment,
        )

    # =========================================================================
    # Refunds
    # =========================================================================

    @classmethod
    def create_refund(
        cls,
        payment_id: str,
        amount_paise: int | None = None,
        notes: dict[str, str] | None = None,
    ) -> RefundResult:
        """
        Refund a captured payment.

        Args:
            payment_id: Razorpay payment ID (pay_xxx)
            amount_paise: Amount to refund (None for a full refund)
            notes: Optional notes stored on the refund

        Raises:
            RazorpayBadRequestError: Refund not possible (not captured,
                amount above the refundable balance)
        """
        client = cls._get_client()
        log_context = {
            "operation": "create_refund",
            "payment_id": payment_id,
            "amount_paise": amount_paise,
        }

        data: dict[str, Any] = {"notes": notes or {}}
        if amount_paise is not None:
            data["amount"] = amount_paise

        refund = cls._call(log_context, client.payment.refund, payment_id, data)
        return cls._refund_result(refund)

    @classmethod
    def fetch_refund(cls, refund_id: str) -> RefundResult:
        """Fetch a refund by id (rfnd_xxx)."""
        client = cls._get_client()
        refund = cls._call(
            {"operation": "fetch_refund", "refund_id": refund_id},
            client.refund.fetch,
            refund_id,
        )
        return cls._refund_result(refund)

    @staticmethod
    def _refund_result(refund: dict[str, Any]) -> RefundResult:
        return RefundResult(
            id=refund["id"],
            payment_id=refund.get("payment_id") or "",
            amount_paise=refund["amount"],
            currency=refund["currency"],
            status=refund["status"],
            notes=dict(refund.get("notes") or {}),
            raw_response=refund,
        )

    # =========================================================================
    # Signature Verification
    # =========================================================================

    @staticmethod
    def _signatures_match(secret: str, message: bytes, signature: str | None) -> bool:
        """HMAC-SHA256 hex digest of message, compared in constant time."""
        if not signature or not isinstance(signature, str):
            return False
        expected = hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected, signature)

    @classmethod
    def verify_payment_signature(
        cls,
        order_id: str,
        payment_id: str,
        signature: str | None,
    ) -> bool:
        """
        Verify the signature Razorpay Checkout returns after payment.

        Razorpay signs "{order_id}|{payment_id}" with the API key secret.

        Returns:
            True only if the signature matches exactly
        """
        secret = settings.RAZORPAY_KEY_SECRET
        if not secret:
            cls.get_logger().error("RAZORPAY_KEY_SECRET is not configured")
            return False
        if not order_id or not payment_id:
            return False

        message = f"{order_id}|{payment_id}".encode()
        return cls._signatures_match(secret, message, signature)

    @classmethod
    def verify_webhook_signature(cls, body: bytes, signature: str | None) -> bool:
        """
        Verify a webhook's X-Razorpay-Signature header.

        Razorpay signs the raw request body with the webhook secret, so the
        body must be passed exactly as received.

        Returns:
            True only if the signature matches exactly
        """
        secret = settings.RAZORPAY_WEBHOOK_SECRET
        if not secret:
            cls.get_logger().error("RAZORPAY_WEBHOOK_SECRET is not configured")
            return False

        return cls._signatures_match(secret, body, signature)

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_razorpay_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Razorpay SDK and network exceptions to domain exceptions.

        Raises:
            RazorpayAuthenticationError: API keys rejected
            RazorpayBadRequestError: Invalid request parameters
            RazorpayGatewayError: Bank or gateway rejected the operation
            RazorpayAPIUnavailableError: Server error or network failure
            RazorpayTimeoutError: Request timed out
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, BadRequestError):
            if "authentication" in str(error).lower():
                logger.critical(
                    "Razorpay authentication failed - check API keys",
                    extra=log_context,
                )
                raise RazorpayAuthenticationError(
                    "Razorpay authentication failed",
                    razorpay_code="BAD_REQUEST_ERROR",
                )

            logger.error("Invalid request to Razorpay", extra=log_context)
            raise RazorpayBadRequestError(
                str(error) or "Invalid request to Razorpay",
                razorpay_code="BAD_REQUEST_ERROR",
            )

        elif isinstance(error, GatewayError):
            logger.warning("Razorpay gateway error", extra=log_context)
            raise RazorpayGatewayError(
                str(error) or "Payment gateway rejected the request",
                razorpay_code="GATEWAY_ERROR",
            )

        elif isinstance(error, ServerError):
            logger.error("Razorpay server error", extra=log_context, exc_info=True)
            raise RazorpayAPIUnavailableError(
                "Razorpay service error. Please retry.",
                razorpay_code="SERVER_ERROR",
            )

        elif isinstance(error, requests.exceptions.Timeout):
            logger.error("Razorpay request timed out", extra=log_context)
            raise RazorpayTimeoutError(
                "Razorpay request timed out. Please retry.",
                razorpay_code="timeout",
            )

        elif isinstance(error, requests.exceptions.RequestException):
            logger.error(
                "Connection error to Razorpay",
                extra=log_context,
                exc_info=True,
            )
            raise RazorpayAPIUnavailableError(
                "Could not connect to Razorpay. Please retry.",
                razorpay_code="api_connection_error",
            )

        else:
            logger.error(
                f"Unexpected error from Razorpay: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise RazorpayAPIUnavailableError(
                f"Unexpected Razorpay error: {error}",
                razorpay_code="unknown_error",
            )
