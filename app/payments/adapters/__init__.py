"""
Payment adapters for external services.

All Razorpay API calls go through RazorpayAdapter to ensure consistent
error handling, timeouts and observability.

Usage:
    from payments.adapters import CreateOrderParams, RazorpayAdapter

    result = RazorpayAdapter.create_order(
        CreateOrderParams(amount=Decimal("1500.00"), receipt="rcpt_17_ab12")
    )
"""

from payments.adapters.razorpay_adapter import (
    CreateOrderParams,
    IdempotencyKeyGenerator,
    OrderResult,
    PaymentResult,
    RazorpayAdapter,
    ReceiptGenerator,
    RefundResult,
    paise_to_rupees,
    rupees_to_paise,
)

__all__ = [
    "CreateOrderParams",
    "IdempotencyKeyGenerator",
    "OrderResult",
    "PaymentResult",
    "RazorpayAdapter",
    "ReceiptGenerator",
    "RefundResult",
    "paise_to_rupees",
    "rupees_to_paise",
]
