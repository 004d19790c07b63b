"""
Payments app for Razorpay integration.

This app handles:
- Razorpay order creation for gig payments
- Checkout signature verification
- Refunds
- Webhook event handling

A verified payment or a refund posts a system message into the chat
between payer and payee.

Related apps:
    - authentication: Payer and payee users
    - chat: System messages announcing payments

Usage:
    from payments.services import PaymentService

    result = PaymentService.verify_payment(user, order_id, payment_id, signature)
"""
