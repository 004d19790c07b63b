"""
Serializers for payments API.

Serializer Hierarchy:
    PaymentSerializer: Payment as seen by its payer or payee
    OrderCreateSerializer: Create-order input
    PaymentVerifySerializer: Razorpay Checkout result
    RefundSerializer: Refund input

Design Decisions:
    - Amounts are rupees with two decimal places on the API; paise only
      appear in the "order" block handed to Razorpay Checkout
    - Status transitions and ownership checks live in PaymentService
"""

from __future__ import annotations

from rest_framework import serializers

from authentication.serializers import UserSerializer
from payments.constants import PAYMENT_CONFIG
from payments.models import Payment


class PaymentSerializer(serializers.ModelSerializer):
    """Complete payment representation."""

    payer = UserSerializer(read_only=True)
    payee = UserSerializer(read_only=True)

    class Meta:
        model = Payment
        fields = [
            "id",
            "order_id",
            "payment_id",
            "receipt",
            "payer",
            "payee",
            "gig_id",
            "amount",
            "currency",
            "status",
            "notes",
            "paid_at",
            "refund_id",
            "refunded_amount",
            "refunded_at",
            "created_at",
        ]
        read_only_fields = fields


class OrderCreateSerializer(serializers.Serializer):
    """Input for creating a Razorpay order."""

    payee_id = serializers.IntegerField(min_value=1)
    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=PAYMENT_CONFIG.MIN_AMOUNT,
        max_value=PAYMENT_CONFIG.MAX_AMOUNT,
    )
    gig_id = serializers.CharField(max_length=64, required=False, allow_blank=True)
    notes = serializers.DictField(
        child=serializers.CharField(max_length=256),
        required=False,
    )

    def validate_notes(self, value: dict) -> dict:
        # payer_id, payee_id and gig_id are added by the service
        if len(value) > PAYMENT_CONFIG.MAX_NOTES - 3:
            raise serializers.ValidationError(
                f"At most {PAYMENT_CONFIG.MAX_NOTES - 3} notes are allowed."
            )
        return value


class PaymentVerifySerializer(serializers.Serializer):
    """
    Result returned by Razorpay Checkout's success handler.

    Field names match the Checkout handler response so the frontend can
    post it unchanged.
    """

    razorpay_order_id = serializers.CharField(max_length=64)
    razorpay_payment_id = serializers.CharField(max_length=64)
    razorpay_signature = serializers.CharField(max_length=128)


class RefundSerializer(serializers.Serializer):
    """Input for refunding a paid payment. Omit amount for a full refund."""

    order_id = serializers.CharField(max_length=64)
    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=PAYMENT_CONFIG.MIN_AMOUNT,
        required=False,
    )
    reason = serializers.CharField(max_length=256, required=False, allow_blank=True)
