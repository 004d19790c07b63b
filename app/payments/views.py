"""
Views for payments API.

This module provides REST API endpoints for Razorpay payments:
- OrderCreateView: Create a Razorpay order for Checkout
- PaymentVerifyView: Verify the Checkout result
- RefundView: Refund a paid payment
- PaymentListView / PaymentDetailView: The caller's payments
- razorpay_webhook: Webhook intake (plain Django view, signature-checked)

URL Structure:
    /api/v1/payments/                       GET
    /api/v1/payments/orders/                POST
    /api/v1/payments/verify/                POST
    /api/v1/payments/refund/                POST
    /api/v1/payments/webhooks/razorpay/     POST (no JWT, signed by Razorpay)
    /api/v1/payments/{order_id}/            GET

Design Decisions:
    - Gateway failures (RAZORPAY_* error codes) map to 502, since the
      request itself was fine
    - The webhook view stores the event and queues processing, returning
      200 immediately so Razorpay does not retry a slow delivery
"""

from __future__ import annotations

import logging

from django.conf import settings
from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.services import ServiceResult

from payments.adapters import rupees_to_paise
from payments.constants import PaymentErrorCode
from payments.models import Payment
from payments.serializers import (
    OrderCreateSerializer,
    PaymentSerializer,
    PaymentVerifySerializer,
    RefundSerializer,
)
from payments.services import PaymentService, WebhookService

logger = logging.getLogger(__name__)


def error_response(result: ServiceResult) -> Response:
    """Translate a failed ServiceResult into an error Response."""
    if result.error_code in PaymentErrorCode.NOT_FOUND_CODES:
        status_code = status.HTTP_404_NOT_FOUND
    elif result.error_code in PaymentErrorCode.FORBIDDEN_CODES:
        status_code = status.HTTP_403_FORBIDDEN
    elif (result.error_code or "").startswith("RAZORPAY_"):
        status_code = status.HTTP_502_BAD_GATEWAY
    else:
        status_code = status.HTTP_400_BAD_REQUEST

    return Response(
        {"error": result.error, "error_code": result.error_code},
        status=status_code,
    )


def checkout_order(payment: Payment) -> dict:
    """Order block for Razorpay Checkout (amount in paise)."""
    return {
        "id": payment.order_id,
        "amount": rupees_to_paise(payment.amount),
        "currency": payment.currency,
        "receipt": payment.receipt,
    }


# =============================================================================
# Orders & Verification
# =============================================================================


class OrderCreateView(APIView):
    """
    Create a Razorpay order.

    POST /api/v1/payments/orders/

    The response carries everything Razorpay Checkout needs: the public
    key id and the order block with the amount in paise.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_payment_order",
        summary="Create Razorpay order",
        request=OrderCreateSerializer,
        responses={
            201: OpenApiResponse(description="Order created"),
            400: OpenApiResponse(description="Invalid amount or payee"),
            404: OpenApiResponse(description="Payee not found"),
            502: OpenApiResponse(description="Razorpay unavailable"),
        },
        tags=["Payments"],
    )
    def post(self, request):
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = PaymentService.create_order(
            payer=request.user,
            payee_id=data["payee_id"],
            amount=data["amount"],
            gig_id=data.get("gig_id"),
            notes=data.get("notes"),
        )
        if not result.success:
            return error_response(result)

        payment = result.data
        return Response(
            {
                "key_id": settings.RAZORPAY_KEY_ID,
                "order": checkout_order(payment),
                "payment": PaymentSerializer(payment).data,
            },
            status=status.HTTP_201_CREATED,
        )


class PaymentVerifyView(APIView):
    """
    Verify a Razorpay Checkout result.

    POST /api/v1/payments/verify/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="verify_payment",
        summary="Verify payment signature",
        request=PaymentVerifySerializer,
        responses={
            200: PaymentSerializer,
            400: OpenApiResponse(description="Invalid signature"),
            403: OpenApiResponse(description="Not the payer"),
            404: OpenApiResponse(description="Payment not found"),
        },
        tags=["Payments"],
    )
    def post(self, request):
        serializer = PaymentVerifySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = PaymentService.verify_payment(
            user=request.user,
            order_id=data["razorpay_order_id"],
            payment_id=data["razorpay_payment_id"],
            signature=data["razorpay_signature"],
        )
        if not result.success:
            return error_response(result)

        return Response(PaymentSerializer(result.data).data)


class RefundView(APIView):
    """
    Refund a paid payment.

    POST /api/v1/payments/refund/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="refund_payment",
        summary="Refund payment",
        request=RefundSerializer,
        responses={
            200: PaymentSerializer,
            400: OpenApiResponse(description="Not refundable or invalid amount"),
            403: OpenApiResponse(description="Not the payer or payee"),
            404: OpenApiResponse(description="Payment not found"),
            502: OpenApiResponse(description="Razorpay rejected or unavailable"),
        },
        tags=["Payments"],
    )
    def post(self, request):
        serializer = RefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = PaymentService.refund(
            user=request.user,
            order_id=data["order_id"],
            amount=data.get("amount"),
            reason=data.get("reason", ""),
        )
        if not result.success:
            return error_response(result)

        return Response(PaymentSerializer(result.data).data)


# =============================================================================
# Queries
# =============================================================================


class PaymentListView(APIView):
    """
    Payments the caller made or received, newest first.

    GET /api/v1/payments/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_payments",
        summary="List payments",
        responses=PaymentSerializer(many=True),
        tags=["Payments"],
    )
    def get(self, request):
        payments = PaymentService.list_payments(request.user)
        return Response(PaymentSerializer(payments, many=True).data)


class PaymentDetailView(APIView):
    """
    One payment, visible to its payer and payee.

    GET /api/v1/payments/{order_id}/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_payment",
        summary="Get payment",
        responses={
            200: PaymentSerializer,
            403: OpenApiResponse(description="Not the payer or payee"),
            404: OpenApiResponse(description="Payment not found"),
        },
        tags=["Payments"],
    )
    def get(self, request, order_id: str):
        result = PaymentService.get_payment(order_id, request.user)
        if not result.success:
            return error_response(result)

        return Response(PaymentSerializer(result.data).data)


# =============================================================================
# Webhooks
# =============================================================================


@csrf_exempt
@require_POST
def razorpay_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and queue Razorpay webhook events.

    This view:
    1. Verifies X-Razorpay-Signature over the raw body
    2. Creates a WebhookEvent record (idempotent via X-Razorpay-Event-Id)
    3. Queues the event for processing via Celery
    4. Returns 200 immediately

    Returns:
        HttpResponse with status:
        - 200: Event accepted (new or duplicate)
        - 400: Missing or invalid signature, or malformed body
    """
    signature = request.headers.get("X-Razorpay-Signature", "")
    if not signature:
        logger.warning("Webhook received without X-Razorpay-Signature header")
        return HttpResponse("Missing signature", status=400)

    result = WebhookService.record_event(
        request.body,
        signature,
        event_id=request.headers.get("X-Razorpay-Event-Id"),
    )
    if not result.success:
        return HttpResponse(result.error, status=400)

    webhook_event, created = result.data
    if not created and webhook_event.is_processed:
        logger.info(
            "Webhook already processed, returning success",
            extra={"event_id": webhook_event.event_id},
        )
        return HttpResponse("Already processed", status=200)

    from payments.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))
    logger.info(
        "Webhook queued for processing",
        extra={"event_id": webhook_event.event_id, "webhook_event_id": str(webhook_event.id)},
    )
    return HttpResponse("Accepted", status=200)
