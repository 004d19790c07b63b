"""
Payment models.

Models:
    Payment: Local record of one Razorpay order between a payer and a payee
    WebhookEvent: Every Razorpay webhook received, for idempotent processing

Design Decisions:
    - The Razorpay order id is the natural key of a payment and is unique.
    - Amounts are stored in rupees as two-place decimals; the adapter
      converts to paise at the API boundary.
    - Status is a protected django-fsm field; it only changes through the
      @transition methods. Checkout verification and webhooks apply the same
      transitions, so whichever arrives second is a no-op.
    - A refund holds the payment in REFUND_PENDING while Razorpay is called,
      so a second refund request is rejected before it reaches the gateway.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class PaymentStatus(models.TextChoices):
    """
    Status of a Razorpay payment.

    State Flow:
        CREATED -> PAID -> REFUND_PENDING -> REFUNDED
        CREATED -> FAILED -> PAID (a later attempt on the same order succeeds)
        REFUND_PENDING -> PAID (Razorpay rejected the refund)
    """

    CREATED = "created", "Created"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"
    REFUND_PENDING = "refund_pending", "Refund Pending"
    REFUNDED = "refunded", "Refunded"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING -> PROCESSING -> PROCESSED
        PENDING -> PROCESSING -> FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


class Payment(UUIDPrimaryKeyMixin, BaseModel):
    """
    A Razorpay order placed by a payer for a payee's gig.

    Fields:
        order_id: Razorpay order id (order_xxx), unique
        payment_id: Razorpay payment id (pay_xxx), set once paid
        payer: User paying (the client)
        payee: User being paid (the freelancer)
        gig_id: External gig reference, also stamped on the chat
        amount: Order amount in rupees
        currency: Always INR
        receipt: Merchant receipt id sent with the order
        status: created, paid, failed, refund_pending or refunded (FSM managed)
        notes: Notes sent to Razorpay with the order
        refund_id: Razorpay refund id (rfnd_xxx), set once refunded
        refunded_amount: Amount refunded in rupees
    """

    # ==========================================================================
    # Razorpay Identifiers
    # ==========================================================================

    order_id = models.CharField(
        max_length=64,
        unique=True,
        help_text="Razorpay order ID (order_xxx)",
    )
    payment_id = models.CharField(
        max_length=64,
        blank=True,
        default="",
        db_index=True,
        help_text="Razorpay payment ID (pay_xxx), set when paid",
    )
    receipt = models.CharField(
        max_length=40,
        help_text="Merchant receipt id sent with the order",
    )

    # ==========================================================================
    # Parties
    # ==========================================================================

    payer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payments_made",
        help_text="User paying for the gig",
    )
    payee = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payments_received",
        help_text="User receiving the payment",
    )
    gig_id = models.CharField(
        max_length=64,
        blank=True,
        default="",
        db_index=True,
        help_text="External gig reference",
    )

    # ==========================================================================
    # Amount & Status
    # ==========================================================================

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Order amount in rupees",
    )
    currency = models.CharField(
        max_length=3,
        default="INR",
        help_text="ISO 4217 currency code",
    )
    status = FSMField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.CREATED,
        db_index=True,
        protected=True,  # Prevent direct assignment outside transitions
        help_text="Current payment status (managed by FSM)",
    )
    notes = models.JSONField(
        default=dict,
        blank=True,
        help_text="Notes sent to Razorpay with the order",
    )

    # ==========================================================================
    # Outcome
    # ==========================================================================

    paid_at = models.DateTimeField(null=True, blank=True)
    refund_id = models.CharField(
        max_length=64,
        blank=True,
        default="",
        help_text="Razorpay refund ID (rfnd_xxx)",
    )
    refunded_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Amount refunded in rupees",
    )
    refunded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment"
        verbose_name_plural = "Payments"
        indexes = [
            models.Index(fields=["payer", "created_at"], name="payment_payer_created_idx"),
            models.Index(fields=["payee", "created_at"], name="payment_payee_created_idx"),
        ]

    def __str__(self) -> str:
        return f"Payment({self.order_id}, {self.status})"

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def involves(self, user) -> bool:
        """Whether the user is the payer or the payee."""
        return user.pk in (self.payer_id, self.payee_id)

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================
    # None of these save; the caller saves after the transition.

    @transition(
        field=status,
        source=[PaymentStatus.CREATED, PaymentStatus.FAILED],
        target=PaymentStatus.PAID,
    )
    def mark_paid(self, payment_id: str) -> None:
        """
        Record a captured payment.

        Transition: CREATED/FAILED -> PAID
        """
        self.payment_id = payment_id
        self.paid_at = timezone.now()

    @transition(
        field=status,
        source=PaymentStatus.CREATED,
        target=PaymentStatus.FAILED,
    )
    def mark_failed(self) -> None:
        """Transition: CREATED -> FAILED"""
        pass

    @transition(
        field=status,
        source=PaymentStatus.PAID,
        target=PaymentStatus.REFUND_PENDING,
    )
    def begin_refund(self) -> None:
        """
        Reserve the payment for a refund before Razorpay is called.

        Transition: PAID -> REFUND_PENDING
        """
        pass

    @transition(
        field=status,
        source=PaymentStatus.REFUND_PENDING,
        target=PaymentStatus.PAID,
    )
    def cancel_refund(self) -> None:
        """Transition: REFUND_PENDING -> PAID"""
        pass

    @transition(
        field=status,
        source=PaymentStatus.REFUND_PENDING,
        target=PaymentStatus.REFUNDED,
    )
    def mark_refunded(self, refund_id: str, amount) -> None:
        """
        Record the refund Razorpay created.

        Transition: REFUND_PENDING -> REFUNDED
        """
        self.refund_id = refund_id
        self.refunded_amount = amount
        self.refunded_at = timezone.now()


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks Razorpay webhook events for idempotent processing.

    Processing Flow:
        1. Webhook arrives, verify X-Razorpay-Signature over the raw body
        2. Insert/get WebhookEvent with event_id
        3. If exists and PROCESSED -> return 200 (duplicate)
        4. Queue processing; the task marks PROCESSED or FAILED

    Fields:
        event_id: X-Razorpay-Event-Id header, unique
        event_type: Razorpay event name (payment.captured, ...)
        payload: Full JSON body
        status: Processing status
        processed_at: When the event was successfully processed
        error_message: Error details if processing failed
        retry_count: Number of processing attempts
    """

    MAX_RETRIES = 5

    event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Razorpay event ID - unique constraint for idempotency",
    )
    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Razorpay event type (e.g., 'payment.captured')",
    )
    payload = models.JSONField(help_text="Full webhook payload from Razorpay")
    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
    )
    processed_at = models.DateTimeField(null=True, blank=True)
    error_message = models.TextField(null=True, blank=True)
    retry_count = models.PositiveSmallIntegerField(default=0)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="webhook_status_created_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def can_retry(self) -> bool:
        return self.status == WebhookEventStatus.FAILED and self.retry_count < self.MAX_RETRIES

    def mark_processing(self) -> None:
        """Note: Does not save - caller must save after calling."""
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        """Note: Does not save - caller must save after calling."""
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        """Note: Does not save - caller must save after calling."""
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message

    def get_payment_entity(self) -> dict:
        """
        The payment entity from payload.payment.entity.

        Returns:
            The entity dict, or {} if the payload has none
        """
        try:
            return self.payload.get("payload", {}).get("payment", {}).get("entity") or {}
        except (AttributeError, TypeError):
            return {}
