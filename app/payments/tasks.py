"""
Celery tasks for payment processing.

This module provides async tasks for:
- Processing Razorpay webhook events
- Retrying failed webhook events

Usage:
    from payments.tasks import process_webhook_event

    # Queue a webhook for async processing
    process_webhook_event.delay(str(webhook_event.id))
"""

from __future__ import annotations

import logging
from uuid import UUID

from celery import shared_task
from django.db import transaction

from payments.models import WebhookEvent, WebhookEventStatus

logger = logging.getLogger(__name__)

# Maximum retry attempts for webhook processing
MAX_WEBHOOK_RETRIES = WebhookEvent.MAX_RETRIES


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_WEBHOOK_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a Razorpay webhook event asynchronously.

    This task:
    1. Loads the WebhookEvent by ID
    2. Checks if already processed (idempotency)
    3. Marks as processing
    4. Applies the event to its Payment
    5. Marks as processed or failed

    Args:
        webhook_event_id: UUID of the WebhookEvent to process

    Returns:
        Dict with processing result status

    Raises:
        Exception: Re-raised to trigger Celery retry mechanism
    """
    from payments.services import WebhookService

    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.is_processed:
        logger.info(
            "WebhookEvent already processed, skipping",
            extra={"event_id": webhook_event.event_id},
        )
        return {"status": "already_processed", "webhook_event_id": str(webhook_event_id)}

    webhook_event.mark_processing()
    webhook_event.save()

    try:
        with transaction.atomic():
            result = WebhookService.dispatch(webhook_event)
    except Exception as e:
        error_msg = f"{type(e).__name__}: {e}"
        webhook_event.mark_failed(error_msg)
        webhook_event.save()
        logger.exception(
            "Webhook processing failed with exception",
            extra={"event_id": webhook_event.event_id, "error": error_msg},
        )
        raise

    if not result.success:
        webhook_event.mark_failed(result.error or "Handler returned failure")
        webhook_event.save()
        logger.warning(
            f"Webhook handler failed: {result.error}",
            extra={"event_id": webhook_event.event_id, "error_code": result.error_code},
        )
        return {
            "status": "handler_failed",
            "webhook_event_id": str(webhook_event_id),
            "error": result.error,
        }

    webhook_event.mark_processed()
    webhook_event.save()
    logger.info(
        f"Webhook {webhook_event.event_type} processed: {result.data}",
        extra={"event_id": webhook_event.event_id},
    )
    return {
        "status": "processed",
        "outcome": result.data,
        "webhook_event_id": str(webhook_event_id),
    }


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Periodic task to retry failed webhook events.

    Finds failed webhooks that haven't exceeded max retries and
    re-queues them for processing. Scheduled by celery beat.

    Returns:
        Dict with count of webhooks queued for retry
    """
    failed_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=MAX_WEBHOOK_RETRIES,
    ).order_by("created_at")[:100]

    queued_count = 0
    for webhook in failed_webhooks:
        process_webhook_event.delay(str(webhook.id))
        queued_count += 1

    logger.info(
        f"Queued {queued_count} failed webhooks for retry",
        extra={"queued_count": queued_count},
    )
    return {"queued_count": queued_count}
