"""
Tests for payment Celery tasks.

Tests cover:
- process_webhook_event: status bookkeeping, idempotency, failures
- retry_failed_webhooks: re-queueing failed events under the retry limit

Tasks are called directly (not via .delay) so exceptions surface as-is
instead of going through Celery's eager autoretry.
"""

import uuid

import pytest

from payments.constants import WebhookEventType
from payments.models import PaymentStatus, WebhookEvent, WebhookEventStatus
from payments.tasks import process_webhook_event, retry_failed_webhooks
from payments.tests.factories import WebhookEventFactory, fresh_payment, payment_payload


# =============================================================================
# process_webhook_event
# =============================================================================


class TestProcessWebhookEvent:
    """Tests for process_webhook_event."""

    def captured_event(self, payment, payment_id="pay_Task123"):
        return WebhookEventFactory(
            event_type=WebhookEventType.PAYMENT_CAPTURED,
            payload=payment_payload(
                WebhookEventType.PAYMENT_CAPTURED, payment.order_id, payment_id
            ),
        )

    def test_processes_captured_event(self, payment):
        event = self.captured_event(payment)

        result = process_webhook_event(str(event.id))

        assert result["status"] == "processed"
        assert result["outcome"] == "paid"
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.PROCESSED
        assert event.processed_at is not None
        assert event.retry_count == 1
        payment = fresh_payment(payment)
        assert payment.status == PaymentStatus.PAID

    def test_already_processed_is_skipped(self, payment):
        event = self.captured_event(payment)
        process_webhook_event(str(event.id))

        result = process_webhook_event(str(event.id))

        assert result["status"] == "already_processed"
        event.refresh_from_db()
        assert event.retry_count == 1

    def test_missing_event(self, db):
        result = process_webhook_event(str(uuid.uuid4()))

        assert result["status"] == "not_found"

    def test_handler_failure_marks_failed(self, db):
        event = WebhookEventFactory(payload={"event": "payment.captured", "payload": {}})

        result = process_webhook_event(str(event.id))

        assert result["status"] == "handler_failed"
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.FAILED
        assert "no payment entity" in event.error_message

    def test_exception_marks_failed_and_reraises(self, payment, mocker):
        """
        Unexpected errors are recorded and re-raised.

        Why it matters: re-raising hands the event to Celery's retry; the
        recorded failure lets retry_failed_webhooks pick it up later.
        """
        mocker.patch(
            "payments.services.WebhookService.dispatch",
            side_effect=RuntimeError("database went away"),
        )
        event = self.captured_event(payment)

        with pytest.raises(RuntimeError):
            process_webhook_event(str(event.id))

        event.refresh_from_db()
        assert event.status == WebhookEventStatus.FAILED
        assert event.error_message == "RuntimeError: database went away"


# =============================================================================
# retry_failed_webhooks
# =============================================================================


@pytest.mark.django_db
class TestRetryFailedWebhooks:
    """Tests for retry_failed_webhooks."""

    def test_requeues_failed_events_under_limit(self, mocker):
        delay = mocker.patch("payments.tasks.process_webhook_event.delay")
        retryable = WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=2)
        WebhookEventFactory(
            status=WebhookEventStatus.FAILED,
            retry_count=WebhookEvent.MAX_RETRIES,
        )
        WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        result = retry_failed_webhooks()

        assert result == {"queued_count": 1}
        delay.assert_called_once_with(str(retryable.id))

    def test_nothing_to_retry(self, mocker):
        delay = mocker.patch("payments.tasks.process_webhook_event.delay")

        assert retry_failed_webhooks() == {"queued_count": 0}
        delay.assert_not_called()
