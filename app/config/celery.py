"""
Celery configuration for the GigConnect backend.

Background work handled here:
- Emailing recipients who were offline when a message arrived
- Rebuilding chat projections (last message snapshot, unread counters)
- Processing Razorpay webhook events, and re-queueing failed ones
  (celery beat, see CELERY_BEAT_SCHEDULE)

Redis is both the broker and result backend. Tasks are auto-discovered
from each installed app's tasks.py.

Usage:
    from chat.tasks import rebuild_chat_projections

    rebuild_chat_projections.delay(str(chat.id))
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("gigconnect")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
