"""
Celery tasks for chat app.

This module defines async tasks for:
- Email notifications for recipients who are offline
- Rebuilding chat projections (snapshot, unread counters) from the log

Related files:
    - services.py: MessageStore, ChatDirectoryService, PresenceService
    - models.py: Chat, Message

Usage:
    from chat.tasks import notify_offline_recipient

    notify_offline_recipient.delay(message_id)
"""

import logging

from celery import shared_task
from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
)
def notify_offline_recipient(self, message_id: int) -> int:
    """
    Email the recipients of a new message who are not connected.

    Recipients with a live realtime session see the message immediately and
    are skipped. System messages go to both participants.

    Args:
        message_id: ID of the message

    Returns:
        Number of emails sent
    """
    from chat.models import Message
    from chat.services import PresenceService

    try:
        message = Message.objects.select_related(
            "chat__user_lower", "chat__user_higher", "sender"
        ).get(id=message_id)
    except Message.DoesNotExist:
        logger.error(f"Message {message_id} not found")
        return 0

    chat = message.chat
    recipients = [
        user
        for user in (chat.user_lower, chat.user_higher)
        if user.pk != message.sender_id
    ]

    sender_name = message.sender.display_name if message.sender else "GigConnect"
    chat_url = f"{settings.FRONTEND_URL}/chats/{chat.id}"

    notified = 0
    for recipient in recipients:
        presence = PresenceService.is_online(recipient.pk)
        if presence.success and presence.data:
            continue

        send_mail(
            subject=f"New message from {sender_name}",
            message=f"{message.content[:200]}\n\nReply: {chat_url}",
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[recipient.email],
        )
        notified += 1

    logger.info(f"Sent {notified} offline notifications for message {message_id}")
    return notified


@shared_task
def rebuild_chat_projections(chat_id: str | None = None) -> int:
    """
    Recompute last-message snapshots and unread counters from the log.

    Args:
        chat_id: Chat to rebuild; all chats when omitted

    Returns:
        Number of chats rebuilt
    """
    from chat.models import Chat
    from chat.services import ChatDirectoryService

    chats = Chat.objects.all()
    if chat_id is not None:
        chats = chats.filter(pk=chat_id)

    rebuilt = 0
    for chat in chats.iterator():
        ChatDirectoryService.rebuild_projections(chat)
        rebuilt += 1

    logger.info(f"Rebuilt projections for {rebuilt} chats")
    return rebuilt
