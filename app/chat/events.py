"""
Channel layer fan-out for chat store mutations.

The message store and directory call these helpers after they change state.
Each helper defers the actual group_send until the surrounding transaction
commits, so connected sessions never see an event for a row that was rolled
back.

Groups:
    chat_<chat_id>: Sessions that joined the chat's room
    user_<user_id>: Every session of one user (directory and presence events)

Event types match the names clients receive; the consumer turns the dots
into handler names (message.created -> message_created).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction

from chat.constants import room_group_name, user_group_name

if TYPE_CHECKING:
    from collections.abc import Iterable

    from chat.models import Message

logger = logging.getLogger(__name__)


def _group_send(group: str, event: dict) -> None:
    channel_layer = get_channel_layer()
    if channel_layer is None:
        logger.debug(f"No channel layer configured, dropping {event['type']}")
        return
    try:
        async_to_sync(channel_layer.group_send)(group, event)
    except Exception:
        # Delivery is best-effort; clients reconcile over REST
        logger.exception(f"Failed to publish {event['type']} to {group}")


def _after_commit(func) -> None:
    transaction.on_commit(func)


# =============================================================================
# Room events
# =============================================================================


def publish_message_created(message: Message) -> None:
    """Push a newly appended message to the chat's room."""
    from chat.serializers import MessageSerializer

    def send():
        data = MessageSerializer(message).data
        _group_send(
            room_group_name(message.chat_id),
            {
                "type": "message.created",
                "chat_id": str(message.chat_id),
                "message": data,
            },
        )

    _after_commit(send)


def publish_message_read(
    chat_id, reader_id: int, up_to_id: int, up_to_sequence: int
) -> None:
    """Tell the room that `reader_id` has read everything up to a message."""
    event = {
        "type": "message.read",
        "chat_id": str(chat_id),
        "reader_id": reader_id,
        "up_to_id": up_to_id,
        "up_to_sequence": up_to_sequence,
    }
    _after_commit(lambda: _group_send(room_group_name(chat_id), event))


def publish_message_reaction(
    chat_id, message_id: int, user_id: int, emoji: str, added: bool
) -> None:
    event = {
        "type": "message.reaction",
        "chat_id": str(chat_id),
        "message_id": message_id,
        "user_id": user_id,
        "emoji": emoji,
        "added": added,
    }
    _after_commit(lambda: _group_send(room_group_name(chat_id), event))


# =============================================================================
# Personal group events
# =============================================================================


def publish_chat_updated(chat_id, user_ids: Iterable[int] | None = None) -> None:
    """
    Send each listed participant a fresh summary of the chat.

    Summaries are rendered per recipient at send time because the partner
    and unread count differ between the two sides. Defaults to both
    participants.
    """
    from chat.models import Chat
    from chat.serializers import ChatSummarySerializer

    recipients = list(user_ids) if user_ids is not None else None

    def send():
        chat = (
            Chat.objects.select_related("user_lower", "user_higher")
            .filter(pk=chat_id)
            .first()
        )
        if chat is None:
            return
        for user in (chat.user_lower, chat.user_higher):
            if recipients is not None and user.pk not in recipients:
                continue
            summary = ChatSummarySerializer(chat, context={"user": user}).data
            _group_send(
                user_group_name(user.pk),
                {"type": "chat.updated", "chat": summary},
            )

    _after_commit(send)


def publish_presence_changed(
    user_id: int, online: bool, partner_ids: Iterable[int]
) -> None:
    """Notify the chat partners of a user that they came online or went offline."""
    event = {"type": "presence.changed", "user_id": user_id, "online": online}
    for partner_id in partner_ids:
        _group_send(user_group_name(partner_id), event)
