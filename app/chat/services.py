"""
Chat system service layer.

This module provides the business logic for the chat system, encapsulating
all operations on chats, messages, reactions and presence.

Services:
    ChatDirectoryService: Chat lookup and get-or-create for a user pair
    MessageStore: Append, page and mark-read over the per-chat message log
    ReactionService: Emoji reactions on messages
    PresenceService: Cache-backed online tracking for realtime sessions

Design Principles:
    - Services are stateless (use class methods)
    - Expected failures return ServiceResult.failure()
    - Unexpected failures raise exceptions
    - Per-chat ordering comes from a row lock on the chat, never from clocks
    - Realtime fan-out happens after commit (see chat.events)

Usage:
    from chat.services import ChatDirectoryService, MessageStore

    # Open (or reuse) the chat between two users
    result = ChatDirectoryService.get_or_create_chat(client, freelancer.id)
    if result.success:
        chat, created = result.data

    # Send a message
    result = MessageStore.append(chat.id, client, "Hello!")

    # Catch up from a known sequence
    result = MessageStore.page(chat.id, freelancer, after=0)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import F, Max, OuterRef, Q, Subquery
from django.utils import timezone

from core.services import BaseService, ServiceResult

from chat import events
from chat.constants import (
    MESSAGE_CONFIG,
    PRESENCE_CONFIG,
    REACTION_CONFIG,
    ChatErrorCode,
)
from chat.models import (
    Chat,
    Message,
    MessageReaction,
    MessageType,
    Participant,
    SystemMessageEvent,
)

if TYPE_CHECKING:
    from authentication.models import User

logger = logging.getLogger(__name__)


@dataclass
class MessagePage:
    """
    One page of a chat's message log.

    Attributes:
        messages: Messages in ascending sequence order
        has_more: Whether more messages exist in the paging direction
        first_sequence: Sequence of the first message (None if empty)
        last_sequence: Sequence of the last message (None if empty)
    """

    messages: list[Message]
    has_more: bool
    first_sequence: int | None
    last_sequence: int | None


def _not_found() -> ServiceResult:
    return ServiceResult.failure("Chat not found", error_code=ChatErrorCode.CHAT_NOT_FOUND)


def _not_participant() -> ServiceResult:
    return ServiceResult.failure(
        "You are not a participant in this chat",
        error_code=ChatErrorCode.NOT_PARTICIPANT,
    )


class ChatDirectoryService(BaseService):
    """
    Service for locating and creating chats.

    Methods:
        list_chats: A user's chats, most recently active first
        get_or_create_chat: The single chat for an unordered user pair
        get_chat: One chat, checked for participation
        partner_ids: Users the given user has a chat with
        rebuild_projections: Recompute snapshot and counters from the log
    """

    @classmethod
    def _get_chat(cls, chat_id) -> Chat | None:
        """Fetch a chat by id; malformed ids behave like missing ones."""
        try:
            return Chat.objects.select_related("user_lower", "user_higher").get(pk=chat_id)
        except (Chat.DoesNotExist, ValueError, DjangoValidationError):
            return None

    @classmethod
    def _find_pair(cls, lower_id: int, higher_id: int) -> Chat | None:
        return (
            Chat.objects.select_related("user_lower", "user_higher")
            .filter(user_lower_id=lower_id, user_higher_id=higher_id)
            .first()
        )

    @classmethod
    def list_chats(cls, user: User) -> list[Chat]:
        """
        List every chat the user participates in.

        Ordered by last message time (newest first); chats without messages
        follow, newest created first. Each chat is annotated with
        `viewer_unread`, the user's own unread count.
        """
        viewer_unread = Participant.objects.filter(
            chat=OuterRef("pk"), user=user
        ).values("unread_count")[:1]

        return list(
            Chat.objects.filter(Q(user_lower=user) | Q(user_higher=user))
            .select_related("user_lower", "user_higher")
            .annotate(viewer_unread=Subquery(viewer_unread))
            .order_by(F("last_message_at").desc(nulls_last=True), "-created_at", "-id")
        )

    @classmethod
    def get_or_create_chat(
        cls,
        initiator: User,
        participant_id: int,
        gig_id: str | None = None,
    ) -> ServiceResult[tuple[Chat, bool]]:
        """
        Get or create the chat between two users.

        The pair is stored in canonical order and guarded by a unique
        constraint, so concurrent callers always end up with the same chat.
        A caller that loses the insert race re-reads the winner's row.

        Args:
            initiator: User opening the chat
            participant_id: The other user's id
            gig_id: Optional gig reference; fills in an empty gig_id on an
                existing chat

        Returns:
            ServiceResult with (chat, created)

        Error codes:
            SAME_USER: Cannot open a chat with yourself
            USER_NOT_FOUND: Other user does not exist or is inactive
        """
        if participant_id == initiator.pk:
            return ServiceResult.failure(
                "Cannot start a chat with yourself",
                error_code=ChatErrorCode.SAME_USER,
            )

        User = get_user_model()
        if not User.objects.filter(pk=participant_id, is_active=True).exists():
            return ServiceResult.failure(
                "User not found",
                error_code=ChatErrorCode.USER_NOT_FOUND,
            )

        lower_id, higher_id = Chat.canonical_pair(initiator.pk, participant_id)
        gig_id = (gig_id or "").strip()

        chat = cls._find_pair(lower_id, higher_id)
        if chat is not None:
            if gig_id and not chat.gig_id:
                chat.gig_id = gig_id
                chat.save(update_fields=["gig_id", "updated_at"])
            return ServiceResult.success((chat, False))

        try:
            with transaction.atomic():
                chat = Chat.objects.create(
                    user_lower_id=lower_id,
                    user_higher_id=higher_id,
                    gig_id=gig_id,
                )
                Participant.objects.bulk_create(
                    [
                        Participant(chat=chat, user_id=lower_id),
                        Participant(chat=chat, user_id=higher_id),
                    ]
                )
        except IntegrityError:
            chat = cls._find_pair(lower_id, higher_id)
            if chat is None:
                raise
            cls.get_logger().info(
                f"Lost chat creation race for pair ({lower_id}, {higher_id}), "
                f"using existing chat {chat.id}"
            )
            return ServiceResult.success((chat, False))

        events.publish_chat_updated(chat.pk)

        cls.get_logger().info(
            f"User {initiator.pk} created chat {chat.id} with user {participant_id}"
        )
        return ServiceResult.success((chat, True))

    @classmethod
    def get_chat(cls, chat_id, user: User) -> ServiceResult[Chat]:
        """
        Get a chat the user participates in.

        Error codes:
            CHAT_NOT_FOUND: No chat with this id
            NOT_PARTICIPANT: User is not one of the pair
        """
        chat = cls._get_chat(chat_id)
        if chat is None:
            return _not_found()
        if not chat.has_participant(user.pk):
            return _not_participant()
        return ServiceResult.success(chat)

    @classmethod
    def partner_ids(cls, user: User) -> list[int]:
        """Return ids of every user this user has a chat with."""
        pairs = Chat.objects.filter(
            Q(user_lower=user) | Q(user_higher=user)
        ).values_list("user_lower_id", "user_higher_id")
        return sorted(
            {higher if lower == user.pk else lower for lower, higher in pairs}
        )

    @classmethod
    def rebuild_projections(cls, chat: Chat) -> ServiceResult[Chat]:
        """
        Recompute the chat's derived fields from its message log.

        Restores last_sequence, the last-message snapshot and, for each
        participant, last_read_sequence and unread_count. Missing
        Participant rows are recreated.
        """
        with transaction.atomic():
            chat = Chat.objects.select_for_update().get(pk=chat.pk)
            last = chat.messages.order_by("-sequence").first()

            if last is None:
                chat.last_sequence = 0
                chat.last_message_content = ""
                chat.last_message_type = ""
                chat.last_message_at = None
                chat.last_message_sender = None
            else:
                chat.last_sequence = last.sequence
                chat.last_message_content = last.content[: MESSAGE_CONFIG.PREVIEW_LENGTH]
                chat.last_message_type = last.message_type
                chat.last_message_at = last.created_at
                chat.last_message_sender_id = last.sender_id
            chat.save(
                update_fields=[
                    "last_sequence",
                    "last_message_content",
                    "last_message_type",
                    "last_message_at",
                    "last_message_sender",
                    "updated_at",
                ]
            )

            for user_id in chat.participant_ids:
                participant, _ = Participant.objects.get_or_create(
                    chat=chat, user_id=user_id
                )
                other_id = chat.other_participant_id(user_id)
                read_upto = (
                    chat.messages.filter(is_read=True, sender_id=other_id).aggregate(
                        upto=Max("sequence")
                    )["upto"]
                    or 0
                )
                participant.last_read_sequence = max(
                    participant.last_read_sequence, read_upto
                )
                participant.unread_count = (
                    chat.messages.filter(sequence__gt=participant.last_read_sequence)
                    .exclude(sender_id=user_id)
                    .count()
                )
                participant.save(
                    update_fields=["last_read_sequence", "unread_count", "updated_at"]
                )

        cls.get_logger().info(f"Rebuilt projections for chat {chat.id}")
        return ServiceResult.success(chat)


class MessageStore(BaseService):
    """
    Service for the per-chat message log.

    Methods:
        append: Validate and append a user message
        append_system: Append a server-generated event message
        page: Read a window of the log in ascending order
        mark_read: Mark the partner's messages read up to a message
        mark_read_messages: Same, with the upper bound taken from a list of ids
    """

    # Fields a client may send for an application message
    APPLICATION_FIELDS = ("proposal", "bid_amount", "delivery_days")

    @classmethod
    def _validate_content(
        cls,
        content: str | None,
        message_type: str,
        payload,
    ) -> ServiceResult[tuple[str, dict | None]]:
        """
        Validate client-supplied content.

        Returns:
            ServiceResult with the normalized (content, payload)
        """
        if message_type == MessageType.SYSTEM:
            return ServiceResult.failure(
                "System messages cannot be posted by users",
                error_code=ChatErrorCode.INVALID_MESSAGE_TYPE,
            )
        if message_type not in (MessageType.TEXT, MessageType.APPLICATION):
            return ServiceResult.failure(
                f"Invalid message type: {message_type}",
                error_code=ChatErrorCode.INVALID_MESSAGE_TYPE,
            )

        content = content.strip() if content else ""

        if message_type == MessageType.TEXT:
            if payload is not None:
                return ServiceResult.failure(
                    "Text messages cannot carry a payload",
                    error_code=ChatErrorCode.PAYLOAD_NOT_ALLOWED,
                )
            if not content:
                return ServiceResult.failure(
                    "Message content cannot be empty",
                    error_code=ChatErrorCode.EMPTY_CONTENT,
                )
        else:
            payload_result = cls._validate_application_payload(payload)
            if not payload_result:
                return payload_result
            payload = payload_result.data
            if not content:
                content = cls._render_application(payload)

        if len(content) > MESSAGE_CONFIG.MAX_CONTENT_LENGTH:
            return ServiceResult.failure(
                f"Message content exceeds {MESSAGE_CONFIG.MAX_CONTENT_LENGTH} characters",
                error_code=ChatErrorCode.CONTENT_TOO_LONG,
            )

        return ServiceResult.success((content, payload))

    @classmethod
    def _validate_application_payload(cls, payload) -> ServiceResult[dict]:
        if not isinstance(payload, dict) or not payload:
            return ServiceResult.failure(
                "Application messages require a payload",
                error_code=ChatErrorCode.PAYLOAD_REQUIRED,
            )

        size = len(json.dumps(payload).encode("utf-8"))
        if size > MESSAGE_CONFIG.MAX_PAYLOAD_BYTES:
            return ServiceResult.failure(
                f"Payload exceeds {MESSAGE_CONFIG.MAX_PAYLOAD_BYTES} bytes",
                error_code=ChatErrorCode.PAYLOAD_TOO_LARGE,
            )

        unknown = set(payload) - set(cls.APPLICATION_FIELDS)
        if unknown:
            return ServiceResult.failure(
                f"Unknown payload fields: {', '.join(sorted(unknown))}",
                error_code=ChatErrorCode.INVALID_PAYLOAD,
            )

        proposal = payload.get("proposal")
        if not isinstance(proposal, str) or not proposal.strip():
            return ServiceResult.failure(
                "Application payload requires a proposal",
                error_code=ChatErrorCode.PAYLOAD_REQUIRED,
            )
        if len(proposal) > MESSAGE_CONFIG.MAX_PROPOSAL_LENGTH:
            return ServiceResult.failure(
                f"Proposal exceeds {MESSAGE_CONFIG.MAX_PROPOSAL_LENGTH} characters",
                error_code=ChatErrorCode.INVALID_PAYLOAD,
            )

        normalized = {"proposal": proposal.strip()}

        bid_amount = payload.get("bid_amount")
        if bid_amount is not None:
            if isinstance(bid_amount, bool):
                bid = None
            else:
                try:
                    bid = Decimal(str(bid_amount))
                except InvalidOperation:
                    bid = None
            if bid is None or not bid.is_finite() or bid <= 0:
                return ServiceResult.failure(
                    "bid_amount must be a positive number",
                    error_code=ChatErrorCode.INVALID_PAYLOAD,
                )
            normalized["bid_amount"] = str(bid)

        delivery_days = payload.get("delivery_days")
        if delivery_days is not None:
            if (
                isinstance(delivery_days, bool)
                or not isinstance(delivery_days, int)
                or not 1 <= delivery_days <= MESSAGE_CONFIG.MAX_DELIVERY_DAYS
            ):
                return ServiceResult.failure(
                    f"delivery_days must be between 1 and {MESSAGE_CONFIG.MAX_DELIVERY_DAYS}",
                    error_code=ChatErrorCode.INVALID_PAYLOAD,
                )
            normalized["delivery_days"] = delivery_days

        return ServiceResult.success(normalized)

    @staticmethod
    def _render_application(payload: dict) -> str:
        """Plain-text rendering of an application, used for previews."""
        parts = [f"Application: {payload['proposal']}"]
        if "bid_amount" in payload:
            parts.append(f"Bid: {payload['bid_amount']}")
        if "delivery_days" in payload:
            parts.append(f"Delivery: {payload['delivery_days']} days")
        return " | ".join(parts)

    @classmethod
    def _insert(
        cls,
        chat: Chat,
        sender: User | None,
        message_type: str,
        content: str,
        payload: dict | None,
        reply_to: Message | None = None,
    ) -> Message:
        """
        Assign the next sequence and insert the message.

        The chat row lock serializes appends to one chat, so sequences are
        gap-free and every reader observes the same order.
        """
        now = timezone.now()

        with transaction.atomic():
            locked = Chat.objects.select_for_update().get(pk=chat.pk)
            sequence = locked.last_sequence + 1

            message = Message.objects.create(
                chat=locked,
                sender=sender,
                message_type=message_type,
                content=content,
                payload=payload,
                sequence=sequence,
                reply_to=reply_to,
            )

            locked.last_sequence = sequence
            locked.last_message_content = content[: MESSAGE_CONFIG.PREVIEW_LENGTH]
            locked.last_message_type = message_type
            locked.last_message_at = message.created_at
            locked.last_message_sender = sender
            locked.save(
                update_fields=[
                    "last_sequence",
                    "last_message_content",
                    "last_message_type",
                    "last_message_at",
                    "last_message_sender",
                    "updated_at",
                ]
            )

            # System messages count as unread for both sides
            recipients = Participant.objects.filter(chat=locked)
            if sender is not None:
                recipients = recipients.exclude(user=sender)
            recipients.update(unread_count=F("unread_count") + 1, updated_at=now)

        events.publish_message_created(message)
        events.publish_chat_updated(chat.pk)
        return message

    @classmethod
    def append(
        cls,
        chat_id,
        sender: User,
        content: str | None,
        message_type: str = MessageType.TEXT,
        payload: dict | None = None,
        reply_to_id: int | None = None,
    ) -> ServiceResult[Message]:
        """
        Append a user message to a chat.

        Args:
            chat_id: Target chat
            sender: Authoring user, must be a participant
            content: Message text (optional for application messages)
            message_type: "text" or "application"
            payload: Application data ({"proposal", "bid_amount", "delivery_days"})
            reply_to_id: Optional message in the same chat being replied to

        Returns:
            ServiceResult with the new Message

        Error codes:
            CHAT_NOT_FOUND: Chat does not exist
            NOT_PARTICIPANT: Sender is not one of the pair
            INVALID_MESSAGE_TYPE: Unknown type, or "system"
            EMPTY_CONTENT / CONTENT_TOO_LONG: Text content rules
            PAYLOAD_REQUIRED / PAYLOAD_NOT_ALLOWED / PAYLOAD_TOO_LARGE /
            INVALID_PAYLOAD: Payload rules
            INVALID_REPLY: reply_to_id is not a message of this chat
        """
        chat = ChatDirectoryService._get_chat(chat_id)
        if chat is None:
            return _not_found()
        if sender is None or not chat.has_participant(sender.pk):
            return _not_participant()

        validation = cls._validate_content(content, message_type, payload)
        if not validation:
            return validation
        content, payload = validation.data

        reply_to = None
        if reply_to_id is not None:
            reply_to = Message.objects.filter(pk=reply_to_id, chat=chat).first()
            if reply_to is None:
                return ServiceResult.failure(
                    "Reply target not found in this chat",
                    error_code=ChatErrorCode.INVALID_REPLY,
                )

        message = cls._insert(chat, sender, message_type, content, payload, reply_to)

        from chat.tasks import notify_offline_recipient

        transaction.on_commit(lambda: notify_offline_recipient.delay(message.id))

        cls.get_logger().debug(
            f"User {sender.pk} appended message #{message.sequence} to chat {chat.id}"
        )
        return ServiceResult.success(message)

    @classmethod
    def append_system(cls, chat: Chat, event: str, data: dict) -> ServiceResult[Message]:
        """
        Append a server-generated event message.

        Payload format: {"event": <event>, "data": {...}}. The message has no
        sender and counts as unread for both participants.
        """
        payload = {"event": event, "data": data}
        content = SystemMessageEvent.DISPLAY_TEXT.get(event, event)
        message = cls._insert(chat, None, MessageType.SYSTEM, content, payload)

        cls.get_logger().info(
            f"Appended system message '{event}' #{message.sequence} to chat {chat.id}"
        )
        return ServiceResult.success(message)

    @staticmethod
    def _clamp_limit(limit: int | None) -> int:
        if limit is None or limit <= 0:
            return MESSAGE_CONFIG.DEFAULT_PAGE_SIZE
        return min(limit, MESSAGE_CONFIG.MAX_PAGE_SIZE)

    @classmethod
    def page(
        cls,
        chat_id,
        user: User,
        after: int | None = None,
        before: int | None = None,
        limit: int | None = None,
    ) -> ServiceResult[MessagePage]:
        """
        Read a window of the message log, always oldest first.

        Modes:
            after=s: first `limit` messages with sequence > s (catch-up)
            before=s: last `limit` messages with sequence < s (scroll back)
            neither: the latest `limit` messages

        Concatenating forward pages from after=0, each starting at the
        previous page's last_sequence, reproduces the full log exactly once.

        Error codes:
            CHAT_NOT_FOUND, NOT_PARTICIPANT
            INVALID_CURSOR: Both cursors given, or a negative cursor
        """
        chat = ChatDirectoryService._get_chat(chat_id)
        if chat is None:
            return _not_found()
        if not chat.has_participant(user.pk):
            return _not_participant()

        if after is not None and before is not None:
            return ServiceResult.failure(
                "Use either after or before, not both",
                error_code=ChatErrorCode.INVALID_CURSOR,
            )
        if (after is not None and after < 0) or (before is not None and before < 0):
            return ServiceResult.failure(
                "Cursors must be non-negative sequences",
                error_code=ChatErrorCode.INVALID_CURSOR,
            )

        limit = cls._clamp_limit(limit)
        queryset = (
            Message.objects.filter(chat=chat)
            .select_related("sender")
            .prefetch_related("reactions")
        )

        if after is not None:
            rows = list(
                queryset.filter(sequence__gt=after).order_by("sequence", "id")[: limit + 1]
            )
            has_more = len(rows) > limit
            rows = rows[:limit]
        else:
            if before is not None:
                queryset = queryset.filter(sequence__lt=before)
            rows = list(queryset.order_by("-sequence", "-id")[: limit + 1])
            has_more = len(rows) > limit
            rows = list(reversed(rows[:limit]))

        return ServiceResult.success(
            MessagePage(
                messages=rows,
                has_more=has_more,
                first_sequence=rows[0].sequence if rows else None,
                last_sequence=rows[-1].sequence if rows else None,
            )
        )

    @classmethod
    def mark_read(cls, chat_id, up_to_message_id: int, reader: User) -> ServiceResult[int]:
        """
        Mark the partner's messages read up to and including a message.

        Idempotent: a repeated call changes nothing and reports 0.

        Returns:
            ServiceResult with the number of messages newly marked read

        Error codes:
            CHAT_NOT_FOUND, NOT_PARTICIPANT
            MESSAGE_NOT_FOUND: Target is not a message of this chat
        """
        chat = ChatDirectoryService._get_chat(chat_id)
        if chat is None:
            return _not_found()
        if not chat.has_participant(reader.pk):
            return _not_participant()

        target = Message.objects.filter(pk=up_to_message_id, chat=chat).first()
        if target is None:
            return ServiceResult.failure(
                "Message not found in this chat",
                error_code=ChatErrorCode.MESSAGE_NOT_FOUND,
            )

        return ServiceResult.success(cls._mark_read_up_to(chat, target, reader))

    @classmethod
    def mark_read_messages(
        cls, chat_id, message_ids: list[int], reader: User
    ) -> ServiceResult[int]:
        """
        Mark read by a list of message ids.

        Everything up to the newest listed message is marked, the same as
        mark_read with that message as the bound.
        """
        chat = ChatDirectoryService._get_chat(chat_id)
        if chat is None:
            return _not_found()
        if not chat.has_participant(reader.pk):
            return _not_participant()

        wanted = set(message_ids)
        found = list(
            Message.objects.filter(pk__in=wanted, chat=chat).order_by("-sequence")
        )
        if not wanted or len(found) != len(wanted):
            return ServiceResult.failure(
                "Message not found in this chat",
                error_code=ChatErrorCode.MESSAGE_NOT_FOUND,
            )

        return ServiceResult.success(cls._mark_read_up_to(chat, found[0], reader))

    @classmethod
    def _mark_read_up_to(cls, chat: Chat, target: Message, reader: User) -> int:
        now = timezone.now()

        with transaction.atomic():
            participant, _ = Participant.objects.select_for_update().get_or_create(
                chat=chat, user=reader
            )

            updated = (
                Message.objects.filter(
                    chat=chat, sequence__lte=target.sequence, is_read=False
                )
                .exclude(sender=reader)
                .update(is_read=True, read_at=now, updated_at=now)
            )

            last_read = max(participant.last_read_sequence, target.sequence)
            unread = (
                Message.objects.filter(chat=chat, sequence__gt=last_read)
                .exclude(sender=reader)
                .count()
            )
            changed = (
                last_read != participant.last_read_sequence
                or unread != participant.unread_count
            )
            if changed:
                participant.last_read_sequence = last_read
                participant.unread_count = unread
                participant.save(
                    update_fields=["last_read_sequence", "unread_count", "updated_at"]
                )

        if updated:
            events.publish_message_read(chat.pk, reader.pk, target.pk, target.sequence)
        if changed:
            events.publish_chat_updated(chat.pk, [reader.pk])

        cls.get_logger().debug(
            f"User {reader.pk} read chat {chat.id} up to #{target.sequence} "
            f"({updated} messages marked)"
        )
        return updated


class ReactionService(BaseService):
    """
    Service for message reactions.

    A reaction is identified by (message, user, emoji); toggling adds it
    when absent and removes it when present.
    """

    @classmethod
    def _validate_emoji(cls, emoji: str | None) -> bool:
        if not emoji or not emoji.strip():
            return False
        return len(emoji.strip()) <= REACTION_CONFIG.MAX_EMOJI_LENGTH

    @classmethod
    def toggle_reaction(
        cls,
        user: User,
        message_id: int,
        emoji: str,
    ) -> ServiceResult[tuple[bool, MessageReaction | None]]:
        """
        Add or remove the user's reaction on a message.

        Returns:
            ServiceResult with (added, reaction); reaction is None when removed

        Error codes:
            INVALID_EMOJI: Empty or longer than MAX_EMOJI_LENGTH
            MESSAGE_NOT_FOUND: No such message
            NOT_PARTICIPANT: User is not in the message's chat
        """
        if not cls._validate_emoji(emoji):
            return ServiceResult.failure(
                "Invalid emoji",
                error_code=ChatErrorCode.INVALID_EMOJI,
            )
        emoji = emoji.strip()

        message = Message.objects.select_related("chat").filter(pk=message_id).first()
        if message is None:
            return ServiceResult.failure(
                "Message not found",
                error_code=ChatErrorCode.MESSAGE_NOT_FOUND,
            )
        if not message.chat.has_participant(user.pk):
            return _not_participant()

        with transaction.atomic():
            existing = MessageReaction.objects.filter(
                message=message, user=user, emoji=emoji
            ).first()
            if existing is not None:
                existing.delete()
                added, reaction = False, None
            else:
                reaction, added = MessageReaction.objects.get_or_create(
                    message=message, user=user, emoji=emoji
                )

        events.publish_message_reaction(
            message.chat_id, message.pk, user.pk, emoji, added
        )
        return ServiceResult.success((added, reaction))


class PresenceService(BaseService):
    """
    Cache-based presence tracking.

    Each user has a connection counter under "presence:user:<id>" with a TTL.
    The first realtime session brings the user online, the last one to
    disconnect takes them offline, and heartbeats keep the entry alive.
    A crashed server simply lets the entry expire.

    Usage:
        result = PresenceService.connect(user.id)
        if result.success and result.data:
            # user just came online
            ...
    """

    @staticmethod
    def _get_cache():
        """Get Django cache backend (Redis in production)."""
        from django.core.cache import cache

        return cache

    @staticmethod
    def _user_presence_key(user_id) -> str:
        return f"{PRESENCE_CONFIG.KEY_PREFIX_USER_PRESENCE}:{user_id}"

    @classmethod
    def connect(cls, user_id) -> ServiceResult[bool]:
        """
        Register one more live session for a user.

        Returns:
            ServiceResult with True if the user just came online
        """
        ttl = PRESENCE_CONFIG.PRESENCE_TTL_SECONDS
        key = cls._user_presence_key(user_id)
        try:
            cache = cls._get_cache()
            if cache.add(key, 1, timeout=ttl):
                return ServiceResult.success(True)
            try:
                cache.incr(key)
            except ValueError:
                # Expired between add and incr
                cache.set(key, 1, timeout=ttl)
                return ServiceResult.success(True)
            cache.touch(key, ttl)
            return ServiceResult.success(False)
        except Exception as e:
            logger.exception(f"Error setting presence for user {user_id}: {e}")
            return ServiceResult.failure(
                error="Failed to set presence",
                error_code="presence_error",
            )

    @classmethod
    def disconnect(cls, user_id) -> ServiceResult[bool]:
        """
        Drop one live session for a user.

        Returns:
            ServiceResult with True if that was the user's last session
        """
        key = cls._user_presence_key(user_id)
        try:
            cache = cls._get_cache()
            try:
                remaining = cache.decr(key)
            except ValueError:
                return ServiceResult.success(True)
            if remaining <= 0:
                cache.delete(key)
                return ServiceResult.success(True)
            cache.touch(key, PRESENCE_CONFIG.PRESENCE_TTL_SECONDS)
            return ServiceResult.success(False)
        except Exception as e:
            logger.exception(f"Error clearing presence for user {user_id}: {e}")
            return ServiceResult.failure(
                error="Failed to clear presence",
                error_code="presence_error",
            )

    @classmethod
    def heartbeat(cls, user_id) -> ServiceResult[bool]:
        """
        Refresh the presence TTL.

        Returns:
            ServiceResult with True if the entry had expired and the user
            is back online
        """
        ttl = PRESENCE_CONFIG.PRESENCE_TTL_SECONDS
        key = cls._user_presence_key(user_id)
        try:
            cache = cls._get_cache()
            if cache.touch(key, ttl):
                return ServiceResult.success(False)
            return ServiceResult.success(cache.add(key, 1, timeout=ttl))
        except Exception as e:
            logger.exception(f"Error heartbeat for user {user_id}: {e}")
            return ServiceResult.failure(
                error="Failed to process heartbeat",
                error_code="presence_error",
            )

    @classmethod
    def is_online(cls, user_id) -> ServiceResult[bool]:
        try:
            count = cls._get_cache().get(cls._user_presence_key(user_id), 0)
            return ServiceResult.success(count > 0)
        except Exception as e:
            logger.exception(f"Error getting presence for user {user_id}: {e}")
            return ServiceResult.failure(
                error="Failed to get presence",
                error_code="presence_error",
            )

    @classmethod
    def get_bulk_presence(cls, user_ids: list) -> ServiceResult[list[dict]]:
        """
        Get presence for multiple users.

        Returns:
            ServiceResult with [{"user_id": id, "online": bool}, ...] in the
            order given
        """
        if not user_ids:
            return ServiceResult.success([])

        try:
            keys = {cls._user_presence_key(user_id): user_id for user_id in user_ids}
            counts = cls._get_cache().get_many(list(keys))
            return ServiceResult.success(
                [
                    {
                        "user_id": user_id,
                        "online": counts.get(cls._user_presence_key(user_id), 0) > 0,
                    }
                    for user_id in user_ids
                ]
            )
        except Exception as e:
            logger.exception(f"Error getting bulk presence: {e}")
            return ServiceResult.failure(
                error="Failed to get bulk presence",
                error_code="presence_error",
            )
