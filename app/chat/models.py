"""
Chat system models.

This module defines the data models for 1:1 messaging between marketplace
users:

Models:
    Chat: Container for messages between exactly two users
    Participant: Per-user projection of a chat (unread counter, read cursor)
    Message: Immutable unit of chat content, ordered by a per-chat sequence
    MessageReaction: Emoji reaction of a user to a message

Design Decisions:
    - The participant pair is stored in canonical order (lower user id first)
      and protected by a unique constraint, so at most one chat exists per
      unordered pair no matter who initiates it or how many requests race.
    - Message order is the per-chat `sequence`, assigned by the message store
      under a row lock on the chat. Timestamps are informational only.
    - Messages are never edited or deleted. Reactions live in their own table
      so the message row stays immutable.
    - The last-message snapshot on Chat and the counters on Participant are
      projections of the message log and can be rebuilt from it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import F, Q

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

if TYPE_CHECKING:
    from authentication.models import User


class MessageType(models.TextChoices):
    """
    Type of message content.

    TEXT: User-authored free text
    APPLICATION: Structured gig application (proposal) carried in `payload`
    SYSTEM: Server-generated event message (sender is NULL)
    """

    TEXT = "text", "Text"
    APPLICATION = "application", "Application"
    SYSTEM = "system", "System"


class SystemMessageEvent:
    """
    System message event types.

    System messages store structured event data in the payload field.
    Format: {"event": "<event_type>", "data": {...event-specific data...}}

    Events:
        PAYMENT_RECEIVED: A Razorpay payment for a gig was verified
            data: {"order_id": str, "payment_id": str, "amount": str,
                   "currency": str, "gig_id": str}

        PAYMENT_REFUNDED: A verified payment was refunded
            data: {"order_id": str, "refund_id": str, "amount": str}
    """

    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_REFUNDED = "payment_refunded"

    DISPLAY_TEXT = {
        PAYMENT_RECEIVED: "Payment received",
        PAYMENT_REFUNDED: "Payment refunded",
    }


class Chat(UUIDPrimaryKeyMixin, BaseModel):
    """
    A 1:1 conversation between two users.

    Fields:
        user_lower: Participant with the lower user id
        user_higher: Participant with the higher user id
        gig_id: Optional reference to the gig this chat is about
        last_sequence: Sequence number of the newest message (0 when empty)
        last_message_content: Preview of the newest message
        last_message_type: Type of the newest message
        last_message_at: Creation time of the newest message
        last_message_sender: Sender of the newest message (NULL for system)

    Constraints:
        - UniqueConstraint(user_lower, user_higher): One chat per pair
        - CheckConstraint(user_lower_id < user_higher_id): Canonical order
    """

    user_lower = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="Participant with the lower user id",
    )

    user_higher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="+",
        help_text="Participant with the higher user id",
    )

    gig_id = models.CharField(
        max_length=64,
        blank=True,
        default="",
        help_text="External gig reference this chat was opened from",
    )

    last_sequence = models.PositiveBigIntegerField(
        default=0,
        help_text="Sequence of the newest message (0 if the chat is empty)",
    )

    last_message_content = models.TextField(
        blank=True,
        default="",
        help_text="Preview of the newest message",
    )

    last_message_type = models.CharField(
        max_length=12,
        choices=MessageType.choices,
        blank=True,
        default="",
        help_text="Type of the newest message",
    )

    last_message_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Creation time of the newest message",
    )

    last_message_sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Sender of the newest message (null for system messages)",
    )

    class Meta:
        db_table = "chat_chat"
        ordering = [F("last_message_at").desc(nulls_last=True), "-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["user_lower", "user_higher"],
                name="unique_chat_participant_pair",
            ),
            models.CheckConstraint(
                condition=Q(user_lower_id__lt=F("user_higher_id")),
                name="chat_user_lower_less_than_higher",
            ),
        ]
        indexes = [
            models.Index(
                fields=["-last_message_at"],
                name="chat_chat_last_msg_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"Chat({self.user_lower_id}, {self.user_higher_id})"

    @staticmethod
    def canonical_pair(user_a_id: int, user_b_id: int) -> tuple[int, int]:
        """Return the two user ids in storage order (lower first)."""
        return (user_a_id, user_b_id) if user_a_id < user_b_id else (user_b_id, user_a_id)

    @property
    def participant_ids(self) -> tuple[int, int]:
        return (self.user_lower_id, self.user_higher_id)

    def has_participant(self, user_id: int) -> bool:
        return user_id in self.participant_ids

    def other_participant_id(self, user_id: int) -> int:
        """
        Return the id of the participant who is not `user_id`.

        Raises:
            ValueError: If user_id is not a participant
        """
        if user_id == self.user_lower_id:
            return self.user_higher_id
        if user_id == self.user_higher_id:
            return self.user_lower_id
        raise ValueError(f"User {user_id} is not a participant of chat {self.pk}")

    def other_participant(self, user: User) -> User:
        if user.pk == self.user_lower_id:
            return self.user_higher
        return self.user_lower


class Participant(BaseModel):
    """
    One participant's view of a chat.

    Fields:
        chat: Chat this row belongs to
        user: The participating user
        unread_count: Messages from the other side not yet marked read
        last_read_sequence: Highest sequence this user has marked read

    Constraints:
        - UniqueConstraint(chat, user): exactly one row per participant
    """

    chat = models.ForeignKey(
        Chat,
        on_delete=models.CASCADE,
        related_name="participants",
        help_text="Chat this participation belongs to",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="chat_participations",
        help_text="User participating in the chat",
    )

    unread_count = models.PositiveIntegerField(
        default=0,
        help_text="Unread messages from the other participant",
    )

    last_read_sequence = models.PositiveBigIntegerField(
        default=0,
        help_text="Highest message sequence marked read by this user",
    )

    class Meta:
        db_table = "chat_participant"
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["chat", "user"],
                name="unique_chat_participant",
            ),
        ]
        indexes = [
            models.Index(fields=["user", "chat"], name="chat_part_user_idx"),
        ]

    def __str__(self) -> str:
        return f"Participant: {self.user_id} in {self.chat_id} ({self.unread_count} unread)"


class Message(BaseModel):
    """
    A message within a chat.

    Message Types:
        TEXT: content holds the text, payload is NULL
        APPLICATION: payload holds {"proposal", "bid_amount", "delivery_days"},
            content holds a plain-text rendering for previews
        SYSTEM: sender is NULL, payload holds {"event", "data"}

    Ordering:
        `sequence` is assigned by MessageStore.append and is unique and
        strictly increasing within a chat. Readers order by (sequence, id).

    Fields:
        chat: Chat this message belongs to
        sender: Author (NULL for system messages)
        message_type: Tagged variant of the content
        content: Text content
        payload: Structured data for application and system messages
        sequence: Per-chat position assigned at append time
        reply_to: Message in the same chat this one replies to
        is_read: Whether the recipient has marked it read
        read_at: When it was marked read
    """

    chat = models.ForeignKey(
        Chat,
        on_delete=models.CASCADE,
        related_name="messages",
        help_text="Chat this message belongs to",
    )

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="sent_messages",
        help_text="User who sent this message (null for system messages)",
    )

    message_type = models.CharField(
        max_length=12,
        choices=MessageType.choices,
        default=MessageType.TEXT,
        help_text="Type of message (text, application or system)",
    )

    content = models.TextField(
        help_text="Message text (rendered summary for structured messages)",
    )

    payload = models.JSONField(
        null=True,
        blank=True,
        help_text="Structured data for application and system messages",
    )

    sequence = models.PositiveBigIntegerField(
        help_text="Position within the chat, strictly increasing",
    )

    reply_to = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="replies",
        help_text="Message this one replies to",
    )

    is_read = models.BooleanField(
        default=False,
        help_text="Whether the recipient has read this message",
    )

    read_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the recipient marked this message read",
    )

    class Meta:
        db_table = "chat_message"
        ordering = ["sequence", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["chat", "sequence"],
                name="unique_chat_message_sequence",
            ),
        ]
        indexes = [
            models.Index(
                fields=["chat", "is_read", "sequence"],
                name="chat_msg_unread_idx",
            ),
            models.Index(
                fields=["sender", "-created_at"],
                name="chat_msg_sender_idx",
            ),
        ]

    def __str__(self) -> str:
        sender_str = f"User {self.sender_id}" if self.sender_id else "System"
        preview = self.content[:50] + "..." if len(self.content) > 50 else self.content
        return f"#{self.sequence} {sender_str}: {preview}"

    @property
    def is_system_message(self) -> bool:
        return self.message_type == MessageType.SYSTEM

    @property
    def is_application(self) -> bool:
        return self.message_type == MessageType.APPLICATION


class MessageReaction(BaseModel):
    """
    An emoji reaction by a user on a message.

    Constraints:
        - UniqueConstraint(message, user, emoji): toggling the same emoji
          twice removes it instead of adding a duplicate
    """

    message = models.ForeignKey(
        Message,
        on_delete=models.CASCADE,
        related_name="reactions",
        help_text="Message being reacted to",
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="message_reactions",
        help_text="User who reacted",
    )

    emoji = models.CharField(
        max_length=8,
        help_text="Emoji character(s)",
    )

    class Meta:
        db_table = "chat_message_reaction"
        ordering = ["created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["message", "user", "emoji"],
                name="unique_message_user_emoji",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.user_id} {self.emoji} on {self.message_id}"
