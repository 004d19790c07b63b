"""
Serializers for chat API.

This module provides serializers for the chat system:
- Chat serializers (summary for the directory, detail, create)
- Message serializers (read, create, mark-read, reactions)

Serializer Hierarchy:
    ChatSummarySerializer: Directory entry as seen by one user
    ChatDetailSerializer: Summary plus the partner's presence
    ChatCreateSerializer: Get-or-create input

    MessageSerializer: Full message, also used for realtime payloads
    MessageCreateSerializer: Append input
    MarkReadSerializer: Mark-read input (message ids or an upper bound)
    ReactionToggleSerializer: Reaction input

Design Decisions:
    - Read and write serializers are separate for clarity
    - Summaries are always rendered for a specific viewer passed in
      context["user"], because the partner and the unread count depend on it
    - Message content validation lives in MessageStore so REST and internal
      callers get the same error codes
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import serializers

from authentication.serializers import UserSerializer
from chat.models import Chat, Message, Participant

if TYPE_CHECKING:
    from authentication.models import User


# =============================================================================
# Message Serializers
# =============================================================================


class MessageSerializer(serializers.ModelSerializer):
    """
    Complete message representation.

    The same shape is pushed over the realtime channel in
    `message.created` events, so clients can merge REST pages and
    realtime events without conversion.
    """

    chat_id = serializers.UUIDField(read_only=True)
    sender_id = serializers.IntegerField(read_only=True, allow_null=True)
    sender = UserSerializer(read_only=True, allow_null=True)
    reply_to_id = serializers.IntegerField(read_only=True, allow_null=True)
    reactions = serializers.SerializerMethodField()

    class Meta:
        model = Message
        fields = [
            "id",
            "chat_id",
            "sequence",
            "sender_id",
            "sender",
            "message_type",
            "content",
            "payload",
            "reply_to_id",
            "is_read",
            "read_at",
            "created_at",
            "reactions",
        ]
        read_only_fields = fields

    def get_reactions(self, obj: Message) -> list[dict]:
        return [
            {"emoji": reaction.emoji, "user_id": reaction.user_id}
            for reaction in obj.reactions.all()
        ]


class MessageCreateSerializer(serializers.Serializer):
    """
    Input for POST /chat/messages/.

    Content rules (empty, too long, payload shape) are enforced by
    MessageStore.append so they carry machine-readable error codes.
    """

    chat_id = serializers.UUIDField()
    content = serializers.CharField(
        required=False, allow_blank=True, default="", trim_whitespace=False
    )
    message_type = serializers.CharField(required=False, default="text")
    payload = serializers.JSONField(required=False, allow_null=True, default=None)
    reply_to_id = serializers.IntegerField(required=False, allow_null=True, default=None)


class MarkReadSerializer(serializers.Serializer):
    """
    Input for PUT /chat/messages/mark-read/.

    Either `message_ids` (everything up to the newest of them is marked)
    or `up_to_message_id` must be given.
    """

    chat_id = serializers.UUIDField()
    message_ids = serializers.ListField(
        child=serializers.IntegerField(), required=False, allow_empty=False
    )
    up_to_message_id = serializers.IntegerField(required=False)

    def validate(self, attrs):
        has_ids = "message_ids" in attrs
        has_upper = "up_to_message_id" in attrs
        if has_ids == has_upper:
            raise serializers.ValidationError(
                "Provide exactly one of message_ids or up_to_message_id."
            )
        return attrs


class ReactionToggleSerializer(serializers.Serializer):
    """Input for POST /chat/messages/{id}/reactions/."""

    emoji = serializers.CharField(trim_whitespace=True)


# =============================================================================
# Chat Serializers
# =============================================================================


class ChatCreateSerializer(serializers.Serializer):
    """Input for POST /chat/chats/ (get-or-create)."""

    participant_id = serializers.IntegerField()
    gig_id = serializers.CharField(
        required=False, allow_blank=True, max_length=64, default=""
    )


class ChatSummarySerializer(serializers.ModelSerializer):
    """
    Directory entry for one chat, rendered for the user in context["user"].

    Fields:
        other_participant: The chat partner
        last_message: Snapshot of the newest message, or null
        unread_count: Messages from the partner the viewer has not read
    """

    other_participant = serializers.SerializerMethodField()
    last_message = serializers.SerializerMethodField()
    unread_count = serializers.SerializerMethodField()

    class Meta:
        model = Chat
        fields = [
            "id",
            "gig_id",
            "other_participant",
            "last_message",
            "last_sequence",
            "unread_count",
            "created_at",
        ]
        read_only_fields = fields

    def _viewer(self) -> User:
        return self.context["user"]

    def get_other_participant(self, obj: Chat) -> dict:
        return UserSerializer(obj.other_participant(self._viewer())).data

    def get_last_message(self, obj: Chat) -> dict | None:
        if obj.last_message_at is None:
            return None
        return {
            "content": obj.last_message_content,
            "message_type": obj.last_message_type,
            "sender_id": obj.last_message_sender_id,
            "sequence": obj.last_sequence,
            "created_at": serializers.DateTimeField().to_representation(
                obj.last_message_at
            ),
        }

    def get_unread_count(self, obj: Chat) -> int:
        # list_chats annotates viewer_unread to avoid a query per row
        annotated = getattr(obj, "viewer_unread", None)
        if annotated is not None:
            return annotated
        participant = Participant.objects.filter(
            chat=obj, user=self._viewer()
        ).first()
        return participant.unread_count if participant else 0


class ChatDetailSerializer(ChatSummarySerializer):
    """Chat detail: summary plus whether the partner is currently online."""

    other_participant_online = serializers.SerializerMethodField()

    class Meta(ChatSummarySerializer.Meta):
        fields = ChatSummarySerializer.Meta.fields + ["other_participant_online"]
        read_only_fields = fields

    def get_other_participant_online(self, obj: Chat) -> bool:
        from chat.services import PresenceService

        other_id = obj.other_participant_id(self._viewer().pk)
        result = PresenceService.is_online(other_id)
        return bool(result.data) if result.success else False
