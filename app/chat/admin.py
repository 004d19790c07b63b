"""
Django admin configuration for chat models.

Provides admin interfaces for:
- Chat inspection (pair, gig, snapshot)
- Participant counters
- Message moderation (read-only: messages are immutable)
"""

from django.contrib import admin

from chat.models import Chat, Message, MessageReaction, Participant


class ParticipantInline(admin.TabularInline):
    """Inline display of participants in chat admin."""

    model = Participant
    extra = 0
    readonly_fields = ["unread_count", "last_read_sequence", "created_at"]
    raw_id_fields = ["user"]


@admin.register(Chat)
class ChatAdmin(admin.ModelAdmin):
    """Admin interface for Chat model."""

    list_display = [
        "id",
        "user_lower",
        "user_higher",
        "gig_id",
        "last_sequence",
        "last_message_at",
        "created_at",
    ]
    search_fields = ["id", "gig_id", "user_lower__email", "user_higher__email"]
    readonly_fields = [
        "last_sequence",
        "last_message_content",
        "last_message_type",
        "last_message_at",
        "last_message_sender",
        "created_at",
        "updated_at",
    ]
    raw_id_fields = ["user_lower", "user_higher"]
    inlines = [ParticipantInline]
    ordering = ["-created_at"]


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    """Admin interface for Message model."""

    list_display = ["id", "chat", "sequence", "sender", "message_type", "is_read", "created_at"]
    list_filter = ["message_type", "is_read", "created_at"]
    search_fields = ["content", "chat__id"]
    readonly_fields = [
        "chat",
        "sender",
        "message_type",
        "content",
        "payload",
        "sequence",
        "reply_to",
        "is_read",
        "read_at",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def has_add_permission(self, request):
        return False


@admin.register(MessageReaction)
class MessageReactionAdmin(admin.ModelAdmin):
    """Admin interface for MessageReaction model."""

    list_display = ["id", "message", "user", "emoji", "created_at"]
    raw_id_fields = ["message", "user"]
