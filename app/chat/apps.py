"""
Chat application configuration.

This app provides the chat system with:
- One 1:1 chat per user pair, optionally tied to a gig
- An ordered, immutable message log per chat
- Read tracking and unread counts
- Realtime delivery over WebSockets with presence
"""

from django.apps import AppConfig


class ChatConfig(AppConfig):
    """Configuration for the chat application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "chat"
    verbose_name = "Chat"
