"""
Service-level authorization for chat operations.

Participant checks shared by the chat services and the WebSocket consumer.
A realtime session may only join a chat's room after this check passes, so
nobody can listen in on a chat they are not part of.

Usage:
    if ChatAuthorizationService.is_chat_participant(user, chat_id):
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import Q

if TYPE_CHECKING:
    from authentication.models import User


class ChatAuthorizationService:
    """
    Stateless authorization checks for chat operations.

    Methods return plain booleans for easy composition.
    Malformed ids are treated as "not a participant" rather than raising.
    """

    @classmethod
    def is_chat_participant(cls, user: User, chat_id) -> bool:
        """
        Check if user is one of the two participants of the chat.

        Args:
            user: User to check
            chat_id: Chat UUID (str or uuid.UUID)

        Returns:
            True if the chat exists and the user is in its pair
        """
        from chat.models import Chat

        if user is None or not user.is_authenticated:
            return False

        try:
            return (
                Chat.objects.filter(pk=chat_id)
                .filter(Q(user_lower=user) | Q(user_higher=user))
                .exists()
            )
        except (ValueError, DjangoValidationError):
            return False

