"""
Constants and configuration for chat module features.

This module centralizes configuration values for:
- Message operations (content and payload limits, paging)
- Reaction management (emoji restrictions)
- Presence tracking (cache keys and TTLs)
- Realtime channel (group names, close codes, client reconnect policy)
- Error codes returned by chat services

Import example:
    from chat.constants import MESSAGE_CONFIG, ChatErrorCode
"""

from typing import Final


# =============================================================================
# Message Configuration
# =============================================================================


class MESSAGE_CONFIG:
    """Configuration for message operations."""

    # Content limits
    MAX_CONTENT_LENGTH: Final[int] = 10000  # Characters
    MAX_PAYLOAD_BYTES: Final[int] = 16 * 1024  # Serialized JSON size

    # Application (proposal) payload limits
    MAX_PROPOSAL_LENGTH: Final[int] = 5000
    MAX_DELIVERY_DAYS: Final[int] = 365

    # Paging
    DEFAULT_PAGE_SIZE: Final[int] = 50
    MAX_PAGE_SIZE: Final[int] = 100

    # Directory snapshot preview
    PREVIEW_LENGTH: Final[int] = 200


# =============================================================================
# Reaction Configuration
# =============================================================================


class REACTION_CONFIG:
    """Configuration for message reactions."""

    MAX_EMOJI_LENGTH: Final[int] = 8  # Handles compound emojis

    # Common quick reactions for UI hints (suggestions only, not restrictions)
    QUICK_REACTIONS: Final[tuple] = ("\U0001f44d", "❤️", "\U0001f602", "\U0001f389")


# =============================================================================
# Presence Configuration
# =============================================================================


class PRESENCE_CONFIG:
    """Configuration for presence tracking."""

    # TTL for presence entries (seconds) - how long before considered stale
    PRESENCE_TTL_SECONDS: Final[int] = 90

    # Cache key prefix; full key is "<prefix>:<user_id>"
    KEY_PREFIX_USER_PRESENCE: Final[str] = "presence:user"

    # How often clients should send presence.heartbeat
    HEARTBEAT_INTERVAL_SECONDS: Final[int] = 30


# =============================================================================
# Realtime Configuration
# =============================================================================


class REALTIME_CONFIG:
    """Configuration for the WebSocket realtime channel."""

    # Channel layer group names
    ROOM_GROUP_PREFIX: Final[str] = "chat_"
    USER_GROUP_PREFIX: Final[str] = "user_"

    # WebSocket close codes
    CLOSE_UNAUTHENTICATED: Final[int] = 4001

    # Token transport: ?token=<jwt> or Sec-WebSocket-Protocol: jwt, <jwt>
    TOKEN_QUERY_PARAM: Final[str] = "token"
    TOKEN_SUBPROTOCOL: Final[str] = "jwt"

    # Client reconnect policy (chat.client.realtime)
    RECONNECT_BASE_DELAY_SECONDS: Final[float] = 0.5
    RECONNECT_MAX_DELAY_SECONDS: Final[float] = 30.0
    RECONNECT_MAX_ATTEMPTS: Final[int] = 8

    # REST catch-up after a reconnect (chat.client.session)
    RECONCILE_MAX_ATTEMPTS: Final[int] = 3
    RECONCILE_BASE_DELAY_SECONDS: Final[float] = 0.5
    RECONCILE_MAX_DELAY_SECONDS: Final[float] = 5.0


def room_group_name(chat_id) -> str:
    """Channel layer group for one chat's room."""
    return f"{REALTIME_CONFIG.ROOM_GROUP_PREFIX}{chat_id}"


def user_group_name(user_id) -> str:
    """Channel layer group reaching every session of one user."""
    return f"{REALTIME_CONFIG.USER_GROUP_PREFIX}{user_id}"


# =============================================================================
# Error Codes
# =============================================================================


class ChatErrorCode:
    """
    Machine-readable error codes returned by chat services.

    Grouped by the HTTP status the views map them to.
    """

    # 404
    CHAT_NOT_FOUND: Final[str] = "CHAT_NOT_FOUND"
    USER_NOT_FOUND: Final[str] = "USER_NOT_FOUND"
    MESSAGE_NOT_FOUND: Final[str] = "MESSAGE_NOT_FOUND"

    # 403
    NOT_PARTICIPANT: Final[str] = "NOT_PARTICIPANT"

    # 400
    SAME_USER: Final[str] = "SAME_USER"
    EMPTY_CONTENT: Final[str] = "EMPTY_CONTENT"
    CONTENT_TOO_LONG: Final[str] = "CONTENT_TOO_LONG"
    INVALID_MESSAGE_TYPE: Final[str] = "INVALID_MESSAGE_TYPE"
    PAYLOAD_REQUIRED: Final[str] = "PAYLOAD_REQUIRED"
    PAYLOAD_NOT_ALLOWED: Final[str] = "PAYLOAD_NOT_ALLOWED"
    PAYLOAD_TOO_LARGE: Final[str] = "PAYLOAD_TOO_LARGE"
    INVALID_PAYLOAD: Final[str] = "INVALID_PAYLOAD"
    INVALID_REPLY: Final[str] = "INVALID_REPLY"
    INVALID_EMOJI: Final[str] = "INVALID_EMOJI"
    INVALID_CURSOR: Final[str] = "INVALID_CURSOR"

    # Realtime only
    AUTH_FAILED: Final[str] = "AUTH_FAILED"
    UNKNOWN_EVENT: Final[str] = "UNKNOWN_EVENT"
    INVALID_EVENT: Final[str] = "INVALID_EVENT"
    NOT_JOINED: Final[str] = "NOT_JOINED"

    NOT_FOUND_CODES: Final[frozenset] = frozenset(
        {CHAT_NOT_FOUND, USER_NOT_FOUND, MESSAGE_NOT_FOUND}
    )
    FORBIDDEN_CODES: Final[frozenset] = frozenset({NOT_PARTICIPANT})
