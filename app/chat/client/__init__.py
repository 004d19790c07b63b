"""
Async client for the chat API and realtime channel.

Components:
    ChatApiClient: REST calls (httpx), errors raised as core.exceptions
    RealtimeChannel: WebSocket session (websockets) with reconnect
    ChatSessionController: Optimistic view of one open chat
    ChatDirectory: Cached chat list kept current by chat.updated events
"""

from .api import ChatApiClient
from .directory import ChatDirectory
from .realtime import RealtimeChannel
from .session import ChatSessionController, PendingStatus, SessionState

__all__ = [
    "ChatApiClient",
    "ChatDirectory",
    "ChatSessionController",
    "PendingStatus",
    "RealtimeChannel",
    "SessionState",
]
