"""
WebSocket consumers for the chat application.

This module implements the realtime channel: one WebSocket per client
session, multiplexing every chat the session joins.

Consumers:
    ChatConsumer: Handles the ws/chat/ connection

Authentication:
    JWTAuthMiddleware attaches the user to self.scope["user"]. A session
    without a valid token is accepted only long enough to receive an
    auth.failed event, then closed with code 4001.

Channel Groups:
    user_<user_id>: Joined on connect; directory and presence events
    chat_<chat_id>: Joined on chat.join after a participant check

Message Types (from client):
    - chat.join / chat.leave {chat_id}
    - typing.started / typing.stopped {chat_id}
    - read.mark {chat_id, up_to}
    - presence.heartbeat

Message Types (to client):
    - session.ready, auth.failed
    - chat.joined, chat.left, chat.updated
    - message.created, message.read, message.reaction
    - typing.started, typing.stopped (never echoed to the typing user)
    - presence.changed
    - error {error, error_code}
"""

from __future__ import annotations

import logging
import uuid

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer

from chat import events
from chat.authorization import ChatAuthorizationService
from chat.constants import (
    PRESENCE_CONFIG,
    REALTIME_CONFIG,
    ChatErrorCode,
    room_group_name,
    user_group_name,
)
from chat.services import ChatDirectoryService, MessageStore, PresenceService

logger = logging.getLogger(__name__)


class ChatConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for real-time chat functionality.

    Handles:
        - Session authentication and presence
        - Joining/leaving chat rooms (participants only)
        - Typing indicators
        - Read marks

    Store mutations (new messages, reads, reactions) are not sent from here;
    the services publish them to the channel layer after commit and the
    handlers below forward them to the socket.

    Attributes:
        user: Authenticated user (None until connect succeeds)
        joined_chats: Ids of chat rooms this session is subscribed to
    """

    CLIENT_EVENTS = {
        "chat.join": "_handle_chat_join",
        "chat.leave": "_handle_chat_leave",
        "typing.started": "_handle_typing",
        "typing.stopped": "_handle_typing",
        "read.mark": "_handle_read_mark",
        "presence.heartbeat": "_handle_heartbeat",
    }

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.user = None
        self.joined_chats: set[str] = set()

    async def connect(self):
        """
        Handle WebSocket connection.

        On success: joins the personal group, marks the user online and
        sends session.ready. Otherwise sends auth.failed and closes.
        """
        subprotocol = None
        if REALTIME_CONFIG.TOKEN_SUBPROTOCOL in self.scope.get("subprotocols", []):
            subprotocol = REALTIME_CONFIG.TOKEN_SUBPROTOCOL
        await self.accept(subprotocol=subprotocol)

        user = self.scope.get("user")
        if user is None or not user.is_authenticated:
            logger.warning("Rejected unauthenticated realtime session")
            await self.send_json(
                {
                    "type": "auth.failed",
                    "error": "Authentication failed",
                    "error_code": ChatErrorCode.AUTH_FAILED,
                }
            )
            await self.close(code=REALTIME_CONFIG.CLOSE_UNAUTHENTICATED)
            return

        self.user = user
        await self.channel_layer.group_add(user_group_name(user.pk), self.channel_name)
        await self._set_presence(online=True)

        await self.send_json(
            {
                "type": "session.ready",
                "user_id": user.pk,
                "heartbeat_interval": PRESENCE_CONFIG.HEARTBEAT_INTERVAL_SECONDS,
            }
        )
        logger.info(f"User {user.pk} opened realtime session {self.channel_name}")

    async def disconnect(self, close_code):
        """Leave every group and drop this session from presence."""
        if self.user is None:
            return

        for chat_id in list(self.joined_chats):
            await self.channel_layer.group_discard(
                room_group_name(chat_id), self.channel_name
            )
        self.joined_chats.clear()

        await self.channel_layer.group_discard(
            user_group_name(self.user.pk), self.channel_name
        )
        await self._set_presence(online=False)
        logger.info(f"User {self.user.pk} closed realtime session (code {close_code})")

    async def receive_json(self, content, **kwargs):
        """
        Dispatch a client event by its "type".

        Args:
            content: Parsed JSON message from client
        """
        if self.user is None:
            return

        event_type = content.get("type") if isinstance(content, dict) else None
        handler_name = self.CLIENT_EVENTS.get(event_type)
        if handler_name is None:
            await self._send_error(
                f"Unknown event type: {event_type}", ChatErrorCode.UNKNOWN_EVENT
            )
            return

        await getattr(self, handler_name)(content)

    # =========================================================================
    # Client events
    # =========================================================================

    async def _handle_chat_join(self, content):
        chat_id = content.get("chat_id")
        if not chat_id:
            await self._send_error("chat_id is required", ChatErrorCode.INVALID_EVENT)
            return

        allowed = await database_sync_to_async(
            ChatAuthorizationService.is_chat_participant
        )(self.user, chat_id)
        if not allowed:
            logger.warning(f"User {self.user.pk} denied joining chat {chat_id}")
            await self._send_error(
                "You are not a participant in this chat",
                ChatErrorCode.NOT_PARTICIPANT,
                chat_id=str(chat_id),
            )
            return

        chat_id = str(uuid.UUID(str(chat_id)))
        await self.channel_layer.group_add(room_group_name(chat_id), self.channel_name)
        self.joined_chats.add(chat_id)

        await self.send_json({"type": "chat.joined", "chat_id": chat_id})
        logger.debug(f"User {self.user.pk} joined chat {chat_id}")

    async def _handle_chat_leave(self, content):
        chat_id = self._joined_chat_id(content)
        if chat_id is not None:
            await self.channel_layer.group_discard(
                room_group_name(chat_id), self.channel_name
            )
            self.joined_chats.discard(chat_id)

        await self.send_json({"type": "chat.left", "chat_id": content.get("chat_id")})

    async def _handle_typing(self, content):
        """Broadcast typing state to the other sessions in the room."""
        chat_id = await self._require_joined(content)
        if chat_id is None:
            return

        await self.channel_layer.group_send(
            room_group_name(chat_id),
            {
                "type": content["type"],
                "chat_id": chat_id,
                "user_id": self.user.pk,
            },
        )

    async def _handle_read_mark(self, content):
        chat_id = await self._require_joined(content)
        if chat_id is None:
            return

        up_to = content.get("up_to")
        if not isinstance(up_to, int) or isinstance(up_to, bool):
            await self._send_error(
                "up_to must be a message id", ChatErrorCode.INVALID_EVENT, chat_id=chat_id
            )
            return

        result = await database_sync_to_async(MessageStore.mark_read)(
            chat_id, up_to, self.user
        )
        if not result:
            await self._send_error(result.error, result.error_code, chat_id=chat_id)

    async def _handle_heartbeat(self, content):
        await database_sync_to_async(self._refresh_presence)()

    # =========================================================================
    # Channel layer events
    # =========================================================================

    async def message_created(self, event):
        await self.send_json(event)

    async def message_read(self, event):
        await self.send_json(event)

    async def message_reaction(self, event):
        await self.send_json(event)

    async def chat_updated(self, event):
        await self.send_json(event)

    async def presence_changed(self, event):
        await self.send_json(event)

    async def typing_started(self, event):
        if event["user_id"] != self.user.pk:
            await self.send_json(event)

    async def typing_stopped(self, event):
        if event["user_id"] != self.user.pk:
            await self.send_json(event)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _joined_chat_id(self, content) -> str | None:
        raw = content.get("chat_id")
        if not raw:
            return None
        try:
            chat_id = str(uuid.UUID(str(raw)))
        except ValueError:
            return None
        return chat_id if chat_id in self.joined_chats else None

    async def _require_joined(self, content) -> str | None:
        chat_id = self._joined_chat_id(content)
        if chat_id is None:
            await self._send_error(
                "Join the chat before sending events to it",
                ChatErrorCode.NOT_JOINED,
                chat_id=content.get("chat_id"),
            )
        return chat_id

    async def _send_error(self, error: str, error_code: str, **extra):
        await self.send_json(
            {"type": "error", "error": error, "error_code": error_code, **extra}
        )

    async def _set_presence(self, online: bool):
        await database_sync_to_async(self._apply_presence)(online)

    def _apply_presence(self, online: bool):
        """Update the connection counter; announce the flip to chat partners."""
        if online:
            result = PresenceService.connect(self.user.pk)
        else:
            result = PresenceService.disconnect(self.user.pk)

        if result.success and result.data:
            events.publish_presence_changed(
                self.user.pk, online, ChatDirectoryService.partner_ids(self.user)
            )

    def _refresh_presence(self):
        result = PresenceService.heartbeat(self.user.pk)
        if result.success and result.data:
            events.publish_presence_changed(
                self.user.pk, True, ChatDirectoryService.partner_ids(self.user)
            )
