"""
Client side of the realtime channel.

RealtimeChannel keeps one WebSocket to ws/chat/, dispatches server events to
listeners registered with on()/off(), and recovers from dropped connections:

    drop -> "connection.lost"
         -> reconnect with exponential backoff, re-handshake, re-join rooms
         -> "connection.restored"  (or "connection.failed" after the last attempt)

Delivery over the channel is best-effort. Anything missed while disconnected
must be recovered over REST; ChatSessionController does that on
"connection.restored".

Usage:
    channel = RealtimeChannel("wss://api.example.com/ws/chat/", token)
    channel.on("message.created", handle_message)
    await channel.connect()
    await channel.join(chat_id)
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from core.exceptions import PermissionDeniedError, TransportError

from chat.constants import REALTIME_CONFIG

logger = logging.getLogger(__name__)

Listener = Callable[[dict], Any]


class Connection(Protocol):
    """The part of a websockets client connection the channel relies on."""

    async def recv(self) -> str | bytes: ...

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...


ConnectFactory = Callable[[str, list[str]], Awaitable[Connection]]


async def websocket_connect(url: str, subprotocols: list[str]) -> Connection:
    return await websockets.connect(url, subprotocols=subprotocols)


class RealtimeChannel:
    """
    One realtime session with listener registry and automatic reconnect.

    Attributes:
        user_id: Id reported by the server in session.ready
        rooms: Chat ids this channel keeps joined across reconnects
    """

    def __init__(
        self,
        url: str,
        token: str,
        connect: ConnectFactory = websocket_connect,
        base_delay_s: float = REALTIME_CONFIG.RECONNECT_BASE_DELAY_SECONDS,
        max_delay_s: float = REALTIME_CONFIG.RECONNECT_MAX_DELAY_SECONDS,
        max_attempts: int = REALTIME_CONFIG.RECONNECT_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._url = url
        self._token = token
        self._connect = connect
        self._base_delay_s = base_delay_s
        self._max_delay_s = max_delay_s
        self._max_attempts = max_attempts
        self._sleep = sleep

        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._ws: Connection | None = None
        self._reader: asyncio.Task | None = None
        self._closed = False

        self.user_id: int | None = None
        self.rooms: set[str] = set()

    @property
    def connected(self) -> bool:
        return self._ws is not None

    # =========================================================================
    # Listener registry
    # =========================================================================

    def on(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, event: str | None = None) -> int:
        if event is not None:
            return len(self._listeners.get(event, []))
        return sum(len(listeners) for listeners in self._listeners.values())

    async def emit(self, event: str, data: dict) -> None:
        """Call every listener of `event`; a failing listener does not stop the rest."""
        for listener in list(self._listeners.get(event, [])):
            try:
                result = listener(data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Listener for {event} failed")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> None:
        """
        Open the session and start reading events.

        Raises:
            PermissionDeniedError: The server rejected the token
            TransportError: The server could not be reached
        """
        self._closed = False
        await self._open()
        self._reader = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        self._closed = True
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._ws is not None:
            ws, self._ws = self._ws, None
            await ws.close()

    async def _open(self) -> None:
        try:
            ws = await self._connect(
                self._url, [REALTIME_CONFIG.TOKEN_SUBPROTOCOL, self._token]
            )
            raw = await ws.recv()
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            raise TransportError(
                "Could not open realtime session",
                error_code="NETWORK_ERROR",
                details={"original_error": str(e)},
            ) from e

        first = self._decode(raw)
        if first is None:
            await ws.close()
            raise TransportError("Malformed handshake frame", error_code="NETWORK_ERROR")
        if first.get("type") == "auth.failed":
            await ws.close()
            raise PermissionDeniedError(
                first.get("error", "Authentication failed"),
                error_code=first.get("error_code"),
            )
        if first.get("type") != "session.ready":
            await ws.close()
            raise TransportError(f"Unexpected handshake event: {first.get('type')}")

        self._ws = ws
        self.user_id = first.get("user_id")
        for chat_id in sorted(self.rooms):
            await self._send({"type": "chat.join", "chat_id": chat_id})

    async def _read_loop(self) -> None:
        while not self._closed:
            try:
                raw = await self._ws.recv()
            except (ConnectionClosed, OSError):
                if self._closed:
                    return
                if not await self._recover():
                    return
                continue

            event = self._decode(raw)
            if event is None:
                continue
            await self.emit(event.get("type"), event)

    @staticmethod
    def _decode(raw: str | bytes) -> dict | None:
        """Parse one frame; a malformed frame is logged and dropped."""
        try:
            event = json.loads(raw)
        except ValueError:
            logger.warning(f"Dropping malformed realtime frame: {raw[:100]!r}")
            return None
        if not isinstance(event, dict):
            logger.warning(f"Dropping non-object realtime frame: {raw[:100]!r}")
            return None
        return event

    async def _recover(self) -> bool:
        """Reconnect after a drop. Returns False if the channel gave up."""
        self._ws = None
        logger.warning("Realtime connection lost, reconnecting")
        await self.emit("connection.lost", {})

        for attempt in range(1, self._max_attempts + 1):
            delay = min(self._base_delay_s * 2 ** (attempt - 1), self._max_delay_s)
            await self._sleep(delay)
            if self._closed:
                return False
            try:
                await self._open()
            except TransportError as e:
                logger.info(f"Reconnect attempt {attempt} failed: {e}")
                continue
            except PermissionDeniedError as e:
                logger.warning(f"Reconnect rejected: {e}")
                break
            else:
                logger.info(f"Realtime connection restored after {attempt} attempt(s)")
                await self.emit("connection.restored", {"attempts": attempt})
                return True

        await self.emit("connection.failed", {"attempts": self._max_attempts})
        return False

    # =========================================================================
    # Rooms and client events
    # =========================================================================

    async def _send(self, event: dict) -> None:
        if self._ws is None:
            raise TransportError("Realtime channel is not connected")
        try:
            await self._ws.send(json.dumps(event))
        except (ConnectionClosed, OSError) as e:
            raise TransportError("Realtime channel send failed") from e

    async def send(self, event: dict) -> None:
        await self._send(event)

    async def join(self, chat_id: str) -> None:
        """Keep a chat's room joined; sent now if connected, else on reconnect."""
        self.rooms.add(str(chat_id))
        if self.connected:
            await self._send({"type": "chat.join", "chat_id": str(chat_id)})

    async def leave(self, chat_id: str) -> None:
        self.rooms.discard(str(chat_id))
        if self.connected:
            await self._send({"type": "chat.leave", "chat_id": str(chat_id)})

    async def typing(self, chat_id: str, started: bool) -> None:
        event_type = "typing.started" if started else "typing.stopped"
        await self._send({"type": event_type, "chat_id": str(chat_id)})

    async def heartbeat(self) -> None:
        await self._send({"type": "presence.heartbeat"})
