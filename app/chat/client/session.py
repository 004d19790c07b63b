"""
Client-side coordinator for one open conversation.

State machine:
    IDLE -> LOADING -> READY <-> SENDING
    READY -> RECONCILING -> READY      (after a realtime gap)
    any -> CLOSED

The controller merges three sources into one ordered view: REST pages,
realtime message.created events and its own optimistic (pending) sends.
Confirmed messages are keyed by server id, so a message that arrives both
as a POST response and as a realtime event is held once.

Catch-up over REST (after joining a room and after every reconnect) is
retried a few times with backoff. If it still fails the session returns to
READY with reconcile_error set; the UI may call reconcile() again.

Usage:
    session = ChatSessionController(api, channel)
    await session.open(chat_id)
    await session.send("Hello!")
    await session.mark_read()
    await session.close()
"""

from __future__ import annotations

import asyncio
import enum
import itertools
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from core.exceptions import BaseApplicationError, TransportError

from chat.client.api import ChatApiClient
from chat.client.realtime import RealtimeChannel
from chat.constants import REALTIME_CONFIG

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    SENDING = "sending"
    RECONCILING = "reconciling"
    CLOSED = "closed"


class PendingStatus:
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class PendingMessage:
    """An optimistic local message not yet confirmed by the server."""

    local_id: str
    content: str
    message_type: str
    payload: dict | None
    order: int
    status: str = PendingStatus.PENDING

    def as_dict(self) -> dict:
        return {
            "local_id": self.local_id,
            "content": self.content,
            "message_type": self.message_type,
            "payload": self.payload,
            "status": self.status,
        }


class ChatSessionController:
    """
    Optimistic, self-reconciling view of one chat.

    Attributes:
        state: Current SessionState
        chat_id: Open chat (None until open)
        chat: Chat detail as returned by the API
        reconcile_error: Last catch-up failure, cleared on success
    """

    def __init__(
        self,
        api: ChatApiClient,
        channel: RealtimeChannel,
        page_size: int = 50,
        reconcile_attempts: int = REALTIME_CONFIG.RECONCILE_MAX_ATTEMPTS,
        reconcile_base_delay_s: float = REALTIME_CONFIG.RECONCILE_BASE_DELAY_SECONDS,
        reconcile_max_delay_s: float = REALTIME_CONFIG.RECONCILE_MAX_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.api = api
        self.channel = channel
        self.page_size = page_size
        self._reconcile_attempts = reconcile_attempts
        self._reconcile_base_delay_s = reconcile_base_delay_s
        self._reconcile_max_delay_s = reconcile_max_delay_s
        self._sleep = sleep

        self.state = SessionState.IDLE
        self.chat_id: str | None = None
        self.chat: dict | None = None
        self.reconcile_error: BaseApplicationError | None = None

        self._confirmed: dict[int, dict] = {}
        self._pending: dict[str, PendingMessage] = {}
        self._order = itertools.count()
        self._generation = 0
        self._subscriptions: list[tuple[str, object]] = []
        self._queued_read: dict | None = None
        self._read_sequence = 0

    # =========================================================================
    # View
    # =========================================================================

    @property
    def messages(self) -> list[dict]:
        """Confirmed messages by (sequence, id), then pending/failed by creation order."""
        confirmed = sorted(
            self._confirmed.values(), key=lambda m: (m["sequence"], m["id"])
        )
        pending = sorted(self._pending.values(), key=lambda p: p.order)
        return confirmed + [entry.as_dict() for entry in pending]

    @property
    def pending(self) -> list[PendingMessage]:
        return sorted(self._pending.values(), key=lambda p: p.order)

    def _merge(self, messages: list[dict]) -> None:
        for message in messages:
            if message["id"] not in self._confirmed:
                self._confirmed[message["id"]] = message

    def _last_sequence(self) -> int:
        return max((m["sequence"] for m in self._confirmed.values()), default=0)

    # =========================================================================
    # Open / close
    # =========================================================================

    async def open(self, chat_id: str) -> bool:
        """
        Load a chat and subscribe to its events.

        A newer open() supersedes an older one still in flight; the older
        call's results are discarded and it returns False.

        The first page is fetched before the room is joined, so one forward
        page fetch after joining picks up anything posted in between. A
        failed join or catch-up still ends in READY: the room stays in
        channel.rooms for the next reconnect and reconcile_error is set.
        """
        self._generation += 1
        generation = self._generation

        if self.chat_id is not None:
            await self._detach()

        self.state = SessionState.LOADING
        self.chat_id = str(chat_id)

        try:
            chat = await self.api.get_chat(chat_id)
            page = await self.api.page(chat_id, limit=self.page_size)
        except BaseApplicationError:
            if generation != self._generation:
                return False
            self.state = SessionState.IDLE
            raise

        if generation != self._generation:
            logger.debug(f"Discarding stale load of chat {chat_id}")
            return False

        self.chat = chat
        self._confirmed = {}
        self._pending = {}
        self._queued_read = None
        self._read_sequence = 0
        self.reconcile_error = None
        self._merge(page["results"])

        self._subscribe()
        try:
            await self.channel.join(self.chat_id)
        except TransportError:
            logger.info(f"chat.join for {self.chat_id} not sent, will join on reconnect")

        try:
            if not await self._fetch_forward(generation):
                return False
        except BaseApplicationError as e:
            if generation != self._generation:
                return False
            self.reconcile_error = e
            logger.info(f"Catch-up after opening chat {self.chat_id} failed: {e.message}")

        self.state = SessionState.READY
        return True

    async def close(self) -> None:
        """Flush the read mark, leave the room and drop every listener."""
        if self.state is SessionState.CLOSED:
            return

        self._generation += 1
        await self._flush_read()
        await self._detach()
        self.state = SessionState.CLOSED

    async def _detach(self) -> None:
        for event, listener in self._subscriptions:
            self.channel.off(event, listener)
        self._subscriptions = []

        if self.chat_id is not None:
            try:
                await self.channel.leave(self.chat_id)
            except TransportError:
                logger.debug(f"Could not send chat.leave for {self.chat_id}")

    def _subscribe(self) -> None:
        for event, listener in (
            ("message.created", self._on_message_created),
            ("message.read", self._on_message_read),
            ("connection.lost", self._on_connection_lost),
            ("connection.restored", self._on_connection_restored),
        ):
            self.channel.on(event, listener)
            self._subscriptions.append((event, listener))

    # =========================================================================
    # Sending
    # =========================================================================

    async def send(
        self,
        content: str,
        message_type: str = "text",
        payload: dict | None = None,
    ) -> dict | None:
        """
        Send a message optimistically.

        Returns:
            The server message, or None if the network failed. In that case
            the entry stays in the view as "failed" until retry().

        Raises:
            ValidationError, PermissionDeniedError, NotFoundError: The server
                refused the message; the pending entry is removed
        """
        self._require_open()

        entry = PendingMessage(
            local_id=uuid.uuid4().hex,
            content=content,
            message_type=message_type,
            payload=payload,
            order=next(self._order),
        )
        self._pending[entry.local_id] = entry
        return await self._deliver(entry)

    async def retry(self, local_id: str) -> dict | None:
        """Resend a failed message."""
        self._require_open()

        entry = self._pending.get(local_id)
        if entry is None or entry.status != PendingStatus.FAILED:
            raise KeyError(f"No failed message with local id {local_id}")
        return await self._deliver(entry)

    async def _deliver(self, entry: PendingMessage) -> dict | None:
        entry.status = PendingStatus.PENDING
        if self.state is SessionState.READY:
            self.state = SessionState.SENDING

        try:
            message = await self.api.send_message(
                self.chat_id, entry.content, entry.message_type, entry.payload
            )
        except TransportError:
            entry.status = PendingStatus.FAILED
            logger.info(f"Send of {entry.local_id} failed, kept for retry")
            return None
        except BaseApplicationError:
            self._pending.pop(entry.local_id, None)
            raise
        finally:
            if self.state is SessionState.SENDING:
                self.state = SessionState.READY

        self._pending.pop(entry.local_id, None)
        self._merge([message])
        return message

    def _require_open(self) -> None:
        if self.state in (SessionState.IDLE, SessionState.LOADING, SessionState.CLOSED):
            raise RuntimeError(f"Chat session is {self.state.value}")

    # =========================================================================
    # Read marks
    # =========================================================================

    async def mark_read(self) -> None:
        """
        Queue a read mark up to the newest message from the other side.

        Flushed immediately when READY, otherwise on the next flush or close().
        """
        if self.chat is None:
            return

        other_id = self.chat["other_participant"]["id"]
        incoming = [
            m
            for m in self._confirmed.values()
            if m["sender_id"] is None or m["sender_id"] == other_id
        ]
        if not incoming:
            return

        newest = max(incoming, key=lambda m: (m["sequence"], m["id"]))
        if newest["sequence"] <= self._read_sequence:
            return

        self._queued_read = newest
        if self.state is SessionState.READY:
            await self._flush_read()

    async def _flush_read(self) -> None:
        target = self._queued_read
        if target is None or self.chat_id is None:
            return

        self._queued_read = None
        try:
            await self.api.mark_read(self.chat_id, target["id"])
        except TransportError:
            self._queued_read = target
            logger.info(f"Read mark for chat {self.chat_id} deferred, network failed")
            return
        self._read_sequence = max(self._read_sequence, target["sequence"])

    # =========================================================================
    # Realtime events and reconciliation
    # =========================================================================

    async def _on_message_created(self, event: dict) -> None:
        if event.get("chat_id") != self.chat_id:
            return
        self._merge([event["message"]])

    async def _on_message_read(self, event: dict) -> None:
        if event.get("chat_id") != self.chat_id:
            return
        for message in self._confirmed.values():
            if (
                message["sequence"] <= event["up_to_sequence"]
                and message["sender_id"] != event["reader_id"]
            ):
                message["is_read"] = True

    async def _on_connection_lost(self, event: dict) -> None:
        if self.state in (SessionState.READY, SessionState.SENDING):
            self.state = SessionState.RECONCILING

    async def _on_connection_restored(self, event: dict) -> None:
        if self.state is SessionState.RECONCILING:
            await self.reconcile()

    async def reconcile(self) -> bool:
        """
        Catch up over REST from the newest known sequence.

        Fetches forward pages until has_more is false and merges them.
        Network failures are retried with exponential backoff up to
        reconcile_attempts times; other API errors are not retried. Either
        way the session returns to READY and flushes any queued read mark.

        Returns:
            True if the view is caught up, False if reconcile_error was set
            (or the chat was closed or replaced meanwhile)
        """
        generation = self._generation
        self.state = SessionState.RECONCILING
        self.reconcile_error = None

        for attempt in range(1, self._reconcile_attempts + 1):
            try:
                if not await self._fetch_forward(generation):
                    return False
                self.reconcile_error = None
                break
            except TransportError as e:
                self.reconcile_error = e
                if attempt == self._reconcile_attempts:
                    break
                delay = min(
                    self._reconcile_base_delay_s * 2 ** (attempt - 1),
                    self._reconcile_max_delay_s,
                )
                logger.info(
                    f"Catch-up of chat {self.chat_id} failed "
                    f"(attempt {attempt}/{self._reconcile_attempts}), retrying in {delay}s"
                )
                await self._sleep(delay)
                if generation != self._generation:
                    return False
            except BaseApplicationError as e:
                self.reconcile_error = e
                break

        if generation != self._generation:
            return False

        self.state = SessionState.READY
        if self.reconcile_error is None:
            logger.debug(f"Reconciled chat {self.chat_id} up to #{self._last_sequence()}")
        else:
            logger.warning(
                f"Catch-up of chat {self.chat_id} gave up: {self.reconcile_error.error_code}"
            )
        await self._flush_read()
        return self.reconcile_error is None

    async def _fetch_forward(self, generation: int) -> bool:
        """Merge every page after the newest known sequence. False if superseded."""
        after = self._last_sequence()
        while True:
            page = await self.api.page(self.chat_id, after=after, limit=self.page_size)
            if generation != self._generation:
                return False
            self._merge(page["results"])
            if not page["has_more"] or page["last_sequence"] is None:
                return True
            after = page["last_sequence"]
