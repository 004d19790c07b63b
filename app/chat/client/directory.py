"""
Client-side cache of the chat directory.

Holds chat summaries keyed by chat id (so a chat is listed once no matter
how many updates arrive), ordered like the server orders list_chats, and
kept current by chat.updated events from the realtime channel.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from core.exceptions import BaseApplicationError

from chat.client.api import ChatApiClient
from chat.client.realtime import RealtimeChannel

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _parse(value: str | None) -> datetime:
    if not value:
        return _EPOCH
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _sort_key(summary: dict) -> tuple:
    last_message = summary.get("last_message")
    last_at = _parse(last_message["created_at"]) if last_message else _EPOCH
    return (
        last_message is not None,
        last_at,
        _parse(summary.get("created_at")),
        summary["id"],
    )


class ChatDirectory:
    """
    Chat list for the signed-in user.

    Attributes:
        load_error: The error from the last failed refresh, or None. When
            set the list is empty so the UI can show an empty state with a
            retry action.
    """

    def __init__(self, api: ChatApiClient, channel: RealtimeChannel | None = None) -> None:
        self.api = api
        self.channel = channel
        self.load_error: BaseApplicationError | None = None
        self._chats: dict[str, dict] = {}

        if channel is not None:
            channel.on("chat.updated", self._on_chat_updated)

    @property
    def chats(self) -> list[dict]:
        return sorted(self._chats.values(), key=_sort_key, reverse=True)

    @property
    def total_unread(self) -> int:
        return sum(chat.get("unread_count", 0) for chat in self._chats.values())

    def get(self, chat_id: str) -> dict | None:
        return self._chats.get(str(chat_id))

    async def refresh(self) -> bool:
        """Reload from the server. Returns False (and sets load_error) on failure."""
        try:
            summaries = await self.api.list_chats()
        except BaseApplicationError as e:
            logger.warning(f"Could not load chats: {e}")
            self._chats = {}
            self.load_error = e
            return False

        self.load_error = None
        self._chats = {summary["id"]: summary for summary in summaries}
        return True

    def apply(self, summary: dict) -> None:
        """Insert or replace one summary."""
        self._chats[summary["id"]] = summary

    def _on_chat_updated(self, event: dict) -> None:
        self.apply(event["chat"])

    def close(self) -> None:
        if self.channel is not None:
            self.channel.off("chat.updated", self._on_chat_updated)
