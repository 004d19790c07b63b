"""
Async REST client for the chat API.

Thin wrappers over /api/v1/chat/ endpoints. Responses are returned as the
decoded JSON the server sends; failures are raised as core.exceptions
subclasses so callers handle REST and service errors the same way.

Status mapping:
    400 -> ValidationError
    401, 403 -> PermissionDeniedError
    404 -> NotFoundError
    409 -> ConflictError
    429 -> RateLimitError
    5xx and network failures -> TransportError (safe to retry)

Usage:
    async with ChatApiClient("https://api.example.com/api/v1/", token) as api:
        chats = await api.list_chats()
        message = await api.send_message(chat_id, "Hello!")
"""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any

import httpx

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    TransportError,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_ERRORS: dict[int, type[BaseApplicationError]] = {
    400: ValidationError,
    401: PermissionDeniedError,
    403: PermissionDeniedError,
    404: NotFoundError,
    409: ConflictError,
    429: RateLimitError,
}


class ChatApiClient:
    """Bearer-authenticated client for the chat REST API."""

    def __init__(self, base_url: str, token: str, timeout_s: float = 10.0) -> None:
        self._base_url = base_url
        self._token = token
        self._timeout_s = timeout_s
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self._base_url, timeout=self._timeout_s)
        return self._client

    def set_token(self, token: str) -> None:
        """Use a refreshed access token for subsequent requests."""
        self._token = token

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._token}"}
        try:
            response = await self._get_client().request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"{method} {url} failed: {e}")
            raise TransportError(
                "Could not reach chat server",
                error_code="NETWORK_ERROR",
                details={"original_error": str(e)},
            ) from e

        if response.is_success:
            return response
        raise self._error_from_response(response)

    @staticmethod
    def _error_from_response(response: httpx.Response) -> BaseApplicationError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        message = body.get("error") or body.get("detail") or response.reason_phrase
        error_code = body.get("error_code")

        if response.status_code >= 500:
            return TransportError(
                f"Chat server error ({response.status_code})",
                error_code="SERVER_ERROR",
                details={"status_code": response.status_code},
            )

        error_class = STATUS_ERRORS.get(response.status_code, ValidationError)
        details = {key: value for key, value in body.items() if key not in ("error", "error_code")}
        return error_class(str(message), error_code=error_code, details=details)

    # =========================================================================
    # Chats
    # =========================================================================

    async def list_chats(self) -> list[dict]:
        response = await self._request("GET", "chat/chats/")
        return response.json()

    async def get_or_create_chat(
        self, participant_id: int, gig_id: str | None = None
    ) -> tuple[dict, bool]:
        """Return (chat, created)."""
        body: dict[str, Any] = {"participant_id": participant_id}
        if gig_id:
            body["gig_id"] = gig_id
        response = await self._request("POST", "chat/chats/", json=body)
        return response.json(), response.status_code == 201

    async def get_chat(self, chat_id: str) -> dict:
        response = await self._request("GET", f"chat/chats/{chat_id}/")
        return response.json()

    async def page(
        self,
        chat_id: str,
        after: int | None = None,
        before: int | None = None,
        limit: int | None = None,
    ) -> dict:
        """
        Fetch one page of messages (oldest first).

        Returns:
            {"results": [...], "has_more", "first_sequence", "last_sequence"}
        """
        params = {
            key: value
            for key, value in (("after", after), ("before", before), ("limit", limit))
            if value is not None
        }
        response = await self._request("GET", f"chat/chats/{chat_id}/messages/", params=params)
        return response.json()

    # =========================================================================
    # Messages
    # =========================================================================

    async def send_message(
        self,
        chat_id: str,
        content: str,
        message_type: str = "text",
        payload: dict | None = None,
        reply_to_id: int | None = None,
    ) -> dict:
        body: dict[str, Any] = {
            "chat_id": str(chat_id),
            "content": content,
            "message_type": message_type,
        }
        if payload is not None:
            body["payload"] = payload
        if reply_to_id is not None:
            body["reply_to_id"] = reply_to_id
        response = await self._request("POST", "chat/messages/", json=body)
        return response.json()

    async def mark_read(self, chat_id: str, up_to_message_id: int) -> int:
        """Return how many messages were newly marked read."""
        response = await self._request(
            "PUT",
            "chat/messages/mark-read/",
            json={"chat_id": str(chat_id), "up_to_message_id": up_to_message_id},
        )
        return response.json()["updated"]

    async def toggle_reaction(self, message_id: int, emoji: str) -> dict:
        response = await self._request(
            "POST", f"chat/messages/{message_id}/reactions/", json={"emoji": emoji}
        )
        return response.json()

    async def online_users(self) -> list[dict]:
        response = await self._request("GET", "chat/online-users/")
        return response.json()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> ChatApiClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
