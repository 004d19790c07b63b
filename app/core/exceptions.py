"""
Base exception classes for application-wide error handling.

This module provides the exception hierarchy shared by the server-side
services and the chat client:
- Consistent error responses across the application
- Machine-readable error codes for client handling
- A single taxonomy the client re-raises from HTTP responses

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Input validation failures
    ├── NotFoundError - Resource not found
    ├── PermissionDeniedError - Authorization failures (non-participants)
    ├── ConflictError - State conflicts (duplicates, concurrent modifications)
    ├── RateLimitError - Rate limit exceeded
    └── TransportError - Network or realtime connection failures

Usage:
    from core.exceptions import ValidationError, NotFoundError

    # Raise with message only
    raise ValidationError("Message content cannot be empty")

    # Raise with error code for client handling
    raise ValidationError("Message too long", error_code="CONTENT_TOO_LONG")

    # Convert to dict for API response
    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=400)

Note:
    These exceptions are for domain/business logic errors.
    DRF handles API-layer exceptions (serialization, authentication, etc.).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, metadata, etc.)

    Example:
        try:
            chat = await api.get_chat(chat_id)
        except NotFoundError as e:
            logger.warning(f"Chat not found: {e.error_code}")
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Returns:
            Dict with error, error_code, and details keys
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for:
    - Empty or oversized message content
    - Malformed structured payloads
    - Business rule violations (chatting with yourself)

    Example:
        raise ValidationError(
            "Message content cannot be empty",
            error_code="EMPTY_CONTENT",
        )
    """

    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Example:
        raise NotFoundError(
            f"Chat {chat_id} not found",
            error_code="CHAT_NOT_FOUND",
            details={"chat_id": chat_id},
        )
    """

    default_error_code: str = "NOT_FOUND"


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when user lacks permission for an operation.

    In the chat domain this is the authorization failure raised when a user
    who is not a participant tries to read from or write to a chat.

    Note:
        For authentication failures (missing/invalid token), use DRF's
        AuthenticationFailed. Use this for authorization failures.
    """

    default_error_code: str = "PERMISSION_DENIED"


class ConflictError(BaseApplicationError):
    """
    Raised when operation conflicts with current resource state.

    Use for:
    - Duplicate entries (unique constraint violations)
    - Concurrent modification conflicts
    - Invalid state transitions

    Note:
        HTTP 409 Conflict is the appropriate status for these errors.
        Chat get-or-create races are resolved by re-reading and never
        surface this error.
    """

    default_error_code: str = "CONFLICT"


class RateLimitError(BaseApplicationError):
    """
    Raised when rate limit is exceeded.

    Note:
        Include retry_after in details when possible to help clients.
        HTTP 429 Too Many Requests is the appropriate status.
    """

    default_error_code: str = "RATE_LIMIT_EXCEEDED"


class TransportError(BaseApplicationError):
    """
    Raised when a request or realtime connection fails at the network level.

    Unlike the other errors this never originates from a server response:
    the request either did not reach the server or the response was lost.
    The chat client recovers from these locally (retry, reconnect and
    reconcile) and only surfaces them once recovery is exhausted.

    Example:
        try:
            response = await self._client.post("/chat/messages/", json=body)
        except httpx.TransportError as e:
            raise TransportError(
                "Could not reach chat server",
                error_code="NETWORK_ERROR",
                details={"original_error": str(e)},
            ) from e
    """

    default_error_code: str = "TRANSPORT_ERROR"
