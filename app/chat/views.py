"""
Views for chat API.

This module provides REST API endpoints for the chat system:
- ChatViewSet: Chat directory, get-or-create, detail and message pages
- MessageCreateView: Append a message
- MarkReadView: Mark messages read
- ReactionToggleView: Toggle an emoji reaction
- OnlineUsersView: Presence of the caller's chat partners

URL Structure:
    /api/v1/chat/chats/                           GET, POST
    /api/v1/chat/chats/{id}/                      GET
    /api/v1/chat/chats/{id}/messages/             GET (?after, ?before, ?limit)
    /api/v1/chat/messages/                        POST
    /api/v1/chat/messages/mark-read/              PUT
    /api/v1/chat/messages/{id}/reactions/         POST
    /api/v1/chat/online-users/                    GET

Design Decisions:
    - All operations use the service layer for business logic
    - Participation is enforced by the services, so views never load
      a chat the caller is not part of
    - Service error codes map to HTTP status in one place (error_response)
"""

from __future__ import annotations

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import (
    OpenApiParameter,
    OpenApiResponse,
    extend_schema,
    extend_schema_view,
)
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.services import ServiceResult

from chat.constants import ChatErrorCode
from chat.serializers import (
    ChatCreateSerializer,
    ChatDetailSerializer,
    ChatSummarySerializer,
    MarkReadSerializer,
    MessageCreateSerializer,
    MessageSerializer,
    ReactionToggleSerializer,
)
from chat.services import ChatDirectoryService, MessageStore, PresenceService, ReactionService


def error_response(result: ServiceResult) -> Response:
    """Translate a failed ServiceResult into an error Response."""
    if result.error_code in ChatErrorCode.NOT_FOUND_CODES:
        status_code = status.HTTP_404_NOT_FOUND
    elif result.error_code in ChatErrorCode.FORBIDDEN_CODES:
        status_code = status.HTTP_403_FORBIDDEN
    elif result.error_code == "presence_error":
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        status_code = status.HTTP_400_BAD_REQUEST

    return Response(
        {"error": result.error, "error_code": result.error_code},
        status=status_code,
    )


def _int_param(request, name: str) -> int | None:
    """Read an optional integer query parameter; raises ValueError if malformed."""
    raw = request.query_params.get(name)
    if raw in (None, ""):
        return None
    return int(raw)


# =============================================================================
# Chats
# =============================================================================


@extend_schema_view(
    list=extend_schema(
        operation_id="list_chats",
        summary="List chats",
        responses=ChatSummarySerializer(many=True),
        tags=["Chat - Chats"],
    ),
    create=extend_schema(
        operation_id="get_or_create_chat",
        summary="Get or create chat",
        request=ChatCreateSerializer,
        responses={
            200: OpenApiResponse(
                response=ChatDetailSerializer, description="Existing chat returned"
            ),
            201: OpenApiResponse(response=ChatDetailSerializer, description="Chat created"),
            400: OpenApiResponse(description="Cannot chat with yourself"),
            404: OpenApiResponse(description="User not found"),
        },
        tags=["Chat - Chats"],
    ),
    retrieve=extend_schema(
        operation_id="get_chat",
        summary="Get chat",
        responses={
            200: ChatDetailSerializer,
            403: OpenApiResponse(description="Not a participant"),
            404: OpenApiResponse(description="Chat not found"),
        },
        tags=["Chat - Chats"],
    ),
)
class ChatViewSet(viewsets.ViewSet):
    """
    ViewSet for chat directory operations.

    list:
        The caller's chats, most recently active first, each with the
        caller's unread count and the other participant.

    create:
        Get or create the chat with another user. Returns 201 when a new
        chat was created, 200 when the existing one is returned.

    retrieve:
        Chat detail including the partner's online status.

    messages:
        One page of the message log, oldest first.
    """

    permission_classes = [IsAuthenticated]

    def list(self, request):
        chats = ChatDirectoryService.list_chats(request.user)
        serializer = ChatSummarySerializer(chats, many=True, context={"user": request.user})
        return Response(serializer.data)

    def create(self, request):
        serializer = ChatCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ChatDirectoryService.get_or_create_chat(
            initiator=request.user,
            participant_id=serializer.validated_data["participant_id"],
            gig_id=serializer.validated_data.get("gig_id"),
        )
        if not result.success:
            return error_response(result)

        chat, created = result.data
        output = ChatDetailSerializer(chat, context={"user": request.user})
        return Response(
            output.data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    def retrieve(self, request, pk=None):
        result = ChatDirectoryService.get_chat(pk, request.user)
        if not result.success:
            return error_response(result)

        return Response(ChatDetailSerializer(result.data, context={"user": request.user}).data)

    @extend_schema(
        operation_id="list_chat_messages",
        summary="Page through chat messages",
        description=(
            "Messages are always returned oldest first. Use `after` to catch up "
            "from a known sequence, `before` to scroll back, or neither for the "
            "latest page."
        ),
        parameters=[
            OpenApiParameter("after", OpenApiTypes.INT, OpenApiParameter.QUERY),
            OpenApiParameter("before", OpenApiTypes.INT, OpenApiParameter.QUERY),
            OpenApiParameter("limit", OpenApiTypes.INT, OpenApiParameter.QUERY),
        ],
        responses={
            200: OpenApiResponse(description="Message page"),
            400: OpenApiResponse(description="Invalid cursor"),
            403: OpenApiResponse(description="Not a participant"),
            404: OpenApiResponse(description="Chat not found"),
        },
        tags=["Chat - Messages"],
    )
    @action(detail=True, methods=["get"])
    def messages(self, request, pk=None):
        try:
            after = _int_param(request, "after")
            before = _int_param(request, "before")
            limit = _int_param(request, "limit")
        except ValueError:
            return Response(
                {
                    "error": "after, before and limit must be integers",
                    "error_code": ChatErrorCode.INVALID_CURSOR,
                },
                status=status.HTTP_400_BAD_REQUEST,
            )

        result = MessageStore.page(pk, request.user, after=after, before=before, limit=limit)
        if not result.success:
            return error_response(result)

        page = result.data
        return Response(
            {
                "results": MessageSerializer(page.messages, many=True).data,
                "has_more": page.has_more,
                "first_sequence": page.first_sequence,
                "last_sequence": page.last_sequence,
            }
        )


# =============================================================================
# Messages
# =============================================================================


class MessageCreateView(APIView):
    """
    Append a message to a chat.

    POST /api/v1/chat/messages/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="send_message",
        summary="Send message",
        request=MessageCreateSerializer,
        responses={
            201: MessageSerializer,
            400: OpenApiResponse(description="Invalid content or payload"),
            403: OpenApiResponse(description="Not a participant"),
            404: OpenApiResponse(description="Chat not found"),
        },
        tags=["Chat - Messages"],
    )
    def post(self, request):
        serializer = MessageCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = MessageStore.append(
            chat_id=data["chat_id"],
            sender=request.user,
            content=data["content"],
            message_type=data["message_type"],
            payload=data["payload"],
            reply_to_id=data["reply_to_id"],
        )
        if not result.success:
            return error_response(result)

        return Response(MessageSerializer(result.data).data, status=status.HTTP_201_CREATED)


class MarkReadView(APIView):
    """
    Mark the partner's messages read.

    PUT /api/v1/chat/messages/mark-read/

    Payload:
        chat_id: Chat UUID
        message_ids: Ids to mark (everything up to the newest is marked), or
        up_to_message_id: Upper bound message id
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="mark_messages_read",
        summary="Mark messages read",
        request=MarkReadSerializer,
        responses={
            200: OpenApiResponse(description="Number of messages newly marked read"),
            403: OpenApiResponse(description="Not a participant"),
            404: OpenApiResponse(description="Chat or message not found"),
        },
        tags=["Chat - Messages"],
    )
    def put(self, request):
        serializer = MarkReadSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        if "message_ids" in data:
            result = MessageStore.mark_read_messages(
                data["chat_id"], data["message_ids"], request.user
            )
        else:
            result = MessageStore.mark_read(
                data["chat_id"], data["up_to_message_id"], request.user
            )
        if not result.success:
            return error_response(result)

        return Response({"updated": result.data})


class ReactionToggleView(APIView):
    """
    Toggle an emoji reaction on a message.

    POST /api/v1/chat/messages/{id}/reactions/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="toggle_reaction",
        summary="Toggle reaction on message",
        description=(
            "If the caller already reacted with this emoji the reaction is "
            "removed, otherwise it is added."
        ),
        request=ReactionToggleSerializer,
        responses={
            200: OpenApiResponse(description="Toggle result with added flag"),
            400: OpenApiResponse(description="Invalid emoji"),
            403: OpenApiResponse(description="Not a participant"),
            404: OpenApiResponse(description="Message not found"),
        },
        tags=["Chat - Reactions"],
    )
    def post(self, request, message_id):
        serializer = ReactionToggleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ReactionService.toggle_reaction(
            user=request.user,
            message_id=message_id,
            emoji=serializer.validated_data["emoji"],
        )
        if not result.success:
            return error_response(result)

        added, _ = result.data
        return Response(
            {
                "added": added,
                "message_id": message_id,
                "emoji": serializer.validated_data["emoji"],
            }
        )


# =============================================================================
# Presence
# =============================================================================


class OnlineUsersView(APIView):
    """
    Presence of everyone the caller has a chat with.

    GET /api/v1/chat/online-users/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="list_online_users",
        summary="Chat partners' presence",
        responses={
            200: OpenApiResponse(description="List of {user_id, online}"),
            503: OpenApiResponse(description="Presence store unavailable"),
        },
        tags=["Chat - Presence"],
    )
    def get(self, request):
        result = PresenceService.get_bulk_presence(
            ChatDirectoryService.partner_ids(request.user)
        )
        if not result.success:
            return error_response(result)

        return Response(result.data)
