"""
Tests for the realtime channel (ChatConsumer behind JWTAuthMiddleware).

This module tests:
- Session authentication (query string and subprotocol tokens)
- Room joins restricted to participants
- Delivery of store events published after commit
- Typing indicators, read marks and presence

Testing Notes:
    Consumers run database work in worker threads, so these tests use
    transactional databases. The in-memory channel layer from the root
    conftest stands in for Redis.
"""

import pytest
from channels.db import database_sync_to_async
from channels.testing import WebsocketCommunicator
from django.core.cache import cache
from rest_framework_simplejwt.tokens import RefreshToken

from chat.constants import PRESENCE_CONFIG, REALTIME_CONFIG, ChatErrorCode
from chat.consumers import ChatConsumer
from chat.middleware import JWTAuthMiddleware
from chat.services import MessageStore, PresenceService

pytestmark = [pytest.mark.anyio, pytest.mark.django_db(transaction=True)]

application = JWTAuthMiddleware(ChatConsumer.as_asgi())


# =============================================================================
# Helpers
# =============================================================================


def token_for(user) -> str:
    return str(RefreshToken.for_user(user).access_token)


@pytest.fixture
def tokens(client_user, freelancer, outsider):
    return {
        "client": token_for(client_user),
        "freelancer": token_for(freelancer),
        "outsider": token_for(outsider),
    }


async def open_session(token: str) -> WebsocketCommunicator:
    communicator = WebsocketCommunicator(application, f"/ws/chat/?token={token}")
    connected, _ = await communicator.connect()
    assert connected
    ready = await communicator.receive_json_from()
    assert ready["type"] == "session.ready"
    return communicator


async def receive_event(communicator, event_type: str, timeout: float = 2) -> dict:
    """Receive until an event of the given type arrives."""
    while True:
        event = await communicator.receive_json_from(timeout=timeout)
        if event["type"] == event_type:
            return event


async def join(communicator, chat) -> dict:
    await communicator.send_json_to({"type": "chat.join", "chat_id": str(chat.pk)})
    while True:
        event = await communicator.receive_json_from()
        if event["type"] != "presence.changed":
            return event


append = database_sync_to_async(MessageStore.append)


# =============================================================================
# Authentication
# =============================================================================


class TestSessionAuthentication:
    async def test_query_token_opens_session(self, tokens, client_user):
        communicator = WebsocketCommunicator(application, f"/ws/chat/?token={tokens['client']}")
        connected, _ = await communicator.connect()

        ready = await communicator.receive_json_from()

        assert connected
        assert ready == {
            "type": "session.ready",
            "user_id": client_user.pk,
            "heartbeat_interval": PRESENCE_CONFIG.HEARTBEAT_INTERVAL_SECONDS,
        }
        await communicator.disconnect()

    async def test_subprotocol_token_opens_session(self, tokens):
        """
        Why it matters: Browsers cannot set headers on WebSockets; the
        subprotocol pair keeps the token out of URLs and access logs.
        """
        communicator = WebsocketCommunicator(
            application, "/ws/chat/", subprotocols=["jwt", tokens["client"]]
        )
        connected, subprotocol = await communicator.connect()

        assert connected
        assert subprotocol == REALTIME_CONFIG.TOKEN_SUBPROTOCOL
        assert (await communicator.receive_json_from())["type"] == "session.ready"
        await communicator.disconnect()

    @pytest.mark.parametrize("path", ["/ws/chat/", "/ws/chat/?token=not-a-jwt"])
    async def test_bad_token_gets_auth_failed_then_close(self, path):
        communicator = WebsocketCommunicator(application, path)
        await communicator.connect()

        event = await communicator.receive_json_from()
        closed = await communicator.receive_output()

        assert event["type"] == "auth.failed"
        assert event["error_code"] == ChatErrorCode.AUTH_FAILED
        assert closed == {
            "type": "websocket.close",
            "code": REALTIME_CONFIG.CLOSE_UNAUTHENTICATED,
        }

    async def test_session_marks_user_online_until_closed(self, tokens, client_user):
        communicator = await open_session(tokens["client"])

        assert (await database_sync_to_async(PresenceService.is_online)(client_user.pk)).data

        await communicator.disconnect()
        assert not (await database_sync_to_async(PresenceService.is_online)(client_user.pk)).data


# =============================================================================
# Rooms
# =============================================================================


class TestRooms:
    async def test_participant_joins_and_receives_messages(self, tokens, chat, freelancer):
        """
        Why it matters: The core realtime path; a message appended through
        the store reaches the partner's open session.
        """
        communicator = await open_session(tokens["client"])

        joined = await join(communicator, chat)
        message = (await append(chat.pk, freelancer, "hi there")).data
        created = await receive_event(communicator, "message.created")

        assert joined == {"type": "chat.joined", "chat_id": str(chat.pk)}
        assert created["chat_id"] == str(chat.pk)
        assert created["message"]["id"] == message.pk
        assert created["message"]["sequence"] == 1
        assert created["message"]["content"] == "hi there"
        await communicator.disconnect()

    async def test_outsider_cannot_join(self, tokens, chat, client_user):
        """
        Why it matters: Joining a room is the only way to receive its
        messages, so the participant check is what keeps chats private.
        """
        communicator = await open_session(tokens["outsider"])

        response = await join(communicator, chat)
        await append(chat.pk, client_user, "private")

        assert response["type"] == "error"
        assert response["error_code"] == ChatErrorCode.NOT_PARTICIPANT
        assert response["chat_id"] == str(chat.pk)
        assert await communicator.receive_nothing(timeout=0.2)
        await communicator.disconnect()

    async def test_directory_update_without_joining(self, tokens, chat, freelancer):
        communicator = await open_session(tokens["client"])

        await append(chat.pk, freelancer, "ping")
        updated = await receive_event(communicator, "chat.updated")

        assert updated["chat"]["id"] == str(chat.pk)
        assert updated["chat"]["unread_count"] == 1
        assert updated["chat"]["last_message"]["content"] == "ping"
        await communicator.disconnect()

    async def test_leave_stops_delivery(self, tokens, chat, freelancer):
        communicator = await open_session(tokens["client"])
        await join(communicator, chat)

        await communicator.send_json_to({"type": "chat.leave", "chat_id": str(chat.pk)})
        left = await communicator.receive_json_from()
        await append(chat.pk, freelancer, "anyone?")
        event = await communicator.receive_json_from()

        assert left["type"] == "chat.left"
        assert event["type"] == "chat.updated"
        assert await communicator.receive_nothing(timeout=0.2)
        await communicator.disconnect()

    async def test_unknown_event_type(self, tokens):
        communicator = await open_session(tokens["client"])

        await communicator.send_json_to({"type": "chat.explode"})
        response = await communicator.receive_json_from()

        assert response["error_code"] == ChatErrorCode.UNKNOWN_EVENT
        await communicator.disconnect()


# =============================================================================
# Typing and read marks
# =============================================================================


class TestTypingAndReads:
    async def test_typing_reaches_partner_only(self, tokens, chat, client_user):
        client = await open_session(tokens["client"])
        partner = await open_session(tokens["freelancer"])
        await join(client, chat)
        await join(partner, chat)

        await client.send_json_to({"type": "typing.started", "chat_id": str(chat.pk)})
        typing = await receive_event(partner, "typing.started")

        assert typing == {
            "type": "typing.started",
            "chat_id": str(chat.pk),
            "user_id": client_user.pk,
        }
        assert await client.receive_nothing(timeout=0.2)
        await client.disconnect()
        await partner.disconnect()

    async def test_typing_requires_join(self, tokens, chat):
        communicator = await open_session(tokens["client"])

        await communicator.send_json_to({"type": "typing.started", "chat_id": str(chat.pk)})
        response = await communicator.receive_json_from()

        assert response["error_code"] == ChatErrorCode.NOT_JOINED
        await communicator.disconnect()

    async def test_read_mark_reaches_sender(self, tokens, chat, client_user, freelancer):
        client = await open_session(tokens["client"])
        partner = await open_session(tokens["freelancer"])
        await join(client, chat)
        await join(partner, chat)
        message = (await append(chat.pk, freelancer, "did you see this?")).data

        await client.send_json_to(
            {"type": "read.mark", "chat_id": str(chat.pk), "up_to": message.pk}
        )
        read = await receive_event(partner, "message.read")

        assert read["reader_id"] == client_user.pk
        assert read["up_to_id"] == message.pk
        assert read["up_to_sequence"] == message.sequence
        await client.disconnect()
        await partner.disconnect()

    async def test_read_mark_requires_message_id(self, tokens, chat):
        communicator = await open_session(tokens["client"])
        await join(communicator, chat)

        await communicator.send_json_to(
            {"type": "read.mark", "chat_id": str(chat.pk), "up_to": "latest"}
        )
        response = await communicator.receive_json_from()

        assert response["error_code"] == ChatErrorCode.INVALID_EVENT
        await communicator.disconnect()


# =============================================================================
# Presence
# =============================================================================


class TestPresenceEvents:
    async def test_partner_sees_online_and_offline(self, tokens, chat, client_user):
        partner = await open_session(tokens["freelancer"])

        client = await open_session(tokens["client"])
        online = await receive_event(partner, "presence.changed")
        await client.disconnect()
        offline = await receive_event(partner, "presence.changed")

        assert online == {"type": "presence.changed", "user_id": client_user.pk, "online": True}
        assert offline == {"type": "presence.changed", "user_id": client_user.pk, "online": False}
        await partner.disconnect()

    async def test_second_tab_does_not_reannounce(self, tokens, chat):
        partner = await open_session(tokens["freelancer"])
        first = await open_session(tokens["client"])
        await receive_event(partner, "presence.changed")

        second = await open_session(tokens["client"])
        await second.disconnect()

        assert await partner.receive_nothing(timeout=0.2)
        await first.disconnect()
        await partner.disconnect()

    async def test_heartbeat_after_expiry_reannounces(self, tokens, chat, client_user):
        partner = await open_session(tokens["freelancer"])
        client = await open_session(tokens["client"])
        await receive_event(partner, "presence.changed")
        await database_sync_to_async(cache.delete)(
            f"{PRESENCE_CONFIG.KEY_PREFIX_USER_PRESENCE}:{client_user.pk}"
        )

        await client.send_json_to({"type": "presence.heartbeat"})
        event = await receive_event(partner, "presence.changed")

        assert event["online"] is True
        await client.disconnect()
        await partner.disconnect()
