"""
Tests for PresenceService.

Presence is a per-user connection counter in the cache. These tests use the
local-memory cache configured in the root conftest; production uses Redis
through django-redis with the same cache API.
"""

from unittest.mock import MagicMock

from django.core.cache import cache

from chat.constants import PRESENCE_CONFIG
from chat.services import PresenceService


def presence_key(user_id) -> str:
    return f"{PRESENCE_CONFIG.KEY_PREFIX_USER_PRESENCE}:{user_id}"


class TestConnectDisconnect:
    """
    Tests for PresenceService.connect() and disconnect().

    Verifies:
    - Only the first session flips the user online
    - Only the last session flips the user offline
    """

    def test_first_session_goes_online(self):
        result = PresenceService.connect(7)

        assert result.success is True
        assert result.data is True
        assert PresenceService.is_online(7).data is True

    def test_second_session_does_not_announce(self):
        PresenceService.connect(7)

        assert PresenceService.connect(7).data is False
        assert cache.get(presence_key(7)) == 2

    def test_last_session_goes_offline(self):
        """
        Why it matters: Closing one of two tabs must not show the user as
        offline to their chat partners.
        """
        PresenceService.connect(7)
        PresenceService.connect(7)

        assert PresenceService.disconnect(7).data is False
        assert PresenceService.is_online(7).data is True
        assert PresenceService.disconnect(7).data is True
        assert PresenceService.is_online(7).data is False

    def test_disconnect_after_expiry_reports_offline(self):
        assert PresenceService.disconnect(7).data is True
        assert cache.get(presence_key(7)) is None


class TestHeartbeat:
    def test_refreshes_live_entry(self):
        PresenceService.connect(7)

        assert PresenceService.heartbeat(7).data is False
        assert cache.get(presence_key(7)) == 1

    def test_expired_entry_comes_back_online(self):
        """
        Why it matters: A session whose entry lapsed (e.g. a missed
        heartbeat) must be announced online again.
        """
        PresenceService.connect(7)
        cache.delete(presence_key(7))

        assert PresenceService.heartbeat(7).data is True
        assert PresenceService.is_online(7).data is True


class TestQueries:
    def test_unknown_user_is_offline(self):
        assert PresenceService.is_online(99).data is False

    def test_bulk_presence_keeps_order(self):
        PresenceService.connect(2)

        result = PresenceService.get_bulk_presence([3, 2, 1])

        assert result.data == [
            {"user_id": 3, "online": False},
            {"user_id": 2, "online": True},
            {"user_id": 1, "online": False},
        ]

    def test_bulk_presence_empty(self):
        assert PresenceService.get_bulk_presence([]).data == []


class TestCacheFailures:
    """
    Why it matters: A cache outage must degrade presence, not break
    chat requests or realtime sessions.
    """

    def test_errors_become_failures(self, mocker):
        broken = MagicMock()
        broken.add.side_effect = ConnectionError("cache down")
        broken.get.side_effect = ConnectionError("cache down")
        broken.get_many.side_effect = ConnectionError("cache down")
        broken.touch.side_effect = ConnectionError("cache down")
        broken.decr.side_effect = ConnectionError("cache down")
        mocker.patch.object(PresenceService, "_get_cache", return_value=broken)

        for result in (
            PresenceService.connect(1),
            PresenceService.disconnect(1),
            PresenceService.heartbeat(1),
            PresenceService.is_online(1),
            PresenceService.get_bulk_presence([1]),
        ):
            assert result.success is False
            assert result.error_code == "presence_error"
