"""
Test configuration and fixtures for chat tests.

This module provides:
- A client and a freelancer who share a chat, plus an outsider
- API client helpers for authenticated requests

Usage:
    def test_example(chat, client_api):
        response = client_api.get(f"/api/v1/chat/chats/{chat.id}/")
        assert response.status_code == 200
"""

import pytest
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.tests.factories import FreelancerFactory, UserFactory
from chat.tests.factories import ChatFactory


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def client_user(db):
    """The hiring side of the chat."""
    return UserFactory(display_name="Asha Client")


@pytest.fixture
def freelancer(db):
    """The freelancer side of the chat."""
    return FreelancerFactory(display_name="Ravi Freelancer")


@pytest.fixture
def outsider(db):
    """A user who is not part of any test chat."""
    return UserFactory()


# =============================================================================
# Chat Fixtures
# =============================================================================


@pytest.fixture
def chat(client_user, freelancer):
    """Chat between client_user and freelancer."""
    return ChatFactory(user_lower=client_user, user_higher=freelancer)


# =============================================================================
# API Client Fixtures
# =============================================================================


def access_token_for(user) -> str:
    return str(RefreshToken.for_user(user).access_token)


@pytest.fixture
def authenticated_client_factory():
    """Build an APIClient carrying a JWT for any user."""

    def make(user):
        client = APIClient()
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {access_token_for(user)}")
        return client

    return make


@pytest.fixture
def client_api(authenticated_client_factory, client_user):
    return authenticated_client_factory(client_user)


@pytest.fixture
def freelancer_api(authenticated_client_factory, freelancer):
    return authenticated_client_factory(freelancer)


@pytest.fixture
def outsider_api(authenticated_client_factory, outsider):
    return authenticated_client_factory(outsider)
