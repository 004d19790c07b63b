"""
Tests for chat app.

This package contains test modules for:
- test_models.py: Chat, Participant, Message model tests
- test_services.py: ChatDirectoryService, MessageStore, ReactionService tests
- test_presence.py: PresenceService tests
- test_consumers.py: WebSocket consumer tests
- test_views.py: REST API endpoint tests
- test_tasks.py: Celery task tests
- test_client_*.py: Async client tests (API, realtime, session, directory)

Usage:
    pytest chat/tests/
    pytest chat/tests/test_consumers.py
"""
