"""
Chat app for real-time 1:1 messaging between clients and freelancers.

This app handles:
- One chat per unordered pair of users, optionally tagged with a gig
- Sequenced message log with text, application and system messages
- WebSocket real-time updates (messages, read receipts, typing, presence)
- Reactions and offline-recipient email notifications
- An asyncio client (chat.client) for the REST API and realtime channel

Related apps:
    - authentication: User model for participants
    - payments: System messages announcing payments and refunds

WebSocket Support:
    Uses Django Channels for real-time communication.
    See consumers.py for WebSocket handlers.
    See routing.py for WebSocket URL patterns.

Usage:
    from chat.services import ChatDirectoryService, MessageStore

    result = ChatDirectoryService.get_or_create_chat(user, other_user.id)
    chat, created = result.data

    result = MessageStore.append(chat.id, user, "Hello!")
"""
