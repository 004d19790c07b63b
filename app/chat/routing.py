"""
WebSocket URL routing for the chat application.

URL Patterns:
    ws/chat/ - One connection per client session, multiplexing every chat
               the user joins through chat.join events

Authentication:
    JWT access token via ?token=<jwt> or the "jwt, <jwt>" subprotocol pair.
    JWTAuthMiddleware validates the token and attaches the user to the
    consumer's scope.
"""

from django.urls import path

from chat import consumers

websocket_urlpatterns = [
    path("ws/chat/", consumers.ChatConsumer.as_asgi()),
]
