"""
URL configuration for chat API.

URL Structure:
    Chats:
        /chats/                          GET, POST
        /chats/{id}/                     GET
        /chats/{id}/messages/            GET

    Messages:
        /messages/                       POST
        /messages/mark-read/             PUT
        /messages/{id}/reactions/        POST

    Presence:
        /online-users/                   GET

All URLs are prefixed with /api/v1/chat/ in the main URL configuration.
"""

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from chat.views import (
    ChatViewSet,
    MarkReadView,
    MessageCreateView,
    OnlineUsersView,
    ReactionToggleView,
)

router = DefaultRouter()
router.register(r"chats", ChatViewSet, basename="chat")

app_name = "chat"

urlpatterns = [
    path("", include(router.urls)),
    path("messages/", MessageCreateView.as_view(), name="message-create"),
    path("messages/mark-read/", MarkReadView.as_view(), name="message-mark-read"),
    path(
        "messages/<int:message_id>/reactions/",
        ReactionToggleView.as_view(),
        name="message-reactions",
    ),
    path("online-users/", OnlineUsersView.as_view(), name="online-users"),
]
