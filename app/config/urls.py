"""
URL configuration for the GigConnect messaging backend.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/                  - Registration and JWT endpoints
    /api/v1/chat/                  - Chat endpoints
        chats/                     - List / get-or-create chats
        chats/{id}/                - Chat detail
        chats/{id}/messages/       - Message page (after/before/limit)
        messages/                  - Append message
        messages/mark-read/        - Mark messages read
        messages/{id}/reactions/   - Toggle reaction
        online-users/              - Presence of chat partners
    /api/v1/payments/              - Razorpay payment endpoints
    ws/chat/                       - Realtime channel (see chat.routing)
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
api_v1_patterns = [
    path("auth/", include("authentication.urls")),
    path("chat/", include("chat.urls")),
    path("payments/", include("payments.urls")),
]

urlpatterns = [
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    path("admin/", admin.site.urls),
    path("health/", health_check, name="health_check"),
    path("api/v1/", include(api_v1_patterns)),
]

admin.site.site_header = "GigConnect Admin"
admin.site.site_title = "GigConnect Admin"
admin.site.index_title = "Messaging and payments"
