"""
Authentication application.

This app provides the email-based user model, registration and JWT
token endpoints used by the REST API and the chat WebSocket.

Key components:
    - User model: Custom email-based user with a client/freelancer role
    - RegisterView / CurrentUserView: Account creation and profile lookup
    - SimpleJWT token obtain/refresh views (see urls.py)

Usage:
    from authentication.models import User
"""
