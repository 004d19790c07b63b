"""
Tests for authentication app.

This package contains test modules for:
- test_managers.py: UserManager tests
- test_views.py: Registration, token and profile endpoint tests

Usage:
    pytest authentication/tests/
    pytest authentication/tests/test_views.py
"""
