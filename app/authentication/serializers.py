"""
Serializers for authentication models.

This module provides DRF serializers for:
- User model (public identity used across the API and in chat payloads)
- Registration (create user and issue JWT pair)

Security:
    - Password fields are write-only
    - Email uniqueness is checked case-insensitively
"""

from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers

from authentication.models import User, UserRole


class UserSerializer(serializers.ModelSerializer):
    """
    Public user representation.

    Embedded in chat summaries and messages, so it exposes only the fields
    a chat partner is allowed to see.
    """

    class Meta:
        model = User
        fields = ["id", "email", "display_name", "avatar_url", "role"]
        read_only_fields = fields


class RegisterSerializer(serializers.Serializer):
    """Validate registration input and create the user."""

    email = serializers.EmailField()
    password = serializers.CharField(write_only=True, min_length=8)
    display_name = serializers.CharField(max_length=100)
    role = serializers.ChoiceField(choices=UserRole.choices)

    def validate_email(self, value):
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError("A user with this email already exists.")
        return value

    def validate_password(self, value):
        validate_password(value)
        return value

    def create(self, validated_data):
        return User.objects.create_user(**validated_data)
