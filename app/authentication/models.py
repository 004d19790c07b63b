"""
Authentication models.

This module defines the marketplace user:
- User: Custom user model with email-based authentication and the public
  identity shown in chats (display name, avatar, marketplace role)

Related files:
    - managers.py: Custom user manager for email-based creation
    - serializers.py: Registration and public user serializers

Note:
    Online/offline status is not stored on the user row. It is tracked by
    chat.services.PresenceService in the cache so that it never needs a
    database write per connection.
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from authentication.managers import UserManager


class UserRole(models.TextChoices):
    """
    Marketplace role chosen at registration.

    CLIENT: Posts gigs and pays freelancers
    FREELANCER: Applies to gigs and receives payments
    """

    CLIENT = "client", "Client"
    FREELANCER = "freelancer", "Freelancer"


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    Fields:
        email: Primary identifier, unique, used for login
        display_name: Name shown to chat partners
        avatar_url: Optional avatar reference (external URL)
        role: Marketplace role (client or freelancer)
        is_active: Whether the user account is active
        is_staff: Whether the user can access Django admin
        date_joined: When the user account was created
        updated_at: When the user record was last modified

    Usage:
        user = User.objects.create_user(
            email="client@example.com",
            password="securepassword",
            display_name="Asha",
            role=UserRole.CLIENT,
        )
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )
    display_name = models.CharField(
        max_length=100,
        blank=True,
        default="",
        help_text="Name shown to other users",
    )
    avatar_url = models.URLField(
        max_length=500,
        blank=True,
        default="",
        help_text="Avatar image reference",
    )
    role = models.CharField(
        max_length=20,
        choices=UserRole.choices,
        default=UserRole.CLIENT,
        help_text="Marketplace role",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )

    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        return self.email

    def get_full_name(self):
        """Return the display name, falling back to the email address."""
        return self.display_name or self.email

    def get_short_name(self):
        """Return the display name or the email local part."""
        return self.display_name or self.email.split("@")[0]
