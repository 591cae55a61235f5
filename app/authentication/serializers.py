"""
Serializers for authentication models.

This module provides DRF serializers for:
- User model (read operations, display name update)

Tokens are issued by rest_framework_simplejwt's own serializers.

Security:
    - Email and staff flags are read-only
"""

from rest_framework import serializers

from authentication.models import User


class UserSerializer(serializers.ModelSerializer):
    """
    Serializer for the current user.

    Used by the /api/v1/auth/me/ endpoint. Only display_name is writable.
    """

    class Meta:
        model = User
        fields = [
            "id",
            "email",
            "display_name",
            "date_joined",
        ]
        read_only_fields = ["id", "email", "date_joined"]
