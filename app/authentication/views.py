"""
Authentication views.

This module provides API views for:
- Registration (returns a JWT pair so the client can connect immediately)
- Current user lookup

Token endpoints (obtain/refresh) come straight from
rest_framework_simplejwt and are wired in urls.py. The same access token
authenticates REST requests and the chat WebSocket handshake.
"""

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.serializers import RegisterSerializer, UserSerializer


class RegisterView(APIView):
    """
    Create an account.

    URL: /api/v1/auth/register/
    """

    permission_classes = [AllowAny]

    @extend_schema(
        summary="Register",
        description="Create a client or freelancer account and receive a JWT pair.",
        tags=["Auth"],
        request=RegisterSerializer,
        responses={
            201: OpenApiResponse(description="User created with access/refresh tokens"),
            400: OpenApiResponse(description="Validation error"),
        },
    )
    def post(self, request):
        serializer = RegisterSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = serializer.save()

        refresh = RefreshToken.for_user(user)
        return Response(
            {
                "user": UserSerializer(user).data,
                "access": str(refresh.access_token),
                "refresh": str(refresh),
            },
            status=status.HTTP_201_CREATED,
        )


class CurrentUserView(APIView):
    """
    Return the authenticated user.

    URL: /api/v1/auth/me/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Current user",
        tags=["Auth"],
        responses={200: UserSerializer},
    )
    def get(self, request):
        return Response(UserSerializer(request.user).data)
