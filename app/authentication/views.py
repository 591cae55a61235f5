"""
Views for authentication app.

Login and token refresh are rest_framework_simplejwt's views; this
module only adds the current-user endpoint.

Endpoints:
    GET/PATCH /api/v1/auth/me/ - Current user
"""

from drf_spectacular.utils import extend_schema
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from authentication.serializers import UserSerializer


class CurrentUserView(APIView):
    """
    Current user details.

    GET: Return the authenticated user
    PATCH: Update display_name
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_current_user",
        responses={200: UserSerializer},
        tags=["Auth"],
    )
    def get(self, request):
        return Response(UserSerializer(request.user).data)

    @extend_schema(
        operation_id="update_current_user",
        request=UserSerializer,
        responses={200: UserSerializer},
        tags=["Auth"],
    )
    def patch(self, request):
        serializer = UserSerializer(request.user, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data)
