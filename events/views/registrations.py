from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from events.models import Event, Registration, Team
from events.serializers import (
    AttendanceSerializer,
    CancelRegistrationSerializer,
    RegisterSerializer,
    RegistrationSerializer,
    RegistrationStatusSerializer,
)
from events.services import registrations


class RegistrationCreateView(APIView):
    """
    POST /api/registrations/
    Body: {"event_id": 1, "team_id": 3, "notes": "..."}
    """
    permission_classes = [IsAuthenticated]
    throttle_scope = "registration-create"

    def post(self, request):
        serializer = RegisterSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        event = get_object_or_404(Event, pk=data["event_id"])
        team = None
        if data.get("team_id"):
            team = get_object_or_404(Team, pk=data["team_id"])

        reg = registrations.register(event, request.user, team=team, notes=data.get("notes", ""))
        return Response(RegistrationSerializer(reg).data, status=status.HTTP_201_CREATED)


class RegistrationCancelView(APIView):
    """
    PUT /api/registrations/<id>/cancel/
    """
    permission_classes = [IsAuthenticated]

    def put(self, request, pk):
        reg = get_object_or_404(Registration.objects.select_related("event"), pk=pk)
        serializer = CancelRegistrationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        reg = registrations.cancel(reg, request.user, reason=serializer.validated_data.get("reason"))
        return Response(RegistrationSerializer(reg).data)


class RegistrationStatusView(APIView):
    """
    PUT /api/registrations/<id>/status/
    Body: {"status": "confirmed" | "rejected" | "cancelled" | ..., "reason": "..."}
    """
    permission_classes = [IsAuthenticated]

    def put(self, request, pk):
        reg = get_object_or_404(Registration.objects.select_related("event"), pk=pk)
        serializer = RegistrationStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        reg = registrations.update_status(
            reg,
            serializer.validated_data["status"],
            request.user,
            reason=serializer.validated_data.get("reason"),
        )
        return Response(RegistrationSerializer(reg).data)


class RegistrationCheckInView(APIView):
    """
    POST /api/registrations/<id>/check-in/
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk):
        reg = get_object_or_404(Registration.objects.select_related("event"), pk=pk)
        attendance = registrations.check_in(reg, request.user)
        return Response(AttendanceSerializer(attendance).data, status=status.HTTP_200_OK)
