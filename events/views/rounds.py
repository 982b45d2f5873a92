from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from events.models import Event
from events.serializers import ProgressTeamsSerializer, RoundSerializer, RoundStatusSerializer
from events.services import rounds


class ProgressTeamsView(APIView):
    """
    POST /api/events/<event_id>/rounds/progress/
    Body: {"team_ids": [1, 2], "from_round": 2, "to_round": 3, "eliminate_rest": true}
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, event_id):
        event = get_object_or_404(Event, pk=event_id)
        serializer = ProgressTeamsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = rounds.progress_teams(
            event,
            data["team_ids"],
            data["from_round"],
            data["to_round"],
            eliminate_rest=data["eliminate_rest"],
            actor=request.user,
        )
        return Response(result, status=status.HTTP_200_OK)


class RoundStatusView(APIView):
    """
    PUT /api/events/<event_id>/rounds/<number>/status/
    Body: {"status": "ongoing"}
    """
    permission_classes = [IsAuthenticated]

    def put(self, request, event_id, number):
        event = get_object_or_404(Event, pk=event_id)
        serializer = RoundStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        round_obj = rounds.get_round(event, number)
        round_obj = rounds.update_round_status(round_obj, serializer.validated_data["status"], request.user)
        return Response(RoundSerializer(round_obj).data)
