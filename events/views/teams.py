# events/views/teams.py - Team formation API views

from django.contrib.auth import get_user_model
from django.shortcuts import get_object_or_404
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from events.models import Event, Team
from events.serializers import (
    TeamCreateSerializer,
    TeamJoinSerializer,
    TeamMemberAddSerializer,
    TeamSerializer,
    TransferLeadershipSerializer,
)
from events.services import teams

User = get_user_model()


def _team_response(team, status_code=status.HTTP_200_OK):
    team = Team.objects.prefetch_related("memberships__user").select_related("leader").get(pk=team.pk)
    return Response(TeamSerializer(team).data, status=status_code)


class TeamCreateView(APIView):
    """
    POST /api/teams/
    Body: {"event_id": 1, "name": "Team Rocket", "description": "..."}
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = TeamCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        event = get_object_or_404(Event, pk=data["event_id"])
        team = teams.create_team(event, request.user, data["name"], description=data.get("description"))
        return _team_response(team, status.HTTP_201_CREATED)


class TeamJoinView(APIView):
    """
    POST /api/teams/join/
    Body: {"invite_code": "A1B2C3"}
    """
    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = TeamJoinSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        team = teams.join_team(serializer.validated_data["invite_code"], request.user)
        return _team_response(team)


class TeamDetailView(APIView):
    """
    GET    /api/teams/<id>/
    DELETE /api/teams/<id>/   (leader disbands)
    """
    permission_classes = [IsAuthenticated]

    def get(self, request, pk):
        team = get_object_or_404(Team, pk=pk)
        return _team_response(team)

    def delete(self, request, pk):
        team = get_object_or_404(Team, pk=pk)
        teams.disband(team, request.user)
        return Response({"message": "Team disbanded successfully"}, status=status.HTTP_200_OK)


class TeamMembersView(APIView):
    """
    POST /api/teams/<id>/members/
    Body: {"user_id": 7}
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk):
        team = get_object_or_404(Team, pk=pk)
        serializer = TeamMemberAddSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        new_member = get_object_or_404(User, pk=serializer.validated_data["user_id"])
        team = teams.add_member(team, new_member, request.user)
        return _team_response(team)


class TeamMemberDetailView(APIView):
    """
    DELETE /api/teams/<id>/members/<user_id>/
    """
    permission_classes = [IsAuthenticated]

    def delete(self, request, pk, user_id):
        team = get_object_or_404(Team, pk=pk)
        team = teams.remove_member(team, user_id, request.user)
        return _team_response(team)


class TeamLeaveView(APIView):
    """
    POST /api/teams/<id>/leave/
    """
    permission_classes = [IsAuthenticated]

    def post(self, request, pk):
        team = get_object_or_404(Team, pk=pk)
        teams.leave_team(team, request.user)
        return Response({"message": "Left team successfully"}, status=status.HTTP_200_OK)


class TeamTransferLeadershipView(APIView):
    """
    PUT /api/teams/<id>/transfer-leadership/
    Body: {"new_leader_id": 7}
    """
    permission_classes = [IsAuthenticated]

    def put(self, request, pk):
        team = get_object_or_404(Team, pk=pk)
        serializer = TransferLeadershipSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        team = teams.transfer_leadership(team, serializer.validated_data["new_leader_id"], request.user)
        return _team_response(team)


class TeamLockView(APIView):
    """
    PUT /api/teams/<id>/lock/
    """
    permission_classes = [IsAuthenticated]

    def put(self, request, pk):
        team = get_object_or_404(Team, pk=pk)
        team = teams.lock(team, request.user)
        return _team_response(team)


class TeamUnlockView(APIView):
    """
    PUT /api/teams/<id>/unlock/
    """
    permission_classes = [IsAuthenticated]

    def put(self, request, pk):
        team = get_object_or_404(Team, pk=pk)
        team = teams.unlock(team, request.user)
        return _team_response(team)
