# events/urls_teams.py - Separate URL configuration for teams API
from django.urls import path

from .views.teams import (
    TeamCreateView,
    TeamDetailView,
    TeamJoinView,
    TeamLeaveView,
    TeamLockView,
    TeamMemberDetailView,
    TeamMembersView,
    TeamTransferLeadershipView,
    TeamUnlockView,
)

urlpatterns = [
    path("", TeamCreateView.as_view(), name="team-create"),
    path("join/", TeamJoinView.as_view(), name="team-join"),
    path("<int:pk>/", TeamDetailView.as_view(), name="team-detail"),
    path("<int:pk>/members/", TeamMembersView.as_view(), name="team-members"),
    path("<int:pk>/members/<int:user_id>/", TeamMemberDetailView.as_view(), name="team-member-detail"),
    path("<int:pk>/leave/", TeamLeaveView.as_view(), name="team-leave"),
    path("<int:pk>/transfer-leadership/", TeamTransferLeadershipView.as_view(), name="team-transfer-leadership"),
    path("<int:pk>/lock/", TeamLockView.as_view(), name="team-lock"),
    path("<int:pk>/unlock/", TeamUnlockView.as_view(), name="team-unlock"),
]
