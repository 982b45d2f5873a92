# events/urls.py
from django.urls import path

from .views.rounds import ProgressTeamsView, RoundStatusView

urlpatterns = [
    path("<int:event_id>/rounds/progress/", ProgressTeamsView.as_view(), name="rounds-progress"),
    path("<int:event_id>/rounds/<int:number>/status/", RoundStatusView.as_view(), name="round-status"),
]
