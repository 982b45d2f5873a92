# events/urls_registrations.py
from django.urls import path

from .views.registrations import (
    RegistrationCancelView,
    RegistrationCheckInView,
    RegistrationCreateView,
    RegistrationStatusView,
)

urlpatterns = [
    path("", RegistrationCreateView.as_view(), name="registration-create"),
    path("<int:pk>/cancel/", RegistrationCancelView.as_view(), name="registration-cancel"),
    path("<int:pk>/status/", RegistrationStatusView.as_view(), name="registration-status"),
    path("<int:pk>/check-in/", RegistrationCheckInView.as_view(), name="registration-check-in"),
]
