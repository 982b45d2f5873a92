from django.contrib import admin
from django.urls import path, include
from core.views import HealthCheckView

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/users/', include('users.urls')),
    path('api/registrations/', include('events.urls_registrations')),
    path('api/teams/', include('events.urls_teams')),
    path('api/events/', include('events.urls')),
    path('api/payments/', include('payments.urls')),
    path("api/health/", HealthCheckView.as_view(), name="health-check"),
]
