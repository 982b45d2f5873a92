import time

from django.conf import settings
from django.db import connections
from django.db.utils import OperationalError
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import AllowAny


class HealthCheckView(APIView):
    """
    Public uptime check: database connectivity plus which payment
    gateways have credentials configured.
    """
    permission_classes = [AllowAny]
    authentication_classes = []

    def get(self, request, *args, **kwargs):
        start = time.monotonic()

        try:
            connections["default"].cursor()
            db_ok = True
        except OperationalError:
            db_ok = False

        return Response(
            {
                "status": "ok" if db_ok else "degraded",
                "db": db_ok,
                "gateways": {
                    "stripe": bool(settings.STRIPE_SECRET_KEY),
                    "razorpay": bool(settings.RAZORPAY_KEY_ID),
                },
                "env": getattr(settings, "ENV", "unknown"),
                "latency_ms": int((time.monotonic() - start) * 1000),
            }
        )
