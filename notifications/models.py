# notifications/models.py
from django.conf import settings
from django.db import models


class Notification(models.Model):
    TYPE_REGISTRATION = "registration"
    TYPE_PAYMENT = "payment"
    TYPE_REFUND = "refund"
    TYPE_TEAM = "team"
    TYPE_ROUND = "round"
    TYPE_SYSTEM = "system"

    TYPE_CHOICES = [
        (TYPE_REGISTRATION, "Registration"),
        (TYPE_PAYMENT, "Payment"),
        (TYPE_REFUND, "Refund"),
        (TYPE_TEAM, "Team"),
        (TYPE_ROUND, "Round"),
        (TYPE_SYSTEM, "System"),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
    )
    type = models.CharField(max_length=64, choices=TYPE_CHOICES)
    title = models.CharField(max_length=255)
    body = models.TextField(blank=True)
    is_read = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    # Optional linking to event
    event = models.ForeignKey(
        "events.Event",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="notifications",
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["user", "is_read"], name="notif_user_read_idx"),
            models.Index(fields=["type"], name="notif_type_idx"),
        ]

    def __str__(self):
        return f"{self.user} - {self.type} - {self.title}"
