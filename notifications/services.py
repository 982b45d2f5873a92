# notifications/services.py
"""
Notification sink for the registration core.

Delivery is best effort: a failure here is logged and never undoes the
state change that triggered it. Callers inside a transaction should use
``notify_on_commit`` so nobody is told about a change that rolled back.
"""
import logging

from django.db import transaction

from .models import Notification

logger = logging.getLogger('cos.notifications')


def create_notification(user, type, title, body="", event=None):
    try:
        with transaction.atomic():
            return Notification.objects.create(
                user=user,
                type=type,
                title=title,
                body=body,
                event=event,
            )
    except Exception:
        logger.exception(
            f"Notification delivery failed: user={getattr(user, 'pk', None)}, type={type}"
        )
        return None


def notify_on_commit(user, type, title, body="", event=None):
    transaction.on_commit(
        lambda: create_notification(user, type, title, body=body, event=event)
    )
