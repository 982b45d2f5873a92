# events/tests/utils.py - shared fixtures for the registration core tests
from datetime import timedelta

from django.utils import timezone

from events.models import Event
from users.models import User


def make_user(username, role=User.ROLE_STUDENT):
    return User.objects.create_user(username=username, password="pass", role=role)


def make_event(organizer, **overrides):
    now = timezone.now()
    fields = {
        "organizer": organizer,
        "title": "Hack Night",
        "description": "",
        "status": Event.STATUS_PUBLISHED,
        "registration_deadline": now + timedelta(days=20),
        "start_time": now + timedelta(days=30),
        "end_time": now + timedelta(days=30, hours=6),
        "max_participants": 10,
    }
    fields.update(overrides)
    return Event.objects.create(**fields)
