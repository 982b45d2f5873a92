import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("cos")

# All CELERY_* keys in settings.py configure the worker and beat.
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
