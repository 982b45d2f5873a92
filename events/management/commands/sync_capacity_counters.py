from django.core.management.base import BaseCommand

from events import capacity
from events.models import Event


class Command(BaseCommand):
    help = "Recompute every event's capacity counter from its active registrations"

    def handle(self, *args, **options):
        updated = 0
        unchanged = 0

        for event in Event.objects.all().iterator():
            old, new = capacity.resync_counter(event)
            if old != new:
                self.stdout.write(f"Updated \"{event.title}\": {old} -> {new}")
                updated += 1
            else:
                unchanged += 1

        self.stdout.write(self.style.SUCCESS(f"Updated {updated}, unchanged {unchanged}"))
