import logging

from django.core.management.base import BaseCommand
from django.db import transaction
from django.db.models import Count

from events.models import Event, Round

logger = logging.getLogger('cos.events')


class Command(BaseCommand):
    help = "Assign 1-based sequential numbers to rounds that are missing or share a number"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Report what would change without writing",
        )

    def handle(self, *args, **options):
        dry_run = options["dry_run"]

        events = Event.objects.annotate(total=Count("rounds")).filter(total__gt=0)

        repaired = 0
        for event in events:
            # Unnumbered legacy rounds keep their creation order, after numbered ones
            rounds = sorted(
                event.rounds.all(),
                key=lambda r: (r.number is None, r.number or 0, r.created_at, r.pk),
            )
            expected = list(range(1, len(rounds) + 1))
            if [r.number for r in rounds] == expected:
                continue

            self.stdout.write(f"Event {event.id} \"{event.title}\": {[r.number for r in rounds]} -> {expected}")
            if dry_run:
                continue

            with transaction.atomic():
                # Clear first so the (event, number) constraint never sees a collision
                Round.objects.filter(event=event).update(number=None)
                for number, round_obj in zip(expected, rounds):
                    Round.objects.filter(pk=round_obj.pk).update(number=number)

            logger.warning(f"Round numbers repaired for event {event.id}")
            repaired += 1

        self.stdout.write(self.style.SUCCESS(f"Repaired {repaired} events"))
