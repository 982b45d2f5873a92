from django.db.models.signals import post_save
from django.dispatch import receiver
import logging

from .models import Event
from . import capacity

logger = logging.getLogger('cos.events')


@receiver(post_save, sender=Event)
def create_capacity_counter(sender, instance, created, **kwargs):
    """Every event gets its capacity counter row up front."""
    if created:
        capacity.ensure_counter(instance)
        logger.info(f"Capacity counter created for event {instance.id}")
