from django.contrib.contenttypes.models import ContentType
from .models import DomainActivity


class ActivityService:
    @staticmethod
    def log_activity(actor, verb, target, metadata=None):
        """
        Logs a domain activity inside the caller's transaction, so the
        audit row commits or rolls back together with the state change.
        """
        if metadata is None:
            metadata = {}

        return DomainActivity.objects.create(
            actor=actor if getattr(actor, "pk", None) else None,
            verb=verb,
            content_type=ContentType.objects.get_for_model(target),
            object_id=target.pk,
            metadata=metadata,
        )
