# ---- Helper functions -------------------------------------------------


def user_is_platform_admin(user) -> bool:
    if not user or not getattr(user, "is_authenticated", False):
        return False
    return bool(getattr(user, "is_platform_admin", False))


def user_can_manage_event(user, event) -> bool:
    """
    True if user may administer registrations, refunds and rounds of event:
    the organizer, a co-organizer, or a platform admin.
    """
    if not user or not getattr(user, "is_authenticated", False) or event is None:
        return False

    if user_is_platform_admin(user):
        return True

    if event.organizer_id == user.id:
        return True

    return event.co_organizers.filter(pk=user.pk).exists()
