# events/models.py
import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q


class Event(models.Model):
    """
    The slice of an event the registration core reads: capacity, team
    bounds, deadlines, payment requirement and refund policy. Event CRUD
    lives with the wider platform.
    """
    STATUS_DRAFT = "draft"
    STATUS_PUBLISHED = "published"
    STATUS_ONGOING = "ongoing"
    STATUS_COMPLETED = "completed"
    STATUS_CANCELLED = "cancelled"

    STATUS_CHOICES = [
        (STATUS_DRAFT, "Draft"),
        (STATUS_PUBLISHED, "Published"),
        (STATUS_ONGOING, "Ongoing"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    organizer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='organized_events'
    )
    co_organizers = models.ManyToManyField(
        settings.AUTH_USER_MODEL,
        blank=True,
        related_name='co_organized_events',
    )
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    status = models.CharField(max_length=32, choices=STATUS_CHOICES, default=STATUS_DRAFT)

    registration_opens_at = models.DateTimeField(blank=True, null=True)
    registration_deadline = models.DateTimeField()
    start_time = models.DateTimeField()
    end_time = models.DateTimeField()

    # None means unbounded
    max_participants = models.PositiveIntegerField(blank=True, null=True)
    min_team_size = models.PositiveIntegerField(default=1)
    max_team_size = models.PositiveIntegerField(default=1)

    is_paid = models.BooleanField(default=False)
    amount = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    currency = models.CharField(max_length=10, default="INR")

    # Refund policy, snapshotted onto each Refund when it is created
    full_refund_days = models.PositiveIntegerField(default=7)
    partial_refund_days = models.PositiveIntegerField(default=3)
    partial_refund_percentage = models.PositiveIntegerField(default=50)

    current_round = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['status', 'registration_deadline'], name='event_status_deadline_idx'),
            models.Index(fields=['start_time'], name='event_start_idx'),
        ]

    def __str__(self):
        return self.title

    @property
    def is_team_event(self):
        return self.max_team_size > 1


class Round(models.Model):
    STATUS_UPCOMING = "upcoming"
    STATUS_ONGOING = "ongoing"
    STATUS_COMPLETED = "completed"

    STATUS_CHOICES = [
        (STATUS_UPCOMING, "Upcoming"),
        (STATUS_ONGOING, "Ongoing"),
        (STATUS_COMPLETED, "Completed"),
    ]

    # Status can only move forward along this order
    STATUS_ORDER = {
        STATUS_UPCOMING: 1,
        STATUS_ONGOING: 2,
        STATUS_COMPLETED: 3,
    }

    event = models.ForeignKey(Event, on_delete=models.CASCADE, related_name='rounds')
    # 1-based and contiguous; null only on legacy rows awaiting repair_round_numbers
    number = models.PositiveIntegerField(blank=True, null=True)
    name = models.CharField(max_length=100)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_UPCOMING)
    starts_at = models.DateTimeField(blank=True, null=True)
    ends_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['number', 'created_at']
        constraints = [
            models.UniqueConstraint(fields=['event', 'number'], name='unique_round_number'),
        ]

    def __str__(self):
        return f"{self.event.title} - Round {self.number}: {self.name}"


class Team(models.Model):
    STATUS_ACTIVE = "active"
    STATUS_LOCKED = "locked"
    STATUS_DISBANDED = "disbanded"

    STATUS_CHOICES = [
        (STATUS_ACTIVE, "Active"),
        (STATUS_LOCKED, "Locked"),
        (STATUS_DISBANDED, "Disbanded"),
    ]

    event = models.ForeignKey(Event, on_delete=models.CASCADE, related_name='teams')
    name = models.CharField(max_length=100)
    description = models.TextField(blank=True, null=True)
    leader = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='led_teams',
    )
    # Leader included
    members = models.ManyToManyField(
        settings.AUTH_USER_MODEL,
        through='TeamMembership',
        related_name='teams',
    )
    max_size = models.PositiveIntegerField(help_text="Maximum team members, leader included")
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_ACTIVE)
    invite_code = models.CharField(max_length=6, unique=True, blank=True, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['event', 'name'], name='unique_team_name_per_event'),
        ]
        indexes = [
            models.Index(fields=['event', 'leader'], name='team_event_leader_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.event.title})"

    def save(self, *args, **kwargs):
        if not self.invite_code:
            self.invite_code = uuid.uuid4().hex[:6].upper()
        super().save(*args, **kwargs)

    @property
    def current_size(self):
        return self.memberships.count()

    @property
    def is_full(self):
        return self.current_size >= self.max_size

    @property
    def is_locked(self):
        return self.status == self.STATUS_LOCKED


class TeamMembership(models.Model):
    team = models.ForeignKey(Team, on_delete=models.CASCADE, related_name='memberships')
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='team_memberships',
    )
    joined_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['team', 'user'], name='unique_team_member'),
        ]
        indexes = [
            models.Index(fields=['team', 'joined_at'], name='teammember_team_joined_idx'),
        ]

    def __str__(self):
        return f"{self.user.username} in {self.team.name}"


class Registration(models.Model):
    STATUS_PENDING = "pending"
    STATUS_CONFIRMED = "confirmed"
    STATUS_WAITLISTED = "waitlisted"
    STATUS_CANCELLED = "cancelled"
    STATUS_REJECTED = "rejected"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_CONFIRMED, "Confirmed"),
        (STATUS_WAITLISTED, "Waitlisted"),
        (STATUS_CANCELLED, "Cancelled"),
        (STATUS_REJECTED, "Rejected"),
    ]

    # Active statuses count against capacity and block duplicates
    ACTIVE_STATUSES = (STATUS_PENDING, STATUS_CONFIRMED, STATUS_WAITLISTED)
    TERMINAL_STATUSES = (STATUS_CANCELLED, STATUS_REJECTED)

    PAYMENT_PENDING = "pending"
    PAYMENT_PAID = "paid"
    PAYMENT_FAILED = "failed"
    PAYMENT_REFUND_PENDING = "refund_pending"
    PAYMENT_REFUNDED = "refunded"
    PAYMENT_NOT_REQUIRED = "not_required"

    PAYMENT_CHOICES = [
        (PAYMENT_PENDING, "Pending"),
        (PAYMENT_PAID, "Paid"),
        (PAYMENT_FAILED, "Failed"),
        (PAYMENT_REFUND_PENDING, "Refund pending"),
        (PAYMENT_REFUNDED, "Refunded"),
        (PAYMENT_NOT_REQUIRED, "Not required"),
    ]

    registration_number = models.CharField(max_length=32, unique=True, blank=True, null=True)
    event = models.ForeignKey(Event, on_delete=models.CASCADE, related_name='registrations')
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='registrations',
    )
    team = models.ForeignKey(
        Team,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='registrations',
    )

    status = models.CharField(max_length=32, choices=STATUS_CHOICES, default=STATUS_PENDING)
    payment_status = models.CharField(max_length=32, choices=PAYMENT_CHOICES, default=PAYMENT_NOT_REQUIRED)

    # Set exactly once, by capacity.release()
    capacity_released = models.BooleanField(default=False)

    notes = models.TextField(blank=True)
    cancelled_at = models.DateTimeField(blank=True, null=True)
    cancellation_reason = models.CharField(max_length=500, blank=True)

    # Round management for multi-round events (0 = not yet seeded into round 1)
    current_round = models.PositiveIntegerField(default=0)
    eliminated_in_round = models.PositiveIntegerField(blank=True, null=True)
    advanced_to_rounds = models.JSONField(default=list, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            # At most one active registration per (event, user); cancelled and
            # rejected rows fall outside the index so re-registration works.
            models.UniqueConstraint(
                fields=['event', 'user'],
                condition=Q(status__in=["pending", "confirmed", "waitlisted"]),
                name='unique_active_registration',
            ),
        ]
        indexes = [
            models.Index(fields=['event', 'status'], name='reg_event_status_idx'),
            models.Index(fields=['user', 'created_at'], name='reg_user_created_idx'),
            models.Index(fields=['team', 'status'], name='reg_team_status_idx'),
            models.Index(fields=['event', 'current_round'], name='reg_event_round_idx'),
        ]

    def __str__(self):
        return f"{self.registration_number or self.pk} - {self.user} @ {self.event}"

    @property
    def is_active(self):
        return self.status in self.ACTIVE_STATUSES

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    @property
    def is_checked_in(self):
        attendance = getattr(self, 'attendance', None)
        return bool(attendance and attendance.check_in)


class CapacityCounter(models.Model):
    """
    Number of active registrations held against an event.

    Written only by events.capacity (locked row, F() arithmetic); nothing
    else may read-modify-write it.
    """
    event = models.OneToOneField(
        Event,
        on_delete=models.CASCADE,
        related_name='capacity_counter',
    )
    registered_count = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.event}: {self.registered_count}"


class Attendance(models.Model):
    registration = models.OneToOneField(
        Registration,
        on_delete=models.CASCADE,
        related_name='attendance'
    )
    check_in = models.DateTimeField(blank=True, null=True)
    checked_in_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name='check_ins_recorded',
        null=True,
        blank=True,
    )
    qr_code = models.UUIDField(
        default=uuid.uuid4,
        editable=False,
        unique=True,
        db_index=True,
    )

    def __str__(self):
        return f"{self.registration.user.username} - {self.registration.event.title}"
