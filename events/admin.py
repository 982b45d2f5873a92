from django.contrib import admin
from .models import (
    Attendance, CapacityCounter, Event, Registration, Round, Team, TeamMembership
)

@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    list_display = ('title', 'status', 'organizer', 'start_time', 'max_participants', 'is_paid')
    list_filter = ('status', 'is_paid', 'start_time')
    search_fields = ('title', 'description', 'organizer__username')
    date_hierarchy = 'start_time'

@admin.register(Registration)
class RegistrationAdmin(admin.ModelAdmin):
    list_display = ('registration_number', 'user', 'event', 'team', 'status', 'payment_status', 'created_at')
    list_filter = ('status', 'payment_status')
    search_fields = ('registration_number', 'user__username', 'event__title')
    readonly_fields = ('capacity_released',)

@admin.register(CapacityCounter)
class CapacityCounterAdmin(admin.ModelAdmin):
    list_display = ('event', 'registered_count', 'updated_at')
    # Counter is written only through events.capacity; use sync_capacity_counters to repair
    readonly_fields = ('event', 'registered_count', 'updated_at')

@admin.register(Attendance)
class AttendanceAdmin(admin.ModelAdmin):
    list_display = ('registration', 'check_in', 'checked_in_by', 'qr_code')
    search_fields = ('registration__user__username', 'qr_code')
    list_filter = ('check_in',)

class TeamMembershipInline(admin.TabularInline):
    model = TeamMembership
    extra = 0

@admin.register(Team)
class TeamAdmin(admin.ModelAdmin):
    list_display = ('name', 'event', 'leader', 'status', 'invite_code', 'created_at')
    list_filter = ('status',)
    search_fields = ('name', 'invite_code', 'leader__username', 'event__title')
    inlines = [TeamMembershipInline]

@admin.register(Round)
class RoundAdmin(admin.ModelAdmin):
    list_display = ('event', 'number', 'name', 'status', 'starts_at', 'ends_at')
    list_filter = ('status',)
    search_fields = ('name', 'event__title')
