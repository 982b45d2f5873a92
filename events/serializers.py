from rest_framework import serializers

from .models import Attendance, Registration, Round, Team, TeamMembership


# -----------------------------------------
# REGISTRATION SERIALIZERS
# -----------------------------------------
class RegistrationSerializer(serializers.ModelSerializer):
    username = serializers.CharField(source="user.username", read_only=True)
    event_title = serializers.CharField(source="event.title", read_only=True)
    team_name = serializers.CharField(source="team.name", read_only=True, default=None)
    checked_in_at = serializers.SerializerMethodField()

    class Meta:
        model = Registration
        fields = [
            "id",
            "registration_number",
            "event",
            "event_title",
            "user",
            "username",
            "team",
            "team_name",
            "status",
            "payment_status",
            "notes",
            "cancelled_at",
            "cancellation_reason",
            "current_round",
            "eliminated_in_round",
            "advanced_to_rounds",
            "checked_in_at",
            "created_at",
        ]
        read_only_fields = fields

    def get_checked_in_at(self, obj):
        attendance = getattr(obj, "attendance", None)
        return attendance.check_in if attendance else None


class RegisterSerializer(serializers.Serializer):
    event_id = serializers.IntegerField()
    team_id = serializers.IntegerField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=2000)


class CancelRegistrationSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500)


class RegistrationStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Registration.STATUS_CHOICES)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500)


class AttendanceSerializer(serializers.ModelSerializer):
    registration_number = serializers.CharField(source="registration.registration_number", read_only=True)
    user = serializers.CharField(source="registration.user.username", read_only=True)
    checked_in_by = serializers.CharField(source="checked_in_by.username", read_only=True, default=None)

    class Meta:
        model = Attendance
        fields = ["id", "registration", "registration_number", "user", "check_in", "checked_in_by", "qr_code"]
        read_only_fields = fields


# -----------------------------------------
# TEAM SERIALIZERS
# -----------------------------------------
class TeamMemberSerializer(serializers.ModelSerializer):
    user_id = serializers.IntegerField(source="user.id", read_only=True)
    username = serializers.CharField(source="user.username", read_only=True)

    class Meta:
        model = TeamMembership
        fields = ["user_id", "username", "joined_at"]
        read_only_fields = fields


class TeamSerializer(serializers.ModelSerializer):
    members = TeamMemberSerializer(source="memberships", many=True, read_only=True)
    leader_name = serializers.CharField(source="leader.username", read_only=True)
    current_size = serializers.IntegerField(read_only=True)
    is_full = serializers.BooleanField(read_only=True)

    class Meta:
        model = Team
        fields = [
            "id",
            "event",
            "name",
            "description",
            "leader",
            "leader_name",
            "max_size",
            "current_size",
            "is_full",
            "status",
            "invite_code",
            "members",
            "created_at",
        ]
        read_only_fields = fields


class TeamCreateSerializer(serializers.Serializer):
    event_id = serializers.IntegerField()
    name = serializers.CharField(max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("Team name cannot be blank.")
        return value


class TeamJoinSerializer(serializers.Serializer):
    invite_code = serializers.CharField(max_length=6)


class TeamMemberAddSerializer(serializers.Serializer):
    user_id = serializers.IntegerField()


class TransferLeadershipSerializer(serializers.Serializer):
    new_leader_id = serializers.IntegerField()


# -----------------------------------------
# ROUND SERIALIZERS
# -----------------------------------------
class RoundSerializer(serializers.ModelSerializer):
    class Meta:
        model = Round
        fields = ["id", "event", "number", "name", "status", "starts_at", "ends_at"]
        read_only_fields = fields


class RoundStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Round.STATUS_CHOICES)


class ProgressTeamsSerializer(serializers.Serializer):
    team_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        allow_empty=False,
    )
    from_round = serializers.IntegerField(min_value=1)
    to_round = serializers.IntegerField(min_value=1)
    eliminate_rest = serializers.BooleanField(default=False)
