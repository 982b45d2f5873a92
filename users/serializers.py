from rest_framework import serializers
from .models import User


class UserSerializer(serializers.ModelSerializer):
    is_platform_admin = serializers.BooleanField(read_only=True)
    active_registrations = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id',
            'username',
            'email',
            'role',
            'phone',
            'is_platform_admin',
            'active_registrations',
            'date_joined',
        ]
        read_only_fields = fields

    def get_active_registrations(self, obj):
        from events.models import Registration
        return obj.registrations.filter(status__in=Registration.ACTIVE_STATUSES).count()
