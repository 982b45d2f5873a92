from django.contrib import admin
from .models import DomainActivity


@admin.register(DomainActivity)
class DomainActivityAdmin(admin.ModelAdmin):
    list_display = ('verb', 'actor', 'content_type', 'object_id', 'created_at')
    list_filter = ('verb', 'content_type')
    search_fields = ('verb', 'actor__username')
    readonly_fields = ('actor', 'verb', 'content_type', 'object_id', 'metadata', 'created_at')
