"""
Django admin configuration for srpwire core models.
"""

from django.contrib import admin
from .models import ServiceToken, PipelineLease


@admin.register(ServiceToken)
class ServiceTokenAdmin(admin.ModelAdmin):
    """Admin interface for ServiceToken model."""

    list_display = ['character_name', 'character_id', 'token_expires', 'updated_at']
    search_fields = ['character_name', 'character_id']
    readonly_fields = ['refresh_token', 'token_expires', 'created_at', 'updated_at']

    fieldsets = (
        (None, {'fields': ('character_id', 'character_name', 'scopes')}),
        ('OAuth', {'fields': ('refresh_token', 'token_expires')}),
        ('Metadata', {'fields': ('created_at', 'updated_at')}),
    )


@admin.register(PipelineLease)
class PipelineLeaseAdmin(admin.ModelAdmin):
    """Leases are only inspected or deleted to unblock a stuck pipeline."""

    list_display = ['name', 'holder', 'acquired_at', 'expires_at']
    readonly_fields = ['name', 'holder', 'acquired_at', 'expires_at']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
