"""
Django admin for SRP claims, the mailbox ledger and the mail queue.

Status changes go through core.srp.decisions so the lifecycle rules and
claimant notifications apply to manual review as well.
"""

from django.contrib import admin, messages
from django.utils import timezone

from core.exceptions import InvalidTransitionError
from core.srp import decisions
from .models import (
    BanListEntry, Fleet, NotificationQueueEntry, ProcessedMail, ShipTypeConfig, SRPRequest, WalletJournalEntry,
)


@admin.register(ShipTypeConfig)
class ShipTypeConfigAdmin(admin.ModelAdmin):
    list_display = ['type_name', 'type_id', 'group_name', 'base_payout', 'polarized_payout',
                    'fc_discretion', 'is_active']
    list_filter = ['is_active', 'fc_discretion', 'group_name']
    search_fields = ['type_name', 'type_id', 'group_name']
    list_editable = ['is_active']


@admin.register(Fleet)
class FleetAdmin(admin.ModelAdmin):
    list_display = ['name', 'scheduled_at', 'duration_minutes', 'status', 'started_at', 'ended_at']
    list_filter = ['status']
    search_fields = ['name']
    date_hierarchy = 'scheduled_at'


@admin.register(BanListEntry)
class BanListEntryAdmin(admin.ModelAdmin):
    list_display = ['name', 'esi_id', 'entity_type', 'srp_banned', 'reason', 'created_at']
    list_filter = ['entity_type', 'srp_banned']
    search_fields = ['name', 'esi_id', 'reason']


def _apply(modeladmin, request, queryset, action, verb, **kwargs):
    """Run a lifecycle action on each selected claim, reporting successes and refusals."""
    done = 0
    for claim in queryset:
        try:
            action(claim, actor_name=request.user.get_username(), **kwargs)
            done += 1
        except InvalidTransitionError as e:
            modeladmin.message_user(request, f'SRP #{claim.pk}: {e}', messages.WARNING)
    if done:
        modeladmin.message_user(request, f'{verb} {done} SRP request(s).', messages.SUCCESS)


@admin.register(SRPRequest)
class SRPRequestAdmin(admin.ModelAdmin):
    """Admin interface for SRP requests with review actions."""

    list_display = ['id', 'victim_character_name', 'ship_type_name', 'status', 'final_payout_amount',
                    'auto_decided', 'requires_fc_approval', 'submitted_at']
    list_filter = ['status', 'auto_decided', 'requires_fc_approval', 'is_polarized', 'ship_group_name']
    search_fields = ['victim_character_name', 'submitter_character_name', 'killmail_id', 'ship_type_name']
    date_hierarchy = 'submitted_at'
    actions = ['approve_selected', 'deny_selected', 'cancel_selected']

    readonly_fields = [
        'status', 'killmail_id', 'killmail_hash', 'killmail_time', 'total_value', 'is_polarized',
        'processed_by_character_id', 'processed_by_name', 'processed_at', 'auto_decided', 'decision_rule',
        'final_payout_amount', 'denial_reason', 'payment_entry', 'payment_amount', 'paid_at', 'mail_id',
        'mail_subject', 'pilot_notes', 'validation_warnings', 'enrichment_error', 'enrichment_data',
        'created_at', 'updated_at',
    ]

    fieldsets = (
        (None, {'fields': ('status', 'decision_rule', 'auto_decided', 'requires_fc_approval')}),
        ('Victim', {'fields': ('victim_character_id', 'victim_character_name', 'victim_corporation_id',
                               'victim_corporation_name', 'victim_alliance_id', 'victim_alliance_name')}),
        ('Submitter', {'fields': ('submitter_character_id', 'submitter_character_name', 'mail_id',
                                  'mail_subject', 'pilot_notes', 'submitted_at')}),
        ('Killmail', {'fields': ('killmail_id', 'killmail_hash', 'ship_type_id', 'ship_type_name',
                                 'ship_group_id', 'ship_group_name', 'killmail_time', 'solar_system_id',
                                 'solar_system_name', 'is_polarized', 'total_value')}),
        ('Payout', {'fields': ('base_payout_amount', 'final_payout_amount')}),
        ('Review', {'fields': ('processed_by_character_id', 'processed_by_name', 'processed_at',
                               'denial_reason', 'admin_notes')}),
        ('Payment', {'fields': ('payment_entry', 'payment_amount', 'paid_at')}),
        ('Enrichment', {'fields': ('validation_warnings', 'enrichment_error', 'enrichment_data')}),
        ('Metadata', {'fields': ('created_at', 'updated_at')}),
    )

    def get_readonly_fields(self, request, obj=None):
        fields = list(super().get_readonly_fields(request, obj))
        if obj is not None and obj.status in (SRPRequest.Status.PAID, SRPRequest.Status.CANCELLED):
            fields.append('base_payout_amount')
        return fields

    @admin.action(description='Approve selected requests')
    def approve_selected(self, request, queryset):
        _apply(self, request, queryset, decisions.approve_claim, 'Approved')

    @admin.action(description='Deny selected requests')
    def deny_selected(self, request, queryset):
        _apply(self, request, queryset, decisions.deny_claim, 'Denied', reason='Denied on review')

    @admin.action(description='Cancel selected requests')
    def cancel_selected(self, request, queryset):
        _apply(self, request, queryset, decisions.cancel_claim, 'Cancelled')


@admin.register(ProcessedMail)
class ProcessedMailAdmin(admin.ModelAdmin):
    list_display = ['mail_id', 'sender_name', 'subject', 'status', 'reason', 'srp_request', 'mail_timestamp']
    list_filter = ['status', 'reason']
    search_fields = ['mail_id', 'sender_name', 'subject']
    readonly_fields = ['mail_id', 'sender_character_id', 'sender_name', 'subject', 'mail_timestamp',
                       'processed_at', 'status', 'reason', 'srp_request', 'error_message', 'mail_body']
    actions = ['reprocess_selected']

    def has_add_permission(self, request):
        return False

    @admin.action(description='Reprocess selected mail on the next run')
    def reprocess_selected(self, request, queryset):
        count, _ = queryset.delete()
        self.message_user(request, f'{count} mail(s) will be reprocessed on the next run.', messages.SUCCESS)


@admin.register(NotificationQueueEntry)
class NotificationQueueEntryAdmin(admin.ModelAdmin):
    list_display = ['id', 'mail_type', 'recipient_character_id', 'attempts', 'retry_after', 'last_error']
    list_filter = ['mail_type']
    search_fields = ['recipient_character_id']
    readonly_fields = ['attempts', 'last_error', 'created_at', 'updated_at']
    actions = ['retry_now']

    @admin.action(description='Retry selected mail on the next run')
    def retry_now(self, request, queryset):
        count = queryset.update(retry_after=timezone.now())
        self.message_user(request, f'{count} mail(s) due on the next run.', messages.SUCCESS)


@admin.register(WalletJournalEntry)
class WalletJournalEntryAdmin(admin.ModelAdmin):
    list_display = ['entry_id', 'division', 'date', 'ref_type', 'amount', 'reason', 'recipient_id']
    list_filter = ['division', 'ref_type']
    search_fields = ['entry_id', 'reason', 'description']
    date_hierarchy = 'date'

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
