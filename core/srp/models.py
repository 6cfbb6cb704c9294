"""
SRP models.

Claims, the mailbox ledger, eligible ship types, fleet schedule, the ban list,
the outbound mail queue and the corporation wallet journal.
"""

from datetime import timedelta

from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class ShipTypeConfig(models.Model):
    """
    A ship type eligible for SRP and its payout rules.
    """

    type_id = models.IntegerField(unique=True)
    type_name = models.CharField(max_length=255)
    group_id = models.IntegerField(null=True, blank=True)
    group_name = models.CharField(max_length=255, blank=True)

    base_payout = models.DecimalField(max_digits=20, decimal_places=2)
    polarized_payout = models.DecimalField(
        max_digits=20, decimal_places=2, null=True, blank=True,
        help_text="Payout when the loss carried polarized weapons",
    )
    fc_discretion = models.BooleanField(default=False, help_text="Claims always go to manual review")
    is_active = models.BooleanField(default=True)
    notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _('ship type config')
        verbose_name_plural = _('ship type configs')
        ordering = ['group_name', 'type_name']

    def __str__(self) -> str:
        return f"{self.type_name} ({self.base_payout:,.0f} ISK)"

    def to_rule(self):
        from core.srp.decisions import ShipRule
        return ShipRule(
            type_id=self.type_id,
            type_name=self.type_name,
            group_name=self.group_name,
            base_payout=self.base_payout,
            polarized_payout=self.polarized_payout,
            fc_discretion=self.fc_discretion,
            is_active=self.is_active,
        )


class Fleet(models.Model):
    """A scheduled fleet. Losses are only covered near fleet activity."""

    class Status(models.TextChoices):
        SCHEDULED = 'scheduled', _('Scheduled')
        IN_PROGRESS = 'in_progress', _('In progress')
        COMPLETED = 'completed', _('Completed')
        CANCELLED = 'cancelled', _('Cancelled')

    name = models.CharField(max_length=255)
    scheduled_at = models.DateTimeField(db_index=True)
    duration_minutes = models.PositiveIntegerField(default=120)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.SCHEDULED)
    started_at = models.DateTimeField(null=True, blank=True)
    ended_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _('fleet')
        verbose_name_plural = _('fleets')
        ordering = ['-scheduled_at']

    def __str__(self) -> str:
        return f"{self.name} @ {self.scheduled_at:%Y-%m-%d %H:%M}"

    def to_window(self):
        """Actual start/end when known, otherwise the scheduled slot."""
        from core.srp.decisions import FleetWindow
        start = self.started_at or self.scheduled_at
        end = self.ended_at or (start + timedelta(minutes=self.duration_minutes))
        return FleetWindow(
            fleet_id=self.pk,
            name=self.name,
            start=start,
            end=end,
            cancelled=self.status == self.Status.CANCELLED,
        )


class BanListEntry(models.Model):
    """
    A character, corporation or alliance barred from SRP.

    Maintained by operators; the mail pipeline only reads it.
    """

    class EntityType(models.TextChoices):
        CHARACTER = 'character', _('Character')
        CORPORATION = 'corporation', _('Corporation')
        ALLIANCE = 'alliance', _('Alliance')

    esi_id = models.BigIntegerField(null=True, blank=True, db_index=True)
    name = models.CharField(max_length=255, blank=True)
    entity_type = models.CharField(max_length=20, choices=EntityType.choices, default=EntityType.CHARACTER)
    srp_banned = models.BooleanField(default=True)
    reason = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _('ban list entry')
        verbose_name_plural = _('ban list entries')
        ordering = ['name']

    def __str__(self) -> str:
        return f"{self.name or self.esi_id} ({self.entity_type})"

    @classmethod
    def banned_from_srp(cls, esi_ids) -> dict:
        """Active SRP bans among the given ids, keyed by id."""
        ids = [esi_id for esi_id in esi_ids if esi_id is not None]
        if not ids:
            return {}
        return {entry.esi_id: entry for entry in cls.objects.filter(esi_id__in=ids, srp_banned=True)}


class WalletJournalEntry(models.Model):
    """
    A corporation wallet journal entry.

    From ESI: GET /corporations/{corporation_id}/wallets/{division}/journal/
    Append-only; entries are never modified after sync.
    """

    entry_id = models.BigIntegerField()
    division = models.PositiveSmallIntegerField()
    amount = models.DecimalField(max_digits=20, decimal_places=2)
    balance = models.DecimalField(max_digits=20, decimal_places=2, null=True, blank=True)
    date = models.DateTimeField(db_index=True)
    description = models.TextField(blank=True)
    reason = models.TextField(blank=True)
    ref_type = models.CharField(max_length=100, db_index=True)
    first_party_id = models.BigIntegerField(null=True, blank=True)
    second_party_id = models.BigIntegerField(null=True, blank=True)
    context_id = models.BigIntegerField(null=True, blank=True)
    context_id_type = models.CharField(max_length=50, blank=True)

    synced_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _('wallet journal entry')
        verbose_name_plural = _('wallet journal entries')
        ordering = ['-date']
        unique_together = [('entry_id', 'division')]

    def __str__(self) -> str:
        return f"Division {self.division}: {self.ref_type} {self.amount} ISK"

    @property
    def recipient_id(self):
        """The character paid by a withdrawal, when the journal names one."""
        if self.context_id and self.context_id_type == 'character_id':
            return self.context_id
        return self.second_party_id


class SRPRequest(models.Model):
    """
    A ship replacement claim.

    Created from an SRP mail. Status only moves forward:
    pending -> approved/denied/cancelled, approved -> paid/cancelled,
    denied -> cancelled. Paid and cancelled are terminal.
    """

    class Status(models.TextChoices):
        PENDING = 'pending', _('Pending')
        APPROVED = 'approved', _('Approved')
        DENIED = 'denied', _('Denied')
        PAID = 'paid', _('Paid')
        CANCELLED = 'cancelled', _('Cancelled')

    # Victim
    victim_character_id = models.BigIntegerField(null=True, blank=True, db_index=True)
    victim_character_name = models.CharField(max_length=255, blank=True)
    victim_corporation_id = models.BigIntegerField(null=True, blank=True)
    victim_corporation_name = models.CharField(max_length=255, blank=True)
    victim_alliance_id = models.BigIntegerField(null=True, blank=True)
    victim_alliance_name = models.CharField(max_length=255, blank=True)

    # Mail sender, not always the victim
    submitter_character_id = models.BigIntegerField(db_index=True)
    submitter_character_name = models.CharField(max_length=255, blank=True)

    # Killmail
    killmail_id = models.BigIntegerField(null=True, blank=True)
    killmail_hash = models.CharField(max_length=64, blank=True)
    ship_type_id = models.IntegerField(null=True, blank=True)
    ship_type_name = models.CharField(max_length=255, blank=True)
    ship_group_id = models.IntegerField(null=True, blank=True)
    ship_group_name = models.CharField(max_length=255, blank=True)
    killmail_time = models.DateTimeField(null=True, blank=True)
    solar_system_id = models.IntegerField(null=True, blank=True)
    solar_system_name = models.CharField(max_length=255, blank=True)
    is_polarized = models.BooleanField(default=False)
    total_value = models.DecimalField(max_digits=20, decimal_places=2, null=True, blank=True)

    # Payout
    base_payout_amount = models.DecimalField(max_digits=20, decimal_places=2, null=True, blank=True)
    final_payout_amount = models.DecimalField(max_digits=20, decimal_places=2, null=True, blank=True)

    # Decision
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING, db_index=True)
    processed_by_character_id = models.BigIntegerField(null=True, blank=True)
    processed_by_name = models.CharField(max_length=255, blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    denial_reason = models.TextField(blank=True)
    admin_notes = models.TextField(blank=True)
    auto_decided = models.BooleanField(default=False)
    requires_fc_approval = models.BooleanField(default=False)
    decision_rule = models.CharField(max_length=50, blank=True)

    # Payment
    payment_entry = models.OneToOneField(
        WalletJournalEntry,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='paid_claim',
    )
    payment_amount = models.DecimalField(max_digits=20, decimal_places=2, null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    # Originating mail
    mail_id = models.BigIntegerField(null=True, blank=True, db_index=True)
    mail_subject = models.CharField(max_length=255, blank=True)
    pilot_notes = models.TextField(blank=True, help_text="Claimant's text from the mail, links removed")

    validation_warnings = models.JSONField(default=list, blank=True)
    enrichment_error = models.TextField(blank=True)
    enrichment_data = models.JSONField(default=dict, blank=True, help_text="zKillboard metadata")

    submitted_at = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _('SRP request')
        verbose_name_plural = _('SRP requests')
        ordering = ['-submitted_at']
        constraints = [
            models.UniqueConstraint(
                fields=['killmail_id'],
                condition=models.Q(killmail_id__isnull=False),
                name='unique_srp_killmail',
            ),
        ]

    def __str__(self) -> str:
        pilot = self.victim_character_name or self.submitter_character_name or self.submitter_character_id
        return f"SRP #{self.pk} {pilot} - {self.ship_type_name or 'unknown ship'} ({self.status})"

    @property
    def killmail_url(self) -> str:
        if not self.killmail_id:
            return ''
        return f"https://zkillboard.com/kill/{self.killmail_id}/"


class ProcessedMail(models.Model):
    """
    A mailbox mail the pipeline has handled.

    The mail id is the idempotency key: a mail with a row here is never
    processed again. Delete the row to force reprocessing.
    """

    class Status(models.TextChoices):
        CREATED = 'created', _('Created')
        SKIPPED = 'skipped', _('Skipped')
        ERROR = 'error', _('Error')

    mail_id = models.BigIntegerField(primary_key=True)
    sender_character_id = models.BigIntegerField(null=True, blank=True, db_index=True)
    sender_name = models.CharField(max_length=255, blank=True)
    subject = models.CharField(max_length=255, blank=True)
    mail_timestamp = models.DateTimeField(null=True, blank=True)
    processed_at = models.DateTimeField(auto_now_add=True)
    status = models.CharField(max_length=20, choices=Status.choices)
    reason = models.CharField(max_length=50, blank=True)
    srp_request = models.ForeignKey(
        SRPRequest,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='processed_mails',
    )
    error_message = models.TextField(blank=True)
    mail_body = models.TextField(blank=True)

    class Meta:
        verbose_name = _('processed mail')
        verbose_name_plural = _('processed mails')
        ordering = ['-mail_timestamp']

    def __str__(self) -> str:
        return f"Mail {self.mail_id} ({self.status}{': ' + self.reason if self.reason else ''})"


class NotificationQueueEntry(models.Model):
    """
    An outbound in-game mail waiting to be delivered.

    Rows are deleted on successful delivery or by an operator, never
    evicted after repeated failures.
    """

    class MailType(models.TextChoices):
        RECEIVED = 'received', _('Request received')
        AUTO_APPROVAL = 'auto_approval', _('Auto approval')
        AUTO_DENIAL = 'auto_denial', _('Auto denial')
        MANUAL_APPROVAL = 'manual_approval', _('Manual approval')
        MANUAL_DENIAL = 'manual_denial', _('Manual denial')
        DUPLICATE = 'duplicate', _('Duplicate request')
        PAYMENT = 'payment', _('Payment sent')

    mail_type = models.CharField(max_length=30, choices=MailType.choices)
    recipient_character_id = models.BigIntegerField()
    payload = models.JSONField(default=dict, blank=True)
    retry_after = models.DateTimeField(default=timezone.now, db_index=True)
    attempts = models.PositiveIntegerField(default=0)
    last_error = models.TextField(blank=True)
    srp_request = models.ForeignKey(
        SRPRequest,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='notifications',
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _('notification queue entry')
        verbose_name_plural = _('notification queue entries')
        ordering = ['retry_after', 'id']

    def __str__(self) -> str:
        return f"{self.mail_type} -> {self.recipient_character_id} (attempts: {self.attempts})"
