# Generated manually for the SRP models

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='ShipTypeConfig',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('type_id', models.IntegerField(unique=True)),
                ('type_name', models.CharField(max_length=255)),
                ('group_id', models.IntegerField(blank=True, null=True)),
                ('group_name', models.CharField(blank=True, max_length=255)),
                ('base_payout', models.DecimalField(decimal_places=2, max_digits=20)),
                ('polarized_payout', models.DecimalField(blank=True, decimal_places=2, help_text='Payout when the loss carried polarized weapons', max_digits=20, null=True)),
                ('fc_discretion', models.BooleanField(default=False, help_text='Claims always go to manual review')),
                ('is_active', models.BooleanField(default=True)),
                ('notes', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'ship type config',
                'verbose_name_plural': 'ship type configs',
                'ordering': ['group_name', 'type_name'],
            },
        ),
        migrations.CreateModel(
            name='Fleet',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=255)),
                ('scheduled_at', models.DateTimeField(db_index=True)),
                ('duration_minutes', models.PositiveIntegerField(default=120)),
                ('status', models.CharField(choices=[('scheduled', 'Scheduled'), ('in_progress', 'In progress'), ('completed', 'Completed'), ('cancelled', 'Cancelled')], default='scheduled', max_length=20)),
                ('started_at', models.DateTimeField(blank=True, null=True)),
                ('ended_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'fleet',
                'verbose_name_plural': 'fleets',
                'ordering': ['-scheduled_at'],
            },
        ),
        migrations.CreateModel(
            name='WalletJournalEntry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('entry_id', models.BigIntegerField()),
                ('division', models.PositiveSmallIntegerField()),
                ('amount', models.DecimalField(decimal_places=2, max_digits=20)),
                ('balance', models.DecimalField(blank=True, decimal_places=2, max_digits=20, null=True)),
                ('date', models.DateTimeField(db_index=True)),
                ('description', models.TextField(blank=True)),
                ('reason', models.TextField(blank=True)),
                ('ref_type', models.CharField(db_index=True, max_length=100)),
                ('first_party_id', models.BigIntegerField(blank=True, null=True)),
                ('second_party_id', models.BigIntegerField(blank=True, null=True)),
                ('context_id', models.BigIntegerField(blank=True, null=True)),
                ('context_id_type', models.CharField(blank=True, max_length=50)),
                ('synced_at', models.DateTimeField(auto_now_add=True)),
            ],
            options={
                'verbose_name': 'wallet journal entry',
                'verbose_name_plural': 'wallet journal entries',
                'ordering': ['-date'],
                'unique_together': {('entry_id', 'division')},
            },
        ),
        migrations.CreateModel(
            name='SRPRequest',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('victim_character_id', models.BigIntegerField(blank=True, db_index=True, null=True)),
                ('victim_character_name', models.CharField(blank=True, max_length=255)),
                ('victim_corporation_id', models.BigIntegerField(blank=True, null=True)),
                ('victim_corporation_name', models.CharField(blank=True, max_length=255)),
                ('victim_alliance_id', models.BigIntegerField(blank=True, null=True)),
                ('victim_alliance_name', models.CharField(blank=True, max_length=255)),
                ('submitter_character_id', models.BigIntegerField(db_index=True)),
                ('submitter_character_name', models.CharField(blank=True, max_length=255)),
                ('killmail_id', models.BigIntegerField(blank=True, null=True)),
                ('killmail_hash', models.CharField(blank=True, max_length=64)),
                ('ship_type_id', models.IntegerField(blank=True, null=True)),
                ('ship_type_name', models.CharField(blank=True, max_length=255)),
                ('ship_group_id', models.IntegerField(blank=True, null=True)),
                ('ship_group_name', models.CharField(blank=True, max_length=255)),
                ('killmail_time', models.DateTimeField(blank=True, null=True)),
                ('solar_system_id', models.IntegerField(blank=True, null=True)),
                ('solar_system_name', models.CharField(blank=True, max_length=255)),
                ('is_polarized', models.BooleanField(default=False)),
                ('total_value', models.DecimalField(blank=True, decimal_places=2, max_digits=20, null=True)),
                ('base_payout_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=20, null=True)),
                ('final_payout_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=20, null=True)),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('approved', 'Approved'), ('denied', 'Denied'), ('paid', 'Paid'), ('cancelled', 'Cancelled')], db_index=True, default='pending', max_length=20)),
                ('processed_by_character_id', models.BigIntegerField(blank=True, null=True)),
                ('processed_by_name', models.CharField(blank=True, max_length=255)),
                ('processed_at', models.DateTimeField(blank=True, null=True)),
                ('denial_reason', models.TextField(blank=True)),
                ('admin_notes', models.TextField(blank=True)),
                ('auto_decided', models.BooleanField(default=False)),
                ('requires_fc_approval', models.BooleanField(default=False)),
                ('decision_rule', models.CharField(blank=True, max_length=50)),
                ('payment_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=20, null=True)),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('mail_id', models.BigIntegerField(blank=True, db_index=True, null=True)),
                ('mail_subject', models.CharField(blank=True, max_length=255)),
                ('pilot_notes', models.TextField(blank=True, help_text="Claimant's text from the mail, links removed")),
                ('validation_warnings', models.JSONField(blank=True, default=list)),
                ('enrichment_error', models.TextField(blank=True)),
                ('enrichment_data', models.JSONField(blank=True, default=dict, help_text='zKillboard metadata')),
                ('submitted_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('payment_entry', models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='paid_claim', to='srp.walletjournalentry')),
            ],
            options={
                'verbose_name': 'SRP request',
                'verbose_name_plural': 'SRP requests',
                'ordering': ['-submitted_at'],
                'constraints': [models.UniqueConstraint(condition=models.Q(('killmail_id__isnull', False)), fields=('killmail_id',), name='unique_srp_killmail')],
            },
        ),
        migrations.CreateModel(
            name='ProcessedMail',
            fields=[
                ('mail_id', models.BigIntegerField(primary_key=True, serialize=False)),
                ('sender_character_id', models.BigIntegerField(blank=True, db_index=True, null=True)),
                ('sender_name', models.CharField(blank=True, max_length=255)),
                ('subject', models.CharField(blank=True, max_length=255)),
                ('mail_timestamp', models.DateTimeField(blank=True, null=True)),
                ('processed_at', models.DateTimeField(auto_now_add=True)),
                ('status', models.CharField(choices=[('created', 'Created'), ('skipped', 'Skipped'), ('error', 'Error')], max_length=20)),
                ('reason', models.CharField(blank=True, max_length=50)),
                ('error_message', models.TextField(blank=True)),
                ('mail_body', models.TextField(blank=True)),
                ('srp_request', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='processed_mails', to='srp.srprequest')),
            ],
            options={
                'verbose_name': 'processed mail',
                'verbose_name_plural': 'processed mails',
                'ordering': ['-mail_timestamp'],
            },
        ),
        migrations.CreateModel(
            name='NotificationQueueEntry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('mail_type', models.CharField(choices=[('received', 'Request received'), ('auto_approval', 'Auto approval'), ('auto_denial', 'Auto denial'), ('manual_approval', 'Manual approval'), ('manual_denial', 'Manual denial'), ('duplicate', 'Duplicate request'), ('payment', 'Payment sent')], max_length=30)),
                ('recipient_character_id', models.BigIntegerField()),
                ('payload', models.JSONField(blank=True, default=dict)),
                ('retry_after', models.DateTimeField(db_index=True, default=django.utils.timezone.now)),
                ('attempts', models.PositiveIntegerField(default=0)),
                ('last_error', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('srp_request', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='notifications', to='srp.srprequest')),
            ],
            options={
                'verbose_name': 'notification queue entry',
                'verbose_name_plural': 'notification queue entries',
                'ordering': ['retry_after', 'id'],
            },
        ),
    ]
