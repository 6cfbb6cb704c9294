# Generated manually for the srpwire core models

import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='ServiceToken',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('character_id', models.BigIntegerField(db_index=True, unique=True)),
                ('character_name', models.CharField(blank=True, max_length=255)),
                ('refresh_token', models.TextField(help_text='Encrypted OAuth2 refresh token')),
                ('scopes', models.TextField(blank=True)),
                ('token_expires', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'service token',
                'verbose_name_plural': 'service tokens',
            },
        ),
        migrations.CreateModel(
            name='PipelineLease',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100, unique=True)),
                ('holder', models.CharField(max_length=64)),
                ('acquired_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('expires_at', models.DateTimeField(db_index=True)),
            ],
            options={
                'verbose_name': 'pipeline lease',
                'verbose_name_plural': 'pipeline leases',
            },
        ),
    ]
