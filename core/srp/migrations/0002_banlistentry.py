# Generated manually for the SRP ban list

from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('srp', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='BanListEntry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('esi_id', models.BigIntegerField(blank=True, db_index=True, null=True)),
                ('name', models.CharField(blank=True, max_length=255)),
                ('entity_type', models.CharField(choices=[('character', 'Character'), ('corporation', 'Corporation'), ('alliance', 'Alliance')], default='character', max_length=20)),
                ('srp_banned', models.BooleanField(default=True)),
                ('reason', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'ban list entry',
                'verbose_name_plural': 'ban list entries',
                'ordering': ['name'],
            },
        ),
    ]
