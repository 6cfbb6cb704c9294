"""
Management command to store the mailer character's refresh token.

The token is encrypted at rest and replaced automatically whenever EVE SSO
rotates it.
Usage:
    python manage.py set_service_token 2119887654 <refresh_token> --name "SRP Mailer"
"""
from django.core.cache import cache
from django.core.management.base import BaseCommand

from core.models import ServiceToken


class Command(BaseCommand):
    help = 'Store or replace the refresh token of a service account character'

    def add_arguments(self, parser):
        parser.add_argument('character_id', type=int)
        parser.add_argument('refresh_token')
        parser.add_argument('--name', dest='name', default='', help='Character name')
        parser.add_argument('--scopes', dest='scopes', default='', help='Space separated granted scopes')

    def handle(self, *args, **options):
        token, created = ServiceToken.objects.get_or_create(character_id=options['character_id'])
        token.set_refresh_token(options['refresh_token'])
        if options['name']:
            token.character_name = options['name']
        if options['scopes']:
            token.scopes = options['scopes']
        token.token_expires = None
        token.save()
        cache.delete(f'access_token:service:{token.character_id}')

        verb = 'Stored' if created else 'Replaced'
        self.stdout.write(self.style.SUCCESS(f'{verb} service token for character {token.character_id}'))
