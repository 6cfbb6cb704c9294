"""
Management command to inspect and manage the outbound SRP mail queue.

Usage:
    python manage.py srp_mail_queue                   # Summary
    python manage.py srp_mail_queue --list            # List every queued mail
    python manage.py srp_mail_queue --retry-now 12    # Make entry 12 due immediately
    python manage.py srp_mail_queue --clear 12        # Drop entry 12 without sending
    python manage.py srp_mail_queue --clear all       # Drop every queued mail
"""
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from core.srp.models import NotificationQueueEntry
from core.srp.notifications import pending_count


class Command(BaseCommand):
    help = 'Inspect and manage the SRP notification mail queue'

    def add_arguments(self, parser):
        parser.add_argument(
            '--list',
            action='store_true',
            dest='list',
            help='List queued mail',
        )
        parser.add_argument(
            '--clear',
            dest='clear',
            metavar='ID',
            help='Delete a queued mail by id, or "all"',
        )
        parser.add_argument(
            '--retry-now',
            dest='retry_now',
            metavar='ID',
            help='Make a queued mail due immediately, or "all"',
        )

    def _select(self, value):
        entries = NotificationQueueEntry.objects.all()
        if value == 'all':
            return entries
        try:
            return entries.filter(pk=int(value))
        except ValueError:
            raise CommandError(f'Expected a queue id or "all", got {value!r}')

    def handle(self, *args, **options):
        if options['clear']:
            count, _ = self._select(options['clear']).delete()
            self.stdout.write(self.style.SUCCESS(f'Cleared {count} queued mail(s)'))
            return

        if options['retry_now']:
            count = self._select(options['retry_now']).update(retry_after=timezone.now())
            self.stdout.write(self.style.SUCCESS(f'{count} queued mail(s) due on the next run'))
            return

        entries = NotificationQueueEntry.objects.order_by('retry_after', 'id')
        total = entries.count()
        self.stdout.write(f'Queued mail: {total} total, {pending_count()} due now')

        if options['list']:
            for entry in entries:
                line = (
                    f'#{entry.pk} {entry.mail_type} -> {entry.recipient_character_id} '
                    f'attempts={entry.attempts} retry_after={entry.retry_after:%Y-%m-%d %H:%M:%S}'
                )
                if entry.last_error:
                    line += f' last_error={entry.last_error[:80]}'
                self.stdout.write(line)
