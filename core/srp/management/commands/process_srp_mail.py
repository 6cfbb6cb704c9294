"""
Management command to run the SRP mail pipeline.

Can be run via cron or systemd timer instead of the django-q schedule.
Usage:
    python manage.py process_srp_mail               # Run once, inline
    python manage.py process_srp_mail --queue       # Queue a run on the django-q cluster
    python manage.py process_srp_mail --schedule    # Create/update the recurring schedule
"""
import json
import logging
from django.core.management.base import BaseCommand
from django_q.tasks import async_task

from core.srp.tasks import TASK_NAME, ensure_schedule, run_srp_pipeline

logger = logging.getLogger('srpwire')


class Command(BaseCommand):
    help = 'Process SRP mail, drain the notification queue and reconcile wallet payments'

    def add_arguments(self, parser):
        parser.add_argument(
            '--character',
            type=int,
            dest='character_id',
            help='Mailer character id (defaults to EVE_MAILER_CHARACTER_ID)',
        )
        parser.add_argument(
            '--queue',
            action='store_true',
            dest='queue',
            help='Queue the run on the django-q cluster instead of running inline',
        )
        parser.add_argument(
            '--schedule',
            action='store_true',
            dest='schedule',
            help='Create or update the recurring pipeline schedule',
        )

    def handle(self, *args, **options):
        if options['schedule']:
            scheduled = ensure_schedule()
            self.stdout.write(self.style.SUCCESS(f'Pipeline scheduled every {scheduled.minutes} minutes'))
            return

        if options['queue']:
            result = async_task(TASK_NAME, options['character_id'])
            self.stdout.write(self.style.SUCCESS(f'Queued SRP pipeline task: {result}'))
            return

        report = run_srp_pipeline(options['character_id'])
        self.stdout.write(json.dumps(report, indent=2))

        if report['success']:
            self.stdout.write(self.style.SUCCESS(f"SRP pipeline {report['status']}"))
        else:
            self.stdout.write(self.style.ERROR(f"SRP pipeline {report['status']}"))
