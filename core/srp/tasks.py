"""
Background tasks for the SRP pipeline.

Executed by django-q on a fixed schedule, or queued on demand from the
process_srp_mail management command.
"""

import logging

from django.conf import settings
from django_q.models import Schedule
from django_q.tasks import schedule

logger = logging.getLogger('srpwire')

TASK_NAME = 'core.srp.tasks.run_srp_pipeline'
SCHEDULE_NAME = 'SRP mail pipeline'


def run_srp_pipeline(character_id: int = None) -> dict:
    """Run the SRP pipeline once. Returns the run report."""
    from core.srp.pipeline import run_pipeline

    return run_pipeline(character_id)


def ensure_schedule(minutes: int = None) -> Schedule:
    """Create or update the recurring django-q schedule for the pipeline."""
    minutes = minutes or settings.SRP_SCHEDULE_MINUTES

    existing = Schedule.objects.filter(name=SCHEDULE_NAME).first()
    if existing:
        if existing.minutes != minutes or existing.schedule_type != Schedule.MINUTES:
            existing.schedule_type = Schedule.MINUTES
            existing.minutes = minutes
            existing.save(update_fields=['schedule_type', 'minutes'])
            logger.info(f'Updated SRP pipeline schedule to every {minutes} minutes')
        return existing

    logger.info(f'Scheduling SRP pipeline every {minutes} minutes')
    return schedule(
        TASK_NAME,
        name=SCHEDULE_NAME,
        schedule_type=Schedule.MINUTES,
        minutes=minutes,
        repeats=-1,
    )
