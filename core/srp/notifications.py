"""
Outbound notification mail queue.

Mail is queued in the database and delivered by `drain` on each pipeline
run. Delivery respects ESI's mail rate limits: the first rate-limited
send pushes that entry back on the backoff schedule and ends the drain.
Entries leave the queue only on delivery or when an operator clears them.
"""

import time
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings
from django.template import TemplateDoesNotExist
from django.template.loader import render_to_string
from django.utils import timezone

from core.exceptions import ESIError, ESIRateLimitError, TokenError
from core.services import ESIClient
from core.srp.models import NotificationQueueEntry, SRPRequest

logger = logging.getLogger('srpwire')

SUBJECTS = {
    'received': 'SRP Request Received',
    'auto_approval': 'SRP Request Approved',
    'auto_denial': 'SRP Request Denied',
    'manual_approval': 'SRP Request Approved',
    'manual_denial': 'SRP Request Denied',
    'duplicate': 'SRP Request Already Submitted',
    'payment': 'SRP Payment Sent',
}


@dataclass
class DrainResult:
    sent: int = 0
    retrying: int = 0
    failed: int = 0
    rate_limited: bool = False

    def to_dict(self) -> dict:
        return {
            'sent': self.sent,
            'retrying': self.retrying,
            'failed': self.failed,
            'rate_limited': self.rate_limited,
        }


def claim_payload(claim: SRPRequest, **extra) -> dict:
    """Everything a notification template needs about a claim, JSON-safe."""
    payload = {
        'claim_id': claim.pk,
        'recipient_name': claim.submitter_character_name or '',
        'victim_name': claim.victim_character_name or '',
        'ship_name': claim.ship_type_name or 'Unknown ship',
        'killmail_id': claim.killmail_id,
        'killmail_url': claim.killmail_url,
        'loss_date': claim.killmail_time.strftime('%Y-%m-%d %H:%M') if claim.killmail_time else '',
        'payout': f'{claim.final_payout_amount or claim.base_payout_amount or 0:,.0f}',
        'denial_reason': claim.denial_reason or '',
        'payment_amount': f'{claim.payment_amount:,.0f}' if claim.payment_amount is not None else '',
    }
    payload.update(extra)
    return payload


def enqueue(mail_type: str, recipient_id: int, payload: dict, claim: SRPRequest = None,
            retry_after: datetime = None) -> NotificationQueueEntry:
    """Persist a mail for delivery; due immediately unless retry_after is given."""
    entry = NotificationQueueEntry.objects.create(
        mail_type=mail_type,
        recipient_character_id=recipient_id,
        payload=payload,
        srp_request=claim,
        retry_after=retry_after or timezone.now(),
    )
    logger.info(f'Queued {mail_type} mail for character {recipient_id} (queue id {entry.pk})')
    return entry


def render_mail(entry: NotificationQueueEntry) -> tuple[str, str]:
    """Render (subject, body) for a queued mail. EVE mail bodies use <br> line breaks."""
    subject = SUBJECTS[str(entry.mail_type)]
    body = render_to_string(f'srp/mail/{entry.mail_type}.txt', entry.payload)
    return subject, body.strip().replace('\n', '<br>')


def backoff_delay(attempts: int, schedule=None) -> int:
    """Seconds to wait after the given number of failed attempts."""
    schedule = list(schedule or settings.SRP_MAIL_BACKOFF_SCHEDULE)
    index = min(max(attempts, 1), len(schedule)) - 1
    return max(int(schedule[index]), 1)


def _due_entries(now: datetime, limit: int):
    return list(
        NotificationQueueEntry.objects.filter(retry_after__lte=now).order_by('retry_after', 'id')[:limit]
    )


def drain(access_token: str, sender_id: int, now: datetime = None, limit: int = None,
          client=ESIClient) -> DrainResult:
    """
    Deliver due queued mail, oldest first.

    Stops at the first rate-limited send. Other failures are recorded on
    the entry and retried on the next run.
    """
    now = now or timezone.now()
    limit = limit or settings.SRP_MAIL_BATCH_SIZE
    interval = settings.SRP_MAIL_SEND_INTERVAL
    result = DrainResult()

    entries = _due_entries(now, limit)
    if not entries:
        return result

    logger.info(f'Mail queue: {len(entries)} mail(s) ready to send (max {limit} per batch)')

    for index, entry in enumerate(entries):
        if index and interval > 0:
            time.sleep(interval)

        try:
            subject, body = render_mail(entry)
            client.send_mail(sender_id, access_token, entry.recipient_character_id, subject, body)
        except ESIRateLimitError as e:
            entry.attempts += 1
            delay = max(backoff_delay(entry.attempts), e.retry_after or 0)
            # Relative to the failed send, not the batch start
            entry.retry_after = timezone.now() + timedelta(seconds=delay)
            entry.last_error = str(e)
            entry.save(update_fields=['attempts', 'retry_after', 'last_error', 'updated_at'])
            result.retrying += 1
            result.rate_limited = True
            logger.warning(
                f'Mail queue rate limited on entry {entry.pk}, retry in {delay:.0f}s; stopping this batch'
            )
            break
        except (ESIError, TokenError, KeyError, TemplateDoesNotExist) as e:
            entry.attempts += 1
            entry.last_error = str(e)
            entry.save(update_fields=['attempts', 'last_error', 'updated_at'])
            result.failed += 1
            logger.error(f'Failed to send {entry.mail_type} mail (queue id {entry.pk}): {e}')
            continue

        entry.delete()
        result.sent += 1

    logger.info(f'Mail queue: sent {result.sent}, retrying {result.retrying}, failed {result.failed}')
    return result


def pending_count(now: Optional[datetime] = None) -> int:
    now = now or timezone.now()
    return NotificationQueueEntry.objects.filter(retry_after__lte=now).count()
