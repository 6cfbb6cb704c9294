"""
SRP pipeline orchestrator.

One run: take the lease, check ESI health, then drain the mail queue,
reconcile the wallet and process new mail. Each stage fails on its own;
the run report collects what happened and is posted to the report
webhook when there is something to say.
"""

import time
import logging
from dataclasses import dataclass, field
from datetime import datetime

import requests
from django.conf import settings
from django.utils import timezone

from core.exceptions import TokenError
from core.models import PipelineLease
from core.services import ESIRateLimiter, TokenManager
from core.srp import notifications
from core.srp.health import ESIHealthGate
from core.srp.mail import MailFetcher, MailProcessor
from core.srp.wallet import WalletReconciler

logger = logging.getLogger('srpwire')

STATUS_COMPLETED = 'completed'
STATUS_SKIPPED = 'skipped'
STATUS_FAILED = 'failed'
STATUS_ALREADY_RUNNING = 'already_running'


@dataclass
class RunReport:
    character_id: int
    started_at: datetime = field(default_factory=timezone.now)
    status: str = STATUS_COMPLETED
    processed: int = 0
    created: int = 0
    skipped: int = 0
    already_processed: int = 0
    errors: list[dict] = field(default_factory=list)
    stage_errors: dict = field(default_factory=dict)
    health: str = ''
    health_issues: list[str] = field(default_factory=list)
    health_warnings: list[str] = field(default_factory=list)
    notifications: dict = field(default_factory=dict)
    journal_entries_saved: int = 0
    payments_reconciled: int = 0
    reconciliation_error: str = ''
    esi_error_limit: dict = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.status in (STATUS_COMPLETED, STATUS_SKIPPED) and not self.stage_errors

    def has_activity(self) -> bool:
        if self.status in (STATUS_SKIPPED, STATUS_FAILED):
            return True
        if self.errors or self.stage_errors or self.reconciliation_error:
            return True
        sent = self.notifications.get('sent', 0) + self.notifications.get('retrying', 0) \
            + self.notifications.get('failed', 0)
        return bool(self.processed or self.created or sent or self.journal_entries_saved or self.payments_reconciled)

    def to_dict(self) -> dict:
        return {
            'status': self.status,
            'success': self.success,
            'character_id': self.character_id,
            'started_at': self.started_at.isoformat(),
            'processed': self.processed,
            'created': self.created,
            'skipped': self.skipped,
            'already_processed': self.already_processed,
            'errors': self.errors,
            'stage_errors': self.stage_errors,
            'health': self.health,
            'health_issues': self.health_issues,
            'health_warnings': self.health_warnings,
            'notifications': self.notifications,
            'journal_entries_saved': self.journal_entries_saved,
            'payments_reconciled': self.payments_reconciled,
            'reconciliation_error': self.reconciliation_error,
            'esi_error_limit': self.esi_error_limit,
            'duration_seconds': round(self.duration_seconds, 2),
        }


def _run_stages(report: RunReport, gate: ESIHealthGate) -> None:
    health = gate.check()
    report.health = health.label
    report.health_issues = health.issues
    report.health_warnings = health.warnings
    if not health.healthy:
        report.status = STATUS_SKIPPED
        logger.warning(f'SRP pipeline skipped, ESI unhealthy: {", ".join(health.issues)}')
        return
    for warning in health.warnings:
        logger.warning(f'SRP pipeline: {warning}')

    try:
        access_token = TokenManager.get_service_access_token(report.character_id)
    except TokenError as e:
        report.status = STATUS_FAILED
        report.stage_errors['token'] = str(e)
        logger.error(f'SRP pipeline failed: {e}')
        return

    try:
        report.notifications = notifications.drain(access_token, report.character_id).to_dict()
    except Exception as e:
        logger.exception('Notification queue drain failed')
        report.stage_errors['notifications'] = str(e)

    if settings.EVE_CORPORATION_ID:
        try:
            reconciled = WalletReconciler(access_token).reconcile()
            report.journal_entries_saved = reconciled.journal_saved
            report.payments_reconciled = reconciled.payments_reconciled
            report.reconciliation_error = reconciled.error_summary
        except Exception as e:
            logger.exception('Wallet reconciliation failed')
            report.reconciliation_error = str(e)
            report.stage_errors['wallet'] = str(e)

    try:
        fetcher = MailFetcher(report.character_id, access_token)
        batch = MailProcessor(fetcher).process(fetcher.fetch_headers())
        report.processed = batch.processed
        report.created = batch.created
        report.skipped = batch.skipped
        report.already_processed = batch.already_processed
        report.errors = batch.errors
    except Exception as e:
        logger.exception('Mail processing failed')
        report.stage_errors['mail'] = str(e)


def _release_lease(name: str, holder: str) -> None:
    try:
        PipelineLease.release(name, holder)
    except Exception:
        # The lease expires on its own after SRP_PIPELINE_LEASE_SECONDS
        logger.exception(f'Could not release pipeline lease {name}')


def run_pipeline(character_id: int = None, gate: ESIHealthGate = None) -> dict:
    """
    Run the SRP pipeline once for the mailer character.

    Never raises: every failure ends up in the returned report.
    """
    character_id = character_id or settings.EVE_MAILER_CHARACTER_ID
    report = RunReport(character_id=character_id)
    started = time.monotonic()

    lease_name = f'srp-pipeline:{character_id}'
    try:
        holder = PipelineLease.acquire(lease_name, settings.SRP_PIPELINE_LEASE_SECONDS)
    except Exception as e:
        logger.exception(f'Could not take pipeline lease {lease_name}')
        report.status = STATUS_FAILED
        report.stage_errors['lease'] = str(e)
    else:
        if holder is None:
            report.status = STATUS_ALREADY_RUNNING
            logger.info(f'SRP pipeline already running for character {character_id}, exiting')
            return report.to_dict()

        try:
            _run_stages(report, gate or ESIHealthGate())
        except Exception as e:
            logger.exception('SRP pipeline failed')
            report.status = STATUS_FAILED
            report.stage_errors['pipeline'] = str(e)
        finally:
            _release_lease(lease_name, holder)

    try:
        report.esi_error_limit = ESIRateLimiter.get_status()
    except Exception:
        logger.exception('Could not read ESI error limit status')
    report.duration_seconds = time.monotonic() - started
    logger.info(
        f'SRP pipeline {report.status}: {report.processed} processed, {report.created} created, '
        f'{report.skipped} skipped, {report.already_processed} already processed '
        f'in {report.duration_seconds:.1f}s'
    )

    if report.has_activity():
        publish_report(report)
    return report.to_dict()


def _embed_color(report: RunReport) -> int:
    if report.status == STATUS_FAILED or report.stage_errors:
        return 0xE74C3C
    if report.status == STATUS_SKIPPED or report.errors or report.health == 'DEGRADED':
        return 0xF1C40F
    return 0x2ECC71


def build_report_payload(report: RunReport) -> dict:
    """Discord webhook payload for a run report."""
    fields = [
        {'name': 'Status', 'value': report.status, 'inline': True},
        {'name': 'ESI', 'value': report.health or 'unknown', 'inline': True},
        {'name': 'Duration', 'value': f'{report.duration_seconds:.1f}s', 'inline': True},
        {'name': 'Mail', 'value': f'{report.processed} processed / {report.created} created / '
                                  f'{report.skipped} skipped', 'inline': False},
    ]
    if report.notifications:
        n = report.notifications
        fields.append({'name': 'Notifications',
                       'value': f"{n.get('sent', 0)} sent / {n.get('retrying', 0)} retrying / "
                                f"{n.get('failed', 0)} failed", 'inline': False})
    if report.journal_entries_saved or report.payments_reconciled:
        fields.append({'name': 'Wallet',
                       'value': f'{report.journal_entries_saved} journal entries / '
                                f'{report.payments_reconciled} payments reconciled', 'inline': False})
    if report.health_issues:
        fields.append({'name': 'ESI issues', 'value': '\n'.join(report.health_issues)[:1024], 'inline': False})
    problems = [f"Mail {e['mail_id']}: {e['error']}" for e in report.errors]
    problems += [f'{stage}: {error}' for stage, error in report.stage_errors.items()]
    if report.reconciliation_error and 'wallet' not in report.stage_errors:
        problems.append(f'wallet: {report.reconciliation_error}')
    if problems:
        fields.append({'name': 'Errors', 'value': '\n'.join(problems)[:1024], 'inline': False})

    return {
        'embeds': [{
            'title': 'SRP mail processing',
            'color': _embed_color(report),
            'fields': fields,
            'timestamp': report.started_at.isoformat(),
        }],
    }


def publish_report(report: RunReport) -> bool:
    """Post the report to the configured webhook. Failures are logged, never raised."""
    url = settings.SRP_REPORT_WEBHOOK_URL
    if not url:
        return False
    try:
        response = requests.post(url, json=build_report_payload(report), timeout=settings.SRP_REPORT_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as e:
        logger.warning(f'Failed to publish SRP run report: {e}')
        return False
    return True
