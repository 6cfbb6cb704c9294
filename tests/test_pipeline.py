"""
Tests for the pipeline orchestrator, its lease, the cron trigger and the
django-q schedule.
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
import requests
from django.core.management import call_command
from django.db import OperationalError
from django.urls import reverse
from django.utils import timezone

from core.exceptions import ESIError, TokenError
from core.models import PipelineLease
from core.srp.health import HealthReport
from core.srp.mail import MailBatchResult
from core.srp.notifications import DrainResult
from core.srp.pipeline import (
    STATUS_ALREADY_RUNNING, STATUS_COMPLETED, STATUS_FAILED, STATUS_SKIPPED,
    RunReport, build_report_payload, publish_report, run_pipeline,
)
from core.srp.wallet import ReconcileResult

MAILER = 2119887654


def _gate(healthy=True, issues=None, warnings=None):
    gate = MagicMock()
    gate.check.return_value = HealthReport(healthy=healthy, issues=issues or [], warnings=warnings or [])
    return gate


@pytest.fixture
def stages():
    """Patch every stage the orchestrator drives."""
    with patch('core.srp.pipeline.TokenManager') as token_manager, \
            patch('core.srp.pipeline.notifications.drain') as drain, \
            patch('core.srp.pipeline.WalletReconciler') as reconciler, \
            patch('core.srp.pipeline.MailFetcher') as fetcher, \
            patch('core.srp.pipeline.MailProcessor') as processor, \
            patch('core.srp.pipeline.publish_report') as publish:
        token_manager.get_service_access_token.return_value = 'access-token'
        drain.return_value = DrainResult()
        reconciler.return_value.reconcile.return_value = ReconcileResult()
        fetcher.return_value.fetch_headers.return_value = []
        processor.return_value.process.return_value = MailBatchResult()
        yield MagicMock(token_manager=token_manager, drain=drain, reconciler=reconciler, fetcher=fetcher,
                        processor=processor, publish=publish)


@pytest.mark.django_db
class TestRunPipeline:

    def test_quiet_run_is_not_published(self, stages):
        report = run_pipeline(gate=_gate())

        assert report['status'] == STATUS_COMPLETED
        assert report['success']
        assert report['health'] == 'OK'
        assert report['esi_error_limit']['remaining'] == 100
        stages.publish.assert_not_called()

    def test_processed_mail_is_published(self, stages):
        stages.processor.return_value.process.return_value = MailBatchResult(processed=2, created=1, skipped=1)

        report = run_pipeline(gate=_gate())

        assert report['processed'] == 2
        assert report['created'] == 1
        stages.publish.assert_called_once()

    def test_stages_run_in_order(self, stages, settings):
        settings.EVE_CORPORATION_ID = 98000001
        calls = []
        stages.drain.side_effect = lambda *a, **k: calls.append('drain') or DrainResult()
        stages.reconciler.return_value.reconcile.side_effect = lambda *a, **k: calls.append('wallet') or ReconcileResult()
        stages.processor.return_value.process.side_effect = lambda *a, **k: calls.append('mail') or MailBatchResult()

        run_pipeline(gate=_gate())

        assert calls == ['drain', 'wallet', 'mail']
        stages.drain.assert_called_once_with('access-token', MAILER)

    def test_wallet_skipped_without_corporation(self, stages):
        run_pipeline(gate=_gate())

        stages.reconciler.assert_not_called()

    def test_unhealthy_esi_skips_everything(self, stages):
        issue = 'Critical route DOWN: GET /characters/{character_id}/mail'

        report = run_pipeline(gate=_gate(healthy=False, issues=[issue]))

        assert report['status'] == STATUS_SKIPPED
        assert report['health'] == 'UNHEALTHY'
        assert report['health_issues'] == [issue]
        stages.token_manager.get_service_access_token.assert_not_called()
        stages.fetcher.return_value.fetch_headers.assert_not_called()
        stages.publish.assert_called_once()

    def test_token_failure_fails_run(self, stages):
        stages.token_manager.get_service_access_token.side_effect = TokenError('No service token stored')

        report = run_pipeline(gate=_gate())

        assert report['status'] == STATUS_FAILED
        assert not report['success']
        assert 'token' in report['stage_errors']
        stages.drain.assert_not_called()
        stages.publish.assert_called_once()

    def test_stage_failures_are_isolated(self, stages, settings):
        settings.EVE_CORPORATION_ID = 98000001
        stages.drain.side_effect = ESIError('ESI 500', status_code=500)
        stages.reconciler.return_value.reconcile.side_effect = RuntimeError('wallet exploded')
        stages.processor.return_value.process.return_value = MailBatchResult(processed=1, created=1)

        report = run_pipeline(gate=_gate())

        assert set(report['stage_errors']) == {'notifications', 'wallet'}
        assert report['reconciliation_error'] == 'wallet exploded'
        assert report['created'] == 1

    def test_division_errors_reported(self, stages, settings):
        settings.EVE_CORPORATION_ID = 98000001
        stages.reconciler.return_value.reconcile.return_value = ReconcileResult(
            journal_saved=3, payments_reconciled=1, errors={4: 'ESI 403: forbidden'},
        )

        report = run_pipeline(gate=_gate())

        assert report['journal_entries_saved'] == 3
        assert report['payments_reconciled'] == 1
        assert report['reconciliation_error'] == 'division 4: ESI 403: forbidden'

    def test_busy_lease_exits_immediately(self, stages):
        PipelineLease.acquire(f'srp-pipeline:{MAILER}', 600)
        gate = _gate()

        report = run_pipeline(gate=gate)

        assert report['status'] == STATUS_ALREADY_RUNNING
        gate.check.assert_not_called()
        stages.publish.assert_not_called()

    def test_lease_released_after_run(self, stages):
        stages.processor.return_value.process.side_effect = RuntimeError('boom')

        run_pipeline(gate=_gate())

        assert not PipelineLease.objects.exists()

    def test_health_check_crash_is_reported(self, stages):
        gate = MagicMock()
        gate.check.side_effect = RuntimeError('cache down')

        report = run_pipeline(gate=gate)

        assert report['status'] == STATUS_FAILED
        assert report['stage_errors']['pipeline'] == 'cache down'
        assert not PipelineLease.objects.exists()

    def test_lease_storage_failure_is_reported(self, stages):
        gate = _gate()

        with patch('core.srp.pipeline.PipelineLease.acquire', side_effect=OperationalError('database is locked')):
            report = run_pipeline(gate=gate)

        assert report['status'] == STATUS_FAILED
        assert report['stage_errors']['lease'] == 'database is locked'
        gate.check.assert_not_called()
        stages.publish.assert_called_once()

    def test_lease_release_failure_keeps_report(self, stages):
        stages.processor.return_value.process.return_value = MailBatchResult(processed=1, created=1)

        with patch('core.srp.pipeline.PipelineLease.release', side_effect=OperationalError('database is locked')):
            report = run_pipeline(gate=_gate())

        assert report['status'] == STATUS_COMPLETED
        assert report['created'] == 1

    def test_error_limit_failure_keeps_report(self, stages):
        with patch('core.srp.pipeline.ESIRateLimiter.get_status', side_effect=RuntimeError('cache down')):
            report = run_pipeline(gate=_gate())

        assert report['status'] == STATUS_COMPLETED
        assert report['esi_error_limit'] == {}

    def test_already_processed_mail_is_reported(self, stages):
        stages.processor.return_value.process.return_value = MailBatchResult(already_processed=3)

        report = run_pipeline(gate=_gate())

        assert report['already_processed'] == 3
        assert report['processed'] == 0
        stages.publish.assert_not_called()


@pytest.mark.django_db
class TestPipelineLease:

    def test_single_holder(self):
        holder = PipelineLease.acquire('lease', 600)

        assert holder
        assert PipelineLease.acquire('lease', 600) is None

    def test_release_requires_holder(self):
        holder = PipelineLease.acquire('lease', 600)

        PipelineLease.release('lease', 'someone-else')
        assert PipelineLease.objects.filter(name='lease').exists()

        PipelineLease.release('lease', holder)
        assert not PipelineLease.objects.filter(name='lease').exists()

    def test_expired_lease_taken_over(self):
        PipelineLease.acquire('lease', 600)
        PipelineLease.objects.update(expires_at=timezone.now() - timedelta(seconds=1))

        holder = PipelineLease.acquire('lease', 600)

        assert holder
        assert PipelineLease.objects.get().holder == holder


class TestReportPublishing:

    def _report(self, **kwargs):
        report = RunReport(character_id=MAILER)
        for key, value in kwargs.items():
            setattr(report, key, value)
        return report

    def test_payload_lists_errors(self):
        report = self._report(processed=1, errors=[{'mail_id': 5, 'error': 'Killmail 1: bad'}],
                              stage_errors={'wallet': 'ESI 500'})

        embed = build_report_payload(report)['embeds'][0]

        errors = next(f for f in embed['fields'] if f['name'] == 'Errors')
        assert 'Mail 5: Killmail 1: bad' in errors['value']
        assert 'wallet: ESI 500' in errors['value']
        assert embed['color'] == 0xE74C3C

    def test_no_webhook_configured(self):
        assert publish_report(self._report()) is False

    @patch('core.srp.pipeline.requests.post')
    def test_posts_to_webhook(self, mock_post, settings):
        settings.SRP_REPORT_WEBHOOK_URL = 'https://discord.example/webhook'

        assert publish_report(self._report(processed=1)) is True
        assert mock_post.call_args.kwargs['timeout'] == settings.SRP_REPORT_TIMEOUT

    @patch('core.srp.pipeline.requests.post')
    def test_webhook_failure_is_swallowed(self, mock_post, settings):
        settings.SRP_REPORT_WEBHOOK_URL = 'https://discord.example/webhook'
        mock_post.side_effect = requests.ConnectionError('refused')

        assert publish_report(self._report(processed=1)) is False


@pytest.mark.django_db
class TestCronTrigger:

    @patch('core.srp.views.run_pipeline')
    def test_runs_pipeline(self, mock_run, client):
        mock_run.return_value = {'status': STATUS_COMPLETED, 'success': True}

        response = client.post(reverse('srp:cron_process_mail'))

        assert response.status_code == 200
        assert response.json()['status'] == STATUS_COMPLETED

    @patch('core.srp.views.run_pipeline')
    def test_failed_run_still_answers_200(self, mock_run, client):
        mock_run.return_value = {'status': STATUS_FAILED, 'success': False}

        response = client.get(reverse('srp:cron_process_mail'))

        assert response.status_code == 200

    @patch('core.srp.views.run_pipeline')
    def test_secret_required_when_configured(self, mock_run, client, settings):
        settings.CRON_SECRET = 's3cret'
        mock_run.return_value = {'status': STATUS_COMPLETED}

        assert client.get(reverse('srp:cron_process_mail')).status_code == 401
        mock_run.assert_not_called()

        response = client.get(reverse('srp:cron_process_mail'), HTTP_AUTHORIZATION='Bearer s3cret')
        assert response.status_code == 200


@pytest.mark.django_db
class TestScheduling:

    def test_ensure_schedule_is_idempotent(self):
        from django_q.models import Schedule
        from core.srp.tasks import SCHEDULE_NAME, TASK_NAME, ensure_schedule

        ensure_schedule(5)
        ensure_schedule(10)

        scheduled = Schedule.objects.get(name=SCHEDULE_NAME)
        assert scheduled.func == TASK_NAME
        assert scheduled.minutes == 10

    @patch('core.srp.management.commands.process_srp_mail.run_srp_pipeline')
    def test_command_runs_inline(self, mock_run, capsys):
        mock_run.return_value = {'status': STATUS_COMPLETED, 'success': True}

        call_command('process_srp_mail')

        mock_run.assert_called_once_with(None)
        assert 'SRP pipeline completed' in capsys.readouterr().out

    @patch('core.srp.management.commands.process_srp_mail.async_task')
    def test_command_queues_task(self, mock_async):
        call_command('process_srp_mail', '--queue', '--character', '123')

        mock_async.assert_called_once_with('core.srp.tasks.run_srp_pipeline', 123)
