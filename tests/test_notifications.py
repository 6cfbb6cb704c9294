"""
Tests for the outbound notification mail queue.
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from django.utils import timezone

from core.exceptions import ESIError, ESIRateLimitError, TokenError
from core.srp import notifications
from core.srp.models import NotificationQueueEntry

SENDER = 2119887654
MailType = NotificationQueueEntry.MailType


def _payload(**extra):
    payload = {'claim_id': 7, 'recipient_name': 'Test Pilot', 'ship_name': 'Rifter',
               'killmail_url': 'https://zkillboard.com/kill/1/', 'payout': '10,000,000'}
    payload.update(extra)
    return payload


@pytest.fixture
def client():
    client = MagicMock()
    client.send_mail.return_value = 400000001
    return client


class TestBackoffDelay:

    @pytest.mark.parametrize('attempts,expected', [(0, 60), (1, 60), (2, 300), (3, 900), (5, 3600), (12, 3600)])
    def test_schedule(self, attempts, expected):
        assert notifications.backoff_delay(attempts) == expected

    def test_custom_schedule(self):
        assert notifications.backoff_delay(2, schedule=[10, 20]) == 20


@pytest.mark.django_db
class TestEnqueueAndRender:

    def test_enqueue_is_due_immediately(self):
        entry = notifications.enqueue(MailType.RECEIVED, 90000001, _payload())

        assert entry.pk is not None
        assert entry.attempts == 0
        assert notifications.pending_count() == 1

    def test_enqueue_later(self):
        notifications.enqueue(MailType.RECEIVED, 90000001, _payload(),
                              retry_after=timezone.now() + timedelta(hours=1))

        assert notifications.pending_count() == 0

    def test_render_uses_eve_line_breaks(self):
        entry = notifications.enqueue(MailType.AUTO_APPROVAL, 90000001, _payload())

        subject, body = notifications.render_mail(entry)

        assert subject == 'SRP Request Approved'
        assert 'Hello Test Pilot,' in body
        assert '10,000,000 ISK' in body
        assert '<br>' in body
        assert '\n' not in body

    @pytest.mark.parametrize('mail_type', [choice for choice, _ in MailType.choices])
    def test_every_mail_type_renders(self, mail_type):
        entry = notifications.enqueue(mail_type, 90000001, _payload(status='Approved', payment_amount='1'))

        subject, body = notifications.render_mail(entry)

        assert subject
        assert body


@pytest.mark.django_db
class TestDrain:

    def test_sends_and_deletes(self, client):
        notifications.enqueue(MailType.RECEIVED, 90000001, _payload())
        notifications.enqueue(MailType.AUTO_APPROVAL, 90000002, _payload())

        result = notifications.drain('token', SENDER, client=client)

        assert result.sent == 2
        assert not NotificationQueueEntry.objects.exists()
        recipients = [c.args[2] for c in client.send_mail.call_args_list]
        assert recipients == [90000001, 90000002]

    def test_skips_entries_not_yet_due(self, client):
        notifications.enqueue(MailType.RECEIVED, 90000001, _payload(),
                              retry_after=timezone.now() + timedelta(minutes=5))

        result = notifications.drain('token', SENDER, client=client)

        assert result.sent == 0
        client.send_mail.assert_not_called()

    def test_batch_limit(self, client):
        for i in range(5):
            notifications.enqueue(MailType.RECEIVED, 90000001 + i, _payload())

        result = notifications.drain('token', SENDER, limit=3, client=client)

        assert result.sent == 3
        assert NotificationQueueEntry.objects.count() == 2

    def test_rate_limit_reschedules_and_stops(self, client):
        first = notifications.enqueue(MailType.RECEIVED, 90000001, _payload())
        second = notifications.enqueue(MailType.RECEIVED, 90000002, _payload())
        now = timezone.now()
        client.send_mail.side_effect = ESIRateLimitError('MailStopSpamming', retry_after=None, status_code=520)

        with patch('core.srp.notifications.timezone.now', return_value=now):
            result = notifications.drain('token', SENDER, now=now, client=client)

        assert result.rate_limited
        assert result.retrying == 1
        assert client.send_mail.call_count == 1
        first.refresh_from_db()
        assert first.attempts == 1
        assert first.retry_after == now + timedelta(seconds=60)
        second.refresh_from_db()
        assert second.attempts == 0

    def test_server_hint_longer_than_backoff_wins(self, client):
        entry = notifications.enqueue(MailType.RECEIVED, 90000001, _payload())
        now = timezone.now()
        client.send_mail.side_effect = ESIRateLimitError('MailStopSpamming', retry_after=564.2)

        with patch('core.srp.notifications.timezone.now', return_value=now):
            notifications.drain('token', SENDER, now=now, client=client)

        entry.refresh_from_db()
        assert entry.retry_after == now + timedelta(seconds=564.2)

    def test_backoff_grows_with_attempts(self, client):
        entry = notifications.enqueue(MailType.RECEIVED, 90000001, _payload())
        entry.attempts = 2
        entry.save()
        now = timezone.now()
        client.send_mail.side_effect = ESIRateLimitError('Rate limited', retry_after=10, status_code=429)

        with patch('core.srp.notifications.timezone.now', return_value=now):
            notifications.drain('token', SENDER, now=now, client=client)

        entry.refresh_from_db()
        assert entry.attempts == 3
        assert entry.retry_after == now + timedelta(seconds=900)
        assert entry.retry_after > now

    def test_retry_after_is_later_than_a_paced_failure(self, client, settings):
        settings.SRP_MAIL_SEND_INTERVAL = 20.0
        settings.SRP_MAIL_BACKOFF_SCHEDULE = [1]
        notifications.enqueue(MailType.RECEIVED, 90000001, _payload())
        second = notifications.enqueue(MailType.RECEIVED, 90000002, _payload())
        start = timezone.now()
        clock = [start]

        def advance(seconds):
            clock[0] += timedelta(seconds=seconds)

        client.send_mail.side_effect = [400000001, ESIRateLimitError('MailStopSpamming', retry_after=None)]

        with patch('core.srp.notifications.time.sleep', side_effect=advance), \
                patch('core.srp.notifications.timezone.now', side_effect=lambda: clock[0]):
            result = notifications.drain('token', SENDER, now=start, client=client)

        failed_at = start + timedelta(seconds=20)
        second.refresh_from_db()
        assert result.sent == 1
        assert result.rate_limited
        assert second.retry_after == failed_at + timedelta(seconds=1)
        assert second.retry_after > failed_at

    def test_other_errors_keep_entry_and_continue(self, client):
        failing = notifications.enqueue(MailType.RECEIVED, 90000001, _payload())
        notifications.enqueue(MailType.RECEIVED, 90000002, _payload())
        client.send_mail.side_effect = [ESIError('ESI 400: bad recipient', status_code=400), 400000002]

        result = notifications.drain('token', SENDER, client=client)

        assert result.failed == 1
        assert result.sent == 1
        failing.refresh_from_db()
        assert failing.attempts == 1
        assert 'bad recipient' in failing.last_error

    def test_entries_are_never_evicted(self, client):
        entry = notifications.enqueue(MailType.RECEIVED, 90000001, _payload())
        client.send_mail.side_effect = TokenError('No access token available')

        for _ in range(10):
            notifications.drain('token', SENDER, client=client)

        entry.refresh_from_db()
        assert entry.attempts == 10

    @patch('core.srp.notifications.time.sleep')
    def test_pauses_between_sends(self, mock_sleep, client, settings):
        settings.SRP_MAIL_SEND_INTERVAL = 15.0
        notifications.enqueue(MailType.RECEIVED, 90000001, _payload())
        notifications.enqueue(MailType.RECEIVED, 90000002, _payload())

        notifications.drain('token', SENDER, client=client)

        mock_sleep.assert_called_once_with(15.0)

    def test_empty_queue(self, client):
        result = notifications.drain('token', SENDER, client=client)

        assert result.to_dict() == {'sent': 0, 'retrying': 0, 'failed': 0, 'rate_limited': False}
