"""
Shared fixtures for the srpwire test suite.
"""

from datetime import datetime, timezone as dt_timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from django.core.cache import cache

MAILER_ID = 2119887654
PILOT_ID = 90000001


@pytest.fixture(autouse=True)
def srp_settings(settings):
    settings.SRP_MAIL_SEND_INTERVAL = 0
    settings.SRP_REPORT_WEBHOOK_URL = ''
    settings.EVE_MAILER_CHARACTER_ID = MAILER_ID
    settings.EVE_CORPORATION_ID = 0
    settings.CRON_SECRET = ''
    return settings


@pytest.fixture(autouse=True)
def clear_cache():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def loss_time():
    return datetime(2026, 3, 1, 20, 15, tzinfo=dt_timezone.utc)


@pytest.fixture
def esi_response():
    """Build an ESIResponse with a stub meta carrying the page count."""
    from core.services import ESIResponse

    def _build(data, pages=1):
        meta = MagicMock()
        meta.pages = pages
        return ESIResponse(data, meta)

    return _build


@pytest.fixture
def make_claim(loss_time):
    """Create SRPRequest rows with sensible defaults."""
    from core.srp.models import SRPRequest

    counter = {'killmail_id': 130000000}

    def _make(**kwargs):
        counter['killmail_id'] += 1
        defaults = {
            'submitter_character_id': PILOT_ID,
            'submitter_character_name': 'Test Pilot',
            'victim_character_id': PILOT_ID,
            'victim_character_name': 'Test Pilot',
            'killmail_id': counter['killmail_id'],
            'killmail_hash': 'a' * 40,
            'ship_type_id': 587,
            'ship_type_name': 'Rifter',
            'killmail_time': loss_time,
            'base_payout_amount': Decimal('10000000.00'),
            'status': SRPRequest.Status.PENDING,
        }
        defaults.update(kwargs)
        return SRPRequest.objects.create(**defaults)

    return _make
