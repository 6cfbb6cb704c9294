"""
Tests for killmail enrichment: polarized detection, zKillboard metadata and
the partial-success policy.
"""

from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import requests

from core.exceptions import ESIError, EnrichmentError
from core.srp.enrichment import (
    POLARIZED_TORPEDO_LAUNCHER, KillboardMetadata, KillmailEnricher, detect_polarized,
    fetch_zkillboard_metadata, resolve_names,
)

HASH = 'c' * 40


def _launcher(flag):
    return {'item_type_id': POLARIZED_TORPEDO_LAUNCHER, 'flag': flag, 'quantity_destroyed': 1}


def _killmail(**victim):
    data = {
        'killmail_id': 130838826,
        'killmail_time': '2026-03-01T20:15:00Z',
        'solar_system_id': 30002187,
        'attackers': [{'character_id': 1}, {'character_id': 2}],
        'victim': {
            'character_id': 90000001,
            'corporation_id': 98000001,
            'alliance_id': 99000001,
            'ship_type_id': 587,
            'items': [],
        },
    }
    data['victim'].update(victim)
    return data


def _zkb_response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


class TestDetectPolarized:

    def test_full_polarized_fit(self):
        fit = detect_polarized([_launcher(27), _launcher(28), _launcher(29)])

        assert fit.is_polarized
        assert fit.count == 3
        assert fit.warning == ''

    def test_partial_fit_warns(self):
        fit = detect_polarized([_launcher(27)])

        assert fit.is_polarized
        assert 'Only 1 polarized launcher(s) fitted' in fit.warning

    def test_launchers_outside_high_slots_are_ignored(self):
        fit = detect_polarized([_launcher(5), _launcher(11)])

        assert not fit.is_polarized
        assert fit.count == 0

    def test_no_items(self):
        assert not detect_polarized(None).is_polarized


class TestFetchZkillboardMetadata:

    @patch('core.srp.enrichment.requests.get')
    def test_success(self, mock_get):
        mock_get.return_value = _zkb_response(payload=[
            {'killmail_id': 130838826, 'zkb': {'hash': HASH.upper(), 'totalValue': 123456789.456, 'points': 1}},
        ])

        metadata = fetch_zkillboard_metadata(130838826)

        assert metadata.killmail_hash == HASH
        assert metadata.total_value == Decimal('123456789.46')
        assert metadata.points == 1
        assert mock_get.call_args.kwargs['timeout']

    @patch('core.srp.enrichment.requests.get')
    def test_server_error_is_transient(self, mock_get):
        mock_get.return_value = _zkb_response(status_code=503)

        with pytest.raises(EnrichmentError) as excinfo:
            fetch_zkillboard_metadata(1)

        assert excinfo.value.transient

    @patch('core.srp.enrichment.requests.get')
    def test_network_error_is_transient(self, mock_get):
        mock_get.side_effect = requests.ConnectionError('refused')

        with pytest.raises(EnrichmentError) as excinfo:
            fetch_zkillboard_metadata(1)

        assert excinfo.value.transient

    @patch('core.srp.enrichment.requests.get')
    def test_not_found_is_permanent(self, mock_get):
        mock_get.return_value = _zkb_response(status_code=404)

        with pytest.raises(EnrichmentError) as excinfo:
            fetch_zkillboard_metadata(1)

        assert not excinfo.value.transient

    @patch('core.srp.enrichment.requests.get')
    def test_unknown_killmail(self, mock_get):
        mock_get.return_value = _zkb_response(payload=[])

        with pytest.raises(EnrichmentError, match='Invalid zKillboard response format'):
            fetch_zkillboard_metadata(1)


class TestKillmailEnricher:

    @pytest.fixture
    def client(self, esi_response):
        client = MagicMock()
        client.get_killmail.return_value = esi_response(_killmail())
        return client

    @pytest.fixture
    def killboard(self):
        return MagicMock(return_value=KillboardMetadata(killmail_hash=HASH, total_value=Decimal('50000000.00'),
                                                        raw={'hash': HASH}))

    def test_full_enrichment(self, client, killboard):
        enriched = KillmailEnricher(client, killboard).enrich(130838826, HASH)

        assert not enriched.partial
        assert enriched.victim_character_id == 90000001
        assert enriched.ship_type_id == 587
        assert enriched.solar_system_id == 30002187
        assert enriched.attackers_count == 2
        assert enriched.total_value == Decimal('50000000.00')
        assert enriched.error == ''
        client.get_killmail.assert_called_once_with(130838826, HASH)

    def test_hash_taken_from_zkillboard_when_link_has_none(self, client, killboard):
        KillmailEnricher(client, killboard).enrich(130838826)

        client.get_killmail.assert_called_once_with(130838826, HASH)

    def test_hash_mismatch_warns_and_uses_link_hash(self, client, killboard):
        other = 'd' * 40

        enriched = KillmailEnricher(client, killboard).enrich(130838826, other)

        assert enriched.killmail_hash == other
        assert any('does not match zKillboard' in w for w in enriched.warnings)

    def test_polarized_fit_detected(self, client, killboard, esi_response):
        client.get_killmail.return_value = esi_response(_killmail(items=[_launcher(27), _launcher(28)]))

        enriched = KillmailEnricher(client, killboard).enrich(130838826, HASH)

        assert enriched.is_polarized
        assert enriched.polarized_count == 2
        assert enriched.warnings

    def test_esi_failure_after_zkillboard_success_is_partial(self, client, killboard):
        client.get_killmail.side_effect = ESIError('ESI 502', status_code=502)

        enriched = KillmailEnricher(client, killboard).enrich(130838826, HASH)

        assert enriched.partial
        assert enriched.ship_type_id is None
        assert enriched.total_value == Decimal('50000000.00')
        assert 'ESI' in enriched.error

    def test_zkillboard_failure_with_esi_success_is_complete(self, client, killboard):
        killboard.side_effect = EnrichmentError(130838826, 'zKillboard returned 503', transient=True)

        enriched = KillmailEnricher(client, killboard).enrich(130838826, HASH)

        assert not enriched.partial
        assert enriched.total_value is None
        assert 'zKillboard' in enriched.error

    def test_both_sources_failing_raises(self, client, killboard):
        killboard.side_effect = EnrichmentError(130838826, 'zKillboard returned 503', transient=True)
        client.get_killmail.side_effect = ESIError('ESI 422', status_code=422)

        with pytest.raises(EnrichmentError) as excinfo:
            KillmailEnricher(client, killboard).enrich(130838826, HASH)

        assert not excinfo.value.transient

    def test_no_hash_anywhere_raises(self, client, killboard):
        killboard.side_effect = EnrichmentError(130838826, 'zKillboard unreachable: Timeout', transient=True)

        with pytest.raises(EnrichmentError) as excinfo:
            KillmailEnricher(client, killboard).enrich(130838826)

        assert excinfo.value.transient
        client.get_killmail.assert_not_called()


class TestResolveNames:

    def test_resolves_ids(self):
        client = MagicMock()
        client.post_universe_names.return_value = [
            {'id': 90000001, 'name': 'Test Pilot', 'category': 'character'},
            {'id': 587, 'name': 'Rifter', 'category': 'inventory_type'},
        ]

        names = resolve_names([90000001, 587, None], client)

        assert names == {90000001: 'Test Pilot', 587: 'Rifter'}

    def test_failure_degrades_to_empty(self):
        client = MagicMock()
        client.post_universe_names.side_effect = ESIError('ESI 400', status_code=400)

        assert resolve_names([1], client) == {}

    def test_nothing_to_resolve(self):
        client = MagicMock()

        assert resolve_names([None], client) == {}
        client.post_universe_names.assert_not_called()
