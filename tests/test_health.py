"""
Tests for the ESI health gate.
"""

from unittest.mock import MagicMock

import pytest
from django.core.cache import cache

from core.exceptions import ESIError
from core.srp.health import CRITICAL_ROUTES, STATUS_CACHE_KEY, ESIHealthGate


def _status(**overrides):
    """Status feed with every critical route OK unless overridden by 'METHOD path'."""
    routes = []
    for method, path in CRITICAL_ROUTES:
        routes.append({'method': method, 'path': path, 'status': overrides.get(f'{method} {path}', 'OK')})
    routes.append({'method': 'GET', 'path': '/status', 'status': 'Down'})
    return {'routes': routes}


@pytest.fixture
def client():
    client = MagicMock()
    client.get_meta_status.return_value = _status()
    return client


class TestHealthCheck:

    def test_all_routes_ok(self, client):
        report = ESIHealthGate(client).check()

        assert report.healthy
        assert report.issues == []
        assert report.label == 'OK'

    def test_unrelated_route_down_is_ignored(self, client):
        report = ESIHealthGate(client).check()

        assert report.healthy

    def test_critical_route_down(self, client):
        client.get_meta_status.return_value = _status(**{'GET /characters/{character_id}/mail': 'Down'})

        report = ESIHealthGate(client).check()

        assert not report.healthy
        assert report.issues == ['Critical route DOWN: GET /characters/{character_id}/mail']
        assert report.label == 'UNHEALTHY'

    def test_recovering_route_is_unhealthy(self, client):
        client.get_meta_status.return_value = _status(**{'POST /universe/names': 'Recovering'})

        report = ESIHealthGate(client).check()

        assert not report.healthy
        assert 'POST /universe/names' in report.issues[0]

    def test_degraded_route_only_warns(self, client):
        client.get_meta_status.return_value = _status(**{'POST /characters/{character_id}/mail': 'Degraded'})

        report = ESIHealthGate(client).check()

        assert report.healthy
        assert report.label == 'DEGRADED'
        assert 'POST /characters/{character_id}/mail' in report.warnings[0]

    def test_missing_route_is_assumed_ok(self, client):
        client.get_meta_status.return_value = {'routes': [{'method': 'GET', 'path': '/status', 'status': 'OK'}]}

        assert ESIHealthGate(client).check().healthy


class TestHealthCaching:

    def test_status_is_cached(self, client):
        gate = ESIHealthGate(client)

        gate.check()
        gate.check()

        assert client.get_meta_status.call_count == 1

    def test_force_refresh_bypasses_cache(self, client):
        gate = ESIHealthGate(client)

        gate.check()
        gate.check(force_refresh=True)

        assert client.get_meta_status.call_count == 2

    def test_fetch_failure_falls_back_to_last_known_status(self, client):
        gate = ESIHealthGate(client)
        gate.check()
        cache.delete(STATUS_CACHE_KEY)
        client.get_meta_status.side_effect = ESIError('ESI status feed unreachable: Timeout')

        report = gate.check()

        assert report.healthy
        assert report.stale
        assert 'ESI status is stale (status feed unreachable)' in report.warnings

    def test_no_status_at_all_is_unhealthy(self, client):
        client.get_meta_status.side_effect = ESIError('ESI status feed unreachable: Timeout')

        report = ESIHealthGate(client).check()

        assert not report.healthy
        assert report.issues == ['Unable to fetch ESI status - assuming unhealthy']

    def test_empty_status_is_unhealthy(self, client):
        client.get_meta_status.return_value = {'routes': []}

        assert not ESIHealthGate(client).check().healthy
