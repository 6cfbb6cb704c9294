"""
ESI health gate.

Checks ESI's per-route status feed before a pipeline run. A critical
route that is down or recovering stops the run; a degraded one only
produces a warning.
"""

import logging
from dataclasses import dataclass, field

from django.conf import settings
from django.core.cache import cache

from core.exceptions import ESIError
from core.services import ESIClient

logger = logging.getLogger('srpwire')

STATUS_CACHE_KEY = 'srp:esi_status'
LAST_GOOD_CACHE_KEY = 'srp:esi_status:last_good'

CRITICAL_ROUTES = [
    ('GET', '/characters/{character_id}/mail'),
    ('POST', '/characters/{character_id}/mail'),
    ('GET', '/characters/{character_id}/mail/{mail_id}'),
    ('POST', '/universe/names'),
    ('GET', '/corporations/{corporation_id}/wallets/{division}/journal'),
]


@dataclass
class HealthReport:
    healthy: bool = True
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    stale: bool = False

    @property
    def label(self) -> str:
        if not self.healthy:
            return 'UNHEALTHY'
        if self.warnings:
            return 'DEGRADED'
        return 'OK'


class ESIHealthGate:
    """Evaluate ESI's status feed against the routes the pipeline needs."""

    def __init__(self, client=ESIClient, routes=None):
        self.client = client
        self.routes = routes or CRITICAL_ROUTES

    def _get_status(self, force_refresh: bool = False):
        """Return (status data, stale flag). Data is None when nothing is known."""
        if not force_refresh:
            cached = cache.get(STATUS_CACHE_KEY)
            if cached is not None:
                return cached, False

        try:
            status = self.client.get_meta_status()
        except (ESIError, ValueError) as e:
            logger.error(f'Failed to fetch ESI status: {e}')
            last_good = cache.get(LAST_GOOD_CACHE_KEY)
            if last_good is not None:
                logger.warning('Using last known ESI status due to fetch failure')
                return last_good, True
            return None, False

        cache.set(STATUS_CACHE_KEY, status, timeout=settings.SRP_HEALTH_CACHE_SECONDS)
        cache.set(LAST_GOOD_CACHE_KEY, status, timeout=None)
        return status, False

    def check(self, force_refresh: bool = False) -> HealthReport:
        status, stale = self._get_status(force_refresh)
        report = HealthReport(stale=stale)

        routes = (status or {}).get('routes') or []
        if not routes:
            report.healthy = False
            report.issues.append('Unable to fetch ESI status - assuming unhealthy')
            return report

        by_route = {
            (str(r.get('method', '')).upper(), r.get('path', '')): str(r.get('status', '')).lower()
            for r in routes
        }

        for method, path in self.routes:
            route_status = by_route.get((method, path))
            if route_status is None:
                # Not listed: assume OK
                continue

            label = f'{method} {path}'
            if route_status == 'down':
                report.healthy = False
                report.issues.append(f'Critical route DOWN: {label}')
            elif route_status == 'recovering':
                report.healthy = False
                report.issues.append(f'Critical route RECOVERING: {label}')
            elif route_status == 'degraded':
                report.warnings.append(f'Critical route DEGRADED (may be slow): {label}')

        if stale:
            report.warnings.append('ESI status is stale (status feed unreachable)')

        return report
