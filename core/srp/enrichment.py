"""
Killmail enrichment.

zKillboard supplies the hash and value metadata, ESI the authoritative
victim, ship, location and fit. ESI failing after zKillboard succeeded
still yields a usable, partial record.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

import requests
from django.conf import settings
from django.utils.dateparse import parse_datetime

from core.exceptions import ESIError, EnrichmentError
from core.services import ESIClient

logger = logging.getLogger('srpwire')

POLARIZED_TORPEDO_LAUNCHER = 34294
HIGH_SLOT_FLAGS = range(27, 35)
FULL_POLARIZED_FIT = 3


@dataclass(frozen=True)
class PolarizedFit:
    is_polarized: bool
    count: int
    warning: str = ''


def detect_polarized(items) -> PolarizedFit:
    """Count Polarized Torpedo Launchers fitted in high slots."""
    count = sum(
        1 for item in items or []
        if item.get('item_type_id') == POLARIZED_TORPEDO_LAUNCHER and item.get('flag') in HIGH_SLOT_FLAGS
    )
    warning = ''
    if 0 < count < FULL_POLARIZED_FIT:
        warning = f'Only {count} polarized launcher(s) fitted (expected {FULL_POLARIZED_FIT} for full polarized fit)'
    return PolarizedFit(is_polarized=count > 0, count=count, warning=warning)


@dataclass
class KillboardMetadata:
    """The zkb block of a zKillboard killmail."""

    killmail_hash: str
    total_value: Optional[Decimal] = None
    points: Optional[int] = None
    npc: bool = False
    solo: bool = False
    awox: bool = False
    raw: dict = field(default_factory=dict)


def fetch_zkillboard_metadata(killmail_id: int) -> KillboardMetadata:
    """Fetch a killmail's hash and value from zKillboard."""
    url = f'{settings.ZKILLBOARD_BASE_URL}/killID/{killmail_id}/'
    try:
        response = requests.get(
            url,
            headers={'User-Agent': settings.ESI_USER_AGENT, 'Accept-Encoding': 'gzip'},
            timeout=settings.ZKILLBOARD_TIMEOUT,
        )
    except requests.RequestException as e:
        raise EnrichmentError(killmail_id, f'zKillboard unreachable: {type(e).__name__}', transient=True) from e

    if response.status_code == 429 or response.status_code >= 500:
        raise EnrichmentError(killmail_id, f'zKillboard returned {response.status_code}', transient=True)
    if response.status_code != 200:
        raise EnrichmentError(killmail_id, f'zKillboard returned {response.status_code}')

    try:
        data = response.json()
        zkb = data[0]['zkb']
    except (ValueError, LookupError, TypeError):
        raise EnrichmentError(killmail_id, 'Invalid zKillboard response format')

    if not zkb.get('hash'):
        raise EnrichmentError(killmail_id, 'No hash found in zKillboard response')

    total_value = None
    if zkb.get('totalValue') is not None:
        try:
            total_value = Decimal(str(zkb['totalValue'])).quantize(Decimal('0.01'))
        except InvalidOperation:
            logger.warning(f'Ignoring invalid zKillboard value for killmail {killmail_id}: {zkb["totalValue"]}')

    return KillboardMetadata(
        killmail_hash=zkb['hash'].lower(),
        total_value=total_value,
        points=zkb.get('points'),
        npc=bool(zkb.get('npc')),
        solo=bool(zkb.get('solo')),
        awox=bool(zkb.get('awox')),
        raw=zkb,
    )


@dataclass
class EnrichedKillmail:
    killmail_id: int
    killmail_hash: str
    killmail_time: Optional[datetime] = None
    victim_character_id: Optional[int] = None
    victim_corporation_id: Optional[int] = None
    victim_alliance_id: Optional[int] = None
    ship_type_id: Optional[int] = None
    solar_system_id: Optional[int] = None
    attackers_count: int = 0
    items: list = field(default_factory=list)
    total_value: Optional[Decimal] = None
    killboard: dict = field(default_factory=dict)
    is_polarized: bool = False
    polarized_count: int = 0
    warnings: list[str] = field(default_factory=list)
    error: str = ''

    @property
    def partial(self) -> bool:
        return self.ship_type_id is None or self.killmail_time is None


class KillmailEnricher:
    """Resolve a killmail reference into an EnrichedKillmail."""

    def __init__(self, client=ESIClient, fetch_killboard=fetch_zkillboard_metadata):
        self.client = client
        self.fetch_killboard = fetch_killboard

    def enrich(self, killmail_id: int, killmail_hash: str = None) -> EnrichedKillmail:
        warnings = []
        errors = []

        metadata = None
        killboard_error = None
        try:
            metadata = self.fetch_killboard(killmail_id)
        except EnrichmentError as e:
            killboard_error = e
            errors.append(f'zKillboard: {e}')
            logger.warning(f'zKillboard lookup failed for killmail {killmail_id}: {e}')

        if metadata and killmail_hash and metadata.killmail_hash != killmail_hash.lower():
            warnings.append('Killmail hash from link does not match zKillboard; using the link hash')

        hash_ = (killmail_hash or (metadata.killmail_hash if metadata else '')).lower()
        if not hash_:
            transient = killboard_error.transient if killboard_error else False
            raise EnrichmentError(killmail_id, 'No killmail hash available', transient=transient)

        try:
            killmail = self.client.get_killmail(killmail_id, hash_).data or {}
            if not killmail.get('victim'):
                raise ESIError('Killmail missing victim data', status_code=422)
        except ESIError as e:
            if metadata is None:
                raise EnrichmentError(killmail_id, f'ESI: {e}', transient=e.is_transient) from e
            logger.warning(f'ESI killmail fetch failed for {killmail_id}, keeping zKillboard data: {e}')
            errors.append(f'ESI: {e}')
            return EnrichedKillmail(
                killmail_id=killmail_id,
                killmail_hash=hash_,
                total_value=metadata.total_value,
                killboard=metadata.raw,
                warnings=warnings,
                error='; '.join(errors),
            )

        victim = killmail['victim']
        items = victim.get('items') or []
        polarized = detect_polarized(items)
        if polarized.warning:
            warnings.append(polarized.warning)

        killmail_time = killmail.get('killmail_time')
        return EnrichedKillmail(
            killmail_id=killmail_id,
            killmail_hash=hash_,
            killmail_time=parse_datetime(killmail_time) if killmail_time else None,
            victim_character_id=victim.get('character_id'),
            victim_corporation_id=victim.get('corporation_id'),
            victim_alliance_id=victim.get('alliance_id'),
            ship_type_id=victim.get('ship_type_id'),
            solar_system_id=killmail.get('solar_system_id'),
            attackers_count=len(killmail.get('attackers') or []),
            items=items,
            total_value=metadata.total_value if metadata else None,
            killboard=metadata.raw if metadata else {},
            is_polarized=polarized.is_polarized,
            polarized_count=polarized.count,
            warnings=warnings,
            error='; '.join(errors),
        )


def resolve_names(ids, client=ESIClient) -> dict[int, str]:
    """
    Resolve character, corporation, alliance, type and system ids to names.

    Failures degrade to an empty mapping; callers fall back to ids.
    """
    ids = [i for i in ids if i]
    if not ids:
        return {}
    try:
        return {item['id']: item['name'] for item in client.post_universe_names(ids)}
    except ESIError as e:
        logger.warning(f'Bulk name resolution failed for {len(set(ids))} ids: {e}')
        return {}
