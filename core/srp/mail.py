"""
SRP mailbox intake.

MailFetcher reads the service account's mailbox through ESI.
MailProcessor turns each new mail into a claim: skip banned senders,
parse, enrich, resolve names, decide, then persist the claim, the
ProcessedMail row and any notification in one transaction per mail.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from core.exceptions import ESIError, EnrichmentError
from core.services import ESIClient
from core.srp import notifications
from core.srp.decisions import (
    ClaimFacts, Decision, DecisionPolicy, decide, notification_for, APPROVE, DENY,
)
from core.srp.enrichment import EnrichedKillmail, KillmailEnricher, resolve_names
from core.srp.models import (
    BanListEntry, Fleet, NotificationQueueEntry, ProcessedMail, ShipTypeConfig, SRPRequest,
)
from core.srp.parser import ParsedMail, parse_mail_body

logger = logging.getLogger('srpwire')

MAIL_PAGE_SIZE = 50
MAX_HEADER_PAGES = 20

# ProcessedMail reason codes
REASON_UNPARSEABLE = 'unparseable'
REASON_DUPLICATE = 'duplicate'
REASON_MULTIPLE = 'multiple_killmails'
REASON_AUTO_DENIED = 'auto_denied'
REASON_INVALID_KILLMAIL = 'invalid_killmail'
REASON_FETCH_FAILED = 'fetch_failed'
REASON_BANNED = 'banned'


@dataclass(frozen=True)
class MailHeader:
    mail_id: int
    sender_id: int
    subject: str
    timestamp: Optional[datetime]

    @classmethod
    def from_esi(cls, data: dict) -> 'MailHeader':
        timestamp = data.get('timestamp')
        return cls(
            mail_id=data['mail_id'],
            sender_id=data.get('from'),
            subject=(data.get('subject') or '')[:255],
            timestamp=parse_datetime(timestamp) if timestamp else None,
        )


@dataclass
class MailBatchResult:
    processed: int = 0
    created: int = 0
    skipped: int = 0
    already_processed: int = 0
    errors: list[dict] = field(default_factory=list)

    def add_error(self, mail_id: int, message: str) -> None:
        self.errors.append({'mail_id': mail_id, 'error': message})


class MailFetcher:
    """Read SRP mail for the service account character."""

    def __init__(self, character_id: int, access_token: str, window_days: int = None, client=ESIClient):
        self.character_id = character_id
        self.access_token = access_token
        self.window_days = window_days or settings.SRP_MAIL_WINDOW_DAYS
        self.client = client

    def fetch_headers(self, now: datetime = None) -> list[MailHeader]:
        """
        Walk the mailbox newest first with last_mail_id paging.

        Returns headers inside the window, oldest first, excluding mail the
        service account sent itself.
        """
        now = now or timezone.now()
        cutoff = now - timedelta(days=self.window_days)
        headers = []
        last_mail_id = None

        for _ in range(MAX_HEADER_PAGES):
            page = self.client.get_mail_headers(self.character_id, self.access_token, last_mail_id).data or []
            if not page:
                break

            reached_cutoff = False
            for data in page:
                header = MailHeader.from_esi(data)
                if header.timestamp and header.timestamp < cutoff:
                    reached_cutoff = True
                    continue
                if header.sender_id == self.character_id:
                    continue
                headers.append(header)

            if reached_cutoff or len(page) < MAIL_PAGE_SIZE:
                break
            last_mail_id = min(data['mail_id'] for data in page)

        headers.sort(key=lambda h: (h.timestamp or now, h.mail_id))
        logger.info(f'Fetched {len(headers)} mail header(s) from the last {self.window_days} days')
        return headers

    def fetch_body(self, mail_id: int) -> str:
        response = self.client.get_mail(self.character_id, mail_id, self.access_token)
        return (response.data or {}).get('body') or ''


@dataclass
class _Pending:
    """A mail that made it through fetch, parse and enrichment."""

    header: MailHeader
    body: str
    parsed: ParsedMail
    enriched: Optional[EnrichedKillmail] = None


class MailProcessor:
    """Process mailbox headers into SRP requests."""

    def __init__(self, fetcher: MailFetcher, enricher: KillmailEnricher = None, policy: DecisionPolicy = None,
                 now: datetime = None):
        self.fetcher = fetcher
        self.enricher = enricher or KillmailEnricher()
        self.policy = policy or DecisionPolicy.from_settings()
        self.now = now or timezone.now()

    def process(self, headers: list[MailHeader]) -> MailBatchResult:
        result = MailBatchResult()
        if not headers:
            return result

        seen = set(
            ProcessedMail.objects.filter(mail_id__in=[h.mail_id for h in headers]).values_list('mail_id', flat=True)
        )
        new_headers = [h for h in headers if h.mail_id not in seen]
        result.already_processed = len(headers) - len(new_headers)
        if not new_headers:
            return result

        logger.info(f'Processing {len(new_headers)} new SRP mail(s)')

        rules = {config.type_id: config for config in ShipTypeConfig.objects.filter(is_active=True)}
        # Oldest loss worth deciding: oldest mail in the window, minus the loss age limit
        horizon = self.now - timedelta(days=settings.SRP_MAIL_WINDOW_DAYS + self.policy.max_loss_age_days + 1)
        fleets = [
            fleet.to_window()
            for fleet in Fleet.objects.exclude(status=Fleet.Status.CANCELLED).filter(scheduled_at__gte=horizon)
        ]

        banned = BanListEntry.banned_from_srp({header.sender_id for header in new_headers})

        pending = []
        for header in new_headers:
            ban = banned.get(header.sender_id)
            if ban is not None:
                # Recorded without fetching the body
                self._record(header, '', ProcessedMail.Status.SKIPPED, REASON_BANNED, result,
                             error=f'Sender is banned: {ban.reason or "No reason provided"}')
                continue

            item = self._prepare(header, result)
            if item is not None:
                pending.append(item)

        names = resolve_names(self._ids_to_resolve(pending))

        for item in pending:
            self._persist(item, rules, fleets, names, result)

        logger.info(
            f'SRP mail batch: {result.processed} processed, {result.created} created, '
            f'{result.skipped} skipped, {len(result.errors)} error(s)'
        )
        return result

    def _prepare(self, header: MailHeader, result: MailBatchResult) -> Optional[_Pending]:
        """Fetch, parse and enrich one mail. Returns None when the mail is finished or deferred."""
        try:
            body = self.fetcher.fetch_body(header.mail_id)
        except ESIError as e:
            result.add_error(header.mail_id, f'Failed to fetch mail body: {e}')
            if e.is_transient:
                logger.warning(f'Mail {header.mail_id}: body fetch failed, will retry next run: {e}')
            else:
                self._record(header, '', ProcessedMail.Status.ERROR, REASON_FETCH_FAILED, result, error=str(e))
            return None

        parsed = parse_mail_body(body)

        if parsed.is_empty:
            self._record(header, body, ProcessedMail.Status.SKIPPED, REASON_UNPARSEABLE, result,
                         error='No killmail link found in mail')
            return None

        if parsed.is_multiple:
            return _Pending(header=header, body=body, parsed=parsed)

        reference = parsed.references[0]
        existing = SRPRequest.objects.filter(killmail_id=reference.killmail_id).first()
        if existing is not None:
            self._record_duplicate(header, body, existing, result)
            return None

        try:
            enriched = self.enricher.enrich(reference.killmail_id, reference.killmail_hash)
        except EnrichmentError as e:
            result.add_error(header.mail_id, str(e))
            if e.transient:
                logger.warning(f'Mail {header.mail_id}: enrichment failed, will retry next run: {e}')
            else:
                self._record(header, body, ProcessedMail.Status.ERROR, REASON_INVALID_KILLMAIL, result, error=str(e))
            return None

        return _Pending(header=header, body=body, parsed=parsed, enriched=enriched)

    @staticmethod
    def _ids_to_resolve(pending: list[_Pending]) -> list[int]:
        ids = set()
        for item in pending:
            ids.add(item.header.sender_id)
            km = item.enriched
            if km is not None:
                ids.update([km.victim_character_id, km.victim_corporation_id, km.victim_alliance_id,
                            km.ship_type_id, km.solar_system_id])
        ids.discard(None)
        return sorted(ids)

    def _persist(self, item: _Pending, rules: dict, fleets: list, names: dict, result: MailBatchResult) -> None:
        header, km = item.header, item.enriched
        config = rules.get(km.ship_type_id) if km is not None else None
        if km is not None and km.partial:
            logger.warning(f'Mail {header.mail_id}: killmail {km.killmail_id} only partially enriched ({km.error})')

        facts = ClaimFacts(
            received_at=header.timestamp or self.now,
            sender_id=header.sender_id,
            killmail_count=len(item.parsed.references),
            ship_type_id=km.ship_type_id if km else None,
            killmail_time=km.killmail_time if km else None,
            victim_id=km.victim_character_id if km else None,
            is_polarized=km.is_polarized if km else False,
        )
        decision = decide(facts, config.to_rule() if config else None, fleets, self.policy)

        claim = self._build_claim(item, config, decision, names)
        auto_denied = decision.outcome == DENY

        try:
            with transaction.atomic():
                claim.save()
                ProcessedMail.objects.create(
                    mail_id=header.mail_id,
                    sender_character_id=header.sender_id,
                    sender_name=claim.submitter_character_name,
                    subject=header.subject,
                    mail_timestamp=header.timestamp,
                    status=ProcessedMail.Status.SKIPPED if auto_denied else ProcessedMail.Status.CREATED,
                    reason=(REASON_MULTIPLE if item.parsed.is_multiple else REASON_AUTO_DENIED) if auto_denied else '',
                    srp_request=claim,
                    mail_body=item.body,
                )
                mail_type = notification_for(decision, self.policy)
                if mail_type:
                    notifications.enqueue(
                        mail_type, header.sender_id, notifications.claim_payload(claim), claim=claim,
                    )
        except IntegrityError as e:
            # Another run recorded this mail or killmail first
            logger.warning(f'Mail {header.mail_id}: not stored, already recorded ({e})')
            result.skipped += 1
            return

        result.processed += 1
        if auto_denied:
            result.skipped += 1
        else:
            result.created += 1
        logger.info(f'Mail {header.mail_id}: SRP request {claim.pk} {claim.status} ({decision.rule})')

    def _build_claim(self, item: _Pending, config: Optional[ShipTypeConfig], decision: Decision,
                     names: dict) -> SRPRequest:
        header, km = item.header, item.enriched
        claim = SRPRequest(
            submitter_character_id=header.sender_id,
            submitter_character_name=names.get(header.sender_id, ''),
            mail_id=header.mail_id,
            mail_subject=header.subject,
            pilot_notes=item.parsed.notes,
            submitted_at=header.timestamp or self.now,
            status=decision.outcome,
            decision_rule=decision.rule,
            auto_decided=decision.auto_decided,
            requires_fc_approval=decision.requires_fc_approval,
            admin_notes=decision.admin_note,
            base_payout_amount=decision.payout,
        )

        if decision.auto_decided:
            claim.processed_at = self.now
            claim.processed_by_name = 'SRP automation'
        if decision.outcome == APPROVE:
            claim.final_payout_amount = decision.payout
        elif decision.outcome == DENY:
            claim.denial_reason = decision.reason

        if km is None:
            return claim

        warnings = list(km.warnings)
        if item.parsed.claimed_ship_name and config and item.parsed.claimed_ship_name != config.type_name:
            warnings.append(f'Mail names a {item.parsed.claimed_ship_name}, killmail shows a {config.type_name}')
        if km.is_polarized:
            warnings.append('Polarized fit detected')

        claim.killmail_id = km.killmail_id
        claim.killmail_hash = km.killmail_hash
        claim.victim_character_id = km.victim_character_id
        claim.victim_character_name = names.get(km.victim_character_id, '')
        claim.victim_corporation_id = km.victim_corporation_id
        claim.victim_corporation_name = names.get(km.victim_corporation_id, '')
        claim.victim_alliance_id = km.victim_alliance_id
        claim.victim_alliance_name = names.get(km.victim_alliance_id, '')
        claim.ship_type_id = km.ship_type_id
        claim.ship_type_name = (config.type_name if config else '') or names.get(km.ship_type_id, '')
        claim.ship_group_id = config.group_id if config else None
        claim.ship_group_name = config.group_name if config else ''
        claim.killmail_time = km.killmail_time
        claim.solar_system_id = km.solar_system_id
        claim.solar_system_name = names.get(km.solar_system_id, '')
        claim.is_polarized = km.is_polarized
        claim.total_value = km.total_value
        claim.enrichment_data = km.killboard
        claim.enrichment_error = km.error
        claim.validation_warnings = warnings
        return claim

    def _record(self, header: MailHeader, body: str, status: str, reason: str, result: MailBatchResult,
                error: str = '', claim: SRPRequest = None) -> bool:
        try:
            with transaction.atomic():
                ProcessedMail.objects.create(
                    mail_id=header.mail_id,
                    sender_character_id=header.sender_id,
                    subject=header.subject,
                    mail_timestamp=header.timestamp,
                    status=status,
                    reason=reason,
                    srp_request=claim,
                    error_message=error,
                    mail_body=body,
                )
        except IntegrityError:
            logger.warning(f'Mail {header.mail_id} already recorded by another run')
            return False

        result.processed += 1
        if status == ProcessedMail.Status.SKIPPED:
            result.skipped += 1
        logger.info(f'Mail {header.mail_id}: {status} ({reason})')
        return True

    def _record_duplicate(self, header: MailHeader, body: str, existing: SRPRequest,
                          result: MailBatchResult) -> None:
        with transaction.atomic():
            recorded = self._record(header, body, ProcessedMail.Status.SKIPPED, REASON_DUPLICATE, result,
                                    error=f'Killmail already submitted as SRP request {existing.pk}', claim=existing)
            if not recorded:
                return
            notifications.enqueue(
                NotificationQueueEntry.MailType.DUPLICATE,
                header.sender_id,
                notifications.claim_payload(existing, recipient_name='', status=existing.get_status_display()),
                claim=existing,
            )
