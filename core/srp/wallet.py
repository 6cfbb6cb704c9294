"""
Corporation wallet reconciliation.

Syncs the corporation wallet journal and marks approved SRP requests as
paid when a matching withdrawal shows up.

SRP payment format:
- ref_type: corporation_account_withdrawal
- recipient: the pilot (context_id of type character_id, or second party)
- reason: the SRP request id, as "123", "#123" or "SRP 123"
"""

import re
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from django.conf import settings
from django.db import transaction
from django.db.models import Max
from django.utils.dateparse import parse_datetime

from core.exceptions import ESIError, InvalidTransitionError, TokenError
from core.services import ESIClient
from core.srp import notifications
from core.srp.decisions import mark_paid
from core.srp.models import NotificationQueueEntry, SRPRequest, WalletJournalEntry

logger = logging.getLogger('srpwire')

SRP_REF_TYPE = 'corporation_account_withdrawal'
REFERENCE_RE = re.compile(r'\s*(?:SRP\s*)?#?\s*(\d+)\s*', re.IGNORECASE)
MAX_JOURNAL_PAGES = 10


def parse_reference(reason: str) -> Optional[int]:
    """Extract the SRP reference code from a journal reason."""
    match = REFERENCE_RE.fullmatch(reason or '')
    if not match:
        return None
    return int(match.group(1))


@dataclass
class ReconcileResult:
    journal_saved: int = 0
    payments_reconciled: int = 0
    divisions: dict = field(default_factory=dict)
    errors: dict = field(default_factory=dict)

    @property
    def error_summary(self) -> str:
        return '; '.join(f'division {division}: {error}' for division, error in sorted(self.errors.items()))


class WalletReconciler:
    """Sync corporation wallet divisions and match SRP payments."""

    def __init__(self, access_token: str, corporation_id: int = None, divisions=None, client=ESIClient):
        self.access_token = access_token
        self.corporation_id = corporation_id or settings.EVE_CORPORATION_ID
        self.divisions = list(divisions or settings.SRP_WALLET_DIVISIONS)
        self.client = client

    def fetch_new_entries(self, division: int, since: int = None) -> list[dict]:
        """
        Fetch journal entries newer than `since` (default: newest stored id).

        ESI returns entries newest first. Paging stops at known entries, at
        the last page, or after MAX_JOURNAL_PAGES.
        """
        if since is None:
            since = WalletJournalEntry.objects.filter(division=division).aggregate(last=Max('entry_id'))['last']

        collected = []
        page = 1
        while True:
            try:
                response = self.client.get_corporation_wallet_journal(
                    self.corporation_id, division, self.access_token, page=page,
                )
            except ESIError as e:
                if e.status_code == 404 and 'Requested page does not exist' in str(e):
                    logger.info(f'Wallet division {division}: reached end of journal at page {page}')
                    break
                raise

            entries = response.data or []
            if not entries:
                break

            fresh = [entry for entry in entries if since is None or entry['id'] > since]
            collected.extend(fresh)
            if len(fresh) < len(entries) or page >= response.meta.pages:
                break

            page += 1
            if page > MAX_JOURNAL_PAGES:
                logger.warning(f'Wallet division {division}: reached page limit ({MAX_JOURNAL_PAGES}), stopping')
                break

        return collected

    def sync_division(self, division: int, since: int = None) -> int:
        saved = 0
        for data in self.fetch_new_entries(division, since):
            _, created = WalletJournalEntry.objects.get_or_create(
                entry_id=data['id'],
                division=division,
                defaults={
                    'amount': Decimal(str(data.get('amount', 0))),
                    'balance': Decimal(str(data['balance'])) if data.get('balance') is not None else None,
                    'date': parse_datetime(data['date']),
                    'description': data.get('description', ''),
                    'reason': data.get('reason', ''),
                    'ref_type': data.get('ref_type', ''),
                    'first_party_id': data.get('first_party_id'),
                    'second_party_id': data.get('second_party_id'),
                    'context_id': data.get('context_id'),
                    'context_id_type': data.get('context_id_type', ''),
                },
            )
            if created:
                saved += 1
        logger.info(f'Wallet division {division}: saved {saved} new journal entries')
        return saved

    def reconcile(self, since: dict = None) -> ReconcileResult:
        """
        Sync every division, then match payments.

        `since` maps division to an entry id cursor; divisions without one
        continue from their newest stored entry.
        """
        since = since or {}
        result = ReconcileResult()

        for division in self.divisions:
            try:
                saved = self.sync_division(division, since.get(division))
            except (ESIError, TokenError) as e:
                logger.error(f'Wallet division {division} sync failed: {e}')
                result.errors[division] = str(e)
                continue
            result.divisions[division] = saved
            result.journal_saved += saved

        result.payments_reconciled = self.match_payments()
        return result

    def match_payments(self, now: datetime = None) -> int:
        """Mark approved SRP requests paid from unmatched SRP withdrawals."""
        reconciled = 0
        candidates = WalletJournalEntry.objects.filter(
            ref_type=SRP_REF_TYPE, paid_claim__isnull=True,
        ).order_by('date', 'entry_id')

        for entry in candidates:
            code = parse_reference(entry.reason)
            if code is None:
                continue

            claim = self._find_claim(code)
            if claim is None:
                continue

            recipient = entry.recipient_id
            if recipient and recipient not in (claim.victim_character_id, claim.submitter_character_id):
                logger.warning(
                    f'Journal entry {entry.entry_id} references SRP {claim.pk} but pays character {recipient}; skipping'
                )
                continue

            try:
                with transaction.atomic():
                    claim = mark_paid(claim, entry, now=now)
                    notifications.enqueue(
                        NotificationQueueEntry.MailType.PAYMENT,
                        claim.submitter_character_id,
                        notifications.claim_payload(claim),
                        claim=claim,
                    )
            except InvalidTransitionError as e:
                # Paid or cancelled since it was looked up
                logger.warning(f'Journal entry {entry.entry_id}: {e}')
                continue

            reconciled += 1
            logger.info(f'SRP request {claim.pk} marked paid from journal entry {entry.entry_id}')

        return reconciled

    @staticmethod
    def _find_claim(code: int) -> Optional[SRPRequest]:
        approved = SRPRequest.objects.filter(status=SRPRequest.Status.APPROVED)
        return approved.filter(pk=code).first() or approved.filter(killmail_id=code).first()
