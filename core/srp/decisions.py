"""
SRP eligibility decisions and claim lifecycle.

`decide` is a pure function of the claim facts, the ship's payout rule,
the fleet schedule and the policy. The same inputs always produce the
same decision, so a mail can be safely re-run. Both the mail pipeline and
the manual admin actions go through this module.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.exceptions import InvalidTransitionError
from core.srp.models import SRPRequest, NotificationQueueEntry

logger = logging.getLogger('srpwire')

AUTO_APPROVAL_MARKER = '[AUTO-APPROVAL]'
AUTO_REJECTION_MARKER = '[AUTO-REJECTION]'

APPROVE = SRPRequest.Status.APPROVED.value
DENY = SRPRequest.Status.DENIED.value
PENDING = SRPRequest.Status.PENDING.value
PAID = SRPRequest.Status.PAID.value
CANCELLED = SRPRequest.Status.CANCELLED.value

# Decision rule codes, stored on the claim
RULE_MULTIPLE_KILLMAILS = 'multiple_killmails'
RULE_INELIGIBLE_SHIP = 'ineligible_ship'
RULE_FC_DISCRETION = 'fc_discretion'
RULE_INCOMPLETE_DATA = 'incomplete_data'
RULE_TOO_OLD = 'too_old'
RULE_PILOT_MISMATCH = 'pilot_mismatch'
RULE_NO_FLEET = 'no_fleet'
RULE_APPROVED = 'approved'

ALLOWED_TRANSITIONS = {
    PENDING: {APPROVE, DENY, CANCELLED},
    APPROVE: {PAID, CANCELLED},
    DENY: {CANCELLED},
    PAID: set(),
    CANCELLED: set(),
}

# Moves a reviewer may make over an automatic decision
OVERRIDE_TRANSITIONS = {
    DENY: {APPROVE},
}


@dataclass(frozen=True)
class ShipRule:
    type_id: int
    type_name: str
    base_payout: Decimal
    group_name: str = ''
    polarized_payout: Optional[Decimal] = None
    fc_discretion: bool = False
    is_active: bool = True

    def payout(self, is_polarized: bool) -> Decimal:
        if is_polarized and self.polarized_payout is not None:
            return self.polarized_payout
        return self.base_payout


@dataclass(frozen=True)
class FleetWindow:
    fleet_id: Optional[int]
    name: str
    start: datetime
    end: datetime
    cancelled: bool = False

    def covers(self, moment: datetime, before: timedelta, after: timedelta) -> bool:
        return self.start - before <= moment <= self.end + after


@dataclass(frozen=True)
class DecisionPolicy:
    max_loss_age_days: int = 30
    require_victim_match: bool = True
    fleet_window_before: timedelta = timedelta(minutes=30)
    fleet_window_after: timedelta = timedelta(minutes=60)
    notify_auto_denials: bool = False

    @classmethod
    def from_settings(cls) -> 'DecisionPolicy':
        return cls(
            max_loss_age_days=settings.SRP_MAX_LOSS_AGE_DAYS,
            require_victim_match=settings.SRP_REQUIRE_VICTIM_MATCH,
            fleet_window_before=timedelta(minutes=settings.SRP_FLEET_WINDOW_BEFORE_MINUTES),
            fleet_window_after=timedelta(minutes=settings.SRP_FLEET_WINDOW_AFTER_MINUTES),
            notify_auto_denials=settings.SRP_NOTIFY_AUTO_DENIALS,
        )


@dataclass(frozen=True)
class ClaimFacts:
    """What the pipeline knows about a claim when deciding it."""

    received_at: datetime
    sender_id: int
    killmail_count: int = 1
    ship_type_id: Optional[int] = None
    killmail_time: Optional[datetime] = None
    victim_id: Optional[int] = None
    is_polarized: bool = False


@dataclass(frozen=True)
class Decision:
    outcome: str
    rule: str
    reason: str = ''
    payout: Optional[Decimal] = None
    auto_decided: bool = False
    requires_fc_approval: bool = False

    @property
    def admin_note(self) -> str:
        if not self.auto_decided:
            return ''
        marker = AUTO_APPROVAL_MARKER if self.outcome == APPROVE else AUTO_REJECTION_MARKER
        return f"{marker} {self.reason}".strip()


def _deny(rule: str, reason: str, payout: Optional[Decimal] = None) -> Decision:
    return Decision(outcome=DENY, rule=rule, reason=reason, payout=payout, auto_decided=True)


def decide(facts: ClaimFacts, ship_rule: Optional[ShipRule], fleets: Sequence[FleetWindow],
           policy: DecisionPolicy) -> Decision:
    """
    Decide a claim. Rules are applied in order; the first match wins.
    """
    if facts.killmail_count > 1:
        return _deny(RULE_MULTIPLE_KILLMAILS, 'Mail references more than one killmail; submit one loss per mail')

    if facts.ship_type_id is None:
        return Decision(outcome=PENDING, rule=RULE_INCOMPLETE_DATA,
                        reason='Killmail details unavailable; manual review required')

    if ship_rule is None or not ship_rule.is_active:
        return _deny(RULE_INELIGIBLE_SHIP, 'Ship type not eligible for SRP')

    payout = ship_rule.payout(facts.is_polarized)

    if ship_rule.fc_discretion:
        return Decision(outcome=PENDING, rule=RULE_FC_DISCRETION, payout=payout,
                        reason='Ship type requires FC discretion', requires_fc_approval=True)

    if facts.killmail_time is None:
        return Decision(outcome=PENDING, rule=RULE_INCOMPLETE_DATA, payout=payout,
                        reason='Loss time unavailable; manual review required')

    age = facts.received_at - facts.killmail_time
    if age > timedelta(days=policy.max_loss_age_days):
        return _deny(RULE_TOO_OLD, f'Killmail older than {policy.max_loss_age_days} days ({age.days} days old)',
                     payout)

    if policy.require_victim_match and facts.victim_id and facts.victim_id != facts.sender_id:
        return _deny(RULE_PILOT_MISMATCH, 'Mail sender does not match killmail victim', payout)

    in_fleet = any(
        window.covers(facts.killmail_time, policy.fleet_window_before, policy.fleet_window_after)
        for window in fleets if not window.cancelled
    )
    if not in_fleet:
        return _deny(RULE_NO_FLEET, 'No matching fleet activity', payout)

    return Decision(outcome=APPROVE, rule=RULE_APPROVED, reason=f'Eligible loss: {ship_rule.type_name}',
                    payout=payout, auto_decided=True)


def notification_for(decision: Decision, policy: DecisionPolicy) -> Optional[str]:
    """Mail type to queue for the claimant after an automatic decision, if any."""
    if decision.outcome == APPROVE:
        return NotificationQueueEntry.MailType.AUTO_APPROVAL
    if decision.outcome == PENDING:
        return NotificationQueueEntry.MailType.RECEIVED
    if policy.notify_auto_denials:
        return NotificationQueueEntry.MailType.AUTO_DENIAL
    return None


def can_transition(current: str, target: str, auto_decided: bool = False) -> bool:
    if str(target) in ALLOWED_TRANSITIONS.get(str(current), set()):
        return True
    return auto_decided and str(target) in OVERRIDE_TRANSITIONS.get(str(current), set())


@transaction.atomic
def transition(claim: SRPRequest, target: str, *, actor_id: int = None, actor_name: str = '',
               reason: str = '', payout: Decimal = None, notes: str = '', now: datetime = None) -> SRPRequest:
    """
    Move a claim to a new status under a row lock.

    Returns the locked, updated row. Raises InvalidTransitionError when
    the lifecycle does not allow the move. An automatic denial can be
    overridden to approved once; the override clears auto_decided.
    """
    now = now or timezone.now()
    locked = SRPRequest.objects.select_for_update().get(pk=claim.pk)

    if not can_transition(locked.status, target, auto_decided=locked.auto_decided):
        raise InvalidTransitionError(str(locked.status), str(target))

    if target == SRPRequest.Status.APPROVED:
        if payout is None:
            payout = locked.base_payout_amount
        locked.final_payout_amount = payout
        locked.denial_reason = ''
    elif target == SRPRequest.Status.DENIED:
        locked.denial_reason = reason

    if target != SRPRequest.Status.PAID:
        locked.processed_at = now
        locked.processed_by_character_id = actor_id
        locked.processed_by_name = actor_name
        locked.auto_decided = False

    if notes:
        locked.admin_notes = f"{locked.admin_notes}\n{notes}".strip()

    locked.status = target
    locked.save()
    logger.info(f'SRP request {locked.pk} moved to {target} by {actor_name or "system"}')
    return locked


def approve_claim(claim: SRPRequest, *, actor_id: int = None, actor_name: str = '', payout: Decimal = None,
                  notes: str = '') -> SRPRequest:
    """Manually approve a claim and queue the approval mail."""
    from core.srp import notifications

    with transaction.atomic():
        claim = transition(claim, SRPRequest.Status.APPROVED, actor_id=actor_id, actor_name=actor_name,
                           payout=payout, notes=notes)
        notifications.enqueue(
            NotificationQueueEntry.MailType.MANUAL_APPROVAL,
            claim.submitter_character_id,
            notifications.claim_payload(claim),
            claim=claim,
        )
    return claim


def deny_claim(claim: SRPRequest, reason: str, *, actor_id: int = None, actor_name: str = '',
               notes: str = '') -> SRPRequest:
    """Manually deny a claim and queue the denial mail."""
    from core.srp import notifications

    with transaction.atomic():
        claim = transition(claim, SRPRequest.Status.DENIED, actor_id=actor_id, actor_name=actor_name,
                           reason=reason, notes=notes)
        notifications.enqueue(
            NotificationQueueEntry.MailType.MANUAL_DENIAL,
            claim.submitter_character_id,
            notifications.claim_payload(claim),
            claim=claim,
        )
    return claim


def cancel_claim(claim: SRPRequest, *, actor_id: int = None, actor_name: str = '', notes: str = '') -> SRPRequest:
    return transition(claim, SRPRequest.Status.CANCELLED, actor_id=actor_id, actor_name=actor_name, notes=notes)


@transaction.atomic
def mark_paid(claim: SRPRequest, entry, now: datetime = None) -> SRPRequest:
    """
    Record a wallet payment against an approved claim.

    The entry amount is stored as a positive value. A payment that differs
    from the approved payout is accepted with a validation warning.
    """
    locked = transition(claim, SRPRequest.Status.PAID, now=now)
    amount = abs(entry.amount)

    locked.payment_entry = entry
    locked.payment_amount = amount
    locked.paid_at = entry.date

    if locked.final_payout_amount is not None and amount != locked.final_payout_amount:
        warning = f'Paid {amount:,.2f} ISK but approved payout was {locked.final_payout_amount:,.2f} ISK'
        locked.validation_warnings = [*locked.validation_warnings, warning]
        logger.warning(f'SRP request {locked.pk}: {warning}')

    locked.save(update_fields=['payment_entry', 'payment_amount', 'paid_at', 'validation_warnings', 'updated_at'])
    return locked
