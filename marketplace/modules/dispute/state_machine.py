"""Dispute state transitions, SLA deadlines and proposal decision rules.

Pure functions over a ``Dispute`` instance; callers persist the result.
"""

from __future__ import annotations

import enum
from datetime import datetime, timedelta, timezone

from marketplace.database.base import utcnow
from marketplace.exceptions import BusinessRuleException
from marketplace.models.dispute import Dispute
from marketplace.models.enums import (
    DisputeParty,
    DisputeStatus,
    ProposalDecision,
    ProposalPartyStatus,
)
from marketplace.modules.dispute.constants import CLOSURE_PROPOSAL_ACCEPTED, TERMINAL_STATUSES


class DecisionOutcome(str, enum.Enum):
    UNCHANGED = "unchanged"
    RECORDED = "recorded"
    RESOLVED = "resolved"
    REOPENED = "reopened"


_DECISION_STATUS = {
    ProposalDecision.ACCEPT: ProposalPartyStatus.ACCEPTED,
    ProposalDecision.REJECT: ProposalPartyStatus.REJECTED,
}


def as_aware(value: datetime | None) -> datetime | None:
    """Treat naive datetimes read back from the database as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def is_terminal(status: DisputeStatus) -> bool:
    return status in TERMINAL_STATUSES


def next_deadline(dispute: Dispute, now: datetime | None = None) -> datetime:
    return (now or utcnow()) + timedelta(hours=dispute.sla_hours)


def set_status(dispute: Dispute, status: DisputeStatus, now: datetime | None = None) -> None:
    """Move to ``status``; active states get a fresh deadline, terminal ones none."""
    dispute.status = status
    dispute.current_due_at = None if is_terminal(status) else next_deadline(dispute, now)


def touch_deadline(dispute: Dispute, now: datetime | None = None) -> None:
    """Restart the SLA clock without changing state (new activity in the thread)."""
    if not is_terminal(dispute.status):
        dispute.current_due_at = next_deadline(dispute, now)


def ensure_active(dispute: Dispute) -> None:
    if is_terminal(dispute.status):
        raise BusinessRuleException(
            f"Dispute is already closed ({dispute.status.value})",
            details=[{"field": "status", "message": dispute.status.value}],
        )


def ensure_status(dispute: Dispute, *allowed: DisputeStatus) -> None:
    ensure_active(dispute)
    if dispute.status not in allowed:
        expected = ", ".join(s.value for s in allowed)
        raise BusinessRuleException(
            f"Action not allowed while the dispute is {dispute.status.value}; "
            f"expected {expected}",
        )


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def request_info(dispute: Dispute, target: DisputeParty, now: datetime | None = None) -> None:
    ensure_active(dispute)
    status = (
        DisputeStatus.AWAITING_PARTY_B
        if target == DisputeParty.SELLER
        else DisputeStatus.AWAITING_PARTY_A
    )
    set_status(dispute, status, now)


def open_proposal(dispute: Dispute, now: datetime | None = None) -> None:
    """Issue a new proposal; both parties start over as pending."""
    ensure_active(dispute)
    dispute.proposal_buyer_status = ProposalPartyStatus.PENDING
    dispute.proposal_seller_status = ProposalPartyStatus.PENDING
    set_status(dispute, DisputeStatus.PROPOSAL, now)


def apply_proposal_decision(
    dispute: Dispute,
    party: DisputeParty,
    decision: ProposalDecision,
    now: datetime | None = None,
) -> DecisionOutcome:
    """Record one party's answer to the open proposal.

    Repeating the answer a party already gave changes nothing. Both parties
    accepting resolves the dispute; a rejection sends it back to review.
    """
    ensure_status(dispute, DisputeStatus.PROPOSAL)

    new_status = _DECISION_STATUS[decision]
    attr = "proposal_buyer_status" if party == DisputeParty.BUYER else "proposal_seller_status"
    if getattr(dispute, attr) == new_status:
        return DecisionOutcome.UNCHANGED
    setattr(dispute, attr, new_status)

    if new_status == ProposalPartyStatus.REJECTED:
        set_status(dispute, DisputeStatus.IN_REVIEW, now)
        return DecisionOutcome.REOPENED

    if (
        dispute.proposal_buyer_status == ProposalPartyStatus.ACCEPTED
        and dispute.proposal_seller_status == ProposalPartyStatus.ACCEPTED
    ):
        set_status(dispute, DisputeStatus.RESOLVED, now)
        if not dispute.closure_type:
            dispute.closure_type = CLOSURE_PROPOSAL_ACCEPTED
        return DecisionOutcome.RESOLVED

    return DecisionOutcome.RECORDED


def request_mediation(dispute: Dispute, now: datetime | None = None) -> None:
    ensure_status(dispute, DisputeStatus.OPEN)
    set_status(dispute, DisputeStatus.IN_REVIEW, now)


def escalate(dispute: Dispute, now: datetime | None = None) -> None:
    ensure_active(dispute)
    if dispute.status == DisputeStatus.ESCALATED:
        raise BusinessRuleException("Dispute is already escalated")
    set_status(dispute, DisputeStatus.ESCALATED, now)


def override_status(
    dispute: Dispute,
    status: DisputeStatus,
    closure_type: str | None = None,
    now: datetime | None = None,
) -> None:
    """Staff override: any state from any state.

    Entering `proposal` this way restarts both party decisions, as a fresh
    proposal does.
    """
    if status == DisputeStatus.PROPOSAL:
        dispute.proposal_buyer_status = ProposalPartyStatus.PENDING
        dispute.proposal_seller_status = ProposalPartyStatus.PENDING
    set_status(dispute, status, now)
    if closure_type:
        dispute.closure_type = closure_type


def expire(dispute: Dispute, closure_type: str, now: datetime | None = None) -> bool:
    """Close an overdue active dispute. Returns False if it is not overdue."""
    now = now or utcnow()
    due = as_aware(dispute.current_due_at)
    if is_terminal(dispute.status) or due is None or due > now:
        return False
    set_status(dispute, DisputeStatus.CLOSED_EXPIRED, now)
    if not dispute.closure_type:
        dispute.closure_type = closure_type
    return True
