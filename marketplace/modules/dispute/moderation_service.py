"""Moderation actions on disputes.

Every handler follows the same sequence: resolve who the caller is, check
the transition, persist the dispute (version-checked), append a thread
message, notify the affected users and queue real-time updates. Staff
overrides additionally write an audit entry in the same transaction.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import select

from marketplace.exceptions import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from marketplace.models.dispute import Dispute
from marketplace.models.dispute_message import DisputeMessage
from marketplace.models.enums import (
    DisputeParty,
    DisputeStatus,
    MessageAuthorRole,
    ProposalDecision,
    UserRole,
)
from marketplace.models.user import User
from marketplace.modules.auth.auth import AuthenticatedUser
from marketplace.modules.dispute import state_machine
from marketplace.modules.dispute.access import (
    Capability,
    ensure_moderator_can_act,
    require_party,
    resolve_capability,
)
from marketplace.modules.dispute.constants import (
    AUDIT_ENTITY_DISPUTE,
    AUDIT_ESCALATE,
    AUDIT_MODERATOR_UPDATE,
    AUDIT_STATUS_UPDATE,
    CLOSURE_SLA_EXPIRED,
    TEXT_ESCALATED,
    TEXT_MEDIATION,
    TEXT_PROPOSAL,
    TEXT_PROPOSAL_ACCEPTED,
    TEXT_PROPOSAL_REJECTED,
    TEXT_PROPOSAL_RESOLVED,
    TEXT_REQUEST_INFO,
    TEXT_SLA_EXPIRED,
    TEXT_STATUS_CHANGED,
    TITLE_ASSIGNED,
    TITLE_DECISION,
    TITLE_ESCALATED,
    TITLE_EXPIRED,
    TITLE_MEDIATION,
    TITLE_PROPOSAL,
    TITLE_REQUEST_INFO,
    TITLE_UPDATED,
)
from marketplace.modules.dispute.service import DisputeService
from marketplace.modules.dispute.state_machine import DecisionOutcome
from marketplace.modules.notifications.constants import NOTIFICATION_TYPE_DISPUTE

logger = logging.getLogger(__name__)


def _status_snapshot(dispute: Dispute) -> dict:
    return {"status": dispute.status.value, "closure_type": dispute.closure_type}


def _moderator_snapshot(dispute: Dispute) -> dict:
    return {
        "moderator_assigned_to": dispute.moderator_assigned_to,
        "moderator_key": dispute.moderator_key,
    }


class ModerationService(DisputeService):
    # ------------------------------------------------------------------
    # Moderator-driven transitions
    # ------------------------------------------------------------------

    async def request_info(
        self,
        dispute_id: uuid.UUID,
        user: AuthenticatedUser,
        to: DisputeParty,
        text: str | None = None,
    ) -> tuple[Dispute, DisputeMessage]:
        """Ask one party for more information; the dispute waits on that party."""
        dispute = await self.ensure_can_moderate(dispute_id, user)
        state_machine.request_info(dispute, to)
        await self.save(dispute)

        text = text or TEXT_REQUEST_INFO
        message = await self.append_message(dispute, MessageAuthorRole.MODERATOR, text, user.id)
        target = dispute.seller_id if to == DisputeParty.SELLER else dispute.buyer_id
        await self.notifications.emit_and_persist(
            target,
            NOTIFICATION_TYPE_DISPUTE,
            TITLE_REQUEST_INFO,
            text,
            entity=dispute.id,
            data=self.notification_data(dispute, role=to.value),
        )
        self.broadcast_update(dispute, message)
        logger.info("Dispute %s awaiting %s (requested by %s)", dispute.id, to.value, user.id)
        return dispute, message

    async def propose_resolution(
        self, dispute_id: uuid.UUID, user: AuthenticatedUser, text: str | None = None
    ) -> tuple[Dispute, DisputeMessage]:
        dispute = await self.ensure_can_moderate(dispute_id, user)
        state_machine.open_proposal(dispute)
        await self.save(dispute)

        text = text or TEXT_PROPOSAL
        message = await self.append_message(dispute, MessageAuthorRole.MODERATOR, text, user.id)
        for party, party_id in (("buyer", dispute.buyer_id), ("seller", dispute.seller_id)):
            await self.notifications.emit_and_persist(
                party_id,
                NOTIFICATION_TYPE_DISPUTE,
                TITLE_PROPOSAL,
                text,
                entity=dispute.id,
                data=self.notification_data(dispute, role=party),
            )
        self.broadcast_update(dispute, message)
        logger.info("Proposal issued on dispute %s by %s", dispute.id, user.id)
        return dispute, message

    # ------------------------------------------------------------------
    # Party-driven transitions
    # ------------------------------------------------------------------

    def _deciding_party(
        self,
        user: AuthenticatedUser,
        dispute: Dispute,
        capability: Capability,
        party: DisputeParty | None,
    ) -> DisputeParty:
        if capability.is_party:
            if party is not None and party != capability.party:
                raise ForbiddenException("You can only decide for your own side of the dispute")
            return capability.party
        if capability.is_staff:
            ensure_moderator_can_act(user, dispute)
            if party is None:
                raise ValidationException(
                    "A moderator must name the party the decision is recorded for",
                    details=[{"field": "party", "message": "required"}],
                )
            return party
        raise ForbiddenException("You are not a participant in this dispute")

    async def decide_proposal(
        self,
        dispute_id: uuid.UUID,
        user: AuthenticatedUser,
        decision: ProposalDecision,
        party: DisputeParty | None = None,
    ) -> tuple[Dispute, DisputeMessage | None, bool]:
        """Record accept/reject for one party. Returns ``(dispute, message, changed)``."""
        dispute = await self.get_dispute(dispute_id)
        capability = resolve_capability(user, dispute)
        side = self._deciding_party(user, dispute, capability, party)

        outcome = state_machine.apply_proposal_decision(dispute, side, decision)
        if outcome is DecisionOutcome.UNCHANGED:
            return dispute, None, False
        await self.save(dispute)

        label = side.value.capitalize()
        template = (
            TEXT_PROPOSAL_ACCEPTED if decision == ProposalDecision.ACCEPT else TEXT_PROPOSAL_REJECTED
        )
        message = await self.append_message(
            dispute, capability.author_role, template.format(party=label), user.id
        )

        if outcome is DecisionOutcome.RESOLVED:
            message = await self.append_message(
                dispute, MessageAuthorRole.SYSTEM, TEXT_PROPOSAL_RESOLVED
            )
            recipients = [dispute.buyer_id, dispute.seller_id]
            note = TEXT_PROPOSAL_RESOLVED
        else:
            other = dispute.seller_id if side == DisputeParty.BUYER else dispute.buyer_id
            recipients = [other] if capability.is_party else [dispute.buyer_id, dispute.seller_id]
            note = template.format(party=label)

        await self.notifications.emit_and_persist(
            recipients,
            NOTIFICATION_TYPE_DISPUTE,
            TITLE_DECISION,
            note,
            entity=dispute.id,
            data=self.notification_data(dispute, decision=decision.value, party=side.value),
        )
        self.broadcast_update(dispute, message)
        logger.info(
            "Proposal on dispute %s: %s %s -> %s", dispute.id, side.value, decision.value, outcome.value
        )
        return dispute, message, True

    async def request_mediation(
        self, dispute_id: uuid.UUID, user: AuthenticatedUser
    ) -> tuple[Dispute, DisputeMessage]:
        """A party hands an open dispute to the moderation team."""
        dispute = await self.get_dispute(dispute_id)
        capability = require_party(user, dispute)
        state_machine.request_mediation(dispute)
        await self.save(dispute)

        message = await self.append_message(
            dispute, capability.author_role, TEXT_MEDIATION, user.id
        )
        staff = await self.db.execute(
            select(User.id).where(
                User.role.in_([UserRole.MODERATOR, UserRole.ADMIN]),
                User.is_active.is_(True),
            )
        )
        await self.notifications.emit_and_persist(
            staff.scalars().all(),
            NOTIFICATION_TYPE_DISPUTE,
            TITLE_MEDIATION,
            f"Mediation requested for dispute #{dispute.reference}",
            entity=dispute.id,
            data=self.notification_data(dispute, requested_by=capability.value),
        )
        self.broadcast_update(dispute, message)
        logger.info("Mediation requested on dispute %s by %s", dispute.id, capability.value)
        return dispute, message

    # ------------------------------------------------------------------
    # Staff overrides (audited)
    # ------------------------------------------------------------------

    async def _notify_parties(self, dispute: Dispute, title: str, text: str) -> None:
        for party, party_id in (("buyer", dispute.buyer_id), ("seller", dispute.seller_id)):
            await self.notifications.emit_and_persist(
                party_id,
                NOTIFICATION_TYPE_DISPUTE,
                title,
                text,
                entity=dispute.id,
                data=self.notification_data(dispute, role=party),
            )

    async def escalate(
        self,
        dispute_id: uuid.UUID,
        user: AuthenticatedUser,
        reason: str,
        ip: str | None = None,
    ) -> tuple[Dispute, DisputeMessage]:
        dispute = await self.ensure_can_moderate(dispute_id, user)
        before = _status_snapshot(dispute)
        state_machine.escalate(dispute)
        await self.save(dispute)

        text = TEXT_ESCALATED.format(reason=reason.strip())
        message = await self.append_message(dispute, MessageAuthorRole.MODERATOR, text, user.id)
        await self.audit.record(
            actor_id=user.id,
            action=AUDIT_ESCALATE,
            entity_type=AUDIT_ENTITY_DISPUTE,
            entity_id=dispute.id,
            before=before,
            after={**_status_snapshot(dispute), "reason": reason},
            metadata={"ip": ip},
        )
        await self._notify_parties(dispute, TITLE_ESCALATED, text)
        self.broadcast_update(dispute, message)
        logger.info("Dispute %s escalated by %s", dispute.id, user.id)
        return dispute, message

    async def override_status(
        self,
        dispute_id: uuid.UUID,
        user: AuthenticatedUser,
        status: DisputeStatus,
        closure_type: str | None = None,
        comment: str | None = None,
        ip: str | None = None,
    ) -> tuple[Dispute, DisputeMessage]:
        """Set any status regardless of the current one."""
        dispute = await self.ensure_can_moderate(dispute_id, user)
        before = _status_snapshot(dispute)
        state_machine.override_status(dispute, status, closure_type)
        await self.save(dispute)

        await self.audit.record(
            actor_id=user.id,
            action=AUDIT_STATUS_UPDATE,
            entity_type=AUDIT_ENTITY_DISPUTE,
            entity_id=dispute.id,
            before=before,
            after=_status_snapshot(dispute),
            metadata={"ip": ip},
        )
        text = comment or TEXT_STATUS_CHANGED.format(status=status.value)
        message = await self.append_message(dispute, MessageAuthorRole.MODERATOR, text, user.id)
        await self._notify_parties(dispute, TITLE_UPDATED, text)
        self.broadcast_update(dispute, message)
        logger.info(
            "Dispute %s status overridden %s -> %s by %s",
            dispute.id,
            before["status"],
            status.value,
            user.id,
        )
        return dispute, message

    async def assign_moderator(
        self,
        dispute_id: uuid.UUID,
        user: AuthenticatedUser,
        moderator_id: uuid.UUID | None,
        ip: str | None = None,
    ) -> Dispute:
        """Reserve the dispute to one moderator, or release it with ``None``."""
        dispute = await self.ensure_can_moderate(dispute_id, user)
        before = _moderator_snapshot(dispute)

        if moderator_id is None:
            dispute.moderator_assigned_to = None
            dispute.moderator_key = None
        else:
            moderator = await self.db.get(User, moderator_id)
            if moderator is None:
                raise NotFoundException(f"User {moderator_id} not found")
            if not moderator.is_staff:
                raise ValidationException(
                    "Only moderators or admins can be assigned to a dispute",
                    details=[{"field": "moderator_id", "message": str(moderator_id)}],
                )
            dispute.moderator_assigned_to = moderator.id
            dispute.moderator_key = moderator.email
        await self.save(dispute)

        await self.audit.record(
            actor_id=user.id,
            action=AUDIT_MODERATOR_UPDATE,
            entity_type=AUDIT_ENTITY_DISPUTE,
            entity_id=dispute.id,
            before=before,
            after=_moderator_snapshot(dispute),
            metadata={"ip": ip},
        )
        if moderator_id is not None and moderator_id != user.id:
            await self.notifications.emit_and_persist(
                moderator_id,
                NOTIFICATION_TYPE_DISPUTE,
                TITLE_ASSIGNED,
                f"Dispute #{dispute.reference} was assigned to you",
                entity=dispute.id,
                data=self.notification_data(dispute, role="moderator"),
            )
        self.broadcast_update(dispute)
        logger.info("Dispute %s moderator set to %s by %s", dispute.id, moderator_id, user.id)
        return dispute

    # ------------------------------------------------------------------
    # SLA expiry
    # ------------------------------------------------------------------

    async def expire(self, dispute: Dispute, now: datetime | None = None) -> bool:
        """Close an overdue dispute; no-op if it is no longer overdue."""
        if not state_machine.expire(dispute, CLOSURE_SLA_EXPIRED, now):
            return False
        await self.save(dispute)
        await self.append_message(dispute, MessageAuthorRole.SYSTEM, TEXT_SLA_EXPIRED)
        await self._notify_parties(dispute, TITLE_EXPIRED, TEXT_SLA_EXPIRED)
        self.broadcast_update(dispute)
        logger.info("Dispute %s closed after its deadline passed", dispute.id)
        return True
