"""Dispute terminal states, reason catalogue fallbacks, audit actions and texts."""

from __future__ import annotations

from marketplace.models.enums import DisputeStatus, ReasonCategory

# Terminal statuses carry no deadline and accept no moderation actions
TERMINAL_STATUSES: frozenset[DisputeStatus] = frozenset({
    DisputeStatus.RESOLVED,
    DisputeStatus.CLOSED_EXPIRED,
    DisputeStatus.REJECTED,
})

# Used when the reason catalogue table has no active rows for a category
FALLBACK_REASONS: dict[ReasonCategory, list[tuple[str, str]]] = {
    ReasonCategory.PURCHASES: [
        ("no_recibido", "No recibido"),
        ("incompleto", "Incompleto"),
        ("danado_defectuoso", "Dañado/defectuoso"),
        ("no_coincide", "No coincide con descripción"),
        ("retracto", "Retracto/Devolución"),
        ("reembolso", "Reembolso"),
    ],
    ReasonCategory.INFLUENCERS: [
        ("incumplimiento_campana", "Incumplimiento de campaña"),
        ("rechazo_injustificado", "Rechazo injustificado"),
        ("comision_no_liquidada", "Comisión no liquidada"),
        ("uso_no_autorizado", "Uso no autorizado del contenido"),
    ],
}

# Closure types
CLOSURE_PROPOSAL_ACCEPTED = "proposal_accepted"
CLOSURE_SLA_EXPIRED = "sla_expired"

# Audit actions
AUDIT_ENTITY_DISPUTE = "dispute"
AUDIT_STATUS_UPDATE = "dispute.status.update"
AUDIT_MODERATOR_UPDATE = "dispute.moderator.update"
AUDIT_ESCALATE = "dispute.escalate"

# Attachments
ATTACHMENT_FOLDER = "disputes"

# Reference prefixes for non-order disputes
CAMPAIGN_REF_PREFIX = "CAM"
APPLICATION_REF_PREFIX = "APP"

# Default thread texts
TEXT_REQUEST_INFO = "We need additional information to continue the review."
TEXT_PROPOSAL = "Resolution proposal issued by moderation."
TEXT_PROPOSAL_ACCEPTED = "{party} accepted the proposal."
TEXT_PROPOSAL_REJECTED = "{party} rejected the proposal."
TEXT_PROPOSAL_RESOLVED = "Both parties accepted the proposal. The dispute is resolved."
TEXT_MEDIATION = "Mediation was requested. A moderator will review the dispute."
TEXT_ESCALATED = "The dispute was escalated: {reason}"
TEXT_STATUS_CHANGED = "Status changed to {status}."
TEXT_SLA_EXPIRED = "The dispute was closed because the response deadline passed."

# Notification titles
TITLE_CREATED = "New dispute opened"
TITLE_MESSAGE = "New message in dispute"
TITLE_REQUEST_INFO = "Information requested"
TITLE_PROPOSAL = "Resolution proposal"
TITLE_DECISION = "Proposal decision"
TITLE_MEDIATION = "Mediation requested"
TITLE_UPDATED = "Dispute updated"
TITLE_ESCALATED = "Dispute escalated"
TITLE_ASSIGNED = "Dispute assigned to you"
TITLE_EXPIRED = "Dispute closed"
