import enum


class UserRole(str, enum.Enum):
    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


# ── Disputes ────────────────────────────────────────────────────────────────


class DisputeContext(str, enum.Enum):
    ORDER = "order"
    CAMPAIGN = "campaign"
    APPLICATION = "application"


class DisputeStatus(str, enum.Enum):
    OPEN = "open"
    IN_REVIEW = "in_review"
    AWAITING_PARTY_A = "awaiting_party_a"
    AWAITING_PARTY_B = "awaiting_party_b"
    PROPOSAL = "proposal"
    RESOLVED = "resolved"
    CLOSED_EXPIRED = "closed_expired"
    REJECTED = "rejected"
    ESCALATED = "escalated"


class ProposalPartyStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class ProposalDecision(str, enum.Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class DisputeParty(str, enum.Enum):
    """The two sides of a dispute; party A is the buyer, party B the seller."""

    BUYER = "buyer"
    SELLER = "seller"


class MessageAuthorRole(str, enum.Enum):
    BUYER = "buyer"
    SELLER = "seller"
    INFLUENCER = "influencer"
    MODERATOR = "moderator"
    SYSTEM = "system"


class ReasonCategory(str, enum.Enum):
    PURCHASES = "compras"
    INFLUENCERS = "influencers"
