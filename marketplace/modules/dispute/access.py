"""Who may act on a dispute.

``resolve_capability`` answers "what is this user with respect to this
dispute"; handlers turn the answer into the check they need. Assignment of a
moderator is enforced separately by ``ensure_moderator_can_act``.
"""

from __future__ import annotations

import enum

from marketplace.exceptions import ForbiddenException
from marketplace.models.dispute import Dispute
from marketplace.models.enums import DisputeContext, DisputeParty, MessageAuthorRole
from marketplace.modules.auth.auth import AuthenticatedUser


class Capability(str, enum.Enum):
    BUYER = "buyer"
    SELLER = "seller"
    INFLUENCER = "influencer"
    MODERATOR = "moderator"
    ADMIN = "admin"
    UNAUTHORIZED = "unauthorized"

    @property
    def is_party(self) -> bool:
        return self in PARTY_CAPABILITIES

    @property
    def is_staff(self) -> bool:
        return self in (Capability.MODERATOR, Capability.ADMIN)

    @property
    def party(self) -> DisputeParty | None:
        """The side of the dispute this capability speaks for."""
        if self is Capability.SELLER:
            return DisputeParty.SELLER
        if self in (Capability.BUYER, Capability.INFLUENCER):
            return DisputeParty.BUYER
        return None

    @property
    def author_role(self) -> MessageAuthorRole:
        if self.is_staff:
            return MessageAuthorRole.MODERATOR
        if self is Capability.UNAUTHORIZED:
            raise ValueError("An unauthorized user cannot author dispute messages")
        return MessageAuthorRole(self.value)


PARTY_CAPABILITIES = frozenset({Capability.BUYER, Capability.SELLER, Capability.INFLUENCER})


def buyer_capability(context: DisputeContext) -> Capability:
    """Campaign and application disputes store the influencer as the buyer."""
    return Capability.BUYER if context == DisputeContext.ORDER else Capability.INFLUENCER


def resolve_capability(user: AuthenticatedUser, dispute: Dispute) -> Capability:
    """Return the single capability the user holds on the dispute.

    Being a party wins over a staff role, so a moderator who happens to be
    the seller acts as the seller.
    """
    if dispute.seller_id == user.id:
        return Capability.SELLER
    if dispute.buyer_id == user.id:
        return buyer_capability(dispute.context)
    if user.is_admin:
        return Capability.ADMIN
    if user.is_moderator:
        return Capability.MODERATOR
    return Capability.UNAUTHORIZED


def require_visible(user: AuthenticatedUser, dispute: Dispute) -> Capability:
    """Parties and staff may read a dispute."""
    capability = resolve_capability(user, dispute)
    if capability is Capability.UNAUTHORIZED:
        raise ForbiddenException("You are not a participant in this dispute")
    return capability


def require_party(user: AuthenticatedUser, dispute: Dispute) -> Capability:
    capability = resolve_capability(user, dispute)
    if not capability.is_party:
        raise ForbiddenException("Only the parties of this dispute can perform this action")
    return capability


def ensure_moderator_can_act(user: AuthenticatedUser, dispute: Dispute) -> None:
    """Only staff may moderate; an assigned dispute is reserved to its moderator.

    Admins may always act, unless they are a party of the dispute.
    """
    if not user.is_staff:
        raise ForbiddenException("This action requires a moderator or admin")
    if resolve_capability(user, dispute).is_party:
        raise ForbiddenException("You cannot moderate a dispute you are a party to")
    if user.is_admin:
        return
    if dispute.moderator_assigned_to is not None and dispute.moderator_assigned_to != user.id:
        raise ForbiddenException("This dispute is assigned to another moderator")
