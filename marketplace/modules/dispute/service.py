"""Participant dispute lifecycle: reasons, creation, thread and reads.

Also hosts the persistence and fan-out helpers shared with the moderation
handlers.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from marketplace.config import settings
from marketplace.exceptions import (
    ConflictException,
    NotFoundException,
    ValidationException,
)
from marketplace.models.campaign import Campaign
from marketplace.models.campaign_application import CampaignApplication
from marketplace.models.dispute import Dispute
from marketplace.models.dispute_message import DisputeMessage
from marketplace.models.dispute_reason import DisputeReason
from marketplace.models.enums import (
    DisputeContext,
    DisputeStatus,
    MessageAuthorRole,
    ReasonCategory,
)
from marketplace.models.order import Order
from marketplace.models.product import Product
from marketplace.models.shop import Shop
from marketplace.modules.auth.auth import AuthenticatedUser
from marketplace.modules.audit.service import AuditService
from marketplace.modules.dispute import state_machine
from marketplace.modules.dispute.access import (
    Capability,
    buyer_capability,
    ensure_moderator_can_act,
    require_visible,
)
from marketplace.modules.dispute.constants import (
    APPLICATION_REF_PREFIX,
    ATTACHMENT_FOLDER,
    CAMPAIGN_REF_PREFIX,
    FALLBACK_REASONS,
    TITLE_CREATED,
    TITLE_MESSAGE,
)
from marketplace.modules.dispute.display import DisplayResolver
from marketplace.modules.dispute.schemas import (
    DisputeCreate,
    DisputeDetailResponse,
    DisputeMessageResponse,
    DisputeResponse,
    ReasonResponse,
)
from marketplace.modules.notifications.constants import (
    EVENT_DISPUTE_MESSAGE,
    EVENT_DISPUTE_UPDATED,
    NOTIFICATION_TYPE_DISPUTE,
)
from marketplace.modules.notifications.realtime import RealtimeBatch
from marketplace.modules.notifications.service import NotificationService
from marketplace.modules.storage.service import AttachmentUpload, S3FileStorage

logger = logging.getLogger(__name__)


class DisputeService:
    def __init__(self, db: AsyncSession, realtime: RealtimeBatch | None = None):
        self.db = db
        self.realtime = realtime if realtime is not None else RealtimeBatch()
        self.notifications = NotificationService(db, self.realtime)
        self.audit = AuditService(db)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    async def get_dispute(self, dispute_id: uuid.UUID) -> Dispute:
        dispute = await self.db.get(Dispute, dispute_id)
        if dispute is None:
            raise NotFoundException(f"Dispute {dispute_id} not found")
        return dispute

    async def save(self, dispute: Dispute) -> Dispute:
        """Flush pending changes; a concurrent update of the same row is a 409."""
        try:
            await self.db.flush()
        except StaleDataError as exc:
            logger.warning("Concurrent update detected on dispute %s", dispute.id)
            raise ConflictException(
                "The dispute was modified by someone else; reload and try again"
            ) from exc
        return dispute

    async def append_message(
        self,
        dispute: Dispute,
        author_role: MessageAuthorRole,
        text: str,
        author_id: uuid.UUID | None = None,
        attachments: list[dict] | None = None,
    ) -> DisputeMessage:
        message = DisputeMessage(
            dispute_id=dispute.id,
            author_role=author_role,
            author_id=author_id,
            text=text,
            attachments=attachments or [],
        )
        self.db.add(message)
        await self.db.flush()
        return message

    def notification_data(self, dispute: Dispute, role: str | None = None, **extra) -> dict:
        data = {
            "dispute_id": dispute.id,
            "context": dispute.context.value,
            "order_id": dispute.order_id,
            "campaign_id": dispute.campaign_id,
            "application_id": dispute.application_id,
            "reference": dispute.reference,
            "product_id": dispute.product_id,
            "product_name": dispute.product_name,
            "shop_name": dispute.shop_name,
            "status": dispute.status.value,
        }
        if role is not None:
            data["role"] = role
        data.update(extra)
        return data

    def broadcast_update(self, dispute: Dispute, message: DisputeMessage | None = None) -> None:
        payload = {
            "dispute_id": str(dispute.id),
            "dispute": DisputeResponse.model_validate(dispute).model_dump(mode="json"),
            "message": (
                DisputeMessageResponse.model_validate(message).model_dump(mode="json")
                if message is not None
                else None
            ),
        }
        self.realtime.to_users([dispute.buyer_id, dispute.seller_id], EVENT_DISPUTE_UPDATED, payload)

    def broadcast_message(self, dispute: Dispute, message: DisputeMessage) -> None:
        payload = {
            "dispute_id": str(dispute.id),
            "message": DisputeMessageResponse.model_validate(message).model_dump(mode="json"),
        }
        self.realtime.to_users([dispute.buyer_id, dispute.seller_id], EVENT_DISPUTE_MESSAGE, payload)

    # ------------------------------------------------------------------
    # Reasons
    # ------------------------------------------------------------------

    async def list_reasons(
        self, category: ReasonCategory = ReasonCategory.PURCHASES
    ) -> list[ReasonResponse]:
        result = await self.db.execute(
            select(DisputeReason)
            .where(DisputeReason.category == category.value, DisputeReason.is_active.is_(True))
            .order_by(DisputeReason.title)
        )
        rows = result.scalars().all()
        if rows:
            return [ReasonResponse(code=r.code, title=r.title, category=category) for r in rows]
        return [
            ReasonResponse(code=code, title=title, category=category)
            for code, title in FALLBACK_REASONS[category]
        ]

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def _shop_of_product(self, product_id: uuid.UUID | str | None) -> Shop | None:
        if not product_id:
            return None
        try:
            product_id = uuid.UUID(str(product_id))
        except ValueError:
            return None
        product = await self.db.get(Product, product_id)
        if product is None:
            return None
        return await self.db.get(Shop, product.shop_id)

    async def _resolve_order_subject(self, data: DisputeCreate) -> dict:
        order = await self.db.get(Order, data.order_id)
        if order is None:
            raise NotFoundException(f"Order {data.order_id} not found")

        shop = await self._shop_of_product(data.product_id)
        item = order.find_item(product_name=data.product_name)
        if shop is None and item is not None:
            shop = await self._shop_of_product(item.get("product_id"))

        first_item = order.items[0] if order.items else None
        return {
            "shop": shop,
            "reference": data.reference or order.reference or str(order.id),
            "product_name": data.product_name
            or (first_item.get("product_name") if first_item else None)
            or "Product",
        }

    async def _resolve_campaign_subject(self, campaign: Campaign, data: DisputeCreate, reference: str) -> dict:
        shop = await self.db.get(Shop, campaign.shop_id)
        return {
            "shop": shop,
            "reference": data.reference or reference,
            "product_name": data.product_name or data.campaign_name or campaign.name or "Campaign",
        }

    async def _resolve_subject(self, data: DisputeCreate) -> dict:
        if data.context == DisputeContext.ORDER:
            return await self._resolve_order_subject(data)

        if data.context == DisputeContext.CAMPAIGN:
            campaign = await self.db.get(Campaign, data.campaign_id)
            if campaign is None:
                raise NotFoundException(f"Campaign {data.campaign_id} not found")
            reference = f"{CAMPAIGN_REF_PREFIX}-{str(data.campaign_id)[-6:]}"
            return await self._resolve_campaign_subject(campaign, data, reference)

        application = await self.db.get(CampaignApplication, data.application_id)
        if application is None:
            raise NotFoundException(f"Campaign application {data.application_id} not found")
        campaign = await self.db.get(Campaign, application.campaign_id)
        if campaign is None:
            raise NotFoundException(f"Campaign {application.campaign_id} not found")
        reference = f"{APPLICATION_REF_PREFIX}-{str(data.application_id)[-6:]}"
        return await self._resolve_campaign_subject(campaign, data, reference)

    async def _find_existing(
        self,
        context: DisputeContext,
        buyer_id: uuid.UUID,
        seller_id: uuid.UUID,
        subject_ref: str,
    ) -> Dispute | None:
        result = await self.db.execute(
            select(Dispute).where(
                Dispute.context == context,
                Dispute.buyer_id == buyer_id,
                Dispute.seller_id == seller_id,
                Dispute.subject_ref == subject_ref,
            )
        )
        return result.scalar_one_or_none()

    async def create_dispute(
        self, data: DisputeCreate, user: AuthenticatedUser
    ) -> tuple[Dispute, bool]:
        """Open a dispute, or return the one already open for the same subject.

        Returns ``(dispute, created)``.
        """
        subject = await self._resolve_subject(data)
        shop: Shop | None = subject["shop"]
        if shop is None:
            raise ValidationException(
                "Could not determine the seller for this dispute",
                details=[{"field": "context", "message": data.context.value}],
            )

        subject_ref = str(data.subject_id)
        existing = await self._find_existing(data.context, user.id, shop.owner_id, subject_ref)
        if existing is not None:
            return existing, False

        dispute = Dispute(
            context=data.context,
            order_id=data.order_id if data.context == DisputeContext.ORDER else None,
            campaign_id=data.campaign_id if data.context == DisputeContext.CAMPAIGN else None,
            application_id=(
                data.application_id if data.context == DisputeContext.APPLICATION else None
            ),
            subject_ref=subject_ref,
            reference=subject["reference"],
            product_id=data.product_id,
            product_name=subject["product_name"],
            shop_id=shop.id,
            shop_name=data.shop_name or shop.name,
            buyer_id=user.id,
            seller_id=shop.owner_id,
            reason_code=data.reason_code,
            initial_description=data.description.strip(),
            sla_hours=settings.dispute_default_sla_hours,
        )
        state_machine.set_status(dispute, DisputeStatus.OPEN)
        try:
            async with self.db.begin_nested():
                self.db.add(dispute)
        except IntegrityError:
            # Lost a creation race for the same subject
            existing = await self._find_existing(
                data.context, user.id, shop.owner_id, subject_ref
            )
            if existing is None:
                raise
            return existing, False

        author_role = (
            MessageAuthorRole.SELLER
            if dispute.seller_id == user.id
            else buyer_capability(dispute.context).author_role
        )
        await self.append_message(dispute, author_role, dispute.initial_description, user.id)

        is_order = dispute.context == DisputeContext.ORDER
        await self.notifications.emit_and_persist(
            dispute.buyer_id,
            NOTIFICATION_TYPE_DISPUTE,
            TITLE_CREATED,
            (
                f"You opened a dispute for purchase #{dispute.reference}"
                if is_order
                else f"You opened a dispute about {dispute.product_name}"
            ),
            entity=dispute.id,
            data=self.notification_data(dispute, role=author_role.value),
        )
        if dispute.seller_id != dispute.buyer_id:
            await self.notifications.emit_and_persist(
                dispute.seller_id,
                NOTIFICATION_TYPE_DISPUTE,
                TITLE_CREATED,
                (
                    f"A dispute was opened for {dispute.product_name} (#{dispute.reference})"
                    if is_order
                    else f"A campaign dispute was opened: {dispute.product_name}"
                ),
                entity=dispute.id,
                data=self.notification_data(dispute, role="seller"),
            )

        logger.info(
            "Created %s dispute %s (buyer=%s seller=%s)",
            dispute.context.value,
            dispute.id,
            dispute.buyer_id,
            dispute.seller_id,
        )
        return dispute, True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_my_disputes(
        self,
        user_id: uuid.UUID,
        context: DisputeContext | None = None,
        status: DisputeStatus | None = None,
        order_id: uuid.UUID | None = None,
        campaign_id: uuid.UUID | None = None,
        application_id: uuid.UUID | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Dispute], int]:
        """Disputes where the user is either party, newest first."""
        conditions = [or_(Dispute.buyer_id == user_id, Dispute.seller_id == user_id)]
        if context is not None:
            conditions.append(Dispute.context == context)
        if status is not None:
            conditions.append(Dispute.status == status)
        if order_id is not None:
            conditions.append(Dispute.order_id == order_id)
        if campaign_id is not None:
            conditions.append(Dispute.campaign_id == campaign_id)
        if application_id is not None:
            conditions.append(Dispute.application_id == application_id)

        count_query = select(func.count()).select_from(Dispute).where(*conditions)
        total = (await self.db.execute(count_query)).scalar() or 0

        query = (
            select(Dispute)
            .where(*conditions)
            .order_by(Dispute.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def list_messages(self, dispute_id: uuid.UUID) -> list[DisputeMessage]:
        result = await self.db.execute(
            select(DisputeMessage)
            .where(DisputeMessage.dispute_id == dispute_id)
            .order_by(DisputeMessage.created_at)
        )
        return list(result.scalars().all())

    async def get_detail(
        self, dispute_id: uuid.UUID, user: AuthenticatedUser
    ) -> DisputeDetailResponse:
        dispute = await self.get_dispute(dispute_id)
        require_visible(user, dispute)
        messages = await self.list_messages(dispute.id)
        displays = await DisplayResolver(self.db).for_detail(dispute)
        return DisputeDetailResponse(
            **DisputeResponse.model_validate(dispute).model_dump(),
            messages=[DisputeMessageResponse.model_validate(m) for m in messages],
            **displays,
        )

    # ------------------------------------------------------------------
    # Thread
    # ------------------------------------------------------------------

    async def _store_attachments(
        self, files: list[AttachmentUpload], storage: S3FileStorage
    ) -> list[dict]:
        attachments = []
        for upload in files[: settings.dispute_max_attachments]:
            if upload.size > settings.dispute_max_attachment_bytes:
                raise ValidationException(
                    f"File {upload.filename} exceeds the "
                    f"{settings.dispute_max_attachment_bytes // (1024 * 1024)} MB limit",
                    details=[{"field": "files", "message": upload.filename}],
                )
        for upload in files[: settings.dispute_max_attachments]:
            url = await storage.upload(upload.data, ATTACHMENT_FOLDER, upload.content_type)
            attachments.append({
                "original_name": upload.filename,
                "mime_type": upload.content_type,
                "size": upload.size,
                "url": url,
            })
        return attachments

    async def add_message(
        self,
        dispute_id: uuid.UUID,
        user: AuthenticatedUser,
        text: str,
        files: list[AttachmentUpload],
        storage: S3FileStorage,
    ) -> DisputeMessage:
        """Append to the thread and restart the SLA clock of an active dispute."""
        dispute = await self.get_dispute(dispute_id)
        capability = require_visible(user, dispute)
        if capability.is_staff:
            ensure_moderator_can_act(user, dispute)

        text = (text or "").strip()
        if not text and not files:
            raise ValidationException("A message needs text or at least one file")

        attachments = await self._store_attachments(files, storage)
        message = await self.append_message(
            dispute, capability.author_role, text, user.id, attachments
        )
        state_machine.touch_deadline(dispute)
        await self.save(dispute)

        if capability.is_staff:
            recipients = [dispute.buyer_id, dispute.seller_id]
        elif capability is Capability.SELLER:
            recipients = [dispute.buyer_id]
        else:
            recipients = [dispute.seller_id]
        await self.notifications.emit_and_persist(
            recipients,
            NOTIFICATION_TYPE_DISPUTE,
            TITLE_MESSAGE,
            "You have a new message",
            entity=dispute.id,
            data=self.notification_data(dispute, message_id=message.id),
        )
        self.broadcast_message(dispute, message)

        logger.info(
            "Message %s added to dispute %s by %s", message.id, dispute.id, capability.value
        )
        return message

    async def ensure_can_moderate(self, dispute_id: uuid.UUID, user: AuthenticatedUser) -> Dispute:
        dispute = await self.get_dispute(dispute_id)
        ensure_moderator_can_act(user, dispute)
        return dispute
