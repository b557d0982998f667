"""Tests for the participant dispute lifecycle (reasons, creation, thread, reads)."""

import uuid
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import ValidationError

from marketplace.config import settings
from marketplace.database.base import utcnow
from marketplace.exceptions import ForbiddenException, NotFoundException, ValidationException
from marketplace.models import (
    Dispute,
    DisputeContext,
    DisputeReason,
    DisputeStatus,
    MessageAuthorRole,
    Order,
    ReasonCategory,
)
from marketplace.modules.dispute import state_machine
from marketplace.modules.dispute.schemas import DisputeCreate
from marketplace.modules.dispute.service import DisputeService
from marketplace.modules.notifications.constants import (
    EVENT_DISPUTE_MESSAGE,
    EVENT_NOTIFICATION_NEW,
)
from marketplace.modules.storage.service import AttachmentUpload
from tests.factories import (
    as_auth,
    count_rows,
    notifications_for,
    open_order_dispute,
    order_payload,
    thread_of,
)


def _upload(name: str = "photo.png", size: int = 16) -> AttachmentUpload:
    return AttachmentUpload(filename=name, content_type="image/png", data=b"x" * size)


# ---------------------------------------------------------------------------
# Reasons
# ---------------------------------------------------------------------------


class TestListReasons:
    @pytest.mark.asyncio
    async def test_falls_back_to_builtin_purchase_reasons(self, db_session):
        reasons = await DisputeService(db_session).list_reasons()
        codes = [r.code for r in reasons]
        assert codes[0] == "no_recibido"
        assert "reembolso" in codes
        assert len(codes) == 6
        assert all(r.category == ReasonCategory.PURCHASES for r in reasons)

    @pytest.mark.asyncio
    async def test_influencer_fallback(self, db_session):
        reasons = await DisputeService(db_session).list_reasons(ReasonCategory.INFLUENCERS)
        assert [r.code for r in reasons][0] == "incumplimiento_campana"

    @pytest.mark.asyncio
    async def test_catalogue_rows_sorted_by_title(self, db_session):
        db_session.add_all([
            DisputeReason(code="zz", title="Zeta", category="compras"),
            DisputeReason(code="aa", title="Alfa", category="compras"),
            DisputeReason(code="old", title="Beta", category="compras", is_active=False),
            DisputeReason(code="inf", title="Influencer only", category="influencers"),
        ])
        await db_session.flush()

        reasons = await DisputeService(db_session).list_reasons(ReasonCategory.PURCHASES)

        assert [r.code for r in reasons] == ["aa", "zz"]


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreateDispute:
    @pytest.mark.asyncio
    async def test_order_dispute_opens_with_deadline(self, db_session, market):
        before = utcnow()
        svc = DisputeService(db_session)
        dispute, created = await svc.create_dispute(order_payload(market), as_auth(market.buyer))

        assert created is True
        assert dispute.status == DisputeStatus.OPEN
        assert dispute.buyer_id == market.buyer.id
        assert dispute.seller_id == market.seller.id
        assert dispute.shop_id == market.shop.id
        assert dispute.reference == "ORD-1001"
        assert dispute.product_name == "Ceramic Mug"
        assert dispute.shop_name == "Sofia's Shop"
        due = state_machine.as_aware(dispute.current_due_at)
        assert before + timedelta(hours=72) <= due <= utcnow() + timedelta(hours=72)

    @pytest.mark.asyncio
    async def test_first_message_is_the_description(self, db_session, market):
        dispute = await open_order_dispute(db_session, market)

        thread = await thread_of(db_session, dispute)
        assert len(thread) == 1
        assert thread[0].author_role == MessageAuthorRole.BUYER
        assert thread[0].author_id == market.buyer.id
        assert thread[0].text == "The package never arrived"

    @pytest.mark.asyncio
    async def test_both_parties_notified(self, db_session, market):
        svc = DisputeService(db_session)
        await svc.create_dispute(order_payload(market), as_auth(market.buyer))

        assert len(await notifications_for(db_session, market.buyer)) == 1
        seller_notes = await notifications_for(db_session, market.seller)
        assert len(seller_notes) == 1
        assert "ORD-1001" in seller_notes[0].message
        assert len([e for e in svc.realtime if e.event == EVENT_NOTIFICATION_NEW]) == 2

    @pytest.mark.asyncio
    async def test_same_subject_returns_existing_dispute(self, db_session, market):
        svc = DisputeService(db_session)
        first, created_first = await svc.create_dispute(order_payload(market), as_auth(market.buyer))
        second, created_second = await svc.create_dispute(
            order_payload(market, descripcion="Still nothing"), as_auth(market.buyer)
        )

        assert created_first is True
        assert created_second is False
        assert second.id == first.id
        assert await count_rows(db_session, Dispute) == 1

    @pytest.mark.asyncio
    async def test_lost_creation_race_returns_winner(self, db_session, market):
        winner = await open_order_dispute(db_session, market)
        svc = DisputeService(db_session)

        with patch.object(svc, "_find_existing", AsyncMock(side_effect=[None, winner])):
            dispute, created = await svc.create_dispute(order_payload(market), as_auth(market.buyer))

        assert created is False
        assert dispute.id == winner.id
        assert await count_rows(db_session, Dispute) == 1

    @pytest.mark.asyncio
    async def test_explicit_product_resolves_seller(self, db_session, market):
        dispute = await open_order_dispute(
            db_session, market, productId=str(market.product.id), productName="Mug (blue)"
        )
        assert dispute.seller_id == market.seller.id
        assert dispute.product_id == market.product.id
        assert dispute.product_name == "Mug (blue)"

    @pytest.mark.asyncio
    async def test_campaign_dispute_by_influencer(self, db_session, market):
        data = DisputeCreate.model_validate({
            "context": "campaign",
            "campaignId": str(market.campaign.id),
            "motivoClave": "comision_no_liquidada",
            "descripcion": "Commission was never paid",
        })
        dispute, created = await DisputeService(db_session).create_dispute(
            data, as_auth(market.influencer)
        )

        assert created is True
        assert dispute.buyer_id == market.influencer.id
        assert dispute.seller_id == market.seller.id
        assert dispute.reference == f"CAM-{str(market.campaign.id)[-6:]}"
        assert dispute.product_name == "Summer Launch"
        thread = await thread_of(db_session, dispute)
        assert thread[0].author_role == MessageAuthorRole.INFLUENCER

    @pytest.mark.asyncio
    async def test_application_dispute_resolves_through_campaign(self, db_session, market):
        data = DisputeCreate(
            context=DisputeContext.APPLICATION,
            application_id=market.application.id,
            reason_code="rechazo_injustificado",
            description="Rejected without reason",
        )
        dispute, _ = await DisputeService(db_session).create_dispute(
            data, as_auth(market.influencer)
        )

        assert dispute.application_id == market.application.id
        assert dispute.campaign_id is None
        assert dispute.seller_id == market.seller.id
        assert dispute.reference == f"APP-{str(market.application.id)[-6:]}"

    @pytest.mark.asyncio
    async def test_shop_owner_opening_authors_as_seller(self, db_session, market):
        svc = DisputeService(db_session)
        dispute, _ = await svc.create_dispute(order_payload(market), as_auth(market.seller))

        thread = await thread_of(db_session, dispute)
        assert thread[0].author_role == MessageAuthorRole.SELLER
        # buyer and seller are the same user; notified once
        assert len(await notifications_for(db_session, market.seller)) == 1

    @pytest.mark.asyncio
    async def test_unknown_order_is_not_found(self, db_session, market):
        with pytest.raises(NotFoundException):
            await open_order_dispute(db_session, market, orderId=str(uuid.uuid4()))

    @pytest.mark.asyncio
    async def test_unresolvable_seller_is_rejected(self, db_session, market):
        empty = Order(reference="ORD-EMPTY", buyer_id=market.buyer.id, items=[])
        db_session.add(empty)
        await db_session.flush()

        with pytest.raises(ValidationException):
            await open_order_dispute(db_session, market, orderId=str(empty.id))
        assert await count_rows(db_session, Dispute) == 0

    def test_subject_id_required_for_context(self):
        with pytest.raises(ValidationError):
            DisputeCreate.model_validate({
                "context": "campaign",
                "motivoClave": "x",
                "descripcion": "y",
            })

    def test_blank_description_rejected(self):
        with pytest.raises(ValidationError):
            DisputeCreate.model_validate({
                "orderId": str(uuid.uuid4()),
                "motivoClave": "no_recibido",
                "descripcion": "   ",
            })

    @pytest.mark.asyncio
    async def test_parties_and_reason_are_immutable(self, db_session, market):
        dispute = await open_order_dispute(db_session, market)

        with pytest.raises(ValueError):
            dispute.seller_id = uuid.uuid4()
        with pytest.raises(ValueError):
            dispute.reason_code = "reembolso"
        assert dispute.seller_id == market.seller.id


# ---------------------------------------------------------------------------
# Thread
# ---------------------------------------------------------------------------


class TestAddMessage:
    @pytest.mark.asyncio
    async def test_buyer_message_notifies_seller_and_resets_deadline(
        self, db_session, market, file_storage
    ):
        dispute = await open_order_dispute(db_session, market)
        dispute.current_due_at = utcnow() + timedelta(hours=1)
        await db_session.flush()
        svc = DisputeService(db_session)

        message = await svc.add_message(
            dispute.id, as_auth(market.buyer), "  Any news?  ", [], file_storage
        )

        assert message.text == "Any news?"
        assert message.author_role == MessageAuthorRole.BUYER
        assert state_machine.as_aware(dispute.current_due_at) > utcnow() + timedelta(hours=71)
        seller_notes = await notifications_for(db_session, market.seller)
        assert seller_notes[-1].data["message_id"] == str(message.id)
        events = [e for e in svc.realtime if e.event == EVENT_DISPUTE_MESSAGE]
        assert {e.room for e in events} == {
            f"user:{market.buyer.id}",
            f"user:{market.seller.id}",
        }

    @pytest.mark.asyncio
    async def test_only_first_three_files_are_kept(
        self, db_session, market, file_storage, s3_client
    ):
        dispute = await open_order_dispute(db_session, market)
        files = [_upload(f"f{i}.png") for i in range(5)]

        message = await DisputeService(db_session).add_message(
            dispute.id, as_auth(market.seller), "", files, file_storage
        )

        assert [a["original_name"] for a in message.attachments] == ["f0.png", "f1.png", "f2.png"]
        assert s3_client.put_object.call_count == 3
        key = s3_client.put_object.call_args.kwargs["Key"]
        assert key.startswith("disputes/")
        assert message.attachments[0]["url"].startswith("https://test-bucket.s3.")

    @pytest.mark.asyncio
    async def test_oversized_file_rejected_before_upload(
        self, db_session, market, file_storage, s3_client, monkeypatch
    ):
        monkeypatch.setattr(settings, "dispute_max_attachment_bytes", 10)
        dispute = await open_order_dispute(db_session, market)

        with pytest.raises(ValidationException):
            await DisputeService(db_session).add_message(
                dispute.id, as_auth(market.buyer), "see file", [_upload(size=11)], file_storage
            )
        s3_client.put_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, db_session, market, file_storage):
        dispute = await open_order_dispute(db_session, market)
        with pytest.raises(ValidationException):
            await DisputeService(db_session).add_message(
                dispute.id, as_auth(market.buyer), "   ", [], file_storage
            )

    @pytest.mark.asyncio
    async def test_outsider_forbidden(self, db_session, market, file_storage):
        dispute = await open_order_dispute(db_session, market)
        with pytest.raises(ForbiddenException):
            await DisputeService(db_session).add_message(
                dispute.id, as_auth(market.outsider), "hello", [], file_storage
            )

    @pytest.mark.asyncio
    async def test_moderator_message_notifies_both_parties(self, db_session, market, file_storage):
        dispute = await open_order_dispute(db_session, market)

        message = await DisputeService(db_session).add_message(
            dispute.id, as_auth(market.moderator), "Reviewing", [], file_storage
        )

        assert message.author_role == MessageAuthorRole.MODERATOR
        assert len(await notifications_for(db_session, market.buyer)) == 2
        assert len(await notifications_for(db_session, market.seller)) == 2

    @pytest.mark.asyncio
    async def test_moderator_blocked_when_assigned_to_someone_else(
        self, db_session, market, file_storage
    ):
        dispute = await open_order_dispute(db_session, market)
        dispute.moderator_assigned_to = market.other_moderator.id
        await db_session.flush()

        with pytest.raises(ForbiddenException):
            await DisputeService(db_session).add_message(
                dispute.id, as_auth(market.moderator), "Reviewing", [], file_storage
            )

    @pytest.mark.asyncio
    async def test_message_on_terminal_dispute_keeps_no_deadline(
        self, db_session, market, file_storage
    ):
        dispute = await open_order_dispute(db_session, market)
        state_machine.set_status(dispute, DisputeStatus.RESOLVED)
        await db_session.flush()

        await DisputeService(db_session).add_message(
            dispute.id, as_auth(market.buyer), "Thanks", [], file_storage
        )

        assert dispute.status == DisputeStatus.RESOLVED
        assert dispute.current_due_at is None
        assert len(await thread_of(db_session, dispute)) == 2


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


class TestReads:
    @pytest.mark.asyncio
    async def test_detail_includes_thread_and_displays(self, db_session, market):
        dispute = await open_order_dispute(db_session, market)

        detail = await DisputeService(db_session).get_detail(dispute.id, as_auth(market.seller))

        assert detail.id == dispute.id
        assert len(detail.messages) == 1
        assert detail.buyer_display.name == "Bruno Buyer"
        assert detail.seller_display.email == market.seller.email
        assert detail.moderator_display is None
        assert detail.shop_display.name == "Sofia's Shop"
        assert detail.product_display.name == "Ceramic Mug"
        assert detail.product_display.image_url == "https://cdn.test/mug.png"
        assert detail.campaign_display is None

    @pytest.mark.asyncio
    async def test_detail_visible_to_moderator(self, db_session, market):
        dispute = await open_order_dispute(db_session, market)
        detail = await DisputeService(db_session).get_detail(dispute.id, as_auth(market.moderator))
        assert detail.status == DisputeStatus.OPEN

    @pytest.mark.asyncio
    async def test_detail_forbidden_for_outsider(self, db_session, market):
        dispute = await open_order_dispute(db_session, market)
        with pytest.raises(ForbiddenException):
            await DisputeService(db_session).get_detail(dispute.id, as_auth(market.outsider))

    @pytest.mark.asyncio
    async def test_missing_dispute_is_not_found(self, db_session, market):
        with pytest.raises(NotFoundException):
            await DisputeService(db_session).get_detail(uuid.uuid4(), as_auth(market.buyer))

    @pytest.mark.asyncio
    async def test_list_only_includes_own_disputes(self, db_session, market):
        await open_order_dispute(db_session, market)
        svc = DisputeService(db_session)

        buyer_items, buyer_total = await svc.list_my_disputes(market.buyer.id)
        seller_items, _ = await svc.list_my_disputes(market.seller.id)
        outsider_items, outsider_total = await svc.list_my_disputes(market.outsider.id)

        assert buyer_total == 1
        assert seller_items[0].id == buyer_items[0].id
        assert outsider_items == []
        assert outsider_total == 0

    @pytest.mark.asyncio
    async def test_list_filters_by_status_and_order(self, db_session, market):
        await open_order_dispute(db_session, market)
        svc = DisputeService(db_session)

        _, open_total = await svc.list_my_disputes(market.buyer.id, status=DisputeStatus.OPEN)
        _, resolved_total = await svc.list_my_disputes(
            market.buyer.id, status=DisputeStatus.RESOLVED
        )
        _, order_total = await svc.list_my_disputes(market.buyer.id, order_id=market.order.id)

        assert (open_total, resolved_total, order_total) == (1, 0, 1)
