"""Tests for the admin dispute listing and its derived deadline filters."""

from datetime import timedelta

import pytest

from marketplace.database.base import utcnow
from marketplace.exceptions import ValidationException
from marketplace.models import DisputeContext, DisputeStatus, Order
from marketplace.modules.dispute import state_machine
from marketplace.modules.dispute.query_service import UNASSIGNED, DisputeQueryService
from tests.factories import open_order_dispute


async def _second_order(db, market, reference: str = "ORD-2002") -> Order:
    order = Order(reference=reference, buyer_id=market.buyer.id, items=market.order.items)
    db.add(order)
    await db.flush()
    return order


class TestListAdmin:
    @pytest.mark.asyncio
    async def test_items_carry_user_displays(self, db_session, market):
        dispute = await open_order_dispute(db_session, market)
        dispute.moderator_assigned_to = market.moderator.id
        await db_session.flush()

        items, total = await DisputeQueryService(db_session).list_admin()

        assert total == 1
        [item] = items
        assert item.buyer_display.name == "Bruno Buyer"
        assert item.seller_display.name == "Sofia Seller"
        assert item.moderator_display.id == market.moderator.id
        assert item.is_overdue is False
        assert item.is_due_soon is False

    @pytest.mark.asyncio
    async def test_reference_substring_filter(self, db_session, market):
        await open_order_dispute(db_session, market)
        other = await _second_order(db_session, market)
        await open_order_dispute(db_session, market, orderId=str(other.id))
        svc = DisputeQueryService(db_session)

        items, total = await svc.list_admin(reference="2002")

        assert total == 1
        assert items[0].reference == "ORD-2002"
        assert (await svc.list_admin(reference="ORD-"))[1] == 2

    @pytest.mark.asyncio
    async def test_email_filters_match_prefix_case_insensitively(self, db_session, market):
        await open_order_dispute(db_session, market)
        svc = DisputeQueryService(db_session)

        _, by_buyer = await svc.list_admin(buyer_email="BRUNO")
        _, by_seller = await svc.list_admin(seller_email="sofia.s")
        _, not_prefix = await svc.list_admin(buyer_email="buyer@")
        _, wrong_side = await svc.list_admin(seller_email="bruno")

        assert (by_buyer, by_seller, not_prefix, wrong_side) == (1, 1, 0, 0)

    @pytest.mark.asyncio
    async def test_email_prefix_wildcards_are_literal(self, db_session, market):
        await open_order_dispute(db_session, market)

        _, total = await DisputeQueryService(db_session).list_admin(buyer_email="%")

        assert total == 0

    @pytest.mark.asyncio
    async def test_moderator_filter(self, db_session, market):
        assigned = await open_order_dispute(db_session, market)
        other = await _second_order(db_session, market)
        await open_order_dispute(db_session, market, orderId=str(other.id))
        assigned.moderator_assigned_to = market.moderator.id
        await db_session.flush()
        svc = DisputeQueryService(db_session)

        mine, mine_total = await svc.list_admin(moderator=str(market.moderator.id))
        _, unassigned_total = await svc.list_admin(moderator=UNASSIGNED)

        assert mine_total == 1
        assert mine[0].id == assigned.id
        assert unassigned_total == 1

    @pytest.mark.asyncio
    async def test_invalid_moderator_filter(self, db_session, market):
        with pytest.raises(ValidationException):
            await DisputeQueryService(db_session).list_admin(moderator="someone")

    @pytest.mark.asyncio
    async def test_status_context_and_reason_filters(self, db_session, market):
        dispute = await open_order_dispute(db_session, market)
        svc = DisputeQueryService(db_session)

        assert (await svc.list_admin(status=DisputeStatus.OPEN))[1] == 1
        assert (await svc.list_admin(status=DisputeStatus.ESCALATED))[1] == 0
        assert (await svc.list_admin(context=DisputeContext.CAMPAIGN))[1] == 0
        assert (await svc.list_admin(reason_code=dispute.reason_code))[1] == 1
        assert (await svc.list_admin(reason_code="reembolso"))[1] == 0

    @pytest.mark.asyncio
    async def test_created_range(self, db_session, market):
        await open_order_dispute(db_session, market)
        now = utcnow()
        svc = DisputeQueryService(db_session)

        assert (await svc.list_admin(created_from=now - timedelta(hours=1)))[1] == 1
        assert (await svc.list_admin(created_from=now + timedelta(hours=1)))[1] == 0
        assert (await svc.list_admin(created_to=now - timedelta(hours=1)))[1] == 0

    @pytest.mark.asyncio
    async def test_deadline_filters_evaluated_at_query_time(self, db_session, market):
        now = utcnow()
        soon = await open_order_dispute(db_session, market)
        soon.current_due_at = now + timedelta(hours=3)

        late_order = await _second_order(db_session, market)
        late = await open_order_dispute(db_session, market, orderId=str(late_order.id))
        late.current_due_at = now - timedelta(hours=3)

        closed_order = await _second_order(db_session, market, "ORD-3003")
        closed = await open_order_dispute(db_session, market, orderId=str(closed_order.id))
        state_machine.set_status(closed, DisputeStatus.RESOLVED)
        await db_session.flush()
        svc = DisputeQueryService(db_session)

        due_soon, due_soon_total = await svc.list_admin(due_within_24h=True, now=now)
        overdue, overdue_total = await svc.list_admin(overdue=True, now=now)
        everything, _ = await svc.list_admin(now=now)

        assert due_soon_total == 1
        assert due_soon[0].id == soon.id
        assert due_soon[0].is_due_soon is True
        assert overdue_total == 1
        assert overdue[0].id == late.id
        assert overdue[0].is_overdue is True
        flags = {item.id: (item.is_overdue, item.is_due_soon) for item in everything}
        assert flags[closed.id] == (False, False)

    @pytest.mark.asyncio
    async def test_pagination_newest_first(self, db_session, market):
        first = await open_order_dispute(db_session, market)
        other = await _second_order(db_session, market)
        second = await open_order_dispute(db_session, market, orderId=str(other.id))
        svc = DisputeQueryService(db_session)

        page_one, total = await svc.list_admin(page=1, limit=1)
        page_two, _ = await svc.list_admin(page=2, limit=1)

        assert total == 2
        assert page_one[0].id == second.id
        assert page_two[0].id == first.id
