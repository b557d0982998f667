"""Denormalized display objects for dispute views.

User displays for any number of disputes come from a single query so list
endpoints do not fan out per row.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.models.campaign import Campaign
from marketplace.models.campaign_application import CampaignApplication
from marketplace.models.dispute import Dispute
from marketplace.models.order import Order
from marketplace.models.product import Product
from marketplace.models.shop import Shop
from marketplace.models.user import User
from marketplace.modules.dispute.schemas import (
    CampaignDisplay,
    ProductDisplay,
    ShopDisplay,
    UserDisplay,
)


def user_display(user: User) -> UserDisplay:
    return UserDisplay(
        id=user.id, name=user.display_name, email=user.email, avatar_url=user.avatar_url
    )


class DisplayResolver:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def users(self, user_ids: Iterable[uuid.UUID | None]) -> dict[uuid.UUID, UserDisplay]:
        ids = {user_id for user_id in user_ids if user_id is not None}
        if not ids:
            return {}
        result = await self.db.execute(select(User).where(User.id.in_(list(ids))))
        return {user.id: user_display(user) for user in result.scalars().all()}

    async def users_for(self, disputes: Iterable[Dispute]) -> dict[uuid.UUID, UserDisplay]:
        ids: list[uuid.UUID | None] = []
        for dispute in disputes:
            ids.extend((dispute.buyer_id, dispute.seller_id, dispute.moderator_assigned_to))
        return await self.users(ids)

    async def shop(self, dispute: Dispute) -> ShopDisplay | None:
        if dispute.shop_id is not None:
            shop = await self.db.get(Shop, dispute.shop_id)
            if shop is not None:
                return ShopDisplay(id=shop.id, name=shop.name, image_url=shop.image_url)
        if dispute.shop_name:
            return ShopDisplay(id=dispute.shop_id, name=dispute.shop_name)
        return None

    async def product(self, dispute: Dispute) -> ProductDisplay | None:
        """Catalogue product first, then the order line item snapshot."""
        if dispute.product_id is not None:
            product = await self.db.get(Product, dispute.product_id)
            if product is not None:
                return ProductDisplay(
                    id=product.id,
                    name=product.name,
                    image_url=product.primary_image,
                    price=product.price,
                )
        if dispute.order_id is not None:
            order = await self.db.get(Order, dispute.order_id)
            item = order.find_item(dispute.product_id, dispute.product_name) if order else None
            if item is not None:
                return ProductDisplay(
                    id=item.get("product_id"),
                    name=item.get("product_name"),
                    image_url=item.get("product_image"),
                    price=item.get("unit_price"),
                )
        if dispute.product_name:
            return ProductDisplay(id=dispute.product_id, name=dispute.product_name)
        return None

    async def campaign(self, dispute: Dispute) -> CampaignDisplay | None:
        campaign_id = dispute.campaign_id
        if campaign_id is None and dispute.application_id is not None:
            application = await self.db.get(CampaignApplication, dispute.application_id)
            campaign_id = application.campaign_id if application else None
        if campaign_id is None:
            return None
        campaign = await self.db.get(Campaign, campaign_id)
        if campaign is None:
            return None
        return CampaignDisplay(id=campaign.id, name=campaign.name, image_url=campaign.image_url)

    async def for_detail(self, dispute: Dispute) -> dict:
        users = await self.users_for([dispute])
        return {
            "buyer_display": users.get(dispute.buyer_id),
            "seller_display": users.get(dispute.seller_id),
            "moderator_display": users.get(dispute.moderator_assigned_to),
            "shop_display": await self.shop(dispute),
            "product_display": await self.product(dispute),
            "campaign_display": await self.campaign(dispute),
        }
