"""Shared builders for dispute tests."""

from dataclasses import dataclass

from jose import jwt
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.config import settings
from marketplace.models import (
    AuditLog,
    Campaign,
    CampaignApplication,
    Dispute,
    DisputeMessage,
    Notification,
    Order,
    Product,
    Shop,
    User,
    UserRole,
)
from marketplace.modules.auth.auth import AuthenticatedUser
from marketplace.modules.dispute.schemas import DisputeCreate
from marketplace.modules.dispute.service import DisputeService


@dataclass
class Marketplace:
    buyer: User
    seller: User
    influencer: User
    moderator: User
    other_moderator: User
    admin: User
    outsider: User
    shop: Shop
    product: Product
    order: Order
    campaign: Campaign
    application: CampaignApplication


async def make_user(
    db: AsyncSession, name: str, role: UserRole = UserRole.USER, email: str | None = None
) -> User:
    user = User(
        email=email or f"{name.lower().replace(' ', '.')}@example.com",
        name=name,
        role=role,
    )
    db.add(user)
    await db.flush()
    return user


def as_auth(user: User) -> AuthenticatedUser:
    return AuthenticatedUser(id=user.id, email=user.email, roles=[user.role.value])


def auth_headers(user: User) -> dict[str, str]:
    token = jwt.encode(
        {"sub": str(user.id), "email": user.email, "roles": [user.role.value]},
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return {"Authorization": f"Bearer {token}"}


def order_payload(market: Marketplace, **overrides) -> DisputeCreate:
    data = {
        "context": "order",
        "orderId": str(market.order.id),
        "motivoClave": "no_recibido",
        "descripcion": "The package never arrived",
    }
    data.update(overrides)
    return DisputeCreate.model_validate(data)


async def open_order_dispute(db: AsyncSession, market: Marketplace, **overrides) -> Dispute:
    dispute, _ = await DisputeService(db).create_dispute(
        order_payload(market, **overrides), as_auth(market.buyer)
    )
    return dispute


async def count_rows(db: AsyncSession, model, *conditions) -> int:
    result = await db.execute(select(func.count()).select_from(model).where(*conditions))
    return result.scalar() or 0


async def notifications_for(db: AsyncSession, user: User) -> list[Notification]:
    result = await db.execute(
        select(Notification)
        .where(Notification.user_id == user.id)
        .order_by(Notification.created_at)
    )
    return list(result.scalars().all())


async def thread_of(db: AsyncSession, dispute: Dispute) -> list[DisputeMessage]:
    result = await db.execute(
        select(DisputeMessage)
        .where(DisputeMessage.dispute_id == dispute.id)
        .order_by(DisputeMessage.created_at)
    )
    return list(result.scalars().all())


async def audit_rows(db: AsyncSession, action: str | None = None) -> list[AuditLog]:
    query = select(AuditLog).order_by(AuditLog.created_at)
    if action is not None:
        query = query.where(AuditLog.action == action)
    return list((await db.execute(query)).scalars().all())
