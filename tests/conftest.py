"""Pytest fixtures for marketplace dispute tests.

Services run against an in-memory SQLite database (aiosqlite); HTTP tests go
through httpx with the database, broadcaster and file storage overridden.
"""

import os

os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from collections.abc import AsyncGenerator
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from marketplace.app import app
from marketplace.database.base import Base
from marketplace.database.session import get_db
from marketplace.models import Campaign, CampaignApplication, Order, Product, Shop, UserRole
from marketplace.modules.notifications.realtime import RealtimeBroadcaster, get_broadcaster
from marketplace.modules.storage.service import S3FileStorage, get_file_storage
from marketplace.ratelimit import limiter
from tests.factories import Marketplace, make_user

TEST_DATABASE_URL = "sqlite+aiosqlite://"

limiter.enabled = False


@pytest_asyncio.fixture
async def async_test_engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs work under pysqlite
    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def market(db_session: AsyncSession) -> Marketplace:
    """Users, a shop with one product, an order, a campaign and an application."""
    buyer = await make_user(db_session, "Bruno Buyer")
    seller = await make_user(db_session, "Sofia Seller")
    influencer = await make_user(db_session, "Ines Influencer")
    moderator = await make_user(db_session, "Mora Moderator", UserRole.MODERATOR)
    other_moderator = await make_user(db_session, "Otto Moderator", UserRole.MODERATOR)
    admin = await make_user(db_session, "Ada Admin", UserRole.ADMIN)
    outsider = await make_user(db_session, "Oscar Outsider")

    shop = Shop(owner_id=seller.id, name="Sofia's Shop", image_url="https://cdn.test/shop.png")
    db_session.add(shop)
    await db_session.flush()

    product = Product(
        shop_id=shop.id,
        name="Ceramic Mug",
        price=Decimal("12.50"),
        images=["https://cdn.test/mug.png"],
    )
    campaign = Campaign(shop_id=shop.id, name="Summer Launch")
    db_session.add_all([product, campaign])
    await db_session.flush()

    order = Order(
        reference="ORD-1001",
        buyer_id=buyer.id,
        items=[
            {
                "product_id": str(product.id),
                "product_name": "Ceramic Mug",
                "product_image": "https://cdn.test/mug.png",
                "unit_price": "12.50",
                "quantity": 2,
            }
        ],
    )
    application = CampaignApplication(campaign_id=campaign.id, influencer_id=influencer.id)
    db_session.add_all([order, application])
    await db_session.commit()

    return Marketplace(
        buyer=buyer,
        seller=seller,
        influencer=influencer,
        moderator=moderator,
        other_moderator=other_moderator,
        admin=admin,
        outsider=outsider,
        shop=shop,
        product=product,
        order=order,
        campaign=campaign,
        application=application,
    )


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def redis_client():
    client = AsyncMock()
    client.publish = AsyncMock(return_value=1)
    return client


@pytest.fixture
def broadcaster(redis_client) -> RealtimeBroadcaster:
    return RealtimeBroadcaster(redis_client=redis_client)


@pytest.fixture
def s3_client():
    return MagicMock()


@pytest.fixture
def file_storage(s3_client) -> S3FileStorage:
    return S3FileStorage(bucket="test-bucket", client=s3_client)


@pytest_asyncio.fixture
async def async_client(
    db_session: AsyncSession,
    broadcaster: RealtimeBroadcaster,
    file_storage: S3FileStorage,
) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient wired to the app with test collaborators."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_broadcaster] = lambda: broadcaster
    app.dependency_overrides[get_file_storage] = lambda: file_storage

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
