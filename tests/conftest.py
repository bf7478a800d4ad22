# tests/conftest.py
import os
import tempfile

# Must be set before anything under app/ is imported
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'olx_backoffice_test.db')}"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "development"

from decimal import Decimal

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app import models  # noqa: F401
from app.database import Base
from app.models import (
    OlxCategory,
    OlxCategoryAttribute,
    OlxCategoryTemplate,
    OlxCredential,
    OlxLocation,
    Product,
    Shop,
)


def _enable_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest.fixture
async def test_engine(tmp_path):
    """Fresh SQLite database per test function."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    event.listen(engine.sync_engine, "connect", _enable_foreign_keys)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Provide a database session for tests"""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def shop(db_session):
    shop = Shop(name="Auto dijelovi Sarajevo", settings={})
    db_session.add(shop)
    await db_session.commit()
    return shop


@pytest.fixture
async def other_shop(db_session):
    shop = Shop(name="Auto dijelovi Mostar", settings={})
    db_session.add(shop)
    await db_session.commit()
    return shop


@pytest.fixture
async def credential(db_session, shop):
    credential = OlxCredential(
        shop_id=shop.id,
        username="shop@example.com",
        password="secret",
        olx_user_name="autodijelovi",
        version=0,
    )
    db_session.add(credential)
    await db_session.commit()
    return credential


@pytest.fixture
async def category(db_session):
    parent = OlxCategory(external_id=18, name="Auto dijelovi", slug="auto-dijelovi", extra_data={})
    db_session.add(parent)
    await db_session.flush()
    category = OlxCategory(external_id=1495, name="Gume", slug="gume", parent_id=parent.id, extra_data={})
    db_session.add(category)
    await db_session.commit()
    return category


@pytest.fixture
async def location(db_session):
    location = OlxLocation(external_id=77, name="Sarajevo", state_id=9, canton_id=9, lat=43.85, lon=18.41)
    db_session.add(location)
    await db_session.commit()
    return location


@pytest.fixture
async def template(db_session, shop, category, location):
    template = OlxCategoryTemplate(
        shop_id=shop.id,
        name="Gume - Sarajevo",
        olx_category_id=category.id,
        olx_location_id=location.id,
        default_listing_type="sell",
        default_state="new",
        attribute_mappings={},
        description_filter=[],
    )
    db_session.add(template)
    await db_session.commit()
    return template


@pytest.fixture
async def required_attribute(db_session, category):
    attribute = OlxCategoryAttribute(
        olx_category_id=category.id,
        external_id=501,
        name="brand",
        attribute_type="string",
        required=True,
        options={"label": "Proizvođač"},
    )
    db_session.add(attribute)
    await db_session.commit()
    return attribute


@pytest.fixture
async def product(db_session, shop, template):
    product = Product(
        shop_id=shop.id,
        source="csv",
        title="Michelin Pilot Sport 4 225/45 R17",
        sku="MPS4-2254517",
        brand="Michelin",
        description="Ljetna guma",
        price=Decimal("150.00"),
        margin=Decimal("20"),
        stock=4,
        specs={},
        image_urls=[],
        olx_category_template_id=template.id,
    )
    db_session.add(product)
    await db_session.commit()
    return product
