from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from app.database import utc_now
from app.models import (
    ImportedProduct,
    ImportLog,
    OlxCategory,
    OlxCategoryAttribute,
    OlxListing,
    OlxLocation,
    Product,
    ProductImage,
)


"""
1. Import log and staged records
"""

def test_progress_percentage():
    assert ImportLog(total_rows=0, processed_rows=0).progress_percentage == 0.0
    assert ImportLog(total_rows=3, processed_rows=1).progress_percentage == 33.33


def test_has_errors():
    assert ImportLog(failed_rows=0, error_messages=[]).has_errors is False
    assert ImportLog(failed_rows=1, error_messages=[]).has_errors is True
    assert ImportLog(failed_rows=0, error_messages=["CSV file is empty"]).has_errors is True


def test_is_stale():
    now = utc_now()
    log = ImportLog(status="processing", updated_at=now - timedelta(minutes=90))

    assert log.is_stale(60, now=now) is True
    assert log.is_stale(120, now=now) is False
    log.status = "completed"
    assert log.is_stale(60, now=now) is False


async def test_staged_record_lifecycle(db_session, shop):
    for status in ("pending", "processing", "imported", "error"):
        db_session.add(ImportedProduct(shop_id=shop.id, status=status, raw_data={"title": status}))
    await db_session.commit()

    async def sources(target):
        stmt = select(ImportedProduct.status).where(ImportedProduct.may_become(target))
        return sorted((await db_session.execute(stmt)).scalars().all())

    assert await sources("processing") == ["pending"]
    assert await sources("imported") == ["processing"]
    assert await sources("error") == ["processing"]
    # only a manual retry goes backwards
    assert await sources("pending") == ["error"]


async def test_raw_data_is_write_once(db_session, shop):
    record = ImportedProduct(shop_id=shop.id, source="csv", status="pending", raw_data={"title": "Filter"})
    db_session.add(record)
    await db_session.commit()

    with pytest.raises(ValueError, match="immutable"):
        record.raw_data = {"title": "Something else"}


"""
2. Products
"""

async def test_final_price_follows_price_and_margin(db_session, shop):
    product = Product(shop_id=shop.id, title="Akumulator", price=Decimal("100"), margin=Decimal("20"))
    db_session.add(product)
    await db_session.commit()
    assert product.final_price == Decimal("120")

    product.margin = Decimal("25")
    await db_session.commit()
    assert product.final_price == Decimal("125")
    assert product.effective_price == Decimal("125")


def test_currency_is_validated():
    assert Product(title="x", currency="eur").currency == "EUR"
    with pytest.raises(ValueError):
        Product(title="x", currency="HRK")


def test_discard():
    product = Product(title="x")
    assert product.is_discarded is False

    product.discard()

    assert product.is_discarded is True


async def test_deleting_a_product_releases_its_images(db_session, product):
    db_session.add(ProductImage(product_id=product.id, source_url="https://img/a.jpg", filename="a.jpg"))
    await db_session.commit()

    await db_session.execute(delete(Product).where(Product.id == product.id))
    await db_session.commit()

    assert await db_session.scalar(select(func.count(ProductImage.id))) == 0


"""
3. Taxonomy and listings
"""

def test_category_tree_helpers():
    root = OlxCategory(id=1, external_id=18, name="Auto dijelovi")
    tyres = OlxCategory(id=2, external_id=1495, name="Gume", parent_id=1)
    summer = OlxCategory(id=3, external_id=2001, name="Ljetne gume", parent_id=2)
    index = {c.id: c for c in (root, tyres, summer)}

    assert summer.full_path(index) == "Auto dijelovi > Gume > Ljetne gume"
    assert [c.id for c in summer.ancestors(index)] == [2, 1]
    assert summer.is_leaf(index) is True
    assert tyres.is_leaf(index) is False


def test_ancestors_stop_on_a_cycle():
    a = OlxCategory(id=1, external_id=1, name="A", parent_id=2)
    b = OlxCategory(id=2, external_id=2, name="B", parent_id=1)

    assert [c.id for c in a.ancestors({1: a, 2: b})] == [2]


def test_attribute_helpers():
    listed = OlxCategoryAttribute(name="brand", options=["Michelin", "Pirelli"])
    labelled = OlxCategoryAttribute(name="load_index", options={"values": ["91", "94"], "label": "Indeks nosivosti"})

    assert listed.possible_values == ["Michelin", "Pirelli"]
    assert listed.display_label == "Brand"
    assert labelled.possible_values == ["91", "94"]
    assert labelled.display_label == "Indeks nosivosti"
    assert OlxCategoryAttribute(name="x", options=None).possible_values is None


def test_location_helpers():
    sarajevo = OlxLocation(name="Sarajevo", country_id=1, state_id=9, canton_id=91, lat=43.85, lon=18.41,
                           zip_code="71000")

    assert sarajevo.has_coordinates is True
    assert sarajevo.display_name == "Sarajevo (71000)"
    assert sarajevo.full_path == "Bosnia and Herzegovina > State 9 > Canton 91 > Sarajevo"
    assert OlxLocation(name="Ilidža").has_coordinates is False


def test_listing_status_is_closed():
    listing = OlxListing(status="draft")

    with pytest.raises(ValueError):
        listing.status = "archived"


def test_listing_url_and_error():
    listing = OlxListing(status="failed", external_listing_id=None, extra_data={"error": "title: too long"})

    assert listing.olx_url is None
    assert listing.error_message == "title: too long"
    listing.status = "published"
    listing.external_listing_id = "9001"
    assert listing.is_published is True
    assert listing.olx_url == "https://olx.ba/artikal/9001"
    assert listing.error_message is None


def test_external_listing_id_is_immutable():
    listing = OlxListing(status="published", external_listing_id="9001")

    listing.external_listing_id = "9001"
    with pytest.raises(ValueError):
        listing.external_listing_id = "9002"
    with pytest.raises(ValueError):
        listing.external_listing_id = None


async def test_one_active_listing_per_product(db_session, shop, product):
    db_session.add_all([
        OlxListing(shop_id=shop.id, product_id=product.id, external_listing_id="9001", status="removed"),
        OlxListing(shop_id=shop.id, product_id=product.id, external_listing_id="9002", status="removed"),
        OlxListing(shop_id=shop.id, product_id=product.id, external_listing_id="9003", status="published"),
    ])
    await db_session.commit()

    db_session.add(OlxListing(shop_id=shop.id, product_id=product.id, status="draft"))
    with pytest.raises(IntegrityError):
        await db_session.commit()
    await db_session.rollback()
