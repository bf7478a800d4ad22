# Pull sync tests: remote listings -> local products
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from app.core.enums import ListingStatus
from app.core.exceptions import OLXAPIError, OLXNotFoundError
from app.models import ImportedProduct, OlxCategoryTemplate, OlxCredential, OlxListing, Product
from app.schemas.olx import MarketplaceSyncResult
from app.services.olx.auth import OLXAuthManager
from app.services.olx.client import OLXClient
from app.services.olx.sync_service import MarketplaceSyncService, extract_image_urls


def listing_details(listing_id, category_id=1495, status="active", **extra):
    details = {
        "id": listing_id,
        "title": f"Guma {listing_id}",
        "category_id": category_id,
        "city_id": 77,
        "price": "120.50",
        "currency": "bam",
        "status": status,
        "listing_type": "sell",
        "state": "new",
        "additional": {"description": f"Opis {listing_id}"},
        "images": [{"url": f"https://img.olx.ba/{listing_id}.jpg"}],
    }
    details.update(extra)
    return details


@pytest.fixture
def remote():
    """Listing id -> details, as OLX would return them"""
    return {
        101: listing_details(101),
        102: listing_details(102, status="inactive"),
    }


@pytest.fixture
def client(mocker, remote):
    client = mocker.Mock(spec=OLXClient)

    async def get_user_listings(user_name, page=1, per_page=None):
        summaries = [{"id": d["id"], "status": d["status"], "title": d["title"]} for d in remote.values()]
        return {"data": summaries, "meta": {"last_page": 1}}

    async def get_listing(listing_id):
        details = remote.get(int(listing_id))
        if details is None:
            raise OLXNotFoundError("not found", status_code=404)
        return {"data": details}

    client.get_user_listings = mocker.AsyncMock(side_effect=get_user_listings)
    client.get_listing = mocker.AsyncMock(side_effect=get_listing)
    return client


@pytest.fixture
def service(db_session, client):
    return MarketplaceSyncService(db_session, client)


async def _products(db_session, shop_id):
    return (
        await db_session.execute(
            select(Product)
            .where(Product.shop_id == shop_id)
            .order_by(Product.source_id)
            .execution_options(populate_existing=True)
        )
    ).scalars().all()


"""
1. Import and update
"""

async def test_new_listings_are_imported(db_session, service, shop, credential, category, location):
    result = await service.sync_from_marketplace(shop.id)

    assert (result.imported, result.updated, result.skipped, result.failed) == (2, 0, 0, 0)
    assert result.errors == []

    first, second = await _products(db_session, shop.id)
    assert (first.source, first.source_id) == ("olx", "101")
    assert first.title == "Guma 101"
    assert first.description == "Opis 101"
    assert first.price == Decimal("120.50")
    assert first.currency == "BAM"
    assert first.published is True
    assert second.published is False
    assert first.image_urls == ["https://img.olx.ba/101.jpg"]

    listings = {
        l.external_listing_id: l for l in (await db_session.execute(select(OlxListing))).scalars().all()
    }
    assert listings["101"].status == ListingStatus.PUBLISHED.value
    assert listings["101"].published_at is not None
    assert listings["102"].status == ListingStatus.DRAFT.value

    audit = (await db_session.execute(select(ImportedProduct))).scalars().all()
    assert {a.raw_data["id"] for a in audit} == {101, 102}
    assert all(a.status == "imported" and a.source == "olx" for a in audit)


async def test_one_template_is_created_per_category_and_location(db_session, service, shop, credential, category, location):
    await service.sync_from_marketplace(shop.id)

    templates = (await db_session.execute(select(OlxCategoryTemplate))).scalars().all()
    assert len(templates) == 1
    assert templates[0].name == "Gume - Sarajevo (Auto-created from sync)"
    assert templates[0].olx_location_id == location.id
    first, second = await _products(db_session, shop.id)
    assert first.olx_category_template_id == second.olx_category_template_id == templates[0].id


async def test_existing_template_is_reused(db_session, service, shop, credential, category, location, template):
    await service.sync_from_marketplace(shop.id)

    templates = (await db_session.execute(select(OlxCategoryTemplate))).scalars().all()
    assert [t.id for t in templates] == [template.id]


async def test_second_sync_updates(db_session, service, remote, shop, credential, category, location):
    await service.sync_from_marketplace(shop.id)
    remote[101]["title"] = "Guma 101 - snizeno"

    result = await service.sync_from_marketplace(shop.id)

    assert (result.imported, result.updated) == (0, 2)
    products = await _products(db_session, shop.id)
    assert len(products) == 2
    assert products[0].title == "Guma 101 - snizeno"
    audit = (await db_session.execute(select(ImportedProduct))).scalars().all()
    assert len(audit) == 2


async def test_locally_removed_listing_stays_removed(db_session, service, shop, credential, category, location):
    await service.sync_from_marketplace(shop.id)
    removed = await db_session.scalar(select(OlxListing).where(OlxListing.external_listing_id == "101"))
    removed.status = ListingStatus.REMOVED.value
    await db_session.commit()

    result = await service.sync_from_marketplace(shop.id)

    assert result.updated == 2
    listing = (
        await db_session.execute(
            select(OlxListing)
            .where(OlxListing.external_listing_id == "101")
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    assert listing.status == ListingStatus.REMOVED.value


async def test_skip_existing(service, shop, credential, category, location):
    await service.sync_from_marketplace(shop.id)

    result = await service.sync_from_marketplace(shop.id, skip_existing=True)

    assert (result.imported, result.updated, result.skipped) == (0, 0, 2)


async def test_image_fetcher_downloads_listing_images(mocker, db_session, client, shop, credential, category, location):
    fetcher = mocker.Mock()
    fetcher.replace_images = mocker.AsyncMock(return_value=(1, []))
    service = MarketplaceSyncService(db_session, client, image_fetcher=fetcher)

    await service.sync_from_marketplace(shop.id)

    assert fetcher.replace_images.await_count == 2


"""
2. Filters and failures
"""

async def test_listing_with_unknown_category_is_skipped(service, remote, shop, credential, category, location):
    remote[102]["category_id"] = 9999

    result = await service.sync_from_marketplace(shop.id)

    assert (result.imported, result.skipped, result.failed) == (1, 1, 0)
    assert len(result.errors) == 1
    assert "category 9999" in result.errors[0]
    assert "taxonomy sync" in result.errors[0]


async def test_listing_with_unknown_location_is_skipped(db_session, service, remote, shop, credential, category, location):
    remote[102]["city_id"] = 99999

    result = await service.sync_from_marketplace(shop.id)

    assert (result.imported, result.skipped, result.failed) == (1, 1, 0)
    assert "location 99999" in result.errors[0]
    assert [p.source_id for p in await _products(db_session, shop.id)] == ["101"]


async def test_listing_without_location_is_imported(db_session, service, remote, shop, credential, category, location):
    remote[102]["city_id"] = None

    result = await service.sync_from_marketplace(shop.id)

    assert (result.imported, result.skipped) == (2, 0)
    names = {t.name for t in (await db_session.execute(select(OlxCategoryTemplate))).scalars().all()}
    assert names == {"Gume - Sarajevo (Auto-created from sync)", "Gume - No Location (Auto-created from sync)"}


async def test_status_filter(service, shop, credential, category, location):
    result = await service.sync_from_marketplace(shop.id, status_filter="active")

    assert (result.imported, result.skipped) == (1, 1)


async def test_category_filter(service, remote, shop, credential, category, location):
    remote[102]["category_id"] = 1496

    result = await service.sync_from_marketplace(shop.id, category_ids=[1495])

    assert (result.imported, result.skipped) == (1, 1)


async def test_limit(service, shop, credential, category, location):
    result = await service.sync_from_marketplace(shop.id, limit=1)

    assert result.imported == 1


async def test_detail_fetch_failure_is_counted(service, client, shop, credential, category, location):
    client.get_listing.side_effect = OLXAPIError("API request failed (500): boom", status_code=500)

    result = await service.sync_from_marketplace(shop.id)

    assert (result.imported, result.failed) == (0, 2)
    assert len(result.errors) == 2


async def test_paging_follows_last_page(service, client, shop, credential, category, location):
    async def get_user_listings(user_name, page=1, per_page=None):
        return {"data": [{"id": 100 + page, "status": "active"}], "meta": {"last_page": 2}}

    client.get_user_listings.side_effect = get_user_listings

    listings = await service.fetch_listings("autodijelovi", None, result=MarketplaceSyncResult())

    assert [l["id"] for l in listings] == [101, 102]
    assert client.get_user_listings.await_count == 2


async def test_page_failure_stops_paging_and_is_reported(service, client, shop, credential):
    client.get_user_listings.side_effect = [
        {"data": [{"id": 101}], "meta": {"last_page": 3}},
        OLXAPIError("API request failed (502): bad gateway", status_code=502),
    ]
    result = MarketplaceSyncResult()

    listings = await service.fetch_listings("autodijelovi", None, result)

    assert [l["id"] for l in listings] == [101]
    assert "page 2" in result.errors[0]


"""
3. OLX user name
"""

async def test_user_name_is_required(db_session, service, shop, credential):
    credential.olx_user_name = None
    await db_session.commit()

    with pytest.raises(OLXAPIError, match="authenticate first"):
        await service.sync_from_marketplace(shop.id)


async def test_missing_user_name_triggers_authentication(mocker, db_session, session_factory, client, shop, credential):
    credential.olx_user_name = None
    await db_session.commit()

    async def authenticate(shop_id):
        async with session_factory() as db:
            await db.execute(
                update(OlxCredential).where(OlxCredential.shop_id == shop_id).values(olx_user_name="autodijelovi")
            )
            await db.commit()
        return "token"

    auth = mocker.Mock(spec=OLXAuthManager)
    auth.authenticate = mocker.AsyncMock(side_effect=authenticate)
    service = MarketplaceSyncService(db_session, client, auth=auth)

    assert await service.olx_user_name(shop.id) == "autodijelovi"
    auth.authenticate.assert_awaited_once_with(shop.id)


def test_extract_image_urls():
    listing = {"images": ["https://a/1.jpg", {"url": "https://a/2.jpg"}, {"large": "https://a/3.jpg"}, {"x": 1}]}

    assert extract_image_urls(listing) == ["https://a/1.jpg", "https://a/2.jpg", "https://a/3.jpg"]
    assert extract_image_urls({"photos": [{"link": "https://a/4.jpg"}]}) == ["https://a/4.jpg"]
