from types import SimpleNamespace

import pytest

from app.core.exceptions import (
    InvalidStatusTransition,
    OLXAPIError,
    OLXAuthenticationError,
    ProductNotFoundError,
    TaxonomySyncError,
    TransientAPIError,
    ValidationError,
)
from app.routes import olx as olx_routes
from app.schemas.olx import BulkItemResult, BulkResult, MarketplaceSyncResult, TaxonomySyncResult
from app.services.olx.listing_service import OLXListingService


def make_listing(**overrides):
    values = dict(id=1, product_id=7, external_listing_id="9001", status="published",
                  olx_url="https://olx.ba/artikal/9001")
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def auth(mocker):
    return mocker.patch.object(olx_routes, "OLXAuthManager")


@pytest.fixture
def listings(mocker, auth):
    service = mocker.Mock(spec=OLXListingService)
    for name in ("publish", "update_listing", "unpublish_listing", "remove_listing",
                 "bulk_publish", "bulk_update", "bulk_remove"):
        setattr(service, name, mocker.AsyncMock())
    mocker.patch.object(olx_routes, "listing_service", return_value=service)
    return service


"""
1. Listings
"""

async def test_publish(client, listings):
    listings.publish.return_value = make_listing()

    response = await client.post("/api/olx/shops/1/products/7/publish", json={"publish": False})

    assert response.status_code == 200
    assert response.json()["external_listing_id"] == "9001"
    listings.publish.assert_awaited_once_with(1, 7, template_id=None, publish=False)


async def test_publish_without_body_defaults_to_publishing(client, listings):
    listings.publish.return_value = make_listing()

    response = await client.post("/api/olx/shops/1/products/7/publish")

    assert response.status_code == 200
    assert listings.publish.await_args.kwargs["publish"] is True


@pytest.mark.parametrize(
    "error, status_code",
    [
        (ProductNotFoundError("Product 7 not found"), 404),
        (ValidationError("Missing required attributes: Brand"), 422),
        (InvalidStatusTransition("listing was removed"), 409),
        (OLXAuthenticationError("bad credentials"), 401),
        (TransientAPIError("API request failed (503)", status_code=503), 503),
        (OLXAPIError("API request failed (500): boom", status_code=500), 502),
    ],
)
async def test_service_errors_map_to_http_status(client, listings, error, status_code):
    listings.update_listing.side_effect = error

    response = await client.put("/api/olx/shops/1/products/7/listing")

    assert response.status_code == status_code


async def test_unpublish_and_remove(client, listings):
    listings.unpublish_listing.return_value = make_listing(status="unpublished")
    listings.remove_listing.return_value = make_listing(status="removed")

    unpublished = await client.post("/api/olx/shops/1/products/7/unpublish")
    removed = await client.delete("/api/olx/shops/1/products/7/listing")

    assert unpublished.json()["status"] == "unpublished"
    assert removed.json()["status"] == "removed"


async def test_bulk_publish(client, listings):
    result = BulkResult()
    result.add(BulkItemResult(product_id=7, success=True, listing_id=1, external_listing_id="9001"))
    result.add(BulkItemResult(product_id=8, success=False, error="Product 8 not found", error_type="ProductNotFoundError"))
    listings.bulk_publish.return_value = result

    response = await client.post("/api/olx/shops/1/bulk/publish", json={"product_ids": [7, 8]})

    assert response.status_code == 200
    assert (response.json()["succeeded"], response.json()["failed"]) == (1, 1)
    listings.bulk_publish.assert_awaited_once_with(1, [7, 8], template_id=None, publish=True)


async def test_bulk_request_needs_products(client, listings):
    response = await client.post("/api/olx/shops/1/bulk/remove", json={"product_ids": []})

    assert response.status_code == 422
    listings.bulk_remove.assert_not_called()


"""
2. Taxonomy and pull sync
"""

async def test_taxonomy_sync(mocker, client, auth):
    service = mocker.patch.object(olx_routes, "TaxonomySyncService")
    service.return_value.sync_all = mocker.AsyncMock(return_value=TaxonomySyncResult())

    response = await client.post("/api/olx/shops/1/taxonomy/sync", params={"include_attributes": "false"})

    assert response.status_code == 200
    service.return_value.sync_all.assert_awaited_once_with(include_attributes=False, cleanup=True)


async def test_taxonomy_sync_failure(mocker, client, auth):
    service = mocker.patch.object(olx_routes, "TaxonomySyncService")
    service.return_value.sync_all = mocker.AsyncMock(side_effect=TaxonomySyncError("Could not fetch root categories"))

    response = await client.post("/api/olx/shops/1/taxonomy/sync")

    assert response.status_code == 503


async def test_sync_from_olx_skips_existing_by_default(mocker, client, auth):
    service = mocker.patch.object(olx_routes, "MarketplaceSyncService")
    service.return_value.sync_from_marketplace = mocker.AsyncMock(return_value=MarketplaceSyncResult(imported=3))

    response = await client.post("/api/olx/shops/1/sync-from-olx", json={"limit": 10})

    assert response.status_code == 200
    assert response.json()["imported"] == 3
    service.return_value.sync_from_marketplace.assert_awaited_once_with(
        1, limit=10, status_filter=None, category_ids=None, skip_existing=True
    )


async def test_repair_parents(client):
    response = await client.post("/api/olx/taxonomy/repair-parents")

    assert response.json() == {"status": "success", "updated": 0}
