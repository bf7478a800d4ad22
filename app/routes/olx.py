# app/routes/olx.py
"""
OLX endpoints: taxonomy refresh, publishing, bulk operations and pull sync.

Every shop-scoped call builds its client through OLXAuthManager, so tokens
are fetched and refreshed transparently.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    BaseServiceError,
    InvalidStatusTransition,
    OLXAPIError,
    OLXAuthenticationError,
    OLXNotFoundError,
    OLXValidationError,
    ProductNotFoundError,
    ReferentialInconsistencyError,
    TaxonomySyncError,
    TransientAPIError,
    ValidationError,
)
from app.dependencies import get_db
from app.schemas.olx import (
    BulkRequest,
    BulkResult,
    ListingRead,
    MarketplaceSyncRequest,
    MarketplaceSyncResult,
    PublishRequest,
    TaxonomySyncResult,
)
from app.services.olx.auth import OLXAuthManager
from app.services.olx.listing_service import OLXListingService
from app.services.olx.sync_service import MarketplaceSyncService
from app.services.olx.taxonomy_sync import TaxonomySyncService

router = APIRouter(prefix="/api/olx", tags=["olx"])

logger = logging.getLogger(__name__)


def to_http_error(e: BaseServiceError) -> HTTPException:
    """Map a service error onto the response the API returns for it."""
    if isinstance(e, ProductNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, (ValidationError, OLXValidationError, ReferentialInconsistencyError)):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, InvalidStatusTransition):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, OLXAuthenticationError):
        return HTTPException(status_code=401, detail=f"OLX authentication failed: {e}")
    if isinstance(e, OLXNotFoundError):
        return HTTPException(status_code=404, detail=f"Not found on OLX: {e}")
    if isinstance(e, (TransientAPIError, TaxonomySyncError)):
        return HTTPException(status_code=503, detail=str(e))
    if isinstance(e, OLXAPIError):
        return HTTPException(status_code=502, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


def listing_service(db: AsyncSession, shop_id: int) -> OLXListingService:
    return OLXListingService(db, OLXAuthManager().client_for(shop_id))


def _listing_read(listing) -> ListingRead:
    return ListingRead(
        id=listing.id,
        product_id=listing.product_id,
        external_listing_id=listing.external_listing_id,
        status=listing.status,
        olx_url=listing.olx_url,
    )


# Taxonomy

@router.post("/shops/{shop_id}/taxonomy/sync", response_model=TaxonomySyncResult)
async def sync_taxonomy(
    shop_id: int,
    include_attributes: bool = True,
    cleanup: bool = True,
    db: AsyncSession = Depends(get_db),
):
    """Refresh categories, attributes and locations using the shop's OLX account."""
    service = TaxonomySyncService(db, OLXAuthManager().client_for(shop_id))
    try:
        return await service.sync_all(include_attributes=include_attributes, cleanup=cleanup)
    except BaseServiceError as e:
        raise to_http_error(e)


@router.post("/taxonomy/repair-parents")
async def repair_parents(db: AsyncSession = Depends(get_db)):
    changed = await TaxonomySyncService(db, client=None).repair_category_parents()
    return {"status": "success", "updated": changed}


# Listings

@router.post("/shops/{shop_id}/products/{product_id}/publish", response_model=ListingRead)
async def publish_product(
    shop_id: int,
    product_id: int,
    request: PublishRequest = PublishRequest(),
    db: AsyncSession = Depends(get_db),
):
    try:
        listing = await listing_service(db, shop_id).publish(
            shop_id, product_id, template_id=request.template_id, publish=request.publish
        )
    except BaseServiceError as e:
        raise to_http_error(e)
    return _listing_read(listing)


@router.put("/shops/{shop_id}/products/{product_id}/listing", response_model=ListingRead)
async def update_product_listing(shop_id: int, product_id: int, db: AsyncSession = Depends(get_db)):
    try:
        listing = await listing_service(db, shop_id).update_listing(shop_id, product_id)
    except BaseServiceError as e:
        raise to_http_error(e)
    return _listing_read(listing)


@router.post("/shops/{shop_id}/products/{product_id}/unpublish", response_model=ListingRead)
async def unpublish_product(shop_id: int, product_id: int, db: AsyncSession = Depends(get_db)):
    try:
        listing = await listing_service(db, shop_id).unpublish_listing(shop_id, product_id)
    except BaseServiceError as e:
        raise to_http_error(e)
    return _listing_read(listing)


@router.delete("/shops/{shop_id}/products/{product_id}/listing", response_model=ListingRead)
async def remove_product_listing(shop_id: int, product_id: int, db: AsyncSession = Depends(get_db)):
    try:
        listing = await listing_service(db, shop_id).remove_listing(shop_id, product_id)
    except BaseServiceError as e:
        raise to_http_error(e)
    return _listing_read(listing)


# Bulk

@router.post("/shops/{shop_id}/bulk/publish", response_model=BulkResult)
async def bulk_publish(shop_id: int, request: BulkRequest, db: AsyncSession = Depends(get_db)):
    return await listing_service(db, shop_id).bulk_publish(
        shop_id, request.product_ids, template_id=request.template_id, publish=request.publish
    )


@router.post("/shops/{shop_id}/bulk/update", response_model=BulkResult)
async def bulk_update(shop_id: int, request: BulkRequest, db: AsyncSession = Depends(get_db)):
    return await listing_service(db, shop_id).bulk_update(shop_id, request.product_ids)


@router.post("/shops/{shop_id}/bulk/remove", response_model=BulkResult)
async def bulk_remove(shop_id: int, request: BulkRequest, db: AsyncSession = Depends(get_db)):
    return await listing_service(db, shop_id).bulk_remove(shop_id, request.product_ids)


# Pull sync

@router.post("/shops/{shop_id}/sync-from-olx", response_model=MarketplaceSyncResult)
async def sync_from_olx(
    shop_id: int,
    request: MarketplaceSyncRequest = MarketplaceSyncRequest(),
    db: AsyncSession = Depends(get_db),
):
    """Import the shop's existing OLX listings as local products."""
    auth = OLXAuthManager()
    service = MarketplaceSyncService(db, auth.client_for(shop_id), auth=auth)
    try:
        return await service.sync_from_marketplace(
            shop_id,
            limit=request.limit,
            status_filter=request.status_filter,
            category_ids=request.category_ids,
            skip_existing=request.skip_existing,
        )
    except BaseServiceError as e:
        raise to_http_error(e)
