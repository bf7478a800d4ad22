# app/services/olx/sync_service.py
"""
Pull sync: bring a shop's existing OLX listings into the local catalogue.

Each remote listing becomes (or updates) a Product with source "olx", an
OlxListing carrying the remote snapshot, and an ImportedProduct audit record
holding the raw payload. Listings whose category is not in the local taxonomy
are skipped with an actionable message rather than imported half-linked.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import Currency, ImportedProductStatus, ImportSource, ListingStatus
from app.core.exceptions import OLXAPIError, ReferentialInconsistencyError
from app.database import utc_now
from app.models.imported_product import ImportedProduct
from app.models.olx_category import OlxCategory
from app.models.olx_category_template import OlxCategoryTemplate
from app.models.olx_listing import OlxListing
from app.models.olx_location import OlxLocation
from app.models.product import Product
from app.models.shop import OlxCredential
from app.schemas.olx import MarketplaceSyncResult
from app.services.image_fetcher import ImageFetcher
from app.services.olx.auth import OLXAuthManager
from app.services.olx.client import OLXClient, unwrap_data

logger = logging.getLogger(__name__)

AUTO_TEMPLATE_SUFFIX = "(Auto-created from sync)"


def extract_image_urls(listing: Dict[str, Any]) -> List[str]:
    images = listing.get("images") or listing.get("photos") or listing.get("pictures") or []
    urls = []
    for image in images:
        if isinstance(image, str):
            urls.append(image)
        elif isinstance(image, dict):
            url = image.get("url") or image.get("link") or image.get("original") or image.get("large") or image.get("medium")
            if url:
                urls.append(url)
    return urls


def _decimal(value) -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, "") else Decimal("0")
    except InvalidOperation:
        return Decimal("0")


def _currency(value) -> str:
    code = str(value or "").strip().upper()
    return code if code in Currency.__members__ else Currency.BAM.value


class MarketplaceSyncService:
    def __init__(
        self,
        db: AsyncSession,
        client: OLXClient,
        auth: Optional[OLXAuthManager] = None,
        image_fetcher: Optional[ImageFetcher] = None,
    ):
        self.db = db
        self.client = client
        self.auth = auth
        self.image_fetcher = image_fetcher

    async def olx_user_name(self, shop_id: int) -> str:
        stmt = select(OlxCredential.olx_user_name).where(OlxCredential.shop_id == shop_id)
        user_name = (await self.db.execute(stmt)).scalar_one_or_none()
        if not user_name and self.auth is not None:
            logger.info(f"[OLX Sync] Shop {shop_id} has no OLX user name yet, re-authenticating")
            await self.auth.authenticate(shop_id)
            user_name = (await self.db.execute(stmt)).scalar_one_or_none()
        if not user_name:
            raise OLXAPIError(f"OLX user name not available for shop {shop_id}; authenticate first")
        return user_name

    async def fetch_listings(self, user_name: str, limit: Optional[int], result: MarketplaceSyncResult) -> List[Dict]:
        """Page through the user's listings. A page failure stops paging and is reported."""
        listings: List[Dict] = []
        page = 1
        while True:
            try:
                body = await self.client.get_user_listings(user_name, page=page)
            except OLXAPIError as e:
                logger.error(f"[OLX Sync] Error fetching page {page}: {e}")
                result.errors.append(f"Fetching listings page {page} failed: {e}")
                break

            if isinstance(body, dict):
                items = body.get("data") or body.get("listings") or []
                meta = body.get("meta") or {}
                last_page = meta.get("last_page") or body.get("total_pages")
            else:
                items, last_page = list(body or []), None
            if limit is not None:
                items = items[: max(0, limit - len(listings))]
            listings.extend(items)
            logger.info(f"[OLX Sync] Page {page}: {len(items)} listings (total: {len(listings)})")

            if limit is not None and len(listings) >= limit:
                break
            if not items or not last_page or page >= int(last_page):
                break
            page += 1
        return listings

    async def find_or_create_template(
        self,
        shop_id: int,
        category: OlxCategory,
        location: Optional[OlxLocation],
        listing_type: Optional[str],
        state: Optional[str],
    ) -> OlxCategoryTemplate:
        location_id = location.id if location else None
        stmt = (
            select(OlxCategoryTemplate)
            .where(OlxCategoryTemplate.shop_id == shop_id)
            .where(OlxCategoryTemplate.olx_category_id == category.id)
            .where(
                OlxCategoryTemplate.olx_location_id == location_id
                if location_id
                else OlxCategoryTemplate.olx_location_id.is_(None)
            )
            .order_by(OlxCategoryTemplate.id)
            .limit(1)
        )
        template = (await self.db.execute(stmt)).scalar_one_or_none()
        if template:
            return template

        where = location.name if location else "No Location"
        template = OlxCategoryTemplate(
            shop_id=shop_id,
            name=f"{category.name} - {where} {AUTO_TEMPLATE_SUFFIX}",
            olx_category_id=category.id,
            olx_location_id=location_id,
            default_listing_type=listing_type if listing_type in ("sell", "buy", "rent") else "sell",
            default_state=state or "used",
            attribute_mappings={},
            description_filter=[],
        )
        self.db.add(template)
        await self.db.flush()
        logger.info(f"[OLX Sync] Created category template '{template.name}'")
        return template

    async def _existing_listing(self, shop_id: int, external_id: str) -> Optional[OlxListing]:
        stmt = (
            select(OlxListing)
            .where(OlxListing.shop_id == shop_id)
            .where(OlxListing.external_listing_id == external_id)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def sync_listing(self, shop_id: int, summary: Dict, details: Dict) -> str:
        """Import or update one remote listing. Returns "imported", "updated" or raises."""
        external_id = str(summary.get("id") or details.get("id"))

        category_id = details.get("category_id")
        category = None
        if category_id is not None:
            stmt = select(OlxCategory).where(OlxCategory.external_id == int(category_id))
            category = (await self.db.execute(stmt)).scalar_one_or_none()
        if category is None:
            raise ReferentialInconsistencyError(
                f"Listing {external_id}: OLX category {category_id} is not in the local taxonomy; "
                f"run a taxonomy sync and retry"
            )

        city_id = details.get("city_id") or details.get("location_id") or (details.get("location") or {}).get("id")
        location = None
        if city_id:
            stmt = select(OlxLocation).where(OlxLocation.external_id == int(city_id))
            location = (await self.db.execute(stmt)).scalar_one_or_none()
            if location is None:
                raise ReferentialInconsistencyError(
                    f"Listing {external_id}: OLX location {city_id} is not in the local taxonomy; "
                    f"run a taxonomy sync and retry"
                )

        template = await self.find_or_create_template(
            shop_id, category, location, details.get("listing_type"), details.get("state") or details.get("condition")
        )

        remote_status = details.get("status") or summary.get("status")
        status = ListingStatus.from_remote(remote_status)
        title = details.get("title") or summary.get("title") or f"OLX {external_id}"
        description = (
            (details.get("additional") or {}).get("description")
            or details.get("description")
            or details.get("short_description")
            or summary.get("description")
        )
        image_urls = extract_image_urls(details)
        values = dict(
            title=title,
            description=description,
            price=_decimal(details.get("price", summary.get("price"))),
            currency=_currency(details.get("currency") or summary.get("currency")),
            olx_title=title,
            olx_description=description,
            olx_category_template_id=template.id,
            image_urls=image_urls,
            published=status == ListingStatus.PUBLISHED,
        )

        listing = await self._existing_listing(shop_id, external_id)
        if listing is not None:
            product = await self.db.get(Product, listing.product_id)
            outcome = "updated"
        else:
            stmt = (
                select(Product)
                .where(Product.shop_id == shop_id)
                .where(Product.source == ImportSource.OLX.value)
                .where(Product.source_id == external_id)
            )
            product = (await self.db.execute(stmt)).scalar_one_or_none()
            outcome = "imported"

        if product is None:
            product = Product(shop_id=shop_id, source=ImportSource.OLX.value, source_id=external_id, margin=Decimal("0"))
            self.db.add(product)
        for key, value in values.items():
            setattr(product, key, value)
        await self.db.flush()

        if outcome == "imported":
            self.db.add(ImportedProduct(
                shop_id=shop_id,
                source=ImportSource.OLX.value,
                raw_data=details,
                status=ImportedProductStatus.IMPORTED.value,
                product_id=product.id,
            ))

        if listing is None:
            listing = await self.db.scalar(
                select(OlxListing)
                .where(OlxListing.product_id == product.id)
                .where(OlxListing.status != ListingStatus.REMOVED.value)
            )
        if listing is None:
            listing = OlxListing(shop_id=shop_id, product_id=product.id)
            self.db.add(listing)
        if listing.is_removed:
            logger.info(f"[OLX Sync] Listing {external_id} was removed locally, leaving it removed")
        else:
            listing.external_listing_id = external_id
            listing.status = status.value
            listing.extra_data = dict(details)
            listing.synced_at = utc_now()
            if status == ListingStatus.PUBLISHED and listing.published_at is None:
                listing.published_at = utc_now()
        await self.db.flush()

        if image_urls and self.image_fetcher is not None:
            await self.image_fetcher.replace_images(self.db, product, image_urls)

        await self.db.commit()
        return outcome

    async def sync_from_marketplace(
        self,
        shop_id: int,
        limit: Optional[int] = None,
        status_filter: Union[str, Sequence[str], None] = None,
        category_ids: Optional[Sequence[int]] = None,
        skip_existing: bool = False,
    ) -> MarketplaceSyncResult:
        result = MarketplaceSyncResult()
        if isinstance(status_filter, str):
            status_filter = [status_filter]
        statuses = {s.lower() for s in status_filter or []}
        categories = {int(c) for c in category_ids or []}

        user_name = await self.olx_user_name(shop_id)
        logger.info(f"[OLX Sync] Starting sync for shop {shop_id} (user {user_name}, limit {limit})")
        listings = await self.fetch_listings(user_name, limit, result)

        for index, summary in enumerate(listings, start=1):
            external_id = str(summary.get("id"))
            logger.debug(f"[OLX Sync] Processing listing {index}/{len(listings)}: {external_id}")

            if statuses and (summary.get("status") or "").lower() not in statuses:
                result.skipped += 1
                continue

            if skip_existing and await self._existing_listing(shop_id, external_id):
                logger.info(f"[OLX Sync] Skipping already synced listing {external_id}")
                result.skipped += 1
                continue

            try:
                details = unwrap_data(await self.client.get_listing(external_id))
            except OLXAPIError as e:
                logger.error(f"[OLX Sync] Failed to fetch listing {external_id}: {e}")
                result.failed += 1
                result.errors.append(f"Listing {external_id}: {e}")
                continue
            if not isinstance(details, dict):
                details = dict(summary)

            if categories and str(details.get("category_id")) not in {str(c) for c in categories}:
                result.skipped += 1
                continue

            try:
                outcome = await self.sync_listing(shop_id, summary, details)
            except ReferentialInconsistencyError as e:
                await self.db.rollback()
                logger.warning(f"[OLX Sync] {e}")
                result.skipped += 1
                result.errors.append(str(e))
                continue
            except Exception as e:
                await self.db.rollback()
                logger.exception(f"[OLX Sync] Error syncing listing {external_id}: {e}")
                result.failed += 1
                result.errors.append(f"Listing {external_id}: {e}")
                continue

            if outcome == "imported":
                result.imported += 1
            else:
                result.updated += 1

        logger.info(
            f"[OLX Sync] Completed: {result.imported} imported, {result.updated} updated, "
            f"{result.skipped} skipped, {result.failed} failed"
        )
        return result
