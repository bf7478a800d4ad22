# app/services/olx/listing_service.py
"""
Publishing products to OLX and keeping the local OlxListing row in step.

Every remote write goes through the shop's OLXClient. The listing row is
committed as "pending" before the remote call and ends up either with the
remote snapshot or as "failed" with the error in its metadata.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiofiles
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import ListingStatus
from app.core.exceptions import (
    BaseServiceError,
    ImageFetchError,
    InvalidStatusTransition,
    OLXAPIError,
    OLXNotFoundError,
    ProductNotFoundError,
    ReferentialInconsistencyError,
    ValidationError,
)
from app.database import utc_now
from app.models.olx_category import OlxCategory, OlxCategoryAttribute
from app.models.olx_category_template import OlxCategoryTemplate
from app.models.olx_listing import OlxListing
from app.models.olx_location import OlxLocation
from app.models.product import Product
from app.models.product_image import ProductImage
from app.schemas.olx import BulkItemResult, BulkResult
from app.services.image_fetcher import ImageFetcher, split_image_urls
from app.services.olx.attribute_mapper import build_attributes
from app.services.olx.client import OLXClient, unwrap_data
from app.services.olx.payload_builder import build_listing_payload

logger = logging.getLogger(__name__)

MAX_IMAGES = 20
PREFERRED_IMAGE_SIZE = "300x300"


@dataclass
class PublishContext:
    product: Product
    template: OlxCategoryTemplate
    category: OlxCategory
    location: Optional[OlxLocation]
    attributes: List[Dict[str, Any]]

    def payload(self) -> Dict[str, Any]:
        return build_listing_payload(self.product, self.template, self.category, self.location, self.attributes)


class OLXListingService:
    def __init__(self, db: AsyncSession, client: OLXClient, image_fetcher: Optional[ImageFetcher] = None):
        self.db = db
        self.client = client
        self.image_fetcher = image_fetcher or ImageFetcher()

    #####################################################
    ################## Lookups ##########################
    #####################################################

    async def get_product(self, shop_id: int, product_id: int) -> Product:
        product = await self.db.get(Product, product_id)
        if product is None or product.shop_id != shop_id:
            raise ProductNotFoundError(f"Product {product_id} not found")
        return product

    async def get_listing(self, product_id: int) -> Optional[OlxListing]:
        """The product's active listing, or its latest removed one when there is none."""
        stmt = (
            select(OlxListing)
            .where(OlxListing.product_id == product_id)
            .order_by((OlxListing.status == ListingStatus.REMOVED.value).asc(), OlxListing.id.desc())
            .limit(1)
        )
        return (await self.db.execute(stmt)).scalars().first()

    async def _require_listing(self, product_id: int) -> OlxListing:
        listing = await self.get_listing(product_id)
        if listing is None or not listing.external_listing_id:
            raise ValidationError(f"Product {product_id} has no OLX listing")
        if listing.is_removed:
            raise InvalidStatusTransition(f"Listing {listing.external_listing_id} was removed from OLX")
        return listing

    async def prepare(self, product: Product, template_id: Optional[int] = None) -> PublishContext:
        """
        Check everything a listing needs and resolve its attributes.

        Raises ValidationError for missing product data or a template from
        another shop, ReferentialInconsistencyError when the template points at
        taxonomy that is no longer stored locally.
        """
        errors = []
        if not (product.title or "").strip():
            errors.append("Product must have a title")
        if product.is_discarded:
            errors.append("Product is discarded")

        template_id = template_id or product.olx_category_template_id
        template = await self.db.get(OlxCategoryTemplate, template_id) if template_id else None
        if template is None:
            errors.append("Product must be associated with a category template")
        elif template.shop_id != product.shop_id:
            raise ValidationError(f"Template {template_id} does not belong to shop {product.shop_id}")
        else:
            problem = template.location_problem()
            if problem:
                errors.append(f"Category template {problem}")

        if errors:
            logger.error(f"[OLX Listing] Validation failed for product {product.id}: {', '.join(errors)}")
            raise ValidationError(", ".join(errors))

        category = await self.db.get(OlxCategory, template.olx_category_id)
        if category is None:
            raise ReferentialInconsistencyError(
                f"Template '{template.name}' points at OLX category {template.olx_category_id} which is not "
                f"in the local taxonomy; run a taxonomy sync or pick another category"
            )

        location = None
        if template.olx_location_id:
            location = await self.db.get(OlxLocation, template.olx_location_id)
            if location is None:
                raise ReferentialInconsistencyError(
                    f"Template '{template.name}' points at OLX location {template.olx_location_id} which is not "
                    f"in the local taxonomy; run a taxonomy sync or pick another location"
                )

        category_attributes = (
            await self.db.execute(
                select(OlxCategoryAttribute).where(OlxCategoryAttribute.olx_category_id == category.id)
            )
        ).scalars().all()
        attributes = build_attributes(product, template, category_attributes)

        if product.olx_category_template_id != template.id:
            product.olx_category_template_id = template.id

        return PublishContext(product, template, category, location, attributes)

    #####################################################
    ################## Listing state ####################
    #####################################################

    @staticmethod
    def _store_snapshot(listing: OlxListing, response: Dict[str, Any]) -> None:
        snapshot = dict(response or {})
        previous = (listing.extra_data or {}).get("previous_external_ids")
        if previous:
            snapshot["previous_external_ids"] = previous
        listing.extra_data = snapshot
        listing.synced_at = utc_now()

    async def _mark_failed(self, listing: OlxListing, error: Exception) -> None:
        listing.status = ListingStatus.FAILED.value
        listing.merge_metadata(
            error=str(error) or type(error).__name__,
            error_class=type(error).__name__,
            failed_at=utc_now().isoformat(),
        )
        await self.db.commit()

    #####################################################
    ################## Operations #######################
    #####################################################

    async def publish(
        self,
        shop_id: int,
        product_id: int,
        template_id: Optional[int] = None,
        publish: bool = True,
    ) -> OlxListing:
        """
        Create the product's OLX listing, or update it when one already exists.

        A listing removed from OLX is never revived: publishing again creates a
        new remote listing and keeps the old id in previous_external_ids.
        """
        product = await self.get_product(shop_id, product_id)
        logger.info(f"[OLX Listing] Publishing product {product.id} ({product.title})")
        context = await self.prepare(product, template_id)
        payload = context.payload()

        listing = await self.get_listing(product.id)
        if listing is not None and listing.external_listing_id and not listing.is_removed:
            return await self._update(context, listing, payload, publish=publish)

        if listing is None:
            listing = OlxListing(shop_id=shop_id, product_id=product.id, extra_data={})
            self.db.add(listing)
        elif listing.is_removed:
            previous = list((listing.extra_data or {}).get("previous_external_ids") or [])
            previous.append(listing.external_listing_id)
            listing = OlxListing(
                shop_id=shop_id, product_id=product.id, extra_data={"previous_external_ids": previous}
            )
            self.db.add(listing)
        listing.status = ListingStatus.PENDING.value
        await self.db.commit()

        try:
            response = unwrap_data(await self.client.create_listing(payload))
            external_id = response.get("id") if isinstance(response, dict) else None
            if not external_id:
                raise OLXAPIError("OLX did not return a listing id", payload=response)

            listing.external_listing_id = str(external_id)
            listing.status = ListingStatus.from_remote(response.get("status")).value
            self._store_snapshot(listing, response)
            await self.db.commit()
            logger.info(f"[OLX Listing] Created listing {external_id} for product {product.id}")
        except Exception as e:
            logger.error(f"[OLX Listing] Failed to create listing for product {product.id}: {type(e).__name__} - {e}")
            await self._mark_failed(listing, e)
            raise

        await self.upload_images(product, listing.external_listing_id)
        if publish:
            await self._publish_remote(listing)
        return listing

    async def _update(self, context: PublishContext, listing: OlxListing, payload: Dict, publish: bool = False) -> OlxListing:
        external_id = listing.external_listing_id
        logger.info(f"[OLX Listing] Updating listing {external_id} for product {context.product.id}")
        try:
            response = unwrap_data(await self.client.update_listing(external_id, payload))
        except Exception as e:
            logger.error(f"[OLX Listing] Failed to update listing {external_id}: {e}")
            await self._mark_failed(listing, e)
            raise

        response = response if isinstance(response, dict) else {}
        if response.get("status"):
            listing.status = ListingStatus.from_remote(response["status"]).value
        elif listing.status in (ListingStatus.PENDING.value, ListingStatus.FAILED.value):
            listing.status = ListingStatus.DRAFT.value
        self._store_snapshot(listing, response)
        await self.db.commit()

        await self.upload_images(context.product, external_id)
        if publish and not listing.is_published:
            await self._publish_remote(listing)
        return listing

    async def _publish_remote(self, listing: OlxListing) -> OlxListing:
        try:
            response = unwrap_data(await self.client.publish_listing(listing.external_listing_id))
        except Exception as e:
            logger.error(f"[OLX Listing] Failed to publish listing {listing.external_listing_id}: {e}")
            await self._mark_failed(listing, e)
            raise

        listing.status = ListingStatus.PUBLISHED.value
        listing.published_at = utc_now()
        if isinstance(response, dict) and response:
            listing.merge_metadata(**response)
        listing.synced_at = utc_now()
        await self.db.commit()
        logger.info(f"[OLX Listing] Published listing {listing.external_listing_id}")
        return listing

    async def update_listing(self, shop_id: int, product_id: int, template_id: Optional[int] = None) -> OlxListing:
        product = await self.get_product(shop_id, product_id)
        listing = await self._require_listing(product.id)
        context = await self.prepare(product, template_id)
        return await self._update(context, listing, context.payload())

    async def unpublish_listing(self, shop_id: int, product_id: int) -> OlxListing:
        product = await self.get_product(shop_id, product_id)
        listing = await self._require_listing(product.id)

        response = unwrap_data(await self.client.unpublish_listing(listing.external_listing_id))
        listing.status = ListingStatus.UNPUBLISHED.value
        if isinstance(response, dict) and response:
            listing.merge_metadata(**response)
        listing.synced_at = utc_now()
        await self.db.commit()
        logger.info(f"[OLX Listing] Unpublished listing {listing.external_listing_id}")
        return listing

    async def remove_listing(self, shop_id: int, product_id: int) -> OlxListing:
        """DELETE the remote listing. The external id stays on the row for reference."""
        product = await self.get_product(shop_id, product_id)
        listing = await self._require_listing(product.id)

        try:
            await self.client.delete_listing(listing.external_listing_id)
        except OLXNotFoundError:
            logger.warning(f"[OLX Listing] Listing {listing.external_listing_id} was already gone on OLX")

        listing.status = ListingStatus.REMOVED.value
        listing.merge_metadata(removed_at=utc_now().isoformat())
        listing.synced_at = utc_now()
        await self.db.commit()
        logger.info(f"[OLX Listing] Deleted listing {listing.external_listing_id}")
        return listing

    #####################################################
    ################## Images ###########################
    #####################################################

    async def _image_sources(self, product: Product) -> List[tuple]:
        """(filename, loader) pairs: local copies first, source urls otherwise."""
        images = (
            await self.db.execute(
                select(ProductImage).where(ProductImage.product_id == product.id).order_by(ProductImage.position)
            )
        ).scalars().all()
        if images:
            return [(image.filename, self.image_fetcher.image_path(image, product.shop_id)) for image in images]

        urls = split_image_urls(product.image_urls)
        preferred = [u for u in urls if PREFERRED_IMAGE_SIZE in u]
        return [(u.rsplit("/", 1)[-1] or "image.jpg", u) for u in (preferred or urls)]

    async def upload_images(self, product: Product, external_id: str) -> int:
        """Upload up to MAX_IMAGES images. Failures are logged, never raised."""
        sources = (await self._image_sources(product))[:MAX_IMAGES]
        if not sources:
            logger.info(f"[OLX Listing] No images to upload for product {product.id}")
            return 0

        uploaded = 0
        for filename, source in sources:
            try:
                if isinstance(source, str):
                    content, content_type = await self.image_fetcher.download(source)
                else:
                    async with aiofiles.open(source, "rb") as f:
                        content = await f.read()
                    content_type = "image/png" if source.suffix.lower() == ".png" else "image/jpeg"
                await self.client.upload_image(external_id, filename, content, content_type)
                uploaded += 1
            except (ImageFetchError, OLXAPIError, OSError) as e:
                logger.warning(f"[OLX Listing] Image {filename} for listing {external_id} failed: {e}")

        logger.info(f"[OLX Listing] Uploaded {uploaded}/{len(sources)} images to listing {external_id}")
        return uploaded

    #####################################################
    ################## Bulk #############################
    #####################################################

    async def _bulk(self, product_ids: List[int], operation) -> BulkResult:
        result = BulkResult()
        for product_id in product_ids:
            try:
                listing = await operation(product_id)
                result.add(BulkItemResult(
                    product_id=product_id,
                    success=True,
                    listing_id=listing.id,
                    external_listing_id=listing.external_listing_id,
                ))
            except BaseServiceError as e:
                result.add(BulkItemResult(
                    product_id=product_id, success=False, error=str(e), error_type=type(e).__name__
                ))
            except Exception as e:
                logger.exception(f"[OLX Listing] Unexpected error for product {product_id}: {e}")
                await self.db.rollback()
                result.add(BulkItemResult(
                    product_id=product_id, success=False, error=str(e), error_type=type(e).__name__
                ))

        logger.info(f"[OLX Listing] Bulk: {result.succeeded}/{result.total} succeeded")
        return result

    async def bulk_publish(
        self, shop_id: int, product_ids: List[int], template_id: Optional[int] = None, publish: bool = True
    ) -> BulkResult:
        return await self._bulk(product_ids, lambda pid: self.publish(shop_id, pid, template_id, publish))

    async def bulk_update(self, shop_id: int, product_ids: List[int]) -> BulkResult:
        return await self._bulk(product_ids, lambda pid: self.update_listing(shop_id, pid))

    async def bulk_remove(self, shop_id: int, product_ids: List[int]) -> BulkResult:
        return await self._bulk(product_ids, lambda pid: self.remove_listing(shop_id, pid))
