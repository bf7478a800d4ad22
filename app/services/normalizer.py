# app/services/normalizer.py
"""
Turns one staged record into a canonical Product.

The pure half (normalize_attributes and its parsers) knows nothing about the
database so it can be tested on plain dicts. ProductNormalizer adds the
upsert on (shop, source, sku) and the image download.
"""

import json
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.enums import Currency, ImportSource
from app.core.exceptions import ValidationError
from app.models.imported_product import ImportedProduct
from app.models.product import Product
from app.schemas.product import ScrapedProduct
from app.services.image_fetcher import ImageFetcher, split_image_urls

logger = logging.getLogger(__name__)

TEXT_FIELDS = (
    "title", "sku", "source_id", "brand", "category", "description",
    "technical_description", "models", "branch_availability",
)
# Keys consumed by normalization; everything else is kept in specs
CONSUMED_KEYS = set(TEXT_FIELDS) | {
    "price", "currency", "stock", "quantity", "image_urls", "images", "specs", "source", "source_url",
}
NOT_PRICE_CHARS = re.compile(r"[^\d.]")
LEADING_INT = re.compile(r"-?\d+")
URL_ID = re.compile(r"/(\d+)(?:/|$)")


def parse_price(value) -> Optional[Decimal]:
    """Keep digits and dots only. Blank becomes None; an unparseable remainder is an error."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    cleaned = NOT_PRICE_CHARS.sub("", str(value))
    if not cleaned:
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        raise ValidationError(f"Invalid price: {value!r}")


def parse_stock(value) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float, Decimal)):
        return int(value)
    match = LEADING_INT.search(str(value))
    return int(match.group()) if match else 0


def parse_currency(value, default: str) -> str:
    code = (str(value).strip().upper() if value not in (None, "") else default.upper())
    try:
        return Currency(code).value
    except ValueError:
        raise ValidationError(f"Unsupported currency: {value!r}")


def extract_specs(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Unmapped columns verbatim, plus a nested specs object when the source has one."""
    specs = {k: v for k, v in raw.items() if k not in CONSUMED_KEYS}

    nested = raw.get("specs")
    if isinstance(nested, str) and nested.strip():
        try:
            nested = json.loads(nested)
        except json.JSONDecodeError:
            nested = {"specs": nested}
    if isinstance(nested, dict):
        specs.update(nested)
    return specs


def source_id_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    match = URL_ID.search(url)
    return match.group(1) if match else url


def _clean_text(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_attributes(raw: Dict[str, Any], source: str, default_currency: Optional[str] = None) -> Dict[str, Any]:
    """
    Canonical product attributes from a raw record.

    Raises ValidationError when the record cannot become a product.
    """
    if source == ImportSource.INTERCARS.value:
        try:
            raw = ScrapedProduct.model_validate(raw).model_dump(exclude_none=True)
        except PydanticValidationError as e:
            raise ValidationError(f"Scraped product does not match the expected format: {e}") from e

    attrs = {field: _clean_text(raw.get(field)) for field in TEXT_FIELDS}
    if not attrs["title"]:
        raise ValidationError("title is required")

    if not attrs["source_id"]:
        attrs["source_id"] = source_id_from_url(raw.get("source_url"))

    price = parse_price(raw.get("price"))
    attrs["price"] = price if price is not None else Decimal("0")
    attrs["currency"] = parse_currency(raw.get("currency"), default_currency or get_settings().DEFAULT_CURRENCY)
    attrs["stock"] = parse_stock(raw.get("stock") if raw.get("stock") not in (None, "") else raw.get("quantity"))
    attrs["specs"] = extract_specs(raw)
    attrs["image_urls"] = split_image_urls(raw.get("image_urls") or raw.get("images"))
    return attrs


class ProductNormalizer:
    """Applies a staged record to the catalogue."""

    def __init__(self, db: AsyncSession, image_fetcher: Optional[ImageFetcher] = None):
        self.db = db
        self.image_fetcher = image_fetcher or ImageFetcher()

    async def find_existing(self, shop_id: int, source: str, sku: Optional[str], source_id: Optional[str]) -> Optional[Product]:
        if sku:
            key = Product.sku == sku
        elif source_id:
            key = Product.source_id == source_id
        else:
            return None
        stmt = select(Product).where(Product.shop_id == shop_id, Product.source == source, key)
        return (await self.db.execute(stmt)).scalars().first()

    async def upsert(self, shop_id: int, source: str, attrs: Dict[str, Any], template_id: Optional[int] = None) -> Tuple[Product, bool]:
        product = await self.find_existing(shop_id, source, attrs.get("sku"), attrs.get("source_id"))
        created = product is None
        if created:
            if not attrs.get("sku"):
                logger.warning(f"Product '{attrs.get('title')}' has no sku; inserting without de-duplication")
            product = Product(shop_id=shop_id, source=source)
            self.db.add(product)

        for key, value in attrs.items():
            setattr(product, key, value)
        if template_id:
            product.olx_category_template_id = template_id

        await self.db.flush()
        return product, created

    async def normalize(self, record: ImportedProduct, template_id: Optional[int] = None) -> Product:
        attrs = normalize_attributes(record.raw_data or {}, record.source)
        product, created = await self.upsert(record.shop_id, record.source, attrs, template_id)

        if attrs["image_urls"]:
            await self.image_fetcher.replace_images(self.db, product, attrs["image_urls"])

        logger.debug(f"{'Created' if created else 'Updated'} product {product.id} from record {record.id}")
        return product
