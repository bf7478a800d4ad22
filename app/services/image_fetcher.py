# app/services/image_fetcher.py
"""
Downloads product images from their source urls into local storage.

A failed download never fails the product: it is logged and skipped, and the
product simply ends up with fewer images.
"""

import logging
import os
import re
from pathlib import Path
from typing import List, Optional, Tuple
from urllib.parse import urlparse

import aiofiles
import httpx
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.exceptions import ImageFetchError
from app.models.product import Product
from app.models.product_image import ProductImage

logger = logging.getLogger(__name__)

SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]+")


def split_image_urls(value) -> List[str]:
    """Accept a list or a comma separated string; drop blanks."""
    if not value:
        return []
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)
    return [str(u).strip() for u in items if u and str(u).strip()]


class ImageFetcher:
    def __init__(self, timeout: Optional[float] = None, upload_dir: Optional[str] = None):
        settings = get_settings()
        self.timeout = timeout if timeout is not None else settings.IMAGE_FETCH_TIMEOUT
        self.upload_dir = Path(upload_dir or settings.IMAGE_UPLOAD_DIR)

    async def download(self, url: str) -> Tuple[bytes, str]:
        """Fetch one image. Raises ImageFetchError on any failure."""
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ImageFetchError(f"Invalid image URL: {url}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                response = await client.get(url)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ImageFetchError(f"Timed out after {self.timeout}s fetching {url}") from e
        except httpx.HTTPStatusError as e:
            raise ImageFetchError(f"HTTP {e.response.status_code} fetching {url}") from e
        except httpx.HTTPError as e:
            raise ImageFetchError(f"Error fetching {url}: {e}") from e

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if content_type and not content_type.startswith("image/"):
            raise ImageFetchError(f"URL does not point to an image: {content_type}")

        return response.content, content_type or "image/jpeg"

    def _filename(self, product: Product, index: int, url: str) -> str:
        ext = os.path.splitext(urlparse(url).path)[1] or ".jpg"
        stem = SAFE_NAME.sub("_", product.sku or str(product.id))
        return f"{stem}_{index}{ext}"

    async def _store(self, product: Product, filename: str, data: bytes) -> Path:
        folder = self.upload_dir / f"shop_{product.shop_id}" / f"product_{product.id}"
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / filename
        async with aiofiles.open(path, "wb") as out_file:
            await out_file.write(data)
        return path

    async def replace_images(self, db: AsyncSession, product: Product, urls: List[str]) -> Tuple[int, List[str]]:
        """
        Replace the product's image set with freshly downloaded copies.

        Returns (saved, failures) where failures are human readable messages.
        """
        await db.execute(delete(ProductImage).where(ProductImage.product_id == product.id))

        saved = 0
        failures = []
        for index, url in enumerate(urls):
            try:
                data, content_type = await self.download(url)
                filename = self._filename(product, index, url)
                await self._store(product, filename, data)
            except ImageFetchError as e:
                logger.warning(f"Skipping image {index} for product {product.id}: {e}")
                failures.append(str(e))
                continue
            except OSError as e:
                logger.warning(f"Could not store image {index} for product {product.id}: {e}")
                failures.append(f"Could not store {url}: {e}")
                continue

            db.add(ProductImage(
                product_id=product.id,
                source_url=url,
                filename=filename,
                content_type=content_type,
                byte_size=len(data),
                position=index,
            ))
            saved += 1

        await db.flush()
        if failures:
            logger.info(f"Product {product.id}: {saved}/{len(urls)} images saved")
        return saved, failures

    def image_path(self, image: ProductImage, shop_id: int) -> Path:
        return self.upload_dir / f"shop_{shop_id}" / f"product_{image.product_id}" / image.filename
