# app/services/scraper_service.py
"""
Bridge to the external supplier scraper.

The scraper itself is a black box (a Node/Playwright script). We start it as a
subprocess with the shop's supplier credentials in its environment, wait for
it with a timeout that scales with the number of products requested, then
pick up the newest products-*.json it wrote and feed that through the normal
staging/normalization pipeline.
"""

import asyncio
import logging
import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.enums import ImportPhase, ImportSource, ImportStatus
from app.core.exceptions import ParseError, ScraperError
from app.database import async_session
from app.models.import_log import ImportLog
from app.models.shop import Shop
from app.services import import_tracker
from app.services.csv_import.reader import read_json_source
from app.services.image_fetcher import ImageFetcher
from app.services.import_service import ImportProcessor, create_import_log, stage_batch

logger = logging.getLogger(__name__)

MAX_CAPTURED_OUTPUT = 4000


@dataclass
class ScrapeResult:
    success: bool
    output: str = ""
    file: Optional[Path] = None


class ScraperService:
    def __init__(self, command: Optional[str] = None, workdir: Optional[str] = None, data_dir: Optional[str] = None):
        settings = get_settings()
        self.command = command or settings.SCRAPER_COMMAND
        self.workdir = Path(workdir or settings.SCRAPER_DIR)
        self.data_dir = Path(data_dir or settings.SCRAPER_DATA_DIR)
        self.timeout_per_product = settings.SCRAPER_TIMEOUT_PER_PRODUCT
        self.min_timeout = settings.SCRAPER_MIN_TIMEOUT

    def timeout_for(self, max_products: int) -> int:
        return max(self.min_timeout, max_products * self.timeout_per_product)

    def latest_products_file(self) -> Optional[Path]:
        files = list(self.data_dir.glob("products-*.json"))
        if not files:
            return None
        return max(files, key=lambda p: p.stat().st_mtime)

    async def run_scraper(
        self,
        username: str,
        password: str,
        max_products: int = 10,
        product_url: Optional[str] = None,
        headless: bool = True,
    ) -> ScrapeResult:
        """Run the scraper process. Raises ScraperError on a non-zero exit, a timeout or missing output."""
        if not self.workdir.exists():
            raise ScraperError(f"Scraper directory not found: {self.workdir}")

        env = dict(os.environ)
        env.update({
            "INTERCARS_USERNAME": username,
            "INTERCARS_PASSWORD": password,
            "MAX_PRODUCTS": str(max_products),
            "HEADLESS": "true" if headless else "false",
        })
        if product_url:
            env["PRODUCT_URL"] = product_url

        timeout = self.timeout_for(max_products)
        previous = self.latest_products_file()
        previous_mtime = previous.stat().st_mtime if previous else None
        logger.info(f"[Scraper] Starting '{self.command}' (max {max_products} products, timeout {timeout}s)")

        try:
            process = await asyncio.create_subprocess_exec(
                *shlex.split(self.command),
                cwd=str(self.workdir),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            raise ScraperError(f"Cannot start scraper '{self.command}': {e}") from e
        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise ScraperError(f"Scraper timed out after {timeout}s")

        output = (stdout or b"").decode("utf-8", errors="replace")[-MAX_CAPTURED_OUTPUT:]
        if process.returncode != 0:
            raise ScraperError(f"Scraper exited with code {process.returncode}: {output.strip()[-500:]}")

        json_file = self.latest_products_file()
        if json_file is None or (json_file == previous and json_file.stat().st_mtime == previous_mtime):
            raise ScraperError("Scraping completed but no data file found")

        logger.info(f"[Scraper] Finished, output in {json_file.name}")
        return ScrapeResult(success=True, output=output, file=json_file)


async def scrape_and_import(
    shop_id: int,
    max_products: int = 10,
    product_url: Optional[str] = None,
    import_log_id: Optional[int] = None,
    template_id: Optional[int] = None,
    session_factory: Callable = async_session,
    scraper: Optional[ScraperService] = None,
    image_fetcher: Optional[ImageFetcher] = None,
) -> Optional[ImportStatus]:
    """
    Scrape the supplier catalogue for a shop and import what comes back.

    Progress is reported on the import log through current_phase and
    scraped_count. A scraper or output failure fails the log and returns FAILED;
    anything unexpected also fails the log and is re-raised.
    """
    scraper = scraper or ScraperService()

    async with session_factory() as db:
        if import_log_id is None:
            log = await create_import_log(db, shop_id, ImportSource.INTERCARS.value, template_id=template_id)
            import_log_id = log.id
            await db.commit()

        try:
            return await _scrape_and_import(
                db, shop_id, import_log_id, max_products, product_url, scraper, image_fetcher
            )
        except Exception as e:
            logger.exception(f"[Scraper] Import {import_log_id} crashed: {e}")
            await db.rollback()
            await import_tracker.fail_import(db, import_log_id, f"Import crashed: {e}")
            await db.commit()
            raise


async def _scrape_and_import(
    db: AsyncSession,
    shop_id: int,
    import_log_id: int,
    max_products: int,
    product_url: Optional[str],
    scraper: ScraperService,
    image_fetcher: Optional[ImageFetcher],
) -> Optional[ImportStatus]:
    await _start(db, import_log_id, max_products)

    shop = await db.get(Shop, shop_id)
    credentials = shop.integration_credentials(ImportSource.INTERCARS.value) if shop else {}
    if not credentials.get("username") or not credentials.get("password"):
        await import_tracker.fail_import(db, import_log_id, "Supplier username and password are required")
        await db.commit()
        return ImportStatus.FAILED

    await import_tracker.set_phase(db, import_log_id, ImportPhase.SCRAPING)
    await db.commit()

    try:
        result = await scraper.run_scraper(
            credentials["username"],
            credentials["password"],
            max_products=max_products,
            product_url=product_url,
        )
        batch = read_json_source(result.file)
    except (ScraperError, ParseError) as e:
        await import_tracker.fail_import(db, import_log_id, str(e))
        await db.commit()
        return ImportStatus.FAILED

    log = await db.get(ImportLog, import_log_id, populate_existing=True)
    # the estimate from _start is replaced by what was actually scraped
    log.total_rows = 0
    await stage_batch(db, log, batch)
    await import_tracker.set_phase(db, import_log_id, ImportPhase.IMPORTING, scraped_count=len(batch))
    await db.commit()
    logger.info(f"[Scraper] Import {import_log_id}: {len(batch)} products scraped, importing")

    return await ImportProcessor(db, image_fetcher=image_fetcher).run(import_log_id)


async def _start(db: AsyncSession, import_log_id: int, max_products: int) -> None:
    await import_tracker.mark_processing(db, import_log_id)
    await import_tracker.set_phase(db, import_log_id, ImportPhase.STARTING, total_rows=max_products, scraped_count=0)
    await db.commit()
