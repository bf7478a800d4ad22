# app/services/import_service.py
"""
Batch import pipeline: read -> stage -> normalize -> track.

start_import reads and stages synchronously so the caller gets an import id
and a row count straight away; process_import does the slow part and is meant
to run as a background task with its own session.

Each staged record is claimed with a conditional UPDATE before it is worked
on, so two workers running the same import never process a record twice.
"""

import logging
from typing import Callable, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.enums import ImportSource, ImportStatus, ImportPhase, ImportedProductStatus
from app.core.exceptions import (
    ImportNotFoundError,
    InvalidStatusTransition,
    ParseError,
    ValidationError,
)
from app.database import async_session
from app.models.import_log import ImportLog
from app.models.imported_product import ImportedProduct
from app.models.olx_category_template import OlxCategoryTemplate
from app.schemas.imports import ImportCounters, ImportStarted, ImportStatusRead
from app.services import import_tracker
from app.services.csv_import.column_mapper import ColumnMapping, apply_mapping, resolve_mapping
from app.services.csv_import.reader import RawBatch, RawInput, read_csv_source, read_json_source
from app.services.image_fetcher import ImageFetcher
from app.services.import_tracker import RecordResult
from app.services.normalizer import ProductNormalizer

logger = logging.getLogger(__name__)


async def validate_template(db: AsyncSession, shop_id: int, template_id: Optional[int]) -> Optional[OlxCategoryTemplate]:
    if not template_id:
        return None
    template = await db.get(OlxCategoryTemplate, template_id)
    if template is None or template.shop_id != shop_id:
        raise ValidationError(f"Template {template_id} does not belong to shop {shop_id}")
    return template


async def create_import_log(
    db: AsyncSession,
    shop_id: int,
    source: str,
    filename: Optional[str] = None,
    template_id: Optional[int] = None,
) -> ImportLog:
    await validate_template(db, shop_id, template_id)
    log = ImportLog(
        shop_id=shop_id,
        source=ImportSource(source).value,
        filename=filename,
        status=ImportStatus.PENDING.value,
        current_phase=ImportPhase.STARTING.value,
        olx_category_template_id=template_id,
        error_messages=[],
    )
    db.add(log)
    await db.flush()
    return log


async def stage_batch(
    db: AsyncSession,
    log: ImportLog,
    batch: RawBatch,
    mapping: Optional[ColumnMapping] = None,
) -> int:
    """Store every raw row as a pending ImportedProduct and set total_rows."""
    for row_number, row in enumerate(batch.rows, start=1):
        raw = apply_mapping(row, mapping.mappings) if mapping else dict(row)
        db.add(ImportedProduct(
            shop_id=log.shop_id,
            import_log_id=log.id,
            source=log.source,
            row_number=row_number,
            raw_data=raw,
            status=ImportedProductStatus.PENDING.value,
        ))

    log.total_rows = (log.total_rows or 0) + len(batch.rows)
    if mapping:
        log.column_mapping = dict(mapping.mappings)
        log.mapping_confidence = mapping.confidence
    await db.flush()
    return len(batch.rows)


def read_source(source: str, raw_input: RawInput) -> RawBatch:
    if ImportSource(source) == ImportSource.CSV:
        return read_csv_source(raw_input)
    return read_json_source(raw_input)


async def start_import(
    db: AsyncSession,
    shop_id: int,
    source: str,
    raw_input: RawInput,
    column_mapping: Optional[Dict[str, str]] = None,
    template_id: Optional[int] = None,
    filename: Optional[str] = None,
) -> ImportStarted:
    """
    Read the source, stage its rows and return the new import's id.

    A source that cannot be read fails the import (the failed log is kept for
    inspection) and the ParseError is re-raised to the caller.
    """
    log = await create_import_log(db, shop_id, source, filename=filename, template_id=template_id)
    await db.commit()

    try:
        batch = read_source(source, raw_input)
        mapping = resolve_mapping(batch.headers, column_mapping) if log.source == ImportSource.CSV.value else None
    except (ParseError, ValidationError) as e:
        await import_tracker.fail_import(db, log.id, str(e))
        await db.commit()
        raise

    staged = await stage_batch(db, log, batch, mapping)
    await db.commit()

    if mapping:
        logger.info(
            f"Import {log.id}: staged {staged} rows, mapping confidence {mapping.confidence} "
            f"({len(mapping.mappings)}/{len(batch.headers)} columns mapped)"
        )
    else:
        logger.info(f"Import {log.id}: staged {staged} records")

    return ImportStarted(
        import_log_id=log.id,
        total_rows=staged,
        column_mapping=mapping.mappings if mapping else {},
        confidence=mapping.confidence if mapping else 0.0,
    )


class ImportProcessor:
    """Works through the pending records of one import."""

    def __init__(self, db: AsyncSession, image_fetcher: Optional[ImageFetcher] = None):
        self.db = db
        self.normalizer = ProductNormalizer(db, image_fetcher=image_fetcher)

    async def claim(self, record_id: int) -> bool:
        result = await self.db.execute(
            update(ImportedProduct)
            .where(ImportedProduct.id == record_id)
            .where(ImportedProduct.may_become(ImportedProductStatus.PROCESSING))
            .values(status=ImportedProductStatus.PROCESSING.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def attempt(self, record_id: int, template_id: Optional[int]) -> RecordResult:
        """Normalize one record; any failure is captured in the result, never raised."""
        record = await self.db.get(ImportedProduct, record_id, populate_existing=True)
        row = record.row_number
        try:
            product = await self.normalizer.normalize(record, template_id=template_id)
            return RecordResult(imported_product_id=record_id, ok=True, product_id=product.id, row=row)
        except Exception as e:
            logger.warning(f"Record {record_id} (row {row}) failed: {e}")
            # drops the half-applied product; objects are expired, use ids only from here
            await self.db.rollback()
            return RecordResult(imported_product_id=record_id, ok=False, error=str(e) or type(e).__name__, row=row)

    async def aggregate(self, import_log_id: int, result: RecordResult) -> None:
        """Store the record outcome and fold it into the log in one transaction."""
        status = ImportedProductStatus.IMPORTED if result.ok else ImportedProductStatus.ERROR
        values = {"status": status.value, "error_text": None if result.ok else result.error}
        if result.product_id:
            values["product_id"] = result.product_id

        stored = await self.db.execute(
            update(ImportedProduct)
            .where(ImportedProduct.id == result.imported_product_id)
            .where(ImportedProduct.may_become(status))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if stored.rowcount != 1:
            await self.db.rollback()
            raise InvalidStatusTransition(
                f"Record {result.imported_product_id} is no longer processing, cannot mark it {status.value}"
            )
        await import_tracker.record_result(self.db, import_log_id, result)
        await self.db.commit()

    async def run(self, import_log_id: int) -> Optional[ImportStatus]:
        log = await self.db.get(ImportLog, import_log_id)
        if log is None:
            raise ImportNotFoundError(f"Import {import_log_id} not found")
        template_id = log.olx_category_template_id

        record_ids = (
            await self.db.execute(
                select(ImportedProduct.id)
                .where(ImportedProduct.import_log_id == import_log_id)
                .where(ImportedProduct.status == ImportedProductStatus.PENDING.value)
                .order_by(ImportedProduct.id)
            )
        ).scalars().all()

        logger.info(f"Import {import_log_id}: {len(record_ids)} pending records")
        for record_id in record_ids:
            if not await self.claim(record_id):
                # another worker has it
                await self.db.rollback()
                continue
            await import_tracker.mark_processing(self.db, import_log_id)
            await self.db.commit()

            result = await self.attempt(record_id, template_id)
            await self.aggregate(import_log_id, result)

        final = await import_tracker.finalize_if_done(self.db, import_log_id)
        await self.db.commit()
        return final


async def process_import(
    import_log_id: int,
    session_factory: Callable = async_session,
    image_fetcher: Optional[ImageFetcher] = None,
) -> Optional[ImportStatus]:
    """Background entry point: normalizes every pending record of the import."""
    async with session_factory() as db:
        try:
            return await ImportProcessor(db, image_fetcher=image_fetcher).run(import_log_id)
        except ImportNotFoundError:
            logger.error(f"Import {import_log_id} disappeared before processing")
            raise
        except Exception as e:
            logger.exception(f"Import {import_log_id} crashed: {e}")
            await db.rollback()
            await import_tracker.fail_import(db, import_log_id, f"Import crashed: {e}")
            await db.commit()
            raise


async def retry_failed(db: AsyncSession, import_log_id: int) -> int:
    """
    Put every errored record of a finished import back to pending.

    Counters are left alone; they count attempts. Returns how many records
    were re-queued.
    """
    log = await db.get(ImportLog, import_log_id, populate_existing=True)
    if log is None:
        raise ImportNotFoundError(f"Import {import_log_id} not found")
    if not ImportStatus(log.status).is_terminal:
        raise InvalidStatusTransition(f"Import {import_log_id} is still {log.status}; retry once it has finished")

    result = await db.execute(
        update(ImportedProduct)
        .where(ImportedProduct.import_log_id == import_log_id)
        .where(ImportedProduct.may_become(ImportedProductStatus.PENDING))
        .values(status=ImportedProductStatus.PENDING.value, error_text=None)
        .execution_options(synchronize_session=False)
    )
    requeued = result.rowcount or 0
    if requeued:
        await db.execute(
            update(ImportLog)
            .where(ImportLog.id == import_log_id)
            .values(status=ImportStatus.PROCESSING.value, current_phase=ImportPhase.IMPORTING.value, completed_at=None)
            .execution_options(synchronize_session=False)
        )
    await db.commit()
    logger.info(f"Import {import_log_id}: re-queued {requeued} failed records")
    return requeued


async def get_import_status(db: AsyncSession, import_log_id: int, shop_id: Optional[int] = None) -> ImportStatusRead:
    log = await db.get(ImportLog, import_log_id, populate_existing=True)
    if log is None or (shop_id is not None and log.shop_id != shop_id):
        raise ImportNotFoundError(f"Import {import_log_id} not found")

    return ImportStatusRead(
        import_log_id=log.id,
        shop_id=log.shop_id,
        source=log.source,
        status=log.status,
        current_phase=log.current_phase,
        counters=ImportCounters(
            total_rows=log.total_rows,
            processed_rows=log.processed_rows,
            successful_rows=log.successful_rows,
            failed_rows=log.failed_rows,
            scraped_count=log.scraped_count,
        ),
        progress=log.progress_percentage,
        errors=list(log.error_messages or []),
        has_errors=log.has_errors,
        stale=log.is_stale(get_settings().IMPORT_STALE_MINUTES),
        started_at=log.started_at,
        completed_at=log.completed_at,
    )

