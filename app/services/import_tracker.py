"""Progress tracking for ImportLog rows.

All counter changes are SQL-side increments so that several workers (or a
retry running next to a late worker) never overwrite each other's progress.
Finalization is a conditional update on a non-terminal status and therefore
happens exactly once.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enums import ImportStatus, ImportPhase, ImportedProductStatus
from app.database import utc_now
from app.models.import_log import ImportLog
from app.models.imported_product import ImportedProduct

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = [s.value for s in ImportStatus if s.is_terminal]
MAX_ERROR_TEXT = 2000


@dataclass
class RecordResult:
    """Outcome of one staged record."""
    imported_product_id: int
    ok: bool
    product_id: Optional[int] = None
    error: Optional[str] = None
    row: Optional[int] = None


def compute_final_status(successful: int, failed: int) -> ImportStatus:
    if failed > 0 and successful == 0:
        return ImportStatus.FAILED
    if failed > 0:
        return ImportStatus.COMPLETED_WITH_ERRORS
    return ImportStatus.COMPLETED


async def append_errors(db: AsyncSession, import_log_id: int, entries: List[Any]) -> None:
    """Append to error_messages under a row lock (no-op lock on SQLite)."""
    if not entries:
        return
    stmt = (
        select(ImportLog)
        .where(ImportLog.id == import_log_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    log = (await db.execute(stmt)).scalar_one()
    log.error_messages = list(log.error_messages or []) + list(entries)
    await db.flush()


async def mark_processing(db: AsyncSession, import_log_id: int) -> bool:
    """Move a log into processing. Returns False if it was already there."""
    stmt = (
        update(ImportLog)
        .where(ImportLog.id == import_log_id)
        .where(ImportLog.status != ImportStatus.PROCESSING.value)
        .values(
            status=ImportStatus.PROCESSING.value,
            current_phase=ImportPhase.IMPORTING.value,
            started_at=func.coalesce(ImportLog.started_at, utc_now()),
            completed_at=None,
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def record_result(db: AsyncSession, import_log_id: int, result: RecordResult) -> None:
    """Fold one record outcome into the log counters."""
    values = {"processed_rows": ImportLog.processed_rows + 1}
    if result.ok:
        values["successful_rows"] = ImportLog.successful_rows + 1
    else:
        values["failed_rows"] = ImportLog.failed_rows + 1

    await db.execute(
        update(ImportLog)
        .where(ImportLog.id == import_log_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )

    if not result.ok:
        await append_errors(
            db,
            import_log_id,
            [{"row": result.row, "record_id": result.imported_product_id, "error": (result.error or "")[:MAX_ERROR_TEXT]}],
        )


async def record_status_counts(db: AsyncSession, import_log_id: int) -> Dict[str, int]:
    rows = await db.execute(
        select(ImportedProduct.status, func.count(ImportedProduct.id))
        .where(ImportedProduct.import_log_id == import_log_id)
        .group_by(ImportedProduct.status)
    )
    return {status: count for status, count in rows.all()}


async def count_unfinished(db: AsyncSession, import_log_id: int) -> int:
    stmt = select(func.count(ImportedProduct.id)).where(
        ImportedProduct.import_log_id == import_log_id,
        ImportedProduct.status.in_([ImportedProductStatus.PENDING.value, ImportedProductStatus.PROCESSING.value]),
    )
    return (await db.execute(stmt)).scalar() or 0


async def finalize_if_done(db: AsyncSession, import_log_id: int) -> Optional[ImportStatus]:
    """
    Close the log once no record is pending or processing.

    Returns the final status if this call closed the log, None otherwise
    (records still in flight, or another worker already closed it).
    """
    if await count_unfinished(db, import_log_id):
        return None

    # record outcomes, not attempt counters: a fully retried import ends up completed
    counts = await record_status_counts(db, import_log_id)
    imported = counts.get(ImportedProductStatus.IMPORTED.value, 0)
    errored = counts.get(ImportedProductStatus.ERROR.value, 0)
    final = compute_final_status(imported, errored)

    result = await db.execute(
        update(ImportLog)
        .where(ImportLog.id == import_log_id)
        .where(ImportLog.status.notin_(TERMINAL_STATUSES))
        .values(
            status=final.value,
            current_phase=ImportPhase.FAILED.value if final == ImportStatus.FAILED else ImportPhase.COMPLETED.value,
            completed_at=utc_now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None

    logger.info(
        f"Import {import_log_id} finished as {final.value} "
        f"({imported} imported, {errored} failed)"
    )
    return final


async def fail_import(db: AsyncSession, import_log_id: int, message: str) -> None:
    """Batch-level failure: the whole import is unusable."""
    logger.error(f"Import {import_log_id} failed: {message}")
    await db.execute(
        update(ImportLog)
        .where(ImportLog.id == import_log_id)
        .values(
            status=ImportStatus.FAILED.value,
            current_phase=ImportPhase.FAILED.value,
            completed_at=utc_now(),
        )
        .execution_options(synchronize_session=False)
    )
    await append_errors(db, import_log_id, [message[:MAX_ERROR_TEXT]])


async def set_phase(db: AsyncSession, import_log_id: int, phase: ImportPhase, **fields) -> None:
    await db.execute(
        update(ImportLog)
        .where(ImportLog.id == import_log_id)
        .values(current_phase=phase.value, **fields)
        .execution_options(synchronize_session=False)
    )


async def find_stale_imports(db: AsyncSession, max_age_minutes: int, now=None) -> List[ImportLog]:
    """Non-terminal imports that have not been touched for max_age_minutes."""
    cutoff = (now or utc_now()) - timedelta(minutes=max_age_minutes)
    stmt = (
        select(ImportLog)
        .where(ImportLog.status.notin_(TERMINAL_STATUSES))
        .where(ImportLog.updated_at < cutoff)
        .order_by(ImportLog.updated_at.asc())
        .execution_options(populate_existing=True)
    )
    return list((await db.execute(stmt)).scalars().all())
