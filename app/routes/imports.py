# app/routes/imports.py
"""
Import endpoints: CSV upload, supplier scrape, progress and retry.

Uploads are read and staged inside the request so the caller gets a row count
straight away; normalization runs afterwards as a background task with its
own session.
"""

import json
import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, get_settings
from app.core.enums import ImportSource
from app.core.exceptions import (
    ImportNotFoundError,
    InvalidStatusTransition,
    ParseError,
    ValidationError,
)
from app.dependencies import get_db
from app.models.shop import Shop
from app.schemas.imports import ImportLogSummary, ImportStarted, ImportStatusRead, RetryResult, ScrapeRequest
from app.services import import_tracker
from app.services.import_service import (
    create_import_log,
    get_import_status,
    process_import,
    retry_failed,
    start_import,
)
from app.services.scraper_service import scrape_and_import

router = APIRouter(prefix="/api/imports", tags=["imports"])

logger = logging.getLogger(__name__)


async def _require_shop(db: AsyncSession, shop_id: int) -> Shop:
    shop = await db.get(Shop, shop_id)
    if shop is None:
        raise HTTPException(status_code=404, detail=f"Shop {shop_id} not found")
    return shop


@router.post("/csv", response_model=ImportStarted)
async def upload_csv(
    background_tasks: BackgroundTasks,
    shop_id: int = Form(...),
    file: UploadFile = File(...),
    column_mapping: Optional[str] = Form(None),
    olx_category_template_id: Optional[int] = Form(None),
    db: AsyncSession = Depends(get_db),
):
    """Stage a CSV upload and queue its normalization."""
    await _require_shop(db, shop_id)

    override = None
    if column_mapping:
        try:
            override = json.loads(column_mapping)
        except json.JSONDecodeError:
            raise HTTPException(status_code=400, detail="column_mapping must be a JSON object")
        if not isinstance(override, dict):
            raise HTTPException(status_code=400, detail="column_mapping must be a JSON object")

    content = await file.read()
    try:
        started = await start_import(
            db,
            shop_id,
            ImportSource.CSV.value,
            content,
            column_mapping=override,
            template_id=olx_category_template_id,
            filename=file.filename,
        )
    except (ParseError, ValidationError) as e:
        raise HTTPException(status_code=422, detail=str(e))

    background_tasks.add_task(process_import, started.import_log_id)
    logger.info(f"Queued import {started.import_log_id} ({started.total_rows} rows) for shop {shop_id}")
    return started


@router.post("/scrape", response_model=ImportStatusRead)
async def start_scrape(
    request: ScrapeRequest,
    background_tasks: BackgroundTasks,
    shop_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Run the supplier scraper in the background and import what it returns."""
    await _require_shop(db, shop_id)
    try:
        log = await create_import_log(
            db, shop_id, ImportSource.INTERCARS.value, template_id=request.olx_category_template_id
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    await db.commit()

    background_tasks.add_task(
        scrape_and_import,
        shop_id,
        max_products=request.max_products,
        product_url=request.product_url,
        import_log_id=log.id,
        template_id=request.olx_category_template_id,
    )
    return await get_import_status(db, log.id)


@router.get("/stale", response_model=List[ImportLogSummary])
async def list_stale_imports(
    max_age_minutes: Optional[int] = Query(None, ge=1),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    logs = await import_tracker.find_stale_imports(db, max_age_minutes or settings.IMPORT_STALE_MINUTES)
    return [ImportLogSummary.from_orm_model(log) for log in logs]


@router.get("/{import_log_id}", response_model=ImportStatusRead)
async def import_status(
    import_log_id: int,
    shop_id: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await get_import_status(db, import_log_id, shop_id=shop_id)
    except ImportNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{import_log_id}/retry", response_model=RetryResult)
async def retry_import(
    import_log_id: int,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    """Re-queue the failed records of a finished import."""
    try:
        requeued = await retry_failed(db, import_log_id)
    except ImportNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidStatusTransition as e:
        raise HTTPException(status_code=409, detail=str(e))

    if requeued:
        background_tasks.add_task(process_import, import_log_id)
    return RetryResult(import_log_id=import_log_id, requeued=requeued)
