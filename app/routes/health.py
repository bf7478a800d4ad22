from fastapi import APIRouter, Depends
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies import get_db
from app.models.olx_category import OlxCategory
from app.models.olx_location import OlxLocation
from app.scheduler import get_scheduler_status

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic health check"""
    return {"status": "healthy", "service": "OLX Back Office"}


@router.get("/health/db")
async def database_health(db: AsyncSession = Depends(get_db)):
    """Check database connectivity and how much taxonomy is stored locally"""
    try:
        await db.execute(text("SELECT 1"))
        categories = await db.scalar(select(func.count()).select_from(OlxCategory))
        locations = await db.scalar(select(func.count()).select_from(OlxLocation))
    except Exception as e:
        return {"status": "unhealthy", "database": "error", "error": str(e)}

    return {
        "status": "healthy",
        "database": "connected",
        "olx_categories": categories,
        "olx_locations": locations,
    }


@router.get("/health/scheduler")
async def scheduler_health():
    return get_scheduler_status()
