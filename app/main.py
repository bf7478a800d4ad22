# app/main.py

import logging
import os
import subprocess
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app import models  # noqa: F401  registers every table on Base.metadata
from app.core.config import get_settings
from app.core.logging_config import configure_logging
from app.core.security import require_auth
from app.routes import health, imports, olx
from app.scheduler import start_scheduler, stop_scheduler

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()

    if os.getenv('RUN_MIGRATIONS', 'false').lower() == 'true':
        logger.info("Running database migrations...")
        result = subprocess.run(['alembic', 'upgrade', 'head'], capture_output=True, text=True)
        if result.returncode == 0:
            logger.info(f"Migrations completed successfully\n{result.stdout}")
        else:
            logger.error(f"Migration failed: {result.stderr}")

    if settings.SCHEDULER_ENABLED:
        await start_scheduler()
    else:
        logger.info("Scheduler is disabled. Set SCHEDULER_ENABLED=true to enable")

    try:
        yield
    finally:
        await stop_scheduler()


app = FastAPI(
    title="OLX Back Office",
    lifespan=lifespan
)


# Add middleware to handle HTTPS behind proxy
@app.middleware("http")
async def proxy_headers_middleware(request: Request, call_next):
    forwarded_proto = request.headers.get("x-forwarded-proto")
    if forwarded_proto == "https":
        request.scope["scheme"] = "https"
    return await call_next(request)


app.include_router(imports.router, dependencies=[require_auth()])
app.include_router(olx.router, dependencies=[require_auth()])
app.include_router(health.router)  # Health check should be accessible without auth
