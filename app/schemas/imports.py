"""
Schemas for the import endpoints.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.schemas.base import BaseSchema


class ImportCounters(BaseModel):
    total_rows: int = 0
    processed_rows: int = 0
    successful_rows: int = 0
    failed_rows: int = 0
    scraped_count: int = 0


class ImportStatusRead(BaseModel):
    import_log_id: int
    shop_id: int
    source: str
    status: str
    current_phase: Optional[str] = None
    counters: ImportCounters
    progress: float = 0.0
    errors: List[Any] = []
    has_errors: bool = False
    stale: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class ImportStarted(BaseModel):
    import_log_id: int
    total_rows: int
    column_mapping: Dict[str, str] = {}
    confidence: float = 0.0


class ScrapeRequest(BaseModel):
    max_products: int = Field(default=10, ge=1, le=5000)
    product_url: Optional[str] = None
    olx_category_template_id: Optional[int] = None


class RetryResult(BaseModel):
    import_log_id: int
    requeued: int


class ImportLogSummary(BaseSchema):
    id: int
    source: str
    status: str
    total_rows: int
    processed_rows: int
    successful_rows: int
    failed_rows: int
    updated_at: datetime
