"""
Import log model.

One row per batch import (CSV upload or supplier scrape). Counters are only
ever incremented, with SQL-side arithmetic (see app.services.import_tracker),
so concurrent workers never lose updates.
"""

from datetime import timedelta

from sqlalchemy import Column, Integer, Float, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from app.core.enums import ImportStatus, ImportPhase, ImportSource
from app.database import Base, JSONType, utc_now


class ImportLog(Base):
    __tablename__ = "import_logs"

    id = Column(Integer, primary_key=True)
    shop_id = Column(Integer, ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    source = Column(String(32), nullable=False, default=ImportSource.CSV.value)
    filename = Column(String, nullable=True)
    status = Column(String(32), nullable=False, default=ImportStatus.PENDING.value, index=True)
    current_phase = Column(String(32), nullable=True, default=ImportPhase.STARTING.value)

    total_rows = Column(Integer, nullable=False, default=0)
    processed_rows = Column(Integer, nullable=False, default=0)
    successful_rows = Column(Integer, nullable=False, default=0)
    failed_rows = Column(Integer, nullable=False, default=0)
    scraped_count = Column(Integer, nullable=False, default=0)

    # [{"row": 3, "error": "..."}] or plain strings for batch level failures
    error_messages = Column(JSONType, nullable=False, default=list)
    column_mapping = Column(JSONType, nullable=True)
    mapping_confidence = Column(Float, nullable=True)

    olx_category_template_id = Column(
        Integer, ForeignKey("olx_category_templates.id", ondelete="SET NULL"), nullable=True
    )

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now, index=True)

    imported_products = relationship(
        "ImportedProduct", back_populates="import_log", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def progress_percentage(self) -> float:
        if not self.total_rows:
            return 0.0
        return round(self.processed_rows / self.total_rows * 100, 2)

    @property
    def has_errors(self) -> bool:
        return (self.failed_rows or 0) > 0 or bool(self.error_messages)

    @property
    def is_terminal(self) -> bool:
        return ImportStatus(self.status).is_terminal

    def is_stale(self, max_age_minutes: int, now=None) -> bool:
        """A non-terminal import that has not moved for max_age_minutes."""
        if self.is_terminal or self.updated_at is None:
            return False
        now = now or utc_now()
        return self.updated_at < now - timedelta(minutes=max_age_minutes)

    def __repr__(self) -> str:
        return f"<ImportLog(id={self.id}, source={self.source}, status={self.status})>"
