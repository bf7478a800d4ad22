"""
Shared enums and constants used across the application.
"""

from enum import Enum


class ImportSource(str, Enum):
    """Where a product (or a staged record) came from"""
    CSV = "csv"
    INTERCARS = "intercars"   # supplier catalogue scraped by the headless-browser job
    OLX = "olx"               # pulled back from the marketplace


class ImportStatus(str, Enum):
    """Lifecycle of one batch import (ImportLog)"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ImportStatus.COMPLETED, ImportStatus.COMPLETED_WITH_ERRORS, ImportStatus.FAILED)


class ImportPhase(str, Enum):
    """Free-form progress marker for long running (scrape driven) imports"""
    STARTING = "starting"
    SCRAPING = "scraping"
    IMPORTING = "importing"
    COMPLETED = "completed"
    FAILED = "failed"


class ImportedProductStatus(str, Enum):
    """Lifecycle of one staged record"""
    PENDING = "pending"
    PROCESSING = "processing"
    IMPORTED = "imported"
    ERROR = "error"


class ListingStatus(str, Enum):
    """Local view of an OLX listing"""
    DRAFT = "draft"
    PENDING = "pending"
    PUBLISHED = "published"
    UNPUBLISHED = "unpublished"
    FAILED = "failed"
    REMOVED = "removed"

    @classmethod
    def from_remote(cls, remote_status):
        """Map an OLX status string onto our status"""
        if (remote_status or "").lower() in ("active", "published", "live"):
            return cls.PUBLISHED
        return cls.DRAFT


class MembershipRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MANAGER = "manager"
    MEMBER = "member"


class Currency(str, Enum):
    BAM = "BAM"
    EUR = "EUR"
    USD = "USD"


class ListingType(str, Enum):
    SELL = "sell"
    BUY = "buy"
    RENT = "rent"


# Allowed status transitions for staged records. Manual retry is the only way back to PENDING.
IMPORTED_PRODUCT_TRANSITIONS = {
    ImportedProductStatus.PENDING: {ImportedProductStatus.PROCESSING},
    ImportedProductStatus.PROCESSING: {ImportedProductStatus.IMPORTED, ImportedProductStatus.ERROR},
    ImportedProductStatus.IMPORTED: set(),
    ImportedProductStatus.ERROR: {ImportedProductStatus.PENDING},
}
