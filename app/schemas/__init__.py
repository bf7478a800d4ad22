"""
Schema exports for the application.
"""

# Base schemas
from .base import BaseSchema

# Product schemas
from .product import ScrapedProduct

# Import schemas
from .imports import ImportStatusRead, ImportStarted, ImportCounters, ScrapeRequest, RetryResult

# OLX schemas
from .olx import (
    EntitySyncStats,
    TaxonomySyncResult,
    BulkItemResult,
    BulkResult,
    MarketplaceSyncResult,
    ListingRead,
)
