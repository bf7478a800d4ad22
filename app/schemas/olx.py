"""
Schemas for the OLX sync endpoints and service results.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class EntitySyncStats(BaseModel):
    total: int = 0
    synced: int = 0
    failed: int = 0
    deleted: int = 0
    errors: List[str] = []


class TaxonomySyncResult(BaseModel):
    categories: EntitySyncStats = Field(default_factory=EntitySyncStats)
    attributes: EntitySyncStats = Field(default_factory=EntitySyncStats)
    locations: EntitySyncStats = Field(default_factory=EntitySyncStats)


class BulkItemResult(BaseModel):
    product_id: int
    success: bool
    listing_id: Optional[int] = None
    external_listing_id: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None


class BulkResult(BaseModel):
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    items: List[BulkItemResult] = []

    def add(self, item: BulkItemResult):
        self.items.append(item)
        self.total += 1
        if item.success:
            self.succeeded += 1
        else:
            self.failed += 1


class MarketplaceSyncResult(BaseModel):
    imported: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = []


class PublishRequest(BaseModel):
    template_id: Optional[int] = None
    publish: bool = True


class BulkRequest(BaseModel):
    product_ids: List[int] = Field(min_length=1)
    template_id: Optional[int] = None
    publish: bool = True


class MarketplaceSyncRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1)
    status_filter: Optional[str] = None
    category_ids: Optional[List[int]] = None
    skip_existing: bool = True


class ListingRead(BaseModel):
    id: int
    product_id: int
    external_listing_id: Optional[str] = None
    status: str
    olx_url: Optional[str] = None

    model_config = {"from_attributes": True}
