from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import relationship, validates

from app.core.enums import ListingStatus
from app.database import Base, JSONType, utc_now

OLX_ITEM_URL = "https://olx.ba/artikal/{}"
ACTIVE_CLAUSE = f"status <> '{ListingStatus.REMOVED.value}'"


class OlxListing(Base):
    """
    Local state of a product's marketplace listing.

    At most one row per product that is not removed. external_listing_id is
    assigned by the marketplace and never changes: a removed row is kept as it
    is, and publishing again after a removal creates a new row for a new
    remote listing, with the old ids in extra_data["previous_external_ids"].
    """

    __tablename__ = "olx_listings"
    __table_args__ = (
        Index(
            "uq_olx_listings_active_product",
            "product_id",
            unique=True,
            postgresql_where=text(ACTIVE_CLAUSE),
            sqlite_where=text(ACTIVE_CLAUSE),
        ),
    )

    id = Column(Integer, primary_key=True)
    shop_id = Column(Integer, ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)
    external_listing_id = Column(String, nullable=True, unique=True)
    status = Column(String(16), nullable=False, default=ListingStatus.DRAFT.value, index=True)
    published_at = Column(DateTime, nullable=True)
    synced_at = Column(DateTime, nullable=True)
    extra_data = Column("metadata", JSONType, nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    product = relationship("Product")

    @validates("status")
    def validate_status(self, key, value):
        return ListingStatus(value).value

    @validates("external_listing_id")
    def validate_external_listing_id(self, key, value):
        if self.external_listing_id and value != self.external_listing_id:
            raise ValueError(f"Listing {self.id} already has external id {self.external_listing_id}")
        return value

    @property
    def is_published(self) -> bool:
        return self.status == ListingStatus.PUBLISHED.value and bool(self.external_listing_id)

    @property
    def is_removed(self) -> bool:
        return self.status == ListingStatus.REMOVED.value

    @property
    def olx_url(self):
        if not self.external_listing_id:
            return None
        return OLX_ITEM_URL.format(self.external_listing_id)

    @property
    def error_message(self):
        if self.status != ListingStatus.FAILED.value:
            return None
        return (self.extra_data or {}).get("error") or "Unknown error"

    def merge_metadata(self, **values):
        current = dict(self.extra_data or {})
        current.update(values)
        self.extra_data = current

    def __repr__(self) -> str:
        return f"<OlxListing(id={self.id}, product={self.product_id}, external={self.external_listing_id}, status={self.status})>"
