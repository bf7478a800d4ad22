"""
Models for the shop catalogue.

A Product is the normalized, canonical version of a supplier or marketplace
record. Products are unique per (shop, source, sku) whenever the sku is not
blank; blank-sku products are always inserted.
"""

from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, Text, Numeric, Boolean, DateTime, ForeignKey, Index, event, text,
)
from sqlalchemy.orm import relationship, validates

from app.core.enums import Currency, ImportSource
from app.database import Base, JSONType, utc_now
from app.services.pricing import calculate_final_price


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        # Partial unique index: blank skus are allowed to repeat
        Index(
            "uq_products_shop_source_sku",
            "shop_id", "source", "sku",
            unique=True,
            postgresql_where=text("sku IS NOT NULL AND sku <> ''"),
            sqlite_where=text("sku IS NOT NULL AND sku <> ''"),
        ),
    )

    id = Column(Integer, primary_key=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    shop_id = Column(Integer, ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    source = Column(String(32), nullable=False, default=ImportSource.CSV.value, index=True)
    source_id = Column(String, nullable=True)

    # Core Product Information
    title = Column(String, nullable=False)
    sku = Column(String, nullable=True)
    brand = Column(String, nullable=True)
    category = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    technical_description = Column(Text, nullable=True)
    models = Column(Text, nullable=True)
    branch_availability = Column(Text, nullable=True)

    # Open key/value overflow for every supplier column we don't model
    specs = Column(JSONType, nullable=False, default=dict)

    # Pricing Fields
    price = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    currency = Column(String(3), nullable=False, default=Currency.BAM.value)
    margin = Column(Numeric(6, 2), nullable=False, default=Decimal("0"))
    final_price = Column(Numeric(12, 2), nullable=True)  # derived, see refresh_final_price

    stock = Column(Integer, nullable=False, default=0)
    published = Column(Boolean, nullable=False, default=False)

    # Marketplace overrides
    olx_title = Column(String, nullable=True)
    olx_description = Column(Text, nullable=True)
    olx_category_template_id = Column(
        Integer, ForeignKey("olx_category_templates.id", ondelete="SET NULL"), nullable=True
    )

    # Media: source urls as received, downloaded copies live in product_images
    image_urls = Column(JSONType, nullable=False, default=list)

    discarded_at = Column(DateTime, nullable=True, index=True)

    #####################################################
    ################## Relationships ####################
    #####################################################

    images = relationship(
        "ProductImage",
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ProductImage.position",
    )
    olx_category_template = relationship("OlxCategoryTemplate")

    @validates("currency")
    def validate_currency(self, key, value):
        if value is None:
            return Currency.BAM.value
        return Currency(str(value).upper()).value

    @property
    def effective_price(self):
        """What buyers see: final price when known, raw price otherwise."""
        return self.final_price if self.final_price is not None else self.price

    @property
    def is_discarded(self) -> bool:
        return self.discarded_at is not None

    def discard(self):
        self.discarded_at = utc_now()

    def refresh_final_price(self):
        self.final_price = calculate_final_price(self.price or 0, self.margin or 0)

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, sku={self.sku}, source={self.source})>"


@event.listens_for(Product, "before_insert")
@event.listens_for(Product, "before_update")
def _recompute_final_price(mapper, connection, target):
    target.refresh_final_price()
