"""
Per-shop publishing template.

A template pins the marketplace category, where the item is (a city or raw
coordinates, never both), listing defaults and the rules that turn product
data into marketplace attributes.

olx_category_id / olx_location_id are local taxonomy ids without foreign keys:
a taxonomy refresh may hard delete a row a template still points at, and the
template must survive that so it can be reported and re-pointed.
"""

from sqlalchemy import Column, Integer, String, Text, Float, DateTime, ForeignKey
from sqlalchemy.orm import validates

from app.core.enums import ListingType
from app.database import Base, JSONType, utc_now


class OlxCategoryTemplate(Base):
    __tablename__ = "olx_category_templates"

    id = Column(Integer, primary_key=True)
    shop_id = Column(Integer, ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    olx_category_id = Column(Integer, nullable=False, index=True)
    olx_location_id = Column(Integer, nullable=True)
    lat = Column(Float, nullable=True)
    lon = Column(Float, nullable=True)
    default_listing_type = Column(String(16), nullable=False, default=ListingType.SELL.value)
    default_state = Column(String(16), nullable=False, default="new")

    # {"Brand": "product.brand", "123": "fixed:Novo", "Motor": "extract:motor"}
    attribute_mappings = Column(JSONType, nullable=False, default=dict)
    # e.g. "{brand} {title} {sku}"
    title_template = Column(Text, nullable=True)
    # List of description fields to keep; empty means the whole description
    description_filter = Column(JSONType, nullable=False, default=list)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    @validates("default_listing_type")
    def validate_listing_type(self, key, value):
        return ListingType(value or ListingType.SELL.value).value

    @property
    def uses_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None

    def location_problem(self):
        """Why this template cannot place a listing, or None when it can."""
        if self.olx_location_id and (self.lat is not None or self.lon is not None):
            return "template sets both a location and coordinates"
        if not self.olx_location_id and not self.uses_coordinates:
            return "template has neither a location nor coordinates"
        return None

    def attribute_mapping_for(self, *keys):
        """First rule found under any of the keys (attribute name, external id)."""
        mappings = self.attribute_mappings or {}
        for key in keys:
            if key is None:
                continue
            rule = mappings.get(str(key))
            if rule:
                return rule
        return None

    def set_attribute_mapping(self, attribute_name, rule):
        current = dict(self.attribute_mappings or {})
        current[str(attribute_name)] = rule
        self.attribute_mappings = current

    def __repr__(self) -> str:
        return f"<OlxCategoryTemplate(id={self.id}, shop={self.shop_id}, name={self.name})>"
