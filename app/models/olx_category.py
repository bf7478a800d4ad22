"""
Local copy of the OLX marketplace taxonomy.

Rows are keyed by the marketplace's external_id and rebuilt by
app.services.olx.taxonomy_sync. Parent links are local ids and are resolved
in a second pass, so a parent missing from the marketplace payload simply
leaves the child at the root.

Tree helpers take a ``{id: OlxCategory}`` index instead of walking lazy
relationships, which would need IO under an async session.
"""

from typing import Dict, List, Optional

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from app.database import Base, JSONType, utc_now


class OlxCategory(Base):
    __tablename__ = "olx_categories"

    id = Column(Integer, primary_key=True)
    external_id = Column(Integer, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=True)
    parent_id = Column(Integer, ForeignKey("olx_categories.id", ondelete="SET NULL"), nullable=True, index=True)
    has_shipping = Column(Boolean, nullable=False, default=False)
    has_brand = Column(Boolean, nullable=False, default=False)
    # "metadata" is reserved on declarative classes
    extra_data = Column("metadata", JSONType, nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    attributes = relationship(
        "OlxCategoryAttribute",
        back_populates="category",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def ancestors(self, index: Dict[int, "OlxCategory"]) -> List["OlxCategory"]:
        """Parents from nearest to root. Stops on a repeated id so a corrupt chain cannot loop."""
        result = []
        seen = {self.id}
        current = index.get(self.parent_id) if self.parent_id else None
        while current is not None and current.id not in seen:
            result.append(current)
            seen.add(current.id)
            current = index.get(current.parent_id) if current.parent_id else None
        return result

    def full_path(self, index: Dict[int, "OlxCategory"], separator: str = " > ") -> str:
        names = [c.name for c in reversed(self.ancestors(index))]
        names.append(self.name)
        return separator.join(names)

    def is_leaf(self, index: Dict[int, "OlxCategory"]) -> bool:
        return not any(c.parent_id == self.id for c in index.values())

    def __repr__(self) -> str:
        return f"<OlxCategory(id={self.id}, external_id={self.external_id}, name={self.name})>"


class OlxCategoryAttribute(Base):
    __tablename__ = "olx_category_attributes"
    __table_args__ = (
        UniqueConstraint("olx_category_id", "external_id", name="uq_olx_attribute_category_external"),
    )

    id = Column(Integer, primary_key=True)
    olx_category_id = Column(
        Integer, ForeignKey("olx_categories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    external_id = Column(Integer, nullable=False)
    name = Column(String, nullable=False)
    attribute_type = Column(String, nullable=False, default="string")
    input_type = Column(String, nullable=True)
    required = Column(Boolean, nullable=False, default=False)
    # Either {"values": [...], "min": .., "max": .., "label": ..} or a bare list of values
    options = Column(JSONType, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    category = relationship("OlxCategory", back_populates="attributes")

    @property
    def possible_values(self) -> Optional[list]:
        if isinstance(self.options, dict):
            return self.options.get("values")
        if isinstance(self.options, list):
            return self.options
        return None

    @property
    def is_numeric(self) -> bool:
        return (self.attribute_type or "").lower() in ("number", "numeric", "integer", "int")

    @property
    def display_label(self) -> str:
        if isinstance(self.options, dict) and self.options.get("label"):
            return self.options["label"]
        return (self.name or "").replace("_", " ").title()

    def __repr__(self) -> str:
        return f"<OlxCategoryAttribute(category={self.olx_category_id}, external_id={self.external_id}, name={self.name})>"
