from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship, validates

from app.core.enums import ImportedProductStatus, ImportSource, IMPORTED_PRODUCT_TRANSITIONS
from app.database import Base, JSONType, utc_now


class ImportedProduct(Base):
    """
    Staging record: one raw row exactly as it was read.

    raw_data is write-once. Status moves pending -> processing -> imported|error,
    and only a manual retry moves error back to pending.
    """

    __tablename__ = "imported_products"

    id = Column(Integer, primary_key=True)
    shop_id = Column(Integer, ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    import_log_id = Column(Integer, ForeignKey("import_logs.id", ondelete="CASCADE"), nullable=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    source = Column(String(32), nullable=False, default=ImportSource.CSV.value)
    row_number = Column(Integer, nullable=True)
    raw_data = Column(JSONType, nullable=False, default=dict)
    status = Column(String(16), nullable=False, default=ImportedProductStatus.PENDING.value, index=True)
    error_text = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    import_log = relationship("ImportLog", back_populates="imported_products")
    product = relationship("Product")

    @validates("raw_data")
    def validate_raw_data(self, key, value):
        if self.raw_data is not None and self.id is not None:
            raise ValueError("raw_data is immutable once stored")
        return dict(value or {})

    @classmethod
    def may_become(cls, new_status):
        """WHERE clause matching the records whose lifecycle allows a move to new_status."""
        target = ImportedProductStatus(new_status)
        sources = [s.value for s, allowed in IMPORTED_PRODUCT_TRANSITIONS.items() if target in allowed]
        return cls.status.in_(sources)

    def __repr__(self) -> str:
        return f"<ImportedProduct(id={self.id}, log={self.import_log_id}, status={self.status})>"
