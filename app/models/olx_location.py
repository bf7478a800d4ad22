from sqlalchemy import Column, Integer, String, Float, DateTime

from app.database import Base, utc_now

COUNTRY_NAMES = {1: "Bosnia and Herzegovina"}


class OlxLocation(Base):
    """A marketplace city, with its region (state) and canton ids."""

    __tablename__ = "olx_locations"

    id = Column(Integer, primary_key=True)
    external_id = Column(Integer, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    country_id = Column(Integer, nullable=True)
    state_id = Column(Integer, nullable=True)
    canton_id = Column(Integer, nullable=True)
    lat = Column(Float, nullable=True)
    lon = Column(Float, nullable=True)
    zip_code = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lon is not None

    @property
    def full_path(self) -> str:
        parts = []
        if self.country_id:
            parts.append(COUNTRY_NAMES.get(self.country_id, f"Country {self.country_id}"))
        if self.state_id:
            parts.append(f"State {self.state_id}")
        if self.canton_id:
            parts.append(f"Canton {self.canton_id}")
        parts.append(self.name)
        return " > ".join(parts)

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.zip_code})" if self.zip_code else self.name

    def __repr__(self) -> str:
        return f"<OlxLocation(id={self.id}, external_id={self.external_id}, name={self.name})>"
