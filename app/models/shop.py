"""
Tenant models.

Every piece of tenant data (products, imports, templates, listings) belongs to
exactly one Shop. The OLX login and cached API token live on a separate
OlxCredential row so that token writes can be guarded by a version counter.
"""

from datetime import timedelta

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship

from app.database import Base, JSONType, utc_now


class Shop(Base):
    __tablename__ = "shops"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    # Per-integration settings, e.g. {"intercars": {"credentials": {"username": ..., "password": ...}}}
    settings = Column(JSONType, nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    olx_credential = relationship(
        "OlxCredential", back_populates="shop", uselist=False, cascade="all, delete-orphan"
    )
    memberships = relationship("Membership", back_populates="shop", cascade="all, delete-orphan")

    def integration_credentials(self, site: str) -> dict:
        return ((self.settings or {}).get(site) or {}).get("credentials") or {}

    def set_integration_credentials(self, site: str, username: str, password: str):
        current = dict(self.settings or {})
        current[site] = {
            **(current.get(site) or {}),
            "credentials": {"username": username, "password": password, "updated_at": utc_now().isoformat()},
        }
        # reassign so the JSON column is flagged dirty
        self.settings = current

    def __repr__(self) -> str:
        return f"<Shop(id={self.id}, name={self.name})>"


class OlxCredential(Base):
    """
    OLX account used by a shop.

    Only the authenticate operation writes access_token/token_expires_at, and it
    does so with a compare-and-swap on ``version``.
    """

    __tablename__ = "olx_credentials"

    id = Column(Integer, primary_key=True)
    shop_id = Column(Integer, ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, unique=True)
    username = Column(String, nullable=True)
    password = Column(String, nullable=True)
    access_token = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)
    olx_user_id = Column(String, nullable=True)
    olx_user_name = Column(String, nullable=True)
    version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    shop = relationship("Shop", back_populates="olx_credential")

    @property
    def has_login(self) -> bool:
        return bool(self.username and self.password)

    def token_is_fresh(self, margin_minutes: int = 0, now=None) -> bool:
        """True when a token is cached and does not expire within the margin."""
        if not self.access_token or not self.token_expires_at:
            return False
        now = now or utc_now()
        return self.token_expires_at - timedelta(minutes=margin_minutes) > now

    def __repr__(self) -> str:
        return f"<OlxCredential(shop_id={self.shop_id}, user={self.olx_user_name}, v{self.version})>"
