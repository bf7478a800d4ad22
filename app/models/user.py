from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship, validates

from app.core.enums import MembershipRole
from app.database import Base, utc_now


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    memberships = relationship("Membership", back_populates="user", cascade="all, delete-orphan")

    @property
    def full_name(self) -> str:
        return " ".join(p for p in [self.first_name, self.last_name] if p) or self.email


class Membership(Base):
    """Links a user to a shop with a role."""

    __tablename__ = "memberships"
    __table_args__ = (UniqueConstraint("user_id", "shop_id", name="uq_membership_user_shop"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    shop_id = Column(Integer, ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(16), nullable=False, default=MembershipRole.MEMBER.value)

    created_at = Column(DateTime, nullable=False, default=utc_now)

    user = relationship("User", back_populates="memberships")
    shop = relationship("Shop", back_populates="memberships")

    @validates("role")
    def validate_role(self, key, value):
        return MembershipRole(value).value

    @property
    def can_manage(self) -> bool:
        return self.role in (MembershipRole.OWNER.value, MembershipRole.ADMIN.value, MembershipRole.MANAGER.value)
