"""User accounts and roles."""
from __future__ import annotations

from datetime import datetime

import bcrypt
from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ptdesk.database import Base

ROLE_TRAINER = "TRAINER"
ROLE_CLUB_MANAGER = "CLUB_MANAGER"
ROLE_PT_MANAGER = "PT_MANAGER"
ROLE_ADMIN = "ADMIN"
ROLE_ENUM = (ROLE_TRAINER, ROLE_CLUB_MANAGER, ROLE_PT_MANAGER, ROLE_ADMIN)

MANAGER_ROLES = (ROLE_CLUB_MANAGER, ROLE_PT_MANAGER, ROLE_ADMIN)
COMMISSION_MANAGER_ROLES = (ROLE_PT_MANAGER, ROLE_ADMIN)


class User(Base):
    """Staff account. Trainers, managers and admins all live here."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int | None] = mapped_column(
        ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True, index=True
    )
    location_id: Mapped[int | None] = mapped_column(
        ForeignKey("locations.id", ondelete="SET NULL"), nullable=True
    )
    commission_profile_id: Mapped[int | None] = mapped_column(
        ForeignKey("commission_profiles.id", ondelete="SET NULL"), nullable=True
    )
    email: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default=ROLE_TRAINER, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    organization = relationship("Organization", back_populates="users")
    location = relationship("Location")
    commission_profile = relationship("CommissionProfile", back_populates="users")

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password using bcrypt."""
        salt = bcrypt.gensalt()
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    def verify_password(self, password: str) -> bool:
        """Verify a password against the stored hash."""
        return bcrypt.checkpw(password.encode("utf-8"), self.password_hash.encode("utf-8"))

    @classmethod
    def create_user(
        cls,
        email: str,
        password: str,
        name: str,
        role: str = ROLE_TRAINER,
        organization_id: int | None = None,
        location_id: int | None = None,
    ) -> User:
        """Create a new user with hashed password."""
        return cls(
            email=email,
            password_hash=cls.hash_password(password),
            name=name,
            role=role,
            organization_id=organization_id,
            location_id=location_id,
        )

    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def is_manager(self) -> bool:
        return self.role in MANAGER_ROLES

    def can_manage_commission(self) -> bool:
        return self.role in COMMISSION_MANAGER_ROLES
