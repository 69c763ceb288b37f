"""SQLAlchemy models for the training business application."""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ptdesk.auth import User
from ptdesk.database import Base

CALCULATION_METHOD_ENUM = ("PROGRESSIVE", "GRADUATED", "FLAT")
TRIGGER_TYPE_ENUM = ("NONE", "SESSION_COUNT", "SALES_VOLUME", "EITHER_OR", "BOTH_AND")
PAYMENT_METHOD_ENUM = ("CARD", "BANK_TRANSFER", "OTHER")
START_TRIGGER_ENUM = ("DATE_OF_PURCHASE", "FIRST_SESSION")
DURATION_UNIT_ENUM = ("DAYS", "WEEKS", "MONTHS")


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    commission_method: Mapped[str | None] = mapped_column(String(20), nullable=True)
    default_commission_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now, nullable=False
    )

    users: Mapped[list[User]] = relationship(back_populates="organization")
    locations: Mapped[list["Location"]] = relationship(back_populates="organization")
    commission_profiles: Mapped[list["CommissionProfile"]] = relationship(back_populates="organization")
    commission_tiers: Mapped[list["OrganizationCommissionTier"]] = relationship(
        back_populates="organization",
        cascade="all, delete-orphan",
        order_by="OrganizationCommissionTier.min_sessions",
    )


class Location(Base):
    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    organization: Mapped[Organization] = relationship(back_populates="locations")


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    location_id: Mapped[int | None] = mapped_column(
        ForeignKey("locations.id", ondelete="SET NULL"), nullable=True
    )
    primary_trainer_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    location: Mapped[Location] = relationship()
    primary_trainer: Mapped[User] = relationship()
    packages: Mapped[list["Package"]] = relationship(
        back_populates="client", cascade="all, delete-orphan", order_by="Package.created_at"
    )


class PackageType(Base):
    __tablename__ = "package_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    default_sessions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    default_price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    start_trigger: Mapped[str] = mapped_column(String(20), nullable=False, default="DATE_OF_PURCHASE")
    expiry_duration_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expiry_duration_unit: Mapped[str | None] = mapped_column(String(10), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_package_types_org_name"),
        CheckConstraint(
            "start_trigger IN ('DATE_OF_PURCHASE', 'FIRST_SESSION')",
            name="ck_package_types_start_trigger_valid",
        ),
    )


class Package(Base):
    __tablename__ = "packages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    package_type_id: Mapped[int | None] = mapped_column(
        ForeignKey("package_types.id", ondelete="SET NULL"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    total_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_sessions: Mapped[int] = mapped_column(Integer, nullable=False)
    remaining_sessions: Mapped[int] = mapped_column(Integer, nullable=False)
    session_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    effective_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    client: Mapped[Client] = relationship(back_populates="packages")
    package_type: Mapped[PackageType] = relationship()
    payments: Mapped[list["Payment"]] = relationship(
        back_populates="package", cascade="all, delete-orphan", order_by="Payment.payment_date"
    )
    sessions: Mapped[list["TrainingSession"]] = relationship(back_populates="package")

    __table_args__ = (
        CheckConstraint("total_value >= 0", name="ck_packages_total_value_nonnegative"),
        CheckConstraint("total_sessions > 0", name="ck_packages_total_sessions_positive"),
        CheckConstraint("remaining_sessions >= 0", name="ck_packages_remaining_nonnegative"),
    )


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    package_id: Mapped[int] = mapped_column(ForeignKey("packages.id", ondelete="CASCADE"), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False, default="CARD")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    sales_attributed_to_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    sales_attributed_to2_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    package: Mapped[Package] = relationship(back_populates="payments")
    created_by: Mapped[User] = relationship(foreign_keys=[created_by_id])
    sales_attributed_to: Mapped[User] = relationship(foreign_keys=[sales_attributed_to_id])
    sales_attributed_to2: Mapped[User] = relationship(foreign_keys=[sales_attributed_to2_id])

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        CheckConstraint(
            "payment_method IN ('CARD', 'BANK_TRANSFER', 'OTHER')",
            name="ck_payments_method_valid",
        ),
    )


class TrainingSession(Base):
    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    trainer_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    client_id: Mapped[int] = mapped_column(ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    package_id: Mapped[int | None] = mapped_column(ForeignKey("packages.id", ondelete="SET NULL"), nullable=True)
    location_id: Mapped[int | None] = mapped_column(ForeignKey("locations.id", ondelete="SET NULL"), nullable=True)
    session_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    session_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    validated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    validated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    validation_token: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    validation_expiry: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    trainer: Mapped[User] = relationship()
    client: Mapped[Client] = relationship()
    package: Mapped[Package] = relationship(back_populates="sessions")
    location: Mapped[Location] = relationship()

    __table_args__ = (
        Index("idx_sessions_trainer_date", "trainer_id", "session_date"),
    )


class CommissionProfile(Base):
    __tablename__ = "commission_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    calculation_method: Mapped[str] = mapped_column(String(20), nullable=False, default="PROGRESSIVE")
    trigger_type: Mapped[str] = mapped_column(String(20), nullable=False, default="NONE")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.now, onupdate=datetime.now, nullable=False
    )

    organization: Mapped[Organization] = relationship(back_populates="commission_profiles")
    tiers: Mapped[list["CommissionTier"]] = relationship(
        back_populates="profile",
        cascade="all, delete-orphan",
        order_by="CommissionTier.tier_level",
    )
    users: Mapped[list[User]] = relationship(back_populates="commission_profile")

    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_commission_profiles_org_name"),
        CheckConstraint(
            "calculation_method IN ('PROGRESSIVE', 'GRADUATED', 'FLAT')",
            name="ck_commission_profiles_method_valid",
        ),
        CheckConstraint(
            "trigger_type IN ('NONE', 'SESSION_COUNT', 'SALES_VOLUME', 'EITHER_OR', 'BOTH_AND')",
            name="ck_commission_profiles_trigger_valid",
        ),
    )


class CommissionTier(Base):
    __tablename__ = "commission_tiers_v2"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    profile_id: Mapped[int] = mapped_column(
        ForeignKey("commission_profiles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tier_level: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    session_threshold: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sales_threshold: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    session_commission_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    session_flat_fee: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    sales_commission_percent: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    sales_flat_fee: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    tier_bonus: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)

    profile: Mapped[CommissionProfile] = relationship(back_populates="tiers")

    __table_args__ = (
        UniqueConstraint("profile_id", "tier_level", name="uq_commission_tiers_profile_level"),
        CheckConstraint("tier_level >= 1", name="ck_commission_tiers_level_positive"),
    )


class CommissionCalculation(Base):
    __tablename__ = "commission_calculations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    profile_id: Mapped[int | None] = mapped_column(
        ForeignKey("commission_profiles.id", ondelete="SET NULL"), nullable=True
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    calculation_method: Mapped[str] = mapped_column(String(20), nullable=False)
    total_sessions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_sales_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_sales_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    session_commission: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    sales_commission: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    tier_bonus: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    total_commission: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    tier_reached: Mapped[int | None] = mapped_column(Integer, nullable=True)
    calculation_snapshot: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    calculated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)

    user: Mapped[User] = relationship()
    profile: Mapped[CommissionProfile] = relationship()

    __table_args__ = (
        Index("idx_commission_calculations_user_period", "user_id", "period_end"),
        Index("idx_commission_calculations_org_period", "organization_id", "period_end"),
    )


class OrganizationCommissionTier(Base):
    """Organization-wide session tier used by the monthly commission report."""

    __tablename__ = "commission_tiers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    min_sessions: Mapped[int] = mapped_column(Integer, nullable=False)
    max_sessions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    organization: Mapped[Organization] = relationship(back_populates="commission_tiers")

    __table_args__ = (
        CheckConstraint("min_sessions >= 0", name="ck_org_tiers_min_nonnegative"),
        CheckConstraint("percentage >= 0 AND percentage <= 100", name="ck_org_tiers_percentage_range"),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.now, nullable=False)
