"""Database access helpers.

Every query is scoped to an organization id; rows belonging to another
tenant are reported as missing.
"""
from __future__ import annotations

import json
import secrets
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from ptdesk.auth import MANAGER_ROLES, ROLE_TRAINER, User
from ptdesk.core.commission import quantize_money
from ptdesk.core.packages import (
    PAYMENT_TOLERANCE,
    PackageSnapshot,
    PaymentSummary,
    build_payment_summary,
    calculate_expiry_date,
    calculate_unlocked_sessions,
    can_log_session,
    client_state,
)
from ptdesk.core.tier_schedule import DEFAULT_SESSION_TIERS
from ptdesk.models import (
    AuditLog,
    Client,
    CommissionCalculation,
    CommissionProfile,
    CommissionTier,
    Location,
    Organization,
    OrganizationCommissionTier,
    Package,
    PackageType,
    Payment,
    TrainingSession,
)
from ptdesk.schemas import (
    ClientCreate,
    CommissionProfileCreate,
    CommissionProfileUpdate,
    CommissionTierInput,
    LocationCreate,
    LocationUpdate,
    PackageCreate,
    PackageTypeCreate,
    PackageTypeUpdate,
    PaymentCreate,
    PaymentUpdate,
    SessionCreate,
    TierScheduleUpdate,
)

VALIDATION_TOKEN_DAYS = 30
NO_SHOW_NOTE = "No-Show"


def day_bounds(start: date, end: date) -> tuple[datetime, datetime]:
    """Inclusive datetime bounds covering whole days from ``start`` to ``end``."""
    return datetime.combine(start, time.min), datetime.combine(end, time.max)


# --- Audit ------------------------------------------------------------------


def log_admin_action(
    db: Session,
    user_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int | None = None,
    details: dict | None = None,
) -> None:
    entry = AuditLog(
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        details=json.dumps(details or {}, default=str),
    )
    db.add(entry)


# --- Organizations and staff --------------------------------------------------


def get_organization(db: Session, organization_id: int) -> Organization | None:
    return db.get(Organization, organization_id)


def get_user_in_org(db: Session, organization_id: int, user_id: int) -> User | None:
    stmt = select(User).where(User.id == user_id, User.organization_id == organization_id)
    return db.execute(stmt).scalars().first()


def list_trainers(
    db: Session,
    organization_id: int,
    location_id: int | None = None,
    active_only: bool = True,
) -> Sequence[User]:
    stmt = select(User).where(User.organization_id == organization_id, User.role == ROLE_TRAINER)
    if active_only:
        stmt = stmt.where(User.active.is_(True))
    if location_id:
        stmt = stmt.where(User.location_id == location_id)
    return db.execute(stmt.order_by(User.name)).scalars().all()


def get_location(db: Session, organization_id: int, location_id: int) -> Location | None:
    stmt = select(Location).where(Location.id == location_id, Location.organization_id == organization_id)
    return db.execute(stmt).scalars().first()


def list_locations(db: Session, organization_id: int, include_inactive: bool = False) -> Sequence[Location]:
    stmt = select(Location).where(Location.organization_id == organization_id)
    if not include_inactive:
        stmt = stmt.where(Location.active.is_(True))
    return db.execute(stmt.order_by(Location.name)).scalars().all()


def _location_name_taken(db: Session, organization_id: int, name: str, exclude_id: int | None = None) -> bool:
    stmt = select(Location.id).where(Location.organization_id == organization_id, Location.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Location.id != exclude_id)
    return db.execute(stmt).first() is not None


def create_location(
    db: Session,
    organization_id: int,
    payload: LocationCreate,
    actor_id: int | None = None,
) -> Location:
    if _location_name_taken(db, organization_id, payload.name):
        raise ValueError("A location with this name already exists")
    location = Location(organization_id=organization_id, name=payload.name, address=payload.address)
    db.add(location)
    db.flush()
    log_admin_action(db, actor_id, "CREATE_LOCATION", "Location", location.id, {"name": location.name})
    db.commit()
    db.refresh(location)
    return location


def update_location(
    db: Session,
    location: Location,
    payload: LocationUpdate,
    actor_id: int | None = None,
) -> Location:
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("name") and _location_name_taken(db, location.organization_id, changes["name"], location.id):
        raise ValueError("A location with this name already exists")
    for key, value in changes.items():
        if key in ("name", "active") and value is None:
            continue
        setattr(location, key, value)
    log_admin_action(db, actor_id, "UPDATE_LOCATION", "Location", location.id, changes)
    db.commit()
    db.refresh(location)
    return location


def set_commission_method(
    db: Session,
    organization: Organization,
    method: str,
    default_rate: Decimal | None,
    actor_id: int | None = None,
) -> Organization:
    previous = organization.commission_method
    organization.commission_method = method
    if method == "FLAT" and default_rate is not None:
        organization.default_commission_rate = default_rate
    log_admin_action(
        db,
        actor_id,
        "UPDATE_COMMISSION_METHOD",
        "Organization",
        organization.id,
        {"old": previous, "new": method, "default_rate": default_rate},
    )
    db.commit()
    db.refresh(organization)
    return organization


# --- Organization tier schedule -----------------------------------------------


def list_commission_tiers(db: Session, organization_id: int) -> Sequence[OrganizationCommissionTier]:
    stmt = (
        select(OrganizationCommissionTier)
        .where(OrganizationCommissionTier.organization_id == organization_id)
        .order_by(OrganizationCommissionTier.min_sessions)
    )
    return db.execute(stmt).scalars().all()


def ensure_commission_tiers(db: Session, organization_id: int) -> bool:
    """Create the default tier schedule when an organization has none.

    Returns True when tiers were created.
    """
    if list_commission_tiers(db, organization_id):
        return False
    for tier in DEFAULT_SESSION_TIERS:
        db.add(
            OrganizationCommissionTier(
                organization_id=organization_id,
                min_sessions=tier.min_sessions,
                max_sessions=tier.max_sessions,
                percentage=tier.percentage,
            )
        )
    db.flush()
    return True


def replace_commission_tiers(
    db: Session,
    organization_id: int,
    payload: TierScheduleUpdate,
    actor_id: int | None = None,
) -> Sequence[OrganizationCommissionTier]:
    db.query(OrganizationCommissionTier).filter(
        OrganizationCommissionTier.organization_id == organization_id
    ).delete(synchronize_session=False)
    for tier in payload.tiers:
        db.add(
            OrganizationCommissionTier(
                organization_id=organization_id,
                min_sessions=tier.min_sessions,
                max_sessions=tier.max_sessions,
                percentage=tier.percentage,
            )
        )
    log_admin_action(
        db,
        actor_id,
        "UPDATE_COMMISSION_TIERS",
        "Organization",
        organization_id,
        {"tiers": [tier.model_dump() for tier in payload.tiers]},
    )
    db.commit()
    return list_commission_tiers(db, organization_id)


# --- Commission profiles --------------------------------------------------------


def _tier_from_input(payload: CommissionTierInput) -> CommissionTier:
    data = payload.model_dump()
    data["name"] = data.get("name") or f"Tier {payload.tier_level}"
    return CommissionTier(**data)


def ensure_default_profile(db: Session, organization_id: int) -> CommissionProfile:
    """Return the organization's default profile, creating a basic one if needed."""
    existing = get_default_profile(db, organization_id)
    if existing is not None:
        return existing
    profile = CommissionProfile(
        organization_id=organization_id,
        name="Standard",
        description="Flat 25% of session value",
        is_default=True,
        calculation_method="FLAT",
        trigger_type="NONE",
        tiers=[CommissionTier(tier_level=1, name="Tier 1", session_commission_percent=Decimal("25"))],
    )
    db.add(profile)
    db.flush()
    return profile


def get_default_profile(db: Session, organization_id: int) -> CommissionProfile | None:
    stmt = select(CommissionProfile).where(
        CommissionProfile.organization_id == organization_id,
        CommissionProfile.is_default.is_(True),
        CommissionProfile.is_active.is_(True),
    )
    return db.execute(stmt).scalars().first()


def list_commission_profiles(
    db: Session,
    organization_id: int,
    include_inactive: bool = False,
) -> Sequence[CommissionProfile]:
    stmt = (
        select(CommissionProfile)
        .options(selectinload(CommissionProfile.tiers))
        .where(CommissionProfile.organization_id == organization_id)
    )
    if not include_inactive:
        stmt = stmt.where(CommissionProfile.is_active.is_(True))
    stmt = stmt.order_by(CommissionProfile.is_default.desc(), CommissionProfile.name)
    return db.execute(stmt).scalars().all()


def get_commission_profile(db: Session, organization_id: int, profile_id: int) -> CommissionProfile | None:
    stmt = (
        select(CommissionProfile)
        .options(selectinload(CommissionProfile.tiers))
        .where(CommissionProfile.id == profile_id, CommissionProfile.organization_id == organization_id)
    )
    return db.execute(stmt).scalars().first()


def profile_user_counts(db: Session, profile_ids: Sequence[int]) -> dict[int, int]:
    if not profile_ids:
        return {}
    stmt = (
        select(User.commission_profile_id, func.count(User.id))
        .where(User.commission_profile_id.in_(profile_ids))
        .group_by(User.commission_profile_id)
    )
    return {profile_id: count for profile_id, count in db.execute(stmt).all()}


def _profile_name_taken(db: Session, organization_id: int, name: str, exclude_id: int | None = None) -> bool:
    stmt = select(CommissionProfile.id).where(
        CommissionProfile.organization_id == organization_id,
        CommissionProfile.name == name,
    )
    if exclude_id is not None:
        stmt = stmt.where(CommissionProfile.id != exclude_id)
    return db.execute(stmt).first() is not None


def _clear_default_profiles(db: Session, organization_id: int, keep_id: int | None = None) -> None:
    query = db.query(CommissionProfile).filter(
        CommissionProfile.organization_id == organization_id,
        CommissionProfile.is_default.is_(True),
    )
    if keep_id is not None:
        query = query.filter(CommissionProfile.id != keep_id)
    query.update({CommissionProfile.is_default: False}, synchronize_session=False)


def create_commission_profile(
    db: Session,
    organization_id: int,
    payload: CommissionProfileCreate,
    actor_id: int | None = None,
) -> CommissionProfile:
    if _profile_name_taken(db, organization_id, payload.name):
        raise ValueError(f"A commission profile named {payload.name!r} already exists.")
    if payload.is_default:
        _clear_default_profiles(db, organization_id)

    profile = CommissionProfile(
        organization_id=organization_id,
        name=payload.name,
        description=payload.description,
        calculation_method=payload.calculation_method,
        trigger_type=payload.trigger_type,
        is_default=payload.is_default,
        is_active=True,
        tiers=[_tier_from_input(tier) for tier in payload.tiers],
    )
    db.add(profile)
    db.flush()
    log_admin_action(
        db,
        actor_id,
        "CREATE_COMMISSION_PROFILE",
        "CommissionProfile",
        profile.id,
        {"name": profile.name, "method": profile.calculation_method, "tiers_count": len(payload.tiers)},
    )
    db.commit()
    db.refresh(profile)
    return profile


def update_commission_profile(
    db: Session,
    profile: CommissionProfile,
    payload: CommissionProfileUpdate,
    actor_id: int | None = None,
) -> CommissionProfile:
    changes = payload.model_dump(exclude_unset=True, exclude={"tiers"})
    if "name" in changes and changes["name"] is not None:
        if _profile_name_taken(db, profile.organization_id, changes["name"], exclude_id=profile.id):
            raise ValueError(f"A commission profile named {changes['name']!r} already exists.")
    if changes.get("is_active") is False and profile.is_active:
        user_count = profile_user_counts(db, [profile.id]).get(profile.id, 0)
        if user_count > 0:
            raise ValueError(f"Cannot deactivate profile with assigned users ({user_count}).")
        if profile.is_default:
            raise ValueError("Cannot deactivate default profile")
    if changes.get("is_default") is False and profile.is_default:
        raise ValueError("Cannot unset the default profile; make another profile the default instead")
    if changes.get("is_default") is True:
        _clear_default_profiles(db, profile.organization_id, keep_id=profile.id)

    for key, value in changes.items():
        if value is not None:
            setattr(profile, key, value)

    if payload.tiers is not None:
        # Tiers are replaced wholesale; flush the removals first so the
        # (profile_id, tier_level) uniqueness holds for the new rows.
        profile.tiers.clear()
        db.flush()
        profile.tiers.extend(_tier_from_input(tier) for tier in payload.tiers)

    profile.updated_at = datetime.now()
    log_admin_action(
        db,
        actor_id,
        "UPDATE_COMMISSION_PROFILE",
        "CommissionProfile",
        profile.id,
        {"changes": changes, "tiers_replaced": payload.tiers is not None},
    )
    db.commit()
    db.refresh(profile)
    return profile


def delete_commission_profile(db: Session, profile: CommissionProfile, actor_id: int | None = None) -> None:
    """Soft delete a profile that is neither the default nor assigned to anyone."""
    user_count = profile_user_counts(db, [profile.id]).get(profile.id, 0)
    if user_count > 0:
        raise ValueError(f"Cannot delete profile with assigned users ({user_count}).")
    if profile.is_default:
        raise ValueError("Cannot delete default profile")

    profile.is_active = False
    profile.updated_at = datetime.now()
    log_admin_action(db, actor_id, "DELETE_COMMISSION_PROFILE", "CommissionProfile", profile.id, {"name": profile.name})
    db.commit()


def assign_commission_profile(
    db: Session,
    user: User,
    profile: CommissionProfile | None,
    actor_id: int | None = None,
) -> User:
    if profile is not None and not profile.is_active:
        raise ValueError("Cannot assign an inactive commission profile.")
    user.commission_profile_id = profile.id if profile is not None else None
    log_admin_action(
        db,
        actor_id,
        "ASSIGN_COMMISSION_PROFILE",
        "User",
        user.id,
        {"profile_id": user.commission_profile_id},
    )
    db.commit()
    db.refresh(user)
    return user


def resolve_commission_profile(db: Session, user: User) -> CommissionProfile | None:
    """The trainer's assigned active profile, else the organization default."""
    if user.commission_profile_id is not None:
        profile = get_commission_profile(db, user.organization_id, user.commission_profile_id)
        if profile is not None and profile.is_active:
            return profile
    if user.organization_id is None:
        return None
    return get_default_profile(db, user.organization_id)


def save_commission_calculation(db: Session, calculation: CommissionCalculation) -> CommissionCalculation:
    db.add(calculation)
    db.commit()
    db.refresh(calculation)
    return calculation


def list_commission_calculations(db: Session, user_id: int, limit: int = 12) -> Sequence[CommissionCalculation]:
    stmt = (
        select(CommissionCalculation)
        .options(selectinload(CommissionCalculation.profile))
        .where(CommissionCalculation.user_id == user_id)
        .order_by(CommissionCalculation.period_end.desc(), CommissionCalculation.calculated_at.desc())
        .limit(limit)
    )
    return db.execute(stmt).scalars().all()


# --- Clients and packages -------------------------------------------------------


def create_client(db: Session, organization_id: int, payload: ClientCreate) -> Client:
    if payload.location_id is not None and get_location(db, organization_id, payload.location_id) is None:
        raise LookupError("Location not found")
    if payload.primary_trainer_id is not None:
        trainer = get_user_in_org(db, organization_id, payload.primary_trainer_id)
        if trainer is None:
            raise LookupError("Trainer not found")
    client = Client(organization_id=organization_id, **payload.model_dump())
    db.add(client)
    db.commit()
    db.refresh(client)
    return client


def get_client(db: Session, organization_id: int, client_id: int) -> Client | None:
    stmt = (
        select(Client)
        .options(selectinload(Client.packages))
        .where(Client.id == client_id, Client.organization_id == organization_id)
    )
    return db.execute(stmt).scalars().first()


def list_clients(
    db: Session,
    organization_id: int,
    trainer_id: int | None = None,
    location_id: int | None = None,
    active_only: bool = True,
) -> Sequence[Client]:
    stmt = select(Client).options(selectinload(Client.packages)).where(Client.organization_id == organization_id)
    if active_only:
        stmt = stmt.where(Client.active.is_(True))
    if trainer_id:
        stmt = stmt.where(Client.primary_trainer_id == trainer_id)
    if location_id:
        stmt = stmt.where(Client.location_id == location_id)
    return db.execute(stmt.order_by(Client.name)).scalars().all()


def get_package_type(db: Session, organization_id: int, package_type_id: int) -> PackageType | None:
    stmt = select(PackageType).where(
        PackageType.id == package_type_id, PackageType.organization_id == organization_id
    )
    return db.execute(stmt).scalars().first()


def list_package_types(db: Session, organization_id: int, include_inactive: bool = False) -> Sequence[PackageType]:
    stmt = select(PackageType).where(PackageType.organization_id == organization_id)
    if not include_inactive:
        stmt = stmt.where(PackageType.is_active.is_(True))
    return db.execute(stmt.order_by(PackageType.name)).scalars().all()


def _package_type_name_taken(db: Session, organization_id: int, name: str, exclude_id: int | None = None) -> bool:
    stmt = select(PackageType.id).where(
        PackageType.organization_id == organization_id,
        func.lower(PackageType.name) == name.lower(),
    )
    if exclude_id is not None:
        stmt = stmt.where(PackageType.id != exclude_id)
    return db.execute(stmt).first() is not None


def create_package_type(
    db: Session,
    organization_id: int,
    payload: PackageTypeCreate,
    actor_id: int | None = None,
) -> PackageType:
    if _package_type_name_taken(db, organization_id, payload.name):
        raise ValueError("A package type with this name already exists")
    package_type = PackageType(organization_id=organization_id, **payload.model_dump())
    db.add(package_type)
    db.flush()
    log_admin_action(
        db, actor_id, "CREATE_PACKAGE_TYPE", "PackageType", package_type.id, payload.model_dump()
    )
    db.commit()
    db.refresh(package_type)
    return package_type


def update_package_type(
    db: Session,
    package_type: PackageType,
    payload: PackageTypeUpdate,
    actor_id: int | None = None,
) -> PackageType:
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("name") and _package_type_name_taken(
        db, package_type.organization_id, changes["name"], package_type.id
    ):
        raise ValueError("A package type with this name already exists")
    expiry_value = changes.get("expiry_duration_value", package_type.expiry_duration_value)
    expiry_unit = changes.get("expiry_duration_unit", package_type.expiry_duration_unit)
    if (expiry_value is None) != (expiry_unit is None):
        raise ValueError("Expiry duration needs both a value and a unit")

    for key, value in changes.items():
        if key in ("name", "start_trigger", "is_active") and value is None:
            continue
        setattr(package_type, key, value)
    log_admin_action(db, actor_id, "UPDATE_PACKAGE_TYPE", "PackageType", package_type.id, changes)
    db.commit()
    db.refresh(package_type)
    return package_type


def delete_package_type(db: Session, package_type: PackageType, actor_id: int | None = None) -> None:
    package_count = db.execute(
        select(func.count(Package.id)).where(Package.package_type_id == package_type.id)
    ).scalar_one()
    if package_count:
        raise ValueError(f"Cannot delete package type with {package_count} associated packages")
    log_admin_action(db, actor_id, "DELETE_PACKAGE_TYPE", "PackageType", package_type.id, {"name": package_type.name})
    db.delete(package_type)
    db.commit()


def create_package(db: Session, organization_id: int, payload: PackageCreate) -> Package:
    """Sell a package; unset name, value and sessions come from the package type."""
    client = get_client(db, organization_id, payload.client_id)
    if client is None:
        raise LookupError("Client not found")

    package_type = None
    if payload.package_type_id is not None:
        package_type = get_package_type(db, organization_id, payload.package_type_id)
        if package_type is None:
            raise LookupError("Package type not found")
        if not package_type.is_active:
            raise ValueError("Package type is inactive")

    name = payload.name or (package_type.name if package_type else None)
    total_value = payload.total_value
    if total_value is None and package_type is not None and package_type.default_price is not None:
        total_value = quantize_money(Decimal(str(package_type.default_price)))
    total_sessions = payload.total_sessions
    if total_sessions is None and package_type is not None:
        total_sessions = package_type.default_sessions
    if not name or total_value is None or not total_sessions:
        raise ValueError("Name, total value and total sessions are required")

    start = payload.start_date or date.today()
    session_value = quantize_money(total_value / total_sessions)
    package = Package(
        organization_id=organization_id,
        client_id=client.id,
        package_type_id=package_type.id if package_type else None,
        name=name,
        total_value=total_value,
        total_sessions=total_sessions,
        remaining_sessions=total_sessions,
        session_value=session_value,
        start_date=start,
    )

    starts_on_first_session = package_type is not None and package_type.start_trigger == "FIRST_SESSION"
    if not starts_on_first_session:
        package.effective_start_date = start
        if package_type is not None and package_type.expiry_duration_value and package_type.expiry_duration_unit:
            package.expires_at = calculate_expiry_date(
                start, package_type.expiry_duration_value, package_type.expiry_duration_unit
            )

    db.add(package)
    db.commit()
    db.refresh(package)
    return package


def get_package(db: Session, organization_id: int, package_id: int) -> Package | None:
    stmt = (
        select(Package)
        .options(selectinload(Package.payments), selectinload(Package.client))
        .where(Package.id == package_id, Package.organization_id == organization_id)
    )
    return db.execute(stmt).scalars().first()


def used_session_count(db: Session, package_id: int) -> int:
    stmt = select(func.count(TrainingSession.id)).where(
        TrainingSession.package_id == package_id,
        TrainingSession.cancelled.is_(False),
    )
    return int(db.execute(stmt).scalar_one())


def package_payment_summary(db: Session, package: Package) -> PaymentSummary:
    return build_payment_summary(
        package.total_value,
        package.total_sessions,
        [payment.amount for payment in package.payments],
        used_session_count(db, package.id),
    )


def package_snapshot(db: Session, package: Package) -> PackageSnapshot:
    return PackageSnapshot(
        remaining_sessions=package.remaining_sessions,
        expires_at=package.expires_at,
        session_count=used_session_count(db, package.id),
    )


def get_client_state(db: Session, client: Client, now: datetime | None = None) -> str:
    return client_state([package_snapshot(db, package) for package in client.packages], now=now)


# --- Payments -----------------------------------------------------------------


def _check_attributee(db: Session, organization_id: int, user_id: int | None) -> None:
    if user_id is not None and get_user_in_org(db, organization_id, user_id) is None:
        raise LookupError(f"User {user_id} not found in this organization")


def list_payments(
    db: Session,
    organization_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
    trainer_id: int | None = None,
    client_id: int | None = None,
    location_id: int | None = None,
) -> Sequence[Payment]:
    stmt = (
        select(Payment)
        .join(Payment.package)
        .join(Package.client)
        .options(
            selectinload(Payment.package).selectinload(Package.client).selectinload(Client.primary_trainer),
            selectinload(Payment.sales_attributed_to),
            selectinload(Payment.sales_attributed_to2),
            selectinload(Payment.created_by),
        )
        .where(Package.organization_id == organization_id)
    )
    if start_date:
        stmt = stmt.where(Payment.payment_date >= datetime.combine(start_date, time.min))
    if end_date:
        stmt = stmt.where(Payment.payment_date <= datetime.combine(end_date, time.max))
    if trainer_id:
        stmt = stmt.where(Client.primary_trainer_id == trainer_id)
    if client_id:
        stmt = stmt.where(Client.id == client_id)
    if location_id:
        stmt = stmt.where(Client.location_id == location_id)
    return db.execute(stmt.order_by(Payment.payment_date.desc())).scalars().all()


def get_payment(db: Session, organization_id: int, payment_id: int) -> Payment | None:
    stmt = (
        select(Payment)
        .join(Payment.package)
        .where(Payment.id == payment_id, Package.organization_id == organization_id)
    )
    return db.execute(stmt).scalars().first()


def create_payment(db: Session, organization_id: int, payload: PaymentCreate, actor_id: int | None = None) -> Payment:
    package = get_package(db, organization_id, payload.package_id)
    if package is None:
        raise LookupError("Package not found")
    _check_attributee(db, organization_id, payload.sales_attributed_to_id)
    _check_attributee(db, organization_id, payload.sales_attributed_to2_id)

    paid = sum((payment.amount for payment in package.payments), Decimal("0"))
    remaining = Decimal(package.total_value) - paid
    if payload.amount > remaining + PAYMENT_TOLERANCE:
        raise ValueError(f"Amount exceeds remaining balance of ${remaining:.2f}")

    payment = Payment(
        package_id=package.id,
        amount=payload.amount,
        payment_date=payload.payment_date or datetime.now(),
        payment_method=payload.payment_method,
        notes=payload.notes or None,
        created_by_id=actor_id,
        sales_attributed_to_id=payload.sales_attributed_to_id,
        sales_attributed_to2_id=payload.sales_attributed_to2_id,
    )
    db.add(payment)
    db.commit()
    db.refresh(payment)
    return payment


def _check_unlocked_after(db: Session, package: Package, paid_after: Decimal, verb: str) -> None:
    used = used_session_count(db, package.id)
    unlocked = calculate_unlocked_sessions(paid_after, Decimal(package.total_value), package.total_sessions)
    if unlocked < used:
        raise ValueError(
            f"Cannot {verb} payment. {used} sessions have been used, but this would only "
            f"leave {unlocked} sessions unlocked."
        )


def update_payment(db: Session, payment: Payment, payload: PaymentUpdate) -> Payment:
    changes = payload.model_dump(exclude_unset=True)
    first = changes.get("sales_attributed_to_id", payment.sales_attributed_to_id)
    second = changes.get("sales_attributed_to2_id", payment.sales_attributed_to2_id)
    if first is not None and first == second:
        raise ValueError("Cannot attribute sales commission to the same person twice")

    package = payment.package
    organization_id = package.organization_id
    _check_attributee(db, organization_id, first)
    _check_attributee(db, organization_id, second)

    if changes.get("amount") is not None:
        others = sum((item.amount for item in package.payments if item.id != payment.id), Decimal("0"))
        remaining = Decimal(package.total_value) - others
        if changes["amount"] > remaining + PAYMENT_TOLERANCE:
            raise ValueError(f"Amount exceeds remaining balance of ${remaining:.2f}")
        if changes["amount"] < payment.amount:
            _check_unlocked_after(db, package, others + changes["amount"], "reduce")

    for key, value in changes.items():
        if key in {"amount", "payment_date", "payment_method"} and value is None:
            continue
        setattr(payment, key, value)
    db.commit()
    db.refresh(payment)
    return payment


def delete_payment(db: Session, payment: Payment) -> None:
    package = payment.package
    others = sum((item.amount for item in package.payments if item.id != payment.id), Decimal("0"))
    _check_unlocked_after(db, package, others, "delete")
    db.delete(payment)
    db.commit()


# --- Training sessions -------------------------------------------------------


def log_session(db: Session, actor: User, payload: SessionCreate) -> TrainingSession:
    """Record a session against a client's package.

    Raises LookupError for unknown rows, PermissionError for role or
    location violations and ValueError for package rule violations.
    """
    organization_id = actor.organization_id
    if organization_id is None:
        raise PermissionError("No organization context")

    trainer = actor
    if payload.trainer_id is not None and payload.trainer_id != actor.id:
        if actor.role not in MANAGER_ROLES:
            raise PermissionError("You do not have permission to create sessions for other trainers")
        trainer = get_user_in_org(db, organization_id, payload.trainer_id)
        if trainer is None or trainer.role != ROLE_TRAINER or not trainer.active:
            raise ValueError("Invalid trainer selected or trainer not in your organization")

    client = get_client(db, organization_id, payload.client_id)
    if client is None:
        raise LookupError("Client not found")
    package = get_package(db, organization_id, payload.package_id)
    if package is None:
        raise LookupError("Package not found")
    if package.client_id != client.id:
        raise ValueError("Package does not belong to this client")
    if not package.active:
        raise ValueError("Package is inactive")
    if package.expires_at is not None and package.expires_at < datetime.now():
        raise ValueError("Package has expired")
    if actor.role == ROLE_TRAINER and actor.location_id != client.location_id:
        raise PermissionError("You can only create sessions for clients at your location")

    allowed, reason = can_log_session(package_payment_summary(db, package))
    if not allowed:
        raise ValueError(reason)

    if payload.is_no_show:
        notes = f"{payload.notes}\n\n{NO_SHOW_NOTE}" if payload.notes else NO_SHOW_NOTE
        token = None
        expiry = None
    else:
        notes = payload.notes or None
        token = secrets.token_hex(32)
        expiry = datetime.now() + timedelta(days=VALIDATION_TOKEN_DAYS)

    session_row = TrainingSession(
        organization_id=organization_id,
        trainer_id=trainer.id,
        client_id=client.id,
        package_id=package.id,
        location_id=client.location_id,
        session_date=payload.session_date,
        session_value=package.session_value,
        notes=notes,
        validated=False,
        cancelled=payload.is_no_show,
        cancelled_at=datetime.now() if payload.is_no_show else None,
        validation_token=token,
        validation_expiry=expiry,
    )
    db.add(session_row)

    if package.remaining_sessions > 0:
        package.remaining_sessions -= 1
    if package.effective_start_date is None:
        package.effective_start_date = payload.session_date.date()
        package_type = package.package_type
        if package_type is not None and package_type.expiry_duration_value and package_type.expiry_duration_unit:
            package.expires_at = calculate_expiry_date(
                package.effective_start_date,
                package_type.expiry_duration_value,
                package_type.expiry_duration_unit,
            )

    db.commit()
    db.refresh(session_row)
    return session_row


def validate_session(db: Session, token: str) -> TrainingSession:
    stmt = select(TrainingSession).where(TrainingSession.validation_token == token)
    session_row = db.execute(stmt).scalars().first()
    if session_row is None:
        raise LookupError("Invalid validation link")
    if session_row.cancelled:
        raise ValueError("Session has been cancelled")
    if session_row.validated:
        return session_row
    if session_row.validation_expiry is not None and session_row.validation_expiry < datetime.now():
        raise ValueError("Validation link has expired")
    session_row.validated = True
    session_row.validated_at = datetime.now()
    db.commit()
    db.refresh(session_row)
    return session_row


def get_session_row(db: Session, organization_id: int, session_id: int) -> TrainingSession | None:
    stmt = select(TrainingSession).where(
        TrainingSession.id == session_id, TrainingSession.organization_id == organization_id
    )
    return db.execute(stmt).scalars().first()


def cancel_session(db: Session, session_row: TrainingSession) -> TrainingSession:
    if session_row.cancelled:
        return session_row
    session_row.cancelled = True
    session_row.cancelled_at = datetime.now()
    package = session_row.package
    if package is not None and package.remaining_sessions < package.total_sessions:
        package.remaining_sessions += 1
    db.commit()
    db.refresh(session_row)
    return session_row


def list_sessions(
    db: Session,
    organization_id: int,
    trainer_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    location_id: int | None = None,
) -> Sequence[TrainingSession]:
    stmt = (
        select(TrainingSession)
        .options(selectinload(TrainingSession.client), selectinload(TrainingSession.trainer))
        .where(TrainingSession.organization_id == organization_id)
    )
    if trainer_id:
        stmt = stmt.where(TrainingSession.trainer_id == trainer_id)
    if start_date:
        stmt = stmt.where(TrainingSession.session_date >= datetime.combine(start_date, time.min))
    if end_date:
        stmt = stmt.where(TrainingSession.session_date <= datetime.combine(end_date, time.max))
    if location_id:
        stmt = stmt.where(TrainingSession.location_id == location_id)
    return db.execute(stmt.order_by(TrainingSession.session_date.desc())).scalars().all()


# --- Dashboard aggregates ------------------------------------------------------


def session_totals(
    db: Session,
    organization_id: int,
    start: date,
    end: date,
    trainer_id: int | None = None,
) -> dict[str, Decimal | int]:
    start_dt, end_dt = day_bounds(start, end)
    base = [
        TrainingSession.organization_id == organization_id,
        TrainingSession.session_date >= start_dt,
        TrainingSession.session_date <= end_dt,
        TrainingSession.cancelled.is_(False),
    ]
    if trainer_id:
        base.append(TrainingSession.trainer_id == trainer_id)

    total_stmt = select(func.count(TrainingSession.id), func.coalesce(func.sum(TrainingSession.session_value), 0)).where(*base)
    total_count, total_value = db.execute(total_stmt).one()
    validated_stmt = select(func.count(TrainingSession.id)).where(*base, TrainingSession.validated.is_(True))
    validated_count = db.execute(validated_stmt).scalar_one()
    return {
        "sessions": int(total_count or 0),
        "validated_sessions": int(validated_count or 0),
        "session_value": Decimal(str(total_value or 0)),
    }


def payment_totals(db: Session, organization_id: int, start: date, end: date) -> dict[str, Decimal | int]:
    start_dt, end_dt = day_bounds(start, end)
    stmt = (
        select(func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0))
        .join(Payment.package)
        .where(
            Package.organization_id == organization_id,
            Payment.payment_date >= start_dt,
            Payment.payment_date <= end_dt,
        )
    )
    count, amount = db.execute(stmt).one()
    return {"payments": int(count or 0), "payment_amount": Decimal(str(amount or 0))}


def client_state_counts(db: Session, organization_id: int, trainer_id: int | None = None) -> dict[str, int]:
    counts: dict[str, int] = {}
    for client in list_clients(db, organization_id, trainer_id=trainer_id):
        state = get_client_state(db, client)
        counts[state] = counts.get(state, 0) + 1
    return counts
