"""Pydantic schemas for API payloads and responses."""
from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from ptdesk.models import (
    CALCULATION_METHOD_ENUM,
    DURATION_UNIT_ENUM,
    PAYMENT_METHOD_ENUM,
    START_TRIGGER_ENUM,
    TRIGGER_TYPE_ENUM,
)

_CENTS = Decimal("0.01")


def _quantize(value: Decimal | None) -> Decimal | None:
    if value is None:
        return None
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def _normalize_choice(value: str | None, choices: tuple[str, ...], label: str) -> str | None:
    if value is None:
        return None
    normalized = value.strip().upper()
    if normalized not in choices:
        raise ValueError(f"{label} must be one of: {', '.join(choices)}.")
    return normalized


class CommissionTierInput(BaseModel):
    tier_level: int = Field(..., ge=1)
    name: Optional[str] = Field(None, max_length=100)
    session_threshold: Optional[int] = Field(None, ge=0)
    sales_threshold: Optional[Decimal] = Field(None, ge=0)
    session_commission_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    session_flat_fee: Optional[Decimal] = Field(None, ge=0)
    sales_commission_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    sales_flat_fee: Optional[Decimal] = Field(None, ge=0)
    tier_bonus: Optional[Decimal] = Field(None, ge=0)

    @field_validator(
        "sales_threshold",
        "session_commission_percent",
        "session_flat_fee",
        "sales_commission_percent",
        "sales_flat_fee",
        "tier_bonus",
    )
    def quantize_amounts(cls, value: Decimal | None) -> Decimal | None:
        return _quantize(value)


def _check_unique_levels(tiers: List[CommissionTierInput] | None) -> List[CommissionTierInput] | None:
    if tiers is None:
        return None
    levels = [tier.tier_level for tier in tiers]
    if len(levels) != len(set(levels)):
        raise ValueError("Tier levels must be unique within a profile.")
    return sorted(tiers, key=lambda tier: tier.tier_level)


class CommissionProfileCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    calculation_method: str
    trigger_type: str = "NONE"
    is_default: bool = False
    tiers: List[CommissionTierInput] = Field(..., min_length=1)

    @field_validator("name", mode="before")
    def strip_name(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            raise ValueError("Name cannot be empty.")
        return str(value).strip()

    @field_validator("calculation_method")
    def validate_method(cls, value: str) -> str:
        return _normalize_choice(value, CALCULATION_METHOD_ENUM, "Calculation method")

    @field_validator("trigger_type")
    def validate_trigger(cls, value: str) -> str:
        return _normalize_choice(value, TRIGGER_TYPE_ENUM, "Trigger type")

    @field_validator("tiers")
    def validate_tiers(cls, value: List[CommissionTierInput]) -> List[CommissionTierInput]:
        return _check_unique_levels(value)


class CommissionProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    calculation_method: Optional[str] = None
    trigger_type: Optional[str] = None
    is_default: Optional[bool] = None
    is_active: Optional[bool] = None
    tiers: Optional[List[CommissionTierInput]] = None

    @field_validator("calculation_method")
    def validate_method(cls, value: str | None) -> str | None:
        return _normalize_choice(value, CALCULATION_METHOD_ENUM, "Calculation method")

    @field_validator("trigger_type")
    def validate_trigger(cls, value: str | None) -> str | None:
        return _normalize_choice(value, TRIGGER_TYPE_ENUM, "Trigger type")

    @field_validator("tiers")
    def validate_tiers(cls, value: List[CommissionTierInput] | None) -> List[CommissionTierInput] | None:
        if value is not None and not value:
            raise ValueError("A profile needs at least one tier.")
        return _check_unique_levels(value)


class CommissionTierRead(BaseModel):
    id: int
    tier_level: int
    name: str
    session_threshold: Optional[int]
    sales_threshold: Optional[float]
    session_commission_percent: Optional[float]
    session_flat_fee: Optional[float]
    sales_commission_percent: Optional[float]
    sales_flat_fee: Optional[float]
    tier_bonus: Optional[float]

    model_config = ConfigDict(from_attributes=True)


class CommissionProfileRead(BaseModel):
    id: int
    name: str
    description: Optional[str]
    calculation_method: str
    trigger_type: str
    is_default: bool
    is_active: bool
    tiers: List[CommissionTierRead]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CommissionCalculateRequest(BaseModel):
    user_id: Optional[int] = None
    period_start: date
    period_end: date
    location_id: Optional[int] = None
    save_calculation: bool = False

    @model_validator(mode="after")
    def check_period(self) -> "CommissionCalculateRequest":
        if self.period_end < self.period_start:
            raise ValueError("Period end must be on or after period start.")
        return self


class CommissionCalculationRead(BaseModel):
    id: Optional[int] = None
    user_id: int
    organization_id: int
    profile_id: Optional[int]
    period_start: date
    period_end: date
    calculation_method: str
    total_sessions: int
    total_sales_count: int
    total_sales_value: float
    session_commission: float
    sales_commission: float
    tier_bonus: float
    total_commission: float
    tier_reached: Optional[int]
    calculation_snapshot: dict[str, Any]
    calculated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("calculation_snapshot", mode="before")
    def decode_snapshot(cls, value: Any) -> Any:
        if isinstance(value, str):
            return json.loads(value or "{}")
        return value


class CommissionMethodUpdate(BaseModel):
    method: str
    default_rate: Optional[Decimal] = Field(None, ge=0, le=100)

    @field_validator("method")
    def validate_method(cls, value: str) -> str:
        return _normalize_choice(value, CALCULATION_METHOD_ENUM, "Calculation method")


class SessionTierInput(BaseModel):
    min_sessions: int = Field(..., ge=0)
    max_sessions: Optional[int] = Field(None, ge=0)
    percentage: Decimal = Field(..., ge=0, le=100)

    @model_validator(mode="after")
    def check_range(self) -> "SessionTierInput":
        if self.max_sessions is not None and self.max_sessions < self.min_sessions:
            raise ValueError("max_sessions must be greater than or equal to min_sessions.")
        return self


class TierScheduleUpdate(BaseModel):
    tiers: List[SessionTierInput] = Field(..., min_length=1)

    @field_validator("tiers")
    def sort_tiers(cls, value: List[SessionTierInput]) -> List[SessionTierInput]:
        return sorted(value, key=lambda tier: tier.min_sessions)


class PaymentCreate(BaseModel):
    package_id: int
    amount: Decimal = Field(..., gt=0)
    payment_date: Optional[datetime] = None
    payment_method: str = "CARD"
    notes: Optional[str] = None
    sales_attributed_to_id: Optional[int] = None
    sales_attributed_to2_id: Optional[int] = None

    @field_validator("payment_method")
    def validate_method(cls, value: str) -> str:
        return _normalize_choice(value, PAYMENT_METHOD_ENUM, "Payment method")

    @field_validator("amount")
    def quantize_amount(cls, value: Decimal) -> Decimal:
        return _quantize(value)

    @model_validator(mode="after")
    def check_attribution(self) -> "PaymentCreate":
        if (
            self.sales_attributed_to_id is not None
            and self.sales_attributed_to_id == self.sales_attributed_to2_id
        ):
            raise ValueError("Cannot attribute sales commission to the same person twice")
        return self


class PaymentUpdate(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0)
    payment_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    sales_attributed_to_id: Optional[int] = None
    sales_attributed_to2_id: Optional[int] = None

    @field_validator("payment_method")
    def validate_method(cls, value: str | None) -> str | None:
        return _normalize_choice(value, PAYMENT_METHOD_ENUM, "Payment method")

    @field_validator("amount")
    def quantize_amount(cls, value: Decimal | None) -> Decimal | None:
        return _quantize(value)


class ClientCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = Field(None, max_length=200)
    phone: Optional[str] = Field(None, max_length=50)
    location_id: Optional[int] = None
    primary_trainer_id: Optional[int] = None

    @field_validator("name", "email", "phone", mode="before")
    def strip_strings(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return None
        text = str(value).strip()
        if not text and info.field_name == "name":
            raise ValueError("Name cannot be empty.")
        return text or None


class LocationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    address: Optional[str] = Field(None, max_length=255)

    @field_validator("name", mode="before")
    def strip_name(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            raise ValueError("Name cannot be empty.")
        return str(value).strip()


class LocationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    address: Optional[str] = Field(None, max_length=255)
    active: Optional[bool] = None


class LocationRead(BaseModel):
    id: int
    name: str
    address: Optional[str]
    active: bool

    model_config = ConfigDict(from_attributes=True)


def _check_expiry_pair(value: int | None, unit: str | None) -> None:
    if (value is None) != (unit is None):
        raise ValueError("Expiry duration needs both a value and a unit.")


class PackageTypeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    default_sessions: Optional[int] = Field(None, gt=0)
    default_price: Optional[Decimal] = Field(None, ge=0)
    start_trigger: str = "DATE_OF_PURCHASE"
    expiry_duration_value: Optional[int] = Field(None, gt=0)
    expiry_duration_unit: Optional[str] = None

    @field_validator("name", mode="before")
    def strip_name(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            raise ValueError("Name cannot be empty.")
        return str(value).strip()

    @field_validator("default_price")
    def quantize_price(cls, value: Decimal | None) -> Decimal | None:
        return _quantize(value)

    @field_validator("start_trigger")
    def validate_trigger(cls, value: str) -> str:
        return _normalize_choice(value, START_TRIGGER_ENUM, "Start trigger")

    @field_validator("expiry_duration_unit")
    def validate_unit(cls, value: str | None) -> str | None:
        return _normalize_choice(value, DURATION_UNIT_ENUM, "Expiry duration unit")

    @model_validator(mode="after")
    def check_expiry(self) -> "PackageTypeCreate":
        _check_expiry_pair(self.expiry_duration_value, self.expiry_duration_unit)
        return self


class PackageTypeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    default_sessions: Optional[int] = Field(None, gt=0)
    default_price: Optional[Decimal] = Field(None, ge=0)
    start_trigger: Optional[str] = None
    expiry_duration_value: Optional[int] = Field(None, gt=0)
    expiry_duration_unit: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("default_price")
    def quantize_price(cls, value: Decimal | None) -> Decimal | None:
        return _quantize(value)

    @field_validator("start_trigger")
    def validate_trigger(cls, value: str | None) -> str | None:
        return _normalize_choice(value, START_TRIGGER_ENUM, "Start trigger")

    @field_validator("expiry_duration_unit")
    def validate_unit(cls, value: str | None) -> str | None:
        return _normalize_choice(value, DURATION_UNIT_ENUM, "Expiry duration unit")


class PackageTypeRead(BaseModel):
    id: int
    name: str
    description: Optional[str]
    default_sessions: Optional[int]
    default_price: Optional[float]
    start_trigger: str
    expiry_duration_value: Optional[int]
    expiry_duration_unit: Optional[str]
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class PackageCreate(BaseModel):
    client_id: int
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    total_value: Optional[Decimal] = Field(None, ge=0)
    total_sessions: Optional[int] = Field(None, gt=0)
    package_type_id: Optional[int] = None
    start_date: Optional[date] = None

    @field_validator("total_value")
    def quantize_value(cls, value: Decimal | None) -> Decimal | None:
        return _quantize(value)


class SessionCreate(BaseModel):
    client_id: int
    package_id: int
    trainer_id: Optional[int] = None
    session_date: datetime
    notes: Optional[str] = None
    is_no_show: bool = False


class ProfileAssignment(BaseModel):
    user_ids: List[int] = Field(..., min_length=1)


class PaymentRead(BaseModel):
    id: int
    package_id: int
    amount: float
    payment_date: datetime
    payment_method: str
    notes: Optional[str]
    created_by_id: Optional[int]
    sales_attributed_to_id: Optional[int]
    sales_attributed_to2_id: Optional[int]

    model_config = ConfigDict(from_attributes=True)


class SessionRead(BaseModel):
    id: int
    trainer_id: int
    client_id: int
    package_id: Optional[int]
    location_id: Optional[int]
    session_date: datetime
    session_value: float
    validated: bool
    validated_at: Optional[datetime]
    cancelled: bool
    notes: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class PackageRead(BaseModel):
    id: int
    client_id: int
    package_type_id: Optional[int]
    name: str
    total_value: float
    total_sessions: int
    remaining_sessions: int
    session_value: float
    active: bool
    start_date: Optional[date]
    effective_start_date: Optional[date]
    expires_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class ClientRead(BaseModel):
    id: int
    name: str
    email: Optional[str]
    phone: Optional[str]
    location_id: Optional[int]
    primary_trainer_id: Optional[int]
    active: bool

    model_config = ConfigDict(from_attributes=True)
