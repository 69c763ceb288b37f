"""Commission data gathering (kept separate from the pure calculators)."""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ptdesk.core.commission import ProfileRules, SaleRow, SessionRow, TierRule
from ptdesk.crud import day_bounds
from ptdesk.models import Client, CommissionProfile, Package, Payment, TrainingSession

HALF = Decimal("0.5")


def get_eligible_sessions(
    db: Session,
    trainer_id: int,
    organization_id: int,
    period_start: date,
    period_end: date,
    location_id: Optional[int] = None,
) -> List[SessionRow]:
    """Return validated, non-cancelled sessions for a trainer in the period.

    This only inspects `TrainingSession` rows, so it is safe to call from
    views and reports.
    """

    start_dt, end_dt = day_bounds(period_start, period_end)
    query = db.query(TrainingSession).filter(
        TrainingSession.trainer_id == trainer_id,
        TrainingSession.organization_id == organization_id,
        TrainingSession.session_date >= start_dt,
        TrainingSession.session_date <= end_dt,
        TrainingSession.validated.is_(True),
        TrainingSession.cancelled.is_(False),
    )
    if location_id:
        query = query.filter(TrainingSession.location_id == location_id)

    return [
        SessionRow(session_date=row.session_date, session_value=Decimal(str(row.session_value)))
        for row in query.order_by(TrainingSession.session_date.asc()).all()
    ]


def credited_amount(payment: Payment, trainer_id: int, primary_trainer_id: Optional[int]) -> Decimal:
    """Share of ``payment`` credited to ``trainer_id``.

    Two attributees split the amount evenly; an unattributed payment goes to
    the client's primary trainer.
    """

    attributees = [
        user_id
        for user_id in (payment.sales_attributed_to_id, payment.sales_attributed_to2_id)
        if user_id is not None
    ]
    amount = Decimal(str(payment.amount))
    if not attributees:
        return amount if primary_trainer_id == trainer_id else Decimal("0")
    if trainer_id not in attributees:
        return Decimal("0")
    if len(attributees) == 2:
        return amount * HALF
    return amount


def get_attributed_sales(
    db: Session,
    trainer_id: int,
    organization_id: int,
    period_start: date,
    period_end: date,
) -> List[SaleRow]:
    start_dt, end_dt = day_bounds(period_start, period_end)
    rows = (
        db.query(Payment, Client.primary_trainer_id)
        .join(Package, Payment.package_id == Package.id)
        .join(Client, Package.client_id == Client.id)
        .filter(
            Package.organization_id == organization_id,
            Payment.payment_date >= start_dt,
            Payment.payment_date <= end_dt,
            or_(
                Payment.sales_attributed_to_id == trainer_id,
                Payment.sales_attributed_to2_id == trainer_id,
                Client.primary_trainer_id == trainer_id,
            ),
        )
        .order_by(Payment.payment_date.asc())
        .all()
    )

    sales: List[SaleRow] = []
    for payment, primary_trainer_id in rows:
        amount = credited_amount(payment, trainer_id, primary_trainer_id)
        if amount > 0:
            sales.append(SaleRow(payment_id=payment.id, payment_date=payment.payment_date, amount=amount))
    return sales


def to_profile_rules(profile: CommissionProfile) -> ProfileRules:
    """Detach a profile and its tiers from the session for the calculators."""

    return ProfileRules(
        calculation_method=profile.calculation_method,
        trigger_type=profile.trigger_type,
        tiers=[
            TierRule(
                tier_level=tier.tier_level,
                name=tier.name,
                session_threshold=tier.session_threshold,
                sales_threshold=tier.sales_threshold,
                session_commission_percent=tier.session_commission_percent,
                session_flat_fee=tier.session_flat_fee,
                sales_commission_percent=tier.sales_commission_percent,
                sales_flat_fee=tier.sales_flat_fee,
                tier_bonus=tier.tier_bonus,
            )
            for tier in profile.tiers
        ],
    )
