"""Application service layer."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from ptdesk import crud
from ptdesk.auth import ROLE_TRAINER, User
from ptdesk.commission import get_attributed_sales, get_eligible_sessions, to_profile_rules
from ptdesk.core.commission import METHOD_FLAT, calculate_commission, quantize_money
from ptdesk.core.tier_schedule import SessionTier, evaluate
from ptdesk.exporting.commission import report_to_csv, report_to_xlsx
from ptdesk.models import CommissionCalculation

logger = logging.getLogger(__name__)

DEFAULT_REPORT_METHOD = os.getenv("PTDESK_COMMISSION_METHOD", "PROGRESSIVE").upper()
EXPORT_FORMATS = ("csv", "xlsx")


@dataclass
class MonthlyReportRow:
    trainer_id: int
    trainer_name: str
    trainer_email: str
    location_name: Optional[str]
    total_sessions: int
    validated_sessions: int
    total_value: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    method: str
    tier_achieved: Optional[SessionTier] = None


@dataclass
class MonthlyReport:
    organization_id: int
    period_start: date
    period_end: date
    method: str
    location_id: Optional[int] = None
    rows: List[MonthlyReportRow] = field(default_factory=list)

    @property
    def total_sessions(self) -> int:
        return sum(row.validated_sessions for row in self.rows)

    @property
    def total_value(self) -> Decimal:
        return sum((row.total_value for row in self.rows), Decimal("0"))

    @property
    def total_commission(self) -> Decimal:
        return sum((row.commission_amount for row in self.rows), Decimal("0"))


class CommissionService:
    """Coordinates commission calculations using database state."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def calculate_for_trainer(
        self,
        user_id: int,
        period_start: date,
        period_end: date,
        save: bool = False,
        location_id: Optional[int] = None,
    ) -> CommissionCalculation:
        user = self.db.get(User, user_id)
        if user is None:
            raise LookupError("User not found")
        if user.organization_id is None:
            raise ValueError("User has no organization")

        profile = crud.resolve_commission_profile(self.db, user)
        if profile is None:
            raise ValueError("No commission profile assigned and no default profile found")

        sessions = get_eligible_sessions(
            self.db, user.id, user.organization_id, period_start, period_end, location_id=location_id
        )
        sales = get_attributed_sales(self.db, user.id, user.organization_id, period_start, period_end)
        result = calculate_commission(to_profile_rules(profile), sessions, sales)

        snapshot = dict(result.snapshot)
        snapshot["profile_id"] = profile.id
        snapshot["profile_name"] = profile.name
        snapshot["period"] = {"start": period_start.isoformat(), "end": period_end.isoformat()}

        calculation = CommissionCalculation(
            organization_id=user.organization_id,
            user_id=user.id,
            profile_id=profile.id,
            period_start=period_start,
            period_end=period_end,
            calculation_method=profile.calculation_method,
            total_sessions=result.session_count,
            total_sales_count=result.sales_count,
            total_sales_value=result.sales_volume,
            session_commission=result.session_commission,
            sales_commission=result.sales_commission,
            tier_bonus=result.tier_bonus,
            total_commission=result.total_commission,
            tier_reached=result.tier_reached,
            calculation_snapshot=json.dumps(snapshot, default=str),
            calculated_at=datetime.now(),
        )
        if save:
            calculation = crud.save_commission_calculation(self.db, calculation)
            logger.info(
                "Saved commission calculation %s for user %s (%s to %s): %s",
                calculation.id,
                user.id,
                period_start,
                period_end,
                calculation.total_commission,
            )
        return calculation

    def calculate_for_organization(
        self,
        organization_id: int,
        period_start: date,
        period_end: date,
        save: bool = False,
    ) -> List[CommissionCalculation]:
        results: List[CommissionCalculation] = []
        for trainer in crud.list_trainers(self.db, organization_id):
            try:
                results.append(self.calculate_for_trainer(trainer.id, period_start, period_end, save=save))
            except (LookupError, ValueError) as exc:
                logger.warning("Skipping commission for trainer %s: %s", trainer.id, exc)
        return results

    def history(self, user_id: int, limit: int = 12) -> Sequence[CommissionCalculation]:
        return crud.list_commission_calculations(self.db, user_id, limit=limit)

    def resolve_report_method(self, organization_id: int, method: Optional[str] = None) -> str:
        if method:
            return method.upper()
        organization = crud.get_organization(self.db, organization_id)
        if organization is not None and organization.commission_method:
            return organization.commission_method
        return DEFAULT_REPORT_METHOD

    def monthly_report(
        self,
        organization_id: int,
        period_start: date,
        period_end: date,
        method: Optional[str] = None,
        location_id: Optional[int] = None,
        trainer_id: Optional[int] = None,
    ) -> MonthlyReport:
        """Price each trainer's validated sessions on the organization tier schedule."""

        organization = crud.get_organization(self.db, organization_id)
        if organization is None:
            raise LookupError("Organization not found")

        report_method = self.resolve_report_method(organization_id, method)
        tiers = [
            SessionTier(tier.min_sessions, tier.max_sessions, Decimal(str(tier.percentage)))
            for tier in crud.list_commission_tiers(self.db, organization_id)
        ]
        flat_rate = organization.default_commission_rate if report_method == METHOD_FLAT else None

        trainers = crud.list_trainers(self.db, organization_id, location_id=location_id)
        if trainer_id is not None:
            trainers = [trainer for trainer in trainers if trainer.id == trainer_id]

        report = MonthlyReport(
            organization_id=organization_id,
            period_start=period_start,
            period_end=period_end,
            method=report_method,
            location_id=location_id,
        )
        for trainer in trainers:
            sessions = get_eligible_sessions(
                self.db, trainer.id, organization_id, period_start, period_end, location_id=location_id
            )
            totals = crud.session_totals(self.db, organization_id, period_start, period_end, trainer_id=trainer.id)
            outcome = evaluate(report_method, [row.session_value for row in sessions], tiers, flat_rate=flat_rate)
            report.rows.append(
                MonthlyReportRow(
                    trainer_id=trainer.id,
                    trainer_name=trainer.name,
                    trainer_email=trainer.email,
                    location_name=trainer.location.name if trainer.location else None,
                    total_sessions=int(totals["sessions"]),
                    validated_sessions=outcome.session_count,
                    total_value=quantize_money(outcome.total_value),
                    commission_rate=outcome.commission_rate,
                    commission_amount=outcome.commission_amount,
                    method=outcome.method,
                    tier_achieved=outcome.tier_achieved,
                )
            )

        report.rows.sort(key=lambda row: row.commission_amount, reverse=True)
        return report

    def export_monthly_report(self, report: MonthlyReport, fmt: str = "csv") -> tuple[bytes, str, str]:
        """Return ``(content, media_type, filename)`` for a monthly report."""

        fmt = fmt.lower()
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"Export format must be one of: {', '.join(EXPORT_FORMATS)}.")
        stem = f"commission-report-{report.period_start:%Y-%m}"
        if fmt == "xlsx":
            return (
                report_to_xlsx(report),
                "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                f"{stem}.xlsx",
            )
        return report_to_csv(report).encode("utf-8"), "text/csv", f"{stem}.csv"

    def estimate_for_trainer(self, trainer: User, period_start: date, period_end: date) -> Optional[CommissionCalculation]:
        """Unsaved calculation for dashboards; None when no profile applies."""

        if trainer.role != ROLE_TRAINER:
            return None
        try:
            return self.calculate_for_trainer(trainer.id, period_start, period_end)
        except (LookupError, ValueError) as exc:
            logger.info("No commission estimate for user %s: %s", trainer.id, exc)
            return None
