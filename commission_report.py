"""Monthly commission report CLI.

Prices every trainer's validated sessions for a month on the organization's
tier schedule and prints the table or writes it to CSV/XLSX.
"""
from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional, Sequence

import pandas as pd

from ptdesk.core.formatting import parse_month
from ptdesk.database import SessionLocal, init_db
from ptdesk.exporting.commission import method_label
from ptdesk.services import CommissionService, MonthlyReport


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(description="Generate the monthly commission report for an organization.")
    parser.add_argument("--organization", type=int, required=True, help="Organization id.")
    parser.add_argument("--month", help="Target month in YYYY-MM format (default: current month).")
    parser.add_argument(
        "--method",
        choices=["PROGRESSIVE", "GRADUATED", "FLAT"],
        help="Calculation method (default: the organization's configured method).",
    )
    parser.add_argument("--location", type=int, help="Only include trainers at this location id.")
    parser.add_argument(
        "--format",
        choices=["csv", "xlsx"],
        help="Write the report to --out in this format instead of printing it.",
    )
    parser.add_argument("--out", default="./dist", help="Output directory for exported files (default: ./dist).")
    parser.add_argument(
        "--save",
        action="store_true",
        help="Also run and store each trainer's profile-based calculation for the month.",
    )
    return parser.parse_args(argv)


def print_preview(report: MonthlyReport) -> None:
    """Print the report table to stdout in a human-friendly layout."""

    if not report.rows:
        print("No trainers found for the requested month.")
        return
    preview_df = pd.DataFrame(
        [
            {
                "Trainer": row.trainer_name,
                "Location": row.location_name or "N/A",
                "Validated": row.validated_sessions,
                "Value": f"{row.total_value:.2f}",
                "Rate %": f"{row.commission_rate:.1f}",
                "Commission": f"{row.commission_amount:.2f}",
                "Tier": row.tier_achieved.label if row.tier_achieved else "",
            }
            for row in report.rows
        ]
    )
    print(preview_df.to_string(index=False))


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point."""

    args = parse_args(argv)
    try:
        period_start, period_end = parse_month(args.month)
    except ValueError as exc:
        raise SystemExit("--month must be provided in YYYY-MM format.") from exc

    init_db()
    db = SessionLocal()
    try:
        service = CommissionService(db)
        try:
            report = service.monthly_report(
                args.organization,
                period_start,
                period_end,
                method=args.method,
                location_id=args.location,
            )
        except LookupError as exc:
            raise SystemExit(str(exc)) from exc

        if args.save:
            saved = service.calculate_for_organization(args.organization, period_start, period_end, save=True)
            print(f"Saved {len(saved)} profile-based calculations.")

        if args.format:
            content, _, filename = service.export_monthly_report(report, args.format)
            output_dir = Path(args.out)
            output_dir.mkdir(parents=True, exist_ok=True)
            (output_dir / filename).write_bytes(content)
            print(f"Wrote {output_dir / filename}")
        else:
            print_preview(report)
    finally:
        db.close()

    print(
        f"{period_start:%B %Y} ({method_label(report.method)}): {len(report.rows)} trainers, "
        f"{report.total_sessions} validated sessions, total commission {report.total_commission:.2f}."
    )


if __name__ == "__main__":
    main()
