from __future__ import annotations

import csv
from datetime import datetime
from io import BytesIO, StringIO
from typing import TYPE_CHECKING

import pandas as pd

from ptdesk.core.commission import METHOD_FLAT, METHOD_GRADUATED, METHOD_PROGRESSIVE

if TYPE_CHECKING:
    from ptdesk.services import MonthlyReport

METHOD_LABELS = {
    METHOD_PROGRESSIVE: "Progressive Tier",
    METHOD_GRADUATED: "Graduated Tier",
    METHOD_FLAT: "Flat Rate",
}
COLUMNS = [
    "Trainer Name",
    "Email",
    "Location",
    "Total Sessions",
    "Validated Sessions",
    "Total Value",
    "Commission Rate",
    "Commission Amount",
    "Method",
    "Tier Achieved",
]


def method_label(method: str) -> str:
    return METHOD_LABELS.get(method, method.title())


def _report_df(report: MonthlyReport) -> pd.DataFrame:
    rows = []
    for item in report.rows:
        rows.append(
            {
                "Trainer Name": item.trainer_name,
                "Email": item.trainer_email,
                "Location": item.location_name or "N/A",
                "Total Sessions": item.total_sessions,
                "Validated Sessions": item.validated_sessions,
                "Total Value": float(item.total_value),
                "Commission Rate": float(item.commission_rate),
                "Commission Amount": float(item.commission_amount),
                "Method": method_label(item.method),
                "Tier Achieved": item.tier_achieved.label if item.tier_achieved else "",
            }
        )
    return pd.DataFrame(rows, columns=COLUMNS)


def _metadata(report: MonthlyReport) -> list[tuple[str, str]]:
    lines = [
        ("Generated:", datetime.now().strftime("%Y-%m-%d %H:%M:%S")),
        ("Period:", report.period_start.strftime("%B %Y")),
        ("Method:", method_label(report.method)),
    ]
    if report.location_id:
        lines.append(("Location Filter:", str(report.location_id)))
    return lines


def report_to_csv(report: MonthlyReport) -> str:
    """Rows, a totals row and generation metadata as CSV text."""

    buffer = StringIO()
    writer = csv.writer(buffer)
    writer.writerow(COLUMNS)
    for item in report.rows:
        writer.writerow(
            [
                item.trainer_name,
                item.trainer_email,
                item.location_name or "N/A",
                item.total_sessions,
                item.validated_sessions,
                f"${item.total_value:.2f}",
                f"{item.commission_rate:.1f}%",
                f"${item.commission_amount:.2f}",
                method_label(item.method),
                item.tier_achieved.label if item.tier_achieved else "",
            ]
        )
    writer.writerow([])
    writer.writerow(
        [
            "TOTALS",
            "",
            f"{len(report.rows)} trainers",
            "",
            report.total_sessions,
            f"${report.total_value:.2f}",
            "",
            f"${report.total_commission:.2f}",
        ]
    )
    writer.writerow([])
    for label, value in _metadata(report):
        writer.writerow([label, value])
    return buffer.getvalue()


def report_to_xlsx(report: MonthlyReport) -> bytes:
    """Return an XLSX workbook (bytes) with the report and a summary sheet."""

    df_report = _report_df(report)
    summary_rows = [
        {"Field": "Trainers", "Value": len(report.rows)},
        {"Field": "Validated Sessions", "Value": report.total_sessions},
        {"Field": "Total Value", "Value": float(report.total_value)},
        {"Field": "Total Commission", "Value": float(report.total_commission)},
    ]
    summary_rows.extend({"Field": label.rstrip(":"), "Value": value} for label, value in _metadata(report))
    df_summary = pd.DataFrame(summary_rows, columns=["Field", "Value"])

    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        df_report.to_excel(writer, sheet_name="Commission", index=False)
        df_summary.to_excel(writer, sheet_name="Summary", index=False)

    buffer.seek(0)
    return buffer.getvalue()
