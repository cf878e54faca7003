"""
Parser for the per-user usage report.

The report is delimited text with a header row. Columns are located by
header name once per report; absent columns leave the matching field unset.
"""

import csv
import io
import logging
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from ..models import StatsRecord

logger = logging.getLogger(__name__)

UPN_HEADER = "User Principal Name"

# StatsRecord field -> report header
SURFACE_HEADERS: Dict[str, str] = {
    "last_activity": "Last Activity Date",
    "chat": "Copilot Chat Last Activity Date",
    "teams": "Microsoft Teams Copilot Last Activity Date",
    "word": "Word Copilot Last Activity Date",
    "excel": "Excel Copilot Last Activity Date",
    "powerpoint": "PowerPoint Copilot Last Activity Date",
    "outlook": "Outlook Copilot Last Activity Date",
    "onenote": "OneNote Copilot Last Activity Date",
    "loop": "Loop Copilot Last Activity Date",
}

_DATE_FORMATS = ["%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y"]


class ReportFormatError(ValueError):
    """The report cannot be interpreted at all."""


@dataclass(frozen=True)
class ReportColumns:
    """Column index of each known header, or None when the report lacks it."""

    user_principal_name: Optional[int]
    last_activity: Optional[int] = None
    chat: Optional[int] = None
    teams: Optional[int] = None
    word: Optional[int] = None
    excel: Optional[int] = None
    powerpoint: Optional[int] = None
    outlook: Optional[int] = None
    onenote: Optional[int] = None
    loop: Optional[int] = None

    @classmethod
    def from_header(cls, header: Sequence[str]) -> "ReportColumns":
        positions = {}
        for index, name in enumerate(header):
            positions.setdefault(name.lstrip("\ufeff").strip(), index)

        columns = cls(
            user_principal_name=positions.get(UPN_HEADER),
            **{name: positions.get(title) for name, title in SURFACE_HEADERS.items()},
        )
        missing = [title for name, title in SURFACE_HEADERS.items() if getattr(columns, name) is None]
        if missing:
            logger.debug(f"Usage report is missing columns: {missing}")
        return columns


def parse_report_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a report date as UTC; blank or unparseable values give None."""
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        parsed = None
        for date_format in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, date_format)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _cell(row: Sequence[str], index: Optional[int]) -> Optional[str]:
    if index is None or index >= len(row):
        return None
    return row[index]


def parse_row(row: Sequence[str], columns: ReportColumns) -> Optional[StatsRecord]:
    """Build a record from one data row; rows without a principal name give None."""
    upn = (_cell(row, columns.user_principal_name) or "").strip()
    if not upn:
        return None
    return StatsRecord(
        user_principal_name=upn,
        **{
            f.name: parse_report_date(_cell(row, getattr(columns, f.name)))
            for f in fields(StatsRecord)
            if f.name != "user_principal_name"
        },
    )


def parse_usage_report(content: str) -> List[StatsRecord]:
    """
    Parse the report text into records.

    Raises:
        ReportFormatError: If the report has no principal name column
    """
    reader = csv.reader(io.StringIO(content))
    header = next(reader, None)
    if header is None:
        return []

    columns = ReportColumns.from_header(header)
    if columns.user_principal_name is None:
        raise ReportFormatError(f"Usage report has no '{UPN_HEADER}' column")

    records = []
    skipped = 0
    for row in reader:
        if not row:
            continue
        record = parse_row(row, columns)
        if record is None:
            skipped += 1
            continue
        records.append(record)

    logger.debug(f"Parsed {len(records)} usage rows, skipped {skipped} without principal name")
    return records
