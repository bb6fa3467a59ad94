"""
Template sink and report export.

The CREATE template is the hand-off between the assess and create
phases, which may run in different processes on different days. Its
header is fixed; read it back with dvschema.sources and the default
ColumnMapping.
"""

import csv
import logging
from pathlib import Path
from typing import Optional

from dvschema.errors import InputError
from dvschema.models import SchemaRecord

logger = logging.getLogger(__name__)

TEMPLATE_HEADER = (
    "Table Logical Name",
    "Column Logical Name",
    "Table Name",
    "Column Name",
    "Column Type",
    "Choice Options",
    "Lookup Target Table",
    "Lookup Relationship Name",
    "Customer Target Tables",
    "Display Plural",
    "Description",
    "Required",
)

REPORT_HEADER = (
    "Table Logical Name",
    "Column Logical Name",
    "Table Name",
    "Column Name",
    "Column Type",
    "Table Exists",
    "Column Exists",
    "Error",
)

# Sample rows: existing tables with new columns, plus one table created on the fly
SAMPLE_ROWS = (
    ("account", "tier", "Account", "Tier", "choice", "Bronze;Silver;Gold", "", "", "", "", "Customer tier", "recommended"),
    ("account", "renewaldate", "Account", "Renewal Date", "date only", "", "", "", "", "", "", ""),
    ("contact", "isvip", "Contact", "Is VIP", "boolean", "", "", "", "", "", "", ""),
    ("contact", "lifetimevalue", "Contact", "Lifetime Value", "money", "", "", "", "", "", "", ""),
    ("project", "budget", "Project", "Budget", "decimal", "", "", "", "", "Projects", "", "required"),
    ("project", "notes", "Project", "Notes", "memo", "", "", "", "", "Projects", "", ""),
    ("project", "sponsor", "Project", "Sponsor", "lookup", "", "contact", "", "", "Projects", "", ""),
    ("project", "client", "Project", "Client", "customer", "", "", "", "account,contact", "Projects", "", ""),
)


def _template_row(record: SchemaRecord) -> list[str]:
    options = record.type_options
    return [
        record.table_logical_name,
        record.field_logical_name,
        record.table_display_name or "",
        record.field_display_name or "",
        record.type_token or "",
        options.choice_options or "",
        options.lookup_target or "",
        options.relationship_name or "",
        options.customer_targets or "",
        options.display_plural or "",
        options.description or "",
        options.required_level or "",
    ]


def write_create_template(records: list[SchemaRecord], path: Path) -> Path:
    """
    Write the CREATE template for records that still need user input.

    Logical names are always filled in; every other column passes
    through whatever the record already carries and is blank otherwise.

    Raises:
        InputError: If records is empty
    """
    if not records:
        raise InputError("No new schemas provided for template generation")

    path = Path(path)
    logger.info(f"Generating CREATE template with {len(records)} schema(s) to {path}")
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(TEMPLATE_HEADER)
        for record in records:
            writer.writerow(_template_row(record))
    return path


def export_records(records: list[SchemaRecord], path: Path, only_new: bool = False) -> int:
    """
    Write a report CSV with existence flags and errors.

    Args:
        records: Probed (or provisioned) records
        path: Output file
        only_new: Only records whose field does not exist

    Returns:
        Number of rows written
    """
    selected = [r for r in records if not (only_new and r.field_exists)]
    path = Path(path)
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(REPORT_HEADER)
        for record in selected:
            writer.writerow([
                record.table_logical_name,
                record.field_logical_name,
                record.table_display_name or "",
                record.field_display_name or "",
                record.type_token or "",
                "yes" if record.table_exists else "no",
                "yes" if record.field_exists else "no",
                record.error_message or "",
            ])
    logger.info(f"Exported {len(selected)} record(s) to {path}")
    return len(selected)


def write_sample(path: Path, sheet_title: Optional[str] = "Schema Definitions") -> Path:
    """Write a CREATE-ready sample file (.csv or .xlsx, by suffix)."""
    path = Path(path)
    if path.suffix.lower() == ".xlsx":
        from openpyxl import Workbook

        wb = Workbook()
        ws = wb.active
        ws.title = sheet_title
        ws.append(TEMPLATE_HEADER)
        for row in SAMPLE_ROWS:
            ws.append(row)
        wb.save(path)
    elif path.suffix.lower() == ".csv":
        with path.open("w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(TEMPLATE_HEADER)
            writer.writerows(SAMPLE_ROWS)
    else:
        raise InputError(f"Unsupported sample file type: {path.suffix}. Use .csv or .xlsx")

    logger.info(f"Sample file created: {path}")
    return path
