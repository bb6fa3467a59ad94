"""
Row sources - read schema definition rows from .csv and .xlsx files.

read_rows() returns plain header -> value dicts; records_from_rows()
maps those onto SchemaRecords through a ColumnMapping. A file that is
locked by another process (Excel, OneDrive) is copied to a temporary
file and read from the copy, retrying with exponential backoff.
"""

import csv
import logging
import shutil
import tempfile
import time
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Optional

from dvschema import constants
from dvschema.errors import ConfigError, InputError
from dvschema.models import SchemaRecord, TypeOptions

logger = logging.getLogger(__name__)

SUPPORTED_SUFFIXES = (".csv", ".xlsx")

EXCLUDE_VALUES = {"no", "n", "false", "0"}


@dataclass
class ColumnMapping:
    """
    Header names for each semantic column.

    Defaults match the CREATE template header. Only the two logical
    name columns are required in a file; every other column is
    optional and simply absent from records when missing.
    """
    table_logical_name: str = "Table Logical Name"
    field_logical_name: str = "Column Logical Name"
    table_display_name: str = "Table Name"
    field_display_name: str = "Column Name"
    type: str = "Column Type"
    choice_options: str = "Choice Options"
    lookup_target: str = "Lookup Target Table"
    relationship_name: str = "Lookup Relationship Name"
    customer_targets: str = "Customer Target Tables"
    display_plural: str = "Display Plural"
    description: str = "Description"
    required: str = "Required"
    include: str = "Include"

    @classmethod
    def from_dict(cls, overrides: Optional[dict[str, str]]) -> "ColumnMapping":
        """
        Build a mapping from config overrides.

        Raises:
            ConfigError: If an override names an unknown column
        """
        overrides = overrides or {}
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigError(
                f"Unknown column mapping key(s): {', '.join(unknown)}. "
                f"Valid keys: {', '.join(sorted(known))}"
            )
        return cls(**{k: str(v) for k, v in overrides.items()})


# =============================================================================
# File readers
# =============================================================================

def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _read_csv(path: Path) -> list[dict[str, str]]:
    with path.open("r", encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f)
        return [
            {(k or "").strip(): _cell(v) for k, v in row.items() if k is not None}
            for row in reader
        ]


def _read_xlsx(path: Path, sheet: Optional[str]) -> list[dict[str, str]]:
    from openpyxl import load_workbook

    wb = load_workbook(path, read_only=True, data_only=True)
    try:
        if sheet and sheet not in wb.sheetnames:
            raise InputError(f"Sheet '{sheet}' not found in {path.name}. Sheets: {', '.join(wb.sheetnames)}")
        ws = wb[sheet] if sheet else wb[wb.sheetnames[0]]
        rows = ws.iter_rows(values_only=True)
        headers_raw = next(rows, None)
        if not headers_raw:
            return []
        headers = [_cell(h) for h in headers_raw]
        data: list[dict[str, str]] = []
        for r in rows:
            if r is None:
                continue
            item = {headers[i]: _cell(r[i]) for i in range(min(len(headers), len(r))) if headers[i]}
            if any(item.values()):
                data.append(item)
        return data
    finally:
        wb.close()


def _read(path: Path, sheet: Optional[str]) -> list[dict[str, str]]:
    if path.suffix.lower() == ".csv":
        return _read_csv(path)
    return _read_xlsx(path, sheet)


def _read_locked(
    path: Path,
    sheet: Optional[str],
    max_attempts: int,
    initial_delay: float,
    sleep: Callable[[float], Any],
) -> list[dict[str, str]]:
    """Read a locked file through temporary copies, backing off between attempts."""
    delay = initial_delay
    last_error: Optional[Exception] = None

    for attempt in range(1, max_attempts + 1):
        with tempfile.TemporaryDirectory(prefix="dvschema_") as tmp:
            temp_path = Path(tmp) / f"schema_temp{path.suffix.lower()}"
            try:
                logger.debug(f"Retry attempt {attempt} of {max_attempts}...")
                shutil.copyfile(path, temp_path)
                logger.info("Temporary copy created successfully. Reading data...")
                return _read(temp_path, sheet)
            except OSError as e:
                last_error = e

        if attempt < max_attempts:
            logger.warning(f"Retry {attempt} failed, waiting {int(delay * 1000)}ms before next retry...")
            sleep(delay)
            delay *= 2

    raise InputError(
        f"Cannot access {path.name} after {max_attempts} attempts. "
        f"The file may be exclusively locked by Excel, OneDrive, or another process. "
        f"Please close the file and try again. Last error: {last_error}"
    )


def read_rows(
    path: Path,
    sheet: Optional[str] = None,
    max_attempts: int = constants.MAX_FILE_ACCESS_RETRIES,
    initial_delay: float = constants.INITIAL_FILE_RETRY_DELAY,
    sleep: Callable[[float], Any] = time.sleep,
) -> list[dict[str, str]]:
    """
    Read rows from a .csv or .xlsx file.

    Args:
        path: Input file
        sheet: Worksheet name (.xlsx only, default: first sheet)
        max_attempts: Copy-and-read attempts when the file is locked
        initial_delay: First backoff delay in seconds, doubled per attempt
        sleep: Injected for tests

    Returns:
        One dict per non-empty data row, keyed by trimmed header

    Raises:
        InputError: Missing file, unsupported type, or still locked after retries
    """
    path = Path(path)
    if not path.exists():
        raise InputError(f"Input file not found: {path}")
    if path.suffix.lower() not in SUPPORTED_SUFFIXES:
        raise InputError(f"Unsupported file type: {path.suffix}. Use .csv or .xlsx")

    logger.info(f"Reading schema definitions from {path}")
    try:
        return _read(path, sheet)
    except PermissionError:
        logger.warning("File is locked, attempting to create temporary copy with retries...")
        return _read_locked(path, sheet, max_attempts, initial_delay, sleep)


# =============================================================================
# Row -> record mapping
# =============================================================================

def is_included(value: Optional[str]) -> bool:
    """Blank or yes-like includes, no-like excludes, anything else includes."""
    return (value or "").strip().lower() not in EXCLUDE_VALUES


def _header_index(rows: list[dict[str, str]]) -> dict[str, str]:
    """Lowercased header -> actual header, across all rows."""
    index: dict[str, str] = {}
    for row in rows:
        for key in row:
            index.setdefault(key.strip().lower(), key)
    return index


def records_from_rows(
    rows: list[dict[str, str]],
    columns: Optional[ColumnMapping] = None,
) -> list[SchemaRecord]:
    """
    Map raw rows onto SchemaRecords.

    Header matching is case-insensitive. Rows excluded by the include
    column and rows with a blank table or field logical name are
    skipped.

    Raises:
        InputError: If a logical name column is missing from the header
    """
    columns = columns or ColumnMapping()
    if not rows:
        return []

    headers = _header_index(rows)
    missing = [
        name for name in (columns.table_logical_name, columns.field_logical_name)
        if name.strip().lower() not in headers
    ]
    if missing:
        raise InputError(
            f"Required columns not found: {', '.join(missing)}. "
            f"These columns are REQUIRED for schema detection."
        )

    def get(row: dict[str, str], column: str) -> Optional[str]:
        key = headers.get(column.strip().lower())
        if key is None:
            return None
        value = (row.get(key) or "").strip()
        return value or None

    has_include = columns.include.strip().lower() in headers
    records: list[SchemaRecord] = []
    skipped = 0

    # Row 1 is the header
    for row_number, row in enumerate(rows, start=2):
        if has_include and not is_included(get(row, columns.include)):
            skipped += 1
            continue

        table = get(row, columns.table_logical_name)
        field_name = get(row, columns.field_logical_name)
        if not table or not field_name:
            continue

        records.append(SchemaRecord(
            table_logical_name=table.lower(),
            field_logical_name=field_name.lower(),
            table_display_name=get(row, columns.table_display_name),
            field_display_name=get(row, columns.field_display_name),
            type_token=get(row, columns.type),
            type_options=TypeOptions(
                choice_options=get(row, columns.choice_options),
                lookup_target=get(row, columns.lookup_target),
                customer_targets=get(row, columns.customer_targets),
                relationship_name=get(row, columns.relationship_name),
                display_plural=get(row, columns.display_plural),
                description=get(row, columns.description),
                required_level=get(row, columns.required),
            ),
            row_number=row_number,
        ))

    if skipped:
        logger.info(f"Skipped {skipped} row(s) excluded by the '{columns.include}' column")
    logger.info(f"Read {len(records)} schema definition(s)")
    return records
