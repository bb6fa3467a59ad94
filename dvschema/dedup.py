"""
Deduplication of schema records.

Rows are keyed on table logical name + field logical name
(case-insensitive, trimmed). The first occurrence always wins; later
occurrences are dropped and reported as either exact duplicates or
duplicates with conflicting data. Records missing either logical name
cannot be identified against the registry and are dropped silently.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from dvschema.models import SchemaRecord

logger = logging.getLogger(__name__)

# (label, accessor) pairs compared between a kept record and its duplicate
_COMPARED_FIELDS = (
    ("type", lambda r: r.type_token),
    ("table display name", lambda r: r.table_display_name),
    ("field display name", lambda r: r.field_display_name),
    ("choice options", lambda r: r.type_options.choice_options),
    ("lookup target", lambda r: r.type_options.lookup_target),
    ("customer targets", lambda r: r.type_options.customer_targets),
    ("relationship name", lambda r: r.type_options.relationship_name),
    ("display plural", lambda r: r.type_options.display_plural),
    ("required", lambda r: r.type_options.required_level),
    ("description", lambda r: r.type_options.description),
)


@dataclass(frozen=True)
class DuplicateWarning:
    """
    One dropped duplicate.

    Attributes:
        key: Composite record key (table|field)
        index: 1-based position of the duplicate in the input
        first_index: 1-based position of the kept record
        conflicts: Human-readable differences; empty for exact duplicates
    """
    key: str
    index: int
    first_index: int
    conflicts: tuple[str, ...] = field(default_factory=tuple)

    @property
    def conflicting(self) -> bool:
        return bool(self.conflicts)

    @property
    def kind(self) -> str:
        return "conflicting" if self.conflicting else "exact"


def _has_conflict(first: Optional[str], second: Optional[str]) -> bool:
    """Both values non-empty and different (case-insensitive)."""
    a = (first or "").strip()
    b = (second or "").strip()
    if not a or not b:
        return False
    return a.casefold() != b.casefold()


def _truncate(value: Optional[str], max_length: int = 50) -> str:
    value = value or ""
    if len(value) <= max_length:
        return value
    return value[:max_length] + "..."


def detect_conflicts(first: SchemaRecord, second: SchemaRecord) -> list[str]:
    """List the informational fields where two same-key records disagree."""
    conflicts = []
    for label, accessor in _COMPARED_FIELDS:
        a, b = accessor(first), accessor(second)
        if _has_conflict(a, b):
            if label == "description":
                a, b = _truncate(a), _truncate(b)
            conflicts.append(f"{label}: '{a}' vs '{b}'")
    return conflicts


def deduplicate(
    records: list[SchemaRecord],
    source: str = "input",
) -> tuple[list[SchemaRecord], list[DuplicateWarning]]:
    """
    Collapse duplicate records by (table, field) key.

    Args:
        records: Records in input order, possibly with missing keys
        source: Label used in log messages (e.g. "Excel", "CSV")

    Returns:
        (unique records in original relative order, one warning per duplicate)
    """
    seen: dict[str, tuple[SchemaRecord, int]] = {}
    unique: list[SchemaRecord] = []
    warnings: list[DuplicateWarning] = []

    for i, record in enumerate(records):
        if not record.is_identified:
            continue

        key = record.key
        if key not in seen:
            seen[key] = (record, i)
            unique.append(record)
            continue

        first, first_index = seen[key]
        conflicts = detect_conflicts(first, record)
        warning = DuplicateWarning(
            key=key,
            index=i + 1,
            first_index=first_index + 1,
            conflicts=tuple(conflicts),
        )
        warnings.append(warning)

        if warning.conflicting:
            logger.warning(
                f"Duplicate with conflicting data in {source} at index {i + 1}: "
                f"{key} (first seen at index {first_index + 1}). Keeping first occurrence. "
                f"Conflicts: {'; '.join(conflicts)}"
            )
        else:
            logger.info(
                f"Exact duplicate in {source} at index {i + 1}: {key} "
                f"(first seen at index {first_index + 1}). Skipping duplicate."
            )

    if warnings:
        conflict_count = sum(1 for w in warnings if w.conflicting)
        logger.info(
            f"Deduplication complete for {source}: removed {len(warnings)} duplicate(s) "
            f"({conflict_count} conflicting, {len(warnings) - conflict_count} exact). "
            f"Kept {len(unique)} unique record(s)."
        )

    return unique, warnings
