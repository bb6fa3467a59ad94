"""
Canonical data model for the provisioning pipeline.

- SchemaRecord: one requested field, the unit of work in every stage
- TypeOptions: auxiliary per-type payload carried by a SchemaRecord
- ValidationError: (record_key, message) value produced by the validator
- ProbeResult: per-table outcome of the existence probe

SchemaRecords are owned by the caller's batch. The prober and the
orchestrator annotate them in place (existence flags, error_message);
callers must not read a batch while a stage is running on it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


@dataclass
class TypeOptions:
    """Free-form auxiliary data used to resolve a field's type."""
    choice_options: Optional[str] = None
    lookup_target: Optional[str] = None
    customer_targets: Optional[str] = None
    relationship_name: Optional[str] = None
    display_plural: Optional[str] = None
    description: Optional[str] = None
    required_level: Optional[str] = None

    def customer_target_list(self) -> list[str]:
        """Comma-separated customer targets, trimmed, empties dropped."""
        return [t.strip() for t in _clean(self.customer_targets).split(",") if t.strip()]


@dataclass
class SchemaRecord:
    """
    One requested field.

    Attributes:
        table_logical_name: Stable table identifier used for existence lookups
        field_logical_name: Stable field identifier (without publisher prefix)
        table_display_name: Table label, needed only if the table is created
        field_display_name: Field label, needed only if the field is created
        type_token: Raw type string from the input (e.g. "choice", "lookup")
        type_options: Auxiliary per-type payload
        table_exists: Set by the prober/orchestrator only
        registry_table: Registry table the fields live on, bare or {prefix}_{table};
            set by the prober/orchestrator once the table is known to exist
        field_exists: Set by the prober/orchestrator only; implies table_exists
        error_message: Last failure for this record, cleared on a successful retry
        row_number: 1-based row in the source file (0 if unknown)
    """
    table_logical_name: str
    field_logical_name: str
    table_display_name: Optional[str] = None
    field_display_name: Optional[str] = None
    type_token: Optional[str] = None
    type_options: TypeOptions = field(default_factory=TypeOptions)
    table_exists: bool = False
    registry_table: Optional[str] = None
    field_exists: bool = False
    error_message: Optional[str] = None
    row_number: int = 0

    @property
    def key(self) -> str:
        """Case-normalized composite key: table|field."""
        return f"{_clean(self.table_logical_name).lower()}|{_clean(self.field_logical_name).lower()}"

    @property
    def table_key(self) -> str:
        return _clean(self.table_logical_name).lower()

    @property
    def is_identified(self) -> bool:
        """True if both logical names are present."""
        return bool(_clean(self.table_logical_name)) and bool(_clean(self.field_logical_name))

    def mark_table_absent(self) -> None:
        self.table_exists = False
        self.field_exists = False
        self.registry_table = None

    def mark_field_exists(self) -> None:
        # field_exists may only be true if table_exists is true
        self.table_exists = True
        self.field_exists = True


@dataclass(frozen=True)
class ValidationError:
    """A single validation failure for one record."""
    record_key: str
    message: str

    def __str__(self) -> str:
        return f"{self.record_key}: {self.message}"


class ProbeStatus(str, Enum):
    """Outcome of a describe-table call for one table group."""
    EXISTS = "exists"
    ABSENT = "absent"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"


@dataclass(frozen=True)
class ProbeResult:
    """
    Per-table probe outcome.

    Attributes:
        table: Lowercased table logical name
        status: What the describe call told us
        fields: Lowercased existing field logical names (EXISTS only)
        detail: Failure detail (failures only)
        registry_table: Name the table was found under (EXISTS only)
    """
    table: str
    status: ProbeStatus
    fields: frozenset[str] = frozenset()
    detail: Optional[str] = None
    registry_table: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status in (ProbeStatus.TRANSIENT_FAILURE, ProbeStatus.PERMANENT_FAILURE)
