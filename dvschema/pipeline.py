"""Pipeline runner - the assess and create workflows over the stage functions.

assess: rows -> records -> deduplicate -> probe -> [CREATE template]
create: records -> probe -> validate -> confirm -> provision -> publish

The two workflows may run in different processes; the CREATE template
written by assess is the only state carried between them.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from dvschema.dedup import DuplicateWarning, deduplicate
from dvschema.errors import InputError
from dvschema.models import ProbeResult, SchemaRecord, ValidationError
from dvschema.probe import probe
from dvschema.provision import ProvisionResult, pending_records, provision
from dvschema.registry_client import RegistryClient
from dvschema.retry import RetryPolicy
from dvschema.sources import ColumnMapping, read_rows, records_from_rows
from dvschema.templates import write_create_template
from dvschema.validator import mark_invalid, validate

logger = logging.getLogger(__name__)

Confirm = Union[bool, Callable[[list[SchemaRecord]], bool]]


@dataclass
class AssessmentResult:
    """Result of the assess workflow.

    - records: deduplicated records, annotated by the probe
    - duplicates: one warning per dropped duplicate row
    - probe_results: per-table probe outcome
    - template_path: CREATE template written for the new records, if any
    """
    records: list[SchemaRecord]
    duplicates: list[DuplicateWarning] = field(default_factory=list)
    probe_results: dict[str, ProbeResult] = field(default_factory=dict)
    template_path: Optional[Path] = None

    @property
    def existing(self) -> list[SchemaRecord]:
        return [r for r in self.records if r.field_exists]

    @property
    def new(self) -> list[SchemaRecord]:
        return [r for r in self.records if not r.field_exists and not r.error_message]

    @property
    def errored(self) -> list[SchemaRecord]:
        return [r for r in self.records if r.error_message]


@dataclass
class CreateResult:
    """Result of the create workflow.

    - records: every record, annotated
    - to_create: the subset that needed creation after probing
    - probe_results: per-table probe outcome
    - validation_errors: errors found before any create call
    - provision: orchestrator result (None if nothing reached it)
    """
    records: list[SchemaRecord]
    to_create: list[SchemaRecord] = field(default_factory=list)
    probe_results: dict[str, ProbeResult] = field(default_factory=dict)
    validation_errors: list[ValidationError] = field(default_factory=list)
    provision: Optional[ProvisionResult] = None

    @property
    def halted(self) -> bool:
        """Validation failed and nothing was sent to the orchestrator."""
        return bool(self.validation_errors) and self.provision is None

    @property
    def success(self) -> bool:
        if self.validation_errors or any(r.error_message for r in self.records):
            return False
        return self.provision is None or self.provision.success


def summarize(records: list[SchemaRecord]) -> dict[str, int]:
    """Counts for the outcome report."""
    return {
        "total": len(records),
        "existing": sum(1 for r in records if r.field_exists),
        "new": sum(1 for r in records if not r.field_exists and not r.error_message),
        "errored": sum(1 for r in records if r.error_message),
        "tables_absent": len({r.table_key for r in records if not r.table_exists and not r.error_message}),
    }


def load_records(
    path: Path,
    sheet: Optional[str] = None,
    columns: Optional[ColumnMapping] = None,
) -> tuple[list[SchemaRecord], list[DuplicateWarning]]:
    """Read a .csv/.xlsx file into deduplicated records."""
    path = Path(path)
    rows = read_rows(path, sheet=sheet)
    records = records_from_rows(rows, columns)
    source = "Excel" if path.suffix.lower() == ".xlsx" else "CSV"
    return deduplicate(records, source=source)


def assess(
    records: list[SchemaRecord],
    client: RegistryClient,
    policy: Optional[RetryPolicy] = None,
    template_path: Optional[Path] = None,
    cancel_event: Optional[threading.Event] = None,
    duplicates: Optional[list[DuplicateWarning]] = None,
    name_prefix: Optional[str] = None,
) -> AssessmentResult:
    """Probe deduplicated records and optionally write the CREATE template.

    Args:
        records: Deduplicated records, annotated in place
        client: Registry client
        policy: Retry timing
        template_path: Where to write the CREATE template for new records
        cancel_event: Passed to the probe
        duplicates: Warnings from deduplicate(), carried into the result
        name_prefix: Publisher prefix, so fields created by an earlier run count as existing

    Returns:
        AssessmentResult

    Raises:
        InputError: If records is empty
    """
    if not records:
        raise InputError("No schema definitions found in input")

    result = AssessmentResult(records=records, duplicates=list(duplicates or []))
    result.probe_results = probe(records, client, policy=policy, cancel_event=cancel_event, name_prefix=name_prefix)

    counts = summarize(records)
    logger.info(
        f"Assessment: {counts['existing']} existing, {counts['new']} new, {counts['errored']} errored",
        extra={"stage": "assess", "event": "complete", "metadata": counts},
    )

    if template_path is not None and result.new:
        result.template_path = write_create_template(result.new, template_path)

    return result


def create(
    records: list[SchemaRecord],
    client: RegistryClient,
    name_prefix: str,
    solution: Optional[str],
    confirm: Confirm,
    policy: Optional[RetryPolicy] = None,
    skip_invalid: bool = False,
    cancel_event: Optional[threading.Event] = None,
    progress_callback: Callable[..., Any] | None = None,
) -> CreateResult:
    """Probe, validate and provision a batch of records.

    Validation runs on the to-create subset before any mutating call.
    By default any validation error halts the run; with skip_invalid the
    failing records are marked and the rest are provisioned.

    Args:
        records: Deduplicated records, annotated in place
        client: Registry client
        name_prefix: Publisher prefix for new names
        solution: Solution unique name
        confirm: Explicit go-ahead, either a bool or a callable given the
            to-create records (called only once validation passed)
        policy: Retry timing
        skip_invalid: Provision the valid records even if others failed
        cancel_event: Passed to probe and provision
        progress_callback: Passed to provision

    Returns:
        CreateResult

    Raises:
        InputError: If records is empty
    """
    if not records:
        raise InputError("No schema definitions found in input")

    probe_results = probe(records, client, policy=policy, cancel_event=cancel_event, name_prefix=name_prefix)
    to_create = [r for r in records if not r.field_exists and not r.error_message]
    result = CreateResult(records=records, to_create=to_create, probe_results=probe_results)

    if not to_create:
        logger.info("All fields already exist - nothing to create")
        return result

    result.validation_errors = validate(to_create, name_prefix, client, policy=policy)
    if result.validation_errors:
        marked = mark_invalid(to_create, result.validation_errors)
        if not skip_invalid or marked == len(to_create):
            logger.error(f"Validation failed for {marked} record(s) - nothing was created")
            return result
        logger.warning(f"Skipping {marked} invalid record(s)")

    proceed = confirm(pending_records(to_create)) if callable(confirm) else bool(confirm)
    result.provision = provision(
        to_create,
        client,
        name_prefix,
        solution,
        proceed,
        policy=policy,
        cancel_event=cancel_event,
        progress_callback=progress_callback,
    )
    return result
