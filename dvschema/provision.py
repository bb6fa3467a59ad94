"""Provisioning orchestrator - creates missing tables, then fields, then publishes.

State machine per run:

    GROUPED -> TABLE_ENSURED -> FIELDS_CREATED -> PUBLISHED

Records are grouped by table. A group whose table is absent gets the
table created first (with a primary name field); if that fails, every
record of the group is marked and no field calls are made for it.
Every field is created in isolation: one failure is recorded on its
record and the run continues with the next one. A single publish
follows; its failure is logged and never reverts what was created.

Records are annotated IN PLACE (table_exists, registry_table, field_exists,
error_message). The returned ProvisionResult references the same list.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from dvschema import constants
from dvschema.descriptors import CustomerField, FieldDescriptor, LookupField, RequiredLevel, TextField
from dvschema.errors import InputError, RegistryError
from dvschema.models import SchemaRecord
from dvschema.probe import group_by_table
from dvschema.registry_client import RegistryClient, RelationshipSpec
from dvschema.resolver import resolve, schema_name_for
from dvschema.retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)


class ProvisionState(str, Enum):
    GROUPED = "grouped"
    TABLE_ENSURED = "table_ensured"
    FIELDS_CREATED = "fields_created"
    PUBLISHED = "published"


@dataclass
class ProvisionResult:
    """Result of a provisioning run.

    - records: the input list, annotated in place
    - state: last state reached (None when skipped)
    - skipped: true if the caller did not confirm; no remote call was made
    - cancelled: true if the cancel event stopped the run early
    - tables_created / fields_created: schema names created in this run
    - failures: list of {key, error} for failed records
    - publish_error: publish failure detail, if any
    """
    records: list[SchemaRecord]
    state: Optional[ProvisionState] = None
    skipped: bool = False
    cancelled: bool = False
    tables_created: list[str] = field(default_factory=list)
    fields_created: list[str] = field(default_factory=list)
    failures: list[dict[str, str]] = field(default_factory=list)
    publish_error: Optional[str] = None
    duration_ms: int = 0

    @property
    def published(self) -> bool:
        return self.state == ProvisionState.PUBLISHED

    @property
    def success(self) -> bool:
        return not self.skipped and not self.cancelled and not self.failures and self.publish_error is None

    def to_dict(self) -> dict[str, Any]:
        result = {
            "state": self.state.value if self.state else None,
            "success": self.success,
            "tables_created": self.tables_created,
            "fields_created": self.fields_created,
            "failed": len(self.failures),
            "failures": self.failures,
            "duration_ms": self.duration_ms,
        }
        if self.skipped:
            result["skipped"] = True
        if self.cancelled:
            result["cancelled"] = True
        if self.publish_error:
            result["publish_error"] = self.publish_error
        return result


def pending_records(records: list[SchemaRecord]) -> list[SchemaRecord]:
    """Records still to create: field absent and no validation failure recorded."""
    return [
        r for r in records
        if not r.field_exists
        and not (r.error_message or "").startswith(constants.VALIDATION_FAILED_PREFIX)
    ]


def primary_name_field(name_prefix: str) -> TextField:
    return TextField(
        schema_name=schema_name_for(name_prefix, constants.PRIMARY_NAME_FIELD),
        display_name="Name",
        required_level=RequiredLevel.APPLICATION_REQUIRED,
        description=constants.PRIMARY_NAME_FIELD_DESCRIPTION,
    )


def relationship_name_for(record: SchemaRecord, name_prefix: str) -> str:
    """User override, else {prefix}_{table}_{field}."""
    override = (record.type_options.relationship_name or "").strip()
    if override:
        return override
    return f"{name_prefix}_{record.table_key}_{record.field_logical_name.strip()}".lower()


def _create_field(
    client: RegistryClient,
    table: str,
    record: SchemaRecord,
    descriptor: FieldDescriptor,
    name_prefix: str,
    solution: Optional[str],
) -> None:
    """Issue the single create call matching the descriptor's kind."""
    if isinstance(descriptor, LookupField):
        client.create_relationship(
            table, descriptor.target, relationship_name_for(record, name_prefix), descriptor, solution,
        )
    elif isinstance(descriptor, CustomerField):
        base = relationship_name_for(record, name_prefix)
        relationships = [RelationshipSpec(target, f"{base}_{target}") for target in descriptor.targets]
        client.create_customer_relationships(table, relationships, descriptor, solution)
    else:
        client.create_field(table, descriptor, solution)


def provision(
    records: list[SchemaRecord],
    client: RegistryClient,
    name_prefix: str,
    solution: Optional[str],
    proceed: bool,
    policy: Optional[RetryPolicy] = None,
    cancel_event: Optional[threading.Event] = None,
    progress_callback: Callable[..., Any] | None = None,
) -> ProvisionResult:
    """Create every missing table and field of a validated batch.

    Args:
        records: Probed and validated records, mutated in place
        client: Registry client
        name_prefix: Publisher prefix for new tables and fields
        solution: Solution unique name new components are added to
        proceed: The caller's explicit confirmation; nothing is created without it
        policy: Retry timing for every remote call
        cancel_event: Checked before each table group and each record
        progress_callback: Optional callback(event, **kwargs).
            Events: 'table_start', 'table_ok', 'table_fail', 'field_ok',
            'field_fail', 'publish_ok', 'publish_fail'

    Returns:
        ProvisionResult with the annotated records and per-run summary

    Raises:
        InputError: If records is empty
        ResolutionError: If a record that reached creation cannot be resolved
    """
    if not records:
        raise InputError("No records to provision")

    result = ProvisionResult(records=records)
    if not proceed:
        logger.info("Provisioning not confirmed - no changes made")
        result.skipped = True
        return result

    def _emit(event: str, **kwargs):
        if progress_callback:
            progress_callback(event, **kwargs)

    start_time = time.time()
    groups = group_by_table(pending_records(records))
    result.state = ProvisionState.GROUPED
    logger.info(
        f"Provisioning {sum(len(g) for g in groups.values())} field(s) across {len(groups)} table(s)",
        extra={"stage": "provision", "event": "start"},
    )

    for table, group in groups.items():
        if cancel_event is not None and cancel_event.is_set():
            result.cancelled = True
            break

        first = group[0]
        target_entity = first.registry_table or table
        if not first.table_exists:
            schema_name = schema_name_for(name_prefix, table)
            display_name = (first.table_display_name or "").strip() or table
            plural = (first.type_options.display_plural or "").strip() or f"{display_name}s"
            _emit("table_start", table=schema_name)
            try:
                with_retry(
                    lambda: client.create_table(
                        display_name,
                        schema_name,
                        plural,
                        description=constants.AUTO_GENERATED_TABLE_DESCRIPTION.format(display_name),
                        primary_field=primary_name_field(name_prefix),
                    ),
                    policy,
                )
            except RegistryError as e:
                message = f"{constants.TABLE_CREATE_FAILED_PREFIX}{e}"
                for record in group:
                    record.error_message = message
                    result.failures.append({"key": record.key, "error": message})
                logger.error(f"Table {schema_name}: {message}", extra={"stage": "provision", "event": "table_fail"})
                _emit("table_fail", table=schema_name, error=str(e))
                continue

            for record in group:
                record.table_exists = True
                record.registry_table = schema_name
                record.error_message = None
            target_entity = schema_name
            result.tables_created.append(schema_name)
            logger.info(f"Created table {schema_name}", extra={"stage": "provision", "event": "table_ok"})
            _emit("table_ok", table=schema_name)

        result.state = ProvisionState.TABLE_ENSURED

        for record in group:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                break

            descriptor = resolve(record, name_prefix)
            try:
                with_retry(
                    lambda: _create_field(client, target_entity, record, descriptor, name_prefix, solution),
                    policy,
                )
            except RegistryError as e:
                record.error_message = str(e)
                result.failures.append({"key": record.key, "error": str(e)})
                logger.error(
                    f"Field {descriptor.schema_name} on {target_entity}: {e}",
                    extra={"stage": "provision", "event": "field_fail"},
                )
                _emit("field_fail", table=target_entity, field=descriptor.schema_name, error=str(e))
                continue

            record.mark_field_exists()
            record.error_message = None
            result.fields_created.append(descriptor.schema_name)
            logger.info(
                f"Created {descriptor.kind.value} field {descriptor.schema_name} on {target_entity}",
                extra={"stage": "provision", "event": "field_ok"},
            )
            _emit("field_ok", table=target_entity, field=descriptor.schema_name)

        if result.cancelled:
            break

    result.duration_ms = int((time.time() - start_time) * 1000)

    if result.cancelled:
        logger.warning(
            f"Provisioning cancelled after {len(result.fields_created)} field(s) - not publishing",
            extra={"stage": "provision", "event": "cancelled"},
        )
        return result

    result.state = ProvisionState.FIELDS_CREATED

    if not groups:
        logger.info("Nothing to create - skipping publish")
        return result

    try:
        with_retry(client.publish, policy)
    except RegistryError as e:
        result.publish_error = str(e)
        logger.error(f"Publish failed: {e}", extra={"stage": "provision", "event": "publish_fail"})
        _emit("publish_fail", error=str(e))
    else:
        result.state = ProvisionState.PUBLISHED
        logger.info("Published customizations", extra={"stage": "provision", "event": "publish_ok"})
        _emit("publish_ok")

    result.duration_ms = int((time.time() - start_time) * 1000)
    logger.info(
        f"Provisioning: tables={len(result.tables_created)}, fields={len(result.fields_created)}, "
        f"failed={len(result.failures)}, duration={result.duration_ms}ms",
        extra={"stage": "provision", "event": "complete", "metadata": result.to_dict()},
    )
    return result
