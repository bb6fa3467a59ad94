"""
Existence prober.

Groups records by table and asks the registry once per table which
fields already exist. Records are annotated IN PLACE: table_exists,
registry_table, field_exists and error_message on the caller's
SchemaRecord objects are overwritten. Callers own the batch and must
not share it with another running stage.
"""

import logging
import threading
from collections import OrderedDict
from typing import Optional

from dvschema.errors import ErrorClass, NotFoundError, RegistryError, classify
from dvschema.models import ProbeResult, ProbeStatus, SchemaRecord
from dvschema.registry_client import RegistryClient, TableDescription
from dvschema.resolver import schema_name_for
from dvschema.retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)


def group_by_table(records: list[SchemaRecord]) -> "OrderedDict[str, list[SchemaRecord]]":
    """Group records by lowercased table logical name, in order of first appearance."""
    groups: "OrderedDict[str, list[SchemaRecord]]" = OrderedDict()
    for record in records:
        groups.setdefault(record.table_key, []).append(record)
    return groups


def _describe(
    client: RegistryClient,
    table: str,
    name_prefix: Optional[str],
    policy: Optional[RetryPolicy],
) -> tuple[str, TableDescription]:
    """
    Describe a table by its bare name, then as {prefix}_{table}.

    Tables this tool created carry the publisher prefix, so a second run
    finds them under the prefixed name.

    Returns:
        (registry table name, its description)

    Raises:
        NotFoundError: If neither name exists
        RegistryError: Any other failure, after retries
    """
    try:
        return table, with_retry(lambda: client.describe_table(table), policy)
    except NotFoundError:
        if not name_prefix:
            raise
    prefixed = schema_name_for(name_prefix, table)
    return prefixed, with_retry(lambda: client.describe_table(prefixed), policy)


def field_exists_on(description: TableDescription, record: SchemaRecord, name_prefix: Optional[str]) -> bool:
    """True if the field is on the table as given or as {prefix}_{field}."""
    if description.has_field(record.field_logical_name):
        return True
    return bool(name_prefix) and description.has_field(schema_name_for(name_prefix, record.field_logical_name))


def probe(
    records: list[SchemaRecord],
    client: RegistryClient,
    policy: Optional[RetryPolicy] = None,
    cancel_event: Optional[threading.Event] = None,
    name_prefix: Optional[str] = None,
) -> dict[str, ProbeResult]:
    """
    Annotate records with table/field existence.

    One retried describe_table call per distinct table (two when the bare
    table is absent and a prefix is given). A missing table is a normal
    outcome (flags false, no error). Any other failure leaves the group's
    flags untouched, records the failure on every record of the group
    and moves on.

    Args:
        records: Deduplicated records, mutated in place
        client: Registry client
        policy: Retry timing for describe_table
        cancel_event: Checked before each table group
        name_prefix: Publisher prefix; fields and tables created with it
            count as existing

    Returns:
        ProbeResult per lowercased table name, for the groups probed
    """
    results: dict[str, ProbeResult] = {}

    for table, group in group_by_table(records).items():
        if cancel_event is not None and cancel_event.is_set():
            logger.warning(f"Probe cancelled before table '{table}'")
            break

        try:
            registry_table, description = _describe(client, table, name_prefix, policy)
        except NotFoundError:
            for record in group:
                record.mark_table_absent()
                record.error_message = None
            results[table] = ProbeResult(table=table, status=ProbeStatus.ABSENT)
            logger.info(
                f"Table '{table}' not found - {len(group)} field(s) will be created with it",
                extra={"stage": "probe", "event": "table_absent", "table": table},
            )
            continue
        except RegistryError as e:
            status = (
                ProbeStatus.TRANSIENT_FAILURE
                if classify(e) is ErrorClass.RATE_LIMITED
                else ProbeStatus.PERMANENT_FAILURE
            )
            detail = f"Error checking table '{table}': {e}"
            for record in group:
                record.error_message = detail
            results[table] = ProbeResult(table=table, status=status, detail=str(e))
            logger.error(detail, extra={"stage": "probe", "event": status.value, "table": table})
            continue

        for record in group:
            record.table_exists = True
            record.registry_table = registry_table
            record.field_exists = field_exists_on(description, record, name_prefix)
            record.error_message = None

        results[table] = ProbeResult(
            table=table,
            status=ProbeStatus.EXISTS,
            fields=description.fields,
            registry_table=registry_table,
        )
        existing = sum(1 for r in group if r.field_exists)
        logger.info(
            f"Table '{registry_table}': {existing} existing, {len(group) - existing} new field(s)",
            extra={"stage": "probe", "event": "table_exists", "table": registry_table},
        )

    return results
