"""
Pre-creation validation.

validate() is read-only: it never mutates records and never issues a
create call. All checks for a record are accumulated, so one run
reports every problem. Remote existence checks are best effort: when
the registry cannot answer (after retries) the check is skipped with a
warning instead of failing the record.
"""

import logging
from typing import Optional, Union

from dvschema import constants
from dvschema.descriptors import CustomerField, FieldKind, LookupField
from dvschema.errors import NotFoundError, RegistryError, ResolutionError
from dvschema.models import SchemaRecord, ValidationError
from dvschema.registry_client import RegistryClient, TableDescription
from dvschema.resolver import resolve, resolve_kind, schema_name_for
from dvschema.retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)


class _TableLookup:
    """Retried describe_table calls, cached per name for one validate() run."""

    def __init__(self, client: RegistryClient, policy: Optional[RetryPolicy]):
        self.client = client
        self.policy = policy
        self._cache: dict[str, Union[TableDescription, None, RegistryError]] = {}

    def get(self, name: str) -> Optional[TableDescription]:
        """
        Returns:
            The table, or None if it does not exist

        Raises:
            RegistryError: If the registry could not answer
        """
        key = name.strip().lower()
        if key not in self._cache:
            try:
                self._cache[key] = with_retry(lambda: self.client.describe_table(key), self.policy)
            except NotFoundError:
                self._cache[key] = None
            except RegistryError as e:
                self._cache[key] = e
        cached = self._cache[key]
        if isinstance(cached, RegistryError):
            raise cached
        return cached


def _blank(value: Optional[str]) -> bool:
    return not (value or "").strip()


def has_foreign_prefix(logical_name: str, name_prefix: str) -> bool:
    """True if the name's leading underscore-delimited segment is not the prefix."""
    name = logical_name.strip().lower()
    if "_" not in name.strip("_"):
        return False
    return name.split("_", 1)[0] != name_prefix.strip().lower()


def has_own_prefix(logical_name: str, name_prefix: str) -> bool:
    """True if the name already starts with {prefix}_, which resolve() would add again."""
    prefix = name_prefix.strip().lower()
    return bool(prefix) and logical_name.strip().lower().startswith(f"{prefix}_")


def _check_required(record: SchemaRecord) -> list[str]:
    errors = []
    if _blank(record.table_display_name):
        errors.append("Table Name (display name) is required")
    if _blank(record.field_display_name):
        errors.append("Column Name (display name) is required")
    if _blank(record.type_token):
        errors.append("Column Type is required")
    return errors


def _check_names(record: SchemaRecord, name_prefix: str, client: RegistryClient) -> list[str]:
    errors = []
    for label, name, check_prefix in (
        ("Column logical name", record.field_logical_name, True),
        ("Table logical name", record.table_logical_name, not record.table_exists),
    ):
        name = (name or "").strip()
        if not name:
            errors.append(f"{label} is required")
            continue
        ok, reason = client.validate_name_syntax(name)
        if not ok:
            errors.append(f"{label} '{name}' is invalid: {reason}")
        if not check_prefix:
            continue
        if has_own_prefix(name, name_prefix):
            errors.append(
                f"{label} '{name}' already starts with '{name_prefix}_'. "
                f"Use the bare logical name; the prefix is added automatically"
            )
        elif has_foreign_prefix(name, name_prefix):
            errors.append(
                f"{label} '{name}' appears to carry a prefix other than '{name_prefix}'. "
                f"Use the bare logical name; the prefix is added automatically"
            )
    return errors


def _check_targets(tables: _TableLookup, targets: list[str], label: str) -> list[str]:
    errors = []
    for target in targets:
        try:
            if tables.get(target) is None:
                errors.append(f"{label} table '{target}' does not exist")
        except RegistryError as e:
            logger.warning(f"Could not verify {label.lower()} table '{target}': {e}. Skipping check")
    return errors


def _check_type(record: SchemaRecord, name_prefix: str, tables: _TableLookup) -> list[str]:
    if _blank(record.type_token):
        return []

    options = record.type_options
    try:
        kind = resolve_kind(record.type_token)
    except ResolutionError as e:
        return [str(e)]

    # Missing auxiliary data is reported here even if resolve() would also catch it
    if kind == FieldKind.CHOICE and _blank(options.choice_options):
        return ["Choice Options are required for choice columns"]
    if kind == FieldKind.LOOKUP and _blank(options.lookup_target):
        return ["Lookup Target Table is required for lookup columns"]
    if kind == FieldKind.CUSTOMER and not options.customer_target_list():
        return ["Customer Target Tables (comma-separated) are required for customer columns"]

    try:
        descriptor = resolve(record, name_prefix)
    except ResolutionError as e:
        return [str(e)]

    if isinstance(descriptor, LookupField):
        return _check_targets(tables, [descriptor.target], "Lookup target")
    if isinstance(descriptor, CustomerField):
        return _check_targets(tables, list(descriptor.targets), "Customer target")
    return []


def _check_conflicts(record: SchemaRecord, name_prefix: str, tables: _TableLookup) -> list[str]:
    if _blank(record.field_logical_name) or _blank(record.table_logical_name):
        return []

    try:
        if record.table_exists:
            field_name = schema_name_for(name_prefix, record.field_logical_name)
            table = tables.get(record.registry_table or record.table_logical_name)
            if table is not None and table.has_field(field_name):
                return [f"Column '{field_name}' already exists on table '{table.name}'"]
        else:
            table_name = schema_name_for(name_prefix, record.table_logical_name)
            if tables.get(table_name) is not None:
                return [f"Table '{table_name}' already exists"]
    except RegistryError as e:
        logger.warning(f"Could not check conflicts for {record.key}: {e}. Skipping check")
    return []


def validate(
    records: list[SchemaRecord],
    name_prefix: str,
    client: RegistryClient,
    policy: Optional[RetryPolicy] = None,
) -> list[ValidationError]:
    """
    Validate the records that are about to be created.

    Args:
        records: The to-create subset (field_exists is False)
        name_prefix: Publisher prefix for new names
        client: Registry client, used for naming rules and existence checks
        policy: Retry timing for remote checks

    Returns:
        Every ValidationError found, in record order (empty if all pass)
    """
    tables = _TableLookup(client, policy)
    errors: list[ValidationError] = []

    for record in records:
        messages = (
            _check_required(record)
            + _check_names(record, name_prefix, client)
            + _check_type(record, name_prefix, tables)
            + _check_conflicts(record, name_prefix, tables)
        )
        errors.extend(ValidationError(record_key=record.key, message=m) for m in messages)

    if errors:
        failed = len({e.record_key for e in errors})
        logger.warning(
            f"Validation found {len(errors)} error(s) in {failed} record(s)",
            extra={"stage": "validate", "event": "failed"},
        )
    else:
        logger.info(
            f"Validation passed for {len(records)} record(s)",
            extra={"stage": "validate", "event": "passed"},
        )
    return errors


def mark_invalid(records: list[SchemaRecord], errors: list[ValidationError]) -> int:
    """
    Record validation failures on their records.

    Sets error_message to "Validation failed: ..." on every record with
    at least one error; the orchestrator skips such records.

    Returns:
        Number of records marked
    """
    by_key: dict[str, list[str]] = {}
    for error in errors:
        by_key.setdefault(error.record_key, []).append(error.message)

    marked = 0
    for record in records:
        messages = by_key.get(record.key)
        if messages:
            record.error_message = constants.VALIDATION_FAILED_PREFIX + "; ".join(messages)
            marked += 1
    return marked
