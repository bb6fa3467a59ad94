"""
Registry client interface for schema metadata operations.

This module defines the protocol that any registry client must implement,
so that the probe/validate/provision stages are decoupled from the
actual metadata backend.

Implementations:
- InMemoryRegistryClient: For testing and offline dry runs
- DataverseClient: Real implementation over the Dataverse Web API
  (dvschema.dataverse)

Every method raises RegistryError subclasses for remote failures:
NotFoundError when the object does not exist, RateLimitedError when
throttled, RegistryError otherwise.
"""

import re
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Optional, Protocol, runtime_checkable

from dvschema import constants
from dvschema.descriptors import FieldDescriptor, LookupField
from dvschema.errors import NotFoundError, RegistryError

LOGICAL_NAME_PATTERN = re.compile(r"^[a-z0-9]+(_[a-z0-9]+)*$")


@dataclass(frozen=True)
class TableDescription:
    """
    Existing table as reported by the registry.

    Attributes:
        name: Table logical name
        fields: Lowercased logical names of every field on the table
    """
    name: str
    fields: frozenset[str] = frozenset()

    def has_field(self, name: str) -> bool:
        return name.strip().lower() in self.fields


@dataclass(frozen=True)
class RelationshipSpec:
    """One one-to-many relationship of a customer field."""
    target_table: str
    schema_name: str


@dataclass(frozen=True)
class Solution:
    """Unmanaged solution visible to the caller."""
    unique_name: str
    friendly_name: str
    publisher_prefix: str
    version: str = ""


def check_logical_name(name: str) -> tuple[bool, Optional[str]]:
    """
    Registry naming rule for logical names.

    Lowercase letters, digits and underscores; no leading, trailing or
    doubled underscore; at most 50 characters.

    Returns:
        (ok, reason) - reason is None when ok
    """
    if not name:
        return False, "name is empty"
    if len(name) > constants.LOGICAL_NAME_MAX_LENGTH:
        return False, f"name exceeds {constants.LOGICAL_NAME_MAX_LENGTH} characters"
    if name.startswith("_") or name.endswith("_"):
        return False, "name cannot start or end with an underscore"
    if not LOGICAL_NAME_PATTERN.match(name):
        return False, "name may only contain lowercase letters, digits and single underscores"
    return True, None


@runtime_checkable
class RegistryClient(Protocol):
    """
    Protocol for schema registry operations.

    This interface abstracts all metadata operations so that:
    1. The pipeline stages have no HTTP imports
    2. The backend can be swapped (Dataverse, in-memory, mock)
    3. Testing is simplified via in-memory implementations
    """

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def describe_table(self, name: str) -> TableDescription:
        """
        Describe an existing table.

        Args:
            name: Table logical name (case-insensitive)

        Returns:
            TableDescription with the table's field logical names

        Raises:
            NotFoundError: If the table does not exist
        """
        ...

    def validate_name_syntax(self, name: str) -> tuple[bool, Optional[str]]:
        """Check a logical name against the registry's naming rule."""
        ...

    # -------------------------------------------------------------------------
    # Create Operations
    # -------------------------------------------------------------------------

    def create_table(
        self,
        display_name: str,
        schema_name: str,
        collection_display_name: str,
        description: Optional[str] = None,
        primary_field: Optional[FieldDescriptor] = None,
    ) -> None:
        """
        Create a table with a primary text name field.

        Args:
            display_name: Table label
            schema_name: Fully-qualified logical name ({prefix}_{table})
            collection_display_name: Plural label
            description: Table description
            primary_field: Primary name field descriptor
        """
        ...

    def create_field(self, table_name: str, descriptor: FieldDescriptor, solution: Optional[str]) -> None:
        """Create a plain (non-relationship) field on an existing table."""
        ...

    def create_relationship(
        self,
        source_table: str,
        target_table: str,
        schema_name: str,
        descriptor: LookupField,
        solution: Optional[str],
    ) -> None:
        """
        Create a lookup field together with its one-to-many relationship.

        Args:
            source_table: Referencing (many-side) table
            target_table: Referenced (one-side) table
            schema_name: Relationship schema name
            descriptor: Lookup descriptor for the referencing field
            solution: Solution unique name, if scoped
        """
        ...

    def create_customer_relationships(
        self,
        source_table: str,
        relationships: list[RelationshipSpec],
        descriptor: FieldDescriptor,
        solution: Optional[str],
    ) -> None:
        """Create a customer field with one one-to-many per target table."""
        ...

    def publish(self) -> None:
        """Publish all pending customizations."""
        ...


class InMemoryRegistryClient:
    """
    In-memory implementation of RegistryClient for testing.

    Tables are held as {logical name: set of field names}. Failures are
    injected per (operation, name) with fail(); every call is recorded
    in `calls` as (operation, name).
    """

    def __init__(
        self,
        tables: Optional[dict[str, list[str]]] = None,
        solutions: Optional[list[Solution]] = None,
    ):
        self.tables: dict[str, set[str]] = {
            name.lower(): {f.lower() for f in fields}
            for name, fields in (tables or {}).items()
        }
        self.solutions = list(solutions or [])
        self.descriptors: dict[str, FieldDescriptor] = {}
        self.relationships: dict[str, tuple[str, str]] = {}
        self.calls: list[tuple[str, str]] = []
        self.publish_count = 0
        self._failures: dict[tuple[str, str], list[Exception]] = defaultdict(list)

    def fail(self, operation: str, name: str, *errors: Exception) -> None:
        """Queue errors raised by the next calls of operation on name."""
        self._failures[(operation, name.lower())].extend(errors)

    def call_count(self, operation: str, name: Optional[str] = None) -> int:
        return sum(
            1 for op, n in self.calls
            if op == operation and (name is None or n == name.lower())
        )

    def _enter(self, operation: str, name: str) -> None:
        self.calls.append((operation, name.lower()))
        queued = self._failures.get((operation, name.lower()))
        if queued:
            raise queued.pop(0)

    def _table(self, name: str) -> set[str]:
        fields = self.tables.get(name.lower())
        if fields is None:
            raise NotFoundError(f"Table '{name}' does not exist", status=404)
        return fields

    def describe_table(self, name: str) -> TableDescription:
        self._enter("describe_table", name)
        return TableDescription(name=name.lower(), fields=frozenset(self._table(name)))

    def validate_name_syntax(self, name: str) -> tuple[bool, Optional[str]]:
        return check_logical_name(name)

    def create_table(
        self,
        display_name: str,
        schema_name: str,
        collection_display_name: str,
        description: Optional[str] = None,
        primary_field: Optional[FieldDescriptor] = None,
    ) -> None:
        self._enter("create_table", schema_name)
        if schema_name.lower() in self.tables:
            raise RegistryError(f"Table '{schema_name}' already exists")
        self.tables[schema_name.lower()] = {primary_field.schema_name} if primary_field else set()

    def create_field(self, table_name: str, descriptor: FieldDescriptor, solution: Optional[str]) -> None:
        self._enter("create_field", descriptor.schema_name)
        fields = self._table(table_name)
        if descriptor.schema_name in fields:
            raise RegistryError(f"Field '{descriptor.schema_name}' already exists on '{table_name}'")
        fields.add(descriptor.schema_name)
        self.descriptors[descriptor.schema_name] = descriptor

    def create_relationship(
        self,
        source_table: str,
        target_table: str,
        schema_name: str,
        descriptor: LookupField,
        solution: Optional[str],
    ) -> None:
        self._enter("create_relationship", schema_name)
        fields = self._table(source_table)
        self._table(target_table)
        fields.add(descriptor.schema_name)
        self.descriptors[descriptor.schema_name] = descriptor
        self.relationships[schema_name.lower()] = (source_table.lower(), target_table.lower())

    def create_customer_relationships(
        self,
        source_table: str,
        relationships: list[RelationshipSpec],
        descriptor: FieldDescriptor,
        solution: Optional[str],
    ) -> None:
        self._enter("create_customer_relationships", descriptor.schema_name)
        fields = self._table(source_table)
        for rel in relationships:
            self._table(rel.target_table)
        fields.add(descriptor.schema_name)
        self.descriptors[descriptor.schema_name] = descriptor
        for rel in relationships:
            self.relationships[rel.schema_name.lower()] = (source_table.lower(), rel.target_table.lower())

    def publish(self) -> None:
        self._enter("publish", "all")
        self.publish_count += 1

    def list_solutions(self) -> list[Solution]:
        return list(self.solutions)

    def close(self) -> None:
        """Nothing to release."""

    def get_publisher_prefix(self, solution_unique_name: str) -> str:
        for solution in self.solutions:
            if solution.unique_name.lower() == solution_unique_name.lower():
                return solution.publisher_prefix
        raise NotFoundError(f"Solution '{solution_unique_name}' not found")
