import pytest

from dvschema.models import SchemaRecord, TypeOptions
from dvschema.registry_client import InMemoryRegistryClient, Solution
from dvschema.retry import RetryPolicy


@pytest.fixture
def fast_policy():
    """Three retries with no waiting."""
    return RetryPolicy(max_retries=3, base_delay=0)


@pytest.fixture
def make_record():
    def _make(table="account", field="tier", type_token="text", table_display=None, field_display=None, **options):
        return SchemaRecord(
            table_logical_name=table,
            field_logical_name=field,
            table_display_name=table_display if table_display is not None else table.title(),
            field_display_name=field_display if field_display is not None else field.title(),
            type_token=type_token,
            type_options=TypeOptions(**options),
        )
    return _make


@pytest.fixture
def registry():
    """Registry with the two standard tables and one solution."""
    return InMemoryRegistryClient(
        tables={
            "account": ["accountid", "name", "emailaddress1"],
            "contact": ["contactid", "fullname"],
        },
        solutions=[Solution("CoreSolution", "Core Solution", "new", "1.0.0.0")],
    )
