"""Tests for pre-creation validation."""

import copy

import pytest

from dvschema.errors import RegistryError
from dvschema.models import ValidationError
from dvschema.registry_client import InMemoryRegistryClient
from dvschema.validator import has_foreign_prefix, has_own_prefix, mark_invalid, validate


@pytest.fixture
def existing(make_record):
    """Record for a new field on an existing table, as the prober leaves it."""
    def _make(*args, **kwargs):
        record = make_record(*args, **kwargs)
        record.table_exists = True
        return record
    return _make


def _messages(errors):
    return [e.message for e in errors]


class TestValidate:

    def test_valid_record_passes(self, registry, existing):
        assert validate([existing("account", "tier", "text")], "new", registry) == []

    def test_missing_required_fields_accumulate(self, registry, existing):
        record = existing("account", "tier", None, table_display="", field_display=" ")

        errors = validate([record], "new", registry)

        assert _messages(errors) == [
            "Table Name (display name) is required",
            "Column Name (display name) is required",
            "Column Type is required",
        ]
        assert all(e.record_key == "account|tier" for e in errors)

    def test_unsupported_type(self, registry, existing):
        errors = validate([existing("account", "tier", "geometry")], "new", registry)
        assert len(errors) == 1
        assert errors[0].message.startswith("Unsupported type 'geometry'")

    def test_choice_requires_options(self, registry, existing):
        errors = validate([existing("account", "tier", "choice")], "new", registry)
        assert _messages(errors) == ["Choice Options are required for choice columns"]

    def test_duplicate_choice_values(self, registry, existing):
        errors = validate([existing("account", "tier", "choice", choice_options="1:Bronze;1:Gold")], "new", registry)
        assert len(errors) == 1
        assert errors[0].message.startswith("Duplicate choice option value(s) 1")

    def test_lookup_requires_target(self, registry, existing):
        errors = validate([existing("account", "owner", "lookup")], "new", registry)
        assert _messages(errors) == ["Lookup Target Table is required for lookup columns"]

    def test_customer_requires_targets(self, registry, existing):
        errors = validate([existing("account", "client", "customer")], "new", registry)
        assert _messages(errors) == [
            "Customer Target Tables (comma-separated) are required for customer columns"
        ]

    def test_lookup_target_must_exist(self, registry, existing):
        errors = validate([existing("account", "owner", "lookup", lookup_target="widget")], "new", registry)
        assert _messages(errors) == ["Lookup target table 'widget' does not exist"]

    def test_customer_targets_must_exist(self, registry, existing):
        record = existing("account", "client", "customer", customer_targets="contact,widget")
        errors = validate([record], "new", registry)
        assert _messages(errors) == ["Customer target table 'widget' does not exist"]

    def test_foreign_prefix_on_field(self, registry, existing):
        errors = validate([existing("account", "cr123_tier", "text")], "new", registry)
        assert len(errors) == 1
        assert "appears to carry a prefix other than 'new'" in errors[0].message

    def test_own_prefix_is_rejected(self, registry, existing):
        errors = validate([existing("account", "new_tier_code", "text")], "new", registry)
        assert _messages(errors) == [
            "Column logical name 'new_tier_code' already starts with 'new_'. "
            "Use the bare logical name; the prefix is added automatically"
        ]

    def test_own_prefix_on_new_table(self, registry, make_record):
        errors = validate([make_record("new_project", "budget", "money")], "new", registry)
        assert len(errors) == 1
        assert "already starts with 'new_'" in errors[0].message

    def test_foreign_prefix_on_new_table(self, registry, make_record):
        errors = validate([make_record("cr123_project", "budget", "money")], "new", registry)
        assert len(errors) == 1
        assert errors[0].message.startswith("Table logical name 'cr123_project'")

    def test_existing_table_name_not_prefix_checked(self, make_record):
        client = InMemoryRegistryClient(tables={"msdyn_project": ["msdyn_projectid"]})
        record = make_record("msdyn_project", "budget", "money")
        record.table_exists = True

        assert validate([record], "new", client) == []

    def test_invalid_name_syntax(self, registry, existing):
        errors = validate([existing("account", "tier-level", "text")], "new", registry)
        assert errors[0].message.startswith("Column logical name 'tier-level' is invalid")

    def test_field_conflict(self, existing):
        client = InMemoryRegistryClient(tables={"account": ["accountid", "new_tier"]})
        errors = validate([existing("account", "tier", "text")], "new", client)
        assert _messages(errors) == ["Column 'new_tier' already exists on table 'account'"]

    def test_table_conflict(self, make_record):
        client = InMemoryRegistryClient(tables={"new_project": ["new_name"]})
        errors = validate([make_record("project", "budget", "money")], "new", client)
        assert _messages(errors) == ["Table 'new_project' already exists"]

    def test_remote_check_failure_is_skipped(self, registry, existing, fast_policy):
        registry.fail("describe_table", "widget", RegistryError("HTTP 503: unavailable"))
        record = existing("account", "owner", "lookup", lookup_target="widget")

        assert validate([record], "new", registry, policy=fast_policy) == []

    def test_describe_results_cached(self, registry, existing):
        records = [
            existing("account", "owner", "lookup", lookup_target="contact"),
            existing("account", "manager", "lookup", lookup_target="contact"),
        ]

        validate(records, "new", registry)

        assert registry.call_count("describe_table", "contact") == 1

    def test_read_only(self, registry, existing):
        records = [existing("account", "tier", "choice"), existing("account", "owner", "lookup", lookup_target="contact")]
        before = copy.deepcopy(records)

        validate(records, "new", registry)

        assert records == before
        assert {op for op, _ in registry.calls} <= {"describe_table"}

    def test_errors_in_record_order(self, registry, existing):
        records = [existing("account", "a", "choice"), existing("account", "b", "geometry")]
        errors = validate(records, "new", registry)
        assert [e.record_key for e in errors] == ["account|a", "account|b"]


class TestMarkInvalid:

    def test_sets_combined_message(self, make_record):
        records = [make_record("account", "a"), make_record("account", "b")]
        errors = [
            ValidationError("account|a", "first"),
            ValidationError("account|a", "second"),
        ]

        assert mark_invalid(records, errors) == 1
        assert records[0].error_message == "Validation failed: first; second"
        assert records[1].error_message is None


@pytest.mark.parametrize("name,expected", [
    ("tier", False),
    ("new_tier", False),
    ("cr123_tier", True),
    ("tier_code", True),
])
def test_has_foreign_prefix(name, expected):
    assert has_foreign_prefix(name, "new") is expected


@pytest.mark.parametrize("name,prefix,expected", [
    ("new_tier", "new", True),
    ("NEW_tier", "new", True),
    ("newtier", "new", False),
    ("tier", "new", False),
    ("new_tier", "", False),
])
def test_has_own_prefix(name, prefix, expected):
    assert has_own_prefix(name, prefix) is expected
