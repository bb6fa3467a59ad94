"""Tests for the type resolver."""

import pytest

from dvschema.descriptors import (
    BooleanField,
    ChoiceField,
    ChoiceOption,
    CustomerField,
    DateOnlyField,
    DecimalField,
    FieldKind,
    LookupField,
    RequiredLevel,
    TextField,
)
from dvschema.errors import ResolutionError
from dvschema.resolver import (
    TYPE_SYNONYMS,
    parse_choice_options,
    parse_required_level,
    resolve,
    resolve_kind,
    schema_name_for,
)


class TestResolveKind:

    @pytest.mark.parametrize("token,kind", [
        ("text", FieldKind.TEXT),
        ("String", FieldKind.TEXT),
        ("multiline", FieldKind.MEMO),
        ("int", FieldKind.INTEGER),
        ("number", FieldKind.INTEGER),
        ("money", FieldKind.DECIMAL),
        ("currency", FieldKind.DECIMAL),
        ("double", FieldKind.FLOAT),
        ("date", FieldKind.DATETIME),
        ("Date  Only", FieldKind.DATE_ONLY),
        ("yes-no", FieldKind.BOOLEAN),
        ("bit", FieldKind.BOOLEAN),
        ("picklist", FieldKind.CHOICE),
        ("lookup", FieldKind.LOOKUP),
        ("Lookup (account)", FieldKind.LOOKUP),
        ("customer", FieldKind.CUSTOMER),
    ])
    def test_synonyms(self, token, kind):
        assert resolve_kind(token) == kind

    def test_every_kind_is_reachable(self):
        reachable = set(TYPE_SYNONYMS.values()) | {FieldKind.LOOKUP, FieldKind.CUSTOMER}
        assert reachable == set(FieldKind)

    @pytest.mark.parametrize("token", ["geometry", "", None])
    def test_unsupported_names_supported_set(self, token):
        with pytest.raises(ResolutionError, match="Supported types: text, string"):
            resolve_kind(token)


class TestParseChoiceOptions:
    """Value assignment for "label" and "value:label" tokens."""

    def test_auto_values(self):
        assert parse_choice_options("Low;Medium;High") == (
            ChoiceOption(1, "Low"), ChoiceOption(2, "Medium"), ChoiceOption(3, "High"),
        )

    def test_explicit_values(self):
        assert parse_choice_options("100:Low;200:Medium") == (
            ChoiceOption(100, "Low"), ChoiceOption(200, "Medium"),
        )

    def test_mixed_skips_claimed_values(self):
        assert parse_choice_options("1:Low;Medium") == (
            ChoiceOption(1, "Low"), ChoiceOption(2, "Medium"),
        )

    def test_explicit_value_later_in_list_is_not_reused(self):
        assert parse_choice_options("Low;Medium;2:High") == (
            ChoiceOption(1, "Low"), ChoiceOption(3, "Medium"), ChoiceOption(2, "High"),
        )

    def test_malformed_value_falls_back_to_auto(self):
        assert parse_choice_options("x:Low;High") == (
            ChoiceOption(1, "Low"), ChoiceOption(2, "High"),
        )

    def test_empty_labels_dropped(self):
        assert parse_choice_options(" ; Low ;;5:") == (ChoiceOption(1, "Low"),)

    def test_duplicate_explicit_values_raise(self):
        with pytest.raises(ResolutionError, match=r"Duplicate choice option value\(s\) 1 in '1:A;1:B'"):
            parse_choice_options("1:A;1:B")

    def test_explicit_value_on_empty_label_is_not_a_duplicate(self):
        assert parse_choice_options("1:;1:A") == (ChoiceOption(1, "A"),)

    @pytest.mark.parametrize("raw", ["", " ; ", "1:", None])
    def test_no_options_raises(self, raw):
        with pytest.raises(ResolutionError, match="No valid choice options"):
            parse_choice_options(raw)


class TestResolve:

    def test_text_field_defaults(self, make_record):
        descriptor = resolve(make_record("account", "Nickname", "text", field_display="Nickname"), "new")

        assert isinstance(descriptor, TextField)
        assert descriptor.schema_name == "new_nickname"
        assert descriptor.max_length == 100
        assert descriptor.required_level == RequiredLevel.NONE
        assert descriptor.description == "Auto-generated column: Nickname"

    def test_display_name_falls_back_to_logical_name(self, make_record):
        descriptor = resolve(make_record("account", "nickname", "text", field_display=""), "new")
        assert descriptor.display_name == "nickname"

    def test_decimal_is_money_with_precision(self, make_record):
        descriptor = resolve(make_record(field="budget", type_token="money"), "new")
        assert isinstance(descriptor, DecimalField)
        assert descriptor.precision == 2

    def test_boolean_options(self, make_record):
        descriptor = resolve(make_record(field="isvip", type_token="boolean"), "new")
        assert isinstance(descriptor, BooleanField)
        assert descriptor.true_option == ChoiceOption(1, "Yes")
        assert descriptor.false_option == ChoiceOption(0, "No")
        assert descriptor.default_value is False

    def test_date_only(self, make_record):
        assert isinstance(resolve(make_record(type_token="date only"), "new"), DateOnlyField)

    def test_choice(self, make_record):
        record = make_record(field="tier", type_token="choice", choice_options="Bronze;Silver", required_level="required")
        descriptor = resolve(record, "new")

        assert isinstance(descriptor, ChoiceField)
        assert [o.label for o in descriptor.options] == ["Bronze", "Silver"]
        assert descriptor.required_level == RequiredLevel.APPLICATION_REQUIRED
        assert descriptor.description == "Auto-generated choice column: Tier"

    def test_choice_without_options(self, make_record):
        with pytest.raises(ResolutionError, match="requires choice options"):
            resolve(make_record(type_token="choice"), "new")

    def test_lookup(self, make_record):
        descriptor = resolve(make_record(field="owner", type_token="lookup", lookup_target=" Contact "), "new")
        assert isinstance(descriptor, LookupField)
        assert descriptor.target == "contact"

    def test_lookup_without_target(self, make_record):
        with pytest.raises(ResolutionError, match="lookup target"):
            resolve(make_record(type_token="lookup"), "new")

    def test_customer(self, make_record):
        descriptor = resolve(make_record(type_token="customer", customer_targets="Account, contact,"), "new")
        assert isinstance(descriptor, CustomerField)
        assert descriptor.targets == ("account", "contact")

    def test_customer_without_targets(self, make_record):
        with pytest.raises(ResolutionError, match="customer target tables"):
            resolve(make_record(type_token="customer", customer_targets=" , "), "new")

    def test_user_description_kept(self, make_record):
        descriptor = resolve(make_record(description="Loyalty level"), "new")
        assert descriptor.description == "Loyalty level"


def test_parse_required_level():
    assert parse_required_level("Business Recommended") == RequiredLevel.RECOMMENDED
    assert parse_required_level("whatever") == RequiredLevel.NONE
    assert parse_required_level(None) == RequiredLevel.NONE


def test_schema_name_for():
    assert schema_name_for("New", " Budget ") == "new_budget"
