"""
Type resolver - turns a SchemaRecord into a FieldDescriptor.

resolve() is pure and total: every supported token (including synonyms)
maps to exactly one FieldKind, and everything else raises
ResolutionError naming the supported set. No partial descriptors.
"""

from typing import Optional

from dvschema import constants
from dvschema.descriptors import (
    BooleanField,
    ChoiceField,
    ChoiceOption,
    CustomerField,
    DateOnlyField,
    DateTimeField,
    DecimalField,
    FieldDescriptor,
    FieldKind,
    FloatField,
    IntegerField,
    LookupField,
    MemoField,
    RequiredLevel,
    TextField,
)
from dvschema.errors import ResolutionError
from dvschema.models import SchemaRecord

TYPE_SYNONYMS: dict[str, FieldKind] = {
    "text": FieldKind.TEXT,
    "string": FieldKind.TEXT,
    "memo": FieldKind.MEMO,
    "multiline": FieldKind.MEMO,
    "number": FieldKind.INTEGER,
    "int": FieldKind.INTEGER,
    "integer": FieldKind.INTEGER,
    "decimal": FieldKind.DECIMAL,
    "money": FieldKind.DECIMAL,
    "currency": FieldKind.DECIMAL,
    "float": FieldKind.FLOAT,
    "double": FieldKind.FLOAT,
    "date": FieldKind.DATETIME,
    "datetime": FieldKind.DATETIME,
    "date only": FieldKind.DATE_ONLY,
    "dateonly": FieldKind.DATE_ONLY,
    "date_only": FieldKind.DATE_ONLY,
    "boolean": FieldKind.BOOLEAN,
    "bool": FieldKind.BOOLEAN,
    "bit": FieldKind.BOOLEAN,
    "yes-no": FieldKind.BOOLEAN,
    "yesno": FieldKind.BOOLEAN,
    "two options": FieldKind.BOOLEAN,
    "choice": FieldKind.CHOICE,
    "picklist": FieldKind.CHOICE,
    "optionset": FieldKind.CHOICE,
}

# Prefix-matched tokens, e.g. "lookup", "lookup (account)", "customer"
TYPE_PREFIXES: tuple[tuple[str, FieldKind], ...] = (
    ("lookup", FieldKind.LOOKUP),
    ("customer", FieldKind.CUSTOMER),
)

REQUIRED_LEVELS: dict[str, RequiredLevel] = {
    "none": RequiredLevel.NONE,
    "optional": RequiredLevel.NONE,
    "required": RequiredLevel.APPLICATION_REQUIRED,
    "business required": RequiredLevel.APPLICATION_REQUIRED,
    "recommended": RequiredLevel.RECOMMENDED,
    "business recommended": RequiredLevel.RECOMMENDED,
    "system required": RequiredLevel.SYSTEM_REQUIRED,
}

SUPPORTED_TYPES = (
    "text, string, memo, multiline, number, int, integer, decimal, money, currency, "
    "float, double, date, datetime, date only, boolean, bool, bit, yes-no, "
    "choice, picklist, lookup, customer"
)


def normalize_type(type_token: Optional[str]) -> str:
    return " ".join((type_token or "").split()).lower()


def resolve_kind(type_token: Optional[str]) -> FieldKind:
    """
    Map a raw type token to its FieldKind.

    Raises:
        ResolutionError: If the token is empty or unsupported
    """
    token = normalize_type(type_token)
    if token in TYPE_SYNONYMS:
        return TYPE_SYNONYMS[token]
    for prefix, kind in TYPE_PREFIXES:
        if token.startswith(prefix):
            return kind
    raise ResolutionError(
        f"Unsupported type '{type_token or ''}'. Supported types: {SUPPORTED_TYPES}"
    )


def parse_required_level(token: Optional[str]) -> RequiredLevel:
    """Map a required-level token; anything unknown or empty is NONE."""
    return REQUIRED_LEVELS.get(normalize_type(token), RequiredLevel.NONE)


def _parse_explicit(token: str) -> tuple[Optional[int], str]:
    """Split "value:label"; value is None if absent or not an integer."""
    if ":" not in token:
        return None, token.strip()
    value_part, label = token.split(":", 1)
    try:
        return int(value_part.strip()), label.strip()
    except ValueError:
        return None, label.strip()


def parse_choice_options(raw: Optional[str]) -> tuple[ChoiceOption, ...]:
    """
    Parse a semicolon-separated choice option string.

    Each token is either "label" (auto-assigned value) or "value:label"
    (explicit integer value). Auto values count up from 1, are only
    consumed by auto tokens, and skip any value claimed explicitly
    anywhere in the list. A malformed explicit value falls back to
    auto-assignment for the label after the colon.

    Examples:
        "Low;Medium;High"     -> (1, Low), (2, Medium), (3, High)
        "100:Low;200:Medium"  -> (100, Low), (200, Medium)
        "1:Low;Medium"        -> (1, Low), (2, Medium)

    Raises:
        ResolutionError: If no option with a non-empty label remains, or two
            options claim the same explicit value
    """
    tokens = [t.strip() for t in (raw or "").split(";") if t.strip()]
    parsed = [_parse_explicit(t) for t in tokens]
    explicit = [value for value, label in parsed if value is not None and label]
    duplicates = sorted({value for value in explicit if explicit.count(value) > 1})
    if duplicates:
        raise ResolutionError(
            f"Duplicate choice option value(s) {', '.join(map(str, duplicates))} in '{raw}'"
        )
    used = set(explicit)

    options = []
    next_value = 1
    for value, label in parsed:
        if not label:
            continue
        if value is None:
            while next_value in used:
                next_value += 1
            value = next_value
            used.add(value)
            next_value += 1
        options.append(ChoiceOption(value=value, label=label))

    if not options:
        raise ResolutionError(f"No valid choice options in '{raw or ''}'")
    return tuple(options)


def schema_name_for(name_prefix: str, logical_name: str) -> str:
    """Fully-qualified logical name: {prefix}_{name}, lowercased."""
    return f"{name_prefix.strip()}_{logical_name.strip()}".lower()


def resolve(record: SchemaRecord, name_prefix: str) -> FieldDescriptor:
    """
    Resolve a record into a registry-ready FieldDescriptor.

    Args:
        record: Record with a type token and any auxiliary type options
        name_prefix: Publisher prefix prepended to the field logical name

    Returns:
        One FieldDescriptor subclass instance, chosen by the type token

    Raises:
        ResolutionError: Unsupported type, or missing/invalid auxiliary data
    """
    kind = resolve_kind(record.type_token)
    options = record.type_options

    display_name = (record.field_display_name or "").strip() or record.field_logical_name.strip()
    common = {
        "schema_name": schema_name_for(name_prefix, record.field_logical_name),
        "display_name": display_name,
        "required_level": parse_required_level(options.required_level),
        "description": (options.description or "").strip()
        or constants.AUTO_GENERATED_COLUMN_DESCRIPTION.format(display_name),
    }

    if kind == FieldKind.TEXT:
        return TextField(**common)
    if kind == FieldKind.MEMO:
        return MemoField(**common)
    if kind == FieldKind.INTEGER:
        return IntegerField(**common)
    if kind == FieldKind.DECIMAL:
        return DecimalField(**common)
    if kind == FieldKind.FLOAT:
        return FloatField(**common)
    if kind == FieldKind.DATETIME:
        return DateTimeField(**common)
    if kind == FieldKind.DATE_ONLY:
        return DateOnlyField(**common)
    if kind == FieldKind.BOOLEAN:
        return BooleanField(**common)

    if kind == FieldKind.CHOICE:
        if not (options.choice_options or "").strip():
            raise ResolutionError(
                f"Choice field '{record.field_logical_name}' requires choice options"
            )
        if not (options.description or "").strip():
            common["description"] = constants.AUTO_GENERATED_CHOICE_DESCRIPTION.format(display_name)
        return ChoiceField(options=parse_choice_options(options.choice_options), **common)

    if kind == FieldKind.LOOKUP:
        target = (options.lookup_target or "").strip()
        if not target:
            raise ResolutionError(
                f"Lookup field '{record.field_logical_name}' requires a lookup target table"
            )
        return LookupField(target=target.lower(), **common)

    if kind == FieldKind.CUSTOMER:
        targets = options.customer_target_list()
        if not targets:
            raise ResolutionError(
                f"Customer field '{record.field_logical_name}' requires customer target tables"
            )
        return CustomerField(targets=tuple(t.lower() for t in targets), **common)

    raise ResolutionError(f"No descriptor for field kind '{kind.value}'")
