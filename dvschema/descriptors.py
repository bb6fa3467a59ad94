"""
Field descriptors - the registry-ready shape of a field.

A FieldDescriptor is a tagged variant: one frozen dataclass per field
kind, each carrying the common schema_name / display_name /
required_level / description plus its own constraints. Descriptors are
built by dvschema.resolver and consumed once by a create call.

Adding a new kind:
    - Add a FieldKind member
    - Add a descriptor subclass with KIND set
    - Add a payload builder in dvschema.dataverse (import fails otherwise)
"""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Optional

from dvschema import constants


class FieldKind(str, Enum):
    """Supported field kinds."""
    TEXT = "text"
    MEMO = "memo"
    INTEGER = "integer"
    DECIMAL = "decimal"
    FLOAT = "float"
    DATETIME = "datetime"
    DATE_ONLY = "date_only"
    BOOLEAN = "boolean"
    CHOICE = "choice"
    LOOKUP = "lookup"
    CUSTOMER = "customer"


class RequiredLevel(str, Enum):
    """Attribute required level, valued as the registry spells it."""
    NONE = "None"
    APPLICATION_REQUIRED = "ApplicationRequired"
    RECOMMENDED = "Recommended"
    SYSTEM_REQUIRED = "SystemRequired"


@dataclass(frozen=True)
class ChoiceOption:
    """A single option of a choice field."""
    value: int
    label: str


@dataclass(frozen=True)
class FieldDescriptor:
    """Common attributes of every field kind."""
    KIND: ClassVar[FieldKind]

    schema_name: str
    display_name: str
    required_level: RequiredLevel = RequiredLevel.NONE
    description: Optional[str] = None

    @property
    def kind(self) -> FieldKind:
        return self.KIND


@dataclass(frozen=True)
class TextField(FieldDescriptor):
    KIND: ClassVar[FieldKind] = FieldKind.TEXT
    max_length: int = constants.TEXT_MAX_LENGTH


@dataclass(frozen=True)
class MemoField(FieldDescriptor):
    KIND: ClassVar[FieldKind] = FieldKind.MEMO
    max_length: int = constants.MEMO_MAX_LENGTH


@dataclass(frozen=True)
class IntegerField(FieldDescriptor):
    KIND: ClassVar[FieldKind] = FieldKind.INTEGER
    min_value: int = constants.INTEGER_MIN_VALUE
    max_value: int = constants.INTEGER_MAX_VALUE


@dataclass(frozen=True)
class DecimalField(FieldDescriptor):
    """Currency (money) field with fixed precision."""
    KIND: ClassVar[FieldKind] = FieldKind.DECIMAL
    precision: int = constants.DEFAULT_PRECISION
    precision_source: int = constants.MONEY_PRECISION_SOURCE
    min_value: float = constants.MONEY_MIN_VALUE
    max_value: float = constants.MONEY_MAX_VALUE


@dataclass(frozen=True)
class FloatField(FieldDescriptor):
    KIND: ClassVar[FieldKind] = FieldKind.FLOAT
    precision: int = constants.DEFAULT_PRECISION
    min_value: float = constants.DOUBLE_MIN_VALUE
    max_value: float = constants.DOUBLE_MAX_VALUE


@dataclass(frozen=True)
class DateTimeField(FieldDescriptor):
    KIND: ClassVar[FieldKind] = FieldKind.DATETIME


@dataclass(frozen=True)
class DateOnlyField(FieldDescriptor):
    """Same storage as DateTimeField, displayed as a date only."""
    KIND: ClassVar[FieldKind] = FieldKind.DATE_ONLY


@dataclass(frozen=True)
class BooleanField(FieldDescriptor):
    KIND: ClassVar[FieldKind] = FieldKind.BOOLEAN
    true_option: ChoiceOption = ChoiceOption(1, "Yes")
    false_option: ChoiceOption = ChoiceOption(0, "No")
    default_value: bool = False


@dataclass(frozen=True)
class ChoiceField(FieldDescriptor):
    KIND: ClassVar[FieldKind] = FieldKind.CHOICE
    options: tuple[ChoiceOption, ...] = ()


@dataclass(frozen=True)
class LookupField(FieldDescriptor):
    KIND: ClassVar[FieldKind] = FieldKind.LOOKUP
    target: str = ""


@dataclass(frozen=True)
class CustomerField(FieldDescriptor):
    KIND: ClassVar[FieldKind] = FieldKind.CUSTOMER
    targets: tuple[str, ...] = ()
