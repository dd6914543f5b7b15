"""
Column declarations for the inventory table and the ordered collection
that makes up the current schema.

A declaration is validated once, when it is created, and is immutable
afterwards. The collection is persisted as a JSON array under the
inventory_schema_declaration config key.
"""

import json
import math
import re
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import NotFoundError, ValidationError

NULL_DEFAULT = "NULL"
CURRENT_TIMESTAMP = "CURRENT_TIMESTAMP"

# Columns every inventory row carries ahead of the declared ones
RESERVED_COLUMNS = ("id", "created_at", "updated_at", "deleted_at")

NAME_PATTERN = re.compile(r"[a-z_-]+")


class ColumnType(str, Enum):
    TEXT = "TEXT"
    VARCHAR = "VARCHAR"
    INT = "INT"
    REAL = "REAL"
    BOOL = "BOOL"

    @property
    def is_string(self) -> bool:
        return self in (ColumnType.TEXT, ColumnType.VARCHAR)

    @property
    def is_numeric(self) -> bool:
        return self in (ColumnType.INT, ColumnType.REAL)


# Ledger action numbers. The integer values are part of the persisted
# format and must never be renumbered.

class SchemaActionNo(IntEnum):
    ALTER = 1
    REMOVE = 2


class RecordActionNo(IntEnum):
    ADD = 1
    EDIT = 2
    DELETE = 3


class EventActionNo(IntEnum):
    USER_REGISTER = 100

    INVENTORY_ADD = 200
    INVENTORY_EDIT = 201
    INVENTORY_REMOVE = 202


def default_display_name(name: str) -> str:
    """Title-case a column name: dashes and underscores become spaces."""
    name = name.replace("-", " ").replace("_", " ")
    if not name:
        return ""
    return name[0].upper() + name[1:].lower()


# Plain ASCII decimal notation only. No underscores, whitespace or nan/inf.
INT_PATTERN = re.compile(r"[+-]?[0-9]+")
REAL_PATTERN = re.compile(r"[+-]?([0-9]+(\.[0-9]*)?|\.[0-9]+)([eE][+-]?[0-9]+)?")


def parse_number(value: str, column_type: ColumnType):
    """Strictly parse an INT or REAL literal, raising ValueError otherwise."""
    if column_type == ColumnType.INT:
        if not INT_PATTERN.fullmatch(value):
            raise ValueError(f"'{value}' is not an integer literal")
        return int(value)
    if not REAL_PATTERN.fullmatch(value):
        raise ValueError(f"'{value}' is not a real literal")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"'{value}' is out of range")
    return number


def check_numeric_bounds(value, lower: int, upper: int) -> Optional[str]:
    """Bounds only apply when set, a bound of 0 means unbounded.

    Returns the name of the violated bound or None.
    """
    if lower > 0 and value < lower:
        return "min"
    if upper > 0 and value > upper:
        return "max"
    return None


class SchemaDeclaration(BaseModel):
    """Full contract for one inventory column."""

    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str = ""
    unique: bool = False
    max_length: int = Field(0, ge=0)
    min_length: int = Field(0, ge=0)
    max: int = Field(0, ge=0)
    min: int = Field(0, ge=0)
    nullable: bool = False
    column_type: ColumnType = ColumnType.TEXT
    default: str = NULL_DEFAULT
    hint: str = ""
    layout: str = ""

    @model_validator(mode='before')
    @classmethod
    def fill_display_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get('display_name'):
            data = dict(data)
            data['display_name'] = default_display_name(str(data.get('name') or ""))
        return data

    @field_validator('name')
    @classmethod
    def name_must_be_valid(cls, v):
        if not NAME_PATTERN.fullmatch(v):
            raise ValueError(f"Schema name '{v}' may only contain lowercase letters, dashes and underscores")
        if v in RESERVED_COLUMNS:
            raise ValueError(f"Schema name '{v}' is reserved")
        return v

    @field_validator('column_type', mode='before')
    @classmethod
    def column_type_case_insensitive(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator('default', 'hint', 'layout', mode='before')
    @classmethod
    def none_to_default(cls, v, info):
        if v is None:
            return NULL_DEFAULT if info.field_name == 'default' else ""
        return v

    @model_validator(mode='after')
    def check_rules(self) -> 'SchemaDeclaration':
        # Order matters, the first violated rule is the one reported
        if self.min_length > self.max_length:
            raise ValueError("Schema min-length parameter cannot be larger than max-length!")

        if self.min > self.max:
            raise ValueError("Schema min parameter cannot be larger than max!")

        if self.column_type == ColumnType.VARCHAR and self.max_length == 0:
            raise ValueError("Schema cannot have column type varchar with max-length being 0!")

        if self.default == NULL_DEFAULT:
            return self

        if self.default == CURRENT_TIMESTAMP:
            if not self.column_type.is_string:
                raise ValueError("Schema default CURRENT_TIMESTAMP is only allowed for text columns!")
            return self

        if self.column_type.is_string:
            if self.max_length > 0 and len(self.default) > self.max_length:
                raise ValueError("Schema default value cannot be longer than max-length!")
            if self.min_length > 0 and len(self.default) < self.min_length:
                raise ValueError("Schema default value cannot be shorter than min-length!")
        elif self.column_type.is_numeric:
            try:
                number = parse_number(self.default, self.column_type)
            except ValueError:
                raise ValueError(f"Schema default value is not a valid {self.column_type.value.lower()}!")
            bound = check_numeric_bounds(number, self.min, self.max)
            if bound == "min":
                raise ValueError("Schema default value cannot be smaller than min!")
            if bound == "max":
                raise ValueError("Schema default value cannot be larger than max!")
        elif self.default.lower() not in ("true", "false"):
            raise ValueError("Schema default value of a bool column must be true or false!")

        return self

    @classmethod
    def declare(cls, **params) -> 'SchemaDeclaration':
        """Validate raw column parameters.

        Raises invman's ValidationError naming the first violated rule.
        """
        try:
            return cls.model_validate(params)
        except PydanticValidationError as e:
            raise ValidationError(_first_error_message(e)) from e

    def is_equal(self, other: 'SchemaDeclaration') -> bool:
        """Declarations are identified by name only."""
        return self.name == other.name

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode='json')


def _first_error_message(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    cause = first.get('ctx', {}).get('error')
    if isinstance(cause, ValueError):
        return str(cause)
    location = ".".join(str(part) for part in first.get('loc', ()))
    return f"{location}: {first.get('msg')}" if location else first.get('msg', str(error))


@dataclass(frozen=True)
class SchemaCollection:
    """Ordered, name-unique declarations.

    Order is the physical column order of the inventory table and the
    projection order of every read.
    """
    declarations: Tuple[SchemaDeclaration, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'declarations', tuple(self.declarations))
        names = self.names()
        if len(set(names)) != len(names):
            raise ValidationError(f"Schema column names must be unique: {names}")

    def __iter__(self) -> Iterator[SchemaDeclaration]:
        return iter(self.declarations)

    def __len__(self) -> int:
        return len(self.declarations)

    def names(self) -> List[str]:
        return [d.name for d in self.declarations]

    def sql_names(self) -> List[str]:
        """Projection of a full inventory row in column order."""
        return list(RESERVED_COLUMNS) + self.names()

    def find(self, name: str) -> Optional[SchemaDeclaration]:
        for declaration in self.declarations:
            if declaration.name == name:
                return declaration
        return None

    def contains(self, declaration: SchemaDeclaration) -> Optional[int]:
        for i, existing in enumerate(self.declarations):
            if existing.is_equal(declaration):
                return i
        return None

    def altered(self, declaration: SchemaDeclaration) -> 'SchemaCollection':
        """New collection with declaration appended at the tail.

        An existing declaration of the same name is dropped first, so an
        altered column moves to the end.
        """
        kept = [d for d in self.declarations if not d.is_equal(declaration)]
        return SchemaCollection(tuple(kept) + (declaration,))

    def removed(self, name: str) -> 'SchemaCollection':
        if self.find(name) is None:
            raise NotFoundError(
                f"The name attribute '{name}' did not match any schema column definition"
            )
        return SchemaCollection(tuple(d for d in self.declarations if d.name != name))

    def to_list(self) -> List[Dict[str, Any]]:
        return [d.to_dict() for d in self.declarations]

    def to_json(self) -> str:
        return json.dumps(self.to_list())

    @classmethod
    def from_json(cls, text: Optional[str]) -> 'SchemaCollection':
        if not text:
            return cls()
        try:
            items = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Stored schema declaration is not valid JSON: {e}") from e
        if not isinstance(items, list):
            raise ValidationError("Stored schema declaration must be a JSON array")
        return cls(tuple(SchemaDeclaration.declare(**item) for item in items))
