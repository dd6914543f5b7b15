"""
Conversion between declared column types and the textual form values
take in storage and in the audit snapshots.

Every field read from or written to the inventory table passes through
a TypedValue. Parsing of "name=value" notation is where field values are
validated against their declaration; the record store only accepts
fields that went through it.
"""

import json
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from .errors import ValidationError
from .schema import (
    CURRENT_TIMESTAMP, NULL_DEFAULT, ColumnType, SchemaCollection, SchemaDeclaration,
    check_numeric_bounds, parse_number,
)

TIMESTAMP_SQL = "(STRFTIME('%Y-%m-%d %H:%M:%f', 'NOW'))"

NATIVE_TYPES = {
    ColumnType.BOOL: "VARCHAR(5)",
    ColumnType.INT: "INTEGER",
    ColumnType.REAL: "REAL",
    ColumnType.TEXT: "TEXT",
}


def quote_identifier(name: str) -> str:
    """Double-quote an SQL identifier; column names may contain dashes."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


@dataclass(frozen=True)
class TypedValue:
    key: str
    value: Optional[str]
    column_type: ColumnType

    def to_json_value(self) -> Any:
        """Python value that json.dumps renders as the canonical projection."""
        if self.value is None:
            return None
        if self.column_type == ColumnType.BOOL:
            return self.value in ("true", "1")
        if self.column_type.is_string:
            return self.value
        return _number(self.value)


def _number(value: str) -> Any:
    for convert in (int, float):
        try:
            return convert(value)
        except ValueError:
            continue
    return value


@dataclass
class TypedRecord:
    """Ordered typed fields of one row, or of one add/edit request."""
    fields: List[TypedValue] = field(default_factory=list)

    def __iter__(self) -> Iterator[TypedValue]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    def names(self) -> List[str]:
        return [f.key for f in self.fields]

    def values(self) -> List[Optional[str]]:
        return [f.value for f in self.fields]

    def get(self, key: str) -> Optional[TypedValue]:
        for f in self.fields:
            if f.key == key:
                return f
        return None

    def get_id(self) -> int:
        entry = self.get("id")
        if entry is None or entry.value is None:
            raise ValidationError("No entry with key 'id' found in collection")
        return int(entry.value)

    @property
    def is_deleted(self) -> bool:
        entry = self.get("deleted_at")
        return entry is not None and entry.value is not None

    def to_dict(self) -> Dict[str, Any]:
        return {f.key: f.to_json_value() for f in self.fields}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def records_to_json(records: Iterable[TypedRecord]) -> str:
    return json.dumps([r.to_dict() for r in records])


def check_against_declaration(name: str, value: str, declaration: SchemaDeclaration) -> str:
    """Validate a textual value against its column and return the stored form."""
    column_type = declaration.column_type

    if column_type == ColumnType.BOOL:
        if value.lower() in ("true", "false"):
            return value.lower()
        raise ValidationError(f"Field {name} value '{value}' is not of boolean type")

    if column_type.is_string:
        # max_length 0 leaves TEXT unbounded, VARCHAR always has one
        if len(value) < declaration.min_length:
            raise ValidationError(f"Field's {name} length is less than schema's min length")
        if declaration.max_length > 0 and len(value) > declaration.max_length:
            raise ValidationError(f"Field's {name} length is more than schema's max length")
        return value

    try:
        number = parse_number(value, column_type)
    except ValueError:
        kind = "integer" if column_type == ColumnType.INT else "finite real"
        raise ValidationError(f"Field {name} is not a valid {kind} type")

    bound = check_numeric_bounds(number, declaration.min, declaration.max)
    if bound == "min":
        raise ValidationError(f"Field {name} is smaller than schema's min")
    if bound == "max":
        raise ValidationError(f"Field {name} is larger than schema's max")
    # stored in canonical form so numeric affinity always applies
    return str(number)


def parse_assignment(notation: str, schema: SchemaCollection) -> TypedValue:
    """Parse one "name=value" string against the current schema."""
    name, sep, value = notation.partition("=")
    if not sep:
        raise ValidationError(f"Given string {notation} is not in valid schema notation")

    declaration = schema.find(name)
    if declaration is None:
        raise ValidationError(f"Field {name} could not be found in schema declaration")

    return TypedValue(name, check_against_declaration(name, value, declaration), declaration.column_type)


def parse_assignments(notations: Sequence[str], schema: SchemaCollection) -> TypedRecord:
    fields = []
    seen = set()
    for notation in notations:
        entry = parse_assignment(notation, schema)
        if entry.key in seen:
            raise ValidationError(f"Field {entry.key} was given more than once")
        seen.add(entry.key)
        fields.append(entry)
    return TypedRecord(fields)


def ensure_known_fields(record: TypedRecord, schema: SchemaCollection) -> None:
    """Every field must belong to the current schema, with its declared type."""
    for entry in record:
        declaration = schema.find(entry.key)
        if declaration is None:
            raise ValidationError(f"Could not find '{entry.key}' in table schema")
        if declaration.column_type != entry.column_type:
            raise ValidationError(
                f"Field {entry.key} is {entry.column_type.value} but the schema declares "
                f"{declaration.column_type.value}"
            )


def missing_required(record: TypedRecord, schema: SchemaCollection) -> List[str]:
    """Non-nullable columns without a default that the record does not set."""
    given = set(record.names())
    return [
        d.name for d in schema
        if not d.nullable and d.default == NULL_DEFAULT and d.name not in given
    ]


def default_sql(declaration: SchemaDeclaration) -> Optional[str]:
    """DEFAULT clause expression, or None when the column has no default."""
    if declaration.default == NULL_DEFAULT:
        return None
    if declaration.default == CURRENT_TIMESTAMP:
        return TIMESTAMP_SQL
    if declaration.column_type.is_string:
        return quote_literal(declaration.default)
    if declaration.column_type == ColumnType.BOOL:
        return quote_literal(declaration.default.lower())
    # numeric defaults were parsed when the declaration was validated
    return declaration.default


def column_ddl(declaration: SchemaDeclaration) -> str:
    """Column definition for CREATE TABLE."""
    if declaration.column_type == ColumnType.VARCHAR:
        native = f"VARCHAR({declaration.max_length})"
    else:
        native = NATIVE_TYPES[declaration.column_type]

    parts = [quote_identifier(declaration.name), native]
    if not declaration.nullable:
        parts.append("NOT NULL")

    default = default_sql(declaration)
    if default is not None:
        parts.append(f"DEFAULT {default}")

    if declaration.unique:
        parts.append("UNIQUE")

    return " ".join(parts)


def _decode_cell(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def row_to_typed_record(row: sqlite3.Row, schema: SchemaCollection) -> TypedRecord:
    """Decode a projected inventory row using the schema's declared types."""
    fields = []
    for key in row.keys():
        value = row[key]
        if key == "id":
            fields.append(TypedValue(key, str(value), ColumnType.INT))
        elif key in ("created_at", "updated_at", "deleted_at"):
            fields.append(TypedValue(key, _decode_cell(value), ColumnType.TEXT))
        else:
            declaration = schema.find(key)
            if declaration is None:
                raise ValidationError(f"Declaration was not found for given key '{key}'")
            fields.append(TypedValue(key, _decode_cell(value), declaration.column_type))
    return TypedRecord(fields)
