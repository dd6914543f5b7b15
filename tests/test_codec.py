"""
Tests for name=value parsing, value checks and column DDL.
"""

import json

import pytest

from invman.core.codec import (
    TypedRecord, TypedValue, column_ddl, missing_required, parse_assignment, parse_assignments,
    records_to_json,
)
from invman.core.errors import ValidationError
from invman.core.schema import ColumnType, SchemaCollection, SchemaDeclaration


@pytest.fixture
def schema():
    return SchemaCollection((
        SchemaDeclaration.declare(name="name", column_type="VARCHAR", min_length=2, max_length=8),
        SchemaDeclaration.declare(name="qty", column_type="INT", min=1, max=100),
        SchemaDeclaration.declare(name="price", column_type="REAL", nullable=True),
        SchemaDeclaration.declare(name="active", column_type="BOOL", default="true"),
        SchemaDeclaration.declare(name="note", nullable=True),
    ))


class TestParseAssignment:
    """Test parsing of name=value notation."""

    def test_valid_int(self, schema):
        value = parse_assignment("qty=5", schema)
        assert value == TypedValue("qty", "5", ColumnType.INT)

    def test_value_may_contain_equals(self, schema):
        value = parse_assignment("note=a=b", schema)
        assert value.value == "a=b"

    def test_empty_value_for_text(self, schema):
        assert parse_assignment("note=", schema).value == ""

    def test_missing_equals(self, schema):
        with pytest.raises(ValidationError, match="not in valid schema notation"):
            parse_assignment("qty", schema)

    def test_unknown_field(self, schema):
        with pytest.raises(ValidationError) as exc_info:
            parse_assignment("colour=red", schema)
        assert str(exc_info.value) == "Field colour could not be found in schema declaration"

    def test_int_bounds(self, schema):
        with pytest.raises(ValidationError) as exc_info:
            parse_assignment("qty=500", schema)
        assert str(exc_info.value) == "Field qty is larger than schema's max"
        with pytest.raises(ValidationError, match="smaller than schema's min"):
            parse_assignment("qty=0", schema)

    def test_int_not_a_number(self, schema):
        with pytest.raises(ValidationError, match="not a valid integer"):
            parse_assignment("qty=1.5", schema)

    def test_real_unbounded(self, schema):
        assert parse_assignment("price=-3.25", schema).value == "-3.25"

    @pytest.mark.parametrize("value", ["1_0", " 5", "5 ", "\u0663", "0x10", "", "5e2"])
    def test_int_strict_literals(self, schema, value):
        with pytest.raises(ValidationError, match="not a valid integer"):
            parse_assignment(f"qty={value}", schema)

    @pytest.mark.parametrize("value", ["nan", "NaN", "inf", "-Infinity", "1e999", "1_0.5", " 2.5"])
    def test_real_rejects_non_finite_and_loose_literals(self, schema, value):
        with pytest.raises(ValidationError, match="not a valid finite real"):
            parse_assignment(f"price={value}", schema)

    def test_numbers_stored_canonically(self, schema):
        assert parse_assignment("qty=+07", schema).value == "7"
        assert parse_assignment("price=1e3", schema).value == "1000.0"
        assert parse_assignment("price=.5", schema).value == "0.5"

    def test_lengths_count_characters(self, schema):
        # multi-byte characters count once each
        assert parse_assignment("name=\u00e4\u00f6\u00fc", schema).value == "\u00e4\u00f6\u00fc"

    def test_string_lengths(self, schema):
        with pytest.raises(ValidationError, match="less than schema's min length"):
            parse_assignment("name=a", schema)
        with pytest.raises(ValidationError, match="more than schema's max length"):
            parse_assignment("name=abcdefghi", schema)

    def test_bool_normalized(self, schema):
        assert parse_assignment("active=TRUE", schema).value == "true"
        with pytest.raises(ValidationError, match="boolean"):
            parse_assignment("active=yes", schema)

    def test_duplicates_rejected(self, schema):
        with pytest.raises(ValidationError, match="more than once"):
            parse_assignments(["qty=1", "qty=2"], schema)

    def test_missing_required(self, schema):
        fields = parse_assignments(["qty=3"], schema)
        # active has a default, price and note are nullable
        assert missing_required(fields, schema) == ["name"]


class TestJsonProjection:
    """Test the canonical JSON form of records."""

    def test_values_typed(self):
        record = TypedRecord([
            TypedValue("id", "1", ColumnType.INT),
            TypedValue("qty", "5", ColumnType.INT),
            TypedValue("price", "2.5", ColumnType.REAL),
            TypedValue("active", "false", ColumnType.BOOL),
            TypedValue("note", None, ColumnType.TEXT),
        ])
        assert json.loads(record.to_json()) == {
            "id": 1, "qty": 5, "price": 2.5, "active": False, "note": None,
        }
        assert record.get_id() == 1
        assert not record.is_deleted

    def test_key_order_follows_fields(self):
        record = TypedRecord([TypedValue("b", "x", ColumnType.TEXT), TypedValue("a", "y", ColumnType.TEXT)])
        assert record.to_json() == '{"b": "x", "a": "y"}'

    def test_records_to_json_empty(self):
        assert records_to_json([]) == "[]"


class TestColumnDdl:
    """Test native column definitions."""

    def test_varchar_not_null_unique(self):
        declaration = SchemaDeclaration.declare(name="code", column_type="VARCHAR", max_length=12, unique=True)
        assert column_ddl(declaration) == '"code" VARCHAR(12) NOT NULL UNIQUE'

    def test_nullable_int_with_default(self):
        declaration = SchemaDeclaration.declare(name="qty", column_type="INT", nullable=True, default="3")
        assert column_ddl(declaration) == '"qty" INTEGER DEFAULT 3'

    def test_bool_and_text_defaults_quoted(self):
        assert column_ddl(SchemaDeclaration.declare(name="active", column_type="BOOL", default="TRUE")) == \
            "\"active\" VARCHAR(5) NOT NULL DEFAULT 'true'"
        assert column_ddl(SchemaDeclaration.declare(name="note", default="it's")) == \
            "\"note\" TEXT NOT NULL DEFAULT 'it''s'"

    def test_current_timestamp_default(self):
        ddl = column_ddl(SchemaDeclaration.declare(name="seen", default="CURRENT_TIMESTAMP"))
        assert "DEFAULT (STRFTIME(" in ddl

    def test_dashed_name_quoted(self):
        assert column_ddl(SchemaDeclaration.declare(name="serial-no", nullable=True)) == '"serial-no" TEXT'
