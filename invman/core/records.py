"""
Inventory records under the current schema.

Add, edit and remove each run in a single transaction that also appends
one record ledger row and one event ledger row. Listing is read-only.
Records are never physically erased: remove stamps deleted_at, and a
deleted record accepts no further mutation.
"""

import sqlite3
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional, Sequence, Union

from util.logging import logger

from .audit import append_event, append_record_entry, latest_schema_version
from .codec import (
    TypedRecord, ensure_known_fields, missing_required, quote_identifier, row_to_typed_record,
)
from .config import AppConfig
from .db import INVENTORY_TABLE, NOW_SQL, transaction
from .errors import NotFoundError, RecordStateError, StorageError, ValidationError
from .registry import require_current_schema
from .schema import EventActionNo, RecordActionNo, SchemaCollection


class RecordState(Enum):
    ACTIVE = "active"
    DELETED = "deleted"


def record_state(record: TypedRecord) -> RecordState:
    return RecordState.DELETED if record.is_deleted else RecordState.ACTIVE


@dataclass
class InventoryListProps:
    """Listing parameters.

    raw is appended verbatim after the FROM clause and its values must be
    passed separately in params, never interpolated into raw. When raw is
    given, sort and limit are ignored.
    """
    limit: int = -1
    sort: Sequence[str] = ()
    raw: Optional[str] = None
    params: Sequence[Any] = ()


def _projection(schema: SchemaCollection) -> str:
    return ",".join(quote_identifier(name) for name in schema.sql_names())


def _fetch_record(conn: sqlite3.Connection, schema: SchemaCollection, record_id: int) -> Optional[TypedRecord]:
    row = conn.execute(
        f"SELECT {_projection(schema)} FROM {INVENTORY_TABLE} WHERE id = ?", (record_id,)
    ).fetchone()
    if row is None:
        return None
    return row_to_typed_record(row, schema)


def parse_identifier(identifier: Union[int, str]) -> int:
    try:
        return int(identifier)
    except (TypeError, ValueError):
        raise ValidationError(f"Identifier '{identifier}' is not a valid record id")


def _sort_term(item: str):
    """Split a sort item into (column, descending).

    Accepts "name", "name:asc", "name:desc" and "-name".
    """
    name, sep, direction = item.partition(":")
    if sep:
        direction = direction.lower()
        if direction not in ("asc", "desc"):
            raise ValidationError(f"Sort direction of '{name}' must be asc or desc, got '{direction}'")
        return name, direction == "desc"
    if name.startswith("-"):
        return name[1:], True
    return name, False


def _order_clause(sort: Sequence[str], schema: SchemaCollection) -> str:
    known = schema.sql_names()
    terms = []
    for item in sort:
        name, descending = _sort_term(item)
        if name not in known:
            raise ValidationError(f"Cannot sort by unknown column '{name}'")
        terms.append(f"{quote_identifier(name)} {'DESC' if descending else 'ASC'}")
    return " ORDER BY " + ",".join(terms) if terms else " ORDER BY id ASC"


def inventory_add(conn: sqlite3.Connection, config: AppConfig, fields: TypedRecord,
                  dispatcher: int) -> TypedRecord:
    """Insert a record and return it as stored."""
    schema = config.inventory_schema_declaration
    ensure_known_fields(fields, schema)

    missing = missing_required(fields, schema)
    if missing:
        logger.log_validation_error("inventory.add", [f"missing required field {name}" for name in missing])
        raise ValidationError(f"Required fields without default are missing: {', '.join(missing)}")

    if len(fields):
        names = ",".join(quote_identifier(name) for name in fields.names())
        placeholders = ",".join("?" for _ in fields.names())
        insert_sql = f"INSERT INTO {INVENTORY_TABLE} ({names}) VALUES ({placeholders})"
    else:
        insert_sql = f"INSERT INTO {INVENTORY_TABLE} DEFAULT VALUES"

    with transaction(conn, "inventory.add"):
        require_current_schema(conn, schema)
        version = latest_schema_version(conn)
        cursor = conn.execute(insert_sql, fields.values())
        record_id = cursor.lastrowid
        record = _fetch_record(conn, schema, record_id)
        entry_id = append_record_entry(conn, dispatcher, version, record_id, RecordActionNo.ADD,
                                       None, record.to_json())
        append_event(conn, EventActionNo.INVENTORY_ADD, dispatcher, target=entry_id)

    logger.log_record_mutation("add", record_id, dispatcher, version)
    return record


def inventory_get(conn: sqlite3.Connection, config: AppConfig, identifier: Union[int, str]) -> TypedRecord:
    record_id = parse_identifier(identifier)
    record = _fetch_record(conn, config.inventory_schema_declaration, record_id)
    if record is None:
        raise NotFoundError(f"No inventory entity with identifier {record_id}")
    return record


def inventory_list(conn: sqlite3.Connection, config: AppConfig,
                   props: InventoryListProps = None) -> List[TypedRecord]:
    """All records, deleted ones included, projected under the current schema."""
    props = props or InventoryListProps()
    schema = config.inventory_schema_declaration
    sql = f"SELECT {_projection(schema)} FROM {INVENTORY_TABLE}"

    if props.raw is not None:
        sql += " " + props.raw
        params = list(props.params)
    else:
        sql += _order_clause(props.sort, schema)
        params = []
        if props.limit > 0:
            sql += " LIMIT ?"
            params.append(props.limit)

    try:
        rows = conn.execute(sql, params).fetchall()
    except sqlite3.Error as e:
        logger.log_storage_error("inventory.list", e)
        raise StorageError("inventory.list", e) from e

    return [row_to_typed_record(row, schema) for row in rows]


def _require_active(before: Optional[TypedRecord], record_id: int, action: str) -> TypedRecord:
    if before is None:
        raise NotFoundError(f"No inventory entity with identifier {record_id}")
    if record_state(before) == RecordState.DELETED:
        raise RecordStateError(f"Cannot {action} inventory entity {record_id}, it was already removed")
    return before


def inventory_edit(conn: sqlite3.Connection, config: AppConfig, identifier: Union[int, str],
                   fields: TypedRecord, dispatcher: int) -> TypedRecord:
    """Update fields of an active record and return it after the change."""
    record_id = parse_identifier(identifier)
    schema = config.inventory_schema_declaration
    ensure_known_fields(fields, schema)
    if not len(fields):
        raise ValidationError("No fields were given to edit")

    assignments = ",".join(f"{quote_identifier(name)}=?" for name in fields.names())
    update_sql = f"UPDATE {INVENTORY_TABLE} SET {assignments} WHERE id=?"

    with transaction(conn, "inventory.edit"):
        require_current_schema(conn, schema)
        before = _require_active(_fetch_record(conn, schema, record_id), record_id, "edit")
        conn.execute(update_sql, fields.values() + [record_id])
        after = _fetch_record(conn, schema, record_id)
        version = latest_schema_version(conn)
        entry_id = append_record_entry(conn, dispatcher, version, record_id, RecordActionNo.EDIT,
                                       before.to_json(), after.to_json())
        append_event(conn, EventActionNo.INVENTORY_EDIT, dispatcher, target=entry_id)

    logger.log_record_mutation("edit", record_id, dispatcher, version, details={"fields": fields.names()})
    return after


def inventory_remove(conn: sqlite3.Connection, config: AppConfig, identifier: Union[int, str],
                     dispatcher: int) -> TypedRecord:
    """Soft-delete an active record and return it with deleted_at set."""
    record_id = parse_identifier(identifier)
    schema = config.inventory_schema_declaration

    with transaction(conn, "inventory.remove"):
        require_current_schema(conn, schema)
        before = _require_active(_fetch_record(conn, schema, record_id), record_id, "remove")
        conn.execute(
            f"UPDATE {INVENTORY_TABLE} SET deleted_at={NOW_SQL} WHERE id=? AND deleted_at IS NULL",
            (record_id,)
        )
        after = _fetch_record(conn, schema, record_id)
        version = latest_schema_version(conn)
        entry_id = append_record_entry(conn, dispatcher, version, record_id, RecordActionNo.DELETE,
                                       before.to_json(), after.to_json())
        append_event(conn, EventActionNo.INVENTORY_REMOVE, dispatcher, target=entry_id)

    logger.log_record_mutation("remove", record_id, dispatcher, version)
    return after
