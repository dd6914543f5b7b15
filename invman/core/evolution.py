"""
Schema evolution: altering or removing inventory columns.

Both operations rebuild the inventory table from the new declaration
set, copy retained rows across, swap the tables, store the new schema
snapshot and append a schema ledger row, all inside one transaction.
The caller's schema must still be the persisted one, otherwise the
evolution is refused with StaleConfigError.
"""

import sqlite3
from dataclasses import dataclass
from typing import List

from util.logging import logger

from .audit import append_schema_entry
from .codec import column_ddl, quote_identifier
from .config import AppConfig
from .db import (
    INVENTORY_BASE_COLUMNS, INVENTORY_TABLE, INVENTORY_TRIGGER, TEMP_INVENTORY_TABLE, transaction,
)
from .registry import persist_schema, require_current_schema
from .schema import SchemaActionNo, SchemaCollection, SchemaDeclaration


@dataclass(frozen=True)
class SchemaChange:
    """Outcome of a schema evolution. The caller adopts config from here."""
    config: AppConfig
    version: int
    action: SchemaActionNo
    column: str


def make_inventory_table(schema: SchemaCollection, table: str = TEMP_INVENTORY_TABLE) -> str:
    """CREATE TABLE statement mirroring the schema, base columns first."""
    columns = [INVENTORY_BASE_COLUMNS]
    columns.extend(f"\n    {column_ddl(declaration)}" for declaration in schema)
    return f"CREATE TABLE {table} ({','.join(columns)}\n)"


def copy_columns(action: SchemaActionNo, old_schema: SchemaCollection,
                 new_schema: SchemaCollection) -> List[str]:
    """Columns copied from the old table into the rebuilt one.

    Alter copies everything the old table had, so a new column starts out
    NULL or at its default. Remove copies only what survives.
    """
    if action == SchemaActionNo.ALTER:
        return old_schema.sql_names()
    return new_schema.sql_names()


def alter_inventory_table(conn: sqlite3.Connection, new_schema: SchemaCollection,
                          old_schema: SchemaCollection, action: SchemaActionNo, dispatcher: int) -> int:
    """Rebuild the inventory table for new_schema and return the new schema version."""
    create_table = make_inventory_table(new_schema)
    cols = ",".join(quote_identifier(name) for name in copy_columns(action, old_schema, new_schema))
    copy_table = f"INSERT INTO {TEMP_INVENTORY_TABLE} ({cols}) SELECT {cols} FROM {INVENTORY_TABLE}"

    with transaction(conn, f"schema.{action.name.lower()}"):
        require_current_schema(conn, old_schema)
        conn.execute(create_table)
        conn.execute(copy_table)
        conn.execute(f"DROP TABLE {INVENTORY_TABLE}")
        conn.execute(f"ALTER TABLE {TEMP_INVENTORY_TABLE} RENAME TO {INVENTORY_TABLE}")
        conn.execute(INVENTORY_TRIGGER)
        new_schema_str = persist_schema(conn, new_schema)
        version = append_schema_entry(conn, dispatcher, action, old_schema.to_json(), new_schema_str)

    return version


def schema_alter(conn: sqlite3.Connection, config: AppConfig, declaration: SchemaDeclaration,
                 dispatcher: int) -> SchemaChange:
    """Add a column, or replace the one with the same name (it moves to the tail)."""
    old_schema = config.inventory_schema_declaration
    new_schema = old_schema.altered(declaration)

    version = alter_inventory_table(conn, new_schema, old_schema, SchemaActionNo.ALTER, dispatcher)
    replaced = old_schema.contains(declaration) is not None
    logger.log_schema_change("alter", declaration.name, dispatcher, version,
                             details={"replaced": replaced, "column_type": declaration.column_type.value})
    return SchemaChange(config.with_schema(new_schema), version, SchemaActionNo.ALTER, declaration.name)


def schema_remove(conn: sqlite3.Connection, config: AppConfig, name: str, dispatcher: int) -> SchemaChange:
    """Drop a column together with its data."""
    old_schema = config.inventory_schema_declaration
    new_schema = old_schema.removed(name)

    version = alter_inventory_table(conn, new_schema, old_schema, SchemaActionNo.REMOVE, dispatcher)
    logger.log_schema_change("remove", name, dispatcher, version)
    return SchemaChange(config.with_schema(new_schema), version, SchemaActionNo.REMOVE, name)
