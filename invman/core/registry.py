"""
The invman_config table: registration switch and the current schema
snapshot. Writers here run inside the caller's transaction.
"""

import sqlite3

from util.logging import logger

from .config import CONFIG_ALLOW_REGISTRATION, CONFIG_SCHEMA_DECLARATION, AppConfig
from .errors import StaleConfigError
from .schema import SchemaCollection


def get_config(conn: sqlite3.Connection) -> AppConfig:
    """Read the persisted configuration."""
    rows = conn.execute("SELECT name, value FROM invman_config").fetchall()
    allow_registration = False
    schema = SchemaCollection()
    for row in rows:
        if row["name"] == CONFIG_ALLOW_REGISTRATION:
            allow_registration = row["value"] == "true"
        elif row["name"] == CONFIG_SCHEMA_DECLARATION:
            schema = SchemaCollection.from_json(row["value"])
    return AppConfig(allow_registration=allow_registration, inventory_schema_declaration=schema)


def _set_value(conn: sqlite3.Connection, name: str, value: str):
    conn.execute(
        "INSERT INTO invman_config (name, value) VALUES (?, ?) "
        "ON CONFLICT(name) DO UPDATE SET value=excluded.value",
        (name, value)
    )


def persist_schema(conn: sqlite3.Connection, schema: SchemaCollection) -> str:
    """Store the schema snapshot and return its serialized form."""
    serialized = schema.to_json()
    _set_value(conn, CONFIG_SCHEMA_DECLARATION, serialized)
    return serialized


def set_allow_registration(conn: sqlite3.Connection, allowed: bool):
    _set_value(conn, CONFIG_ALLOW_REGISTRATION, "true" if allowed else "false")


def persisted_schema(conn: sqlite3.Connection) -> SchemaCollection:
    row = conn.execute(
        "SELECT value FROM invman_config WHERE name = ?", (CONFIG_SCHEMA_DECLARATION,)
    ).fetchone()
    return SchemaCollection.from_json(row["value"] if row else None)


def require_current_schema(conn: sqlite3.Connection, schema: SchemaCollection):
    """Reject a schema snapshot that another writer has since replaced.

    Must run inside the writing transaction.
    """
    if persisted_schema(conn).to_list() != schema.to_list():
        logger.log_operation("config.schema_check", "rejected", {"given_columns": schema.names()})
        raise StaleConfigError()
