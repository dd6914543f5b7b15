"""
Append-only audit ledgers.

Three tables: the schema ledger (one row per schema evolution, its id is
the schema version), the record ledger (one row per inventory mutation
with before/after snapshots) and the event ledger (generic pointers for
downstream consumers). Writers only ever INSERT and run inside the
caller's transaction; there is no update or delete path.
"""

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .schema import EventActionNo, RecordActionNo, SchemaActionNo


@dataclass
class SchemaLedgerEntry:
    id: int
    dispatcher: int
    action: SchemaActionNo
    schema_before: List[Dict[str, Any]]
    schema_after: List[Dict[str, Any]]
    created_at: datetime


@dataclass
class RecordLedgerEntry:
    id: int
    dispatcher: int
    schema_version: int
    record_id: int
    action: RecordActionNo
    before: Optional[Dict[str, Any]]
    after: Optional[Dict[str, Any]]
    created_at: datetime


@dataclass
class EventLedgerEntry:
    id: int
    action: EventActionNo
    dispatcher: int
    target: Optional[int]
    reason: Optional[str]
    created_at: datetime


def _parse_ts(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%d %H:%M:%S.%f")


def _load(snapshot: Optional[str]) -> Any:
    return json.loads(snapshot) if snapshot is not None else None


def latest_schema_version(conn: sqlite3.Connection) -> int:
    """Id of the newest schema ledger row, 0 before the first evolution."""
    row = conn.execute("SELECT COALESCE(MAX(id), 0) FROM invman_inventory_schema_tx").fetchone()
    return row[0]


def append_schema_entry(conn: sqlite3.Connection, dispatcher: int, action: SchemaActionNo,
                        schema_before: str, schema_after: str) -> int:
    cursor = conn.execute(
        "INSERT INTO invman_inventory_schema_tx (dispatcher, action_no, from_val, to_val) VALUES (?, ?, ?, ?)",
        (dispatcher, int(action), schema_before, schema_after)
    )
    return cursor.lastrowid


def append_record_entry(conn: sqlite3.Connection, dispatcher: int, schema_version: int, record_id: int,
                        action: RecordActionNo, before: Optional[str], after: str) -> int:
    cursor = conn.execute(
        "INSERT INTO invman_inventory_tx (dispatcher, schema_id, inventory_id, action_no, from_val, to_val) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (dispatcher, schema_version, record_id, int(action), before, after)
    )
    return cursor.lastrowid


def append_event(conn: sqlite3.Connection, action: EventActionNo, dispatcher: int,
                 target: Optional[int] = None, reason: Optional[str] = None) -> int:
    cursor = conn.execute(
        "INSERT INTO invman_event_tx (action_no, dispatcher, target, reason) VALUES (?, ?, ?, ?)",
        (int(action), dispatcher, target, reason)
    )
    return cursor.lastrowid


def list_schema_history(conn: sqlite3.Connection, limit: int = None) -> List[SchemaLedgerEntry]:
    """Schema ledger rows, oldest first."""
    sql = "SELECT id, dispatcher, action_no, from_val, to_val, created_at FROM invman_inventory_schema_tx ORDER BY id"
    params = ()
    if limit is not None and limit > 0:
        sql += " LIMIT ?"
        params = (limit,)
    return [
        SchemaLedgerEntry(
            id=row["id"],
            dispatcher=row["dispatcher"],
            action=SchemaActionNo(row["action_no"]),
            schema_before=json.loads(row["from_val"]),
            schema_after=json.loads(row["to_val"]),
            created_at=_parse_ts(row["created_at"]),
        )
        for row in conn.execute(sql, params).fetchall()
    ]


def list_record_history(conn: sqlite3.Connection, record_id: int = None,
                        limit: int = None) -> List[RecordLedgerEntry]:
    """Record ledger rows, oldest first, optionally for a single record."""
    sql = ("SELECT id, dispatcher, schema_id, inventory_id, action_no, from_val, to_val, created_at "
           "FROM invman_inventory_tx")
    params = []
    if record_id is not None:
        sql += " WHERE inventory_id = ?"
        params.append(record_id)
    sql += " ORDER BY id"
    if limit is not None and limit > 0:
        sql += " LIMIT ?"
        params.append(limit)

    return [
        RecordLedgerEntry(
            id=row["id"],
            dispatcher=row["dispatcher"],
            schema_version=row["schema_id"],
            record_id=row["inventory_id"],
            action=RecordActionNo(row["action_no"]),
            before=_load(row["from_val"]),
            after=_load(row["to_val"]),
            created_at=_parse_ts(row["created_at"]),
        )
        for row in conn.execute(sql, params).fetchall()
    ]


def list_events(conn: sqlite3.Connection, limit: int = 100) -> List[EventLedgerEntry]:
    """Most recent event ledger rows, newest first."""
    if limit <= 0:
        return []
    rows = conn.execute(
        "SELECT id, action_no, dispatcher, target, reason, created_at FROM invman_event_tx ORDER BY id DESC LIMIT ?",
        (limit,)
    ).fetchall()
    return [
        EventLedgerEntry(
            id=row["id"],
            action=EventActionNo(row["action_no"]),
            dispatcher=row["dispatcher"],
            target=row["target"],
            reason=row["reason"],
            created_at=_parse_ts(row["created_at"]),
        )
        for row in rows
    ]
