"""
SQLite storage: connections, transaction scope and initial setup.

Connections run in autocommit mode and every multi-statement operation
opens its own BEGIN IMMEDIATE transaction, so table rebuilds (DDL) commit
or roll back together with the rows written alongside them.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator

from util.logging import logger

from .config import (
    ALLOW_REGISTRATION, CONFIG_ALLOW_REGISTRATION, CONFIG_SCHEMA_DECLARATION,
    ensure_db_directory, get_db_path,
)
from .errors import StorageError

NOW_SQL = "(STRFTIME('%Y-%m-%d %H:%M:%f', 'NOW'))"

INVENTORY_TABLE = "invman_inventory"
TEMP_INVENTORY_TABLE = "invman_temp_inventory"

INVENTORY_BASE_COLUMNS = f"""
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    created_at TEXT DEFAULT{NOW_SQL},
    updated_at TEXT DEFAULT{NOW_SQL},
    deleted_at TEXT DEFAULT NULL"""

INVENTORY_TRIGGER = f'''
    CREATE TRIGGER IF NOT EXISTS update_inventory_updated_at AFTER UPDATE ON {INVENTORY_TABLE}
    BEGIN
        UPDATE {INVENTORY_TABLE} SET updated_at={NOW_SQL} WHERE id=new.id;
    END
'''


def _updated_at_trigger(table: str) -> str:
    return f'''
        CREATE TRIGGER IF NOT EXISTS update_{table}_updated_at AFTER UPDATE ON {table}
        BEGIN
            UPDATE {table} SET updated_at={NOW_SQL} WHERE id=new.id;
        END
    '''


@contextmanager
def get_db(db_path: str = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection in autocommit mode."""
    path = db_path or get_db_path()
    ensure_db_directory(path)
    conn = sqlite3.connect(path, isolation_level=None)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection, operation: str) -> Generator[sqlite3.Connection, None, None]:
    """Run the enclosed statements as one atomic unit.

    Any sqlite3 error rolls the whole unit back and surfaces as a
    StorageError. Other exceptions also roll back and propagate unchanged.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except sqlite3.Error as e:
        conn.execute("ROLLBACK")
        logger.log_storage_error(operation, e)
        raise StorageError(operation, e) from e
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    else:
        try:
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            conn.execute("ROLLBACK")
            logger.log_storage_error(operation, e)
            raise StorageError(operation, e) from e


def init_db(conn: sqlite3.Connection):
    """Create tables, triggers and seed rows that do not exist yet."""
    with transaction(conn, "init_db"):
        cursor = conn.cursor()

        cursor.execute(f'''
            CREATE TABLE IF NOT EXISTS invman_roles (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name VARCHAR(1024) NOT NULL UNIQUE,
                display_name VARCHAR(1024),
                created_at TEXT DEFAULT{NOW_SQL},
                updated_at TEXT DEFAULT{NOW_SQL},
                deleted_at TEXT DEFAULT NULL
            )
        ''')

        cursor.execute(f'''
            CREATE TABLE IF NOT EXISTS invman_users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                username VARCHAR(1024) NOT NULL UNIQUE,
                display_name TEXT DEFAULT NULL,
                role_id INT NOT NULL,
                password TEXT NOT NULL,
                created_at TEXT DEFAULT{NOW_SQL},
                updated_at TEXT DEFAULT{NOW_SQL},
                deleted_at TEXT DEFAULT NULL,
                FOREIGN KEY(role_id) REFERENCES invman_roles(id)
            )
        ''')

        cursor.execute(f'''
            CREATE TABLE IF NOT EXISTS invman_config (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name VARCHAR(256) NOT NULL UNIQUE,
                value TEXT,
                updated_at TEXT DEFAULT{NOW_SQL}
            )
        ''')

        cursor.execute(f"CREATE TABLE IF NOT EXISTS {INVENTORY_TABLE} ({INVENTORY_BASE_COLUMNS}\n)")

        # Schema ledger: its id is the schema version number
        cursor.execute(f'''
            CREATE TABLE IF NOT EXISTS invman_inventory_schema_tx (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                dispatcher INTEGER NOT NULL,
                action_no INTEGER NOT NULL,
                from_val TEXT NOT NULL,
                to_val TEXT NOT NULL,
                created_at TEXT DEFAULT{NOW_SQL},
                FOREIGN KEY(dispatcher) REFERENCES invman_users(id)
            )
        ''')

        # schema_id 0 is the empty schema before the first evolution
        cursor.execute(f'''
            CREATE TABLE IF NOT EXISTS invman_inventory_tx (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                dispatcher INTEGER NOT NULL,
                schema_id INTEGER NOT NULL,
                inventory_id INTEGER NOT NULL,
                action_no INTEGER NOT NULL,
                from_val TEXT DEFAULT NULL,
                to_val TEXT DEFAULT NULL,
                created_at TEXT DEFAULT{NOW_SQL},
                FOREIGN KEY(dispatcher) REFERENCES invman_users(id)
            )
        ''')

        cursor.execute(f'''
            CREATE TABLE IF NOT EXISTS invman_event_tx (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                action_no INTEGER NOT NULL,
                dispatcher INTEGER NOT NULL,
                target INTEGER DEFAULT NULL,
                reason TEXT DEFAULT NULL,
                created_at TEXT DEFAULT{NOW_SQL},
                FOREIGN KEY(dispatcher) REFERENCES invman_users(id)
            )
        ''')

        cursor.execute('CREATE INDEX IF NOT EXISTS idx_inventory_tx_inventory_id ON invman_inventory_tx(inventory_id)')

        # Seed rows
        cursor.execute(
            "INSERT OR IGNORE INTO invman_roles (id, name, display_name) VALUES (1, 'admin', 'Administrator'), (2, 'user', 'User')"
        )
        cursor.execute(
            "INSERT OR IGNORE INTO invman_config (name, value) VALUES (?, ?), (?, ?)",
            (CONFIG_ALLOW_REGISTRATION, "true" if ALLOW_REGISTRATION else "false",
             CONFIG_SCHEMA_DECLARATION, "[]")
        )

        for table in ("invman_users", "invman_roles", "invman_config"):
            cursor.execute(_updated_at_trigger(table))
        cursor.execute(INVENTORY_TRIGGER)


def health_check(conn: sqlite3.Connection) -> bool:
    """Check that all required tables exist."""
    try:
        cursor = conn.cursor()
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
        table_names = [row[0] for row in cursor.fetchall()]
        required_tables = [
            'invman_users', 'invman_roles', 'invman_config', INVENTORY_TABLE,
            'invman_inventory_tx', 'invman_inventory_schema_tx', 'invman_event_tx',
        ]
        return all(table in table_names for table in required_tables)
    except sqlite3.Error as e:
        logger.error(f"Database health check failed: {e}")
        return False


def table_columns(conn: sqlite3.Connection, table: str):
    """Physical column names of a table, in order."""
    return [row[1] for row in conn.execute(f"PRAGMA table_info({table})").fetchall()]
