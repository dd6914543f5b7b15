"""
Storage backend interface and its SQLite implementation.

The interface exposes exactly the operations the command layer needs;
any engine implementing it can be substituted. Schema-mutating calls
return the new AppConfig rather than updating one in place, and every
write refuses a config whose schema is no longer the persisted one.
"""

import threading
from abc import ABC, abstractmethod
from typing import List, Optional, Union

from . import audit, auth, evolution, records, registry
from .audit import EventLedgerEntry, RecordLedgerEntry, SchemaLedgerEntry
from .auth import UserIdentity
from .codec import TypedRecord
from .config import AppConfig, get_db_path
from .db import get_db, health_check, init_db, transaction
from .errors import AuthenticationError
from .evolution import SchemaChange
from .records import InventoryListProps
from .schema import SchemaDeclaration


class InventoryBackend(ABC):
    """Abstract interface for inventory storage operations."""

    @abstractmethod
    def get_config(self) -> AppConfig:
        """Read the persisted configuration."""
        pass

    @abstractmethod
    def user_register(self, username: str, password: str) -> UserIdentity:
        pass

    @abstractmethod
    def user_auth(self, username: str, password: str) -> UserIdentity:
        pass

    @abstractmethod
    def schema_alter(self, config: AppConfig, declaration: SchemaDeclaration,
                     user: UserIdentity) -> SchemaChange:
        pass

    @abstractmethod
    def schema_remove(self, config: AppConfig, name: str, user: UserIdentity) -> SchemaChange:
        pass

    @abstractmethod
    def inventory_add(self, fields: TypedRecord, config: AppConfig, user: UserIdentity) -> TypedRecord:
        pass

    @abstractmethod
    def inventory_list(self, props: InventoryListProps, config: AppConfig) -> List[TypedRecord]:
        pass

    @abstractmethod
    def inventory_edit(self, identifier: Union[int, str], fields: TypedRecord, config: AppConfig,
                       user: UserIdentity) -> TypedRecord:
        pass

    @abstractmethod
    def inventory_remove(self, identifier: Union[int, str], config: AppConfig,
                         user: UserIdentity) -> TypedRecord:
        pass

    def authenticate(self, token: Optional[str]) -> UserIdentity:
        """Resolve a "username:password" token to the dispatcher identity."""
        username, password = auth.parse_token(token)
        return self.user_auth(username, password)


def _require_admin(user: UserIdentity, action: str):
    if not user.is_admin:
        raise AuthenticationError(f"Only administrators can {action}")


class SqliteInventory(InventoryBackend):
    """SQLite-backed inventory. One connection per call, writes serialized by a lock."""

    def __init__(self, db_path: str = None):
        self.db_path = db_path or get_db_path()
        # Schema evolution changes the table every other call depends on
        self._write_lock = threading.RLock()
        with get_db(self.db_path) as conn:
            init_db(conn)

    def is_healthy(self) -> bool:
        with get_db(self.db_path) as conn:
            return health_check(conn)

    def get_config(self) -> AppConfig:
        with get_db(self.db_path) as conn:
            return registry.get_config(conn)

    def set_allow_registration(self, allowed: bool, user: UserIdentity) -> AppConfig:
        _require_admin(user, "change registration")
        with self._write_lock, get_db(self.db_path) as conn:
            with transaction(conn, "config.allow_registration"):
                registry.set_allow_registration(conn, allowed)
            return registry.get_config(conn)

    def user_register(self, username: str, password: str) -> UserIdentity:
        with self._write_lock, get_db(self.db_path) as conn:
            return auth.user_register(conn, username, password)

    def user_auth(self, username: str, password: str) -> UserIdentity:
        with get_db(self.db_path) as conn:
            return auth.user_auth(conn, username, password)

    def user_edit(self, user: UserIdentity, options: List[str]) -> UserIdentity:
        with self._write_lock, get_db(self.db_path) as conn:
            return auth.user_edit(conn, user, options)

    def schema_alter(self, config: AppConfig, declaration: SchemaDeclaration,
                     user: UserIdentity) -> SchemaChange:
        _require_admin(user, "change the schema")
        with self._write_lock, get_db(self.db_path) as conn:
            return evolution.schema_alter(conn, config, declaration, user.id)

    def schema_remove(self, config: AppConfig, name: str, user: UserIdentity) -> SchemaChange:
        _require_admin(user, "change the schema")
        with self._write_lock, get_db(self.db_path) as conn:
            return evolution.schema_remove(conn, config, name, user.id)

    def inventory_add(self, fields: TypedRecord, config: AppConfig, user: UserIdentity) -> TypedRecord:
        with self._write_lock, get_db(self.db_path) as conn:
            return records.inventory_add(conn, config, fields, user.id)

    def inventory_get(self, identifier: Union[int, str], config: AppConfig) -> TypedRecord:
        with get_db(self.db_path) as conn:
            return records.inventory_get(conn, config, identifier)

    def inventory_list(self, props: InventoryListProps, config: AppConfig) -> List[TypedRecord]:
        with get_db(self.db_path) as conn:
            return records.inventory_list(conn, config, props)

    def inventory_edit(self, identifier: Union[int, str], fields: TypedRecord, config: AppConfig,
                       user: UserIdentity) -> TypedRecord:
        with self._write_lock, get_db(self.db_path) as conn:
            return records.inventory_edit(conn, config, identifier, fields, user.id)

    def inventory_remove(self, identifier: Union[int, str], config: AppConfig,
                         user: UserIdentity) -> TypedRecord:
        with self._write_lock, get_db(self.db_path) as conn:
            return records.inventory_remove(conn, config, identifier, user.id)

    # Read-only audit views

    def schema_history(self, limit: int = None) -> List[SchemaLedgerEntry]:
        with get_db(self.db_path) as conn:
            return audit.list_schema_history(conn, limit)

    def record_history(self, record_id: int = None, limit: int = None) -> List[RecordLedgerEntry]:
        with get_db(self.db_path) as conn:
            return audit.list_record_history(conn, record_id, limit)

    def events(self, limit: int = 100) -> List[EventLedgerEntry]:
        with get_db(self.db_path) as conn:
            return audit.list_events(conn, limit)

    def schema_version(self) -> int:
        with get_db(self.db_path) as conn:
            return audit.latest_schema_version(conn)
