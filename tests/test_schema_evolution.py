"""
Schema alter/remove: table rebuild, data carry-over, ledger rows and rollback.
"""

import sqlite3
from unittest.mock import patch

import pytest

from invman.core.codec import parse_assignments
from invman.core.db import INVENTORY_TABLE, get_db, table_columns
from invman.core.errors import AuthenticationError, NotFoundError, StaleConfigError, StorageError
from invman.core.records import InventoryListProps
from invman.core.schema import SchemaActionNo, SchemaDeclaration


def _columns(db_path):
    with get_db(db_path) as conn:
        return table_columns(conn, INVENTORY_TABLE)


class TestSchemaAlter:
    """Test adding and replacing columns."""

    def test_first_alter(self, backend, admin, db_path):
        declaration = SchemaDeclaration.declare(name="qty", column_type="INT")
        change = backend.schema_alter(backend.get_config(), declaration, admin)

        assert change.version == 1
        assert change.action == SchemaActionNo.ALTER
        assert change.config.inventory_schema_declaration.names() == ["qty"]
        assert backend.get_config() == change.config
        assert _columns(db_path) == ["id", "created_at", "updated_at", "deleted_at", "qty"]

        history = backend.schema_history()
        assert len(history) == 1
        assert history[0].dispatcher == admin.id
        assert history[0].schema_before == []
        assert history[0].schema_after[0]["name"] == "qty"

    def test_versions_increase(self, backend, admin, qty_config):
        change = backend.schema_alter(qty_config, SchemaDeclaration.declare(name="note", nullable=True), admin)
        assert change.version == 2
        assert backend.schema_version() == 2

    def test_rows_survive_new_column(self, backend, admin, qty_config):
        schema = qty_config.inventory_schema_declaration
        backend.inventory_add(parse_assignments(["qty=5"], schema), qty_config, admin)

        declaration = SchemaDeclaration.declare(name="location", default="shelf")
        config = backend.schema_alter(qty_config, declaration, admin).config

        [record] = backend.inventory_list(InventoryListProps(), config)
        assert record.to_dict()["qty"] == 5
        assert record.to_dict()["location"] == "shelf"

    def test_replaced_column_moves_to_tail(self, backend, admin, qty_config, db_path):
        config = backend.schema_alter(qty_config, SchemaDeclaration.declare(name="note", nullable=True), admin).config
        declaration = SchemaDeclaration.declare(name="qty", column_type="INT", max=1000)
        config = backend.schema_alter(config, declaration, admin).config

        assert config.inventory_schema_declaration.names() == ["note", "qty"]
        assert config.inventory_schema_declaration.find("qty").max == 1000
        assert _columns(db_path)[4:] == ["note", "qty"]

    def test_not_null_without_default_on_populated_table(self, backend, admin, qty_config, db_path):
        schema = qty_config.inventory_schema_declaration
        backend.inventory_add(parse_assignments(["qty=5"], schema), qty_config, admin)

        with pytest.raises(StorageError):
            backend.schema_alter(qty_config, SchemaDeclaration.declare(name="serial"), admin)

        # nothing changed
        assert backend.get_config() == qty_config
        assert backend.schema_version() == 1
        assert _columns(db_path)[4:] == ["qty"]
        assert len(backend.inventory_list(InventoryListProps(), qty_config)) == 1

    def test_not_null_without_default_on_empty_table(self, backend, admin, qty_config):
        change = backend.schema_alter(qty_config, SchemaDeclaration.declare(name="serial"), admin)
        assert change.config.inventory_schema_declaration.names() == ["qty", "serial"]

    def test_failure_mid_rebuild_rolls_back(self, backend, admin, qty_config, db_path):
        """A failing ledger insert undoes the table swap as well."""
        with patch("invman.core.evolution.append_schema_entry",
                   side_effect=sqlite3.OperationalError("disk I/O error")):
            with pytest.raises(StorageError, match="rolled back"):
                backend.schema_alter(qty_config, SchemaDeclaration.declare(name="note", nullable=True), admin)

        assert _columns(db_path)[4:] == ["qty"]
        assert backend.get_config() == qty_config
        assert backend.schema_version() == 1
        with get_db(db_path) as conn:
            tables = [row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")]
        assert "invman_temp_inventory" not in tables

    def test_updated_at_trigger_survives_rebuild(self, backend, admin, qty_config, db_path):
        with get_db(db_path) as conn:
            triggers = [row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='trigger'")]
        assert "update_inventory_updated_at" in triggers


class TestSchemaRemove:
    """Test dropping columns."""

    def test_remove_column_and_data(self, backend, admin, qty_config, db_path):
        config = backend.schema_alter(qty_config, SchemaDeclaration.declare(name="note", nullable=True), admin).config
        schema = config.inventory_schema_declaration
        backend.inventory_add(parse_assignments(["qty=5", "note=hello"], schema), config, admin)

        change = backend.schema_remove(config, "note", admin)

        assert change.version == 3
        assert change.action == SchemaActionNo.REMOVE
        assert _columns(db_path)[4:] == ["qty"]
        [record] = backend.inventory_list(InventoryListProps(), change.config)
        assert record.to_dict()["qty"] == 5
        assert "note" not in record.to_dict()

    def test_remove_unknown(self, backend, admin, qty_config):
        with pytest.raises(NotFoundError):
            backend.schema_remove(qty_config, "missing", admin)
        assert backend.schema_version() == 1

    def test_remove_last_column(self, backend, admin, qty_config):
        change = backend.schema_remove(qty_config, "qty", admin)
        assert len(change.config.inventory_schema_declaration) == 0
        history = backend.schema_history()
        assert [entry.action for entry in history] == [SchemaActionNo.ALTER, SchemaActionNo.REMOVE]


class TestSchemaGuards:
    """Test that evolution only runs for admins against the current schema."""

    def test_stale_config_rejected(self, backend, admin, qty_config, db_path):
        """An old config must not rebuild the table and lose newer columns."""
        config = backend.schema_alter(qty_config, SchemaDeclaration.declare(name="note", nullable=True), admin).config
        schema = config.inventory_schema_declaration
        backend.inventory_add(parse_assignments(["qty=5", "note=keep-me"], schema), config, admin)

        with pytest.raises(StaleConfigError):
            backend.schema_alter(qty_config, SchemaDeclaration.declare(name="loc", nullable=True), admin)
        with pytest.raises(StaleConfigError):
            backend.schema_remove(qty_config, "qty", admin)

        assert _columns(db_path)[4:] == ["qty", "note"]
        assert backend.schema_version() == 2
        [record] = backend.inventory_list(InventoryListProps(), config)
        assert record.to_dict()["note"] == "keep-me"

    def test_reloaded_config_accepted(self, backend, admin, qty_config):
        backend.schema_alter(qty_config, SchemaDeclaration.declare(name="note", nullable=True), admin)
        change = backend.schema_alter(backend.get_config(), SchemaDeclaration.declare(name="loc", nullable=True),
                                      admin)
        assert change.config.inventory_schema_declaration.names() == ["qty", "note", "loc"]
        assert backend.schema_history()[-1].schema_before == backend.schema_history()[-2].schema_after

    def test_non_admin_cannot_change_schema(self, backend, admin, qty_config):
        user = backend.user_register("bob", "pw")
        with pytest.raises(AuthenticationError, match="Only administrators"):
            backend.schema_alter(qty_config, SchemaDeclaration.declare(name="note", nullable=True), user)
        with pytest.raises(AuthenticationError):
            backend.schema_remove(qty_config, "qty", user)
        assert backend.schema_version() == 1
