"""
Shared fixtures: every test gets its own database file.
"""

import pytest

from invman.core.backend import SqliteInventory
from invman.core.schema import SchemaDeclaration


@pytest.fixture(autouse=True)
def fast_password_hashing(monkeypatch):
    """Keep PBKDF2 cheap in tests."""
    monkeypatch.setenv("INVMAN_PASSWORD_ITERATIONS", "1000")


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "storage" / "invman.db"
    monkeypatch.setenv("INVMAN_DB_PATH", str(path))
    return str(path)


@pytest.fixture
def backend(db_path):
    return SqliteInventory(db_path)


@pytest.fixture
def admin(backend):
    """The first registered user, who becomes administrator."""
    return backend.user_register("admin", "admin-pass")


@pytest.fixture
def qty_config(backend, admin):
    """Schema with a single INT column qty bounded to 1..100."""
    declaration = SchemaDeclaration.declare(name="qty", column_type="INT", min=1, max=100)
    return backend.schema_alter(backend.get_config(), declaration, admin).config
