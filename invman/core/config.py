"""
Runtime configuration for the inventory store.

Process settings come from the environment. Settings that belong to a
particular inventory (registration switch, current schema) live in the
invman_config table and are carried around as an immutable AppConfig.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path

from .schema import SchemaCollection

# Database path configuration
DB_PATH = os.getenv("INVMAN_DB_PATH", "./storage")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Seed value for the allow_registration row, only used on first setup
ALLOW_REGISTRATION = os.getenv("INVMAN_ALLOW_REGISTRATION", "true").lower() == "true"

PASSWORD_ITERATIONS = int(os.getenv("INVMAN_PASSWORD_ITERATIONS", "390000"))

OUTPUT_TYPE = os.getenv("INVMAN_OUTPUT", "json")  # json|plain

# Keys of the invman_config table
CONFIG_ALLOW_REGISTRATION = "allow_registration"
CONFIG_SCHEMA_DECLARATION = "inventory_schema_declaration"

VERSION = "0.1.0"


@dataclass(frozen=True)
class AppConfig:
    """Snapshot of the persisted configuration.

    Schema-mutating operations return a new AppConfig instead of
    changing this one.
    """
    allow_registration: bool = False
    inventory_schema_declaration: SchemaCollection = field(default_factory=SchemaCollection)

    def with_schema(self, schema: SchemaCollection) -> 'AppConfig':
        return replace(self, inventory_schema_declaration=schema)


def get_db_path() -> str:
    """Database path, re-read so tests can point at a temporary file."""
    return os.getenv("INVMAN_DB_PATH", DB_PATH)


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def get_password_iterations() -> int:
    return int(os.getenv("INVMAN_PASSWORD_ITERATIONS", str(PASSWORD_ITERATIONS)))


def get_output_type() -> str:
    output = os.getenv("INVMAN_OUTPUT", OUTPUT_TYPE).lower()
    if output not in ("json", "plain"):
        return "json"
    return output


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or get_db_path()).parent.mkdir(parents=True, exist_ok=True)
