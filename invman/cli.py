#!/usr/bin/env python3
"""
Command-line front end for the inventory store.

Each subcommand maps onto one backend operation. Every command except
user registration requires --auth username:password.
"""

import argparse
import json
import sys
from typing import List

from invman.core.backend import SqliteInventory
from invman.core.codec import TypedRecord, parse_assignments, records_to_json
from invman.core.config import VERSION, get_output_type
from invman.core.errors import InvManError
from invman.core.records import InventoryListProps, parse_identifier
from invman.core.schema import ColumnType, SchemaDeclaration


def _str_to_bool(value: str) -> bool:
    if value.lower() in ("true", "1", "yes"):
        return True
    if value.lower() in ("false", "0", "no"):
        return False
    raise argparse.ArgumentTypeError(f"expected true or false, got '{value}'")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="invman",
        description="Manage your inventory declaratively, with every change audited",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s user register alice s3cret
  %(prog)s -a alice:s3cret inventory schema alter --name qty -t INT --min 0 --max 100
  %(prog)s -a alice:s3cret inventory add qty=5
  %(prog)s -a alice:s3cret inventory list --sort qty:desc --limit 10
  %(prog)s -a alice:s3cret inventory edit -i 1 --set qty=7

Environment variables:
- INVMAN_DB_PATH=./storage (database file)
- INVMAN_OUTPUT=json (json or plain)
        """
    )
    parser.add_argument("--auth", "-a", help="Username:Password syntax used for secured access")
    parser.add_argument("--output", "-o", choices=["plain", "json"], help="Output format (default: INVMAN_OUTPUT or json)")
    parser.add_argument("--db", help="Database file (default: INVMAN_DB_PATH)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")

    commands = parser.add_subparsers(dest="command", required=True)

    # user
    user = commands.add_parser("user", help="Manage user accounts").add_subparsers(dest="user_command", required=True)
    register = user.add_parser("register", help="Register a new user")
    register.add_argument("name")
    register.add_argument("password")
    user_edit = user.add_parser("edit", help="Change your display name or password")
    user_edit.add_argument("options", nargs="+", help="Options in option=value syntax (display_name, password)")

    # config
    config = commands.add_parser("config", help="Change inventory settings").add_subparsers(
        dest="config_command", required=True)
    registration = config.add_parser("registration", help="Allow or forbid new user registrations (admin only)")
    registration.add_argument("state", choices=["on", "off"])

    # inventory
    inventory = commands.add_parser("inventory", help="Manage your inventory").add_subparsers(
        dest="inventory_command", required=True)

    add = inventory.add_parser("add", help="Add an entity to your inventory")
    add.add_argument("params", nargs="*", help="Fields in name=value notation")

    listing = inventory.add_parser("list", help="List all entities stored in your inventory")
    listing.add_argument("--limit", "-l", type=int, default=-1, help="Limit the amount of entities returned")
    listing.add_argument("--sort", "-s", action="append", default=[],
                         help="Column to sort by as name or name:desc (repeatable)")
    listing.add_argument("--raw", "-r",
                         help="Clause appended to the query verbatim. Pass values with --params, "
                              "never inline, or the query is open to SQL injection")
    listing.add_argument("--params", "-p", action="append", default=[], help="Parameter bound to --raw (repeatable)")

    edit = inventory.add_parser("edit", help="Edit an existing entity in your inventory")
    edit.add_argument("--identifier", "-i", required=True, help="The identifier of the entity")
    edit.add_argument("--set", action="append", default=[], help="Field in name=value notation (repeatable)")

    remove = inventory.add_parser("remove", help="Remove an entity from your inventory")
    remove.add_argument("--identifier", "-i", required=True, help="The identifier of the entity")

    history = inventory.add_parser("history", help="Show the audit trail of your inventory")
    history.add_argument("--identifier", "-i", help="Only show the history of this entity")

    schema = inventory.add_parser("schema", help="Change the schema your entities are stored in").add_subparsers(
        dest="schema_command", required=True)

    alter = schema.add_parser("alter", help="Add or edit a schema column")
    alter.add_argument("--name", "-n", required=True, help="Column name: lowercase letters, dashes and underscores")
    alter.add_argument("--display-name", help="Human readable name (default: derived from name)")
    alter.add_argument("--unique", "-u", action="store_true", help="Values must be unique")
    alter.add_argument("--max-length", type=int, help="Maximum length (TEXT and VARCHAR, required for VARCHAR)")
    alter.add_argument("--min-length", type=int, help="Minimum length (TEXT and VARCHAR)")
    alter.add_argument("--max", type=int, help="Maximum value (INT and REAL)")
    alter.add_argument("--min", type=int, help="Minimum value (INT and REAL)")
    alter.add_argument("--nullable", type=_str_to_bool, help="Allow NULL when no value and no default is given")
    alter.add_argument("--column-type", "-t", type=str.upper, default=ColumnType.TEXT.value,
                       choices=[t.value for t in ColumnType], help="Type of data stored in the column")
    alter.add_argument("--default", "-d",
                       help="Default value used when none is given. CURRENT_TIMESTAMP uses the current datetime")
    alter.add_argument("--hint", help="Display hint for external applications")
    alter.add_argument("--layout", help="Layout information for external applications")

    schema_remove = schema.add_parser("remove", help="Remove a schema column")
    schema_remove.add_argument("--name", "-n", required=True)

    schema.add_parser("list", help="List your schema columns")

    return parser


def _declaration_from_args(args) -> SchemaDeclaration:
    params = {
        "name": args.name,
        "display_name": args.display_name,
        "unique": args.unique,
        "column_type": args.column_type,
        "default": args.default,
        "hint": args.hint,
        "layout": args.layout,
    }
    for key in ("max_length", "min_length", "max", "min", "nullable"):
        value = getattr(args, key)
        if value is not None:
            params[key] = value
    return SchemaDeclaration.declare(**params)


def _render_record(record: TypedRecord, output: str) -> str:
    if output == "json":
        return record.to_json()
    return "  ".join(f"{f.key}={'' if f.value is None else f.value}" for f in record)


def run(args, backend: SqliteInventory) -> str:
    """Execute the parsed command and return what should be printed."""
    output = args.output or get_output_type()

    if args.command == "user" and args.user_command == "register":
        user = backend.user_register(args.name, args.password)
        if output == "json":
            return json.dumps({"id": user.id, "username": user.username, "role_id": user.role_id})
        return "Successfully registered new user"

    user = backend.authenticate(args.auth)

    if args.command == "user":
        backend.user_edit(user, args.options)
        return json.dumps({"id": user.id, "username": user.username}) if output == "json" else "Successfully edited user"

    if args.command == "config":
        config = backend.set_allow_registration(args.state == "on", user)
        if output == "json":
            return json.dumps({"allow_registration": config.allow_registration})
        return f"Registration is {'enabled' if config.allow_registration else 'disabled'}"

    config = backend.get_config()

    command = args.inventory_command
    if command == "schema":
        if args.schema_command == "list":
            return config.inventory_schema_declaration.to_json()
        if args.schema_command == "alter":
            change = backend.schema_alter(config, _declaration_from_args(args), user)
            message = "Altered schema"
        else:
            change = backend.schema_remove(config, args.name, user)
            message = "Removed schema column"
        if output == "json":
            return change.config.inventory_schema_declaration.to_json()
        return f"{message} (version {change.version})"

    schema = config.inventory_schema_declaration
    if command == "add":
        record = backend.inventory_add(parse_assignments(args.params, schema), config, user)
        return _render_record(record, output) if output == "json" else "Entity was successfully added to inventory"

    if command == "list":
        props = InventoryListProps(limit=args.limit, sort=args.sort, raw=args.raw, params=args.params)
        entries = backend.inventory_list(props, config)
        if output == "json":
            return records_to_json(entries)
        return "\n".join(_render_record(entry, output) for entry in entries)

    if command == "edit":
        record = backend.inventory_edit(args.identifier, parse_assignments(args.set, schema), config, user)
        return _render_record(record, output) if output == "json" else "Entity was successfully edited"

    if command == "remove":
        record = backend.inventory_remove(args.identifier, config, user)
        return _render_record(record, output) if output == "json" else "Entity was successfully removed"

    # history
    record_id = parse_identifier(args.identifier) if args.identifier else None
    entries = backend.record_history(record_id)
    lines: List[dict] = [
        {
            "id": e.id,
            "dispatcher": e.dispatcher,
            "schema_version": e.schema_version,
            "record_id": e.record_id,
            "action": e.action.name,
            "before": e.before,
            "after": e.after,
            "created_at": e.created_at.isoformat(),
        }
        for e in entries
    ]
    if output == "json":
        return json.dumps(lines)
    return "\n".join(f"{l['id']}  {l['created_at']}  {l['action']}  record={l['record_id']}  "
                     f"schema={l['schema_version']}  by={l['dispatcher']}" for l in lines)


def main(argv: List[str] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        backend = SqliteInventory(args.db)
        print(run(args, backend))
        return 0
    except InvManError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
