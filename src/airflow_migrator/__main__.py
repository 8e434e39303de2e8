# Main Entry Point - Command Line
#
# Thin argparse layer over ProfileManager and Migrator.
#
#   airflow-migrator keygen
#   airflow-migrator profiles add --name dev --host db.dev --db airflow --user airflow
#   airflow-migrator export <profile-id> connections.csv
#   airflow-migrator import <profile-id> connections.csv --key <file-key> --strategy skip

import argparse
import getpass
import logging
import os
import sys
from typing import List, Optional

from . import __version__
from .config import PASSWORD_ENV, ensure_config_dir, load_config
from .core import EventSeverity, EventType, log_audit_event
from .crypto import generate_key, validate_key
from .exceptions import InvalidPasswordError, MigratorError
from .migration import (
    CollisionStrategy,
    ExportRequest,
    ImportRequest,
    Migrator,
    Profile,
)
from .vault import ProfileManager, SecretStore


def _read_master_password(config_dir) -> str:
    password = os.getenv(PASSWORD_ENV)
    if password:
        return password

    if not SecretStore.exists(config_dir):
        print("First run - create a master password to encrypt your credentials.")
        password = getpass.getpass("Enter new master password: ")
        confirm = getpass.getpass("Confirm master password: ")
        if password != confirm:
            raise MigratorError("passwords do not match")
        return password

    return getpass.getpass("Enter master password: ")


def _open_profiles(config_dir) -> ProfileManager:
    store = SecretStore(config_dir, _read_master_password(config_dir))
    return ProfileManager(store)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="airflow-migrator",
        description="Migrate Airflow connections between environments via an encrypted file",
    )
    parser.add_argument(
        "--version", action="version", version=f"Airflow Migrator v{__version__}"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("keygen", help="Generate a new Fernet key")

    validate = sub.add_parser("validate-key", help="Check that a string is a valid Fernet key")
    validate.add_argument("key")

    profiles = sub.add_parser("profiles", help="Manage saved environment profiles")
    profiles_sub = profiles.add_subparsers(dest="profiles_command", required=True)
    profiles_sub.add_parser("list", help="List saved profiles")
    add = profiles_sub.add_parser("add", help="Save a new profile (secrets are prompted)")
    add.add_argument("--name", required=True)
    add.add_argument("--host", required=True)
    add.add_argument("--port", type=int, default=5432)
    add.add_argument("--db", required=True, help="Database name")
    add.add_argument("--user", required=True)
    add.add_argument("--ssl-mode", default="disable")
    add.add_argument("--prefix", default="", help="Default connection id prefix on import")
    remove = profiles_sub.add_parser("remove", help="Delete a profile and its secrets")
    remove.add_argument("profile_id")

    test = sub.add_parser("test", help="Test a profile's database connection")
    test.add_argument("profile_id")

    export = sub.add_parser("export", help="Export connections to an encrypted CSV")
    export.add_argument("profile_id")
    export.add_argument("output")
    export.add_argument("--key", default="", help="File encryption key (generated if omitted)")
    export.add_argument("--ids", nargs="*", default=[], help="Only these connection ids")

    imp = sub.add_parser("import", help="Import connections from an encrypted CSV")
    imp.add_argument("profile_id")
    imp.add_argument("input")
    imp.add_argument("--key", required=True, help="File decryption key")
    imp.add_argument(
        "--strategy",
        choices=[s.value for s in CollisionStrategy],
        default=CollisionStrategy.STOP.value,
    )
    imp.add_argument("--prefix", default=None, help="Prefix for imported connection ids")
    imp.add_argument("--ids", nargs="*", default=[], help="Only these connection ids")

    return parser


def _cmd_profiles(args, config_dir) -> int:
    manager = _open_profiles(config_dir)

    if args.profiles_command == "list":
        for summary in manager.list():
            print(
                f"{summary['id']}  {summary['name']}  "
                f"{summary['db_user']}@{summary['db_host']}:{summary['db_port']}/{summary['db_name']}"
            )
        return 0

    if args.profiles_command == "add":
        profile = Profile(
            name=args.name,
            db_host=args.host,
            db_port=args.port,
            db_name=args.db,
            db_user=args.user,
            db_ssl_mode=args.ssl_mode,
            connection_prefix=args.prefix,
        )
        profile.db_password = getpass.getpass("Database password: ")
        profile.fernet_key = getpass.getpass("Airflow Fernet key: ").strip()
        if not validate_key(profile.fernet_key):
            print("Error: invalid Fernet key", file=sys.stderr)
            return 1
        profile.validate()
        manager.save(profile)
        print(f"Saved profile {profile.id}")
        return 0

    manager.delete(args.profile_id)
    print(f"Deleted profile {args.profile_id}")
    return 0


def _cmd_migrate(args, config) -> int:
    profile = _open_profiles(config.config_dir).get(args.profile_id)
    migrator = Migrator(connect_timeout=config.connect_timeout)

    if args.command == "test":
        result = migrator.test_connection(profile)
        if not result.success:
            print(f"Error: {result.error}", file=sys.stderr)
            return 1
        print(f"{result.message} ({result.response_time_ms} ms)")
        return 0

    if args.command == "export":
        result = migrator.export(ExportRequest(
            source_profile=profile,
            output_path=args.output,
            connection_ids=args.ids,
            file_encryption_key=args.key,
        ))
        if not result.success:
            print(f"Error: {result.error}", file=sys.stderr)
            return 1
        print(f"Exported {result.connection_count} connection(s) to {result.output_path}")
        if not args.key:
            print(f"File encryption key (share out-of-band): {result.file_encryption_key}")
        return 0

    prefix = args.prefix if args.prefix is not None else profile.connection_prefix
    result = migrator.import_connections(ImportRequest(
        target_profile=profile,
        input_path=args.input,
        file_decryption_key=args.key,
        collision_strategy=CollisionStrategy(args.strategy),
        connection_prefix=prefix,
        connection_ids=args.ids,
    ))
    print(
        f"Imported: {result.imported_count}  Skipped: {result.skipped_count}  "
        f"Overwritten: {result.overwritten_count}"
    )
    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for ``airflow-migrator`` / ``python -m airflow_migrator``."""
    args = _build_parser().parse_args(argv)

    if args.command == "keygen":
        print(generate_key())
        return 0
    if args.command == "validate-key":
        valid = validate_key(args.key)
        print("valid" if valid else "invalid")
        return 0 if valid else 1

    config = load_config()
    logging.basicConfig(level=getattr(logging, config.log_level, logging.INFO))
    ensure_config_dir(config.config_dir)

    log_audit_event(
        EventType.SYSTEM_START,
        EventSeverity.INFO,
        "Airflow Migrator starting",
        details={"version": __version__, "command": args.command},
    )

    try:
        if args.command == "profiles":
            return _cmd_profiles(args, config.config_dir)
        return _cmd_migrate(args, config)
    except InvalidPasswordError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except MigratorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
