from __future__ import annotations
import argparse
import asyncio
import logging
import os
import sys
from typing import Any

import asyncpg
from dotenv import load_dotenv

from pg_typegen.config import load_typegen_config
from pg_typegen.errors import FatalError
from pg_typegen.orchestrator import Typegen

EXIT_OK = 0
EXIT_ERRORS = 1
EXIT_FATAL = 2

CONNECTION_ENV_VARS = ("PG_TYPEGEN_CONNECTION_STRING", "DATABASE_URL")


def run() -> None:
    """Main CLI entry point."""
    # Load environment variables first
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="pg-typegen",
        description="Generate Python types for SQL queries from a live Postgres database"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="cmd", required=True)

    gen = sub.add_parser("generate", help="Generate types for queries in a source tree")
    gen.add_argument("--config", help="Path to YAML config file (default: ./pg-typegen.yaml if present)")
    gen.add_argument("--root-dir", help="Root directory to scan (default: src)")
    gen.add_argument("--connection-string", help="Database URL (default: $PG_TYPEGEN_CONNECTION_STRING or $DATABASE_URL)")
    gen.add_argument("--include", nargs="+", help="Glob patterns of files to scan")
    gen.add_argument("--exclude", nargs="+", help="Glob patterns of files to skip")
    gen.add_argument("--since", help="Only scan files changed since this git revision")
    gen.add_argument("--lazy", action="store_true", default=None,
                     help="Degrade unresolved types to the default type instead of erroring")
    gen.add_argument("--check-clean", nargs="*", choices=["before-migrate", "after", "both"],
                     help="Fail if the git working tree is dirty at these points (no values disables)")

    ping = sub.add_parser("ping", help="Test the database connection")
    ping.add_argument("--config", help="Path to YAML config file")
    ping.add_argument("--connection-string", help="Database URL")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        config = load_typegen_config(args.config, overrides=_overrides(args))
        if args.cmd == "generate":
            sys.exit(asyncio.run(generate_cmd(config)))
        elif args.cmd == "ping":
            asyncio.run(ping_db(config.connection_string, config.connect_timeout))
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        sys.exit(130)
    except FatalError as e:
        print(f"Fatal: {e}", file=sys.stderr)
        sys.exit(EXIT_FATAL)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_FATAL)


def _overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Options given on the command line or in the environment."""
    overrides: dict[str, Any] = {}

    connection_string = args.connection_string
    if connection_string is None:
        connection_string = next((os.environ[v] for v in CONNECTION_ENV_VARS if os.environ.get(v)), None)
    if connection_string:
        overrides["connection_string"] = connection_string

    if args.cmd == "generate":
        if args.root_dir:
            overrides["root_dir"] = args.root_dir
        if args.include:
            overrides["include"] = args.include
        if args.exclude:
            overrides["exclude"] = args.exclude
        if args.since:
            overrides["since"] = args.since
        if args.lazy is not None:
            overrides["lazy"] = args.lazy
        if args.check_clean is not None:
            overrides["check_clean"] = args.check_clean[0] if args.check_clean == ["both"] else args.check_clean
    return overrides


async def generate_cmd(config) -> int:
    """Run one generation and print the summary.

    Returns:
        Process exit code
    """
    report = await Typegen(config).generate()

    for error in report.errors:
        print(f"✗ {error}", file=sys.stderr)

    print(report.summary())
    return EXIT_OK if report.ok else EXIT_ERRORS


async def ping_db(database_url: str, timeout: float) -> None:
    """Test database connection.

    Raises:
        FatalError: If the database can't be reached
    """
    try:
        conn = await asyncpg.connect(dsn=database_url, timeout=timeout)
    except (OSError, asyncio.TimeoutError, asyncpg.PostgresError) as e:
        raise FatalError(f"Failed to connect to database: {e}") from e

    try:
        version = await conn.fetchval("SELECT version()")
        print(f"✓ Connected: {version}")
    finally:
        await conn.close()


if __name__ == "__main__":
    run()
