#!/usr/bin/env python3
"""
CachedStore Command Line Entry Point

Inspect and edit a store file from the shell.

Usage:
    cachedstore db/store keys                   # List keys
    cachedstore db/store get greeting           # Print a value as JSON
    cachedstore db/store get hits --fallback 0  # Store 0 if missing
    cachedstore db/store set greeting '"hi"'    # Values are parsed as JSON
    cachedstore db/store delete greeting
    cachedstore db/store copy db/other --wipe   # Copy every key from db/other
    cachedstore db/store copy db/other --key k  # Copy one key

Environment Variables:
    CACHEDSTORE_ENV         - "development" disables writes
    CACHEDSTORE_DEBUG       - Enable debug logging (true/false)
    CACHEDSTORE_LOG_LEVEL   - Log level when not in debug mode
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, List, Optional

from .config.settings import settings
from .store.cached_store import CachedStore
from .store.outcome import NOT_CONNECTED, NOT_FOUND

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NOT_FOUND = 3
EXIT_NOT_CONNECTED = 4


def parse_value(raw: str) -> Any:
    """Parse ``raw`` as JSON, falling back to the plain string."""
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="cachedstore",
        description="CachedStore: inspect and edit a write-through key-value store",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("address", help="Store address, e.g. db/store")
    parser.add_argument(
        "--debug",
        action="store_true",
        default=settings.DEBUG,
        help="Enable debug logging",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    get = commands.add_parser("get", help="Print the value of a key")
    get.add_argument("key")
    get.add_argument("--fallback", type=parse_value, help="Value to store if the key is missing")

    set_ = commands.add_parser("set", help="Store a value")
    set_.add_argument("key")
    set_.add_argument("value", type=parse_value)

    delete = commands.add_parser("delete", help="Remove a key")
    delete.add_argument("key")

    has = commands.add_parser("has", help="Check whether a key exists")
    has.add_argument("key")

    commands.add_parser("keys", help="List every key")
    commands.add_parser("clear", help="Remove every key")

    copy = commands.add_parser("copy", help="Copy keys from another store")
    copy.add_argument("source", help="Address of the store to copy from")
    copy.add_argument("--key", help="Copy only this key")
    copy.add_argument("--wipe", action="store_true", help="Clear this store first")

    return parser.parse_args(argv)


def setup_logging(debug: bool = False) -> None:
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stderr),
        ]
    )


def report(result: Any) -> int:
    """Turn an operation result into an exit code, printing failures."""
    if result is NOT_CONNECTED:
        print("error: store is not connected", file=sys.stderr)
        return EXIT_NOT_CONNECTED
    if result is NOT_FOUND:
        print("error: key not found", file=sys.stderr)
        return EXIT_NOT_FOUND
    if result is False:
        print("error: write failed", file=sys.stderr)
        return EXIT_FAILED
    return EXIT_OK


async def run(args: argparse.Namespace) -> int:
    """Execute one subcommand against the store at ``args.address``."""
    async with CachedStore(args.address) as store:
        if not store.connected:
            return report(NOT_CONNECTED)

        if args.command == "get":
            value = store.get(args.key, args.fallback)
            code = report(value)
            if code == EXIT_OK:
                print(json.dumps(value))
        elif args.command == "set":
            code = report(store.set(args.key, args.value))
        elif args.command == "delete":
            code = report(store.delete(args.key))
        elif args.command == "has":
            found = store.has(args.key)
            print("1" if found is True else "0")
            code = EXIT_OK if found is True else EXIT_NOT_FOUND
        elif args.command == "keys":
            for key in sorted(store.snapshot()):
                print(key)
            code = EXIT_OK
        elif args.command == "clear":
            code = report(store.clear())
        else:
            async with CachedStore(args.source) as source:
                if args.key is not None:
                    code = report(store.copy_key(source, args.key))
                else:
                    code = report(store.copy_from(source, wipe_first=args.wipe))

        if code == EXIT_OK and not await store.flush():
            print("error: write failed", file=sys.stderr)
            code = EXIT_FAILED

    return code


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the command line tool."""
    args = parse_args(argv)
    setup_logging(debug=args.debug)

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
