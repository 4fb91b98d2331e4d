"""
Spellbook CLI — operator utilities.

Usage:
    python -m spellbook.cli seed-guides
    python -m spellbook.cli export [--lore NAME] [--output FILE]
    python -m spellbook.cli import FILE [--lore NAME]
    python -m spellbook.cli lores
    python -m spellbook.cli health [--server-url URL]

Commands:
    seed-guides     Write the built-in system guides into Canon.
    export          Dump Canon (or one Lore) in the backup exchange format.
    import          Restore a backup file into Canon (or one Lore).
    lores           List Lores with their chunk counts.
    health          Query a running server's /health endpoint.

Every command except ``health`` talks to Qdrant and Ollama directly using
the SPELLBOOK_* environment configuration (or ``--config FILE``).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Optional

import requests

from spellbook.core.config import SpellbookConfig

_DEFAULT_SERVER_URL = "http://127.0.0.1:17950"


def _resolve_server_url(server_url: Optional[str]) -> str:
    """
    Return canonical server URL.

    Resolution order:
      1. Explicit --server-url argument
      2. SPELLBOOK_SERVER_URL environment variable
      3. http://127.0.0.1:17950
    """
    if server_url:
        return server_url.strip().rstrip("/")
    env_url = os.environ.get("SPELLBOOK_SERVER_URL")
    if env_url and env_url.strip():
        return env_url.strip().rstrip("/")
    return _DEFAULT_SERVER_URL


def _load_config(path: Optional[Path]) -> SpellbookConfig:
    if path is not None:
        return SpellbookConfig.from_yaml(str(path))
    return SpellbookConfig.from_env()


async def _with_spellbook(config: SpellbookConfig, action):
    from spellbook.core.engine import Spellbook

    book = Spellbook(config)
    await book.initialize()
    try:
        return await action(book)
    finally:
        await book.shutdown()


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


# --- Commands ---

def cmd_seed_guides(args: argparse.Namespace) -> int:
    count = asyncio.run(_with_spellbook(_load_config(args.config), lambda book: book.seed_guides()))
    print(f"Seeded {count} system guides")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    result = asyncio.run(
        _with_spellbook(_load_config(args.config), lambda book: book.export(lore=args.lore))
    )
    if result["status"] != "success":
        print(f"Error: {result['message']}", file=sys.stderr)
        return 1

    result.pop("status")
    if args.output is None:
        _print_json(result)
    else:
        args.output.write_text(json.dumps(result, indent=2, ensure_ascii=False), encoding="utf-8")
        print(f"Exported {result['total_chunks']} chunks to {args.output}")
    return 0


async def _import_file(book, data, lore: Optional[str]):
    session = await book.start_rest()
    if session["status"] != "success":
        return session
    try:
        return await book.import_backup(data, session["session_id"], lore=lore)
    finally:
        await book.end_rest(session["session_id"])


def cmd_import(args: argparse.Namespace) -> int:
    try:
        data = json.loads(args.file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        print(f"Error: could not read backup file {args.file}: {exc}", file=sys.stderr)
        return 1

    result = asyncio.run(
        _with_spellbook(_load_config(args.config), lambda book: _import_file(book, data, args.lore))
    )
    _print_json(result)
    return 0 if result["status"] != "error" else 1


def cmd_lores(args: argparse.Namespace) -> int:
    result = asyncio.run(_with_spellbook(_load_config(args.config), lambda book: book.list_lores()))
    if result["status"] != "success":
        print(f"Error: {result['message']}", file=sys.stderr)
        return 1

    if not result["lores"]:
        print("No Lores.")
        return 0
    for lore in result["lores"]:
        description = f" - {lore['description']}" if lore["description"] else ""
        print(f"{lore['name']} ({lore['total_chunks']} chunks){description}")
    return 0


def _check_server_health(url: str, timeout_seconds: float) -> tuple[bool, str]:
    try:
        response = requests.get(f"{url}/health", timeout=timeout_seconds)
        if response.status_code == 200:
            return True, response.json().get("status", "ok")
        return False, f"http_{response.status_code}"
    except requests.RequestException as exc:
        return False, str(exc)


def cmd_health(args: argparse.Namespace) -> int:
    url = _resolve_server_url(args.server_url)
    ok, detail = _check_server_health(url, args.timeout_seconds)
    print(f"{url}: {'PASS' if ok else 'FAIL'} ({detail})")
    return 0 if ok else 1


# --- Argument parser ---

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spellbook.cli",
        description="Spellbook CLI — operator utilities for the Spellbook memory store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  python -m spellbook.cli seed-guides\n"
               "  python -m spellbook.cli export --lore my-project --output backup.json\n"
               "  python -m spellbook.cli import backup.json\n"
               "  python -m spellbook.cli health --server-url http://127.0.0.1:17950\n",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="FILE",
        help="YAML config file (default: SPELLBOOK_* environment variables).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("seed-guides", help="Write the built-in system guides into Canon.")

    export = subparsers.add_parser("export", help="Export Canon or a Lore as JSON.")
    export.add_argument("--lore", default=None, help="Lore to export (default: Canon).")
    export.add_argument(
        "--output",
        type=Path,
        default=None,
        metavar="FILE",
        help="Write to FILE instead of stdout.",
    )

    restore = subparsers.add_parser("import", help="Import a backup file.")
    restore.add_argument("file", type=Path, help="Backup JSON file.")
    restore.add_argument("--lore", default=None, help="Lore to import into (default: Canon).")

    subparsers.add_parser("lores", help="List Lores.")

    health = subparsers.add_parser("health", help="Check a running server.")
    health.add_argument(
        "--server-url",
        type=str,
        default=None,
        metavar="URL",
        help="Server URL (default: SPELLBOOK_SERVER_URL or local default).",
    )
    health.add_argument(
        "--timeout-seconds",
        type=float,
        default=3.0,
        help="HTTP timeout for the health check.",
    )
    return parser


_COMMANDS = {
    "seed-guides": cmd_seed_guides,
    "export": cmd_export,
    "import": cmd_import,
    "lores": cmd_lores,
    "health": cmd_health,
}


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    command = _COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return 1
    return command(args)


if __name__ == "__main__":
    raise SystemExit(main())
