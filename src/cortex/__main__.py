"""Entry point: python -m cortex <command>

- init                       Create a store in ./.cortex/memory (or --global)
- store list|add|remove|init|reindex|prune
- category create|delete|describe
- memory add|show|update|remove|move|list|recent
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from cortex.client import Cortex, StoreClient
from cortex.config import StoreDefinition, default_config_dir
from cortex.errors import CortexError
from cortex.memory.document import parse_timestamp
from cortex.memory.models import CLEAR, KEEP, MemoryUpdate, SetTo
from cortex.memory.paths import slugify
from cortex.registry import Registry, local_store_root
from cortex.render import (
    category_to_dict,
    dump,
    listing_to_dict,
    memory_to_dict,
    prune_to_dict,
    reindex_to_dict,
    store_to_dict,
)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _split(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cortex", description="Hierarchical memory stores.")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--store", "-s", help="Store name (default: local, then default_store)")
    parser.add_argument("--format", choices=["yaml", "json"], help="Output format")
    commands = parser.add_subparsers(dest="command", required=True)

    init = commands.add_parser("init", help="Create a store for this directory")
    init.add_argument("--global", dest="global_", action="store_true",
                      help="Initialize the global default store instead")
    init.add_argument("--name", help="Store name (default: directory name)")

    store = commands.add_parser("store", help="Manage stores").add_subparsers(
        dest="action", required=True
    )
    store.add_parser("list")
    add = store.add_parser("add")
    add.add_argument("name")
    add.add_argument("path")
    add.add_argument("--description")
    remove = store.add_parser("remove")
    remove.add_argument("name")
    store.add_parser("init")
    reindex = store.add_parser("reindex")
    reindex.add_argument("scope", nargs="?", default="")
    prune = store.add_parser("prune")
    prune.add_argument("scope", nargs="?", default="")
    prune.add_argument("--dry-run", action="store_true")

    category = commands.add_parser("category", help="Manage categories").add_subparsers(
        dest="action", required=True
    )
    for action in ("create", "delete", "show"):
        category.add_parser(action).add_argument("path")
    describe = category.add_parser("describe")
    describe.add_argument("path")
    describe.add_argument("description", nargs="?", default=None,
                          help="New description; omit to clear")

    memory = commands.add_parser("memory", help="Manage memories").add_subparsers(
        dest="action", required=True
    )
    add = memory.add_parser("add")
    add.add_argument("path")
    add.add_argument("--content", help="Memory text (default: read stdin)")
    add.add_argument("--tags", help="Comma-separated tags")
    add.add_argument("--citation", action="append", default=[], dest="citations")
    add.add_argument("--expires-at", help="ISO-8601 expiry")
    show = memory.add_parser("show")
    show.add_argument("path")
    show.add_argument("--include-expired", action="store_true")
    update = memory.add_parser("update")
    update.add_argument("path")
    update.add_argument("--content")
    update.add_argument("--tags", help="Comma-separated tags; replaces existing tags")
    update.add_argument("--clear-tags", action="store_true")
    update.add_argument("--citation", action="append", dest="citations")
    update.add_argument("--clear-citations", action="store_true")
    update.add_argument("--expires-at")
    update.add_argument("--clear-expiry", action="store_true")
    memory.add_parser("remove").add_argument("path")
    move = memory.add_parser("move")
    move.add_argument("source")
    move.add_argument("destination")
    listing = memory.add_parser("list")
    listing.add_argument("category", nargs="?", default="")
    listing.add_argument("--include-expired", action="store_true")
    recent = memory.add_parser("recent")
    recent.add_argument("scope", nargs="?", default="")
    recent.add_argument("--limit", type=int, default=5)
    return parser


def _field(value, clear: bool):
    if clear:
        return CLEAR
    if value is None:
        return KEEP
    return SetTo(value)


def _memory_update(args: argparse.Namespace) -> MemoryUpdate:
    expires_at = parse_timestamp(args.expires_at, "expires_at") if args.expires_at else None
    return MemoryUpdate(
        content=SetTo(args.content) if args.content is not None else KEEP,
        tags=_field(_split(args.tags) if args.tags is not None else None, args.clear_tags),
        citations=_field(args.citations, args.clear_citations),
        expires_at=_field(expires_at, args.clear_expiry),
    )


async def _init(cortex: Cortex, args: argparse.Namespace) -> dict:
    if args.global_:
        settings = cortex.registry.config.settings
        name = args.name or settings.default_store
        if cortex.registry.has_store(name):
            client = cortex.store(name)
        else:
            client = await cortex.add_store(name, default_config_dir() / "memory")
        return await client.initialize()
    cwd = Path.cwd()
    root = local_store_root(cwd)
    definition = StoreDefinition(name=args.name or slugify(cwd.name) or "local", path=root)
    client = StoreClient(definition, cortex.registry.storage_factory(root))
    return await client.initialize()


async def _store_command(cortex: Cortex, args: argparse.Namespace):
    if args.action == "list":
        return {"stores": [store_to_dict(s) for s in cortex.list_stores()]}
    if args.action == "add":
        client = await cortex.add_store(args.name, Path(args.path), args.description)
        return {"added": store_to_dict(client.definition)}
    if args.action == "remove":
        return {"removed": store_to_dict(await cortex.remove_store(args.name))}

    store = await cortex.resolve(args.store)
    if args.action == "init":
        return await store.initialize()
    if args.action == "reindex":
        return reindex_to_dict(await store.reindex(args.scope))
    return prune_to_dict(await store.prune(args.scope, dry_run=args.dry_run))


async def _category_command(store: StoreClient, args: argparse.Namespace):
    category = store.category(args.path)
    if args.action == "create":
        return await category.create()
    if args.action == "delete":
        return await category.delete()
    if args.action == "describe":
        return await category.set_description(args.description)
    return category_to_dict(await category.get())


async def _memory_command(store: StoreClient, args: argparse.Namespace):
    if args.action == "add":
        content = args.content if args.content is not None else sys.stdin.read()
        expires_at = parse_timestamp(args.expires_at, "expires_at") if args.expires_at else None
        memory = await store.memory(args.path).create(
            content.strip(),
            tags=_split(args.tags),
            citations=args.citations,
            expires_at=expires_at,
        )
        return {"created": memory_to_dict(memory, include_content=False)}
    if args.action == "show":
        memory = await store.memory(args.path).get(include_expired=args.include_expired)
        return memory_to_dict(memory)
    if args.action == "update":
        memory = await store.memory(args.path).update(_memory_update(args))
        return {"updated": memory_to_dict(memory, include_content=False)}
    if args.action == "remove":
        await store.memory(args.path).remove()
        return {"removed": args.path}
    if args.action == "move":
        moved = await store.memory(args.source).move(args.destination)
        return {"moved": {"from": args.source, "to": str(moved.path)}}
    if args.action == "list":
        listing = await store.category(args.category).list(include_expired=args.include_expired)
        return listing_to_dict(listing)
    memories = await store.recent(args.scope, limit=args.limit)
    return {"memories": [memory_to_dict(m) for m in memories]}


async def _run(cortex: Cortex, args: argparse.Namespace):
    await cortex.registry.load()
    if args.command == "init":
        return await _init(cortex, args)
    if args.command == "store":
        return await _store_command(cortex, args)
    store = await cortex.resolve(args.store)
    if args.command == "category":
        return await _category_command(store, args)
    return await _memory_command(store, args)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    cortex = Cortex(Registry(args.config))
    try:
        config = asyncio.run(cortex.registry.load())
    except CortexError as e:
        print(f"Error [{e.code}]: {e}", file=sys.stderr)
        return 1
    _setup_logging(config.settings.log_level)
    output_format = args.format or config.settings.output_format

    try:
        result = asyncio.run(_run(cortex, args))
    except CortexError as e:
        print(f"Error [{e.code}]: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    print(dump(result, output_format))
    return 0


if __name__ == "__main__":
    sys.exit(main())
