"""Memory operations written against the storage ports.

Each operation validates first (paths, policy, existence), then performs a
single port call. Policy checks come from :class:`cortex.policy.CategoryRules`;
pass ``rules=None`` for a store without declarations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Iterable

from cortex.errors import AlreadyExistsError, NotFoundError, ValidationError
from cortex.memory.models import (
    Keep,
    Memory,
    MemoryEntry,
    MemoryUpdate,
    SubcategoryEntry,
    ensure_utc,
    utcnow,
)
from cortex.memory.paths import CategoryPath, MemoryPath
from cortex.policy import CategoryRules
from cortex.storage.base import PruneResult, StorageAdapter

logger = logging.getLogger(__name__)

DEFAULT_RECENT_LIMIT = 5

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _missing(path: MemoryPath) -> NotFoundError:
    return NotFoundError(
        f"Memory '{path}' does not exist. List the category to see what is stored.",
        code="MEMORY_NOT_FOUND",
        path=str(path),
    )


async def _missing_categories(storage: StorageAdapter, category: CategoryPath) -> list:
    return [
        prefix
        for prefix in [*category.ancestors(), category]
        if not prefix.is_root and not await storage.categories.exists(prefix)
    ]


async def _can_create_categories(
    storage: StorageAdapter, category: CategoryPath, rules: CategoryRules
) -> bool:
    return all(rules.can_create_category(p) for p in await _missing_categories(storage, category))


async def create_memory(
    storage: StorageAdapter,
    path: MemoryPath | str,
    content: str,
    *,
    tags: Iterable[str] = (),
    source: str = "user",
    citations: Iterable[str] = (),
    expires_at: datetime | None = None,
    rules: CategoryRules | None = None,
    now: datetime | None = None,
) -> Memory:
    rules = rules or CategoryRules()
    now = ensure_utc(now) if now else utcnow()
    path = MemoryPath.parse(path)
    category = path.category

    rules.validate_memory_write("create", category, content)
    memory = Memory.create(
        path,
        content,
        created_at=now,
        updated_at=now,
        tags=tags,
        source=source,
        citations=citations,
        expires_at=rules.apply_ttl(category, expires_at, now),
    )
    create_categories = await _can_create_categories(storage, category, rules)
    await storage.memories.add(memory, create_categories=create_categories)
    return memory


async def get_memory(
    storage: StorageAdapter,
    path: MemoryPath | str,
    *,
    include_expired: bool = False,
    now: datetime | None = None,
) -> Memory:
    now = ensure_utc(now) if now else utcnow()
    path = MemoryPath.parse(path)
    memory = await storage.memories.load(path)
    if memory is None:
        raise _missing(path)
    if not include_expired and memory.is_expired(now):
        raise NotFoundError(
            f"Memory '{path}' expired at {memory.metadata.expires_at.isoformat()}. "
            "Pass include_expired to read it anyway, or prune the store.",
            code="MEMORY_EXPIRED",
            path=str(path),
        )
    return memory


async def update_memory(
    storage: StorageAdapter,
    path: MemoryPath | str,
    update: MemoryUpdate,
    *,
    rules: CategoryRules | None = None,
    now: datetime | None = None,
) -> Memory:
    """Apply a three-state update and refresh ``updated_at``."""
    rules = rules or CategoryRules()
    now = ensure_utc(now) if now else utcnow()
    path = MemoryPath.parse(path)
    if not update.has_changes:
        raise ValidationError(
            "No updates provided. Set at least one of content, tags, citations or expires_at.",
            code="INVALID_INPUT",
            path=str(path),
        )
    existing = await storage.memories.load(path)
    if existing is None:
        raise _missing(path)

    rules.validate_operation("update", path.category)
    updated = update.apply(existing, now)
    rules.validate_content(path.category, updated.content)
    if not isinstance(update.expires_at, Keep):
        clamped = rules.apply_ttl(path.category, updated.metadata.expires_at, now)
        updated = replace(updated, metadata=replace(updated.metadata, expires_at=clamped))
    await storage.memories.save(updated, create_categories=False)
    return updated


async def remove_memory(
    storage: StorageAdapter,
    path: MemoryPath | str,
    *,
    rules: CategoryRules | None = None,
) -> None:
    rules = rules or CategoryRules()
    path = MemoryPath.parse(path)
    rules.validate_operation("delete", path.category)
    if await storage.memories.load(path) is None:
        raise _missing(path)
    await storage.memories.remove(path)


async def move_memory(
    storage: StorageAdapter,
    source: MemoryPath | str,
    destination: MemoryPath | str,
    *,
    rules: CategoryRules | None = None,
) -> MemoryPath:
    """Relocate a memory, keeping its content and timestamps."""
    rules = rules or CategoryRules()
    source = MemoryPath.parse(source)
    destination = MemoryPath.parse(destination)
    if source == destination:
        return destination

    memory = await storage.memories.load(source)
    if memory is None:
        raise _missing(source)
    if await storage.memories.load(destination) is not None:
        raise AlreadyExistsError(
            f"Cannot move '{source}' to '{destination}': a memory already exists there.",
            code="DESTINATION_EXISTS",
            path=str(destination),
        )
    rules.validate_operation("delete", source.category)
    rules.validate_memory_write("create", destination.category, memory.content)
    create_categories = await _can_create_categories(storage, destination.category, rules)
    await storage.memories.move(source, destination, create_categories=create_categories)
    return destination


@dataclass
class CategoryListing:
    category: CategoryPath
    memories: list[MemoryEntry]
    subcategories: list[SubcategoryEntry]


async def list_category(
    storage: StorageAdapter,
    category: CategoryPath | str = "",
    *,
    include_expired: bool = False,
    now: datetime | None = None,
) -> CategoryListing:
    now = ensure_utc(now) if now else utcnow()
    category = CategoryPath.parse(category)
    if not await storage.categories.exists(category):
        raise NotFoundError(
            f"Category '{category}' does not exist.",
            code="CATEGORY_NOT_FOUND",
            path=str(category),
        )
    index = await storage.indexes.load(category)
    memories = list(index.memories) if index else []
    if not include_expired:
        kept = []
        for entry in memories:
            memory = await storage.memories.load(entry.path)
            if memory is not None and not memory.is_expired(now):
                kept.append(entry)
        memories = kept
    return CategoryListing(
        category=category,
        memories=memories,
        subcategories=list(index.subcategories) if index else [],
    )


def sort_by_recency(entries: Iterable[MemoryEntry]) -> list[MemoryEntry]:
    """Newest first; entries without ``updated_at`` go last."""
    return sorted(
        entries,
        key=lambda e: (e.updated_at is not None, e.updated_at or _OLDEST),
        reverse=True,
    )


async def _collect_entries(storage: StorageAdapter, scope: CategoryPath) -> list[MemoryEntry]:
    entries: list[MemoryEntry] = []
    pending = [scope]
    while pending:
        category = pending.pop()
        index = await storage.indexes.load(category)
        if index is None:
            continue
        entries.extend(index.memories)
        pending.extend(sub.path for sub in index.subcategories)
    return entries


async def recent_memories(
    storage: StorageAdapter,
    scope: CategoryPath | str = "",
    *,
    limit: int = DEFAULT_RECENT_LIMIT,
    include_expired: bool = False,
    now: datetime | None = None,
) -> list[Memory]:
    """The most recently updated memories under ``scope``, with content."""
    now = ensure_utc(now) if now else utcnow()
    scope = CategoryPath.parse(scope)
    if limit <= 0:
        raise ValidationError(
            f"limit must be a positive integer, got {limit}.", code="INVALID_INPUT"
        )
    if not await storage.categories.exists(scope):
        raise NotFoundError(
            f"Category '{scope}' does not exist.", code="CATEGORY_NOT_FOUND", path=str(scope)
        )
    results: list[Memory] = []
    for entry in sort_by_recency(await _collect_entries(storage, scope)):
        memory = await storage.memories.load(entry.path)
        if memory is None:
            logger.warning("Index lists %s but the document is missing", entry.path)
            continue
        if not include_expired and memory.is_expired(now):
            continue
        results.append(memory)
        if len(results) >= limit:
            break
    return results


async def prune_memories(
    storage: StorageAdapter,
    scope: CategoryPath | str = "",
    *,
    dry_run: bool = False,
    now: datetime | None = None,
) -> PruneResult:
    scope = CategoryPath.parse(scope)
    return await storage.prune(scope, now=ensure_utc(now) if now else utcnow(), dry_run=dry_run)
