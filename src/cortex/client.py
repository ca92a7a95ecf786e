"""Client facade: ``Cortex → StoreClient → CategoryClient → MemoryClient``.

    cortex = await Cortex.open()
    store = cortex.store("default")
    guides = store.category("docs/guides")
    await guides.create()
    memory = await guides.memory("setup").create("Install steps", tags=["infra"])
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from cortex import category as category_ops
from cortex.config import StoreDefinition
from cortex.memory import operations
from cortex.memory.models import Category, Memory, MemoryUpdate
from cortex.memory.paths import CategoryPath, MemoryPath
from cortex.registry import Registry
from cortex.storage.base import PruneResult, ReindexResult, StorageAdapter


class Cortex:
    """Entry point owning the store registry."""

    def __init__(self, registry: Registry | None = None) -> None:
        self.registry = registry or Registry()

    @classmethod
    async def open(cls, config_path: Path | None = None) -> Cortex:
        cortex = cls(Registry(config_path))
        await cortex.registry.load()
        return cortex

    def _client(self, definition: StoreDefinition) -> StoreClient:
        return StoreClient(definition, self.registry.storage_factory(definition.path))

    def store(self, name: str) -> StoreClient:
        return self._client(self.registry.get_store(name))

    async def resolve(
        self, name: str | None = None, cwd: Path | str | None = None
    ) -> StoreClient:
        return self._client(await self.registry.resolve_store(name, cwd))

    def list_stores(self) -> list[StoreDefinition]:
        return self.registry.list_stores()

    async def add_store(
        self, name: str, path: Path | str, description: str | None = None
    ) -> StoreClient:
        return self._client(await self.registry.add_store(name, path, description))

    async def remove_store(self, name: str) -> StoreDefinition:
        return await self.registry.remove_store(name)


class StoreClient:
    def __init__(self, definition: StoreDefinition, storage: StorageAdapter) -> None:
        self.definition = definition
        self.storage = storage

    def __repr__(self) -> str:
        return f"StoreClient({self.name!r}, {str(self.path)!r})"

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def path(self) -> Path:
        return self.definition.path

    @property
    def rules(self):
        return self.definition.rules

    async def initialize(
        self, root_categories: Iterable[str] = category_ops.ROOT_CATEGORIES
    ) -> dict:
        """Create the root directory, root index and store.yaml. Idempotent."""
        created = await self.storage.initialize()
        await self.storage.stores.save(self.definition)
        for name in root_categories:
            await self.storage.categories.ensure(CategoryPath.parse(name))
        return {"store": self.name, "path": str(self.path), "created": created}

    def root(self) -> CategoryClient:
        return CategoryClient(self, CategoryPath.root())

    def category(self, path: CategoryPath | str) -> CategoryClient:
        return CategoryClient(self, CategoryPath.parse(path))

    def memory(self, path: MemoryPath | str) -> MemoryClient:
        return MemoryClient(self, MemoryPath.parse(path))

    async def reindex(self, scope: CategoryPath | str = "") -> ReindexResult:
        return await self.storage.indexes.reindex(CategoryPath.parse(scope))

    async def prune(
        self,
        scope: CategoryPath | str = "",
        *,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> PruneResult:
        return await operations.prune_memories(self.storage, scope, dry_run=dry_run, now=now)

    async def recent(
        self,
        scope: CategoryPath | str = "",
        *,
        limit: int = operations.DEFAULT_RECENT_LIMIT,
        include_expired: bool = False,
        now: datetime | None = None,
    ) -> list[Memory]:
        return await operations.recent_memories(
            self.storage, scope, limit=limit, include_expired=include_expired, now=now
        )


class CategoryClient:
    def __init__(self, store: StoreClient, path: CategoryPath) -> None:
        self.store = store
        self.path = path

    def __repr__(self) -> str:
        return f"CategoryClient({str(self.path)!r})"

    @property
    def parent(self) -> CategoryClient | None:
        parent = self.path.parent
        return CategoryClient(self.store, parent) if parent is not None else None

    def subcategory(self, slug: str) -> CategoryClient:
        return CategoryClient(self.store, self.path.child(slug))

    def memory(self, slug: str) -> MemoryClient:
        return MemoryClient(self.store, MemoryPath(self.path, slug))

    async def exists(self) -> bool:
        return await self.store.storage.categories.exists(self.path)

    async def create(self) -> dict:
        return await category_ops.create_category(
            self.store.storage, self.path, rules=self.store.rules
        )

    async def delete(self) -> dict:
        return await category_ops.delete_category(
            self.store.storage, self.path, rules=self.store.rules
        )

    async def set_description(self, description: str | None) -> dict:
        return await category_ops.set_category_description(
            self.store.storage, self.path, description, rules=self.store.rules
        )

    async def get(self) -> Category:
        return await category_ops.get_category(self.store.storage, self.path)

    async def list(
        self, *, include_expired: bool = False, now: datetime | None = None
    ) -> operations.CategoryListing:
        return await operations.list_category(
            self.store.storage, self.path, include_expired=include_expired, now=now
        )

    async def reindex(self) -> ReindexResult:
        return await self.store.reindex(self.path)


class MemoryClient:
    def __init__(self, store: StoreClient, path: MemoryPath) -> None:
        self.store = store
        self.path = path

    def __repr__(self) -> str:
        return f"MemoryClient({str(self.path)!r})"

    @property
    def category(self) -> CategoryClient:
        return CategoryClient(self.store, self.path.category)

    async def exists(self) -> bool:
        return await self.store.storage.memories.load(self.path) is not None

    async def create(
        self,
        content: str,
        *,
        tags: Iterable[str] = (),
        source: str = "user",
        citations: Iterable[str] = (),
        expires_at: datetime | None = None,
        now: datetime | None = None,
    ) -> Memory:
        return await operations.create_memory(
            self.store.storage,
            self.path,
            content,
            tags=tags,
            source=source,
            citations=citations,
            expires_at=expires_at,
            rules=self.store.rules,
            now=now,
        )

    async def get(self, *, include_expired: bool = False, now: datetime | None = None) -> Memory:
        return await operations.get_memory(
            self.store.storage, self.path, include_expired=include_expired, now=now
        )

    async def update(
        self,
        update: MemoryUpdate | None = None,
        *,
        now: datetime | None = None,
        **fields: Any,
    ) -> Memory:
        """Update with a :class:`MemoryUpdate`, or with keyword fields.

        Keyword fields follow payload rules: omitted keeps, ``None`` clears.
        """
        if update is None:
            update = MemoryUpdate.from_payload(fields)
        return await operations.update_memory(
            self.store.storage, self.path, update, rules=self.store.rules, now=now
        )

    async def remove(self) -> None:
        await operations.remove_memory(self.store.storage, self.path, rules=self.store.rules)

    async def move(self, destination: MemoryPath | str) -> MemoryClient:
        moved = await operations.move_memory(
            self.store.storage, self.path, destination, rules=self.store.rules
        )
        return MemoryClient(self.store, moved)
