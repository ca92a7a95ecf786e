"""Storage ports and shared result types.

Business logic depends only on these protocols, never on a concrete
backend. Every method raises :class:`cortex.errors.CortexError` subclasses;
raw ``OSError`` never crosses this boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from cortex.config import StoreDefinition
    from cortex.memory.models import CategoryIndex, Memory
    from cortex.memory.paths import CategoryPath, MemoryPath


@dataclass
class ReindexResult:
    """Summary of a rebuild over one subtree."""

    scope: str
    categories: int = 0
    memories: int = 0
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PrunedMemory:
    path: MemoryPath
    expires_at: datetime


@dataclass
class PruneResult:
    pruned: list[PrunedMemory] = field(default_factory=list)
    dry_run: bool = False
    reindexed: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@runtime_checkable
class MemoryStorage(Protocol):
    async def load(self, path: MemoryPath) -> Memory | None:
        """Return the memory at ``path``, or None if no document exists."""
        ...

    async def add(self, memory: Memory, *, create_categories: bool = True) -> None:
        """Write a new memory; fails with MEMORY_ALREADY_EXISTS if occupied."""
        ...

    async def save(self, memory: Memory, *, create_categories: bool = True) -> None:
        """Create or overwrite a memory."""
        ...

    async def remove(self, path: MemoryPath) -> None: ...

    async def move(
        self, source: MemoryPath, destination: MemoryPath, *, create_categories: bool = True
    ) -> None: ...


@runtime_checkable
class IndexStorage(Protocol):
    async def load(self, category: CategoryPath) -> CategoryIndex | None: ...

    async def save(self, category: CategoryPath, index: CategoryIndex) -> None: ...

    async def reindex(self, scope: CategoryPath) -> ReindexResult:
        """Rebuild every index under ``scope`` from the documents on disk."""
        ...


@runtime_checkable
class CategoryStorage(Protocol):
    async def exists(self, path: CategoryPath) -> bool: ...

    async def ensure(self, path: CategoryPath) -> bool:
        """Create the category and any missing ancestors. True if anything was created."""
        ...

    async def delete(self, path: CategoryPath) -> None:
        """Delete the category and everything below it."""
        ...

    async def set_description(self, path: CategoryPath, description: str | None) -> None: ...


@runtime_checkable
class StoreStorage(Protocol):
    async def load(self) -> StoreDefinition | None: ...

    async def save(self, definition: StoreDefinition) -> None: ...

    async def remove(self) -> None: ...


@runtime_checkable
class StorageAdapter(Protocol):
    """The four ports scoped to one store, plus bulk maintenance."""

    memories: MemoryStorage
    indexes: IndexStorage
    categories: CategoryStorage
    stores: StoreStorage

    async def initialize(self) -> bool: ...

    async def prune(
        self, scope: CategoryPath, *, now: datetime, dry_run: bool = False
    ) -> PruneResult: ...
