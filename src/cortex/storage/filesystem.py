"""Filesystem storage engine.

Implements the four storage ports over one store's directory tree. Writes
update the affected index entries in place; reindex and prune walk the
subtree with an explicit stack. Blocking work runs in worker threads.

Single-writer only: there is no file locking, so two processes writing the
same store can race and lose index entries. ``reindex`` repairs that.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from datetime import datetime
from pathlib import Path

import yaml

from cortex.errors import (
    AlreadyExistsError,
    NotFoundError,
    PartialSuccessError,
    StorageError,
    ValidationError,
)
from cortex.memory.document import (
    MEMORY_EXTENSION,
    estimate_tokens,
    parse_memory,
    read_header,
    serialize_memory,
)
from cortex.memory.models import CategoryIndex, Memory, MemoryEntry
from cortex.memory.paths import CategoryPath, MemoryPath, is_valid_slug, slugify
from cortex.storage.base import PrunedMemory, PruneResult, ReindexResult
from cortex.storage.indexes import (
    atomic_write_text,
    category_dir,
    count_memories,
    entry_from_file,
    index_file,
    io_errors,
    memory_file,
    read_document,
    read_index,
    scan_category,
    write_index,
)

logger = logging.getLogger(__name__)

STORE_FILE_NAME = "store.yaml"


class FilesystemStorage:
    """All storage ports for the store rooted at ``root``."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self.memories = FilesystemMemoryStorage(self)
        self.indexes = FilesystemIndexStorage(self)
        self.categories = FilesystemCategoryStorage(self)
        self.stores = FilesystemStoreStorage(self)

    def __repr__(self) -> str:
        return f"FilesystemStorage({str(self.root)!r})"

    # ── Lifecycle ─────────────────────────────────────────────

    async def initialize(self) -> bool:
        """Create the root directory and an empty root index. Idempotent."""
        return await asyncio.to_thread(self._initialize)

    def _initialize(self) -> bool:
        created = False
        with io_errors("IO_WRITE_ERROR", self.root, "create store directory"):
            if not self.root.is_dir():
                self.root.mkdir(parents=True)
                created = True
        if not index_file(self.root, CategoryPath.root()).exists():
            write_index(self.root, CategoryPath.root(), CategoryIndex())
            created = True
        if created:
            logger.info("Initialized store at %s", self.root)
        return created

    # ── Categories ────────────────────────────────────────────

    def _category_exists(self, path: CategoryPath) -> bool:
        return category_dir(self.root, path).is_dir()

    def _first_missing(self, path: CategoryPath) -> CategoryPath | None:
        for prefix in [*path.ancestors(), path]:
            if not prefix.is_root and not self._category_exists(prefix):
                return prefix
        return None

    def _ensure_category(self, path: CategoryPath) -> bool:
        """Create ``path`` and its ancestors, repairing any missing parent entries."""
        self._initialize()
        created = False
        for prefix in [*path.ancestors(), path]:
            if prefix.is_root:
                continue
            directory = category_dir(self.root, prefix)
            if not directory.is_dir():
                with io_errors("IO_WRITE_ERROR", directory, "create category directory"):
                    directory.mkdir(parents=True)
                created = True
            if not index_file(self.root, prefix).exists():
                write_index(self.root, prefix, CategoryIndex())
            parent = prefix.parent
            parent_index = read_index(self.root, parent) or CategoryIndex()
            if parent_index.find_subcategory(prefix) is None:
                parent_index.upsert_subcategory(prefix, memory_count=count_memories(directory))
                write_index(self.root, parent, parent_index)
        if created:
            logger.info("Created category: %s", path)
        return created

    def _prepare_category(self, path: CategoryPath, create: bool) -> None:
        if path.is_root:
            self._initialize()
            return
        missing = self._first_missing(path)
        if missing is None:
            return
        if not create:
            raise NotFoundError(
                f"Category '{missing}' does not exist. Create it first with "
                f"`cortex category create {missing}`.",
                code="CATEGORY_NOT_FOUND",
                path=str(missing),
            )
        self._ensure_category(path)

    def _sync_parent_count(self, category: CategoryPath) -> None:
        """Refresh ``memory_count`` for ``category`` in its parent's index."""
        if category.is_root:
            return
        parent = category.parent
        parent_index = read_index(self.root, parent) or CategoryIndex()
        parent_index.upsert_subcategory(
            category, memory_count=count_memories(category_dir(self.root, category))
        )
        write_index(self.root, parent, parent_index)

    def _delete_category(self, path: CategoryPath) -> None:
        if path.is_root:
            raise ValidationError(
                "The store root cannot be deleted; remove the store instead.",
                code="INVALID_PATH",
            )
        directory = category_dir(self.root, path)
        if not directory.is_dir():
            raise NotFoundError(
                f"Category '{path}' does not exist.", code="CATEGORY_NOT_FOUND", path=str(path)
            )
        with io_errors("IO_WRITE_ERROR", directory, "delete category"):
            shutil.rmtree(directory)
        try:
            parent_index = read_index(self.root, path.parent) or CategoryIndex()
            parent_index.remove_subcategory(path)
            write_index(self.root, path.parent, parent_index)
        except StorageError as e:
            raise PartialSuccessError(
                f"Category '{path}' was deleted but the parent index update failed.",
                path=str(path),
                cause=e,
            ) from e
        logger.info("Deleted category: %s", path)

    def _set_description(self, path: CategoryPath, description: str | None) -> None:
        if path.is_root:
            raise ValidationError(
                "The store root has no parent index and cannot hold a description.",
                code="INVALID_PATH",
            )
        directory = category_dir(self.root, path)
        if not directory.is_dir():
            raise NotFoundError(
                f"Category '{path}' does not exist.", code="CATEGORY_NOT_FOUND", path=str(path)
            )
        parent_index = read_index(self.root, path.parent) or CategoryIndex()
        existing = parent_index.find_subcategory(path)
        parent_index.upsert_subcategory(
            path,
            memory_count=None if existing else count_memories(directory),
            description=description,
        )
        write_index(self.root, path.parent, parent_index)
        logger.info("Set description for %s", path)

    # ── Memories ──────────────────────────────────────────────

    def _load_memory(self, path: MemoryPath) -> Memory | None:
        file = memory_file(self.root, path)
        try:
            text = file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            raise ValidationError(
                f"Memory '{path}' is not valid UTF-8 text. "
                "Re-encode or delete the file, then reindex.",
                code="INVALID_DOCUMENT",
                path=str(path),
                cause=e,
            ) from e
        except OSError as e:
            raise StorageError(
                f"Failed to read memory file at {file}: {e.strerror or e}.",
                code="IO_READ_ERROR",
                path=str(file),
                cause=e,
            ) from e
        return parse_memory(path, text)

    def _write_memory(self, memory: Memory, *, create_categories: bool, overwrite: bool) -> None:
        file = memory_file(self.root, memory.path)
        if not overwrite and file.exists():
            raise AlreadyExistsError(
                f"Memory '{memory.path}' already exists. Use update to change it.",
                code="MEMORY_ALREADY_EXISTS",
                path=str(memory.path),
            )
        self._prepare_category(memory.path.category, create_categories)
        atomic_write_text(file, serialize_memory(memory))

        entry = MemoryEntry(
            path=memory.path,
            token_estimate=estimate_tokens(memory.content),
            updated_at=memory.metadata.updated_at,
            tags=memory.metadata.tags,
        )
        self._after_write(
            memory.path,
            f"Memory '{memory.path}' was saved but its index entry could not be updated.",
            lambda: self._upsert_entry(entry),
        )
        logger.info("Saved memory: %s", memory.path)

    def _upsert_entry(self, entry: MemoryEntry) -> None:
        category = entry.path.category
        index = read_index(self.root, category) or CategoryIndex()
        index.upsert_memory(entry)
        write_index(self.root, category, index)
        self._sync_parent_count(category)

    def _drop_entry(self, path: MemoryPath) -> None:
        category = path.category
        index = read_index(self.root, category) or CategoryIndex()
        index.remove_memory(path)
        write_index(self.root, category, index)
        self._sync_parent_count(category)

    def _after_write(self, path: MemoryPath, message: str, update) -> None:
        try:
            update()
        except StorageError as e:
            raise PartialSuccessError(message, path=str(path), cause=e) from e

    def _remove_memory(self, path: MemoryPath) -> None:
        file = memory_file(self.root, path)
        if not file.is_file():
            raise NotFoundError(
                f"Memory '{path}' does not exist.", code="MEMORY_NOT_FOUND", path=str(path)
            )
        with io_errors("IO_WRITE_ERROR", file, "delete memory file"):
            file.unlink()
        self._after_write(
            path,
            f"Memory '{path}' was deleted but its index entry could not be removed.",
            lambda: self._drop_entry(path),
        )
        logger.info("Removed memory: %s", path)

    def _move_memory(
        self, source: MemoryPath, destination: MemoryPath, create_categories: bool
    ) -> None:
        src = memory_file(self.root, source)
        dst = memory_file(self.root, destination)
        if not src.is_file():
            raise NotFoundError(
                f"Memory '{source}' does not exist.", code="MEMORY_NOT_FOUND", path=str(source)
            )
        if dst.exists():
            raise AlreadyExistsError(
                f"Cannot move to '{destination}': a memory already exists there.",
                code="DESTINATION_EXISTS",
                path=str(destination),
            )
        self._prepare_category(destination.category, create_categories)
        with io_errors("IO_WRITE_ERROR", src, "move memory file"):
            src.replace(dst)

        def update() -> None:
            self._drop_entry(source)
            entry, _ = entry_from_file(destination, dst)
            self._upsert_entry(entry)

        self._after_write(
            destination,
            f"Memory moved from '{source}' to '{destination}' "
            "but the indexes could not be updated.",
            update,
        )
        logger.info("Moved memory: %s -> %s", source, destination)

    # ── Bulk maintenance ──────────────────────────────────────

    def _require_scope(self, scope: CategoryPath) -> None:
        if scope.is_root:
            if not self.root.is_dir():
                raise NotFoundError(
                    f"Store root {self.root} does not exist. Run `cortex store init` first.",
                    code="STORE_NOT_FOUND",
                    path=str(self.root),
                )
        elif not self._category_exists(scope):
            raise NotFoundError(
                f"Category '{scope}' does not exist.", code="CATEGORY_NOT_FOUND", path=str(scope)
            )

    def _previous_index(self, category: CategoryPath, warnings: list[str]) -> CategoryIndex | None:
        try:
            return read_index(self.root, category)
        except StorageError as e:
            if e.code != "INDEX_ERROR":
                raise
            label = str(category) or "<root>"
            warnings.append(f"Discarded unreadable index for '{label}': {e.message}")
            logger.warning("Discarding unreadable index for %s", label)
            return None

    def _rebuild(self, category: CategoryPath, warnings: list[str]) -> tuple[CategoryIndex, list]:
        previous = self._previous_index(category, warnings)
        index, children, scan_warnings = scan_category(self.root, category, previous)
        warnings.extend(scan_warnings)
        write_index(self.root, category, index)
        return index, children

    def _reindex(self, scope: CategoryPath) -> ReindexResult:
        self._require_scope(scope)
        result = ReindexResult(scope=str(scope))
        pending = [scope]
        while pending:
            category = pending.pop()
            index, children = self._rebuild(category, result.warnings)
            result.categories += 1
            result.memories += len(index.memories)
            pending.extend(reversed(children))
        self._sync_parent_count(scope)
        logger.info(
            "Reindexed %s: %d categories, %d memories",
            str(scope) or "<root>",
            result.categories,
            result.memories,
        )
        return result

    def _collect_expired(
        self, scope: CategoryPath, now: datetime, warnings: list[str]
    ) -> list[PrunedMemory]:
        expired: list[PrunedMemory] = []
        pending = [scope]
        while pending:
            category = pending.pop()
            directory = category_dir(self.root, category)
            with io_errors("IO_READ_ERROR", directory, "read category directory"):
                entries = sorted(directory.iterdir())
            for entry in entries:
                if entry.name.startswith("."):
                    continue
                if entry.is_dir():
                    if is_valid_slug(entry.name):
                        pending.append(category.child(entry.name))
                    continue
                if entry.suffix != MEMORY_EXTENSION or not is_valid_slug(entry.stem):
                    continue
                try:
                    header = read_header(read_document(entry))
                except ValidationError as e:
                    warnings.append(f"Skipped file {entry}: {e.message}")
                    logger.warning("Skipping unreadable document %s", entry)
                    continue
                if header.expires_at is not None and header.expires_at <= now:
                    expired.append(
                        PrunedMemory(MemoryPath(category, entry.stem), header.expires_at)
                    )
        expired.sort(key=lambda p: str(p.path))
        return expired

    def _prune(self, scope: CategoryPath, now: datetime, dry_run: bool) -> PruneResult:
        self._require_scope(scope)
        result = PruneResult(dry_run=dry_run)
        result.pruned = self._collect_expired(scope, now, result.warnings)
        if dry_run or not result.pruned:
            return result

        for item in result.pruned:
            file = memory_file(self.root, item.path)
            with io_errors("IO_WRITE_ERROR", file, "delete expired memory"):
                file.unlink()

        touched = sorted({item.path.category for item in result.pruned})
        try:
            for category in touched:
                self._rebuild(category, result.warnings)
                self._sync_parent_count(category)
                result.reindexed.append(str(category))
        except StorageError as e:
            raise PartialSuccessError(
                f"Pruned {len(result.pruned)} expired memories but the indexes of "
                f"{', '.join(str(c) or '<root>' for c in touched)} could not be rebuilt.",
                path=str(scope),
                cause=e,
            ) from e
        logger.info(
            "Pruned %d expired memories under %s", len(result.pruned), str(scope) or "<root>"
        )
        return result

    async def prune(
        self, scope: CategoryPath, *, now: datetime, dry_run: bool = False
    ) -> PruneResult:
        return await asyncio.to_thread(self._prune, scope, now, dry_run)


class FilesystemMemoryStorage:
    def __init__(self, fs: FilesystemStorage) -> None:
        self._fs = fs

    async def load(self, path: MemoryPath) -> Memory | None:
        return await asyncio.to_thread(self._fs._load_memory, path)

    async def add(self, memory: Memory, *, create_categories: bool = True) -> None:
        await asyncio.to_thread(
            self._fs._write_memory, memory, create_categories=create_categories, overwrite=False
        )

    async def save(self, memory: Memory, *, create_categories: bool = True) -> None:
        await asyncio.to_thread(
            self._fs._write_memory, memory, create_categories=create_categories, overwrite=True
        )

    async def remove(self, path: MemoryPath) -> None:
        await asyncio.to_thread(self._fs._remove_memory, path)

    async def move(
        self, source: MemoryPath, destination: MemoryPath, *, create_categories: bool = True
    ) -> None:
        await asyncio.to_thread(self._fs._move_memory, source, destination, create_categories)


class FilesystemIndexStorage:
    def __init__(self, fs: FilesystemStorage) -> None:
        self._fs = fs

    async def load(self, category: CategoryPath) -> CategoryIndex | None:
        return await asyncio.to_thread(read_index, self._fs.root, category)

    async def save(self, category: CategoryPath, index: CategoryIndex) -> None:
        await asyncio.to_thread(write_index, self._fs.root, category, index)

    async def reindex(self, scope: CategoryPath) -> ReindexResult:
        return await asyncio.to_thread(self._fs._reindex, scope)


class FilesystemCategoryStorage:
    def __init__(self, fs: FilesystemStorage) -> None:
        self._fs = fs

    async def exists(self, path: CategoryPath) -> bool:
        if path.is_root:
            return self._fs.root.is_dir()
        return await asyncio.to_thread(self._fs._category_exists, path)

    async def ensure(self, path: CategoryPath) -> bool:
        return await asyncio.to_thread(self._fs._ensure_category, path)

    async def delete(self, path: CategoryPath) -> None:
        await asyncio.to_thread(self._fs._delete_category, path)

    async def set_description(self, path: CategoryPath, description: str | None) -> None:
        await asyncio.to_thread(self._fs._set_description, path, description)


class FilesystemStoreStorage:
    """Store-level configuration kept in ``store.yaml`` at the store root."""

    def __init__(self, fs: FilesystemStorage) -> None:
        self._fs = fs

    @property
    def file(self) -> Path:
        return self._fs.root / STORE_FILE_NAME

    def _load(self):
        from cortex.config import StoreDefinition

        file = self.file
        try:
            text = file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(
                f"Failed to read store configuration at {file}: {e.strerror or e}.",
                code="IO_READ_ERROR",
                path=str(file),
                cause=e,
            ) from e
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise StorageError(
                f"Store configuration at {file} is not valid YAML.",
                code="IO_READ_ERROR",
                path=str(file),
                cause=e,
            ) from e
        if not isinstance(data, dict):
            raise StorageError(
                f"Store configuration at {file} must be a mapping.",
                code="IO_READ_ERROR",
                path=str(file),
            )
        name = data.pop("name", None) or slugify(self._fs.root.name) or "local"
        data["path"] = str(self._fs.root)
        return StoreDefinition.from_dict(name, data)

    async def load(self):
        return await asyncio.to_thread(self._load)

    async def save(self, definition) -> None:
        data = {"name": definition.name, **definition.to_dict()}
        data.pop("path", None)
        content = yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
        await asyncio.to_thread(atomic_write_text, self.file, content)

    def _remove(self) -> None:
        with io_errors("IO_WRITE_ERROR", self.file, "remove store configuration"):
            self.file.unlink(missing_ok=True)

    async def remove(self) -> None:
        await asyncio.to_thread(self._remove)
