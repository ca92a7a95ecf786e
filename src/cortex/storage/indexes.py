"""Category index files: format, atomic I/O and directory scanning.

Index files are a cache. Everything here can be regenerated from the
documents on disk except subcategory descriptions, which are carried over
from the previous index whenever a category is rescanned.
"""

from __future__ import annotations

import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import yaml

from cortex.errors import CortexError, StorageError, ValidationError
from cortex.memory.document import (
    MEMORY_EXTENSION,
    format_timestamp,
    parse_timestamp,
    read_header,
)
from cortex.memory.models import CategoryIndex, MemoryEntry, SubcategoryEntry
from cortex.memory.paths import CategoryPath, MemoryPath, is_valid_slug

logger = logging.getLogger(__name__)

INDEX_FILE_NAME = "index.yaml"


@contextmanager
def io_errors(code: str, path: Path, action: str) -> Iterator[None]:
    """Wrap OSError into StorageError carrying the attempted path."""
    try:
        yield
    except OSError as e:
        raise StorageError(
            f"Failed to {action} at {path}: {e.strerror or e}.",
            code=code,
            path=str(path),
            cause=e,
        ) from e


def atomic_write_text(target: Path, content: str) -> None:
    """Write text atomically via a unique temp file + rename."""
    with io_errors("IO_WRITE_ERROR", target, "write file"):
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=target.parent, suffix=".tmp", prefix=".cortex-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_path, target)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise


# ── Paths ─────────────────────────────────────────────────


def category_dir(root: Path, category: CategoryPath) -> Path:
    return root.joinpath(*(str(s) for s in category.segments))


def index_file(root: Path, category: CategoryPath) -> Path:
    return category_dir(root, category) / INDEX_FILE_NAME


def memory_file(root: Path, path: MemoryPath) -> Path:
    return category_dir(root, path.category) / f"{path.slug}{MEMORY_EXTENSION}"


# ── Format ───────────────────────────────────────────────


def serialize_index(index: CategoryIndex) -> str:
    memories = []
    for entry in sorted(index.memories, key=lambda m: str(m.path)):
        data: dict[str, Any] = {"path": str(entry.path), "token_estimate": entry.token_estimate}
        if entry.updated_at is not None:
            data["updated_at"] = format_timestamp(entry.updated_at)
        data["tags"] = list(entry.tags)
        memories.append(data)
    subcategories = []
    for sub in sorted(index.subcategories, key=lambda s: str(s.path)):
        data = {"path": str(sub.path), "memory_count": sub.memory_count}
        if sub.description:
            data["description"] = sub.description
        subcategories.append(data)
    return yaml.safe_dump(
        {"memories": memories, "subcategories": subcategories},
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )


def _index_error(where: str, detail: str, cause: BaseException | None = None) -> StorageError:
    return StorageError(
        f"Invalid category index at {where}: {detail}.",
        code="INDEX_ERROR",
        path=where,
        cause=cause,
        hint="Run `cortex store reindex` to rebuild it from the memory files.",
    )


def parse_index(text: str, where: str = "") -> CategoryIndex:
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise _index_error(where, "not valid YAML", e) from e
    if not isinstance(data, dict):
        raise _index_error(where, "expected a mapping with 'memories' and 'subcategories'")
    memories_raw = data.get("memories") or []
    subcategories_raw = data.get("subcategories") or []
    if not isinstance(memories_raw, list) or not isinstance(subcategories_raw, list):
        raise _index_error(where, "'memories' and 'subcategories' must be lists")

    index = CategoryIndex()
    try:
        for raw in memories_raw:
            token_estimate = int(raw.get("token_estimate", 0))
            if token_estimate < 0:
                raise ValueError("token_estimate must be non-negative")
            updated_at = raw.get("updated_at")
            index.memories.append(
                MemoryEntry(
                    path=MemoryPath.parse(raw["path"]),
                    token_estimate=token_estimate,
                    updated_at=parse_timestamp(updated_at, "updated_at") if updated_at else None,
                    tags=tuple(str(t) for t in raw.get("tags") or ()),
                )
            )
        for raw in subcategories_raw:
            memory_count = int(raw.get("memory_count", 0))
            if memory_count < 0:
                raise ValueError("memory_count must be non-negative")
            description = raw.get("description")
            index.subcategories.append(
                SubcategoryEntry(
                    path=CategoryPath.parse(raw["path"]),
                    memory_count=memory_count,
                    description=str(description) if description else None,
                )
            )
    except (AttributeError, KeyError, TypeError, ValueError, CortexError) as e:
        raise _index_error(where, f"malformed entry ({e})", e) from e
    return index


# ── I/O ──────────────────────────────────────────────────


def read_index(root: Path, category: CategoryPath) -> CategoryIndex | None:
    path = index_file(root, category)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except UnicodeDecodeError as e:
        raise _index_error(str(category) or "<root>", "file is not valid UTF-8", e) from e
    except OSError as e:
        raise StorageError(
            f"Failed to read index file at {path}: {e.strerror or e}.",
            code="IO_READ_ERROR",
            path=str(path),
            cause=e,
        ) from e
    return parse_index(text, str(category) or "<root>")


def write_index(root: Path, category: CategoryPath, index: CategoryIndex) -> None:
    atomic_write_text(index_file(root, category), serialize_index(index))


def read_document(file: Path) -> str:
    """Read a memory document as UTF-8 text.

    Undecodable bytes raise ``INVALID_DOCUMENT``; other failures are storage errors.
    """
    try:
        with io_errors("IO_READ_ERROR", file, "read memory file"):
            return file.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValidationError(
            f"Memory document at {file} is not valid UTF-8 text. "
            "Re-encode or delete the file, then reindex.",
            code="INVALID_DOCUMENT",
            path=str(file),
            cause=e,
        ) from e


def entry_from_file(path: MemoryPath, file: Path) -> tuple[MemoryEntry, bool]:
    """Build an index entry from a document. The flag is False for legacy headers."""
    header = read_header(read_document(file))
    entry = MemoryEntry(
        path=path,
        token_estimate=header.token_estimate,
        updated_at=header.updated_at,
        tags=header.tags,
    )
    return entry, header.updated_at is not None


def _listdir(directory: Path) -> list[os.DirEntry]:
    with io_errors("IO_READ_ERROR", directory, "read category directory"):
        with os.scandir(directory) as it:
            return sorted(it, key=lambda e: e.name)


def count_memories(directory: Path) -> int:
    """Number of documents directly inside a category directory."""
    if not directory.is_dir():
        return 0
    return sum(
        1
        for e in _listdir(directory)
        if e.is_file()
        and e.name.endswith(MEMORY_EXTENSION)
        and is_valid_slug(e.name[: -len(MEMORY_EXTENSION)])
    )


def scan_category(
    root: Path, category: CategoryPath, previous: CategoryIndex | None = None
) -> tuple[CategoryIndex, list[CategoryPath], list[str]]:
    """Rebuild one category's index from its directory.

    Returns the new index, the child categories found and any warnings.
    Names that are not valid slugs are skipped with a warning.
    """
    directory = category_dir(root, category)
    index = CategoryIndex()
    children: list[CategoryPath] = []
    warnings: list[str] = []

    for entry in _listdir(directory):
        if entry.name.startswith("."):
            continue
        if entry.is_dir():
            if not is_valid_slug(entry.name):
                warnings.append(
                    f"Skipped directory {entry.path}: '{entry.name}' is not a valid slug"
                )
                continue
            child = category.child(entry.name)
            old = previous.find_subcategory(child) if previous else None
            index.subcategories.append(
                SubcategoryEntry(
                    path=child,
                    memory_count=count_memories(Path(entry.path)),
                    description=old.description if old else None,
                )
            )
            children.append(child)
        elif entry.is_file() and entry.name.endswith(MEMORY_EXTENSION):
            stem = entry.name[: -len(MEMORY_EXTENSION)]
            if not is_valid_slug(stem):
                warnings.append(f"Skipped file {entry.path}: '{stem}' is not a valid slug")
                continue
            try:
                memory_entry, has_timestamp = entry_from_file(
                    MemoryPath(category, stem), Path(entry.path)
                )
            except ValidationError as e:
                warnings.append(f"Skipped file {entry.path}: {e.message}")
                continue
            if not has_timestamp:
                warnings.append(f"Indexed {memory_entry.path} without updated_at (legacy header)")
            index.memories.append(memory_entry)

    for warning in warnings:
        logger.warning(warning)
    return index, children, warnings
