"""Domain entities: memories, category indexes and update payloads."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar, Union

from cortex.errors import ValidationError
from cortex.memory.paths import CategoryPath, MemoryPath

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _clean_tags(tags: Iterable[str]) -> tuple[str, ...]:
    if isinstance(tags, str):
        raise ValidationError(
            "Tags must be a list of strings, not a single string.", code="INVALID_TAGS"
        )
    seen: dict[str, None] = {}
    for tag in tags:
        if not isinstance(tag, str) or not tag.strip():
            raise ValidationError(
                f"Invalid tag {tag!r}: tags must be non-empty strings.", code="INVALID_TAGS"
            )
        seen.setdefault(tag.strip(), None)
    return tuple(seen)


def _clean_citations(citations: Iterable[str]) -> tuple[str, ...]:
    if isinstance(citations, str):
        raise ValidationError(
            "Citations must be a list of strings, not a single string.",
            code="INVALID_CITATIONS",
        )
    result = []
    for citation in citations:
        if not isinstance(citation, str) or not citation.strip():
            raise ValidationError(
                f"Invalid citation {citation!r}: citations must be non-empty strings "
                "such as 'src/app.py:42' or a URL.",
                code="INVALID_CITATIONS",
            )
        result.append(citation.strip())
    return tuple(result)


# ── Memory ────────────────────────────────────────────────


@dataclass(frozen=True, eq=False)
class MemoryMetadata:
    """Metadata stored in a memory document's header."""

    created_at: datetime
    updated_at: datetime
    tags: tuple[str, ...] = ()
    source: str = "user"
    citations: tuple[str, ...] = ()
    expires_at: datetime | None = None

    def __eq__(self, other: object) -> bool:
        # Tag order is display-only.
        if not isinstance(other, MemoryMetadata):
            return NotImplemented
        return (
            self.created_at == other.created_at
            and self.updated_at == other.updated_at
            and frozenset(self.tags) == frozenset(other.tags)
            and self.source == other.source
            and self.citations == other.citations
            and self.expires_at == other.expires_at
        )

    __hash__ = None  # type: ignore[assignment]


@dataclass(frozen=True)
class Memory:
    """A persisted unit of content. Build instances with :meth:`create`."""

    path: MemoryPath
    content: str
    metadata: MemoryMetadata

    @classmethod
    def create(
        cls,
        path: MemoryPath | str,
        content: str,
        *,
        created_at: datetime | None = None,
        updated_at: datetime | None = None,
        tags: Iterable[str] = (),
        source: str = "user",
        citations: Iterable[str] = (),
        expires_at: datetime | None = None,
    ) -> Memory:
        """Validate every field and build a memory."""
        path = MemoryPath.parse(path)
        if not isinstance(content, str):
            raise ValidationError(
                "Memory content must be a string.", code="INVALID_INPUT", path=str(path)
            )
        if not isinstance(source, str) or not source.strip():
            raise ValidationError(
                "Memory source must be a non-empty string such as 'user' or 'mcp'.",
                code="INVALID_INPUT",
                path=str(path),
            )
        for name, value in (
            ("created_at", created_at),
            ("updated_at", updated_at),
            ("expires_at", expires_at),
        ):
            if value is not None and not isinstance(value, datetime):
                raise ValidationError(
                    f"{name} must be a datetime, got {type(value).__name__}.",
                    code="INVALID_TIMESTAMP",
                    path=str(path),
                )
        created = ensure_utc(created_at) if created_at else utcnow()
        updated = ensure_utc(updated_at) if updated_at else created
        if updated < created:
            raise ValidationError(
                f"updated_at ({updated.isoformat()}) is earlier than created_at "
                f"({created.isoformat()}).",
                code="INVALID_TIMESTAMP",
                path=str(path),
            )
        metadata = MemoryMetadata(
            created_at=created,
            updated_at=updated,
            tags=_clean_tags(tags),
            source=source,
            citations=_clean_citations(citations),
            expires_at=ensure_utc(expires_at) if expires_at else None,
        )
        return cls(path=path, content=content, metadata=metadata)

    def is_expired(self, now: datetime | None = None) -> bool:
        expires_at = self.metadata.expires_at
        if expires_at is None:
            return False
        return expires_at <= (now or utcnow())


# ── Three-state updates ──────────────────────────────────


class Keep:
    """Leave the field unchanged."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "KEEP"


class Clear:
    """Reset the field to empty."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "CLEAR"


@dataclass(frozen=True)
class SetTo(Generic[T]):
    """Replace the field with ``value``."""

    value: T


KEEP = Keep()
CLEAR = Clear()

FieldUpdate = Union[Keep, Clear, SetTo[T]]


def field_update(payload: dict[str, Any], key: str) -> FieldUpdate:
    """Absent key = keep, explicit ``None`` = clear, anything else = set."""
    if key not in payload:
        return KEEP
    value = payload[key]
    if value is None:
        return CLEAR
    return SetTo(value)


@dataclass(frozen=True)
class MemoryUpdate:
    content: FieldUpdate = KEEP
    tags: FieldUpdate = KEEP
    citations: FieldUpdate = KEEP
    expires_at: FieldUpdate = KEEP

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> MemoryUpdate:
        return cls(
            content=field_update(payload, "content"),
            tags=field_update(payload, "tags"),
            citations=field_update(payload, "citations"),
            expires_at=field_update(payload, "expires_at"),
        )

    @property
    def has_changes(self) -> bool:
        return any(
            not isinstance(getattr(self, name), Keep)
            for name in ("content", "tags", "citations", "expires_at")
        )

    def apply(self, memory: Memory, now: datetime) -> Memory:
        """Return the updated memory. ``updated_at`` never precedes ``created_at``."""
        meta = memory.metadata
        if isinstance(self.content, Clear):
            raise ValidationError(
                "Memory content cannot be cleared; delete the memory instead.",
                code="INVALID_INPUT",
                path=str(memory.path),
            )
        content = self.content.value if isinstance(self.content, SetTo) else memory.content
        return Memory.create(
            memory.path,
            content,
            created_at=meta.created_at,
            updated_at=max(ensure_utc(now), meta.created_at),
            tags=_resolve(self.tags, meta.tags, ()),
            source=meta.source,
            citations=_resolve(self.citations, meta.citations, ()),
            expires_at=_resolve(self.expires_at, meta.expires_at, None),
        )


def _resolve(update: FieldUpdate, current: Any, cleared: Any) -> Any:
    if isinstance(update, SetTo):
        return update.value
    if isinstance(update, Clear):
        return cleared
    return current


# ── Index entries ────────────────────────────────────────


@dataclass(frozen=True)
class MemoryEntry:
    """Denormalized summary of a memory, stored in its category's index."""

    path: MemoryPath
    token_estimate: int
    updated_at: datetime | None = None
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class SubcategoryEntry:
    """Summary of a child category, stored in the parent's index."""

    path: CategoryPath
    memory_count: int = 0
    description: str | None = None


@dataclass
class CategoryIndex:
    """Per-category cache of child memories and subcategories.

    Upserts key on the path *value*, so repeated writes to the same path
    replace a single entry.
    """

    memories: list[MemoryEntry] = field(default_factory=list)
    subcategories: list[SubcategoryEntry] = field(default_factory=list)

    def find_memory(self, path: MemoryPath) -> MemoryEntry | None:
        key = str(path)
        return next((m for m in self.memories if str(m.path) == key), None)

    def find_subcategory(self, path: CategoryPath) -> SubcategoryEntry | None:
        key = str(path)
        return next((s for s in self.subcategories if str(s.path) == key), None)

    def upsert_memory(self, entry: MemoryEntry) -> None:
        key = str(entry.path)
        self.memories = [m for m in self.memories if str(m.path) != key]
        self.memories.append(entry)
        self.memories.sort(key=lambda m: str(m.path))

    def remove_memory(self, path: MemoryPath) -> bool:
        key = str(path)
        before = len(self.memories)
        self.memories = [m for m in self.memories if str(m.path) != key]
        return len(self.memories) != before

    def upsert_subcategory(
        self,
        path: CategoryPath,
        memory_count: int | None = None,
        description: str | None | Keep = KEEP,
    ) -> SubcategoryEntry:
        """Insert or refresh a child entry, keeping fields that are not given."""
        existing = self.find_subcategory(path)
        if memory_count is None:
            memory_count = existing.memory_count if existing else 0
        if isinstance(description, Keep):
            description = existing.description if existing else None
        entry = SubcategoryEntry(path=path, memory_count=memory_count, description=description)
        key = str(path)
        self.subcategories = [s for s in self.subcategories if str(s.path) != key]
        self.subcategories.append(entry)
        self.subcategories.sort(key=lambda s: str(s.path))
        return entry

    def remove_subcategory(self, path: CategoryPath) -> bool:
        key = str(path)
        before = len(self.subcategories)
        self.subcategories = [s for s in self.subcategories if str(s.path) != key]
        return len(self.subcategories) != before


@dataclass
class Category:
    """A loaded view of one category: its index plus resolved declarations."""

    path: CategoryPath
    description: str | None = None
    memories: list[MemoryEntry] = field(default_factory=list)
    subcategories: list[SubcategoryEntry] = field(default_factory=list)
