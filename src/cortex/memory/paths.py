"""Identity value types: slugs, category paths and memory paths.

Paths compare and hash by their canonical string form. Two separately
constructed ``CategoryPath("a/b")`` instances are the same key in a dict,
a set, or an index upsert.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator

from cortex.errors import ValidationError

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")


def is_valid_slug(value: str) -> bool:
    return isinstance(value, str) and bool(SLUG_PATTERN.match(value))


def slugify(text: str) -> str:
    """Normalize free text to a slug. Returns "" when nothing survives."""
    slug = text.strip().lower()
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


class Slug:
    """A single lowercase, hyphen-delimited path segment."""

    __slots__ = ("_value",)

    def __init__(self, value: str | Slug) -> None:
        if isinstance(value, Slug):
            value = value._value
        if not is_valid_slug(value):
            raise ValidationError(
                f"Invalid slug {value!r}: use lowercase letters, digits and single hyphens "
                "(for example 'setup-notes').",
                code="INVALID_SLUG",
                path=str(value),
            )
        self._value = value

    def __str__(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"Slug({self._value!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Slug):
            return self._value == other._value
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)

    def __lt__(self, other: Slug) -> bool:
        return self._value < other._value


class CategoryPath:
    """An ordered sequence of slugs. Zero segments is the store root."""

    __slots__ = ("_segments", "_value")

    def __init__(self, segments: Iterable[str | Slug] = ()) -> None:
        self._segments = tuple(Slug(s) for s in segments)
        self._value = "/".join(str(s) for s in self._segments)

    @classmethod
    def root(cls) -> CategoryPath:
        return cls()

    @classmethod
    def parse(cls, text: str | CategoryPath) -> CategoryPath:
        """Parse ``a/b/c``. Empty text and ``/`` are the root category."""
        if isinstance(text, CategoryPath):
            return text
        stripped = text.strip().strip("/")
        if not stripped:
            return cls.root()
        parts = stripped.split("/")
        if any(not p for p in parts):
            raise ValidationError(
                f"Invalid category path {text!r}: path segments cannot be empty.",
                code="INVALID_PATH",
                path=text,
            )
        try:
            return cls(parts)
        except ValidationError as e:
            raise ValidationError(
                f"Invalid category path {text!r}: {e.message}",
                code="INVALID_PATH",
                path=text,
                cause=e,
            ) from e

    @property
    def segments(self) -> tuple[Slug, ...]:
        return self._segments

    @property
    def is_root(self) -> bool:
        return not self._segments

    @property
    def depth(self) -> int:
        return len(self._segments)

    @property
    def name(self) -> str:
        return str(self._segments[-1]) if self._segments else ""

    @property
    def parent(self) -> CategoryPath | None:
        if self.is_root:
            return None
        return CategoryPath(self._segments[:-1])

    @property
    def top(self) -> CategoryPath:
        """The depth-1 ancestor (or self / root)."""
        return CategoryPath(self._segments[:1])

    def child(self, slug: str | Slug) -> CategoryPath:
        return CategoryPath((*self._segments, Slug(slug)))

    def ancestors(self) -> Iterator[CategoryPath]:
        """Proper ancestors below the store root, shallowest first."""
        for i in range(1, len(self._segments)):
            yield CategoryPath(self._segments[:i])

    def is_within(self, scope: CategoryPath) -> bool:
        """True when this path equals ``scope`` or is one of its descendants."""
        if scope.is_root:
            return True
        return self._segments[: scope.depth] == scope._segments

    def __str__(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"CategoryPath({self._value!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CategoryPath):
            return self._value == other._value
        return NotImplemented

    def __hash__(self) -> int:
        return hash(("category", self._value))

    def __lt__(self, other: CategoryPath) -> bool:
        return self._value < other._value


class MemoryPath:
    """A containing category plus the memory's own slug: ``category/sub/slug``."""

    __slots__ = ("_category", "_slug", "_value")

    def __init__(self, category: CategoryPath, slug: str | Slug) -> None:
        self._category = category
        self._slug = Slug(slug)
        self._value = f"{category}/{self._slug}" if not category.is_root else str(self._slug)

    @classmethod
    def parse(cls, text: str | MemoryPath) -> MemoryPath:
        """Parse ``category/sub/slug``; a single segment is a root-level memory."""
        if isinstance(text, MemoryPath):
            return text
        stripped = text.strip().strip("/")
        if not stripped:
            raise ValidationError(
                "Memory path cannot be empty. Use the form 'category/slug'.",
                code="INVALID_PATH",
                path=text,
            )
        head, _, slug = stripped.rpartition("/")
        category = CategoryPath.parse(head) if head else CategoryPath.root()
        try:
            return cls(category, slug)
        except ValidationError as e:
            raise ValidationError(
                f"Invalid memory path {text!r}: {e.message}",
                code="INVALID_PATH",
                path=text,
                cause=e,
            ) from e

    @property
    def category(self) -> CategoryPath:
        return self._category

    @property
    def slug(self) -> Slug:
        return self._slug

    def __str__(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"MemoryPath({self._value!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, MemoryPath):
            return self._value == other._value
        return NotImplemented

    def __hash__(self) -> int:
        return hash(("memory", self._value))

    def __lt__(self, other: MemoryPath) -> bool:
        return self._value < other._value
