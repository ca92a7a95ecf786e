"""Memory document format: YAML frontmatter header followed by the body.

    ---
    created_at: '2026-01-01T00:00:00+00:00'
    updated_at: '2026-01-02T09:30:00+00:00'
    tags: [infra]
    source: user
    expires_at: '2026-02-01T00:00:00+00:00'   # optional
    citations: [docs/setup.md]                 # optional
    ---

    Install steps
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any

import frontmatter
import yaml

from cortex.errors import ValidationError
from cortex.memory.models import Memory, ensure_utc
from cortex.memory.paths import MemoryPath

MEMORY_EXTENSION = ".md"


def estimate_tokens(content: str) -> int:
    """Rough token count: one token per four characters of trimmed text."""
    trimmed = content.strip()
    if not trimmed:
        return 0
    return max(1, math.ceil(len(trimmed) / 4))


def format_timestamp(value: datetime) -> str:
    return ensure_utc(value).isoformat()


def parse_timestamp(value: Any, field: str = "timestamp") -> datetime:
    """Accept ISO-8601 strings as well as values YAML already turned into dates."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return ensure_utc(datetime.combine(value, time()))
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return ensure_utc(datetime.fromisoformat(text))
        except ValueError as e:
            raise ValidationError(
                f"Invalid timestamp for {field}: {value!r}. Use ISO-8601, "
                "e.g. 2026-01-01T00:00:00Z.",
                code="INVALID_TIMESTAMP",
                cause=e,
            ) from e
    raise ValidationError(
        f"Invalid timestamp for {field}: expected an ISO-8601 string, got {type(value).__name__}.",
        code="INVALID_TIMESTAMP",
    )


def serialize_memory(memory: Memory) -> str:
    meta = memory.metadata
    post = frontmatter.Post(memory.content)
    post.metadata.update(
        {
            "created_at": format_timestamp(meta.created_at),
            "updated_at": format_timestamp(meta.updated_at),
            "tags": list(meta.tags),
            "source": meta.source,
        }
    )
    if meta.expires_at is not None:
        post.metadata["expires_at"] = format_timestamp(meta.expires_at)
    if meta.citations:
        post.metadata["citations"] = list(meta.citations)
    return frontmatter.dumps(post, sort_keys=False) + "\n"


def _load_post(text: str, path: str) -> frontmatter.Post:
    try:
        post = frontmatter.loads(text)
    except yaml.YAMLError as e:
        raise ValidationError(
            f"Memory document {path} has a malformed frontmatter header.",
            code="INVALID_DOCUMENT",
            path=path,
            cause=e,
        ) from e
    if not post.metadata:
        raise ValidationError(
            f"Memory document {path} has no frontmatter header.",
            code="INVALID_DOCUMENT",
            path=path,
        )
    return post


def parse_memory(path: MemoryPath | str, text: str) -> Memory:
    """Parse a full document into a validated :class:`Memory`."""
    path = MemoryPath.parse(path)
    post = _load_post(text, str(path))
    meta = post.metadata
    for required in ("created_at", "updated_at"):
        if required not in meta:
            raise ValidationError(
                f"Memory document {path} is missing required field '{required}'.",
                code="INVALID_DOCUMENT",
                path=str(path),
            )
    expires_at = meta.get("expires_at")
    return Memory.create(
        path,
        post.content.strip(),
        created_at=parse_timestamp(meta["created_at"], "created_at"),
        updated_at=parse_timestamp(meta["updated_at"], "updated_at"),
        tags=meta.get("tags") or (),
        source=str(meta.get("source") or "user"),
        citations=meta.get("citations") or (),
        expires_at=parse_timestamp(expires_at, "expires_at") if expires_at else None,
    )


@dataclass(frozen=True)
class DocumentHeader:
    """The subset of a header the index needs; every field may be missing."""

    updated_at: datetime | None
    tags: tuple[str, ...]
    expires_at: datetime | None
    token_estimate: int


def read_header(text: str) -> DocumentHeader:
    """Leniently read index fields from a document, tolerating legacy files.

    A missing or unparseable ``updated_at`` stays ``None``.
    """
    try:
        post = frontmatter.loads(text)
        meta, body = post.metadata, post.content
    except yaml.YAMLError:
        meta, body = {}, text

    def _maybe_timestamp(key: str) -> datetime | None:
        if not meta.get(key):
            return None
        try:
            return parse_timestamp(meta[key], key)
        except ValidationError:
            return None

    raw_tags = meta.get("tags") or []
    tags = tuple(str(t) for t in raw_tags) if isinstance(raw_tags, list) else ()
    return DocumentHeader(
        updated_at=_maybe_timestamp("updated_at"),
        tags=tags,
        expires_at=_maybe_timestamp("expires_at"),
        token_estimate=estimate_tokens(body),
    )
