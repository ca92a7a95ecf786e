"""Plain-dict views of results, and YAML/JSON output."""

from __future__ import annotations

import json
from typing import Any

import yaml

from cortex.config import StoreDefinition
from cortex.memory.document import estimate_tokens, format_timestamp
from cortex.memory.models import Category, Memory, MemoryEntry, SubcategoryEntry
from cortex.memory.operations import CategoryListing
from cortex.storage.base import PruneResult, ReindexResult


def memory_to_dict(memory: Memory, *, include_content: bool = True) -> dict[str, Any]:
    meta = memory.metadata
    data: dict[str, Any] = {
        "path": str(memory.path),
        "created_at": format_timestamp(meta.created_at),
        "updated_at": format_timestamp(meta.updated_at),
        "tags": list(meta.tags),
        "source": meta.source,
        "token_estimate": estimate_tokens(memory.content),
    }
    if meta.expires_at is not None:
        data["expires_at"] = format_timestamp(meta.expires_at)
    if meta.citations:
        data["citations"] = list(meta.citations)
    if include_content:
        data["content"] = memory.content
    return data


def entry_to_dict(entry: MemoryEntry) -> dict[str, Any]:
    data: dict[str, Any] = {"path": str(entry.path), "token_estimate": entry.token_estimate}
    if entry.updated_at is not None:
        data["updated_at"] = format_timestamp(entry.updated_at)
    if entry.tags:
        data["tags"] = list(entry.tags)
    return data


def subcategory_to_dict(entry: SubcategoryEntry) -> dict[str, Any]:
    data: dict[str, Any] = {"path": str(entry.path), "memory_count": entry.memory_count}
    if entry.description:
        data["description"] = entry.description
    return data


def listing_to_dict(listing: CategoryListing) -> dict[str, Any]:
    return {
        "category": str(listing.category),
        "memories": [entry_to_dict(e) for e in listing.memories],
        "subcategories": [subcategory_to_dict(s) for s in listing.subcategories],
    }


def category_to_dict(category: Category) -> dict[str, Any]:
    return {
        "path": str(category.path),
        "description": category.description,
        "memories": [entry_to_dict(e) for e in category.memories],
        "subcategories": [subcategory_to_dict(s) for s in category.subcategories],
    }


def reindex_to_dict(result: ReindexResult) -> dict[str, Any]:
    return {
        "scope": result.scope,
        "categories": result.categories,
        "memories": result.memories,
        "warnings": list(result.warnings),
    }


def prune_to_dict(result: PruneResult) -> dict[str, Any]:
    return {
        "dry_run": result.dry_run,
        "pruned": [
            {"path": str(p.path), "expires_at": format_timestamp(p.expires_at)}
            for p in result.pruned
        ],
        "reindexed": list(result.reindexed),
        "warnings": list(result.warnings),
    }


def store_to_dict(definition: StoreDefinition) -> dict[str, Any]:
    return {"name": definition.name, **definition.to_dict()}


def dump(data: Any, output_format: str = "yaml") -> str:
    if output_format == "json":
        return json.dumps(data, indent=2, ensure_ascii=False)
    return yaml.safe_dump(data, sort_keys=False, allow_unicode=True).rstrip("\n")
