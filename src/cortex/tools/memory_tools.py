"""Memory tools for agents.

These coroutines are meant to be registered as tools in a protocol
service. Each takes plain JSON-friendly arguments and returns a plain
dict; failures come back as ``{"error": {"code", "message", ...}}`` so the
agent can correct its input.
"""

from __future__ import annotations

import functools
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from cortex.errors import CortexError
from cortex.memory.document import parse_timestamp
from cortex.memory.models import MemoryUpdate
from cortex.render import (
    listing_to_dict,
    memory_to_dict,
    prune_to_dict,
    reindex_to_dict,
    store_to_dict,
)

if TYPE_CHECKING:
    from cortex.client import Cortex, StoreClient

logger = logging.getLogger(__name__)

Tool = Callable[..., Awaitable[dict]]


def _tool(func: Tool) -> Tool:
    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> dict:
        try:
            return await func(*args, **kwargs)
        except CortexError as e:
            logger.info("Tool %s failed: %s", func.__name__, e.code)
            return {"error": e.to_dict()}

    return wrapper


def _timestamp(value: str | None, field: str):
    return parse_timestamp(value, field) if value else None


def get_memory_tools(store: StoreClient) -> dict[str, Tool]:
    """Return a dict of tool_name -> coroutine function bound to ``store``."""

    @_tool
    async def add_memory(
        path: str,
        content: str,
        tags: list[str] | None = None,
        citations: list[str] | None = None,
        expires_at: str | None = None,
    ) -> dict:
        """Create a memory at ``category/slug``. Missing categories are created when allowed."""
        memory = await store.memory(path).create(
            content,
            tags=tags or (),
            source="mcp",
            citations=citations or (),
            expires_at=_timestamp(expires_at, "expires_at"),
        )
        return {"created": memory_to_dict(memory, include_content=False)}

    @_tool
    async def get_memory(path: str, include_expired: bool = False) -> dict:
        """Read a memory with its metadata."""
        memory = await store.memory(path).get(include_expired=include_expired)
        return memory_to_dict(memory)

    @_tool
    async def update_memory(path: str, **fields: Any) -> dict:
        """Update content, tags, citations or expires_at.

        Omit a field to keep it; pass null to clear it.
        """
        if isinstance(fields.get("expires_at"), str):
            fields["expires_at"] = parse_timestamp(fields["expires_at"], "expires_at")
        update = MemoryUpdate.from_payload(fields)
        memory = await store.memory(path).update(update)
        return {"updated": memory_to_dict(memory, include_content=False)}

    @_tool
    async def remove_memory(path: str) -> dict:
        """Delete a memory."""
        await store.memory(path).remove()
        return {"removed": path}

    @_tool
    async def move_memory(source: str, destination: str) -> dict:
        """Move a memory to a new path, keeping its timestamps."""
        moved = await store.memory(source).move(destination)
        return {"moved": {"from": source, "to": str(moved.path)}}

    @_tool
    async def list_memories(category: str = "", include_expired: bool = False) -> dict:
        """List memories and subcategories directly under a category."""
        listing = await store.category(category).list(include_expired=include_expired)
        return listing_to_dict(listing)

    @_tool
    async def recent_memories(category: str = "", limit: int = 5) -> dict:
        """The most recently updated memories, newest first."""
        memories = await store.recent(category, limit=limit)
        return {"memories": [memory_to_dict(m) for m in memories]}

    @_tool
    async def prune_memories(category: str = "", dry_run: bool = False) -> dict:
        """Delete expired memories (or only report them with dry_run)."""
        return prune_to_dict(await store.prune(category, dry_run=dry_run))

    @_tool
    async def reindex_store(category: str = "") -> dict:
        """Rebuild category indexes from the memory files."""
        return reindex_to_dict(await store.reindex(category))

    @_tool
    async def create_category(path: str) -> dict:
        """Create a category. Creating an existing category succeeds with created=false."""
        return await store.category(path).create()

    @_tool
    async def set_category_description(path: str, description: str | None = None) -> dict:
        """Set a category description (max 500 chars); empty clears it."""
        return await store.category(path).set_description(description)

    @_tool
    async def delete_category(path: str) -> dict:
        """Delete a category with everything inside it."""
        return await store.category(path).delete()

    return {
        "cortex_add_memory": add_memory,
        "cortex_get_memory": get_memory,
        "cortex_update_memory": update_memory,
        "cortex_remove_memory": remove_memory,
        "cortex_move_memory": move_memory,
        "cortex_list_memories": list_memories,
        "cortex_recent_memories": recent_memories,
        "cortex_prune_memories": prune_memories,
        "cortex_reindex_store": reindex_store,
        "cortex_create_category": create_category,
        "cortex_set_category_description": set_category_description,
        "cortex_delete_category": delete_category,
    }


def get_store_tools(cortex: Cortex) -> dict[str, Tool]:
    """Registry-level tools: list the configured stores and create new ones.

    ``cortex`` must already be opened (its registry loaded).
    """

    @_tool
    async def list_stores() -> dict:
        """List registered stores, sorted by name."""
        return {"stores": [store_to_dict(s) for s in cortex.list_stores()]}

    @_tool
    async def create_store(
        name: str, path: str | None = None, description: str | None = None
    ) -> dict:
        """Register and initialize a store.

        Without ``path`` the store lives in ``stores/<name>`` next to the config file.
        """
        if path is None:
            root = cortex.registry.config.path.parent / "stores" / name
        else:
            root = Path(path)
        store = await cortex.add_store(name, root, description)
        await store.initialize()
        return {"created": store_to_dict(store.definition)}

    return {
        "cortex_list_stores": list_stores,
        "cortex_create_store": create_store,
    }
