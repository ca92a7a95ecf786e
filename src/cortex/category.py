"""Category operations: create, delete, describe, inspect.

Depth-1 categories (``human``, ``persona`` and any other top-level
category) and categories declared in the store configuration are
protected: they cannot be deleted and their descriptions cannot change.
"""

from __future__ import annotations

from cortex.errors import NotFoundError, ProtectedResourceError, ValidationError
from cortex.memory.models import Category
from cortex.memory.paths import CategoryPath
from cortex.policy import CategoryRules, validate_description
from cortex.storage.base import StorageAdapter

ROOT_CATEGORIES = ("human", "persona")


def _parse_non_root(path: CategoryPath | str, action: str) -> CategoryPath:
    path = CategoryPath.parse(path)
    if path.is_root:
        raise ValidationError(
            f"Cannot {action} the store root; give a category path such as 'docs/guides'.",
            code="INVALID_PATH",
        )
    return path


def _check_protected(path: CategoryPath, rules: CategoryRules, action: str) -> None:
    if path.depth == 1:
        raise ProtectedResourceError(
            f"Cannot {action} root category '{path}'. Root categories are fixed; "
            f"work with a subcategory such as '{path}/notes' instead.",
            code="ROOT_CATEGORY_REJECTED",
            path=str(path),
        )
    if rules.is_protected(path):
        raise ProtectedResourceError(
            f"Cannot {action} '{path}': it is declared in the store configuration. "
            "Remove the declaration first.",
            code="CATEGORY_PROTECTED",
            path=str(path),
        )


async def _require_category(storage: StorageAdapter, path: CategoryPath) -> None:
    if not await storage.categories.exists(path):
        raise NotFoundError(
            f"Category '{path}' does not exist. Create it with `cortex category create {path}`.",
            code="CATEGORY_NOT_FOUND",
            path=str(path),
        )


async def create_category(
    storage: StorageAdapter,
    path: CategoryPath | str,
    *,
    rules: CategoryRules | None = None,
) -> dict:
    """Create ``path`` and any missing ancestors. Creating an existing category is a no-op."""
    rules = rules or CategoryRules()
    path = _parse_non_root(path, "create")
    if await storage.categories.exists(path):
        return {"path": str(path), "created": False}

    for prefix in [*path.ancestors(), path]:
        if not await storage.categories.exists(prefix):
            rules.validate_category_creation(prefix)

    created = await storage.categories.ensure(path)
    definition = rules.definition(path)
    if created and definition and definition.description:
        await storage.categories.set_description(path, definition.description)
    return {"path": str(path), "created": created}


async def delete_category(
    storage: StorageAdapter,
    path: CategoryPath | str,
    *,
    rules: CategoryRules | None = None,
) -> dict:
    """Recursively delete a category with all of its memories and subcategories."""
    rules = rules or CategoryRules()
    path = _parse_non_root(path, "delete")
    _check_protected(path, rules, "delete")
    rules.validate_operation("delete", path)
    await _require_category(storage, path)
    await storage.categories.delete(path)
    return {"path": str(path), "deleted": True}


async def set_category_description(
    storage: StorageAdapter,
    path: CategoryPath | str,
    description: str | None,
    *,
    rules: CategoryRules | None = None,
) -> dict:
    """Set or clear (``None`` / blank) a category description."""
    rules = rules or CategoryRules()
    path = _parse_non_root(path, "describe")
    _check_protected(path, rules, "set a description on")
    rules.validate_operation("update", path)
    description = validate_description(description, str(path))
    await _require_category(storage, path)
    await storage.categories.set_description(path, description)
    return {"path": str(path), "description": description}


async def get_category(storage: StorageAdapter, path: CategoryPath | str) -> Category:
    """Load a category's index together with its own description."""
    path = CategoryPath.parse(path)
    await _require_category(storage, path)
    index = await storage.indexes.load(path)
    description = None
    if not path.is_root:
        parent_index = await storage.indexes.load(path.parent)
        entry = parent_index.find_subcategory(path) if parent_index else None
        description = entry.description if entry else None
    return Category(
        path=path,
        description=description,
        memories=list(index.memories) if index else [],
        subcategories=list(index.subcategories) if index else [],
    )
