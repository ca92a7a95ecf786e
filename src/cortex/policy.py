"""Category policies: declaration tree, inheritance and enforcement.

A store may declare a tree of categories, each with an optional policy.
Resolution walks from a category up to the store root and takes the first
explicit value per field. Undeclared fields fall back to permissive
defaults.

Enforcement is split in two: ``validate_*`` methods only raise, and
``apply_*`` methods only transform values.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta
from typing import Any

from cortex.errors import ProtectedResourceError, ValidationError
from cortex.memory.paths import CategoryPath, is_valid_slug

MAX_DESCRIPTION_LENGTH = 500

CATEGORY_MODES = ("free", "subcategories", "strict")

OPERATIONS = ("create", "update", "delete")


@dataclass(frozen=True)
class CategoryPolicy:
    """Declared rules for one category. ``None`` means inherit."""

    default_ttl_days: int | None = None
    max_content_length: int | None = None
    create: bool | None = None
    update: bool | None = None
    delete: bool | None = None
    subcategory_creation: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.default_ttl_days is not None:
            data["default_ttl_days"] = self.default_ttl_days
        if self.max_content_length is not None:
            data["max_content_length"] = self.max_content_length
        permissions = {
            op: getattr(self, op) for op in OPERATIONS if getattr(self, op) is not None
        }
        if permissions:
            data["permissions"] = permissions
        if self.subcategory_creation is not None:
            data["subcategory_creation"] = self.subcategory_creation
        return data


@dataclass(frozen=True)
class ResolvedPolicy:
    """Effective rules for a category after inheritance."""

    default_ttl_days: int | None = None
    max_content_length: int | None = None
    create: bool = True
    update: bool = True
    delete: bool = True
    subcategory_creation: bool = True

    def allows(self, operation: str) -> bool:
        return getattr(self, operation)


@dataclass
class CategoryDefinition:
    description: str | None = None
    policy: CategoryPolicy = field(default_factory=CategoryPolicy)
    subcategories: dict[str, CategoryDefinition] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.description:
            data["description"] = self.description
        policy = self.policy.to_dict()
        if policy:
            data["policy"] = policy
        if self.subcategories:
            data["subcategories"] = category_tree_to_dict(self.subcategories)
        return data


# ── Parsing ───────────────────────────────────────────────


def _policy_error(where: str, detail: str) -> ValidationError:
    return ValidationError(
        f"Invalid policy for category '{where}': {detail}.", code="INVALID_POLICY", path=where
    )


def _positive_int(value: Any, key: str, where: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise _policy_error(where, f"{key} must be a positive integer, got {value!r}")
    return value


def _flag(value: Any, key: str, where: str) -> bool | None:
    if value is None:
        return None
    if not isinstance(value, bool):
        raise _policy_error(where, f"{key} must be true or false, got {value!r}")
    return value


def parse_policy(data: Any, where: str = "") -> CategoryPolicy:
    if data is None:
        return CategoryPolicy()
    if not isinstance(data, dict):
        raise _policy_error(where, "policy must be a mapping")
    unknown = set(data) - {
        "default_ttl_days",
        "max_content_length",
        "permissions",
        "subcategory_creation",
    }
    if unknown:
        raise _policy_error(where, f"unknown field(s) {', '.join(sorted(unknown))}")
    permissions = data.get("permissions") or {}
    if not isinstance(permissions, dict):
        raise _policy_error(where, "permissions must be a mapping of create/update/delete")
    unknown = set(permissions) - set(OPERATIONS)
    if unknown:
        raise _policy_error(where, f"unknown permission(s) {', '.join(sorted(unknown))}")
    return CategoryPolicy(
        default_ttl_days=_positive_int(data.get("default_ttl_days"), "default_ttl_days", where),
        max_content_length=_positive_int(
            data.get("max_content_length"), "max_content_length", where
        ),
        create=_flag(permissions.get("create"), "permissions.create", where),
        update=_flag(permissions.get("update"), "permissions.update", where),
        delete=_flag(permissions.get("delete"), "permissions.delete", where),
        subcategory_creation=_flag(
            data.get("subcategory_creation"), "subcategory_creation", where
        ),
    )


def validate_description(description: str | None, where: str = "") -> str | None:
    """Trim a description; blank clears it, over-length is rejected."""
    if description is None:
        return None
    if not isinstance(description, str):
        raise ValidationError(
            f"Description for '{where}' must be a string.", code="INVALID_INPUT", path=where
        )
    description = description.strip()
    if not description:
        return None
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise ValidationError(
            f"Description for '{where}' is {len(description)} characters; "
            f"the limit is {MAX_DESCRIPTION_LENGTH}.",
            code="DESCRIPTION_TOO_LONG",
            path=where,
        )
    return description


def parse_category_tree(
    data: Any, parent: CategoryPath | None = None
) -> dict[str, CategoryDefinition]:
    """Parse a nested ``{slug: {description, policy, subcategories}}`` mapping."""
    parent = parent or CategoryPath.root()
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise _policy_error(str(parent), "categories must be a mapping of slug to definition")
    tree: dict[str, CategoryDefinition] = {}
    for name, raw in data.items():
        if not isinstance(name, str) or not is_valid_slug(name):
            raise ValidationError(
                f"Declared category name {name!r} under '{parent}' is not a valid slug.",
                code="INVALID_SLUG",
            )
        path = parent.child(name)
        raw = raw or {}
        if not isinstance(raw, dict):
            raise _policy_error(str(path), "definition must be a mapping")
        tree[name] = CategoryDefinition(
            description=validate_description(raw.get("description"), str(path)),
            policy=parse_policy(raw.get("policy"), str(path)),
            subcategories=parse_category_tree(raw.get("subcategories"), path),
        )
    return tree


def category_tree_to_dict(tree: dict[str, CategoryDefinition]) -> dict[str, Any]:
    return {name: definition.to_dict() for name, definition in tree.items()}


# ── Resolution ────────────────────────────────────────────


def declaration_chain(
    path: CategoryPath, tree: dict[str, CategoryDefinition]
) -> list[CategoryDefinition]:
    """Definitions along ``path`` from the top down, stopping at the first undeclared segment."""
    chain = []
    level = tree
    for segment in path.segments:
        definition = level.get(str(segment))
        if definition is None:
            break
        chain.append(definition)
        level = definition.subcategories
    return chain


def find_definition(
    path: CategoryPath, tree: dict[str, CategoryDefinition]
) -> CategoryDefinition | None:
    chain = declaration_chain(path, tree)
    if path.is_root or len(chain) != path.depth:
        return None
    return chain[-1]


def resolve_policy(path: CategoryPath, tree: dict[str, CategoryDefinition]) -> ResolvedPolicy:
    """Nearest explicit value per field, walking from ``path`` up to the root."""
    resolved: dict[str, Any] = {}
    for definition in reversed(declaration_chain(path, tree)):
        for f in fields(CategoryPolicy):
            value = getattr(definition.policy, f.name)
            if value is not None and f.name not in resolved:
                resolved[f.name] = value
    return ResolvedPolicy(**resolved)


@dataclass
class CategoryRules:
    """A store's category mode plus its declaration tree."""

    mode: str = "free"
    categories: dict[str, CategoryDefinition] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.mode not in CATEGORY_MODES:
            raise ValidationError(
                f"Unknown category mode {self.mode!r}; "
                f"expected one of {', '.join(CATEGORY_MODES)}.",
                code="INVALID_POLICY",
            )

    def resolve(self, path: CategoryPath) -> ResolvedPolicy:
        return resolve_policy(path, self.categories)

    def definition(self, path: CategoryPath) -> CategoryDefinition | None:
        return find_definition(path, self.categories)

    def is_declared(self, path: CategoryPath) -> bool:
        return self.definition(path) is not None

    def is_protected(self, path: CategoryPath) -> bool:
        """Declared categories cannot be deleted or described.

        The tree is nested, so every ancestor of a declared category is declared too.
        """
        return self.is_declared(path)

    # ── Validation ───────────────────────────────────────

    def can_create_category(self, path: CategoryPath) -> bool:
        try:
            self.validate_category_creation(path)
        except (ProtectedResourceError, ValidationError):
            return False
        return True

    def validate_category_creation(self, path: CategoryPath) -> None:
        """Check that a new category may exist at ``path`` under the store's mode."""
        if path.is_root or self.is_declared(path):
            return
        if self.mode == "subcategories" and not self.is_declared(path.top):
            declared = ", ".join(sorted(self.categories)) or "none"
            raise ProtectedResourceError(
                f"Cannot create top-level category '{path.top}': this store only allows "
                f"declared root categories (declared: {declared}).",
                code="ROOT_CATEGORY_NOT_ALLOWED",
                path=str(path),
            )
        if self.mode == "strict":
            raise ProtectedResourceError(
                f"Cannot create category '{path}': this store only allows declared categories. "
                "Add it to the store's category configuration first.",
                code="CATEGORY_PROTECTED",
                path=str(path),
            )
        if not self.resolve(path.parent).subcategory_creation:
            raise ProtectedResourceError(
                f"Cannot create '{path}': policy for '{path.parent}' disallows new subcategories.",
                code="PERMISSION_DENIED",
                path=str(path),
            )

    def validate_operation(self, operation: str, path: CategoryPath) -> None:
        policy = self.resolve(path)
        if not policy.allows(operation):
            raise ProtectedResourceError(
                f"Policy for category '{path}' does not permit {operation} operations.",
                code="PERMISSION_DENIED",
                path=str(path),
            )

    def validate_content(self, path: CategoryPath, content: str) -> None:
        limit = self.resolve(path).max_content_length
        if limit is not None and len(content) > limit:
            raise ValidationError(
                f"Content is {len(content)} characters; category '{path}' allows at most {limit}.",
                code="CONTENT_TOO_LONG",
                path=str(path),
            )

    def validate_memory_write(self, operation: str, path: CategoryPath, content: str) -> None:
        self.validate_operation(operation, path)
        self.validate_content(path, content)

    # ── Transformation ───────────────────────────────────

    def apply_ttl(
        self, path: CategoryPath, expires_at: datetime | None, now: datetime
    ) -> datetime | None:
        """Clamp ``expires_at`` to the category's TTL ceiling."""
        ttl = self.resolve(path).default_ttl_days
        if ttl is None:
            return expires_at
        ceiling = now + timedelta(days=ttl)
        if expires_at is None:
            return ceiling
        return min(expires_at, ceiling)

