"""Tests for category policy parsing, inheritance and enforcement."""

from datetime import datetime, timedelta, timezone

import pytest

from cortex.errors import ProtectedResourceError, ValidationError
from cortex.memory.paths import CategoryPath
from cortex.policy import (
    CategoryRules,
    ResolvedPolicy,
    parse_category_tree,
    resolve_policy,
    validate_description,
)

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)

TREE = parse_category_tree(
    {
        "standards": {
            "description": "Coding standards",
            "policy": {
                "default_ttl_days": 30,
                "max_content_length": 100,
                "permissions": {"delete": False},
            },
            "subcategories": {
                "architecture": {
                    "policy": {"max_content_length": 500, "permissions": {"update": False}}
                },
                "frozen": {"policy": {"subcategory_creation": False}},
            },
        },
        "scratch": {},
    }
)


def cat(text: str) -> CategoryPath:
    return CategoryPath.parse(text)


class TestParse:
    def test_tree(self):
        assert set(TREE) == {"standards", "scratch"}
        assert TREE["standards"].description == "Coding standards"
        assert TREE["standards"].policy.delete is False
        assert TREE["standards"].policy.create is None

    @pytest.mark.parametrize(
        "policy",
        [
            {"default_ttl_days": 0},
            {"default_ttl_days": "30"},
            {"max_content_length": True},
            {"permissions": {"create": "yes"}},
            {"permissions": {"share": True}},
            {"unknown": 1},
        ],
    )
    def test_invalid_policy(self, policy):
        with pytest.raises(ValidationError) as exc:
            parse_category_tree({"docs": {"policy": policy}})
        assert exc.value.code == "INVALID_POLICY"

    def test_invalid_category_name(self):
        with pytest.raises(ValidationError) as exc:
            parse_category_tree({"Docs": {}})
        assert exc.value.code == "INVALID_SLUG"

    def test_description_too_long(self):
        with pytest.raises(ValidationError) as exc:
            validate_description("x" * 501)
        assert exc.value.code == "DESCRIPTION_TOO_LONG"
        assert validate_description("x" * 500) == "x" * 500

    def test_blank_description_clears(self):
        assert validate_description("   ") is None
        assert validate_description("  text  ") == "text"


class TestInheritance:
    def test_inherits_from_nearest_ancestor(self):
        policy = resolve_policy(cat("standards/architecture"), TREE)
        assert policy.max_content_length == 500  # own value
        assert policy.default_ttl_days == 30  # from standards
        assert policy.delete is False  # from standards
        assert policy.update is False  # own value
        assert policy.create is True  # default

    def test_undeclared_descendant_inherits(self):
        policy = resolve_policy(cat("standards/architecture/adr/old"), TREE)
        assert policy.max_content_length == 500
        assert policy.default_ttl_days == 30

    def test_undeclared_tree_is_permissive(self):
        assert resolve_policy(cat("notes/misc"), TREE) == ResolvedPolicy()
        assert resolve_policy(cat("scratch"), TREE) == ResolvedPolicy()
        assert resolve_policy(CategoryPath.root(), TREE) == ResolvedPolicy()


class TestRules:
    def test_protected_means_declared(self):
        rules = CategoryRules(categories=TREE)
        assert rules.is_protected(cat("standards"))
        assert rules.is_protected(cat("standards/architecture"))
        assert not rules.is_protected(cat("standards/architecture/adr"))
        assert not rules.is_protected(cat("notes"))

    def test_free_mode(self):
        CategoryRules(categories=TREE).validate_category_creation(cat("anything/goes"))

    def test_subcategories_mode(self):
        rules = CategoryRules(mode="subcategories", categories=TREE)
        rules.validate_category_creation(cat("standards/new"))
        with pytest.raises(ProtectedResourceError) as exc:
            rules.validate_category_creation(cat("random"))
        assert exc.value.code == "ROOT_CATEGORY_NOT_ALLOWED"

    def test_strict_mode(self):
        rules = CategoryRules(mode="strict", categories=TREE)
        rules.validate_category_creation(cat("standards/architecture"))
        with pytest.raises(ProtectedResourceError) as exc:
            rules.validate_category_creation(cat("standards/new"))
        assert exc.value.code == "CATEGORY_PROTECTED"
        assert not rules.can_create_category(cat("standards/new"))

    def test_subcategory_creation_disabled(self):
        rules = CategoryRules(categories=TREE)
        with pytest.raises(ProtectedResourceError) as exc:
            rules.validate_category_creation(cat("standards/frozen/new"))
        assert exc.value.code == "PERMISSION_DENIED"

    def test_unknown_mode(self):
        with pytest.raises(ValidationError):
            CategoryRules(mode="loose")

    def test_permissions(self):
        rules = CategoryRules(categories=TREE)
        rules.validate_operation("create", cat("standards"))
        with pytest.raises(ProtectedResourceError) as exc:
            rules.validate_operation("delete", cat("standards/architecture"))
        assert exc.value.code == "PERMISSION_DENIED"

    def test_content_length(self):
        rules = CategoryRules(categories=TREE)
        rules.validate_content(cat("standards"), "x" * 100)
        with pytest.raises(ValidationError) as exc:
            rules.validate_content(cat("standards"), "x" * 101)
        assert exc.value.code == "CONTENT_TOO_LONG"

    def test_ttl_ceiling(self):
        rules = CategoryRules(categories=TREE)
        ceiling = NOW + timedelta(days=30)
        assert rules.apply_ttl(cat("standards"), None, NOW) == ceiling
        assert rules.apply_ttl(cat("standards"), NOW + timedelta(days=90), NOW) == ceiling
        sooner = NOW + timedelta(days=1)
        assert rules.apply_ttl(cat("standards"), sooner, NOW) == sooner
        assert rules.apply_ttl(cat("notes"), None, NOW) is None
