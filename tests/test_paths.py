"""Tests for slugs and path value types."""

import pytest

from cortex.errors import ValidationError
from cortex.memory.paths import CategoryPath, MemoryPath, Slug, is_valid_slug, slugify


class TestSlug:
    @pytest.mark.parametrize("value", ["a", "docs", "setup-guide", "v2", "a-1-b"])
    def test_valid(self, value):
        assert is_valid_slug(value)
        assert str(Slug(value)) == value

    @pytest.mark.parametrize("value", ["", "Docs", "a_b", "-a", "a-", "a--b", "a b", "é"])
    def test_invalid(self, value):
        assert not is_valid_slug(value)
        with pytest.raises(ValidationError) as exc:
            Slug(value)
        assert exc.value.code == "INVALID_SLUG"

    def test_slugify(self):
        assert slugify("My Project_Name!") == "my-project-name"
        assert slugify("  --a   b--  ") == "a-b"
        assert slugify("!!!") == ""


class TestCategoryPath:
    def test_root(self):
        root = CategoryPath.parse("")
        assert root.is_root
        assert root.depth == 0
        assert root.parent is None
        assert CategoryPath.parse("/") == CategoryPath.root()

    def test_parse(self):
        path = CategoryPath.parse("docs/guides/")
        assert str(path) == "docs/guides"
        assert path.depth == 2
        assert path.name == "guides"
        assert path.parent == CategoryPath.parse("docs")
        assert path.top == CategoryPath.parse("docs")

    def test_empty_segment_rejected(self):
        with pytest.raises(ValidationError) as exc:
            CategoryPath.parse("docs//guides")
        assert exc.value.code == "INVALID_PATH"

    def test_invalid_segment_rejected(self):
        with pytest.raises(ValidationError) as exc:
            CategoryPath.parse("docs/Guides")
        assert exc.value.code == "INVALID_PATH"

    def test_distinct_instances_compare_equal(self):
        a = CategoryPath.parse("docs/guides")
        b = CategoryPath(["docs", "guides"])
        assert a is not b
        assert a == b
        assert hash(a) == hash(b)
        assert len({a, b}) == 1
        assert {a: 1}[b] == 1

    def test_ancestors_and_child(self):
        path = CategoryPath.parse("a/b/c")
        assert [str(p) for p in path.ancestors()] == ["a", "a/b"]
        assert CategoryPath.parse("a").child("b") == CategoryPath.parse("a/b")

    def test_is_within(self):
        path = CategoryPath.parse("a/b")
        assert path.is_within(CategoryPath.root())
        assert path.is_within(CategoryPath.parse("a"))
        assert path.is_within(path)
        assert not path.is_within(CategoryPath.parse("a/b/c"))
        assert not CategoryPath.parse("ab").is_within(CategoryPath.parse("a"))


class TestMemoryPath:
    def test_parse(self):
        path = MemoryPath.parse("docs/guides/setup")
        assert path.category == CategoryPath.parse("docs/guides")
        assert str(path.slug) == "setup"
        assert str(path) == "docs/guides/setup"

    def test_root_level_memory(self):
        path = MemoryPath.parse("notes")
        assert path.category.is_root
        assert str(path) == "notes"

    def test_distinct_instances_compare_equal(self):
        a = MemoryPath.parse("docs/setup")
        b = MemoryPath(CategoryPath(["docs"]), "setup")
        assert a == b
        assert hash(a) == hash(b)

    def test_memory_and_category_paths_differ(self):
        assert MemoryPath.parse("docs/setup") != CategoryPath.parse("docs/setup")

    @pytest.mark.parametrize("text", ["", "/", "docs/Setup", "docs/a_b"])
    def test_invalid(self, text):
        with pytest.raises(ValidationError) as exc:
            MemoryPath.parse(text)
        assert exc.value.code == "INVALID_PATH"
