"""Tests for memory entities, three-state updates and index entries."""

from datetime import datetime, timedelta, timezone

import pytest

from cortex.errors import ValidationError
from cortex.memory.models import (
    CLEAR,
    KEEP,
    CategoryIndex,
    Memory,
    MemoryEntry,
    MemoryUpdate,
    SetTo,
    field_update,
)
from cortex.memory.paths import CategoryPath, MemoryPath

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_memory(**overrides) -> Memory:
    kwargs = dict(created_at=T0, updated_at=T0, tags=["a"], citations=["src/app.py:1"])
    kwargs.update(overrides)
    return Memory.create("docs/setup", "Install steps", **kwargs)


class TestMemoryCreate:
    def test_defaults(self):
        memory = Memory.create("notes", "hello")
        assert memory.metadata.updated_at == memory.metadata.created_at
        assert memory.metadata.source == "user"
        assert memory.metadata.tags == ()

    def test_updated_before_created_rejected(self):
        with pytest.raises(ValidationError) as exc:
            make_memory(updated_at=T0 - timedelta(seconds=1))
        assert exc.value.code == "INVALID_TIMESTAMP"

    def test_naive_timestamps_are_utc(self):
        memory = make_memory(created_at=datetime(2026, 1, 1), updated_at=datetime(2026, 1, 1))
        assert memory.metadata.created_at == T0

    def test_tags_deduplicated_in_order(self):
        memory = make_memory(tags=["b", "a", "b"])
        assert memory.metadata.tags == ("b", "a")

    def test_tag_order_ignored_for_equality(self):
        assert make_memory(tags=["a", "b"]) == make_memory(tags=["b", "a"])

    @pytest.mark.parametrize("tags", ["infra", [""], [1]])
    def test_invalid_tags(self, tags):
        with pytest.raises(ValidationError) as exc:
            make_memory(tags=tags)
        assert exc.value.code == "INVALID_TAGS"

    def test_invalid_citations(self):
        with pytest.raises(ValidationError) as exc:
            make_memory(citations=["  "])
        assert exc.value.code == "INVALID_CITATIONS"

    def test_is_expired(self):
        memory = make_memory(expires_at=T0 + timedelta(days=1))
        assert not memory.is_expired(T0)
        assert memory.is_expired(T0 + timedelta(days=1))
        assert not make_memory().is_expired(T0 + timedelta(days=365))


class TestMemoryUpdate:
    def test_field_update_states(self):
        payload = {"tags": None, "content": "x"}
        assert field_update(payload, "citations") is KEEP
        assert field_update(payload, "tags") is CLEAR
        assert field_update(payload, "content") == SetTo("x")

    def test_has_changes(self):
        assert not MemoryUpdate().has_changes
        assert MemoryUpdate(tags=CLEAR).has_changes

    def test_apply_keep_clear_set(self):
        memory = make_memory(expires_at=T0 + timedelta(days=3))
        now = T0 + timedelta(hours=1)
        updated = MemoryUpdate(tags=SetTo(["infra"]), citations=CLEAR).apply(memory, now)
        assert updated.content == "Install steps"
        assert updated.metadata.tags == ("infra",)
        assert updated.metadata.citations == ()
        assert updated.metadata.expires_at == T0 + timedelta(days=3)
        assert updated.metadata.created_at == T0
        assert updated.metadata.updated_at == now

    def test_clear_expiry(self):
        memory = make_memory(expires_at=T0 + timedelta(days=3))
        updated = MemoryUpdate.from_payload({"expires_at": None}).apply(memory, T0)
        assert updated.metadata.expires_at is None

    def test_content_cannot_be_cleared(self):
        with pytest.raises(ValidationError):
            MemoryUpdate(content=CLEAR).apply(make_memory(), T0)

    def test_updated_at_never_before_created_at(self):
        updated = MemoryUpdate(content=SetTo("x")).apply(make_memory(), T0 - timedelta(days=1))
        assert updated.metadata.updated_at == T0


class TestCategoryIndex:
    def test_repeated_upserts_keep_one_entry(self):
        index = CategoryIndex()
        for i in range(5):
            # A fresh path object each time.
            index.upsert_memory(MemoryEntry(MemoryPath.parse("docs/setup"), token_estimate=i))
        assert len(index.memories) == 1
        assert index.memories[0].token_estimate == 4

    def test_remove_memory_by_value(self):
        index = CategoryIndex()
        index.upsert_memory(MemoryEntry(MemoryPath.parse("docs/setup"), 1))
        assert index.remove_memory(MemoryPath.parse("docs/setup"))
        assert not index.remove_memory(MemoryPath.parse("docs/setup"))
        assert index.memories == []

    def test_upsert_subcategory_keeps_description(self):
        index = CategoryIndex()
        path = CategoryPath.parse("docs/guides")
        index.upsert_subcategory(path, memory_count=0, description="How-tos")
        index.upsert_subcategory(CategoryPath.parse("docs/guides"), memory_count=3)
        assert len(index.subcategories) == 1
        entry = index.find_subcategory(path)
        assert entry.memory_count == 3
        assert entry.description == "How-tos"

    def test_upsert_subcategory_clears_description(self):
        index = CategoryIndex()
        path = CategoryPath.parse("docs")
        index.upsert_subcategory(path, description="x")
        index.upsert_subcategory(path, description=None)
        assert index.find_subcategory(path).description is None
