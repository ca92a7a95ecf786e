"""Tests for the memory document format."""

from datetime import datetime, timedelta, timezone

import pytest

from cortex.errors import ValidationError
from cortex.memory.document import (
    estimate_tokens,
    parse_memory,
    parse_timestamp,
    read_header,
    serialize_memory,
)
from cortex.memory.models import Memory

T0 = datetime(2026, 1, 1, 9, 30, tzinfo=timezone.utc)


class TestTokens:
    def test_estimate(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("   \n ") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2
        assert estimate_tokens("  " + "x" * 40 + "  ") == 10


class TestTimestamps:
    def test_z_suffix(self):
        assert parse_timestamp("2026-01-01T09:30:00Z") == T0

    def test_offset_converted_to_utc(self):
        assert parse_timestamp("2026-01-01T10:30:00+01:00") == T0

    def test_invalid(self):
        with pytest.raises(ValidationError) as exc:
            parse_timestamp("yesterday", "expires_at")
        assert exc.value.code == "INVALID_TIMESTAMP"


class TestRoundTrip:
    def test_full_metadata(self):
        memory = Memory.create(
            "docs/guides/setup",
            "Install steps\n\n- run make",
            created_at=T0,
            updated_at=T0 + timedelta(hours=2),
            tags=["infra", "setup"],
            source="mcp",
            citations=["docs/setup.md", "https://example.com/install"],
            expires_at=T0 + timedelta(days=30),
        )
        text = serialize_memory(memory)
        assert text.startswith("---\n")
        assert parse_memory("docs/guides/setup", text) == memory

    def test_minimal_metadata(self):
        memory = Memory.create("notes", "hello", created_at=T0)
        text = serialize_memory(memory)
        assert "expires_at" not in text
        assert "citations" not in text
        assert parse_memory("notes", text) == memory

    def test_custom_source(self):
        memory = Memory.create("notes", "hello", created_at=T0, source="import")
        assert parse_memory("notes", serialize_memory(memory)).metadata.source == "import"

    @pytest.mark.parametrize("source", ["", "   "])
    def test_blank_source_rejected(self, source):
        with pytest.raises(ValidationError) as exc:
            Memory.create("a/b", "body", created_at=T0, source=source)
        assert exc.value.code == "INVALID_INPUT"


class TestParse:
    def test_missing_header(self):
        with pytest.raises(ValidationError) as exc:
            parse_memory("notes", "just text")
        assert exc.value.code == "INVALID_DOCUMENT"

    def test_missing_updated_at(self):
        text = "---\ncreated_at: '2026-01-01T00:00:00+00:00'\n---\nbody\n"
        with pytest.raises(ValidationError) as exc:
            parse_memory("notes", text)
        assert exc.value.code == "INVALID_DOCUMENT"

    def test_malformed_yaml(self):
        with pytest.raises(ValidationError) as exc:
            parse_memory("notes", "---\ntags: [unclosed\n---\nbody\n")
        assert exc.value.code == "INVALID_DOCUMENT"


class TestReadHeader:
    def test_legacy_header_without_updated_at(self):
        header = read_header("---\ntags: [a]\n---\nsome body text\n")
        assert header.updated_at is None
        assert header.tags == ("a",)
        assert header.token_estimate == estimate_tokens("some body text")

    def test_unparseable_timestamp_is_none(self):
        header = read_header("---\nupdated_at: not-a-date\n---\nbody\n")
        assert header.updated_at is None

    def test_expires_at(self):
        header = read_header("---\nexpires_at: '2026-01-01T09:30:00Z'\n---\nbody\n")
        assert header.expires_at == T0

    def test_no_frontmatter(self):
        header = read_header("plain text")
        assert header.updated_at is None
        assert header.tags == ()
