"""Smoke tests for the command line."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from cortex.__main__ import main


@pytest.fixture
def cli(tmp_path: Path, monkeypatch, capsys):
    for key in ("CORTEX_OUTPUT_FORMAT", "CORTEX_DEFAULT_STORE", "CORTEX_STRICT_LOCAL"):
        monkeypatch.delenv(key, raising=False)
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.chdir(project)
    config = tmp_path / "config.yaml"

    def run(*argv: str) -> tuple[int, str, str]:
        code = main(["--config", str(config), *argv])
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    return run


class TestCli:
    def test_local_store_workflow(self, cli, tmp_path: Path):
        code, out, _ = cli("init")
        assert code == 0
        assert yaml.safe_load(out)["created"] is True
        assert (tmp_path / "project" / ".cortex" / "memory" / "human").is_dir()

        code, _, _ = cli("memory", "add", "docs/guides/setup", "--content", "Install steps",
                         "--tags", "infra, setup")
        assert code == 0

        code, out, _ = cli("--format", "json", "memory", "show", "docs/guides/setup")
        assert code == 0
        shown = json.loads(out)
        assert shown["content"] == "Install steps"
        assert shown["tags"] == ["infra", "setup"]

        code, out, _ = cli("memory", "update", "docs/guides/setup", "--clear-tags")
        assert code == 0
        assert yaml.safe_load(out)["updated"]["tags"] == []

        code, out, _ = cli("memory", "list", "docs/guides")
        assert [m["path"] for m in yaml.safe_load(out)["memories"]] == ["docs/guides/setup"]

    def test_error_exit_code(self, cli):
        cli("init")
        code, out, err = cli("memory", "show", "docs/missing")
        assert code == 1
        assert out == ""
        assert "MEMORY_NOT_FOUND" in err

    def test_protected_category(self, cli):
        cli("init")
        code, _, err = cli("category", "delete", "human")
        assert code == 1
        assert "ROOT_CATEGORY_REJECTED" in err

    def test_store_add_and_list(self, cli, tmp_path: Path):
        code, _, _ = cli("store", "add", "work", str(tmp_path / "work"))
        assert code == 0
        code, out, _ = cli("store", "list")
        stores = yaml.safe_load(out)["stores"]
        assert [s["name"] for s in stores] == ["work"]

    def test_no_store_available(self, cli):
        code, _, err = cli("memory", "list")
        assert code == 1
        assert "GLOBAL_STORE_MISSING" in err
