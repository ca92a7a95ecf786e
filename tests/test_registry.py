"""Tests for the store registry and store resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from cortex.errors import AlreadyExistsError, StoreResolutionError
from cortex.registry import LOCAL_STORE_DIR, Registry, local_store_root
from cortex.storage.filesystem import FilesystemStorage


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ("CORTEX_DEFAULT_STORE", "CORTEX_STRICT_LOCAL", "CORTEX_OUTPUT_FORMAT"):
        monkeypatch.delenv(key, raising=False)


def write_config(path: Path, body: str) -> Path:
    path.write_text(body)
    return path


class TestLookup:
    def test_get_store_before_load(self, tmp_path: Path):
        registry = Registry(tmp_path / "config.yaml")
        assert not registry.ready
        with pytest.raises(StoreResolutionError) as exc:
            registry.get_store("default")
        assert exc.value.code == "STORE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_unknown_store_lists_known(self, tmp_path: Path):
        config = write_config(
            tmp_path / "config.yaml",
            f"stores:\n  work:\n    path: {tmp_path / 'work'}\n"
            f"  home:\n    path: {tmp_path / 'home'}\n",
        )
        registry = Registry(config)
        await registry.load()
        assert registry.ready
        with pytest.raises(StoreResolutionError) as exc:
            registry.get_store("play")
        assert "home, work" in str(exc.value)
        assert [s.name for s in registry.list_stores()] == ["home", "work"]


class TestMutation:
    @pytest.mark.asyncio
    async def test_add_and_remove_persisted(self, tmp_path: Path):
        config_path = tmp_path / "config.yaml"
        registry = Registry(config_path)
        await registry.add_store("work", tmp_path / "work", "Work notes")
        assert config_path.is_file()

        reloaded = Registry(config_path)
        await reloaded.load()
        assert reloaded.get_store("work").description == "Work notes"

        with pytest.raises(AlreadyExistsError) as exc:
            await reloaded.add_store("work", tmp_path / "other")
        assert exc.value.code == "STORE_ALREADY_EXISTS"

        removed = await reloaded.remove_store("work")
        assert removed.path == tmp_path / "work"
        assert (tmp_path / "work").exists() is False  # never created, never touched
        assert not (await Registry(config_path).load()).stores


class TestResolve:
    @pytest.fixture
    def registry(self, tmp_path: Path) -> Registry:
        config = write_config(
            tmp_path / "config.yaml",
            f"stores:\n  default:\n    path: {tmp_path / 'global'}\n"
            f"  work:\n    path: {tmp_path / 'work'}\n",
        )
        return Registry(config)

    @pytest.mark.asyncio
    async def test_explicit_name_wins(self, registry: Registry, tmp_path: Path):
        project = tmp_path / "project"
        (project / LOCAL_STORE_DIR).mkdir(parents=True)
        store = await registry.resolve_store("work", cwd=project)
        assert store.name == "work"

    @pytest.mark.asyncio
    async def test_local_store(self, registry: Registry, tmp_path: Path):
        project = tmp_path / "my-project"
        root = local_store_root(project)
        root.mkdir(parents=True)
        store = await registry.resolve_store(cwd=project)
        assert store.path == root
        assert store.name == "my-project"

    @pytest.mark.asyncio
    async def test_local_store_definition_file(self, registry: Registry, tmp_path: Path):
        project = tmp_path / "project"
        root = local_store_root(project)
        root.mkdir(parents=True)
        (root / "store.yaml").write_text("name: notes\ndescription: Project notes\n")
        store = await registry.resolve_store(cwd=project)
        assert store.name == "notes"
        assert store.description == "Project notes"
        assert store.path == root

    @pytest.mark.asyncio
    async def test_falls_back_to_default(self, registry: Registry, tmp_path: Path):
        store = await registry.resolve_store(cwd=tmp_path / "elsewhere")
        assert store.name == "default"

    @pytest.mark.asyncio
    async def test_strict_local(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("CORTEX_STRICT_LOCAL", "1")
        registry = Registry(tmp_path / "config.yaml")
        with pytest.raises(StoreResolutionError) as exc:
            await registry.resolve_store(cwd=tmp_path)
        assert exc.value.code == "LOCAL_STORE_MISSING"

    @pytest.mark.asyncio
    async def test_global_store_missing(self, tmp_path: Path):
        registry = Registry(tmp_path / "config.yaml")
        with pytest.raises(StoreResolutionError) as exc:
            await registry.resolve_store(cwd=tmp_path)
        assert exc.value.code == "GLOBAL_STORE_MISSING"

    @pytest.mark.asyncio
    async def test_custom_storage_factory(self, tmp_path: Path):
        seen = []

        def factory(root: Path) -> FilesystemStorage:
            seen.append(root)
            return FilesystemStorage(root)

        registry = Registry(tmp_path / "config.yaml", storage_factory=factory)
        project = tmp_path / "project"
        local_store_root(project).mkdir(parents=True)
        await registry.resolve_store(cwd=project)
        assert seen == [local_store_root(project)]
