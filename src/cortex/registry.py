"""Store registry and store resolution.

The registry maps store names to roots and is loaded once from config.yaml.
``get_store`` is synchronous and only valid after :meth:`Registry.load`;
load at startup, before any concurrent use.

Resolution order: explicit name, then a local store at
``<cwd>/.cortex/memory``, then the configured default store. With
``strict_local`` set, a missing local store is an error instead of a
fallback.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Callable

from cortex.config import CortexConfig, StoreDefinition, load_config, save_config
from cortex.errors import AlreadyExistsError, StoreResolutionError
from cortex.memory.paths import slugify
from cortex.storage.base import StorageAdapter
from cortex.storage.filesystem import FilesystemStorage

logger = logging.getLogger(__name__)

LOCAL_STORE_DIR = Path(".cortex") / "memory"

StorageFactory = Callable[[Path], StorageAdapter]


def local_store_root(cwd: Path | str | None = None) -> Path:
    return Path(cwd or Path.cwd()) / LOCAL_STORE_DIR


class Registry:
    """Name → store mapping backed by the configuration file."""

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        storage_factory: StorageFactory = FilesystemStorage,
    ) -> None:
        self.config_path = config_path
        self.storage_factory = storage_factory
        self._config: CortexConfig | None = None

    @property
    def ready(self) -> bool:
        return self._config is not None

    @property
    def config(self) -> CortexConfig:
        if self._config is None:
            raise StoreResolutionError(
                "Store registry has not been loaded yet; call Registry.load() first.",
                code="STORE_NOT_FOUND",
            )
        return self._config

    async def load(self) -> CortexConfig:
        """Read the configuration once. Subsequent calls return the cached copy."""
        if self._config is None:
            self._config = await asyncio.to_thread(load_config, self.config_path)
            logger.debug("Loaded %d store(s) from %s", len(self._config.stores), self._config.path)
        return self._config

    # ── Lookup ───────────────────────────────────────────────

    def _known(self) -> str:
        if self._config is None or not self._config.stores:
            return "none"
        return ", ".join(sorted(self._config.stores))

    def get_store(self, name: str) -> StoreDefinition:
        if self._config is None:
            raise StoreResolutionError(
                f"Store '{name}' is unavailable: the registry has not been loaded. "
                "Call Registry.load() before get_store().",
                code="STORE_NOT_FOUND",
            )
        definition = self._config.stores.get(name)
        if definition is None:
            raise StoreResolutionError(
                f"Store '{name}' is not registered. Known stores: {self._known()}. "
                f"Register it with `cortex store add {name} <absolute-path>`.",
                code="STORE_NOT_FOUND",
            )
        return definition

    def has_store(self, name: str) -> bool:
        return self._config is not None and name in self._config.stores

    def list_stores(self) -> list[StoreDefinition]:
        return [self.config.stores[name] for name in sorted(self.config.stores)]

    # ── Mutation ─────────────────────────────────────────────

    async def add_store(
        self, name: str, path: Path | str, description: str | None = None
    ) -> StoreDefinition:
        config = await self.load()
        if name in config.stores:
            raise AlreadyExistsError(
                f"Store '{name}' is already registered at {config.stores[name].path}.",
                code="STORE_ALREADY_EXISTS",
            )
        definition = StoreDefinition(name=name, path=Path(path), description=description)
        config.stores[name] = definition
        await asyncio.to_thread(save_config, config, self.config_path)
        logger.info("Registered store %s at %s", name, definition.path)
        return definition

    async def remove_store(self, name: str) -> StoreDefinition:
        """Unregister a store. Its files are left untouched."""
        config = await self.load()
        definition = self.get_store(name)
        del config.stores[name]
        await asyncio.to_thread(save_config, config, self.config_path)
        logger.info("Unregistered store %s", name)
        return definition

    # ── Resolution ───────────────────────────────────────────

    async def _local_store(self, cwd: Path) -> StoreDefinition | None:
        root = local_store_root(cwd)
        if not root.is_dir():
            return None
        definition = await self.storage_factory(root).stores.load()
        if definition is None:
            definition = StoreDefinition(name=slugify(cwd.name) or "local", path=root)
        return definition

    async def resolve_store(
        self, name: str | None = None, cwd: Path | str | None = None
    ) -> StoreDefinition:
        config = await self.load()
        if name:
            return self.get_store(name)

        cwd = Path(cwd or Path.cwd())
        local = await self._local_store(cwd)
        if local is not None:
            return local
        if config.settings.strict_local:
            raise StoreResolutionError(
                f"No local store at {local_store_root(cwd)} and strict_local is enabled. "
                "Run `cortex init` in this directory or disable strict_local.",
                code="LOCAL_STORE_MISSING",
                path=str(local_store_root(cwd)),
            )
        default = config.settings.default_store
        if not self.has_store(default):
            raise StoreResolutionError(
                f"Default store '{default}' is not registered. Known stores: {self._known()}. "
                "Run `cortex init --global` or set settings.default_store.",
                code="GLOBAL_STORE_MISSING",
            )
        return self.get_store(default)
