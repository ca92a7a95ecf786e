"""Tests for configuration loading."""

import pytest
from pathlib import Path

from cortex.config import (
    CortexConfig,
    StoreDefinition,
    default_config_dir,
    load_config,
    save_config,
)
from cortex.errors import ConfigError, ValidationError
from cortex.memory.paths import CategoryPath

ENV_KEYS = [
    "CORTEX_OUTPUT_FORMAT",
    "CORTEX_DEFAULT_STORE",
    "CORTEX_STRICT_LOCAL",
    "CORTEX_LOG_LEVEL",
    "CORTEX_CONFIG_DIR",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestConfig:
    def test_defaults(self, tmp_path: Path):
        config = load_config(tmp_path / "missing.yaml")
        assert config.settings.output_format == "yaml"
        assert config.settings.default_store == "default"
        assert config.settings.strict_local is False
        assert config.stores == {}

    def test_config_dir_override(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("CORTEX_CONFIG_DIR", str(tmp_path))
        assert default_config_dir() == tmp_path
        (tmp_path / "config.yaml").write_text("settings:\n  default_store: work\n")
        assert load_config().settings.default_store == "work"

    def test_yaml_file(self, tmp_path: Path):
        store_root = tmp_path / "memory"
        config_path = tmp_path / "config.yaml"
        config_path.write_text(f"""
settings:
  output_format: json
  strict_local: true
stores:
  default:
    path: {store_root}
    description: Personal notes
    category_mode: subcategories
    categories:
      standards:
        policy:
          default_ttl_days: 30
""")
        config = load_config(config_path)
        assert config.settings.output_format == "json"
        assert config.settings.strict_local is True
        store = config.stores["default"]
        assert store.path == store_root
        assert store.description == "Personal notes"
        assert store.rules.mode == "subcategories"
        assert store.rules.resolve(CategoryPath.parse("standards")).default_ttl_days == 30

    def test_env_overrides_yaml(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("CORTEX_OUTPUT_FORMAT", "json")
        monkeypatch.setenv("CORTEX_STRICT_LOCAL", "yes")
        config_path = tmp_path / "config.yaml"
        config_path.write_text("settings:\n  output_format: yaml\n  strict_local: false\n")
        config = load_config(config_path)
        assert config.settings.output_format == "json"  # env wins
        assert config.settings.strict_local is True

    def test_invalid_env_flag(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("CORTEX_STRICT_LOCAL", "maybe")
        with pytest.raises(ConfigError):
            load_config(tmp_path / "missing.yaml")

    def test_relative_store_path_rejected(self, tmp_path: Path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text("stores:\n  default:\n    path: relative/dir\n")
        with pytest.raises(ValidationError) as exc:
            load_config(config_path)
        assert exc.value.code == "INVALID_STORE_PATH"

    def test_invalid_store_name(self, tmp_path: Path):
        with pytest.raises(ValidationError) as exc:
            StoreDefinition(name="My Store", path=tmp_path)
        assert exc.value.code == "INVALID_STORE_NAME"

    def test_unparseable_yaml(self, tmp_path: Path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text("settings: [unclosed\n")
        with pytest.raises(ConfigError) as exc:
            load_config(config_path)
        assert exc.value.code == "CONFIG_PARSE_FAILED"

    def test_invalid_output_format(self, tmp_path: Path):
        config_path = tmp_path / "config.yaml"
        config_path.write_text("settings:\n  output_format: xml\n")
        with pytest.raises(ConfigError) as exc:
            load_config(config_path)
        assert exc.value.code == "CONFIG_VALIDATION_FAILED"

    def test_save_roundtrip(self, tmp_path: Path):
        config = CortexConfig()
        config.settings.default_store = "work"
        config.stores["work"] = StoreDefinition(
            name="work", path=tmp_path / "work", description="Work notes"
        )
        config_path = save_config(config, tmp_path / "nested" / "config.yaml")
        assert config_path.is_file()
        loaded = load_config(config_path)
        assert loaded.settings.default_store == "work"
        assert loaded.stores["work"].path == tmp_path / "work"
        assert loaded.stores["work"].description == "Work notes"
