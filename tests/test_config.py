# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest
import yaml

from acl_context.config import Config, ConfigurationError, get_workspace_from_env


def _write_config(workspace: Path, data) -> Path:
    acl_dir = workspace / ".acl"
    acl_dir.mkdir(exist_ok=True)
    config_path = acl_dir / "config.yml"
    with open(config_path, "w") as f:
        yaml.dump(data, f)
    return config_path


def test_default_config_when_file_missing(tmp_path: Path):
    """Defaults are used when the workspace has no config file."""
    config = Config(tmp_path)

    assert config.workspace_path == tmp_path.resolve()
    assert config.include_zones == []
    assert "node_modules" in config.exclude_zones
    assert config.languages == ["typescript", "javascript", "python", "go", "rust"]
    assert config.max_file_size_bytes == 1024 * 1024
    assert config.cache_max_skeletons == 5000
    assert config.cache_debounce_ms == 500
    assert config.store_hash_validation is True
    assert config.initial_scan is False
    assert config.related_max_results == 10
    assert config.server_name == "acl-mcp"


def test_valid_config_loading(tmp_path: Path):
    _write_config(
        tmp_path,
        {
            "include_zones": ["src"],
            "languages": ["typescript"],
            "cache_max_skeletons": 100,
            "cache_debounce_ms": 0,
            "store_hash_validation": False,
        },
    )

    config = Config(tmp_path)

    assert config.include_zones == ["src"]
    assert config.languages == ["typescript"]
    assert config.cache_max_skeletons == 100
    assert config.cache_debounce_ms == 0
    assert config.store_hash_validation is False
    # Unspecified values keep defaults
    assert config.max_file_size_bytes == 1024 * 1024


def test_invalid_parameter_values(tmp_path: Path):
    """Invalid values are rejected and defaults used."""
    _write_config(
        tmp_path,
        {
            "cache_max_skeletons": 0,
            "cache_debounce_ms": -1,
            "max_file_size_bytes": True,
            "languages": ["cobol"],
            "exclude_zones": "node_modules",
            "server_name": "   ",
        },
    )

    config = Config(tmp_path)

    assert config.cache_max_skeletons == 5000
    assert config.cache_debounce_ms == 500
    assert config.max_file_size_bytes == 1024 * 1024
    assert "cobol" not in config.languages
    assert isinstance(config.exclude_zones, list)
    assert config.server_name == "acl-mcp"


def test_unknown_keys_ignored(tmp_path: Path):
    _write_config(tmp_path, {"not_a_setting": 1, "related_max_results": 3})
    config = Config(tmp_path)
    assert config.related_max_results == 3


@pytest.mark.parametrize("content", ["", "- just\n- a list\n", "key: [unclosed\n"])
def test_unusable_config_file_falls_back_to_defaults(tmp_path: Path, content: str):
    """Empty, non-dict and malformed YAML all yield defaults."""
    acl_dir = tmp_path / ".acl"
    acl_dir.mkdir()
    (acl_dir / "config.yml").write_text(content)

    config = Config(tmp_path)

    assert config.cache_max_skeletons == 5000


def test_defaults_are_not_shared(tmp_path: Path):
    """Mutating one config's lists does not leak into another."""
    first = Config(tmp_path)
    first.exclude_zones.append("custom")
    second = Config(tmp_path)
    assert "custom" not in second.exclude_zones
    assert "custom" not in Config.DEFAULTS["exclude_zones"]


def test_workspace_must_be_directory(tmp_path: Path):
    with pytest.raises(ConfigurationError):
        Config(tmp_path / "missing")


def test_derived_paths(tmp_path: Path):
    config = Config(tmp_path)
    assert config.database_path == tmp_path.resolve() / ".acl" / "context.db"
    assert config.log_dir == tmp_path.resolve() / ".acl" / "logs"
    assert (tmp_path / ".acl").is_dir()


def test_explicit_config_path(tmp_path: Path):
    config_path = tmp_path / "custom.yml"
    config_path.write_text("related_max_results: 7\n")
    config = Config(tmp_path, config_path=config_path)
    assert config.related_max_results == 7


def test_get_workspace_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("ACL_WORKSPACE_PATH", raising=False)
    monkeypatch.setenv("WORKSPACE_PATH", str(tmp_path))
    assert get_workspace_from_env() == tmp_path.resolve()

    primary = tmp_path / "primary"
    primary.mkdir()
    monkeypatch.setenv("ACL_WORKSPACE_PATH", str(primary))
    assert get_workspace_from_env() == primary.resolve()

    monkeypatch.delenv("ACL_WORKSPACE_PATH")
    monkeypatch.delenv("WORKSPACE_PATH")
    monkeypatch.chdir(tmp_path)
    assert get_workspace_from_env() == Path.cwd()
