# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Configuration loading and validation for the ACL context server."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from acl_context.paths import ACL_DIR_NAME

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.yml"

SUPPORTED_LANGUAGES = ("typescript", "javascript", "python", "go", "rust")


class ConfigurationError(Exception):
    """Raised when configuration validation fails critically."""

    pass


class Config:
    """Configuration for one workspace.

    Loads ``<workspace>/.acl/config.yml`` with validation and defaults.
    Unknown keys and invalid values are logged and ignored.
    """

    DEFAULTS: Dict[str, Any] = {
        "include_zones": [],
        "exclude_zones": [
            "node_modules",
            ".git",
            "dist",
            "build",
            "out",
            ".next",
            ".nuxt",
            "vendor",
            "__pycache__",
            ".venv",
            "venv",
            "target",
        ],
        "languages": list(SUPPORTED_LANGUAGES),
        "max_file_size_bytes": 1024 * 1024,
        "cache_max_skeletons": 5000,
        "cache_debounce_ms": 500,
        # Re-check store hits against the live file hash
        "store_hash_validation": True,
        "initial_scan": False,
        "related_max_results": 10,
        "server_name": "acl-mcp",
        "server_version": "0.1.0",
    }

    def __init__(self, workspace_path: Optional[Path] = None, config_path: Optional[Path] = None):
        """Initialize configuration.

        Args:
            workspace_path: Workspace root. If None, uses the current directory.
            config_path: Path to configuration file. If None, uses
                ``<workspace>/.acl/config.yml``.

        Raises:
            ConfigurationError: If the workspace path is not a directory.
        """
        if workspace_path is None:
            workspace_path = Path.cwd()
        workspace_path = Path(workspace_path).resolve()
        if not workspace_path.is_dir():
            raise ConfigurationError(f"Workspace is not a directory: {workspace_path}")

        self.workspace_path = workspace_path
        if config_path is None:
            config_path = workspace_path / ACL_DIR_NAME / CONFIG_FILE_NAME

        self.config_path = config_path
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _defaults(self) -> Dict[str, Any]:
        # Lists are copied so callers never mutate DEFAULTS
        return {k: list(v) if isinstance(v, list) else v for k, v in self.DEFAULTS.items()}

    def _load_config(self) -> None:
        """Load and validate configuration from file."""
        if not self.config_path.exists():
            logger.info(f"Configuration file not found at {self.config_path}, using defaults")
            self._config = self._defaults()
            return

        try:
            with open(self.config_path, encoding="utf-8") as f:
                loaded_config = yaml.safe_load(f)

            if loaded_config is None:
                logger.warning("Configuration file is empty, using defaults")
                self._config = self._defaults()
                return

            if not isinstance(loaded_config, dict):
                logger.warning(
                    f"Configuration file must contain a YAML dictionary, "
                    f"got {type(loaded_config)}, using defaults"
                )
                self._config = self._defaults()
                return

            self._config = self._defaults()
            self._validate_and_merge(loaded_config)

        except yaml.YAMLError as e:
            logger.warning(
                f"Error parsing configuration file {self.config_path}: {e}, using defaults"
            )
            self._config = self._defaults()
        except OSError as e:
            logger.warning(
                f"Could not read configuration file {self.config_path}: {e}, using defaults"
            )
            self._config = self._defaults()

    def _validate_and_merge(self, loaded_config: Dict[str, Any]) -> None:
        """Validate loaded configuration and merge with defaults."""
        for key, value in loaded_config.items():
            if key not in self.DEFAULTS:
                logger.warning(f"Unknown configuration parameter '{key}', ignoring")
                continue

            if not self._validate_parameter(key, value):
                logger.warning(
                    f"Invalid value for '{key}': {value}, using default {self.DEFAULTS[key]}"
                )
                continue

            self._config[key] = value

    def _validate_parameter(self, key: str, value: Any) -> bool:
        """Validate a configuration parameter.

        Returns:
            True if valid, False if invalid
        """
        expected_type = type(self.DEFAULTS[key])
        # bool is a subclass of int; reject True/False for numeric keys
        if expected_type is int and isinstance(value, bool):
            return False
        if not isinstance(value, expected_type):
            return False

        if key in (
            "max_file_size_bytes",
            "cache_max_skeletons",
            "related_max_results",
        ):
            return value > 0
        elif key == "cache_debounce_ms":
            return value >= 0
        elif key in ("include_zones", "exclude_zones"):
            return all(isinstance(zone, str) for zone in value)
        elif key == "languages":
            return all(lang in SUPPORTED_LANGUAGES for lang in value)
        elif key in ("server_name", "server_version"):
            return bool(value.strip())

        return True

    @property
    def include_zones(self) -> List[str]:
        """Subdirectories to include (relative paths). Empty means all."""
        value = self._config["include_zones"]
        assert isinstance(value, list)
        return value

    @property
    def exclude_zones(self) -> List[str]:
        """Subdirectories to exclude (relative paths)."""
        value = self._config["exclude_zones"]
        assert isinstance(value, list)
        return value

    @property
    def languages(self) -> List[str]:
        """Languages the skeleton parser is allowed to handle."""
        value = self._config["languages"]
        assert isinstance(value, list)
        return value

    @property
    def max_file_size_bytes(self) -> int:
        """Files above this size get a shell skeleton instead of a parse."""
        value = self._config["max_file_size_bytes"]
        assert isinstance(value, int)
        return value

    @property
    def cache_max_skeletons(self) -> int:
        """Capacity of the in-memory skeleton cache."""
        value = self._config["cache_max_skeletons"]
        assert isinstance(value, int)
        return value

    @property
    def cache_debounce_ms(self) -> int:
        """Quiet period before a change event invalidates a skeleton."""
        value = self._config["cache_debounce_ms"]
        assert isinstance(value, int)
        return value

    @property
    def store_hash_validation(self) -> bool:
        """Whether store hits are re-validated against the file's current hash."""
        value = self._config["store_hash_validation"]
        assert isinstance(value, bool)
        return value

    @property
    def initial_scan(self) -> bool:
        """Whether to warm the cache with every supported file at startup."""
        value = self._config["initial_scan"]
        assert isinstance(value, bool)
        return value

    @property
    def related_max_results(self) -> int:
        """Default number of related files returned per request."""
        value = self._config["related_max_results"]
        assert isinstance(value, int)
        return value

    @property
    def server_name(self) -> str:
        value = self._config["server_name"]
        assert isinstance(value, str)
        return value

    @property
    def server_version(self) -> str:
        value = self._config["server_version"]
        assert isinstance(value, str)
        return value

    @property
    def acl_dir(self) -> Path:
        """``<workspace>/.acl``, created on first use."""
        path = self.workspace_path / ACL_DIR_NAME
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def database_path(self) -> Path:
        return self.acl_dir / "context.db"

    @property
    def log_dir(self) -> Path:
        return self.acl_dir / "logs"


def get_workspace_from_env() -> Path:
    """Workspace root from ACL_WORKSPACE_PATH, WORKSPACE_PATH or the current directory."""
    value = os.environ.get("ACL_WORKSPACE_PATH") or os.environ.get("WORKSPACE_PATH")
    if value:
        return Path(value).resolve()
    return Path.cwd()
