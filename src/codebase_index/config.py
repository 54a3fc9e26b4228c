# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Configuration loading and validation for codebase indexing."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".codebase_index.yml"

OUTPUT_FORMATS = ("json", "cbor")
OPTIMIZATION_MODES = ("in_place", "indexed")


class ConfigurationError(Exception):
    """Raised when configuration validation fails critically."""

    pass


class Config:
    """Configuration for an indexing run.

    Loads configuration from .codebase_index.yml with validation and defaults.
    Explicit overrides (e.g. from command-line flags) are applied on top of the
    file and must be valid.
    """

    DEFAULTS = {
        "output_format": "json",
        "compress_output": True,
        "indent_json": True,
        "optimization_mode": "in_place",
        "max_workers": 4,
        "max_file_size_bytes": 10 * 1024 * 1024,
        "ignore_patterns": [],
        "include_private_members": False,
        "include_protected_members": True,
        "count_tokens": True,
        "token_encoding": "cl100k_base",
    }

    def __init__(self, config_path: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None):
        """Initialize configuration.

        Args:
            config_path: Path to configuration file. If None, uses default location.
            overrides: Values taking precedence over the file.

        Raises:
            ConfigurationError: If an override is unknown or invalid.
        """
        if config_path is None:
            config_path = Path.cwd() / CONFIG_FILE_NAME

        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._load_config()

        for key, value in (overrides or {}).items():
            if key not in self.DEFAULTS:
                raise ConfigurationError(f"Unknown configuration parameter '{key}'")
            if not self._validate_parameter(key, value):
                raise ConfigurationError(f"Invalid value for '{key}': {value!r}")
            self._config[key] = value

    def _load_config(self) -> None:
        """Load and validate configuration from file."""
        if not self.config_path.exists():
            logger.info(f"Configuration file not found at {self.config_path}, using defaults")
            self._config = self.DEFAULTS.copy()
            return

        try:
            with open(self.config_path, encoding="utf-8") as f:
                loaded_config = yaml.safe_load(f)

            if loaded_config is None:
                logger.warning("Configuration file is empty, using defaults")
                self._config = self.DEFAULTS.copy()
                return

            if not isinstance(loaded_config, dict):
                logger.warning(
                    f"Configuration file must contain a YAML dictionary, "
                    f"got {type(loaded_config)}, using defaults"
                )
                self._config = self.DEFAULTS.copy()
                return

            self._config = self.DEFAULTS.copy()
            self._validate_and_merge(loaded_config)

        except yaml.YAMLError as e:
            logger.warning(
                f"Error parsing configuration file {self.config_path}: {e}, using defaults"
            )
            self._config = self.DEFAULTS.copy()
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(
                f"Cannot read configuration file {self.config_path}: {e}, using defaults"
            )
            self._config = self.DEFAULTS.copy()

    def _validate_and_merge(self, loaded_config: Dict[str, Any]) -> None:
        """Validate loaded configuration and merge with defaults.

        Invalid parameters are logged as warnings and defaults are used.
        """
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
        if not isinstance(value, expected_type):
            return False
        # bool is an int subclass
        if expected_type is int and isinstance(value, bool):
            return False

        if key in ("max_workers", "max_file_size_bytes"):
            return value > 0
        elif key == "output_format":
            return value in OUTPUT_FORMATS
        elif key == "optimization_mode":
            return value in OPTIMIZATION_MODES
        elif key == "ignore_patterns":
            return all(isinstance(pattern, str) for pattern in value)
        elif key == "token_encoding":
            return bool(value.strip())

        return True

    def as_dict(self) -> Dict[str, Any]:
        """Effective configuration values."""
        return dict(self._config)

    @property
    def output_format(self) -> str:
        """Artifact format: "json" or "cbor"."""
        value = self._config["output_format"]
        assert isinstance(value, str)
        return value

    @property
    def compress_output(self) -> bool:
        """Whether artifacts are gzip-compressed."""
        value = self._config["compress_output"]
        assert isinstance(value, bool)
        return value

    @property
    def indent_json(self) -> bool:
        """Whether uncompressed JSON artifacts are indented."""
        value = self._config["indent_json"]
        assert isinstance(value, bool)
        return value

    @property
    def optimization_mode(self) -> str:
        """Optimizer mode: "in_place" or "indexed"."""
        value = self._config["optimization_mode"]
        assert isinstance(value, str)
        return value

    @property
    def max_workers(self) -> int:
        """Maximum parser worker threads."""
        value = self._config["max_workers"]
        assert isinstance(value, int)
        return value

    @property
    def max_file_size_bytes(self) -> int:
        """Files larger than this are skipped and reported."""
        value = self._config["max_file_size_bytes"]
        assert isinstance(value, int)
        return value

    @property
    def ignore_patterns(self) -> List[str]:
        """Additional file patterns to ignore beyond .gitignore."""
        value = self._config["ignore_patterns"]
        assert isinstance(value, list)
        return value

    @property
    def include_private_members(self) -> bool:
        value = self._config["include_private_members"]
        assert isinstance(value, bool)
        return value

    @property
    def include_protected_members(self) -> bool:
        value = self._config["include_protected_members"]
        assert isinstance(value, bool)
        return value

    @property
    def count_tokens(self) -> bool:
        """Whether to count tokens of the artifact with tiktoken."""
        value = self._config["count_tokens"]
        assert isinstance(value, bool)
        return value

    @property
    def token_encoding(self) -> str:
        """tiktoken encoding name used for token counts."""
        value = self._config["token_encoding"]
        assert isinstance(value, str)
        return value
