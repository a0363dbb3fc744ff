"""Operator settings for cigraph runs."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import ConfigurationError
from .executor import DEFAULT_PARALLELISM


GLOBAL_CONFIG_PATH = Path.home() / ".cigraph.yaml"


class Config:
    """Settings with hierarchical lookup.

    Config hierarchy (higher priority first):
    1. Local repo config (.cigraph/config)
    2. Global config (~/.cigraph.yaml)

    When reading, local values override global.
    When writing, writes to the config path specified at init (local or global).
    """

    def __init__(self, config_path: Optional[Path] = None, enable_hierarchy: bool = True, global_path: Optional[Path] = None):
        """Initialize settings.

        Args:
            config_path: Settings file to read and write. Defaults to the global file.
            enable_hierarchy: If True, keys missing locally fall back to the global file.
            global_path: Override for the global settings file, mostly for tests.
        """
        self.config_path = config_path or GLOBAL_CONFIG_PATH
        self.global_path = global_path or GLOBAL_CONFIG_PATH
        self.enable_hierarchy = enable_hierarchy
        self._data: dict[str, Any] = {}
        self._global_data: dict[str, Any] = {}
        self.load()

    @staticmethod
    def _read(path: Path) -> dict[str, Any]:
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise RuntimeError(f"Failed to load config from {path}: {e}") from e
        if not isinstance(data, dict):
            raise RuntimeError(f"Config at {path} must be a mapping")
        return data

    def load(self) -> None:
        """Load settings from file(s). Missing files read as empty."""
        self._data = self._read(self.config_path) if self.config_path.exists() else {}
        self._global_data = {}
        if self.enable_hierarchy and self.config_path != self.global_path and self.global_path.exists():
            self._global_data = self._read(self.global_path)

    def save(self) -> None:
        """Write the primary settings file, creating its directory if needed."""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w") as f:
                yaml.safe_dump(self._data, f, default_flow_style=False)
        except OSError as e:
            raise RuntimeError(f"Failed to save config to {self.config_path}: {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting with hierarchical lookup.

        Args:
            key: Setting name
            default: Returned when neither file sets `key`

        Returns:
            The local value, else the global value, else `default`
        """
        if key in self._data:
            return self._data[key]
        if key in self._global_data:
            return self._global_data[key]
        return default

    def set(self, key: str, value: Any) -> None:
        """Set a value in the primary file. Call save() to persist it."""
        self._data[key] = value

    @property
    def cluster_url(self) -> Optional[str]:
        return self.get("cluster_url")

    @property
    def token_file(self) -> Optional[str]:
        return self.get("token_file")

    @property
    def parallelism(self) -> int:
        return int(self.get("parallelism", DEFAULT_PARALLELISM))

    @property
    def timeout(self) -> Optional[float]:
        value = self.get("timeout")
        return float(value) if value else None

    @property
    def verify_tls(self) -> bool:
        value = self.get("verify_tls", True)
        if isinstance(value, str):
            return value.strip().lower() not in ("0", "false", "no", "off")
        return bool(value)

    @property
    def report_url(self) -> Optional[str]:
        return self.get("report_url")

    def token(self) -> Optional[str]:
        """Read the bearer token from `token_file`.

        Returns:
            The stripped token, or None when no token_file is configured

        Raises:
            ConfigurationError: token_file is set but cannot be read
        """
        if not self.token_file:
            return None
        try:
            return Path(self.token_file).expanduser().read_text().strip()
        except OSError as e:
            raise ConfigurationError(f"Failed to read token from {self.token_file}: {e}") from e

    @classmethod
    def load_with_repo_context(cls, start_path: Optional[Path] = None) -> Config:
        """Create settings for the current location.

        Inside a repo this reads `.cigraph/config` with global fallback and
        writes locally. Outside one it reads and writes the global file only.

        Args:
            start_path: Directory to start the repo search from (defaults to cwd)

        Returns:
            Config bound to the repo-local or global settings file
        """
        from .paths import get_repo_config_path

        repo_config_path = get_repo_config_path(start_path)
        if repo_config_path:
            return cls(config_path=repo_config_path, enable_hierarchy=True)
        return cls(config_path=GLOBAL_CONFIG_PATH, enable_hierarchy=False)
