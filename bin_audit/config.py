"""
Configuration file parsing and management.

Reads YAML configuration files (JSON for ``.json`` paths), merges them in
priority order (explicit path → project → user → defaults) and applies
BIN_AUDIT_* environment overrides last.
"""

from __future__ import annotations

import dataclasses
import json
import os
from dataclasses import dataclass, field
from typing import Any, Mapping

import yaml

from .common import vlog


# Configuration file locations (in priority order)
CONFIG_LOCATIONS = [
    ".bin-audit.yml",                                      # Project root (highest priority)
    ".bin-audit.yaml",
    os.path.expanduser("~/.config/bin-audit/config.yml"),  # User global
    os.path.expanduser("~/.config/bin-audit/config.yaml"),
    os.path.expanduser("~/.config/bin-audit/config.json"),
]

SUPPORTED_TOOLCHAINS = {"go"}
EXECUTABLE_CHECKS = {"auto", "permissions", "extension"}


class ConfigError(ValueError):
    """Raised when an explicitly requested configuration cannot be used."""


@dataclass(frozen=True)
class ToolchainConfig:
    """
    External commands used to resolve, fetch and rebuild binaries.

    Command templates are argument lists. ``{path}`` is replaced with the
    binary path, ``{source}`` with its source identifier, and an element that
    is exactly ``{args}`` expands to the extra install arguments.

    Attributes:
        name: Toolchain identifier
        resolve_command: Prints the build information of a binary
        fetch_command: Downloads the sources of a source identifier
        install_command: Builds and installs a source identifier
        path_var: PATH-style variable searched for binaries under $HOME
        user_bin_var: User install directory variable (searched under $HOME)
        workspace_var: Workspace-root variable; each root contributes root/bin
        install_dir_var: Variable redirecting the install target
    """
    name: str = "go"
    resolve_command: tuple[str, ...] = ("go", "version", "-m", "{path}")
    # -n resolves and downloads the module without compiling anything
    fetch_command: tuple[str, ...] = ("go", "install", "-n", "{source}@latest")
    install_command: tuple[str, ...] = ("go", "install", "{args}", "{source}@latest")
    path_var: str = "PATH"
    user_bin_var: str = "GOBIN"
    workspace_var: str = "GOPATH"
    install_dir_var: str = "GOBIN"

    def __post_init__(self):
        if self.name not in SUPPORTED_TOOLCHAINS:
            raise ValueError(
                f"Invalid toolchain: {self.name}. "
                f"Must be one of: {', '.join(sorted(SUPPORTED_TOOLCHAINS))}"
            )
        if "{path}" not in self.resolve_command:
            raise ValueError("resolve_command must contain a {path} element")
        for key in ("fetch_command", "install_command"):
            command = getattr(self, key)
            if not command or not any("{source}" in part for part in command):
                raise ValueError(f"{key} must reference {{source}}")

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ToolchainConfig:
        """Create ToolchainConfig from dictionary."""
        defaults = ToolchainConfig()
        return ToolchainConfig(
            name=data.get("name", defaults.name),
            resolve_command=tuple(data.get("resolve_command", defaults.resolve_command)),
            fetch_command=tuple(data.get("fetch_command", defaults.fetch_command)),
            install_command=tuple(data.get("install_command", defaults.install_command)),
            path_var=data.get("path_var", defaults.path_var),
            user_bin_var=data.get("user_bin_var", defaults.user_bin_var),
            workspace_var=data.get("workspace_var", defaults.workspace_var),
            install_dir_var=data.get("install_dir_var", defaults.install_dir_var),
        )


@dataclass(frozen=True)
class Preferences:
    """
    Tuning knobs for discovery and update.

    Attributes:
        min_workers: Lower bound for the worker pool (CPU count is used when larger)
        max_workers: Optional upper bound for the update pool
        action_timeout_seconds: Kill fetch/build commands after this many
            seconds; None waits indefinitely
        workspace_prefix: Prefix for ephemeral build workspaces
        executable_check: 'auto', 'permissions' or 'extension'
        executable_extensions: File extensions treated as executables by the
            extension check and the argument heuristic
    """
    min_workers: int = 1
    max_workers: int | None = None
    action_timeout_seconds: int | None = None
    workspace_prefix: str = "bin_audit"
    executable_check: str = "auto"
    executable_extensions: tuple[str, ...] = (".exe",)

    def __post_init__(self):
        if self.min_workers < 1 or self.min_workers > 64:
            raise ValueError(
                f"Invalid min_workers: {self.min_workers}. Must be between 1 and 64"
            )

        if self.max_workers is not None and (self.max_workers < 1 or self.max_workers > 64):
            raise ValueError(
                f"Invalid max_workers: {self.max_workers}. Must be between 1 and 64"
            )

        if self.action_timeout_seconds is not None and (
            self.action_timeout_seconds < 1 or self.action_timeout_seconds > 86400
        ):
            raise ValueError(
                f"Invalid action_timeout_seconds: {self.action_timeout_seconds}. "
                "Must be between 1 and 86400, or unset"
            )

        if self.executable_check not in EXECUTABLE_CHECKS:
            raise ValueError(
                f"Invalid executable_check: {self.executable_check}. "
                f"Must be one of: {', '.join(sorted(EXECUTABLE_CHECKS))}"
            )

        if not self.workspace_prefix:
            raise ValueError("workspace_prefix must not be empty")

        for ext in self.executable_extensions:
            if not ext.startswith("."):
                raise ValueError(f"Invalid executable extension: {ext!r}. Must start with '.'")

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Preferences:
        """Create Preferences from dictionary."""
        return Preferences(
            min_workers=data.get("min_workers", 1),
            max_workers=data.get("max_workers"),
            action_timeout_seconds=data.get("action_timeout_seconds"),
            workspace_prefix=data.get("workspace_prefix", "bin_audit"),
            executable_check=data.get("executable_check", "auto"),
            executable_extensions=tuple(
                ext.lower() for ext in data.get("executable_extensions", (".exe",))
            ),
        )


@dataclass(frozen=True)
class Config:
    """
    Complete configuration for bin_audit.

    Attributes:
        version: Config schema version
        preferences: Discovery/update preferences
        toolchain: External command configuration
        source: Path to the configuration file that was loaded
    """
    version: int = 1
    preferences: Preferences = field(default_factory=Preferences)
    toolchain: ToolchainConfig = field(default_factory=ToolchainConfig)
    source: str = ""

    def __post_init__(self):
        if self.version != 1:
            raise ValueError(f"Unsupported config version: {self.version}. Expected version 1")

    @staticmethod
    def from_dict(data: dict[str, Any], source: str = "") -> Config:
        """Create Config from dictionary."""
        return Config(
            version=data.get("version", 1),
            preferences=Preferences.from_dict(data.get("preferences") or {}),
            toolchain=ToolchainConfig.from_dict(data.get("toolchain") or {}),
            source=source,
        )

    def merge_with(self, other: Config) -> Config:
        """
        Merge this config with another, preferring non-default values from this one.

        Args:
            other: Other config to merge (lower priority)

        Returns:
            New merged Config object
        """
        return Config(
            version=self.version,
            preferences=_merge_dataclass(self.preferences, other.preferences, Preferences()),
            toolchain=_merge_dataclass(self.toolchain, other.toolchain, ToolchainConfig()),
            source=self.source or other.source,
        )


def _merge_dataclass(high, low, defaults):
    """Take each field from ``high`` unless it still holds the default value."""
    merged = {}
    for f in dataclasses.fields(high):
        value = getattr(high, f.name)
        merged[f.name] = value if value != getattr(defaults, f.name) else getattr(low, f.name)
    return type(high)(**merged)


def _load_yaml(file_path: str) -> dict[str, Any] | None:
    """
    Load YAML configuration file.

    Returns:
        Parsed configuration dictionary, or None if the file is unreadable or invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return None


def _load_json(file_path: str) -> dict[str, Any] | None:
    """
    Load JSON configuration file.

    Returns:
        Parsed configuration dictionary, or None if file invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, json.JSONDecodeError):
        return None


def load_config_file(file_path: str, verbose: bool = False) -> Config | None:
    """
    Load configuration from a single file.

    Args:
        file_path: Path to a .yml/.yaml or .json configuration file
        verbose: Enable verbose logging

    Returns:
        Config object, or None if file cannot be loaded
    """
    if not os.path.exists(file_path):
        return None

    vlog(f"Loading config from: {file_path}", verbose)

    if file_path.endswith(".json"):
        data = _load_json(file_path)
    else:
        data = _load_yaml(file_path)

    if data is None:
        vlog(f"Invalid config file: {file_path}", verbose)
        return None

    try:
        config = Config.from_dict(data, source=file_path)
    except (ValueError, TypeError) as e:
        vlog(f"Config validation failed for {file_path}: {e}", verbose)
        return None

    vlog(f"Loaded config successfully: {file_path}", verbose)
    return config


def apply_env_overrides(config: Config, environ: Mapping[str, str] | None = None) -> Config:
    """
    Apply BIN_AUDIT_* environment overrides on top of a loaded config.

    Recognized variables:
        BIN_AUDIT_MIN_WORKERS: integer minimum pool size
        BIN_AUDIT_ACTION_TIMEOUT: integer seconds, or 0/empty to disable

    Raises:
        ConfigError: If a variable is set to an invalid value
    """
    if environ is None:
        environ = os.environ

    changes: dict[str, Any] = {}
    try:
        if environ.get("BIN_AUDIT_MIN_WORKERS"):
            changes["min_workers"] = int(environ["BIN_AUDIT_MIN_WORKERS"])
        if "BIN_AUDIT_ACTION_TIMEOUT" in environ:
            timeout = environ["BIN_AUDIT_ACTION_TIMEOUT"].strip()
            changes["action_timeout_seconds"] = int(timeout) if timeout and timeout != "0" else None
        if not changes:
            return config
        preferences = dataclasses.replace(config.preferences, **changes)
    except ValueError as e:
        raise ConfigError(f"Invalid environment override: {e}") from e

    return dataclasses.replace(config, preferences=preferences)


def load_config(
    custom_path: str | None = None,
    verbose: bool = False,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """
    Load and merge configuration from all sources.

    Configuration precedence (highest to lowest):
    1. Environment overrides (BIN_AUDIT_*)
    2. Custom path (if provided)
    3. Project .bin-audit.yml
    4. User ~/.config/bin-audit/config.yml
    5. Default configuration

    Args:
        custom_path: Optional path to custom configuration file
        verbose: Enable verbose logging
        environ: Environment mapping for overrides (defaults to os.environ)

    Returns:
        Merged Config object (never None, returns defaults if no config found)

    Raises:
        ConfigError: If custom_path is provided but cannot be loaded
    """
    configs: list[Config] = []

    if custom_path:
        config = load_config_file(custom_path, verbose)
        if config is None:
            raise ConfigError(f"Could not load config from specified path: {custom_path}")
        configs.append(config)

    for location in CONFIG_LOCATIONS:
        config = load_config_file(location, verbose)
        if config is not None:
            configs.append(config)

    if not configs:
        vlog("No config files found, using defaults", verbose)
        merged = Config()
    else:
        merged = configs[0]
        for config in configs[1:]:
            merged = merged.merge_with(config)
        vlog(f"Merged {len(configs)} config files", verbose)

    return apply_env_overrides(merged, environ)


def validate_config(config: Config) -> list[str]:
    """
    Validate configuration and return list of warnings.

    Args:
        config: Config object to validate

    Returns:
        List of validation warning messages (empty if valid)
    """
    warnings = []
    prefs = config.preferences

    if prefs.max_workers is not None and prefs.max_workers < prefs.min_workers:
        warnings.append(
            f"max_workers ({prefs.max_workers}) is lower than min_workers ({prefs.min_workers})"
        )

    if "{args}" not in config.toolchain.install_command:
        warnings.append("install_command has no {args} element; extra install arguments are ignored")

    if prefs.executable_check == "extension" and not prefs.executable_extensions:
        warnings.append("executable_check is 'extension' but no executable_extensions are configured")

    return warnings
