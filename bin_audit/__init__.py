"""
bin_audit - Inventory and in-place rebuild of compiled user binaries.

Core Modules:
- Discovery: search paths, executable classification, source resolution
- Update: per-source build groups rebuilt in ephemeral workspaces
- Foundation: host environment, configuration, logging, rendering
"""

__version__ = "1.0.0"

# Version info for backward compatibility
VERSION = __version__

# Foundation
from .environment import HostEnvironment, detect_host
from .config import (
    Config,
    ConfigError,
    Preferences,
    ToolchainConfig,
    load_config,
    load_config_file,
    validate_config,
)
from .paths import search_paths
from .logging_config import setup_logging, get_logger

# Discovery
from .classify import (
    ExecutableCheck,
    ExtensionCheck,
    PermissionBitsCheck,
    can_write,
    is_binary,
    is_candidate_executable,
    select_executable_check,
    sniff_content_type,
)
from .toolchain import ActionError, GoToolchain, ResolutionError
from .inventory import (
    Inventory,
    ManagedBinary,
    SearchPathError,
    SearchSpec,
    classify_arguments,
    filter_by_packages,
    search,
)

# Update
from .update import (
    BuildGroup,
    CopyError,
    GroupActionError,
    UpdateResult,
    Workspace,
    fetch_sources,
    group_binaries,
    update,
)

__all__ = [
    "__version__",
    "VERSION",
    # Foundation
    "HostEnvironment",
    "detect_host",
    "Config",
    "ConfigError",
    "Preferences",
    "ToolchainConfig",
    "load_config",
    "load_config_file",
    "validate_config",
    "search_paths",
    # Discovery
    "ExecutableCheck",
    "ExtensionCheck",
    "PermissionBitsCheck",
    "can_write",
    "is_binary",
    "is_candidate_executable",
    "select_executable_check",
    "sniff_content_type",
    "ActionError",
    "GoToolchain",
    "ResolutionError",
    "Inventory",
    "ManagedBinary",
    "SearchPathError",
    "SearchSpec",
    "classify_arguments",
    "filter_by_packages",
    "search",
    # Update
    "BuildGroup",
    "CopyError",
    "GroupActionError",
    "UpdateResult",
    "Workspace",
    "fetch_sources",
    "group_binaries",
    "update",
    # Logging
    "setup_logging",
    "get_logger",
]
