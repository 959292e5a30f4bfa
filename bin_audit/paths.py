"""
Default search directories.

Builds the list of directories scanned when no explicit paths are given.
PATH-style and user-bin entries are only honoured under the invoking user's
home directory, so a default run never scans system directories.
"""

from __future__ import annotations

import os
from typing import Callable, Mapping

from .common import unique, vlog
from .config import ToolchainConfig
from .environment import HostEnvironment


def split_path_list(
    value: str,
    keep: Callable[[str], str | None],
    separator: str = os.pathsep,
) -> list[str]:
    """
    Split a path-list value and map each entry through ``keep``.

    Entries for which ``keep`` returns a falsy value are dropped, survivors
    are made absolute. Entries that cannot be made absolute are dropped.

    Args:
        value: Raw environment value (e.g. "$HOME/bin:/usr/bin")
        keep: Filter/mapper applied to each raw entry
        separator: Path-list separator

    Returns:
        Absolute directory paths in their original order
    """
    dirs = []
    for entry in value.split(separator):
        if not entry:
            continue
        entry = keep(entry)
        if not entry:
            continue
        try:
            dirs.append(os.path.abspath(entry))
        except (OSError, ValueError):
            continue
    return dirs


def search_paths(
    host: HostEnvironment,
    toolchain: ToolchainConfig | None = None,
    environ: Mapping[str, str] | None = None,
    verbose: bool = False,
) -> list[str]:
    """
    Derive the default, de-duplicated list of search directories.

    Sources, in order:
    1. PATH entries under the home directory
    2. user bin entries (e.g. $GOBIN) under the home directory
    3. ``<root>/bin`` of every workspace root (e.g. $GOPATH) that exists

    When the home directory is unknown, 1 and 2 contribute nothing.

    Args:
        host: Host environment with the resolved home directory
        toolchain: Names of the environment variables to read
        environ: Environment mapping (defaults to os.environ)
        verbose: Enable verbose logging

    Returns:
        Absolute directories, first occurrence wins
    """
    if toolchain is None:
        toolchain = ToolchainConfig()
    if environ is None:
        environ = os.environ

    dirs: list[str] = []

    if host.home:
        home = host.home

        def in_home(entry: str) -> str | None:
            return entry if entry.startswith(home) else None

        dirs.extend(split_path_list(environ.get(toolchain.path_var, ""), in_home))
        dirs.extend(split_path_list(environ.get(toolchain.user_bin_var, ""), in_home))
    else:
        vlog("Home directory unknown, skipping PATH-style search paths", verbose)

    def bin_dir(entry: str) -> str | None:
        candidate = os.path.join(entry, "bin")
        return candidate if os.path.isdir(candidate) else None

    dirs.extend(split_path_list(environ.get(toolchain.workspace_var, ""), bin_dir))

    dirs = unique(dirs)
    vlog(f"Default search paths: {dirs}", verbose)
    return dirs
