"""
Discovery of managed binaries.

Turns command-line style arguments into search targets, scans the
selected directories and executables with a bounded worker pool, resolves
each candidate's source package and returns a sorted, filtered inventory.
"""

from __future__ import annotations

import os
import shutil
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Sequence

from .classify import ExecutableCheck, can_write, is_candidate_executable, select_executable_check
from .common import vlog
from .config import Config
from .environment import HostEnvironment, detect_host
from .paths import search_paths
from .toolchain import ResolutionError


CURRENT_DIRECTORY = "."


class SearchPathError(Exception):
    """No directories or executables to search, and no default search paths."""


@dataclass
class ManagedBinary:
    """
    An executable matched to the source package it was built from.

    Attributes:
        path: Absolute path of the binary (unique key)
        source_id: Identifier of the originating package
        writable: Whether the binary can be replaced in place
        error: Outcome of the last update attempt (None on success or if never updated)
    """
    path: str
    source_id: str
    writable: bool = False
    error: Exception | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "path": self.path,
            "source_id": self.source_id,
            "writable": self.writable,
            "error": str(self.error) if self.error is not None else None,
        }


@dataclass
class SearchSpec:
    """
    Search inputs derived from arguments.

    Attributes:
        directories: Directories to list (single level)
        explicit_executables: Executables to resolve individually
        package_filters: Source identifier prefixes to keep
    """
    directories: list[str] = field(default_factory=list)
    explicit_executables: list[str] = field(default_factory=list)
    package_filters: list[str] = field(default_factory=list)

    def add_directory(self, path: str) -> None:
        if path not in self.directories:
            self.directories.append(path)

    def add_executable(self, path: str) -> None:
        if path not in self.explicit_executables:
            self.explicit_executables.append(path)

    def add_filter(self, prefix: str) -> None:
        if prefix not in self.package_filters:
            self.package_filters.append(prefix)

    @property
    def has_search_roots(self) -> bool:
        return bool(self.directories or self.explicit_executables)


class Inventory:
    """
    Thread-safe collection of the managed binaries of one invocation.

    The same lock guards appends during discovery and error updates during
    an update run.
    """

    def __init__(self, binaries: Iterable[ManagedBinary] = ()):
        self.lock = threading.Lock()
        self._binaries: list[ManagedBinary] = list(binaries)

    def append(self, binary: ManagedBinary) -> None:
        with self.lock:
            self._binaries.append(binary)

    def record(
        self,
        paths: Sequence[str],
        error: Exception | None,
        started: float,
        report: Callable[[ManagedBinary, float, Exception | None], None],
    ) -> None:
        """
        Store an update outcome for ``paths`` and report it.

        Args:
            paths: Binary paths the outcome applies to
            error: Failure, or None on success
            started: time.perf_counter() value the elapsed time is measured from
            report: Callback invoked once per matching binary
        """
        elapsed = time.perf_counter() - started
        wanted = set(paths)
        with self.lock:
            for binary in self._binaries:
                if binary.path in wanted:
                    binary.error = error
                    report(binary, elapsed, error)

    def sort(self) -> None:
        with self.lock:
            self._binaries.sort(key=lambda b: b.path)

    def filter(self, package_filters: Sequence[str]) -> None:
        with self.lock:
            self._binaries = filter_by_packages(self._binaries, package_filters)

    def __iter__(self) -> Iterator[ManagedBinary]:
        with self.lock:
            return iter(list(self._binaries))

    def __len__(self) -> int:
        with self.lock:
            return len(self._binaries)

    def __getitem__(self, index: int) -> ManagedBinary:
        with self.lock:
            return self._binaries[index]

    def to_list(self) -> list[dict]:
        """Convert to list of dictionaries for JSON serialization."""
        return [b.to_dict() for b in self]


def looks_like_executable(name: str, extensions: Sequence[str] = (".exe",)) -> bool:
    """Name without an extension, or with one of the executable extensions."""
    ext = os.path.splitext(os.path.basename(name))[1].lower()
    return not ext or ext in {e.lower() for e in extensions}


def classify_arguments(
    args: Sequence[str],
    extensions: Sequence[str] = (".exe",),
    cwd: str | None = None,
    which: Callable[[str], str | None] | None = None,
    verbose: bool = False,
) -> SearchSpec:
    """
    Sort arguments into directories, explicit executables and package filters.

    Per argument, the first matching rule wins:
    1. "." is the current working directory
    2. a path (contains a separator) to an existing file or directory adds
       that directory, or the file's directory
    3. an executable-looking name found on PATH adds the resolved executable
    4. anything else is a package filter

    Args:
        args: Raw positional arguments
        extensions: Executable extensions for the name heuristic
        cwd: Working directory for "." (defaults to os.getcwd())
        which: PATH lookup function (defaults to shutil.which)
        verbose: Enable verbose logging

    Returns:
        SearchSpec with de-duplicated entries
    """
    if which is None:
        which = shutil.which
    targets = SearchSpec()
    separators = {os.sep} | ({os.altsep} if os.altsep else set())

    for arg in args:
        if arg == CURRENT_DIRECTORY:
            try:
                targets.add_directory(cwd or os.getcwd())
            except OSError as e:
                vlog(f"Cannot determine working directory: {e}", verbose)
            continue

        if any(sep in arg for sep in separators) and os.path.exists(arg):
            path = os.path.abspath(arg)
            targets.add_directory(path if os.path.isdir(path) else os.path.dirname(path))
            continue

        if looks_like_executable(arg, extensions):
            found = which(arg)
            if found:
                targets.add_executable(os.path.abspath(found))
                continue

        targets.add_filter(arg)

    vlog(
        f"Arguments: {len(targets.directories)} directories, "
        f"{len(targets.explicit_executables)} executables, filters {targets.package_filters}",
        verbose,
    )
    return targets


def filter_by_packages(
    binaries: Iterable[ManagedBinary],
    package_filters: Sequence[str],
) -> list[ManagedBinary]:
    """
    Keep binaries whose source identifier starts with any of the filters.

    An empty filter list keeps everything.
    """
    if not package_filters:
        return list(binaries)
    return [b for b in binaries if any(b.source_id.startswith(p) for p in package_filters)]


def scan_directory(
    directory: str,
    check: ExecutableCheck,
    verbose: bool = False,
) -> list[tuple[str, bool]]:
    """
    List the candidate executables directly inside ``directory``.

    Writability is probed once for the directory and shared by its entries.
    Unreadable directories yield no candidates.

    Returns:
        List of (path, writable) pairs
    """
    try:
        with os.scandir(directory) as it:
            entries = [e for e in it if e.is_file(follow_symlinks=False)]
    except OSError as e:
        vlog(f"Skipping {directory}: {e}", verbose)
        return []

    writable = can_write(directory, verbose)
    candidates = [
        (entry.path, writable)
        for entry in entries
        if is_candidate_executable(entry.path, check)
    ]
    vlog(f"{directory}: {len(candidates)} candidates (writable: {writable})", verbose)
    return candidates


def _probe_executable(path: str, check: ExecutableCheck, verbose: bool) -> list[tuple[str, bool]]:
    if not is_candidate_executable(path, check):
        vlog(f"Skipping {path}: not a binary executable", verbose)
        return []
    return [(path, can_write(path, verbose))]


def worker_count(host: HostEnvironment, config: Config) -> int:
    """Discovery pool size: the CPU count, raised to the configured minimum."""
    return max(host.parallelism, config.preferences.min_workers)


def search(
    args: Sequence[str],
    toolchain,
    host: HostEnvironment | None = None,
    config: Config | None = None,
    verbose: bool = False,
) -> Inventory:
    """
    Discover managed binaries.

    Args:
        args: Directories, paths, executable names and package prefixes
        toolchain: Object providing resolve_source(path)
        host: Host environment (detected if None)
        config: Configuration (defaults if None)
        verbose: Enable verbose logging

    Returns:
        Inventory sorted by path, restricted to the package filters

    Raises:
        SearchPathError: If there is nothing to search
    """
    if config is None:
        config = Config()
    if host is None:
        host = detect_host(verbose=verbose)

    start_time = time.time()
    prefs = config.preferences

    targets = classify_arguments(args, prefs.executable_extensions, verbose=verbose)
    if not targets.has_search_roots:
        for directory in search_paths(host, config.toolchain, verbose=verbose):
            targets.add_directory(directory)
    if not targets.has_search_roots:
        raise SearchPathError("couldn't find any search paths")

    check = select_executable_check(prefs, host)
    inventory = Inventory()
    max_workers = worker_count(host, config)

    def resolve(path: str, writable: bool) -> None:
        try:
            source_id = toolchain.resolve_source(path)
        except (ResolutionError, OSError) as e:
            vlog(f"Skipping {path}: {e}", verbose)
            return
        inventory.append(ManagedBinary(path=path, source_id=source_id, writable=writable))

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        listings = [executor.submit(scan_directory, d, check, verbose) for d in targets.directories]
        listings += [executor.submit(_probe_executable, p, check, verbose) for p in targets.explicit_executables]

        resolutions = []
        seen: set[str] = set()
        for future in as_completed(listings):
            for path, writable in future.result():
                if path in seen:
                    continue
                seen.add(path)
                resolutions.append(executor.submit(resolve, path, writable))

        for future in as_completed(resolutions):
            future.result()

    inventory.filter(targets.package_filters)
    inventory.sort()

    vlog(
        f"Found {len(inventory)} managed binaries with {max_workers} workers "
        f"in {time.time() - start_time:.2f}s",
        verbose,
    )
    return inventory


def as_inventory(binaries: Inventory | Iterable[ManagedBinary]) -> Inventory:
    """Wrap a plain sequence of binaries; an Inventory is returned unchanged."""
    if isinstance(binaries, Inventory):
        return binaries
    return Inventory(binaries)


