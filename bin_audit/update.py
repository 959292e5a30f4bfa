"""
Rebuilding managed binaries in place.

Binaries sharing a source package form one build group. Each group is
fetched and built once, inside its own temporary workspace, by a bounded
pool of workers; the artifact is then copied over every member. Failures
are contained to the group (fetch/build) or to the single binary (copy)
and delivered through a per-binary report callback.
"""

from __future__ import annotations

import os
import shutil
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Sequence

from .common import indent_output, unique, vlog
from .config import Config
from .environment import HostEnvironment, detect_host
from .inventory import Inventory, ManagedBinary, as_inventory
from .toolchain import ActionError


Report = Callable[[ManagedBinary, float, "Exception | None"], None]


class GroupActionError(Exception):
    """
    Fetching or building a group's source failed.

    The message is the original error followed by the captured command
    output, one tab-indented line per output line.

    Attributes:
        source_id: Source identifier of the failed group
        cause: The underlying ActionError
    """
    def __init__(self, source_id: str, cause: ActionError):
        self.source_id = source_id
        self.cause = cause
        message = str(cause)
        output = indent_output(cause.output)
        if output:
            message += "\n" + output
        super().__init__(message)


class CopyError(Exception):
    """
    The rebuilt artifact could not be copied over one binary.

    Attributes:
        path: Destination that could not be written
        cause: The underlying OSError
    """
    def __init__(self, path: str, cause: OSError):
        self.path = path
        self.cause = cause
        super().__init__(f"copying to {path}: {cause}")


@dataclass(frozen=True)
class BuildGroup:
    """
    Writable binaries that share one source identifier.

    Attributes:
        source_id: Source identifier built once for the whole group
        paths: Member paths, in inventory order, never empty
    """
    source_id: str
    paths: tuple[str, ...]

    @property
    def artifact_name(self) -> str:
        """File name of the artifact the build is expected to produce."""
        return os.path.basename(self.paths[0])


@dataclass(frozen=True)
class Workspace:
    """
    Ephemeral build root owned by one worker.

    Attributes:
        root: Temporary directory used as the build root
        bin_dir: Install target inside root
    """
    root: str
    bin_dir: str


@dataclass(frozen=True)
class UpdateResult:
    """
    Summary of an update run.

    Attributes:
        groups_attempted: Source identifiers that were rebuilt
        succeeded: Paths replaced successfully
        failed: Paths whose update failed
        skipped: Paths excluded because they are not writable
        duration_seconds: Total execution time
    """
    groups_attempted: tuple[str, ...]
    succeeded: tuple[str, ...]
    failed: tuple[str, ...]
    skipped: tuple[str, ...]
    duration_seconds: float

    @property
    def success(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "groups_attempted": list(self.groups_attempted),
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
            "skipped": list(self.skipped),
            "duration_seconds": self.duration_seconds,
        }


def group_binaries(
    binaries: Iterable[ManagedBinary],
) -> tuple[list[BuildGroup], list[ManagedBinary]]:
    """
    Partition writable binaries by source identifier.

    Returns:
        Tuple of (groups in first-seen order, non-writable binaries)
    """
    members: dict[str, list[str]] = {}
    skipped: list[ManagedBinary] = []
    for binary in binaries:
        if not binary.writable:
            skipped.append(binary)
            continue
        members.setdefault(binary.source_id, []).append(binary.path)

    groups = [BuildGroup(source_id=k, paths=tuple(unique(v))) for k, v in members.items()]
    return groups, skipped


@contextmanager
def workspace(prefix: str = "bin_audit") -> Iterator[Workspace]:
    """
    Create a temporary build root with a ``bin`` directory.

    The whole tree is removed when the block exits, however it exits.
    """
    root = tempfile.mkdtemp(prefix=f"{prefix}_")
    try:
        bin_dir = os.path.join(root, "bin")
        os.mkdir(bin_dir)
        yield Workspace(root=root, bin_dir=bin_dir)
    finally:
        shutil.rmtree(root, ignore_errors=True)


def copy_artifact(artifact: str, destination: str) -> None:
    """Overwrite ``destination`` with the full content of ``artifact``."""
    shutil.copyfile(artifact, destination)


def update_group(
    group: BuildGroup,
    inventory: Inventory,
    toolchain,
    report: Report,
    extra_args: Sequence[str] = (),
    workspace_prefix: str = "bin_audit",
    verbose: bool = False,
) -> list[str]:
    """
    Fetch, build and distribute one group.

    Every member path receives exactly one report.

    Returns:
        Member paths that were replaced successfully
    """
    started = time.perf_counter()
    replaced: list[str] = []
    reported: list[str] = []

    def settle(paths: Sequence[str], error: Exception | None) -> None:
        # Marked before reporting so a failing callback is never retried
        reported.extend(paths)
        inventory.record(paths, error, started, report)

    try:
        with workspace(workspace_prefix) as ws:
            overlay = toolchain.overlay(ws.root, ws.bin_dir)
            try:
                toolchain.fetch_source(group.source_id, overlay)
                toolchain.build_and_install(group.source_id, extra_args, overlay)
            except ActionError as e:
                vlog(f"Build of {group.source_id} failed: {e}", verbose)
                settle(group.paths, GroupActionError(group.source_id, e))
                return replaced

            artifact = os.path.join(ws.bin_dir, group.artifact_name)
            for path in group.paths:
                try:
                    copy_artifact(artifact, path)
                except OSError as e:
                    settle([path], CopyError(path, e))
                    continue
                settle([path], None)
                replaced.append(path)
    except OSError as e:
        vlog(f"Update of {group.source_id} failed: {e}", verbose)
        pending = [path for path in group.paths if path not in reported]
        if pending:
            settle(pending, e)

    return replaced


def update(
    binaries: Inventory | Iterable[ManagedBinary],
    toolchain,
    report: Report,
    extra_args: Sequence[str] = (),
    host: HostEnvironment | None = None,
    config: Config | None = None,
    verbose: bool = False,
) -> UpdateResult:
    """
    Rebuild every writable binary from its source, once per source.

    Args:
        binaries: Inventory from discovery (or any sequence of binaries)
        toolchain: Object providing overlay, fetch_source and build_and_install
        report: Called once per attempted binary with (binary, elapsed seconds, error)
        extra_args: Extra arguments for the install command
        host: Host environment (detected if None)
        config: Configuration (defaults if None)
        verbose: Enable verbose logging

    Returns:
        UpdateResult summarizing the run
    """
    if config is None:
        config = Config()
    if host is None:
        host = detect_host(verbose=verbose)

    start_time = time.time()
    inventory = as_inventory(binaries)
    groups, skipped = group_binaries(inventory)

    succeeded: list[str] = []
    if groups:
        max_workers = min(host.parallelism, len(groups))
        if config.preferences.max_workers is not None:
            max_workers = min(max_workers, config.preferences.max_workers)
        vlog(f"Rebuilding {len(groups)} sources with {max_workers} workers...", verbose)

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = [
                executor.submit(
                    update_group,
                    group,
                    inventory,
                    toolchain,
                    report,
                    tuple(extra_args),
                    config.preferences.workspace_prefix,
                    verbose,
                )
                for group in groups
            ]
            for future in as_completed(futures):
                succeeded.extend(future.result())

    attempted = {path for group in groups for path in group.paths}
    failed = sorted(attempted - set(succeeded))

    return UpdateResult(
        groups_attempted=tuple(group.source_id for group in groups),
        succeeded=tuple(sorted(succeeded)),
        failed=tuple(failed),
        skipped=tuple(b.path for b in skipped),
        duration_seconds=time.time() - start_time,
    )


def fetch_sources(
    binaries: Inventory | Iterable[ManagedBinary],
    toolchain,
    root: str,
    report: Report,
    host: HostEnvironment | None = None,
    config: Config | None = None,
    verbose: bool = False,
) -> int:
    """
    Download the sources of every binary into a persistent build root.

    Each distinct source is fetched once; nothing is built or copied.
    Writability does not matter here since the binaries are left untouched.

    Args:
        binaries: Inventory from discovery
        toolchain: Object providing overlay and fetch_source
        root: Build root to populate (e.g. an existing GOPATH)
        report: Called once per binary with (binary, elapsed seconds, error)
        host: Host environment (detected if None)
        config: Configuration (defaults if None)
        verbose: Enable verbose logging

    Returns:
        Number of sources that failed to fetch
    """
    if config is None:
        config = Config()
    if host is None:
        host = detect_host(verbose=verbose)

    inventory = as_inventory(binaries)
    sources: dict[str, list[str]] = {}
    for binary in inventory:
        sources.setdefault(binary.source_id, []).append(binary.path)
    if not sources:
        return 0

    overlay = toolchain.overlay(root, os.path.join(root, "bin"))

    def fetch(source_id: str, paths: list[str]) -> bool:
        started = time.perf_counter()
        try:
            toolchain.fetch_source(source_id, overlay)
        except ActionError as e:
            inventory.record(paths, GroupActionError(source_id, e), started, report)
            return False
        inventory.record(paths, None, started, report)
        return True

    max_workers = min(host.parallelism, len(sources))
    vlog(f"Fetching {len(sources)} sources into {root} with {max_workers} workers...", verbose)

    failures = 0
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(fetch, k, v) for k, v in sources.items()]
        for future in as_completed(futures):
            if not future.result():
                failures += 1
    return failures
