"""
External actions: source resolution, source fetch, build and install.

The discovery and update pipelines only talk to a toolchain object with
``resolve_source``, ``fetch_source``, ``build_and_install`` and ``overlay``.
``GoToolchain`` implements them for Go executables, reading the embedded
build information with ``go version -m`` and rebuilding with ``go install``.
"""

from __future__ import annotations

import os
import subprocess
from typing import Mapping, Sequence

from .common import vlog
from .config import ToolchainConfig
from .environment import HostEnvironment, detect_host


# Package path recorded for binaries built from a list of .go files
ANONYMOUS_PACKAGE = "command-line-arguments"


class ResolutionError(Exception):
    """
    A binary's source cannot be determined, or it targets another platform.

    Attributes:
        path: Binary that failed to resolve
    """
    def __init__(self, message: str, path: str = ""):
        self.path = path
        super().__init__(message)


class ActionError(Exception):
    """
    An external fetch or build command failed.

    Attributes:
        command: The command that was run
        output: Combined stdout/stderr captured from the command
    """
    def __init__(self, message: str, output: str = "", command: Sequence[str] = ()):
        self.command = tuple(command)
        self.output = output
        super().__init__(message)


def expand_command(
    template: Sequence[str],
    path: str = "",
    source: str = "",
    args: Sequence[str] = (),
) -> list[str]:
    """
    Expand a command template.

    ``{path}`` and ``{source}`` are substituted inside each element; an
    element that is exactly ``{args}`` is replaced by ``args`` (possibly
    nothing).
    """
    command: list[str] = []
    for part in template:
        if part == "{args}":
            command.extend(args)
            continue
        command.append(part.replace("{path}", path).replace("{source}", source))
    return command


def parse_build_info(output: str) -> dict[str, str]:
    """
    Parse ``go version -m`` output.

    Example input::

        /home/u/go/bin/gopls: go1.22.1
                path    golang.org/x/tools/gopls
                mod     golang.org/x/tools/gopls        v0.15.2 h1:...
                build   GOARCH=amd64
                build   GOOS=linux

    Returns:
        Mapping with "path", "mod" and every "build" KEY=VALUE setting
    """
    info: dict[str, str] = {}
    for line in output.splitlines():
        fields = line.strip().split("\t")
        if len(fields) < 2:
            continue
        kind, value = fields[0], fields[1]
        if kind in ("path", "mod") and kind not in info:
            info[kind] = value
        elif kind == "build" and "=" in value:
            key, _, setting = value.partition("=")
            info[key] = setting
    return info


class GoToolchain:
    """
    Go implementation of the external actions.

    Args:
        config: Command templates and environment variable names
        host: Host platform used to reject cross-compiled binaries
        timeout: Optional timeout in seconds for every command; None waits forever
        verbose: Enable verbose logging
    """

    def __init__(
        self,
        config: ToolchainConfig | None = None,
        host: HostEnvironment | None = None,
        timeout: float | None = None,
        verbose: bool = False,
    ):
        if host is None:
            host = detect_host(verbose=verbose)
        self.config = config or ToolchainConfig()
        self.host = host
        self.timeout = timeout
        self.verbose = verbose

    def resolve_source(self, path: str) -> str:
        """
        Read the package path a Go binary was built from.

        Raises:
            ResolutionError: Not a Go binary, no usable package path, or a
                GOOS/GOARCH different from the host's
        """
        command = expand_command(self.config.resolve_command, path=path)
        try:
            proc = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,  # Isolate stdin
                # Output may echo non-UTF-8 file names
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ResolutionError(f"{path}: {e}", path) from e

        if proc.returncode != 0:
            raise ResolutionError(f"{path}: no build information", path)

        info = parse_build_info(proc.stdout or "")
        source = info.get("path", "")
        if not source or source == ANONYMOUS_PACKAGE:
            raise ResolutionError(f"{path}: unknown source package", path)

        goos, goarch = info.get("GOOS"), info.get("GOARCH")
        if (goos and goos != self.host.os) or (goarch and goarch != self.host.arch):
            raise ResolutionError(
                f"{path}: built for {goos}/{goarch}, cross-compiling is not supported",
                path,
            )

        return source

    def overlay(self, build_root: str, install_dir: str) -> dict[str, str]:
        """
        Environment for fetch/build commands, redirected into ``build_root``.

        The module cache is made writable so the workspace can be deleted.
        """
        env = dict(os.environ)
        env[self.config.workspace_var] = build_root
        env[self.config.install_dir_var] = install_dir
        flags = env.get("GOFLAGS", "").split()
        if "-modcacherw" not in flags:
            flags.append("-modcacherw")
        env["GOFLAGS"] = " ".join(flags)
        return env

    def fetch_source(self, source_id: str, overlay: Mapping[str, str]) -> str:
        """Download the sources of ``source_id``; returns the combined output."""
        command = expand_command(self.config.fetch_command, source=source_id)
        return self._run(command, overlay)

    def build_and_install(
        self,
        source_id: str,
        extra_args: Sequence[str],
        overlay: Mapping[str, str],
    ) -> str:
        """Build ``source_id`` into the overlay's install directory."""
        command = expand_command(self.config.install_command, source=source_id, args=extra_args)
        return self._run(command, overlay)

    def _run(self, command: list[str], env: Mapping[str, str]) -> str:
        """
        Run a command with combined output capture.

        Raises:
            ActionError: On a missing executable, timeout or non-zero exit
        """
        vlog(f"Executing: {' '.join(command)}", self.verbose)
        try:
            proc = subprocess.run(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
                env=dict(env),
                check=False,
            )
        except FileNotFoundError as e:
            raise ActionError(f"command not found: {command[0]}", command=command) from e
        except subprocess.TimeoutExpired as e:
            output = e.output or ""
            if isinstance(output, bytes):
                output = output.decode(errors="replace")
            raise ActionError(
                f"{' '.join(command)}: timed out after {self.timeout}s",
                output=output,
                command=command,
            ) from e
        except OSError as e:
            raise ActionError(f"{' '.join(command)}: {e}", command=command) from e

        output = proc.stdout or ""
        if proc.returncode != 0:
            raise ActionError(
                f"{' '.join(command)}: exit status {proc.returncode}",
                output=output,
                command=command,
            )
        return output
