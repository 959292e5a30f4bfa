"""
Shared fixtures for bin_audit tests.
"""

import os
import stat
import sys
import threading
import time

import pytest

from bin_audit.environment import HostEnvironment
from bin_audit.toolchain import ActionError, ResolutionError


# Leading bytes of an ELF executable; control bytes make the sniffer call it binary
ELF_HEADER = b"\x7fELF\x02\x01\x01\x00" + b"\x00" * 24


def make_executable(path, content=ELF_HEADER, mode=0o755):
    """Write ``content`` to ``path`` and chmod it."""
    path = str(path)
    with open(path, "wb") as f:
        f.write(content)
    os.chmod(path, mode)
    return path


class FakeToolchain:
    """
    In-memory toolchain recording every call.

    Args:
        sources: Mapping of binary path -> source identifier
        fail_fetch: Source identifiers whose fetch fails
        fail_build: Source identifiers whose build fails
        output: Captured output attached to failures
    """

    def __init__(self, sources=None, fail_fetch=(), fail_build=(), output="line one\nline two\n"):
        self.sources = dict(sources or {})
        self.fail_fetch = set(fail_fetch)
        self.fail_build = set(fail_build)
        self.output = output
        self.lock = threading.Lock()
        self.calls = []

    def _record(self, *call):
        with self.lock:
            self.calls.append(call)

    def calls_of(self, kind):
        with self.lock:
            return [c for c in self.calls if c[0] == kind]

    def resolve_source(self, path):
        self._record("resolve", path)
        if path not in self.sources:
            raise ResolutionError(f"{path}: no build information", path)
        return self.sources[path]

    def overlay(self, build_root, install_dir):
        return {"GOPATH": build_root, "GOBIN": install_dir}

    def fetch_source(self, source_id, overlay):
        self._record("fetch", source_id, overlay["GOPATH"])
        if source_id in self.fail_fetch:
            raise ActionError(
                f"go install -n {source_id}@latest: exit status 1",
                output=self.output,
            )
        return ""

    def build_and_install(self, source_id, extra_args, overlay):
        self._record("build", source_id, tuple(extra_args))
        time.sleep(0.01)
        if source_id in self.fail_build:
            raise ActionError(
                f"go install {source_id}@latest: exit status 2",
                output=self.output,
            )
        artifact = os.path.join(overlay["GOBIN"], source_id.rsplit("/", 1)[-1])
        with open(artifact, "wb") as f:
            f.write(ELF_HEADER + f"rebuilt {source_id}".encode())
        return ""


class Reports:
    """Report callback collecting (path, elapsed, error) tuples."""

    def __init__(self):
        self.lock = threading.Lock()
        self.entries = []

    def __call__(self, binary, elapsed, error):
        with self.lock:
            self.entries.append((binary.path, elapsed, error))

    def for_path(self, path):
        return [e for e in self.entries if e[0] == path]


@pytest.fixture
def host(tmp_path):
    """Host whose home directory is the test's tmp_path."""
    return HostEnvironment(
        home=str(tmp_path),
        uid=os.getuid() if hasattr(os, "getuid") else None,
        gid=os.getgid() if hasattr(os, "getgid") else None,
        os="linux",
        arch="amd64",
        cpu_count=4,
    )


@pytest.fixture
def reports():
    return Reports()


posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX permission bits required")

running_as_root = hasattr(os, "geteuid") and os.geteuid() == 0

needs_unprivileged = pytest.mark.skipif(
    running_as_root, reason="root bypasses permission checks"
)


def read_only(path):
    """Drop write permission from ``path`` (file or directory)."""
    mode = os.stat(path).st_mode
    os.chmod(path, mode & ~(stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH))
