"""
Host environment detection.

Resolves, once per invocation, the facts discovery and update depend on:
the invoking user's home directory and ids, the host operating system and
architecture (named the way Go build information names them), and the
available parallelism. The resulting value is passed explicitly to the
path resolver, the inventory and the update pipeline.
"""

from __future__ import annotations

import os
import platform
import sys
from dataclasses import dataclass

from .common import vlog


# sys.platform prefix -> GOOS
_OS_NAMES = (
    ("linux", "linux"),
    ("darwin", "darwin"),
    ("win32", "windows"),
    ("cygwin", "windows"),
    ("freebsd", "freebsd"),
    ("openbsd", "openbsd"),
    ("netbsd", "netbsd"),
    ("dragonfly", "dragonfly"),
    ("sunos", "solaris"),
    ("aix", "aix"),
)

# platform.machine() -> GOARCH
_ARCH_NAMES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "i386": "386",
    "i486": "386",
    "i586": "386",
    "i686": "386",
    "x86": "386",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv5l": "arm",
    "armv6l": "arm",
    "armv7l": "arm",
    "arm": "arm",
    "ppc64le": "ppc64le",
    "ppc64": "ppc64",
    "s390x": "s390x",
    "riscv64": "riscv64",
    "loongarch64": "loong64",
    "mips": "mips",
    "mips64": "mips64",
}


@dataclass(frozen=True)
class HostEnvironment:
    """
    Detected host information.

    Attributes:
        home: Home directory of the invoking user, None if unknown
        uid: Process user id (None where the platform has none)
        gid: Process group id (None where the platform has none)
        os: Operating system name (GOOS naming)
        arch: CPU architecture name (GOARCH naming)
        cpu_count: Logical CPU count reported by the OS
    """
    home: str | None
    uid: int | None
    gid: int | None
    os: str
    arch: str
    cpu_count: int = 1

    @property
    def parallelism(self) -> int:
        """Number of workers the host can usefully run at once."""
        return max(1, self.cpu_count)

    def __str__(self) -> str:
        return f"{self.os}/{self.arch} ({self.cpu_count} CPUs, home: {self.home or 'unknown'})"


def normalize_os(name: str) -> str:
    """Map a sys.platform value to its GOOS name."""
    for prefix, goos in _OS_NAMES:
        if name.startswith(prefix):
            return goos
    return name


def normalize_arch(machine: str) -> str:
    """Map a platform.machine() value to its GOARCH name."""
    machine = machine.lower()
    return _ARCH_NAMES.get(machine, machine)


def _current_user() -> tuple[str | None, int | None, int | None]:
    """
    Look up the invoking user.

    Returns:
        Tuple of (home, uid, gid); any element is None when it cannot be determined
    """
    getuid = getattr(os, "getuid", None)
    getgid = getattr(os, "getgid", None)
    uid = getuid() if getuid else None
    gid = getgid() if getgid else None

    home = None
    if uid is not None:
        try:
            import pwd
            home = pwd.getpwuid(uid).pw_dir or None
        except (ImportError, KeyError):
            home = None
    if home is None:
        expanded = os.path.expanduser("~")
        if expanded != "~":
            home = expanded

    return home, uid, gid


def detect_host(verbose: bool = False) -> HostEnvironment:
    """
    Detect the host environment.

    Never raises: facts that cannot be determined are left as None.

    Args:
        verbose: Enable verbose logging

    Returns:
        HostEnvironment describing the running process
    """
    home, uid, gid = _current_user()
    host = HostEnvironment(
        home=home,
        uid=uid,
        gid=gid,
        os=normalize_os(sys.platform),
        arch=normalize_arch(platform.machine()),
        cpu_count=os.cpu_count() or 1,
    )
    vlog(f"Host environment: {host}", verbose)
    return host
