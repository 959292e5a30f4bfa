"""
End-to-end integration tests for discovery and rebuild workflows.

Runs the real GoToolchain against a simulated ``go`` command, from the
directory scan through the in-place replacement.
"""

import os
import sys
import threading
from unittest.mock import MagicMock, patch

import pytest

from bin_audit import Config, GoToolchain, GroupActionError, fetch_sources, search, update
from conftest import ELF_HEADER, make_executable

# Permission-bit classification and the fake go tool rely on POSIX paths
skip_on_windows = pytest.mark.skipif(
    sys.platform == "win32",
    reason="POSIX executable bits required",
)


class FakeGo:
    """
    Simulated ``go`` command dispatched from subprocess.run.

    Args:
        packages: Mapping of binary path -> package path
        broken: Package paths whose install fails
    """

    def __init__(self, packages, broken=()):
        self.packages = packages
        self.broken = set(broken)
        self.lock = threading.Lock()
        self.commands = []

    def __call__(self, command, **kwargs):
        with self.lock:
            self.commands.append((list(command), kwargs.get("env")))

        if command[:3] == ["go", "version", "-m"]:
            package = self.packages.get(command[3])
            if package is None:
                return MagicMock(returncode=1, stdout=f"{command[3]}: not a Go executable\n")
            return MagicMock(returncode=0, stdout=(
                f"{command[3]}: go1.22.1\n"
                f"\tpath\t{package}\n"
                f"\tmod\t{package}\tv1.0.0\th1:x=\n"
                "\tbuild\tGOARCH=amd64\n"
                "\tbuild\tGOOS=linux\n"
            ))

        package = command[-1].rsplit("@", 1)[0]
        if "-n" in command:
            return MagicMock(returncode=0, stdout="mkdir -p $WORK/b001/\n")
        if package in self.broken:
            return MagicMock(returncode=1, stdout=f"go: {package}@latest: no matching versions\n")

        env = kwargs["env"]
        artifact = os.path.join(env["GOBIN"], package.rsplit("/", 1)[-1])
        with open(artifact, "wb") as f:
            f.write(ELF_HEADER + f"v2 {package}".encode())
        return MagicMock(returncode=0, stdout="")

    def installs(self):
        return [c for c, _ in self.commands if c[:2] == ["go", "install"] and "-n" not in c]


@skip_on_windows
class TestDiscoverAndUpdate:
    """Integration tests for a full rebuild run."""

    def test_rebuild_directory(self, tmp_path, host, reports):
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir()
        gopls = make_executable(bin_dir / "gopls")
        dlv = make_executable(bin_dir / "dlv")
        make_executable(bin_dir / "cbinary")
        (bin_dir / "notes.txt").write_text("not a binary\n")
        fake = FakeGo({
            gopls: "golang.org/x/tools/gopls",
            dlv: "github.com/go-delve/delve/cmd/dlv",
        })

        with patch("bin_audit.toolchain.subprocess.run", side_effect=fake):
            toolchain = GoToolchain(host=host)
            inventory = search([str(bin_dir)], toolchain, host=host, config=Config())
            result = update(inventory, toolchain, reports, extra_args=["-trimpath"], host=host)

        assert [b.path for b in inventory] == [dlv, gopls]
        assert result.success
        assert sorted(result.succeeded) == [dlv, gopls]
        with open(gopls, "rb") as f:
            assert f.read().endswith(b"v2 golang.org/x/tools/gopls")

        installs = fake.installs()
        assert len(installs) == 2
        assert all(c[2] == "-trimpath" for c in installs)

        workspaces = [env["GOPATH"] for c, env in fake.commands if env]
        assert all("-modcacherw" in env["GOFLAGS"] for c, env in fake.commands if env)
        assert not any(os.path.exists(w) for w in workspaces)

    def test_failed_install_keeps_binary(self, tmp_path, host, reports):
        tool = make_executable(tmp_path / "tool")
        fake = FakeGo({tool: "example.com/tool"}, broken={"example.com/tool"})

        with patch("bin_audit.toolchain.subprocess.run", side_effect=fake):
            toolchain = GoToolchain(host=host)
            inventory = search([str(tmp_path)], toolchain, host=host)
            result = update(inventory, toolchain, reports, host=host)

        assert not result.success
        with open(tool, "rb") as f:
            assert f.read() == ELF_HEADER
        error = reports.entries[0][2]
        assert isinstance(error, GroupActionError)
        assert "\tgo: example.com/tool@latest: no matching versions" in str(error)

    def test_fetch_sources_into_gopath(self, tmp_path, host, reports):
        tool = make_executable(tmp_path / "tool")
        gopath = tmp_path / "gopath"
        gopath.mkdir()
        fake = FakeGo({tool: "example.com/tool"})

        with patch("bin_audit.toolchain.subprocess.run", side_effect=fake):
            toolchain = GoToolchain(host=host)
            inventory = search([str(tmp_path)], toolchain, host=host)
            failures = fetch_sources(inventory, toolchain, str(gopath), reports, host=host)

        assert failures == 0
        assert fake.installs() == []
        fetch_envs = [env for c, env in fake.commands if "-n" in c]
        assert fetch_envs[0]["GOPATH"] == str(gopath)
