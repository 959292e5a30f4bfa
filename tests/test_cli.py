"""
Tests for the command-line entry point (audit.py).
"""

import json
import os
from unittest.mock import patch

import pytest

import audit
from bin_audit.config import Config, ConfigError
from bin_audit.inventory import Inventory, ManagedBinary, SearchPathError
from bin_audit.update import UpdateResult
from conftest import FakeToolchain, make_executable, posix_only


def _inventory():
    return Inventory([
        ManagedBinary("/home/u/bin/a", "example.com/a", writable=True),
        ManagedBinary("/usr/local/bin/b", "example.com/b", writable=False),
    ])


@pytest.fixture
def cli(host):
    """Patch configuration and host detection for main()."""
    with patch("audit.load_config", return_value=Config()) as load, \
            patch("audit.detect_host", return_value=host):
        yield load


class TestInstallArguments:
    """Tests for install argument assembly."""

    def test_ldflags_appended(self):
        args = audit.build_parser().parse_args(["-u", "--install-arg=-trimpath", "--ldflags=-s -w"])
        assert audit.install_arguments(args) == ["-trimpath", "-ldflags=-s -w"]

    def test_no_extra_arguments(self):
        args = audit.build_parser().parse_args(["-u"])
        assert audit.install_arguments(args) == []


class TestResolveSourcesRoot:
    """Tests for the -s DIR argument."""

    @patch.dict(os.environ, {"GOPATH": os.pathsep.join(["/first", "/second"])})
    def test_dot_uses_first_workspace_entry(self):
        assert audit.resolve_sources_root(".", "GOPATH") == os.path.abspath("/first")

    @patch.dict(os.environ, {"GOPATH": ""})
    def test_dot_without_workspace(self):
        with pytest.raises(ValueError, match="GOPATH"):
            audit.resolve_sources_root(".", "GOPATH")

    def test_explicit_directory(self, tmp_path):
        assert audit.resolve_sources_root(str(tmp_path), "GOPATH") == str(tmp_path)


class TestParser:
    """Tests for argument parsing."""

    def test_update_and_sources_exclusive(self):
        with pytest.raises(SystemExit):
            audit.build_parser().parse_args(["-u", "-s", "."])

    def test_targets_collected(self):
        args = audit.build_parser().parse_args(["-v", "~/bin", "golang.org/x"])
        assert args.targets == ["~/bin", "golang.org/x"]
        assert args.verbose


class TestMain:
    """Tests for command routing."""

    def test_list(self, cli, capsys):
        with patch("audit.search", return_value=_inventory()):
            assert audit.main([]) == 0
        out = capsys.readouterr().out
        assert out == "/home/u/bin/a\t(example.com/a)\n/usr/local/bin/b\t(example.com/b)\n"

    def test_list_json(self, cli, capsys):
        with patch("audit.search", return_value=_inventory()):
            assert audit.main(["--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert [b["path"] for b in data] == ["/home/u/bin/a", "/usr/local/bin/b"]

    def test_search_path_error(self, cli, capsys):
        with patch("audit.search", side_effect=SearchPathError("couldn't find any search paths")):
            assert audit.main([]) == 1
        assert "couldn't find any search paths" in capsys.readouterr().err

    def test_config_error(self, capsys):
        with patch("audit.load_config", side_effect=ConfigError("Could not load config")):
            assert audit.main(["--config", "missing.yml"]) == 1
        assert "Could not load config" in capsys.readouterr().err

    def test_update_reports_skips(self, cli, capsys):
        result = UpdateResult(("example.com/a",), ("/home/u/bin/a",), (), ("/usr/local/bin/b",), 0.1)
        with patch("audit.search", return_value=_inventory()), \
                patch("audit.update", return_value=result) as mock_update:
            assert audit.main(["-u", "--ldflags=-s"]) == 0
        assert "skip\t/usr/local/bin/b\t(example.com/b)" in capsys.readouterr().out
        assert mock_update.call_args[1]["extra_args"] == ["-ldflags=-s"]

    def test_update_failure_exit_code(self, cli):
        result = UpdateResult(("example.com/a",), (), ("/home/u/bin/a",), (), 0.1)
        with patch("audit.search", return_value=_inventory()), \
                patch("audit.update", return_value=result):
            assert audit.main(["-u"]) == 1

    def test_sources(self, cli, tmp_path):
        with patch("audit.search", return_value=_inventory()), \
                patch("audit.fetch_sources", return_value=0) as mock_fetch:
            assert audit.main(["-s", str(tmp_path)]) == 0
        assert mock_fetch.call_args[0][2] == str(tmp_path)

    def test_sources_without_workspace(self, cli, capsys):
        with patch("audit.search", return_value=_inventory()), \
                patch.dict(os.environ, {"GOPATH": ""}):
            assert audit.main(["-s", "."]) == 1
        assert "GOPATH" in capsys.readouterr().err


@posix_only
class TestEndToEnd:
    """Discovery and update through main() with a fake toolchain."""

    def test_update_rewrites_binary(self, cli, tmp_path, capsys):
        tool = make_executable(tmp_path / "foo")
        toolchain = FakeToolchain({tool: "example.com/cmd/foo"})
        with patch("audit.GoToolchain", return_value=toolchain):
            assert audit.main(["-u", str(tmp_path)]) == 0

        out = capsys.readouterr().out
        assert out.startswith(f"ok\t{tool}\t(example.com/cmd/foo)\t")
        with open(tool, "rb") as f:
            assert f.read().endswith(b"rebuilt example.com/cmd/foo")

    def test_update_failure_details_on_stderr(self, cli, tmp_path, capsys):
        tool = make_executable(tmp_path / "foo")
        toolchain = FakeToolchain({tool: "example.com/cmd/foo"}, fail_build={"example.com/cmd/foo"})
        with patch("audit.GoToolchain", return_value=toolchain):
            assert audit.main(["-u", str(tmp_path)]) == 1

        captured = capsys.readouterr()
        assert captured.out.startswith(f"fail\t{tool}\t")
        assert "\terror: go install example.com/cmd/foo@latest: exit status 2" in captured.err
        assert "\n\tline one\n\tline two\n" in captured.err
        assert "\t\tline one" not in captured.err
