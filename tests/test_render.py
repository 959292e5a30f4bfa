"""
Tests for output formatting (bin_audit/render.py).
"""

import io
import json
from unittest.mock import patch

from bin_audit.inventory import ManagedBinary
from bin_audit.toolchain import ActionError
from bin_audit.update import GroupActionError
from bin_audit.render import (
    GREEN,
    RESET,
    colorize,
    format_binary,
    format_error,
    format_report,
    format_skip,
    make_reporter,
    render_json,
    render_listing,
)


BINARY = ManagedBinary(path="/home/u/go/bin/gopls", source_id="golang.org/x/tools/gopls", writable=True)


class TTY(io.StringIO):
    def isatty(self):
        return True


class TestColorize:
    """Tests for terminal coloring."""

    @patch("bin_audit.render.USE_COLOR", True)
    def test_color_on_terminal(self):
        assert colorize("ok", GREEN, TTY()) == f"{GREEN}ok{RESET}"

    @patch("bin_audit.render.USE_COLOR", True)
    def test_no_color_when_piped(self):
        assert colorize("ok", GREEN, io.StringIO()) == "ok"

    @patch("bin_audit.render.USE_COLOR", False)
    def test_disabled_by_environment(self):
        assert colorize("ok", GREEN, TTY()) == "ok"

    def test_empty_text(self):
        assert colorize("", GREEN) == ""


class TestFormatting:
    """Tests for listing and report lines."""

    def test_listing_line(self):
        assert format_binary(BINARY) == "/home/u/go/bin/gopls\t(golang.org/x/tools/gopls)"

    def test_ok_line(self):
        line = format_report(BINARY, 1.23456, None, io.StringIO())
        assert line == "ok\t/home/u/go/bin/gopls\t(golang.org/x/tools/gopls)\t1.235s"

    def test_fail_line(self):
        line = format_report(BINARY, 0.5, OSError("boom"), io.StringIO())
        assert line == "fail\t/home/u/go/bin/gopls\t(golang.org/x/tools/gopls)"

    def test_skip_line(self):
        assert format_skip(BINARY, io.StringIO()).startswith("skip\t/home/u/go/bin/gopls\t")

    def test_error_detail_indents_first_line_only(self):
        error = Exception("go install: exit status 1\n\tmodule not found")
        assert format_error(error) == "\terror: go install: exit status 1\n\tmodule not found"

    def test_group_error_output_single_tab(self):
        cause = ActionError("go install pkg/foo@latest: exit status 1", output="line one\nline two\n")
        detail = format_error(GroupActionError("pkg/foo", cause))
        assert detail.splitlines() == [
            "\terror: go install pkg/foo@latest: exit status 1",
            "\tline one",
            "\tline two",
        ]


class TestRendering:
    """Tests for stream output."""

    def test_render_listing(self):
        out = io.StringIO()
        render_listing([BINARY, BINARY], out)
        assert out.getvalue().count("\n") == 2

    def test_reporter_splits_streams(self):
        out, err = io.StringIO(), io.StringIO()
        report = make_reporter(out, err)
        report(BINARY, 0.1, None)
        report(BINARY, 0.2, OSError("disk full"))
        lines = out.getvalue().splitlines()
        assert lines[0].startswith("ok\t")
        assert lines[1].startswith("fail\t")
        assert err.getvalue() == "\terror: disk full\n"

    def test_render_json(self):
        out = io.StringIO()
        render_json([BINARY.to_dict()], out)
        data = json.loads(out.getvalue())
        assert data[0]["source_id"] == "golang.org/x/tools/gopls"
