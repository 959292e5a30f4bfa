"""
Output rendering and formatting.

Listings and update reports are tab-separated lines on stdout so they can be
piped into cut/awk; error details go to stderr.
"""

from __future__ import annotations

import json
import os
import sys
from typing import Any, Iterable, TextIO


# Environment options
USE_COLOR = os.environ.get("BIN_AUDIT_COLOR", "1") == "1"

# ANSI color codes
GREEN = "\033[32m"
YELLOW = "\033[33m"
RED = "\033[31m"
RESET = "\033[0m"

STATUS_COLORS = {
    "ok": GREEN,
    "skip": YELLOW,
    "fail": RED,
}


def colorize(text: str, color: str, stream: TextIO | None = None) -> str:
    """Apply color to text.

    Args:
        text: Text to colorize
        color: ANSI color code
        stream: Destination stream; colors are only used when it is a terminal

    Returns:
        Colored text or plain text if colors disabled
    """
    if not USE_COLOR or not text:
        return text
    if stream is not None and not (hasattr(stream, "isatty") and stream.isatty()):
        return text
    return f"{color}{text}{RESET}"


def format_binary(binary) -> str:
    """Listing line: ``path<TAB>(source)``."""
    return f"{binary.path}\t({binary.source_id})"


def format_report(
    binary,
    elapsed: float,
    error: Exception | None,
    stream: TextIO | None = None,
) -> str:
    """
    Update report line.

    ``ok<TAB>path<TAB>(source)<TAB>1.234s`` on success,
    ``fail<TAB>path<TAB>(source)`` on failure.
    """
    if error is None:
        status = colorize("ok", STATUS_COLORS["ok"], stream)
        return f"{status}\t{format_binary(binary)}\t{elapsed:.3f}s"
    status = colorize("fail", STATUS_COLORS["fail"], stream)
    return f"{status}\t{format_binary(binary)}"


def format_skip(binary, stream: TextIO | None = None) -> str:
    status = colorize("skip", STATUS_COLORS["skip"], stream)
    return f"{status}\t{format_binary(binary)}"


def format_error(error: Exception) -> str:
    """Error detail for stderr; only the first line gains a tab."""
    return f"\terror: {error}"


def render_listing(binaries: Iterable, stream: TextIO | None = None) -> None:
    """Print one listing line per binary."""
    stream = stream or sys.stdout
    for binary in binaries:
        print(format_binary(binary), file=stream)


def make_reporter(out: TextIO | None = None, err: TextIO | None = None):
    """
    Build a report callback that prints status lines as outcomes arrive.

    Report calls are serialized by the inventory lock, so lines from
    different workers never interleave.
    """
    def report(binary, elapsed: float, error: Exception | None) -> None:
        stdout = out or sys.stdout
        stderr = err or sys.stderr
        print(format_report(binary, elapsed, error, stdout), file=stdout, flush=True)
        if error is not None:
            print(format_error(error), file=stderr, flush=True)
    return report


def render_json(payload: Any, stream: TextIO | None = None) -> None:
    """Write a JSON document (indented, UTF-8 preserved)."""
    stream = stream or sys.stdout
    print(json.dumps(payload, indent=2, ensure_ascii=False), file=stream)
