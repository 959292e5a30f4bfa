"""
Common utilities shared across bin_audit modules.
"""

from __future__ import annotations

import os
import sys
from typing import Iterable


def is_debug_environment() -> bool:
    """
    Check if debug logging was requested through the environment.

    Returns:
        True if BIN_AUDIT_DEBUG=1 is set, False otherwise.
    """
    return os.environ.get("BIN_AUDIT_DEBUG", "0") == "1"


def unique(items: Iterable[str]) -> list[str]:
    """
    De-duplicate strings, keeping the first occurrence of each.

    Args:
        items: Strings in priority order

    Returns:
        List with duplicates removed, original order preserved
    """
    return list(dict.fromkeys(items))


def indent_output(output: str, prefix: str = "\t") -> str:
    """
    Indent every line of captured command output.

    Args:
        output: Combined stdout/stderr of a command
        prefix: String prepended to each line

    Returns:
        Indented text, or empty string if there was no output
    """
    output = output.rstrip("\n")
    if not output:
        return ""
    return prefix + output.replace("\n", "\n" + prefix)


def vlog(msg: str, verbose: bool = False) -> None:
    """
    Log verbose message using structured logging.

    Silent unless verbose mode is enabled or BIN_AUDIT_DEBUG=1, so library
    code can trace its work without writing to the terminal by default.

    Args:
        msg: Message to log
        verbose: Whether verbose mode is enabled
    """
    if verbose or is_debug_environment():
        try:
            from .logging_config import get_logger
            get_logger().debug(msg)
        except Exception:
            # Fallback to stderr if logging fails
            try:
                print(f"[bin_audit] {msg}", file=sys.stderr)
            except Exception:
                pass
