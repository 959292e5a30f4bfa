"""
Filesystem classification of discovery candidates.

Decides whether a directory entry is a plausible compiled executable
(executable check + content sniff) and whether a path can currently be
replaced in place.
"""

from __future__ import annotations

import contextlib
import os
import stat
import tempfile
from dataclasses import dataclass
from typing import Callable

from .common import vlog
from .config import Preferences
from .environment import HostEnvironment


SNIFF_LEN = 32

TEXT_PLAIN = "text/plain"
OCTET_STREAM = "application/octet-stream"

_WHITESPACE = b"\t\n\x0c\r "


class ExecutableCheck:
    """Strategy deciding whether a path is an executable regular file."""

    def matches(self, path: str) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class PermissionBitsCheck(ExecutableCheck):
    """
    POSIX permission-bit rule.

    A regular file is executable when others may execute it, or when the
    group/owner bit is set and the process gid/uid matches the file's.
    """
    uid: int | None
    gid: int | None

    def matches(self, path: str) -> bool:
        try:
            st = os.stat(path)
        except OSError:
            return False
        if not stat.S_ISREG(st.st_mode):
            return False
        mode = st.st_mode
        if mode & stat.S_IXOTH:
            return True
        if mode & stat.S_IXGRP and self.gid is not None and st.st_gid == self.gid:
            return True
        return bool(mode & stat.S_IXUSR and self.uid is not None and st.st_uid == self.uid)


@dataclass(frozen=True)
class ExtensionCheck(ExecutableCheck):
    """Filename-extension rule for platforms without permission bits."""
    extensions: tuple[str, ...] = (".exe",)

    def matches(self, path: str) -> bool:
        if not os.path.isfile(path):
            return False
        name = os.path.basename(path).lower()
        return any(
            len(name) > len(ext) and name.endswith(ext.lower())
            for ext in self.extensions
        )


def select_executable_check(preferences: Preferences, host: HostEnvironment) -> ExecutableCheck:
    """
    Pick the executable check for this host.

    'auto' uses permission bits on POSIX hosts and extensions elsewhere.
    """
    kind = preferences.executable_check
    if kind == "auto":
        kind = "permissions" if os.name == "posix" else "extension"
    if kind == "permissions":
        return PermissionBitsCheck(uid=host.uid, gid=host.gid)
    return ExtensionCheck(extensions=preferences.executable_extensions)


def _prefix(signature: bytes) -> Callable[[bytes], bool]:
    return lambda data: data.startswith(signature)


def _html(tag: bytes) -> Callable[[bytes], bool]:
    """Case-insensitive tag after leading whitespace, followed by ' ' or '>'."""
    tag = tag.upper()

    def match(data: bytes) -> bool:
        data = data.lstrip(_WHITESPACE)
        if len(data) < len(tag) + 1:
            return False
        return data[:len(tag)].upper() == tag and data[len(tag)] in b" >"
    return match


def _riff(kind: bytes) -> Callable[[bytes], bool]:
    return lambda data: data[:4] == b"RIFF" and data[8:8 + len(kind)] == kind


def _has_binary_bytes(data: bytes) -> bool:
    for b in data:
        if b <= 0x08 or b == 0x0B or 0x0E <= b <= 0x1A or 0x1C <= b <= 0x1F:
            return True
    return False


# Ordered as in the WHATWG MIME sniffing algorithm; first match wins.
_SIGNATURES: list[tuple[Callable[[bytes], bool], str]] = [
    *[
        (_html(tag), "text/html; charset=utf-8")
        for tag in (
            b"<!DOCTYPE HTML", b"<HTML", b"<HEAD", b"<SCRIPT", b"<IFRAME", b"<H1",
            b"<DIV", b"<FONT", b"<TABLE", b"<A", b"<STYLE", b"<TITLE", b"<B",
            b"<BODY", b"<BR", b"<P", b"<!--",
        )
    ],
    (lambda data: data.lstrip(_WHITESPACE).startswith(b"<?xml"), "text/xml; charset=utf-8"),
    (_prefix(b"%PDF-"), "application/pdf"),
    (_prefix(b"%!PS-Adobe-"), "application/postscript"),
    (_prefix(b"\xfe\xff"), "text/plain; charset=utf-16be"),
    (_prefix(b"\xff\xfe"), "text/plain; charset=utf-16le"),
    (_prefix(b"\xef\xbb\xbf"), "text/plain; charset=utf-8"),
    (_prefix(b"\x00\x00\x01\x00"), "image/x-icon"),
    (_prefix(b"\x00\x00\x02\x00"), "image/x-icon"),
    (_prefix(b"BM"), "image/bmp"),
    (_prefix(b"GIF87a"), "image/gif"),
    (_prefix(b"GIF89a"), "image/gif"),
    (_riff(b"WEBPVP"), "image/webp"),
    (_prefix(b"\x89PNG\r\n\x1a\n"), "image/png"),
    (_prefix(b"\xff\xd8\xff"), "image/jpeg"),
    (_riff(b"WAVE"), "audio/wave"),
    (_riff(b"AVI "), "video/avi"),
    (_prefix(b"ID3"), "audio/mpeg"),
    (_prefix(b"OggS\x00"), "application/ogg"),
    (_prefix(b"MThd\x00\x00\x00\x06"), "audio/midi"),
    (_prefix(b"\x1a\x45\xdf\xa3"), "video/webm"),
    (_prefix(b"OTTO"), "font/otf"),
    (_prefix(b"\x00\x01\x00\x00"), "font/ttf"),
    (_prefix(b"wOFF"), "font/woff"),
    (_prefix(b"wOF2"), "font/woff2"),
    (_prefix(b"\x1f\x8b\x08"), "application/x-gzip"),
    (_prefix(b"PK\x03\x04"), "application/zip"),
    (_prefix(b"Rar!\x1a\x07\x00"), "application/x-rar-compressed"),
    (_prefix(b"Rar!\x1a\x07\x01\x00"), "application/x-rar-compressed"),
    (_prefix(b"\x00asm"), "application/wasm"),
]


def sniff_content_type(data: bytes) -> str:
    """
    Guess the MIME type of the first bytes of a file.

    Known signatures win; otherwise data without control bytes is
    ``text/plain`` and everything else ``application/octet-stream``.
    """
    data = data[:512]
    for match, content_type in _SIGNATURES:
        if match(data):
            return content_type
    if not _has_binary_bytes(data):
        return "text/plain; charset=utf-8"
    return OCTET_STREAM


def is_binary(path: str) -> bool:
    """
    Check whether a file's leading bytes look like non-text content.

    Returns:
        False for empty or unreadable files and for plain text
    """
    try:
        with open(path, "rb") as f:
            head = f.read(SNIFF_LEN)
    except OSError:
        return False
    if not head:
        return False
    return TEXT_PLAIN not in sniff_content_type(head)


def is_candidate_executable(path: str, check: ExecutableCheck) -> bool:
    """Executable regular file whose content is not plain text."""
    return check.matches(path) and is_binary(path)


def can_write(path: str, verbose: bool = False) -> bool:
    """
    Probe whether ``path`` can be replaced in place.

    For a directory, a temporary file is created inside it and removed. For
    a file, a temporary sibling is created, the file is renamed over it and
    renamed back, and the sibling is removed. The filesystem is left as it
    was found on every path; a file that was moved aside is always moved
    back before the probe returns.

    Returns:
        True if every step succeeded
    """
    try:
        is_dir = stat.S_ISDIR(os.stat(path).st_mode)
    except OSError:
        return False

    directory = path if is_dir else os.path.dirname(os.path.abspath(path))
    try:
        fd, probe = tempfile.mkstemp(prefix=f".{os.path.basename(path)}.", dir=directory)
    except OSError:
        return False
    os.close(fd)

    if is_dir:
        try:
            os.remove(probe)
        except OSError as e:
            vlog(f"Could not remove write probe {probe}: {e}", verbose)
            return False
        return True

    moved = False
    try:
        os.replace(path, probe)
        moved = True
        os.replace(probe, path)
        moved = False
        return True
    except OSError:
        return False
    finally:
        if moved:
            try:
                os.replace(probe, path)
            except OSError as e:
                # Never delete the probe here: it is the original file.
                vlog(f"Could not move {probe} back to {path}: {e}", verbose)
        else:
            with contextlib.suppress(OSError):
                os.remove(probe)
