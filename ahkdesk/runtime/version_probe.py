"""Executable version extraction: ask the binary first, then read its file-version resource."""

from __future__ import annotations

import logging
import re
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

logger = logging.getLogger("ahkdesk.runtime.version_probe")

UNKNOWN_VERSION = "unknown"
SEMVER_PATTERN = re.compile(r"\d+\.\d+(?:\.\d+)?(?:-[\w.]+)?")

# AutoHotkey has no version flag; it reports A_AhkVersion when fed a one-line script on stdin.
AHK_VERSION_ARGS = ("/ErrorStdOut", "*")
AHK_VERSION_INPUT = 'FileAppend A_AhkVersion, "*"'

VersionValidator = Callable[[str], bool]


def parse_version(text: str) -> str | None:
    """Return the first semantic-version-looking token in text."""
    match = SEMVER_PATTERN.search(text or "")
    return match.group(0) if match else None


def require_major(major: int) -> VersionValidator:
    """Build a validator accepting versions whose major component equals major."""

    def _validate(version: str) -> bool:
        parsed = parse_version(version)
        if parsed is None:
            return False
        return parsed.split(".", maxsplit=1)[0] == str(major)

    return _validate


def read_file_version(path: Path) -> str | None:
    """Read the embedded VS_FIXEDFILEINFO version of a Windows binary."""
    if sys.platform != "win32":
        return None
    import ctypes
    from ctypes import wintypes

    class VS_FIXEDFILEINFO(ctypes.Structure):
        _fields_ = [
            ("dwSignature", wintypes.DWORD),
            ("dwStrucVersion", wintypes.DWORD),
            ("dwFileVersionMS", wintypes.DWORD),
            ("dwFileVersionLS", wintypes.DWORD),
            ("dwProductVersionMS", wintypes.DWORD),
            ("dwProductVersionLS", wintypes.DWORD),
            ("dwFileFlagsMask", wintypes.DWORD),
            ("dwFileFlags", wintypes.DWORD),
            ("dwFileOS", wintypes.DWORD),
            ("dwFileType", wintypes.DWORD),
            ("dwFileSubtype", wintypes.DWORD),
            ("dwFileDateMS", wintypes.DWORD),
            ("dwFileDateLS", wintypes.DWORD),
        ]

    version_dll = ctypes.windll.version
    size = version_dll.GetFileVersionInfoSizeW(str(path), None)
    if not size:
        return None
    buffer = ctypes.create_string_buffer(size)
    if not version_dll.GetFileVersionInfoW(str(path), 0, size, buffer):
        return None
    info_ptr = ctypes.c_void_p()
    info_len = wintypes.UINT()
    if not version_dll.VerQueryValueW(buffer, "\\", ctypes.byref(info_ptr), ctypes.byref(info_len)):
        return None
    if not info_len.value:
        return None
    info = ctypes.cast(info_ptr, ctypes.POINTER(VS_FIXEDFILEINFO)).contents
    major = info.dwFileVersionMS >> 16
    minor = info.dwFileVersionMS & 0xFFFF
    patch = info.dwFileVersionLS >> 16
    return f"{major}.{minor}.{patch}"


@dataclass
class VersionProbe:
    """Two-tier version reader used by every locator probe."""

    args: tuple[str, ...] = ("--version",)
    stdin_text: str | None = None
    timeout_seconds: float = 5.0
    file_version_reader: Callable[[Path], str | None] = field(default=read_file_version)

    def _from_invocation(self, executable: Path) -> str | None:
        try:
            result = subprocess.run(
                [str(executable), *self.args],
                input=self.stdin_text,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug("Version invocation failed for %s: %s", executable, exc)
            return None
        return parse_version((result.stdout or "") + "\n" + (result.stderr or ""))

    def read(self, executable: Path) -> str:
        """Return the executable's version or UNKNOWN_VERSION."""
        version = self._from_invocation(executable)
        if version:
            return version
        try:
            version = self.file_version_reader(executable)
        except OSError as exc:
            logger.debug("File version lookup failed for %s: %s", executable, exc)
            version = None
        return version or UNKNOWN_VERSION
