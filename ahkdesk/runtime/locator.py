"""Layered executable discovery: registry, well-known directories, shell search path."""

from __future__ import annotations

import asyncio
import logging
import os
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Mapping, Sequence

from .models import DiscoverySource, InstallationStatus
from .version_probe import (
    AHK_VERSION_ARGS,
    AHK_VERSION_INPUT,
    UNKNOWN_VERSION,
    VersionProbe,
    VersionValidator,
)

try:
    import winreg
except ImportError:  # pragma: no cover - exercised on non-Windows only
    winreg = None  # type: ignore[assignment]

logger = logging.getLogger("ahkdesk.runtime.locator")

AHK_REGISTRY_KEYS: tuple[tuple[str, str], ...] = (
    ("HKLM", r"SOFTWARE\AutoHotkey"),
    ("HKLM", r"SOFTWARE\WOW6432Node\AutoHotkey"),
    ("HKCU", r"SOFTWARE\AutoHotkey"),
)
AHK_REGISTRY_VALUE = "InstallDir"
AHK_VERSION_MARKER = "v2"
AHK_EXECUTABLE_SUBPATHS: tuple[tuple[str, ...], ...] = (
    ("v2", "AutoHotkey64.exe"),
    ("v2", "AutoHotkey32.exe"),
    ("v2", "AutoHotkey.exe"),
    ("AutoHotkey.exe",),
    ("AutoHotkey64.exe",),
    ("AutoHotkey32.exe",),
)
AHK_SEARCH_NAMES = ("AutoHotkey64.exe", "AutoHotkey.exe", "AutoHotkey32.exe")
AHK2EXE_SUBPATHS: tuple[tuple[str, ...], ...] = (("Compiler", "Ahk2Exe.exe"),)


def default_install_roots(environ: Mapping[str, str] | None = None) -> list[Path]:
    """Return well-known AutoHotkey install directories in precedence order."""
    env = os.environ if environ is None else environ
    program_files = env.get("ProgramFiles") or r"C:\Program Files"
    program_files_x86 = env.get("ProgramFiles(x86)") or r"C:\Program Files (x86)"
    roots = [
        Path(program_files) / "AutoHotkey",
        Path(program_files_x86) / "AutoHotkey",
    ]
    local_app_data = env.get("LOCALAPPDATA")
    if local_app_data:
        roots.append(Path(local_app_data) / "Programs" / "AutoHotkey")
    return roots


class WinRegistryReader:
    """Read-only string lookups against the Windows registry."""

    def read_value(self, hive: str, key: str, value_name: str) -> str | None:
        if winreg is None:
            return None
        root = winreg.HKEY_LOCAL_MACHINE if hive == "HKLM" else winreg.HKEY_CURRENT_USER
        try:
            with winreg.OpenKey(root, key, 0, winreg.KEY_READ) as handle:
                value, _ = winreg.QueryValueEx(handle, value_name)
        except OSError:
            return None
        return str(value) if value else None


def shell_search(name: str) -> list[str]:
    """Return every match for name on the shell search path, in search order."""
    command = ["where", name] if sys.platform == "win32" else ["which", "-a", name]
    try:
        result = subprocess.run(command, capture_output=True, text=True, timeout=10)
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("Search path query failed for %s: %s", name, exc)
        return []
    if result.returncode != 0:
        return []
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


@dataclass(frozen=True)
class ProbeHit:
    path: Path
    version: str


class LocatorProbe:
    """One discovery strategy; subclasses yield candidate paths in preference order."""

    source: DiscoverySource

    def __init__(self, version_probe: VersionProbe | None = None) -> None:
        self.version_probe = version_probe

    def candidates(self) -> Iterable[Path]:
        raise NotImplementedError

    def _check(self, path: Path, validate: VersionValidator | None) -> ProbeHit | None:
        try:
            if not path.is_file():
                return None
        except OSError:
            return None
        version = self.version_probe.read(path) if self.version_probe else UNKNOWN_VERSION
        if validate is not None and (version == UNKNOWN_VERSION or not validate(version)):
            logger.info("Rejected %s candidate %s (version=%s)", self.source.value, path, version)
            return None
        return ProbeHit(path=path, version=version)

    def probe(self, validate: VersionValidator | None = None) -> ProbeHit | None:
        """Return the first existing, validated candidate or None."""
        try:
            for candidate in self.candidates():
                hit = self._check(candidate, validate)
                if hit is not None:
                    return hit
        except OSError as exc:
            logger.debug("%s probe failed: %s", self.source.value, exc)
        return None


class RegistryProbe(LocatorProbe):
    source = DiscoverySource.REGISTRY

    def __init__(
        self,
        *,
        keys: Sequence[tuple[str, str]] = AHK_REGISTRY_KEYS,
        value_name: str = AHK_REGISTRY_VALUE,
        subpaths: Sequence[tuple[str, ...]] = AHK_EXECUTABLE_SUBPATHS,
        reader: WinRegistryReader | None = None,
        version_probe: VersionProbe | None = None,
    ) -> None:
        super().__init__(version_probe)
        self.keys = keys
        self.value_name = value_name
        self.subpaths = subpaths
        self.reader = reader or WinRegistryReader()

    def candidates(self) -> Iterable[Path]:
        for hive, key in self.keys:
            try:
                install_dir = self.reader.read_value(hive, key, self.value_name)
            except OSError as exc:
                logger.debug("Registry read failed for %s\\%s: %s", hive, key, exc)
                continue
            if not install_dir:
                continue
            for subpath in self.subpaths:
                yield Path(install_dir, *subpath)


class CommonPathProbe(LocatorProbe):
    source = DiscoverySource.COMMON_PATH

    def __init__(
        self,
        *,
        roots: Sequence[Path],
        subpaths: Sequence[tuple[str, ...]] = AHK_EXECUTABLE_SUBPATHS,
        version_probe: VersionProbe | None = None,
    ) -> None:
        super().__init__(version_probe)
        self.roots = list(roots)
        self.subpaths = subpaths

    def candidates(self) -> Iterable[Path]:
        for root in self.roots:
            for subpath in self.subpaths:
                yield root.joinpath(*subpath)


class SearchPathProbe(LocatorProbe):
    source = DiscoverySource.SEARCH_PATH

    def __init__(
        self,
        *,
        names: Sequence[str] = AHK_SEARCH_NAMES,
        version_marker: str = AHK_VERSION_MARKER,
        search: Callable[[str], list[str]] = shell_search,
        version_probe: VersionProbe | None = None,
    ) -> None:
        super().__init__(version_probe)
        self.names = names
        self.version_marker = version_marker
        self.search = search

    def _has_marker(self, match: str) -> bool:
        if not self.version_marker:
            return False
        return self.version_marker.lower() in match.lower()

    def candidates(self) -> Iterable[Path]:
        matches: list[str] = []
        for name in self.names:
            for match in self.search(name):
                if match not in matches:
                    matches.append(match)
        preferred = [m for m in matches if self._has_marker(m)]
        rest = [m for m in matches if m not in preferred]
        for match in preferred + rest:
            yield Path(match)


class ToolLocator:
    """Run probes in order and report the first validated hit."""

    def __init__(self, probes: Sequence[LocatorProbe]) -> None:
        self.probes = list(probes)

    async def locate(self, validate: VersionValidator | None = None) -> InstallationStatus:
        for probe in self.probes:
            try:
                hit = await asyncio.to_thread(probe.probe, validate)
            except OSError as exc:
                logger.warning("%s probe raised: %s", probe.source.value, exc)
                continue
            if hit is None:
                logger.debug("%s probe found nothing", probe.source.value)
                continue
            logger.info(
                "Located %s via %s (version=%s)", hit.path, probe.source.value, hit.version
            )
            return InstallationStatus(
                installed=True,
                path=str(hit.path),
                version=hit.version,
                source=probe.source,
            )
        return InstallationStatus(installed=False)


def build_runtime_locator(
    *,
    version_probe: VersionProbe | None = None,
    registry_reader: WinRegistryReader | None = None,
    environ: Mapping[str, str] | None = None,
    search: Callable[[str], list[str]] = shell_search,
) -> ToolLocator:
    """Assemble the registry, common-path, search-path chain for AutoHotkey v2."""
    probe = version_probe or VersionProbe(args=AHK_VERSION_ARGS, stdin_text=AHK_VERSION_INPUT)
    return ToolLocator(
        [
            RegistryProbe(reader=registry_reader, version_probe=probe),
            CommonPathProbe(roots=default_install_roots(environ), version_probe=probe),
            SearchPathProbe(search=search, version_probe=probe),
        ]
    )


def build_compiler_locator(environ: Mapping[str, str] | None = None) -> ToolLocator:
    """Ahk2Exe is only looked up in well-known install directories."""
    return ToolLocator(
        [CommonPathProbe(roots=default_install_roots(environ), subpaths=AHK2EXE_SUBPATHS)]
    )
