"""Tests for runtime status caching, install adoption and manual overrides."""

from __future__ import annotations

import sys
import tempfile
import unittest
from pathlib import Path

from ahkdesk.config import default_config
from ahkdesk.errors import RuntimeNotInstalledError
from ahkdesk.runtime.manager import RuntimeManager
from ahkdesk.runtime.models import DiscoverySource, InstallationStatus, InstallResult

LOCATED = InstallationStatus(
    installed=True,
    path=r"C:\Program Files\AutoHotkey\v2\AutoHotkey64.exe",
    version="2.0.18",
    source=DiscoverySource.COMMON_PATH,
)


class _CountingLocator:
    def __init__(self, status: InstallationStatus) -> None:
        self.status = status
        self.calls = 0

    async def locate(self, validate=None) -> InstallationStatus:
        self.calls += 1
        return self.status


class _FakePipeline:
    def __init__(self, result: InstallResult) -> None:
        self.result = result
        self.listeners: list = []

    async def install(self, on_progress=None) -> InstallResult:
        self.listeners.append(on_progress)
        return self.result


class _StaticVersionProbe:
    def read(self, executable: Path) -> str:
        return "2.0.7"


class RuntimeManagerTests(unittest.IsolatedAsyncioTestCase):
    """Validate the one-path-plus-version cache owned by the manager."""

    def _manager(self, status: InstallationStatus, **config_overrides) -> tuple[RuntimeManager, _CountingLocator]:
        config = default_config()
        config.update(config_overrides)
        locator = _CountingLocator(status)
        manager = RuntimeManager(
            config,
            locator=locator,
            pipeline=_FakePipeline(InstallResult(path=r"C:\AHK\v2\AutoHotkey64.exe", version="2.0.19")),
            version_probe=_StaticVersionProbe(),
        )
        return manager, locator

    async def test_check_installation_is_cached(self) -> None:
        manager, locator = self._manager(LOCATED)
        first = await manager.check_installation()
        second = await manager.check_installation()
        self.assertIs(first, second)
        self.assertEqual(locator.calls, 1)
        self.assertEqual(manager.get_executable_path(), LOCATED.path)
        self.assertEqual(await manager.get_version(), "2.0.18")

    async def test_get_executable_path_requires_known_path(self) -> None:
        manager, _ = self._manager(InstallationStatus(installed=False))
        await manager.check_installation()
        with self.assertRaises(RuntimeNotInstalledError):
            manager.get_executable_path()
        with self.assertRaises(RuntimeNotInstalledError):
            await manager.resolve_executable_path()

    async def test_install_adopts_result_and_invalidates_cache(self) -> None:
        manager, locator = self._manager(InstallationStatus(installed=False))
        await manager.check_installation()
        result = await manager.install()
        self.assertEqual(manager.get_executable_path(), result.path)
        self.assertEqual(await manager.get_version(), "2.0.19")
        locator.status = LOCATED
        status = await manager.check_installation()
        self.assertTrue(status.installed)
        self.assertEqual(locator.calls, 2)

    async def test_manual_path_override_invalidates_cache(self) -> None:
        manager, locator = self._manager(LOCATED)
        await manager.check_installation()
        manager.set_executable_path(sys.executable)
        status = await manager.check_installation()
        self.assertEqual(status.path, sys.executable)
        self.assertEqual(status.version, "2.0.7")
        self.assertIsNone(status.source)
        self.assertEqual(locator.calls, 1)
        self.assertEqual(manager.get_executable_path(), sys.executable)

    async def test_configured_path_that_does_not_exist_reports_not_installed(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            missing = str(Path(tmpdir) / "AutoHotkey64.exe")
            manager, locator = self._manager(LOCATED, ahk_path=missing)
            status = await manager.check_installation()
        self.assertFalse(status.installed)
        self.assertEqual(locator.calls, 0)


if __name__ == "__main__":
    unittest.main()
