"""AutoHotkey runtime discovery cache, install entry point and manual override."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from ahkdesk.config import load_config
from ahkdesk.errors import RuntimeNotInstalledError

from .acquisition import AcquisitionPipeline, ProgressCallback
from .locator import ToolLocator, build_runtime_locator
from .models import InstallationStatus, InstallResult
from .version_probe import (
    AHK_VERSION_ARGS,
    AHK_VERSION_INPUT,
    UNKNOWN_VERSION,
    VersionProbe,
    require_major,
)

logger = logging.getLogger("ahkdesk.runtime.manager")


class RuntimeManager:
    """Owns one cached path + version for the AutoHotkey runtime."""

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        *,
        locator: ToolLocator | None = None,
        pipeline: AcquisitionPipeline | None = None,
        version_probe: VersionProbe | None = None,
    ) -> None:
        cfg = config or load_config()
        self.validate = require_major(int(cfg["required_major_version"]))
        self.version_probe = version_probe or VersionProbe(
            args=AHK_VERSION_ARGS, stdin_text=AHK_VERSION_INPUT
        )
        self.locator = locator or build_runtime_locator(version_probe=self.version_probe)
        self.pipeline = pipeline or AcquisitionPipeline(
            self.locator,
            installer_url=cfg["installer_url"],
            validate=self.validate,
            download_timeout_seconds=float(cfg["download_timeout_seconds"]),
            download_settle_seconds=float(cfg["download_settle_seconds"]),
            install_settle_seconds=float(cfg["install_settle_seconds"]),
            verify_retries=int(cfg["verify_retries"]),
            verify_delay_seconds=float(cfg["verify_delay_seconds"]),
        )
        self._status: InstallationStatus | None = None
        self._path: str | None = None
        self._version: str | None = None
        self._manual_path: str | None = cfg.get("ahk_path") or None

    def invalidate(self) -> None:
        """Drop the cached discovery result."""
        self._status = None

    async def check_installation(self) -> InstallationStatus:
        """Return the cached status, discovering it on first use."""
        if self._status is not None:
            return self._status
        if self._manual_path:
            status = await self._status_for_manual_path(self._manual_path)
        else:
            status = await self.locator.locate(self.validate)
        if status.installed:
            self._path = status.path
            self._version = status.version
        self._status = status
        return status

    async def _status_for_manual_path(self, path: str) -> InstallationStatus:
        if not Path(path).is_file():
            logger.warning("Configured AutoHotkey path does not exist: %s", path)
            return InstallationStatus(installed=False, path=path)
        version = await asyncio.to_thread(self.version_probe.read, Path(path))
        return InstallationStatus(installed=True, path=path, version=version)

    async def install(self, on_progress: ProgressCallback | None = None) -> InstallResult:
        """Acquire and install AutoHotkey, then adopt the verified path."""
        result = await self.pipeline.install(on_progress)
        self._manual_path = None
        self._path = result.path
        self._version = result.version
        self.invalidate()
        return result

    async def get_version(self) -> str:
        if self._version:
            return self._version
        status = await self.check_installation()
        return status.version or UNKNOWN_VERSION

    def get_executable_path(self) -> str:
        if not self._path:
            raise RuntimeNotInstalledError()
        return self._path

    def set_executable_path(self, path: str) -> None:
        """Manually override the runtime path; the next check re-reads its version."""
        logger.info("AutoHotkey path overridden: %s", path)
        self._manual_path = path
        self._path = path
        self._version = None
        self.invalidate()

    async def resolve_executable_path(self) -> str:
        """Return the runtime path, running discovery first if nothing is cached."""
        if not self._path:
            await self.check_installation()
        return self.get_executable_path()
