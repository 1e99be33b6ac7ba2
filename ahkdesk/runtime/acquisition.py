"""Download, silently install and verify the AutoHotkey runtime."""

from __future__ import annotations

import asyncio
import logging
import os
import subprocess
import tempfile
from pathlib import Path, PurePosixPath
from typing import Awaitable, Callable

import httpx

from ahkdesk.errors import AcquisitionError, InstalledButNotDetectedError

from .locator import ToolLocator
from .models import InstallationStatus, InstallProgress, InstallResult, InstallStage
from .version_probe import VersionValidator

logger = logging.getLogger("ahkdesk.runtime.acquisition")

ProgressCallback = Callable[[InstallProgress], None]
InstallerRunner = Callable[[list[str]], Awaitable[subprocess.CompletedProcess]]

REDIRECT_STATUSES = {301, 302}
MAX_REDIRECT_HOPS = 1


def build_installer_command(artifact: Path) -> list[str]:
    """Return the non-interactive invocation for the downloaded installer."""
    if artifact.suffix.lower() == ".msi":
        return ["msiexec", "/i", str(artifact), "/qn"]
    return [str(artifact), "/silent"]


def _sync_to_disk(handle) -> None:
    handle.flush()
    os.fsync(handle.fileno())


async def run_installer(command: list[str]) -> subprocess.CompletedProcess:
    """Run installer command off the event loop and capture its output."""
    logger.info("Running installer: %s", " ".join(command))
    return await asyncio.to_thread(
        subprocess.run,
        command,
        capture_output=True,
        text=True,
    )


class AcquisitionPipeline:
    """downloading -> installing -> verifying -> complete, with a single in-flight run."""

    def __init__(
        self,
        locator: ToolLocator,
        *,
        installer_url: str,
        validate: VersionValidator | None = None,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
        installer_runner: InstallerRunner = run_installer,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        download_timeout_seconds: float = 120.0,
        download_settle_seconds: float = 0.5,
        install_settle_seconds: float = 3.0,
        verify_retries: int = 3,
        verify_delay_seconds: float = 2.0,
        temp_dir: Path | None = None,
    ) -> None:
        if verify_retries < 1:
            raise ValueError("verify_retries must be >= 1")
        self.locator = locator
        self.installer_url = installer_url
        self.validate = validate
        self.download_timeout_seconds = download_timeout_seconds
        self._client_factory = client_factory or self._default_client
        self._installer_runner = installer_runner
        self._sleep = sleep
        self.download_settle_seconds = download_settle_seconds
        self.install_settle_seconds = install_settle_seconds
        self.verify_retries = verify_retries
        self.verify_delay_seconds = verify_delay_seconds
        self.temp_dir = temp_dir
        self._listeners: list[ProgressCallback] = []
        self._inflight: asyncio.Task | None = None

    def _default_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.download_timeout_seconds),
            follow_redirects=False,
        )

    @property
    def in_progress(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def install(self, on_progress: ProgressCallback | None = None) -> InstallResult:
        """Run the pipeline, or join the run already in flight."""
        if on_progress is not None:
            self._listeners.append(on_progress)
        if not self.in_progress:
            self._inflight = asyncio.create_task(self._run())
        else:
            logger.info("Install already in progress; joining in-flight run")
        try:
            return await asyncio.shield(self._inflight)
        finally:
            if on_progress is not None and on_progress in self._listeners:
                self._listeners.remove(on_progress)

    def _emit(self, stage: InstallStage, progress: int, message: str | None = None) -> None:
        event = InstallProgress(stage=stage, progress=max(0, min(100, progress)), message=message)
        logger.debug("Install progress %s %d%% %s", stage.value, event.progress, message or "")
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                logger.warning("Install progress listener failed: %s", exc)

    async def _run(self) -> InstallResult:
        stage = InstallStage.DOWNLOADING
        artifact: Path | None = None
        try:
            self._emit(stage, 0, f"Downloading {self.installer_url}")
            artifact = await self._download()

            stage = InstallStage.INSTALLING
            self._emit(stage, 0, f"Running installer {artifact.name}")
            await self._run_installer(artifact)
            self._emit(stage, 100, "Installer finished")

            stage = InstallStage.VERIFYING
            self._emit(stage, 0, "Verifying installation")
            status = await self._verify()

            stage = InstallStage.COMPLETE
            self._emit(stage, 100, f"AutoHotkey {status.version} installed")
            logger.info("AutoHotkey installed at %s (version=%s)", status.path, status.version)
            return InstallResult(path=status.path or "", version=status.version or "unknown")
        except AcquisitionError:
            raise
        except Exception as exc:
            raise AcquisitionError(stage.value, str(exc) or exc.__class__.__name__) from exc
        finally:
            if artifact is not None:
                self._discard(artifact)

    def _new_artifact_path(self, url: httpx.URL) -> Path:
        suffix = PurePosixPath(url.path).suffix.lower()
        if suffix not in {".exe", ".msi"}:
            suffix = ".exe"
        fd, name = tempfile.mkstemp(prefix="ahkdesk-installer-", suffix=suffix, dir=self.temp_dir)
        os.close(fd)
        return Path(name)

    async def _download(self) -> Path:
        stage = InstallStage.DOWNLOADING.value
        url = httpx.URL(self.installer_url)
        try:
            async with self._client_factory() as client:
                for hop in range(MAX_REDIRECT_HOPS + 1):
                    async with client.stream("GET", url) as response:
                        if response.status_code in REDIRECT_STATUSES:
                            if hop >= MAX_REDIRECT_HOPS:
                                raise AcquisitionError(stage, f"too many redirects from {self.installer_url}")
                            location = response.headers.get("location")
                            if not location:
                                raise AcquisitionError(
                                    stage,
                                    f"HTTP {response.status_code} redirect without Location header",
                                )
                            url = url.join(location)
                            logger.info("Following redirect to %s", url)
                            continue
                        if not response.is_success:
                            raise AcquisitionError(stage, f"HTTP {response.status_code} from {url}")
                        return await self._stream_to_file(response)
        except httpx.HTTPError as exc:
            raise AcquisitionError(stage, f"network error: {exc}") from exc
        raise AcquisitionError(stage, f"no response body from {self.installer_url}")

    async def _stream_to_file(self, response: httpx.Response) -> Path:
        raw_length = response.headers.get("content-length", "")
        total = int(raw_length) if raw_length.isdigit() and int(raw_length) > 0 else None
        artifact = await asyncio.to_thread(self._new_artifact_path, response.url)
        received = 0
        last_progress = -1
        try:
            handle = await asyncio.to_thread(open, artifact, "wb")
            try:
                async for chunk in response.aiter_bytes():
                    await asyncio.to_thread(handle.write, chunk)
                    received += len(chunk)
                    if total is None:
                        continue
                    progress = min(100, received * 100 // total)
                    if progress != last_progress:
                        last_progress = progress
                        self._emit(InstallStage.DOWNLOADING, progress, f"{received}/{total} bytes")
                await asyncio.to_thread(_sync_to_disk, handle)
            finally:
                await asyncio.to_thread(handle.close)
        except BaseException:
            self._discard(artifact)
            raise
        logger.info("Downloaded installer to %s (%d bytes)", artifact, received)
        await self._sleep(self.download_settle_seconds)
        return artifact

    async def _run_installer(self, artifact: Path) -> None:
        command = build_installer_command(artifact)
        try:
            result = await self._installer_runner(command)
        except (OSError, subprocess.SubprocessError) as exc:
            raise AcquisitionError(InstallStage.INSTALLING.value, f"could not start installer: {exc}") from exc
        # The setup process may hand off to a child and return early.
        await self._sleep(self.install_settle_seconds)
        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            raise AcquisitionError(
                InstallStage.INSTALLING.value,
                f"installer exited with code {result.returncode}" + (f": {detail}" if detail else ""),
            )

    async def _verify(self) -> InstallationStatus:
        for attempt in range(1, self.verify_retries + 1):
            status = await self.locator.locate(self.validate)
            if status.installed:
                return status
            self._emit(
                InstallStage.VERIFYING,
                attempt * 100 // self.verify_retries,
                f"Not detected yet (attempt {attempt}/{self.verify_retries})",
            )
            if attempt < self.verify_retries:
                await self._sleep(self.verify_delay_seconds)
        raise InstalledButNotDetectedError(self.verify_retries)

    def _discard(self, artifact: Path) -> None:
        try:
            artifact.unlink(missing_ok=True)
        except OSError as exc:
            logger.debug("Could not delete installer artifact %s: %s", artifact, exc)
