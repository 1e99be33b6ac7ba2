"""Spawn, track and terminate AutoHotkey script processes."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from ahkdesk.errors import ProcessError, SpawnError, UnknownProcessError
from ahkdesk.runtime.models import RunningProcessRecord

logger = logging.getLogger("ahkdesk.supervisor.processes")
script_logger = logging.getLogger("ahkdesk.scripts")

STOP_GRACE_SECONDS = 5.0
STREAM_LIMIT_BYTES = 1024 * 1024
STREAM_CHUNK_BYTES = 64 * 1024


@dataclass(eq=False)
class _TrackedProcess:
    record: RunningProcessRecord
    process: asyncio.subprocess.Process
    loop: asyncio.AbstractEventLoop
    watcher: asyncio.Task | None = None
    kill_handle: asyncio.TimerHandle | None = None


class ProcessSupervisor:
    """
    Owns the table of running scripts for one application lifetime.

    Every table mutation happens on the event loop thread in a single step,
    so a stop() and an exit event racing on the same pid cannot both win.
    """

    def __init__(
        self,
        *,
        grace_seconds: float = STOP_GRACE_SECONDS,
        output_logger: logging.Logger = script_logger,
    ) -> None:
        self.grace_seconds = grace_seconds
        self.output_logger = output_logger
        self._table: dict[int, _TrackedProcess] = {}
        self._stopping: set[_TrackedProcess] = set()
        self._watchers: set[asyncio.Task] = set()

    async def run(self, script_path: str | Path, runtime_executable: str | Path) -> int:
        """Start runtime_executable with script_path as its only argument."""
        try:
            process = await asyncio.create_subprocess_exec(
                str(runtime_executable),
                str(script_path),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT_BYTES,
            )
        except OSError as exc:
            raise SpawnError(f"Failed to run script: {exc}") from exc
        if not process.pid:
            raise SpawnError("Failed to start script process")

        pid = process.pid
        tracked = _TrackedProcess(
            record=RunningProcessRecord(
                process_id=pid,
                script_path=str(script_path),
                start_time=datetime.now(),
            ),
            process=process,
            loop=asyncio.get_running_loop(),
        )
        self._table[pid] = tracked
        watcher = asyncio.create_task(self._watch(tracked), name=f"ahkdesk-script-{pid}")
        tracked.watcher = watcher
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)
        logger.info("Started script %s (PID %s) with %s", script_path, pid, runtime_executable)
        return pid

    def _log_line(self, pid: int, raw: bytes, level: int) -> None:
        line = raw.decode("utf-8", errors="replace").rstrip()
        if line:
            self.output_logger.log(level, "[PID %s] %s", pid, line)

    async def _pump(self, pid: int, stream: asyncio.StreamReader | None, level: int) -> None:
        """Forward output line by line; unterminated runs are flushed in limit-sized pieces."""
        if stream is None:
            return
        pending = b""
        while True:
            chunk = await stream.read(STREAM_CHUNK_BYTES)
            if not chunk:
                break
            pending += chunk
            *lines, pending = pending.split(b"\n")
            for raw in lines:
                self._log_line(pid, raw, level)
            while len(pending) >= STREAM_LIMIT_BYTES:
                self._log_line(pid, pending[:STREAM_LIMIT_BYTES], level)
                pending = pending[STREAM_LIMIT_BYTES:]
        if pending:
            self._log_line(pid, pending, level)

    async def _watch(self, tracked: _TrackedProcess) -> None:
        pid = tracked.record.process_id
        process = tracked.process
        results = await asyncio.gather(
            self._pump(pid, process.stdout, logging.INFO),
            self._pump(pid, process.stderr, logging.WARNING),
            return_exceptions=True,
        )
        errors = [result for result in results if isinstance(result, Exception)]
        if errors:
            # Undrained pipes would block the script once full.
            logger.error("Output forwarding failed (PID %s): %s; killing script", pid, errors[0])
            try:
                process.kill()
            except ProcessLookupError:
                pass
        code = await process.wait()
        if code is not None and code < 0:
            logger.info("Script exited (PID %s): signal=%s", pid, -code)
        else:
            logger.info("Script exited (PID %s): code=%s", pid, code)
        self._cleanup(tracked)

    def _cleanup(self, tracked: _TrackedProcess) -> None:
        pid = tracked.record.process_id
        if self._table.get(pid) is tracked:
            del self._table[pid]
        self._stopping.discard(tracked)
        if tracked.kill_handle is not None:
            tracked.kill_handle.cancel()
            tracked.kill_handle = None

    def stop(self, process_id: int) -> None:
        """Terminate a script; escalate to kill after the grace period."""
        tracked = self._table.pop(process_id, None)
        if tracked is None:
            raise UnknownProcessError(process_id)
        try:
            tracked.process.terminate()
        except ProcessLookupError:
            logger.debug("Script already exited before terminate (PID %s)", process_id)
            return
        except OSError as exc:
            self._table[process_id] = tracked
            raise ProcessError(f"Failed to stop script: {exc}") from exc
        self._stopping.add(tracked)
        tracked.kill_handle = tracked.loop.call_later(self.grace_seconds, self._force_kill, tracked)
        logger.info("Stop requested for script %s (PID %s)", tracked.record.script_path, process_id)

    def _force_kill(self, tracked: _TrackedProcess) -> None:
        tracked.kill_handle = None
        if tracked.process.returncode is not None:
            return
        pid = tracked.record.process_id
        logger.warning("Script did not exit within %.1fs; killing (PID %s)", self.grace_seconds, pid)
        try:
            tracked.process.kill()
        except ProcessLookupError:
            pass

    def stop_all(self) -> None:
        """Stop every tracked script; one failure never blocks the rest."""
        process_ids = list(self._table)
        if process_ids:
            logger.info("Stopping %d running scripts...", len(process_ids))
        for process_id in process_ids:
            try:
                self.stop(process_id)
            except UnknownProcessError:
                logger.debug("Script already gone during stop_all (PID %s)", process_id)
            except ProcessError as exc:
                logger.error("Failed to stop script with PID %s: %s", process_id, exc)

    async def shutdown(self) -> None:
        """stop_all, then wait for exits and kill anything still alive."""
        self.stop_all()
        pending = set(self._watchers)
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=self.grace_seconds + 1.0)
        # Includes scripts whose terminate failed and are still tracked.
        for tracked in list(self._stopping) + list(self._table.values()):
            self._force_kill(tracked)
        if still_running:
            await asyncio.wait(still_running, timeout=2.0)

    def list_running(self) -> list[RunningProcessRecord]:
        return [tracked.record.model_copy() for tracked in self._table.values()]

    def is_running(self, process_id: int) -> bool:
        return process_id in self._table
