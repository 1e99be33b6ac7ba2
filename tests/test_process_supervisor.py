"""Tests for script process spawning, tracking and escalating termination."""

from __future__ import annotations

import asyncio
import signal
import sys
import tempfile
import time
import unittest
from pathlib import Path
from unittest import mock

from ahkdesk.errors import SpawnError, UnknownProcessError
from ahkdesk.supervisor.process_supervisor import ProcessSupervisor, STREAM_LIMIT_BYTES

LONG_RUNNING = "import time\nwhile True:\n    time.sleep(0.1)\n"
PRINT_AND_EXIT = "print('hello from script')\nimport sys\nprint('oops', file=sys.stderr)\n"
IGNORE_TERM = (
    "import signal, sys, time\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    "open(sys.argv[0] + '.ready', 'w').close()\n"
    "while True:\n"
    "    time.sleep(0.1)\n"
)
HUGE_UNTERMINATED_LINE = (
    "import sys, time\n"
    "sys.stdout.write('x' * (2 * 1024 * 1024))\n"
    "sys.stdout.flush()\n"
    "open(sys.argv[0] + '.ready', 'w').close()\n"
    "while True:\n"
    "    time.sleep(0.1)\n"
)


async def _wait_until(predicate, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.05)


class ProcessSupervisorTests(unittest.IsolatedAsyncioTestCase):
    """Validate the process table contract against real child processes."""

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.supervisor = ProcessSupervisor(grace_seconds=0.5)

    async def asyncTearDown(self) -> None:
        await self.supervisor.shutdown()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _script(self, name: str, body: str) -> Path:
        path = Path(self._tmp.name) / name
        path.write_text(body, encoding="utf-8")
        return path

    async def test_run_then_list_shows_one_matching_record(self) -> None:
        script = self._script("loop.py", LONG_RUNNING)
        pid = await self.supervisor.run(script, sys.executable)
        records = self.supervisor.list_running()
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].process_id, pid)
        self.assertEqual(records[0].script_path, str(script))
        self.assertTrue(self.supervisor.is_running(pid))

    async def test_list_running_returns_copies(self) -> None:
        script = self._script("loop.py", LONG_RUNNING)
        pid = await self.supervisor.run(script, sys.executable)
        snapshot = self.supervisor.list_running()
        snapshot[0].script_path = "tampered"
        snapshot.clear()
        self.assertEqual(self.supervisor.list_running()[0].script_path, str(script))
        self.assertTrue(self.supervisor.is_running(pid))

    async def test_stop_twice_raises_on_second_call(self) -> None:
        script = self._script("loop.py", LONG_RUNNING)
        pid = await self.supervisor.run(script, sys.executable)
        self.supervisor.stop(pid)
        self.assertFalse(self.supervisor.is_running(pid))
        with self.assertRaises(UnknownProcessError):
            self.supervisor.stop(pid)

    async def test_stop_unknown_pid_raises(self) -> None:
        with self.assertRaises(UnknownProcessError):
            self.supervisor.stop(999999)

    async def test_stop_all_with_nothing_running_is_noop(self) -> None:
        self.supervisor.stop_all()
        self.assertEqual(self.supervisor.list_running(), [])

    async def test_stop_all_stops_every_script(self) -> None:
        first = await self.supervisor.run(self._script("a.py", LONG_RUNNING), sys.executable)
        second = await self.supervisor.run(self._script("b.py", LONG_RUNNING), sys.executable)
        self.supervisor.stop_all()
        self.assertFalse(self.supervisor.is_running(first))
        self.assertFalse(self.supervisor.is_running(second))

    async def test_exit_removes_record_and_forwards_output(self) -> None:
        script = self._script("hello.py", PRINT_AND_EXIT)
        with self.assertLogs("ahkdesk.scripts", level="INFO") as logs:
            pid = await self.supervisor.run(script, sys.executable)
            await _wait_until(lambda: not self.supervisor.is_running(pid))
            await asyncio.sleep(0)
        joined = "\n".join(logs.output)
        self.assertIn("hello from script", joined)
        self.assertIn("WARNING:ahkdesk.scripts:[PID", joined)
        self.assertEqual(self.supervisor.list_running(), [])

    async def test_spawn_failure_raises_and_registers_nothing(self) -> None:
        missing_runtime = Path(self._tmp.name) / "no-such-runtime"
        with self.assertRaises(SpawnError):
            await self.supervisor.run(self._script("x.py", LONG_RUNNING), missing_runtime)
        self.assertEqual(self.supervisor.list_running(), [])

    @unittest.skipIf(sys.platform == "win32", "SIGTERM cannot be ignored on Windows")
    async def test_force_kill_after_grace_period(self) -> None:
        script = self._script("stubborn.py", IGNORE_TERM)
        pid = await self.supervisor.run(script, sys.executable)
        await _wait_until(lambda: Path(str(script) + ".ready").exists())
        process = self.supervisor._table[pid].process
        self.supervisor.stop(pid)
        returncode = await asyncio.wait_for(process.wait(), timeout=10)
        self.assertEqual(returncode, -signal.SIGKILL)

    async def test_shutdown_waits_for_exit(self) -> None:
        pid = await self.supervisor.run(self._script("loop.py", LONG_RUNNING), sys.executable)
        process = self.supervisor._table[pid].process
        await self.supervisor.shutdown()
        self.assertIsNotNone(process.returncode)
        self.assertEqual(self.supervisor.list_running(), [])

    async def test_unterminated_output_longer_than_limit_keeps_script_tracked(self) -> None:
        script = self._script("flood.py", HUGE_UNTERMINATED_LINE)
        with self.assertLogs("ahkdesk.scripts", level="INFO") as logs:
            pid = await self.supervisor.run(script, sys.executable)
            process = self.supervisor._table[pid].process
            await _wait_until(lambda: Path(str(script) + ".ready").exists())
            await _wait_until(lambda: len(logs.records) >= 2)
        self.assertTrue(all(len(r.getMessage()) > STREAM_LIMIT_BYTES for r in logs.records[:2]))
        self.assertIsNone(process.returncode)
        self.assertTrue(self.supervisor.is_running(pid))

        self.supervisor.stop_all()
        returncode = await asyncio.wait_for(process.wait(), timeout=10)
        self.assertIsNotNone(returncode)
        self.assertFalse(self.supervisor.is_running(pid))

    async def test_stop_all_continues_after_one_failure(self) -> None:
        first = await self.supervisor.run(self._script("a.py", LONG_RUNNING), sys.executable)
        second = await self.supervisor.run(self._script("b.py", LONG_RUNNING), sys.executable)
        first_process = self.supervisor._table[first].process
        second_process = self.supervisor._table[second].process

        with mock.patch.object(first_process, "terminate", side_effect=PermissionError("access denied")):
            with self.assertLogs("ahkdesk.supervisor.processes", level="ERROR") as logs:
                self.supervisor.stop_all()

        self.assertIn(f"PID {first}", "\n".join(logs.output))
        self.assertTrue(self.supervisor.is_running(first))
        self.assertFalse(self.supervisor.is_running(second))
        self.assertIsNotNone(await asyncio.wait_for(second_process.wait(), timeout=10))

    async def test_exit_after_stop_cancels_pending_kill(self) -> None:
        supervisor = ProcessSupervisor(grace_seconds=30.0)
        pid = await supervisor.run(self._script("loop.py", LONG_RUNNING), sys.executable)
        tracked = supervisor._table[pid]
        supervisor.stop(pid)
        kill_handle = tracked.kill_handle
        self.assertIsNotNone(kill_handle)
        self.assertIn(tracked, supervisor._stopping)

        await asyncio.wait_for(tracked.watcher, timeout=10)

        self.assertTrue(kill_handle.cancelled())
        self.assertIsNone(tracked.kill_handle)
        self.assertEqual(supervisor._stopping, set())
        supervisor._cleanup(tracked)
        self.assertEqual(supervisor.list_running(), [])
        await supervisor.shutdown()


if __name__ == "__main__":
    unittest.main()
