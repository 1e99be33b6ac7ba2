"""Ahk2Exe discovery and script-to-executable compilation."""

from __future__ import annotations

import asyncio
import logging
import subprocess
from pathlib import Path

from ahkdesk.errors import CompileError, CompileOutputMissingError, CompilerNotFoundError
from ahkdesk.runtime.locator import ToolLocator, build_compiler_locator
from ahkdesk.runtime.models import CompileOptions, Compression

logger = logging.getLogger("ahkdesk.build.compiler")


def default_output_path(script_path: Path) -> Path:
    """Same directory and stem as the script, with an .exe extension."""
    return script_path.with_name(f"{script_path.stem}.exe")


def build_compile_args(compiler: Path, script_path: Path, output_path: Path, options: CompileOptions) -> list[str]:
    """Build the Ahk2Exe argv for one compilation."""
    args = [str(compiler), "/in", str(script_path), "/out", str(output_path)]
    if options.icon:
        args += ["/icon", options.icon]
    if options.base is not None:
        args += ["/base", options.base.base_file]
    if options.compression is Compression.UPX:
        args += ["/compress", "1"]
    elif options.compression is Compression.NONE:
        args += ["/compress", "0"]
    return args


class Compiler:
    """Locates Ahk2Exe once per instance and drives it synchronously."""

    def __init__(self, locator: ToolLocator | None = None, *, timeout_seconds: float = 120.0) -> None:
        self.locator = locator or build_compiler_locator()
        self.timeout_seconds = timeout_seconds
        self._compiler_path: Path | None = None

    async def find_compiler(self) -> Path:
        if self._compiler_path is not None:
            return self._compiler_path
        status = await self.locator.locate()
        if not status.installed or not status.path:
            raise CompilerNotFoundError()
        self._compiler_path = Path(status.path)
        logger.info("Using Ahk2Exe at %s", self._compiler_path)
        return self._compiler_path

    async def _run_command(self, args: list[str]) -> subprocess.CompletedProcess:
        """Run a subprocess command and capture stdout/stderr."""
        logger.info("Running command: %s", " ".join(args))
        return await asyncio.to_thread(
            subprocess.run,
            args,
            capture_output=True,
            text=True,
            timeout=self.timeout_seconds,
        )

    async def compile_script(self, script_path: str | Path, options: CompileOptions | None = None) -> Path:
        """Compile script_path and return the verified output path."""
        options = options or CompileOptions()
        compiler = await self.find_compiler()
        script = Path(script_path)
        output = Path(options.output_path) if options.output_path else default_output_path(script)
        args = build_compile_args(compiler, script, output, options)

        try:
            result = await self._run_command(args)
        except subprocess.TimeoutExpired as exc:
            raise CompileError(f"Failed to compile script: timed out after {self.timeout_seconds}s") from exc
        except OSError as exc:
            raise CompileError(f"Failed to compile script: {exc}") from exc

        if result.stdout:
            logger.info("Ahk2Exe stdout: %s", result.stdout.strip())
        if result.stderr:
            logger.info("Ahk2Exe stderr: %s", result.stderr.strip())
        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()
            raise CompileError(
                f"Failed to compile script: Ahk2Exe exited with code {result.returncode}"
                + (f": {detail}" if detail else "")
            )
        # Ahk2Exe can exit 0 without writing anything.
        if not output.exists():
            raise CompileOutputMissingError(str(output))
        logger.info("Compiled %s -> %s", script, output)
        return output

    async def is_compiler_available(self) -> bool:
        try:
            await self.find_compiler()
            return True
        except CompilerNotFoundError:
            return False

    async def get_compiler_version(self) -> str:
        # Ahk2Exe has no version flag.
        return "available" if await self.is_compiler_available() else "not found"
