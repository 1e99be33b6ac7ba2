"""Deterministic exception hierarchy for runtime, build and process failures."""

from __future__ import annotations


class AhkDeskError(Exception):
    """Base error carrying stable taxonomy class/code fields."""

    error_class = "internal"
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, error_class: str | None = None, error_code: str | None = None):
        super().__init__(message)
        if error_class is not None:
            self.error_class = error_class
        if error_code is not None:
            self.error_code = error_code


class RuntimeNotInstalledError(AhkDeskError):
    """No runtime executable path is known yet."""

    error_class = "runtime"
    error_code = "RUNTIME_NOT_INSTALLED"

    def __init__(self, message: str = "AutoHotkey not installed or path not set"):
        super().__init__(message)


class AcquisitionError(AhkDeskError):
    """Install pipeline failure scoped to the stage that failed."""

    error_class = "acquisition"

    _codes = {
        "downloading": "ACQ_DOWNLOAD_FAILED",
        "installing": "ACQ_INSTALL_FAILED",
        "verifying": "ACQ_VERIFY_FAILED",
        "complete": "ACQ_COMPLETE_FAILED",
    }

    def __init__(self, stage: str, message: str):
        super().__init__(
            f"{stage} failed: {message}",
            error_code=self._codes.get(stage, "ACQ_FAILED"),
        )
        self.stage = stage
        self.reason = message


class InstalledButNotDetectedError(AcquisitionError):
    """Installer ran but the locator never saw the runtime afterwards."""

    def __init__(self, attempts: int):
        super().__init__(
            "verifying",
            f"installer finished but AutoHotkey was not detected after {attempts} attempts",
        )
        self.error_code = "ACQ_NOT_DETECTED"
        self.attempts = attempts


class BuildError(AhkDeskError):
    """Base for compiler failures."""

    error_class = "build"
    error_code = "BUILD_FAILED"


class CompilerNotFoundError(BuildError):
    """Ahk2Exe could not be located; raised before any invocation."""

    error_code = "BUILD_TOOL_NOT_FOUND"

    def __init__(self, message: str = "Ahk2Exe compiler not found. Please ensure AutoHotkey v2 is installed."):
        super().__init__(message)


class CompileError(BuildError):
    """Ahk2Exe invocation failed or timed out."""


class CompileOutputMissingError(BuildError):
    """Compiler reported success but left no output artifact."""

    error_code = "BUILD_NO_OUTPUT"

    def __init__(self, output_path: str):
        super().__init__(f"Compilation completed but output file not found: {output_path}")
        self.output_path = output_path


class ProcessError(AhkDeskError):
    """Base for supervised script process failures."""

    error_class = "process"
    error_code = "PROC_FAILED"


class SpawnError(ProcessError):
    """The OS did not hand back a running process."""

    error_code = "PROC_SPAWN_FAILED"


class UnknownProcessError(ProcessError):
    """No live record exists for the requested process id."""

    error_code = "PROC_UNKNOWN_ID"

    def __init__(self, process_id: int):
        super().__init__(f"No running script found with PID {process_id}")
        self.process_id = process_id
