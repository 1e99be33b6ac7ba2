"""Deterministic failure taxonomy and fingerprint utilities."""

from __future__ import annotations

import hashlib

from ahkdesk.contracts import ERROR_SCHEMA_V1
from ahkdesk.errors import AcquisitionError, AhkDeskError


def build_failure(
    *,
    error_class: str,
    error_code: str,
    operation: str,
    message: str,
    target: str = "",
    stage: str = "",
) -> dict[str, str]:
    """Build a stable failure payload for boundary responses and CLI output."""
    fingerprint_input = "|".join(
        [
            error_class,
            error_code,
            operation or "",
            stage or "",
            target or "",
        ]
    )
    fingerprint = hashlib.sha256(fingerprint_input.encode("utf-8")).hexdigest()
    return {
        "error_schema_version": ERROR_SCHEMA_V1,
        "error_class": error_class,
        "error_code": error_code,
        "operation": operation,
        "stage": stage or "",
        "target": target or "",
        "message": message,
        "fingerprint": fingerprint,
    }


def classify_failure(
    *,
    error: BaseException,
    operation: str,
    target: str = "",
) -> dict[str, str]:
    """Classify an exception into the versioned error taxonomy."""
    message = str(error) or error.__class__.__name__

    if isinstance(error, AhkDeskError):
        stage = error.stage if isinstance(error, AcquisitionError) else ""
        return build_failure(
            error_class=error.error_class,
            error_code=error.error_code,
            operation=operation,
            target=target,
            stage=stage,
            message=message,
        )

    lower = message.lower()
    if isinstance(error, TimeoutError) or "timed out" in lower or "timeout" in lower:
        return build_failure(
            error_class="timeout",
            error_code="TIMEOUT_OPERATION",
            operation=operation,
            target=target,
            message=message,
        )
    if isinstance(error, FileNotFoundError) or "no such file" in lower:
        return build_failure(
            error_class="filesystem",
            error_code="FS_NOT_FOUND",
            operation=operation,
            target=target,
            message=message,
        )
    if isinstance(error, PermissionError) or "access is denied" in lower:
        return build_failure(
            error_class="filesystem",
            error_code="FS_ACCESS_DENIED",
            operation=operation,
            target=target,
            message=message,
        )
    if isinstance(error, ValueError):
        return build_failure(
            error_class="validation",
            error_code="INVALID_REQUEST",
            operation=operation,
            target=target,
            message=message,
        )

    return build_failure(
        error_class="internal",
        error_code="INTERNAL_ERROR",
        operation=operation,
        target=target,
        message=message,
    )
