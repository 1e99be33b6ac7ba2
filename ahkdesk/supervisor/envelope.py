"""Success/failure envelopes shared by every boundary route."""

from __future__ import annotations

from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from ahkdesk.failures import classify_failure

_STATUS_BY_CODE = {
    "PROC_UNKNOWN_ID": 404,
    "RUNTIME_NOT_INSTALLED": 409,
    "BUILD_TOOL_NOT_FOUND": 409,
    "INVALID_REQUEST": 400,
    "FS_NOT_FOUND": 404,
}


def ok(data: Any = None) -> dict[str, Any]:
    return {"success": True, "data": jsonable_encoder(data)}


def failure_body(error: BaseException, *, operation: str, target: str = "") -> dict[str, Any]:
    failure = classify_failure(error=error, operation=operation, target=target)
    return {"success": False, "error": failure["message"], "failure": failure}


def fail(error: BaseException, *, operation: str, target: str = "") -> JSONResponse:
    body = failure_body(error, operation=operation, target=target)
    status_code = _STATUS_BY_CODE.get(body["failure"]["error_code"], 500)
    return JSONResponse(status_code=status_code, content=body)
