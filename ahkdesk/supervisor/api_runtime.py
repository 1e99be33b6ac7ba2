"""AutoHotkey installation status, install stream, version and manual path endpoints."""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from starlette.responses import StreamingResponse

from ahkdesk.contracts import INSTALL_EVENT_SCHEMA_V1
from ahkdesk.runtime.models import InstallProgress

from .envelope import fail, failure_body, ok
from .services import Services, get_services

logger = logging.getLogger("ahkdesk.supervisor.api_runtime")

router = APIRouter(prefix="/ahk")


class RuntimePathUpdate(BaseModel):
    path: str


def _sse(event_type: str, payload: dict) -> str:
    data = {
        "schema_version": INSTALL_EVENT_SCHEMA_V1,
        "event_type": event_type,
        "payload": payload,
    }
    return f"data: {json.dumps(data)}\n\n"


@router.get("/installation")
async def check_installation(services: Services = Depends(get_services)):
    try:
        return ok(await services.runtime.check_installation())
    except Exception as exc:
        logger.error("Installation check failed: %s", exc)
        return fail(exc, operation="ahk.check_installation")


@router.post("/install")
async def install(services: Services = Depends(get_services)):
    """Stream install progress as SSE, ending with one result or error event."""
    queue: asyncio.Queue[InstallProgress] = asyncio.Queue()

    async def event_generator():
        task = asyncio.create_task(services.runtime.install(queue.put_nowait))
        while not task.done() or not queue.empty():
            get_next = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({get_next, task}, return_when=asyncio.FIRST_COMPLETED)
            if get_next in done:
                yield _sse("progress", get_next.result().model_dump(mode="json"))
            else:
                get_next.cancel()
        try:
            result = task.result()
        except Exception as exc:
            logger.error("Install failed: %s", exc)
            yield _sse("error", failure_body(exc, operation="ahk.install"))
            return
        yield _sse("result", ok(result))

    headers = {
        "Content-Type": "text/event-stream",
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
    }
    return StreamingResponse(event_generator(), headers=headers)


@router.get("/version")
async def get_version(services: Services = Depends(get_services)):
    try:
        return ok(await services.runtime.get_version())
    except Exception as exc:
        return fail(exc, operation="ahk.get_version")


@router.put("/path")
async def set_path(update: RuntimePathUpdate, services: Services = Depends(get_services)):
    services.runtime.set_executable_path(update.path)
    try:
        return ok(await services.runtime.check_installation())
    except Exception as exc:
        return fail(exc, operation="ahk.set_path", target=update.path)
