"""Run, stop and list supervised script processes."""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from .envelope import fail, ok
from .services import Services, get_services

logger = logging.getLogger("ahkdesk.supervisor.api_processes")

router = APIRouter(prefix="/processes")


class RunRequest(BaseModel):
    script_path: str


@router.post("")
async def run_script(request: RunRequest, services: Services = Depends(get_services)):
    try:
        executable = await services.runtime.resolve_executable_path()
        pid = await services.processes.run(request.script_path, executable)
    except Exception as exc:
        logger.error("Failed to run %s: %s", request.script_path, exc)
        return fail(exc, operation="process.run", target=request.script_path)
    return ok(pid)


@router.delete("/{process_id}")
async def stop_script(process_id: int, services: Services = Depends(get_services)):
    try:
        services.processes.stop(process_id)
    except Exception as exc:
        return fail(exc, operation="process.stop", target=str(process_id))
    return ok()


@router.get("")
async def list_running(services: Services = Depends(get_services)):
    return ok(services.processes.list_running())


@router.get("/{process_id}")
async def is_running(process_id: int, services: Services = Depends(get_services)):
    return ok(services.processes.is_running(process_id))
