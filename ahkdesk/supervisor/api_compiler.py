"""Ahk2Exe availability and compile endpoints."""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ahkdesk.runtime.models import CompileOptions

from .envelope import fail, ok
from .services import Services, get_services

logger = logging.getLogger("ahkdesk.supervisor.api_compiler")

router = APIRouter(prefix="/compiler")


class CompileRequest(BaseModel):
    script_path: str
    options: CompileOptions = Field(default_factory=CompileOptions)


@router.get("/available")
async def check_available(services: Services = Depends(get_services)):
    return ok(await services.compiler.is_compiler_available())


@router.post("/compile")
async def compile_script(request: CompileRequest, services: Services = Depends(get_services)):
    try:
        output = await services.compiler.compile_script(request.script_path, request.options)
    except Exception as exc:
        logger.error("Compile failed for %s: %s", request.script_path, exc)
        return fail(exc, operation="compiler.compile", target=request.script_path)
    return ok(str(output))
