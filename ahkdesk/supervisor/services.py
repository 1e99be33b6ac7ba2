"""Per-application service container wired from config."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import Request

from ahkdesk.build.compiler import Compiler
from ahkdesk.config import load_config
from ahkdesk.runtime.manager import RuntimeManager

from .process_supervisor import ProcessSupervisor


@dataclass
class Services:
    runtime: RuntimeManager
    compiler: Compiler
    processes: ProcessSupervisor

    @classmethod
    def from_config(cls, config: dict[str, Any] | None = None) -> "Services":
        cfg = config or load_config()
        return cls(
            runtime=RuntimeManager(cfg),
            compiler=Compiler(timeout_seconds=float(cfg["compile_timeout_seconds"])),
            processes=ProcessSupervisor(grace_seconds=float(cfg["stop_grace_seconds"])),
        )


def get_services(request: Request) -> Services:
    return request.app.state.services
