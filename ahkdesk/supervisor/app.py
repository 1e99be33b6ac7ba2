from fastapi import FastAPI
import logging
from pathlib import Path

from ahkdesk.config import LOG_DIR, load_config

from .api_compiler import router as compiler_router
from .api_processes import router as processes_router
from .api_runtime import router as runtime_router
from .services import Services

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger("ahkdesk.supervisor")


def configure_logging(level: str = "INFO", log_dir: Path | None = LOG_DIR) -> None:
    """Console logging plus a persistent service log file."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_dir is not None:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_dir / "ahkdesk.log", encoding="utf-8"))
        except OSError as exc:
            logger.warning("File logging disabled (%s): %s", log_dir, exc)
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT, handlers=handlers)


def create_app(services: Services | None = None) -> FastAPI:
    app = FastAPI(title="ahkdesk")
    app.include_router(runtime_router)
    app.include_router(compiler_router)
    app.include_router(processes_router)
    app.state.services = services

    @app.on_event("startup")
    async def startup_event():
        if app.state.services is None:
            app.state.services = Services.from_config(load_config())
        logger.info("Process supervisor ready.")

    @app.on_event("shutdown")
    async def shutdown_event():
        current = app.state.services
        if current is None:
            return
        logger.info("Stopping running scripts...")
        await current.processes.shutdown()
        logger.info("Scripts stopped.")

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "version": "0.1.0"}

    return app


app = create_app()
