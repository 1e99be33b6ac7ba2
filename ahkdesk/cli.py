import asyncio
import json
import typer
import uvicorn
from pathlib import Path
from typing import Optional

from ahkdesk.config import CONFIG_PATH, load_config
from ahkdesk.errors import AhkDeskError
from ahkdesk.failures import classify_failure
from ahkdesk.runtime.models import BaseRuntime, CompileOptions, Compression, InstallProgress
from ahkdesk.supervisor.app import configure_logging
from ahkdesk.supervisor.services import Services

app = typer.Typer()


def _load_services() -> tuple[dict, Services]:
    config = load_config()
    configure_logging(config["log_level"])
    return config, Services.from_config(config)


def _fail(error: BaseException, operation: str, json_output: bool, target: str = "") -> None:
    failure = classify_failure(error=error, operation=operation, target=target)
    if json_output:
        typer.echo(json.dumps({"success": False, "error": failure["message"], "failure": failure}, indent=2))
    else:
        typer.echo(f"{operation.upper()}: FAIL")
        typer.echo(f"  error: {failure['error_code']}")
        if failure["stage"]:
            typer.echo(f"  stage: {failure['stage']}")
        typer.echo(f"  message: {failure['message']}")
    raise typer.Exit(code=1)


@app.command()
def status(json_output: bool = typer.Option(False, "--json", help="Print structured status")):
    """Report whether AutoHotkey v2 and Ahk2Exe are available."""
    _, services = _load_services()

    async def _collect():
        installation = await services.runtime.check_installation()
        compiler = await services.compiler.get_compiler_version()
        return installation, compiler

    installation, compiler = asyncio.run(_collect())
    if json_output:
        typer.echo(
            json.dumps(
                {"installation": installation.model_dump(mode="json"), "compiler": compiler},
                indent=2,
            )
        )
        return
    if installation.installed:
        typer.echo(f"AutoHotkey: INSTALLED ({installation.version})")
        typer.echo(f"  path: {installation.path}")
        typer.echo(f"  source: {installation.source.value if installation.source else 'manual'}")
    else:
        typer.echo("AutoHotkey: NOT INSTALLED")
        typer.echo("  hint: run `ahkdesk install`")
    typer.echo(f"Ahk2Exe: {compiler}")


@app.command()
def install(json_output: bool = typer.Option(False, "--json", help="Print structured install result")):
    """Download and silently install AutoHotkey v2."""
    _, services = _load_services()

    def _on_progress(event: InstallProgress) -> None:
        if not json_output:
            typer.echo(f"[{event.stage.value:<11}] {event.progress:3d}% {event.message or ''}".rstrip())

    try:
        result = asyncio.run(services.runtime.install(_on_progress))
    except AhkDeskError as exc:
        _fail(exc, "install", json_output)
        return
    if json_output:
        typer.echo(json.dumps({"success": True, "data": result.model_dump()}, indent=2))
        return
    typer.echo("INSTALL: OK")
    typer.echo(f"  path: {result.path}")
    typer.echo(f"  version: {result.version}")


@app.command("compile")
def compile_script(
    script_path: Path,
    icon: Optional[Path] = typer.Option(None, "--icon", help="Icon file for the executable"),
    compression: Optional[Compression] = typer.Option(None, "--compression"),
    base: Optional[BaseRuntime] = typer.Option(None, "--base", help="Target architecture"),
    output_path: Optional[Path] = typer.Option(None, "--out", help="Output executable path"),
    json_output: bool = typer.Option(False, "--json", help="Print structured compile result"),
):
    """Compile a script into a standalone executable with Ahk2Exe."""
    _, services = _load_services()
    options = CompileOptions(
        icon=str(icon) if icon else None,
        compression=compression,
        base=base,
        output_path=str(output_path) if output_path else None,
    )
    try:
        output = asyncio.run(services.compiler.compile_script(script_path, options))
    except AhkDeskError as exc:
        _fail(exc, "compile", json_output, target=str(script_path))
        return
    if json_output:
        typer.echo(json.dumps({"success": True, "data": str(output)}, indent=2))
        return
    typer.echo(f"Compiled: {output}")


@app.command()
def run(script_path: Path):
    """Run a script in the foreground until it exits or Ctrl+C."""
    _, services = _load_services()

    async def _run_foreground() -> None:
        executable = await services.runtime.resolve_executable_path()
        pid = await services.processes.run(script_path, executable)
        typer.echo(f"Script started (PID: {pid})")
        try:
            while services.processes.is_running(pid):
                await asyncio.sleep(0.2)
        finally:
            await services.processes.shutdown()
        typer.echo(f"Script exited (PID: {pid})")

    try:
        asyncio.run(_run_foreground())
    except KeyboardInterrupt:
        typer.echo("Interrupted; script stopped.")
    except AhkDeskError as exc:
        _fail(exc, "run", False, target=str(script_path))


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
):
    """Serve the local HTTP boundary for the desktop shell."""
    config = load_config()
    configure_logging(config["log_level"])
    typer.echo(f"Config: {CONFIG_PATH}")
    uvicorn.run(
        "ahkdesk.supervisor.app:app",
        host=host or config["host"],
        port=port or int(config["port"]),
    )


if __name__ == "__main__":
    app()
