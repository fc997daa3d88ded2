"""Launcher for the Screenshot API using uvicorn."""

from __future__ import annotations

import os
from typing import Optional

import typer
import uvicorn

app = typer.Typer(help="Run the Screenshot API FastAPI app with uvicorn.", add_completion=False)


def _env_str(key: str, default: str) -> str:
    return os.getenv(key, default)


def _env_int(key: str, default: int) -> int:
    raw = os.getenv(key, str(default))
    try:
        return int(raw)
    except ValueError as exc:
        raise typer.BadParameter(f"{key} must be an integer") from exc


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@app.callback(invoke_without_command=True)
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind host (default HOST or 0.0.0.0)."),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port (default PORT or 3000)."),
    app_path: Optional[str] = typer.Option(
        None, "--app", help="ASGI import path (default screenshot_api.main:app)."
    ),
    reload: Optional[bool] = typer.Option(None, "--reload/--no-reload", help="Enable auto-reload."),
    workers: Optional[int] = typer.Option(None, "--workers", help="Worker processes."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Log level."),
) -> None:
    """Launch the FastAPI app.

    Coalescing, rate limits and stats live in process memory, so more than
    one worker splits them per process.
    """

    host = host or _env_str("HOST", "0.0.0.0")
    port = port or _env_int("PORT", 3000)
    app_path = app_path or _env_str("APP_MODULE", "screenshot_api.main:app")
    if reload is None:
        reload = _env_bool("SERVER_RELOAD", False)
    workers = workers or _env_int("SERVER_WORKERS", 1)
    log_level = (log_level or _env_str("SERVER_LOG_LEVEL", "info")).lower()

    if workers > 1:
        typer.echo(
            f"Starting {workers} workers; cache coalescing and rate limits are per worker.",
            err=True,
        )

    uvicorn.run(
        app_path,
        host=host,
        port=port,
        reload=reload,
        workers=max(1, workers),
        log_level=log_level,
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
