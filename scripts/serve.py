"""Run the API with uvicorn."""

from __future__ import annotations

import sys
from typing import Optional

import typer
import uvicorn

from src.utils.config import get_settings

app = typer.Typer(help="Serve the AI Radiologist API.")


@app.command("run")
def run(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind."),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind."),
    reload: bool = typer.Option(False, "--reload/--no-reload", help="Restart on code changes."),
) -> None:
    settings = get_settings()
    typer.echo(f"Starting {settings.APP_NAME} ({settings.ENVIRONMENT}) on {host}:{port}")
    uvicorn.run(
        "src.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_config=None,
    )


def main(argv: Optional[list[str]] = None) -> None:
    app(standalone_mode=True, prog_name="serve", args=argv or sys.argv[1:])


if __name__ == "__main__":
    main()
