"""Validate connectivity to the AI provider and the database backend."""

from __future__ import annotations

import sys
import time
from typing import Optional

import typer

from src.utils.config import get_settings
from src.utils.logger import get_logger

app = typer.Typer(help="Smoke-test the OpenAI and datastore connections.")


def _refresh_settings() -> None:
    get_settings.cache_clear()  # type: ignore[attr-defined]
    get_settings()


@app.command("run")
def run(
    include_llm: bool = typer.Option(
        True,
        "--llm/--no-llm",
        help="Skip the OpenAI check.",
    ),
    include_datastore: bool = typer.Option(
        True,
        "--datastore/--no-datastore",
        help="Skip the database check.",
    ),
) -> None:
    """
    Perform lightweight requests against the configured services and report
    latency and key metadata.
    """

    logger = get_logger("scripts.check_services")
    _refresh_settings()

    if not include_datastore and not include_llm:
        typer.secho("Nothing to test. Enable at least one check.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=0)

    if include_datastore:
        from src.services.datastore import DataStore, DataStoreError  # noqa: WPS433

        try:
            datastore = DataStore()
        except DataStoreError as exc:
            typer.secho(f"Datastore initialisation failed: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=2) from exc

        mode = "mock" if datastore.use_mock else "remote"
        typer.echo(f"Testing datastore ({mode})...")
        start = time.perf_counter()
        try:
            published = datastore.count("templates_global", {"is_published": True})
        except DataStoreError as exc:
            logger.error("Datastore request failed.", extra={"context": {"error": str(exc)}})
            typer.secho(f"Datastore request failed: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=3) from exc
        finally:
            datastore.close()
        latency_ms = (time.perf_counter() - start) * 1000.0
        typer.secho(
            f"Datastore OK ({latency_ms:.1f} ms, published global templates={published}).",
            fg=typer.colors.GREEN,
        )

    if include_llm:
        from src.services.llm import AIServiceError, OpenAIClient  # noqa: WPS433

        try:
            llm_client = OpenAIClient()
        except AIServiceError as exc:
            typer.secho(f"OpenAI client initialisation failed: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=4) from exc

        typer.echo(f"Testing OpenAI ({llm_client.model})...")
        start = time.perf_counter()
        try:
            chunks = llm_client.generate_stream(
                "Respond with a one-sentence acknowledgement that includes the phrase 'connection confirmed'.",
                temperature=0.0,
                max_tokens=40,
            )
            response = "".join(chunks)
        except AIServiceError as exc:
            logger.error("OpenAI request failed.", extra={"context": {"error": str(exc)}})
            typer.secho(f"OpenAI request failed: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=5) from exc

        latency_ms = (time.perf_counter() - start) * 1000.0
        typer.secho(f"OpenAI OK ({latency_ms:.1f} ms): {response.strip()}", fg=typer.colors.GREEN)

    typer.secho("Connectivity checks complete.", fg=typer.colors.GREEN)


def main(argv: Optional[list[str]] = None) -> None:
    app(standalone_mode=True, prog_name="check-services", args=argv or sys.argv[1:])


if __name__ == "__main__":
    main()
