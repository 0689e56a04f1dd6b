"""CLI for running the web adapter server.

This module provides a command-line interface for starting the FastAPI-based
canvas server with configurable options.
"""

from pathlib import Path

import click
import uvicorn

from gridplace.adapters.web.server import create_web_adapter
from gridplace.config import ConfigError, load_config, validate_config
from gridplace.config.environment import get_config_file_path
from gridplace.utils.telemetry import (
    get_logger,
    setup_logging,
    setup_tracing,
    start_metrics_server,
)


@click.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to configuration file (YAML)",
)
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", default=None, type=int, help="Port to bind to")
@click.option("--db-path", default=None, help="SQLite database path")
@click.option(
    "--memory",
    is_flag=True,
    default=False,
    help="Use the in-memory backend (nothing is persisted)",
)
@click.option("--cooldown-ms", default=None, type=int, help="Per-agent cooldown")
@click.option("--grid-size", default=None, type=int, help="Grid dimension")
@click.option("--log-level", default=None, help="Log level")
def run_server(
    config: str | None,
    host: str | None,
    port: int | None,
    db_path: str | None,
    memory: bool,
    cooldown_ms: int | None,
    grid_size: int | None,
    log_level: str | None,
) -> None:
    """Run the canvas server."""
    config_path = Path(config) if config else get_config_file_path()
    try:
        server_config = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    # CLI options take precedence over file and environment
    if host:
        server_config.server.host = host
    if port:
        server_config.server.port = port
    if db_path:
        server_config.storage.path = db_path
    if memory:
        server_config.storage.backend = "memory"
    if cooldown_ms is not None:
        server_config.canvas.cooldown_ms = cooldown_ms
    if grid_size is not None:
        server_config.canvas.grid_size = grid_size
    if log_level:
        server_config.logging.level = log_level.upper()  # type: ignore[assignment]

    try:
        validate_config(server_config)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    setup_logging(
        server_config.logging.level,
        enable_redaction=server_config.logging.enable_redaction,
    )
    logger = get_logger("gridplace.web_cli")

    if server_config.metrics.enabled:
        start_metrics_server(server_config.metrics.port)

    logger.info(
        "Starting web server",
        host=server_config.server.host,
        port=server_config.server.port,
        backend=server_config.storage.backend,
        grid_size=server_config.canvas.grid_size,
        cooldown_ms=server_config.canvas.cooldown_ms,
    )

    web_adapter = create_web_adapter(server_config)
    if server_config.tracing.enabled:
        setup_tracing(
            otlp_endpoint=server_config.tracing.otlp_endpoint, app=web_adapter.app
        )

    # One worker: the cache and broadcaster are process-local
    uvicorn.run(
        web_adapter.app,
        host=server_config.server.host,
        port=server_config.server.port,
        log_level=server_config.logging.level.lower(),
    )


@click.group()
def cli() -> None:
    """Canvas web server CLI."""
    pass


cli.add_command(run_server, name="server")


if __name__ == "__main__":
    cli()
