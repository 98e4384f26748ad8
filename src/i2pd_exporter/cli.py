# src/i2pd_exporter/cli.py
from __future__ import annotations

from typing import Optional

import typer
import uvicorn
import yaml
from pydantic import ValidationError

from i2pd_exporter import __version__
from i2pd_exporter.core.config import get_settings, split_host_port

app = typer.Typer(
    name="i2pd-exporter",
    help="Prometheus exporter for the i2pd I2PControl JSON-RPC API.",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"i2pd-exporter {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Print the version and exit.",
    ),
) -> None:
    pass


# ---------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------
@app.command("serve")
def serve(
    listen: Optional[str] = typer.Option(
        None,
        "--listen",
        help="host:port to bind (overrides METRICS_LISTEN_ADDR)",
    ),
):
    """
    Run the exporter.

    Configuration errors are reported before the listener starts; uvicorn
    handles SIGINT/SIGTERM and drains in-flight scrapes on shutdown.
    """
    try:
        s = get_settings()
        host, port = split_host_port(listen) if listen else (s.listen_host, s.listen_port)
    except (ValidationError, ValueError, yaml.YAMLError) as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=2)

    uvicorn.run(
        "i2pd_exporter.main:create_app",
        factory=True,
        host=host,
        port=port,
        workers=1,
        log_config=None,
    )


def main() -> None:
    app()
