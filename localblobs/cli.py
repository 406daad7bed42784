"""
LocalBlobs Command-Line Interface

Starts the local blob storage server.

Author: LocalBlobs Contributors
Date: 2025
"""

import sys
from pathlib import Path
from typing import Optional

import click

from localblobs import __version__
from localblobs.core.config_manager import ConfigManager
from localblobs.core.logging_config import get_logger, setup_logging
from localblobs.server import BlobsServer


@click.group()
@click.version_option(version=__version__, prog_name="localblobs")
@click.pass_context
def cli(ctx):
    """
    LocalBlobs - Local Blob Storage Emulator

    Serve a blob storage API from a local directory.
    """
    ctx.ensure_object(dict)


@cli.command()
@click.option(
    "--directory",
    "-d",
    type=click.Path(file_okay=False, path_type=Path),
    help="Storage root directory",
)
@click.option("--host", help="Host to bind to (default: 127.0.0.1)")
@click.option("--port", type=int, help="Port to bind to; 0 picks a free port")
@click.option("--token", help="Shared secret; omit for anonymous access")
@click.option("--debug/--no-debug", default=None, help="Log every request")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Logging level",
)
def start(
    directory: Optional[Path],
    host: Optional[str],
    port: Optional[int],
    token: Optional[str],
    debug: Optional[bool],
    config: Optional[Path],
    log_level: Optional[str],
):
    """
    Start the blob server and block until interrupted.

    Examples:
        localblobs start
        localblobs start --directory ./blobs --port 8971
        localblobs start --config localblobs.yaml --log-level DEBUG
    """
    overrides = {
        "directory": str(directory) if directory else None,
        "host": host,
        "port": port,
        "token": token,
        "debug": debug,
    }
    if log_level:
        overrides["logging"] = {"level": log_level.upper()}

    settings = ConfigManager().load(
        config_file=str(config) if config else None,
        cli_overrides=overrides,
    )
    setup_logging(settings.logging)
    logger = get_logger("localblobs.cli")

    server = BlobsServer.from_config(settings)
    try:
        address = server.start()
    except Exception as e:
        logger.error(f"Failed to start: {e}", exc_info=True)
        click.echo(f"[ERROR] Error starting LocalBlobs: {e}", err=True)
        sys.exit(1)

    click.echo(f"LocalBlobs v{__version__} serving {settings.directory}")
    click.echo(f"Listening on {address.address}:{address.port} ({address.family})")
    if settings.token is None:
        click.echo("Anonymous access enabled")

    try:
        server.wait()
    except KeyboardInterrupt:
        click.echo("\nShutting down LocalBlobs...")
    finally:
        server.stop()


@cli.command()
def version():
    """Show LocalBlobs version."""
    click.echo(f"LocalBlobs version {__version__}")


def main():
    """Entry point for the localblobs command."""
    cli(obj={})


if __name__ == "__main__":
    main()
