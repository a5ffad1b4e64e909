"""Command line entry point."""
import os
import asyncio
import logging
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError

from .config import DEFAULT_OUT_FILE, ExportConfig, load_env_file
from .exceptions import BitExporterError
from .pipeline import run_export
from .version import __version__

logger = logging.getLogger("bit_exporter")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.command(name="bit-exporter")
@click.version_option(__version__, prog_name="bit-exporter")
@click.option(
    "-o", "--out-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_OUT_FILE,
    show_default=True,
    help="Out file name.",
)
@click.option(
    "-d", "--decrypt",
    is_flag=True,
    default=False,
    help="Decrypt content (requires the master password).",
)
@click.option(
    "-w", "--workers",
    type=click.IntRange(1, 64),
    default=1,
    show_default=True,
    help="Threads used to decrypt fields.",
)
@click.option(
    "--env-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Load environment variables from this file instead of ./.env.",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(
    out_file: Path,
    decrypt: bool,
    workers: int,
    env_file: Optional[Path],
    verbose: bool,
) -> None:
    """Export records from a Bitwarden-compatible server.

    Credentials are read from BW_API_URL, BW_CLIENT_ID and BW_CLIENT_SECRET;
    the master password from BW_PASSWORD or an interactive prompt.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )
    load_env_file(env_file)
    password = None
    if decrypt and not os.environ.get("BW_PASSWORD"):
        password = click.prompt("Master password", hide_input=True)

    try:
        config = ExportConfig.from_env(
            env_file=env_file,
            out_file=out_file,
            decrypt=decrypt,
            workers=workers,
            password=password,
        )
    except (RuntimeError, ValidationError) as err:
        raise click.ClickException(str(err)) from None

    try:
        asyncio.run(run_export(config))
    except BitExporterError as err:
        logger.error("Export failed: %s", err)
        raise SystemExit(1) from None
