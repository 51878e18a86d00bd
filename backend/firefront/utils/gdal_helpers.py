"""Safe execution wrapper for GDAL/OGR command-line utilities.

This module provides a safe interface for executing GDAL and OGR command-line
tools (ogr2ogr, ogrinfo, gdal_rasterize, gdal_translate) as subprocesses. It
handles error checking and provides clear error messages when commands fail.

All commands are executed with proper error handling, and non-zero exit codes
result in CommandError exceptions with the command's stderr output. The
captured stdout is returned so callers can parse JSON reports such as
``ogrinfo -json``.

Example:
    Reproject a shapefile into a GeoPackage:
        >>> from firefront.utils.gdal_helpers import run_command, CommandError

        >>> try:
        ...     run_command([
        ...         "ogr2ogr",
        ...         "-f", "GPKG",
        ...         "out.gpkg",
        ...         "in.shp",
        ...         "-t_srs", "EPSG:2154"
        ...     ])
        ... except CommandError as e:
        ...     print(f"Command failed: {e}")

    Read a vector summary:
        >>> report = run_command(["ogrinfo", "-json", "-so", "-al", "in.gpkg"])
"""

from __future__ import annotations

import logging
import subprocess
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import pathlib
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


class CommandError(RuntimeError):
    """Exception raised when a GDAL/OGR subprocess command fails.

    Contains the error message from the failed command's stderr output.
    This exception is raised when any GDAL/OGR command (ogr2ogr,
    gdal_rasterize, gdal_translate, etc.) exits with a non-zero status code,
    cannot be started, or exceeds its timeout.
    """


def run_command(
    command: Iterable[str | pathlib.Path],
    workdir: pathlib.Path | None = None,
    timeout: float | None = None,
) -> str:
    """Execute a command and raise on non-zero exit.

    Runs a GDAL/OGR command-line tool as a subprocess with proper error
    handling. Captures both stdout and stderr, and raises CommandError
    if the command fails.

    Args:
        command: Iterable arguments to execute (e.g., ["ogr2ogr", "-f", ...]).
        workdir: Optional working directory for the command execution.
        timeout: Optional timeout in seconds.

    Returns:
        The command's standard output.

    Raises:
        CommandError: if the command exits with a non-zero status code,
            is missing, or times out. The exception message contains the
            stderr output from the command when available.
    """
    args = [str(part) for part in command]
    logger.debug("Running %s", " ".join(args))
    try:
        result = subprocess.run(
            args,
            cwd=workdir,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
    except FileNotFoundError as exc:
        raise CommandError(f"Executable not found: {args[0]}") from exc
    except subprocess.TimeoutExpired as exc:
        raise CommandError(f"{args[0]} timed out after {timeout}s") from exc
    if result.returncode != 0:
        raise CommandError(result.stderr.strip() or "Unknown command failure")
    return result.stdout
