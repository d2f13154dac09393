# Copyright (c) Syntropy Systems
"""resultflow ingest command."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import IO, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from resultflow.config import get_db_path, load_config, require_resultflow_dir
from resultflow.db import JobResultsPersister
from resultflow.processor import AutodetectResultProcessor
from resultflow.renormaliser import Renormaliser

console = Console()


def configure_logging(level: str) -> None:
    """Send library logs to the console through rich."""
    root = logging.getLogger("resultflow")
    root.setLevel(level)
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        root.addHandler(RichHandler(console=Console(stderr=True), show_path=False))


def open_input(source: str) -> IO[bytes]:
    if source == "-":
        return sys.stdin.buffer
    path = Path(source)
    if not path.exists():
        msg = f"Input not found: {source}"
        raise FileNotFoundError(msg)
    return path.open("rb")


def ingest(
    job_id: str = typer.Argument(
        ...,
        help="Job the results belong to",
    ),
    source: str = typer.Argument(
        "-",
        help="File of engine output, or '-' for stdin",
    ),
    per_partition: Optional[bool] = typer.Option(
        None,
        "--per-partition/--no-per-partition",
        help="Normalize scores within each partition (default from config)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Log every result at debug level",
    ),
) -> None:
    """Ingest a stream of engine results into the results store.

    Results are committed at every flush acknowledgement and when the
    stream ends.
    """
    try:
        project_dir = require_resultflow_dir()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    config = load_config(project_dir)
    configure_logging("DEBUG" if verbose else config.log_level)
    if per_partition is None:
        per_partition = config.per_partition_normalization

    try:
        stream = open_input(source)
    except OSError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    persister = JobResultsPersister(get_db_path(project_dir))
    try:
        processor = AutodetectResultProcessor(
            renormaliser=Renormaliser(job_id),
            persister=persister,
        )
        thread = processor.start(job_id, stream, is_per_partition_normalization=per_partition)
        _ = processor.await_completion()
        thread.join()
    finally:
        persister.close()

    stats = processor.model_size_stats()
    if processor.failed:
        console.print(
            f"[red]Ingest of job '{job_id}' failed[/red] "
            f"after {processor.bucket_count} bucket(s); see log for details"
        )
        raise typer.Exit(1)

    console.print(f"[green]Ingested job '{job_id}':[/green] {processor.bucket_count} bucket(s)")
    if stats is not None:
        console.print(
            f"  [dim]model bytes:[/dim] {stats.model_bytes} "
            f"([dim]memory status:[/dim] {stats.memory_status.value})"
        )
