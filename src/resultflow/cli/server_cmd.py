# Copyright (c) Syntropy Systems
"""resultflow serve command."""
from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console

from resultflow.cli.ingest import configure_logging, open_input
from resultflow.config import get_db_path, load_config, require_resultflow_dir
from resultflow.db import JobResultsPersister
from resultflow.processor import AutodetectResultProcessor
from resultflow.renormaliser import Renormaliser
from resultflow.server import create_app

console = Console()


def serve(
    job_id: str = typer.Argument(
        ...,
        help="Job the results belong to",
    ),
    source: str = typer.Argument(
        "-",
        help="File of engine output, or '-' for stdin",
    ),
    port: int = typer.Option(8080, "--port", "-p", help="Port to listen on"),
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    per_partition: Optional[bool] = typer.Option(
        None,
        "--per-partition/--no-per-partition",
        help="Normalize scores within each partition (default from config)",
    ),
) -> None:
    """Ingest a result stream while serving its status over HTTP.

    Clients can poll /status and block on /flush/{flush_id} until the
    results before that flush are committed.

    Examples:

        # Follow the engine's output on stdin
        engine | resultflow serve job-1

        # Bind to all interfaces (for remote access)
        resultflow serve job-1 out.json --host 0.0.0.0 --port 8080
    """
    try:
        import uvicorn
    except ImportError as e:
        console.print("[red]Error:[/red] uvicorn is required for server mode.")
        console.print("Install with: pip install resultflow[server]")
        raise typer.Exit(1) from e

    try:
        project_dir = require_resultflow_dir()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    config = load_config(project_dir)
    configure_logging(config.log_level)
    if per_partition is None:
        per_partition = config.per_partition_normalization

    try:
        stream = open_input(source)
    except OSError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    persister = JobResultsPersister(get_db_path(project_dir))
    processor = AutodetectResultProcessor(
        renormaliser=Renormaliser(job_id),
        persister=persister,
    )
    thread = processor.start(job_id, stream, is_per_partition_normalization=per_partition)
    app = create_app(processor, job_id=job_id, default_flush_timeout=config.flush_timeout)

    console.print("[bold]resultflow server[/bold]")
    console.print(f"  Job: {job_id}")
    console.print(f"  Host: {host}")
    console.print(f"  Port: {port}")
    console.print()

    try:
        uvicorn.run(app, host=host, port=port, log_level=config.log_level.lower())
    finally:
        if processor.is_complete:
            thread.join()
            persister.close()
        else:
            # The processing thread is still blocked on the stream and dies with the process
            console.print(
                "[yellow]Server stopped before the result stream ended;[/yellow] "
                "results after the last flush are not committed"
            )
