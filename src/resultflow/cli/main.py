# Copyright (c) Syntropy Systems
"""Main CLI entry point for resultflow."""

import typer

from resultflow.cli.ingest import ingest
from resultflow.cli.init_cmd import init
from resultflow.cli.results import results, stats
from resultflow.cli.server_cmd import serve

app = typer.Typer(
    name="resultflow",
    help=(
        "Result ingestion for streaming anomaly detection jobs. Persist "
        "engine output, wait on flushes, know when the stream is done."
    ),
    no_args_is_help=True,
    add_completion=False,
)

# Register commands
_ = app.command()(init)
_ = app.command()(ingest)
_ = app.command()(results)
_ = app.command()(stats)
_ = app.command()(serve)


if __name__ == "__main__":
    app()
