# Copyright (c) Syntropy Systems
"""resultflow results and stats commands."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from resultflow.config import get_db_path, require_resultflow_dir
from resultflow.db import (
    get_buckets,
    get_category_definitions,
    get_connection,
    get_job_ids,
    get_model_size_stats,
    get_model_snapshots,
    get_quantiles,
)
from resultflow.models.results import MemoryStatus

console = Console()


def format_epoch_ms(value: Optional[int]) -> str:
    """Format an epoch-milliseconds timestamp as UTC ISO time."""
    if value is None:
        return "-"
    ts = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%SZ")


def results(
    job_id: Optional[str] = typer.Argument(
        None,
        help="Job to list buckets for (lists jobs when omitted)",
    ),
    final_only: bool = typer.Option(
        False,
        "--final-only",
        help="Hide interim buckets",
    ),
    last: int = typer.Option(
        20,
        "--last", "-n",
        help="Number of buckets to show",
    ),
) -> None:
    """List stored buckets for a job."""
    try:
        project_dir = require_resultflow_dir()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    conn = get_connection(get_db_path(project_dir))
    try:
        if job_id is None:
            job_ids = get_job_ids(conn)
            buckets = []
        else:
            job_ids = []
            buckets = get_buckets(conn, job_id, include_interim=not final_only)
    finally:
        conn.close()

    if job_id is None:
        if not job_ids:
            console.print("[dim]No jobs found[/dim]")
            return
        for jid in job_ids:
            console.print(jid)
        return

    if not buckets:
        console.print(f"[dim]No buckets found for job '{job_id}'[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Time")
    table.add_column("Anomaly score", justify="right")
    table.add_column("Max prob", justify="right")
    table.add_column("Records", justify="right")
    table.add_column("Interim")

    for bucket in buckets[-last:]:
        score_style = "red" if bucket.anomaly_score >= 75 else "white"
        table.add_row(
            format_epoch_ms(bucket.timestamp),
            f"[{score_style}]{bucket.anomaly_score:.2f}[/{score_style}]",
            f"{bucket.max_normalized_probability:.2f}",
            str(bucket.record_count),
            "yes" if bucket.is_interim else "-",
        )

    console.print(table)


def stats(
    job_id: str = typer.Argument(
        ...,
        help="Job to show model state for",
    ),
) -> None:
    """Show model size stats, quantiles and snapshots for a job."""
    try:
        project_dir = require_resultflow_dir()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    conn = get_connection(get_db_path(project_dir))
    try:
        size_stats = get_model_size_stats(conn, job_id)
        quantiles = get_quantiles(conn, job_id)
        snapshots = get_model_snapshots(conn, job_id)
        categories = get_category_definitions(conn, job_id)
    finally:
        conn.close()

    if size_stats is None and quantiles is None and not snapshots:
        console.print(f"[red]Error:[/red] No model state found for job '{job_id}'")
        raise typer.Exit(1)

    console.print(f"\n[bold]Job {job_id}[/bold]")

    if size_stats is not None:
        status_style = {
            MemoryStatus.OK: "green",
            MemoryStatus.SOFT_LIMIT: "yellow",
            MemoryStatus.HARD_LIMIT: "red",
        }[size_stats.memory_status]
        console.print("\n[bold]Model size[/bold]")
        console.print(f"  [dim]model bytes:[/dim] {size_stats.model_bytes}")
        console.print(
            f"  [dim]memory status:[/dim] "
            f"[{status_style}]{size_stats.memory_status.value}[/{status_style}]"
        )
        console.print(
            f"  [dim]fields (by/over/partition):[/dim] "
            f"{size_stats.total_by_field_count}/"
            f"{size_stats.total_over_field_count}/"
            f"{size_stats.total_partition_field_count}"
        )
        if size_stats.bucket_allocation_failures_count:
            console.print(
                f"  [yellow]bucket allocation failures:[/yellow] "
                f"{size_stats.bucket_allocation_failures_count}"
            )

    if quantiles is not None:
        console.print(f"\n[bold]Quantiles[/bold] at {format_epoch_ms(quantiles.timestamp)}")

    if snapshots:
        console.print(f"\n[bold]Snapshots[/bold] ({len(snapshots)})")
        for snapshot in snapshots[:5]:
            console.print(
                f"  {snapshot.snapshot_id}  {format_epoch_ms(snapshot.timestamp)}  "
                f"{snapshot.description or ''}"
            )

    if categories:
        console.print(f"\n[bold]Categories[/bold] ({len(categories)})")

    console.print()
