# Copyright (c) Syntropy Systems
"""resultflow init command."""

from dataclasses import asdict
from pathlib import Path

import typer
import yaml
from rich.console import Console

from resultflow.config import PROJECT_DIR_NAME, ResultflowConfig
from resultflow.db import init_db

console = Console()


def init(
    path: Path = typer.Argument(
        Path(),
        help="Directory to initialize (default: current directory)",
    ),
) -> None:
    """Initialize a new resultflow project.

    Creates a .resultflow directory with configuration and results database.
    """
    target = path.resolve()
    project_dir = target / PROJECT_DIR_NAME

    if project_dir.exists():
        console.print(f"[yellow]Already initialized:[/yellow] {project_dir}")
        return

    project_dir.mkdir(parents=True)

    config_path = project_dir / "config.yaml"
    with config_path.open("w") as f:
        yaml.safe_dump(asdict(ResultflowConfig()), f, default_flow_style=False)

    db_path = project_dir / "results.db"
    init_db(db_path)

    console.print(f"[green]Initialized resultflow project:[/green] {project_dir}")
    console.print(f"  [dim]config:[/dim] {config_path}")
    console.print(f"  [dim]database:[/dim] {db_path}")
