# Copyright (c) Syntropy Systems
"""Configuration management for resultflow."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

PROJECT_DIR_NAME = ".resultflow"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@dataclass
class ResultflowConfig:
    """Configuration for resultflow."""

    # Default seconds to wait for a flush acknowledgement
    flush_timeout: float = 30.0

    # Normalize anomaly scores within each partition
    per_partition_normalization: bool = False

    log_level: str = "INFO"


def find_resultflow_dir(start_path: Path | None = None) -> Path | None:
    """Find the nearest .resultflow directory by walking up from start_path.

    Returns None if no .resultflow directory is found.
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()

    while current != current.parent:
        project_dir = current / PROJECT_DIR_NAME
        if project_dir.is_dir():
            return project_dir
        current = current.parent

    # Check root
    project_dir = current / PROJECT_DIR_NAME
    if project_dir.is_dir():
        return project_dir

    return None


def get_global_config_dir() -> Path:
    """Get the global resultflow config directory (~/.resultflow)."""
    return Path.home() / PROJECT_DIR_NAME


def load_config(project_dir: Path | None = None) -> ResultflowConfig:
    """Load configuration from .resultflow/config.yaml or defaults.

    Looks for config in:
    1. Provided project_dir
    2. Nearest .resultflow directory walking up
    3. ~/.resultflow/config.yaml
    4. Defaults
    """
    config = ResultflowConfig()

    config_path = None

    if project_dir is not None:
        config_path = project_dir / "config.yaml"
    else:
        found_dir = find_resultflow_dir()
        if found_dir is not None:
            config_path = found_dir / "config.yaml"
        else:
            global_config = get_global_config_dir() / "config.yaml"
            if global_config.exists():
                config_path = global_config

    if config_path is not None and config_path.exists():
        with config_path.open() as f:
            data = cast("dict[str, object]", yaml.safe_load(f) or {})

        flush_timeout = data.get("flush_timeout")
        if isinstance(flush_timeout, (int, float)) and not isinstance(flush_timeout, bool):
            config.flush_timeout = float(flush_timeout)
        per_partition = data.get("per_partition_normalization")
        if isinstance(per_partition, bool):
            config.per_partition_normalization = per_partition
        log_level = data.get("log_level")
        if isinstance(log_level, str) and log_level.upper() in LOG_LEVELS:
            config.log_level = log_level.upper()

    return config


def get_db_path(project_dir: Path | None = None) -> Path:
    """Get the path to the SQLite results database."""
    if project_dir is None:
        project_dir = find_resultflow_dir()

    if project_dir is None:
        msg = "No .resultflow directory found. Run 'resultflow init' first."
        raise RuntimeError(
            msg
        )

    return project_dir / "results.db"


def require_resultflow_dir() -> Path:
    """Get resultflow directory or raise an error if not found."""
    project_dir = find_resultflow_dir()
    if project_dir is None:
        msg = "No .resultflow directory found. Run 'resultflow init' first."
        raise RuntimeError(
            msg
        )
    return project_dir
