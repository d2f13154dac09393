# Copyright (c) Syntropy Systems
"""Pytest fixtures for resultflow tests."""

import os
import sqlite3
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

# Store original cwd at module load time
_original_cwd = Path.cwd()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def resultflow_project(temp_dir: Path) -> Generator[Path, None, None]:
    """Create a temporary resultflow project directory."""
    from resultflow.db import init_db

    project_dir = temp_dir / ".resultflow"
    project_dir.mkdir()

    # Initialize database
    db_path = project_dir / "results.db"
    init_db(db_path)

    # Change to temp directory
    os.chdir(temp_dir)

    yield temp_dir

    # Always return to original cwd
    os.chdir(_original_cwd)


@pytest.fixture
def db_path(resultflow_project: Path) -> Path:
    """Path to the test project's results database."""
    return resultflow_project / ".resultflow" / "results.db"


@pytest.fixture
def db_connection(db_path: Path) -> Generator[sqlite3.Connection, None, None]:
    """Get a read connection for the test project."""
    from resultflow.db import get_connection

    conn = get_connection(db_path)
    yield conn
    conn.close()
