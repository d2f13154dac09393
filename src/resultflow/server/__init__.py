# Copyright (c) Syntropy Systems
"""resultflow status server."""

from .app import create_app
from .models import FlushResponse, HealthResponse, ModelSizeStatsResponse, StatusResponse

__all__ = [
    "FlushResponse",
    "HealthResponse",
    "ModelSizeStatsResponse",
    "StatusResponse",
    "create_app",
]
