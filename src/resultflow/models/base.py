# Copyright (c) Syntropy Systems
"""Shared Pydantic model helpers for resultflow."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, ConfigDict


class ResultflowBaseModel(BaseModel):
    """Base model with shared config for result schemas.

    Unknown keys from the engine are dropped so newer engine builds can add
    fields without breaking ingestion.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        protected_namespaces=(),
    )


class MutableResultModel(ResultflowBaseModel):
    """Base model for results the processor annotates before persisting."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        protected_namespaces=(),
        validate_assignment=True,
    )
