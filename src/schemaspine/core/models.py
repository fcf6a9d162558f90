"""Pydantic base for declarative configuration models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ConfigModel(BaseModel):
    """Strict config model accepting both ``snake_case`` and ``camelCase`` keys."""

    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )


__all__ = ["ConfigModel"]
