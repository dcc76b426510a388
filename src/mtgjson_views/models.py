"""Typed records for the views and documents this package exposes directly."""

from __future__ import annotations

from functools import lru_cache
from typing import Any, TypeVar

from pydantic import BaseModel, Field, TypeAdapter

T = TypeVar("T")


class Meta(BaseModel):
    """MTGJSON build metadata from ``Meta.json``."""

    version: str = Field(description="MTGJSON release, e.g. 5.2.2+20240101.")
    date: str | None = Field(default=None, description="Build date (YYYY-MM-DD).")


class LegalityEntry(BaseModel):
    """One row of the unpivoted ``card_legalities`` view."""

    uuid: str
    format: str = Field(description="Play format, e.g. modern.")
    status: str = Field(description="Legal, Banned, Restricted or Not Legal.")


@lru_cache(maxsize=None)
def _list_adapter(target: Any) -> TypeAdapter:
    return TypeAdapter(list[target])


def decode_rows(payload: str | bytes, target: type[T]) -> list[T]:
    """Validate a JSON array of row objects into instances of *target*.

    This is the second half of the query pipeline: the connection produces
    rows as JSON text, and this step turns them into typed records. Any type
    pydantic can validate works as *target* (models, TypedDicts, dataclasses).

    Raises:
        pydantic.ValidationError: If a row doesn't fit *target*.
    """
    return _list_adapter(target).validate_json(payload)
