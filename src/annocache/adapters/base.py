"""ResponseAdapter protocol shared by the per-service adapters."""

from __future__ import annotations

import json
from typing import Any, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, ConfigDict

from annocache.exceptions import ParseError

T = TypeVar("T")


class LenientModel(BaseModel):
    """Response schema base: unknown fields ignored, missing fields defaulted."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


@runtime_checkable
class Codec(Protocol[T]):
    """How the coordinator stores and restores one service's domain value."""

    @property
    def data_type(self) -> str: ...

    def to_document(self, value: T) -> dict: ...

    def from_document(self, document: dict) -> T: ...

    def is_empty(self, value: T) -> bool: ...


def load_body(raw: Any) -> Any:
    """Accept a raw body (str/bytes) or already-decoded JSON."""
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except ValueError as e:
            raise ParseError(f"Invalid JSON: {e}") from e
    return raw
