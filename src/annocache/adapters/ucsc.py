"""UCSC getData/track response → per-base samples or binned scores.

UCSC answers bigWig tracks as {"<chrom>": [{"start", "end", "value"}, ...]}
with 0-based starts; positions here are 1-based.
"""

from __future__ import annotations

from typing import Any

from pydantic import TypeAdapter, ValidationError

from annocache.adapters.base import LenientModel, load_body
from annocache.exceptions import ParseError
from annocache.models import ConservationData, clamp_phylop
from annocache.services.keys import normalize_chrom

DATA_TYPE = "conservation"


class TrackPoint(LenientModel):
    start: int
    end: int
    value: float | None = None


_POINTS = TypeAdapter(list[TrackPoint])


def _points(raw: Any, chrom: str) -> list[TrackPoint]:
    body = load_body(raw)
    if not isinstance(body, dict):
        raise ParseError(f"Unexpected UCSC response type: {type(body).__name__}")
    entries = body.get(normalize_chrom(chrom))
    if entries is None:
        return []
    try:
        return _POINTS.validate_python(entries)
    except ValidationError as e:
        raise ParseError(f"Unexpected UCSC track data: {e}") from e


def parse_base_level(raw: Any, chrom: str) -> dict[int, float]:
    """Expand each [start, end] span into one sample per 1-based position.

    Points without a value are skipped.
    """
    samples: dict[int, float] = {}
    for point in _points(raw, chrom):
        if point.value is None:
            continue
        for pos in range(point.start + 1, point.end + 1):
            samples[pos] = point.value
    return samples


def parse_binned(raw: Any, chrom: str, start: int, end: int, bins: int) -> ConservationData:
    """Average the track values into `bins` equal-width bins over [start, end)."""
    points = [p for p in _points(raw, chrom) if p.value is not None]
    if not points or bins <= 0:
        return ConservationData(start, end, [0.0] * max(bins, 0))

    sums = [0.0] * bins
    counts = [0] * bins
    bin_size = (end - start) / bins
    low = high = None
    for point in points:
        pos = point.start + 1
        index = int((pos - start) / bin_size)
        if 0 <= index < bins:
            sums[index] += point.value
            counts[index] += 1
        low = point.value if low is None else min(low, point.value)
        high = point.value if high is None else max(high, point.value)

    scores = [s / c if c else 0.0 for s, c in zip(sums, counts)]
    low, high = clamp_phylop(low, high)
    return ConservationData(start, end, scores, low, high, True)


class ConservationCodec:
    """Binned conservation documents."""

    data_type = DATA_TYPE

    def to_document(self, value: ConservationData) -> dict:
        return {
            "start": value.start,
            "end": value.end,
            "minScore": value.min_score,
            "maxScore": value.max_score,
            "hasData": value.has_data,
            "scores": list(value.scores),
        }

    def from_document(self, document: dict) -> ConservationData:
        return ConservationData(
            start=int(document["start"]),
            end=int(document["end"]),
            scores=[float(s) for s in document.get("scores") or []],
            min_score=float(document.get("minScore") or 0.0),
            max_score=float(document.get("maxScore") or 0.0),
            has_data=bool(document.get("hasData", False)),
        )

    def is_empty(self, value: ConservationData) -> bool:
        return not value.has_data
