"""Chromosome naming and cache key construction.

Keys must be deterministic and collision-free so that the disk tier survives
restarts: "1" and "chr1" always map to the same key.
"""

from __future__ import annotations

import re
from urllib.parse import unquote

from annocache.exceptions import InvalidRegionError
from annocache.models import Interval

# chr1_123456_234567[_suffix]; "_" inside the chromosome is written as %5F
_KEY_RE = re.compile(r"^(?P<chrom>chr[^_]+)_(?P<start>\d+)_(?P<end>\d+)(?:_(?P<suffix>.+))?$")


def normalize_chrom(chrom: str) -> str:
    """'1' → 'chr1', 'chr1' → 'chr1', 'CHRX' → 'chrX'."""
    chrom = chrom.strip()
    if chrom[:3].lower() == "chr":
        chrom = chrom[3:]
    return f"chr{chrom}"


def strip_chrom(chrom: str) -> str:
    """'chr1' → '1'. For services that use bare chromosome names."""
    return normalize_chrom(chrom)[3:]


def key_chrom(chrom: str) -> str:
    """Chromosome as written in keys: 'chr1_KI270706v1_random' → 'chr1%5FKI270706v1%5Frandom'."""
    return normalize_chrom(chrom).replace("%", "%25").replace("_", "%5F")


def cache_key(chrom: str, start: int, end: int, suffix: str | None = None) -> str:
    """('1', 100, 200, 'gnomad_r3') → 'chr1_100_200_gnomad_r3'."""
    key = f"{key_chrom(chrom)}_{start}_{end}"
    if suffix:
        key = f"{key}_{suffix}"
    return key


def parse_cache_key(key: str) -> tuple[str, Interval, str | None] | None:
    """Inverse of cache_key. None if the key is not region-shaped."""
    match = _KEY_RE.match(key)
    if match is None:
        return None
    start, end = int(match.group("start")), int(match.group("end"))
    if start > end:
        return None
    return unquote(match.group("chrom")), Interval(start, end), match.group("suffix")


def region_key(data_type: str, chrom: str, interval: Interval, grid: int) -> str:
    """Failure-ledger key shared by every query inside one rounded region."""
    rounded = interval.rounded(grid)
    return f"{data_type}:{normalize_chrom(chrom)}:{rounded.start}-{rounded.end}"


def entity_key(data_type: str, identifier: str) -> str:
    return f"{data_type}:{identifier}"


def validate_region(chrom: str, start: int, end: int, max_length: int | None = None) -> Interval:
    """Checked request interval. Raises InvalidRegionError on bad input."""
    if not chrom or not chrom.strip():
        raise InvalidRegionError("Missing chromosome")
    if start < 1:
        raise InvalidRegionError(f"Invalid start {start}")
    if end <= start:
        raise InvalidRegionError(f"Empty region {start}-{end}")
    interval = Interval(start, end)
    if max_length is not None and interval.length > max_length:
        raise InvalidRegionError(f"Region too large (max {max_length // 1000}kb)")
    return interval
