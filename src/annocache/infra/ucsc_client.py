"""UCSC phyloP conservation scores.

Regions up to `base_level_threshold` bp are served per base from a
range-merging cache, so panning and zooming inside an already fetched window
never goes back to the network. Larger regions are fetched binned and cached
per (region, bin count).
"""

from __future__ import annotations

import logging

from annocache.adapters.ucsc import DATA_TYPE, ConservationCodec, parse_base_level, parse_binned
from annocache.exceptions import InvalidRegionError
from annocache.infra.http_fetcher import HttpFetcher
from annocache.models import (
    ConservationData,
    Failure,
    FetchResult,
    Interval,
    Success,
)
from annocache.services.coordinator import FetchCoordinator
from annocache.services.keys import normalize_chrom, validate_region

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.genome.ucsc.edu"
MAX_REGION = 100_000
BASE_LEVEL_THRESHOLD = 10_000
FETCH_BUFFER = 10_000
MAX_BINS = 500

BASE_SUFFIX = "base"


class UcscClient:
    def __init__(
        self,
        coordinator: FetchCoordinator,
        http: HttpFetcher,
        *,
        api_url: str = DEFAULT_API_URL,
        genome: str = "hg38",
        track: str = "phyloP100way",
        max_region: int = MAX_REGION,
        base_level_threshold: int = BASE_LEVEL_THRESHOLD,
        fetch_buffer: int = FETCH_BUFFER,
        max_bins: int = MAX_BINS,
    ) -> None:
        self._coordinator = coordinator
        self._http = http
        self._api_url = api_url.rstrip("/")
        self._genome = genome
        self._track = track
        self._max_region = max_region
        self._base_level_threshold = base_level_threshold
        self._fetch_buffer = fetch_buffer
        self._max_bins = max_bins
        self._codec = ConservationCodec()

    def is_base_level(self, start: int, end: int) -> bool:
        return end - start <= self._base_level_threshold

    async def fetch_conservation(
        self,
        chrom: str,
        start: int,
        end: int,
        bins: int = MAX_BINS,
        *,
        force_refresh: bool = False,
    ) -> FetchResult[ConservationData]:
        """Per-base scores for small regions, `bins` averaged scores otherwise."""
        try:
            interval = validate_region(chrom, start, end)
            if not self.is_base_level(start, end) and bins < 1:
                raise InvalidRegionError(f"Invalid bin count {bins}")
        except InvalidRegionError as e:
            return Failure(e.kind, str(e))

        if self.is_base_level(start, end):
            return await self._fetch_base_level(chrom, interval, force_refresh)
        return await self._fetch_binned(chrom, interval, bins, force_refresh)

    # ── Internal ──

    async def _get_track(self, chrom: str, start: int, end: int) -> str:
        # UCSC takes 0-based starts
        params = {
            "genome": self._genome,
            "track": self._track,
            "chrom": normalize_chrom(chrom),
            "start": start - 1,
            "end": end,
        }
        return await self._http.get_text(f"{self._api_url}/getData/track", params=params)

    async def _fetch_base_level(
        self, chrom: str, interval: Interval, force_refresh: bool
    ) -> FetchResult[ConservationData]:
        async def fetch(window: Interval) -> dict[int, float]:
            logger.info("UCSC: fetching per-base %s:%d-%d", chrom, window.start, window.end)
            body = await self._get_track(chrom, window.start, window.end)
            return parse_base_level(body, chrom)

        result = await self._coordinator.fetch_range(
            DATA_TYPE,
            chrom,
            interval,
            fetch,
            variant=BASE_SUFFIX,
            buffer=self._fetch_buffer,
            max_span=self._max_region,
            force_refresh=force_refresh,
        )
        if isinstance(result, Success):
            return Success(ConservationData.from_slice(result.value), from_cache=result.from_cache)
        return result

    async def _fetch_binned(
        self, chrom: str, interval: Interval, bins: int, force_refresh: bool
    ) -> FetchResult[ConservationData]:
        bins = min(bins, interval.length)
        if interval.length > self._max_region:
            bins = min(bins, self._max_bins)

        async def fetch() -> ConservationData:
            logger.info(
                "UCSC: fetching %s:%d-%d in %d bins", chrom, interval.start, interval.end, bins
            )
            body = await self._get_track(chrom, interval.start, interval.end)
            return parse_binned(body, chrom, interval.start, interval.end, bins)

        return await self._coordinator.fetch(
            self._codec,
            chrom,
            interval,
            fetch,
            variant=f"binned_{bins}",
            force_refresh=force_refresh,
        )
