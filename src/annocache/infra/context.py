"""Process-wide wiring: one store, ledger, coordinator and HTTP client."""

from __future__ import annotations

import logging

import httpx

from annocache.config import AppConfig
from annocache.infra.alphafold_client import AlphaFoldClient
from annocache.infra.gnomad_client import GnomadClient
from annocache.infra.http_fetcher import HttpFetcher
from annocache.infra.ucsc_client import UcscClient
from annocache.services.coordinator import FetchCoordinator
from annocache.services.failure_ledger import FailureLedger
from annocache.services.keyed_store import KeyedStore

logger = logging.getLogger(__name__)


class AnnotationContext:
    """Owns every cache tier and service facade for one process.

    Use as `async with AnnotationContext(config) as ctx:`; leaving the block
    closes the shared HTTP client. Caches stay valid for the life of the
    object.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or AppConfig()
        cfg = self.config

        self.store = KeyedStore(cfg.cache_dir)
        self.ledger = FailureLedger(max_failures=cfg.max_region_failures)
        self.coordinator = FetchCoordinator(
            self.store,
            self.ledger,
            ttl=cfg.cache_ttl,
            failure_grid=cfg.failure_grid,
            memory_entries=cfg.memory_cache_entries,
            range_max_samples=cfg.range_cache_max_samples,
        )
        self.http = HttpFetcher(
            timeout=cfg.request_timeout,
            connect_timeout=cfg.connect_timeout,
            user_agent=cfg.user_agent,
            transport=transport,
        )

        self.gnomad = GnomadClient(
            self.coordinator,
            self.http,
            api_url=cfg.gnomad_api_url,
            dataset=cfg.gnomad_dataset,
            max_region=cfg.gnomad_max_region,
        )
        self.ucsc = UcscClient(
            self.coordinator,
            self.http,
            api_url=cfg.ucsc_api_url,
            genome=cfg.ucsc_genome,
            track=cfg.ucsc_track,
            max_region=cfg.ucsc_max_region,
            base_level_threshold=cfg.ucsc_base_level_threshold,
            fetch_buffer=cfg.ucsc_fetch_buffer,
            max_bins=cfg.ucsc_max_bins,
        )
        self.alphafold = AlphaFoldClient(
            self.coordinator,
            self.http,
            api_url=cfg.alphafold_api_url,
            files_url=cfg.alphafold_files_url,
            uniprot_url=cfg.uniprot_api_url,
            proteins_url=cfg.proteins_api_url,
            timeout=cfg.alphafold_timeout,
        )
        logger.debug("AnnotationContext ready (cache_dir=%s)", cfg.cache_dir)

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> AnnotationContext:
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()

    # ── Cache management ──

    def cache_stats(self) -> dict:
        return {"disk": self.store.stats(), "memory": self.coordinator.memory_stats()}

    def clear_cache(self, data_type: str | None = None) -> int:
        """Clear one data type (both tiers) or everything. Returns disk entries removed."""
        if data_type is None:
            self.coordinator.clear_memory()
            self.ledger.reset()
            return self.store.clear_all()
        return self.coordinator.clear(data_type)
