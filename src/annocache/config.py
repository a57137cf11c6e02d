from datetime import timedelta
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Process-wide settings. Loaded from .env or ANNOCACHE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="ANNOCACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Disk tier
    cache_dir: Path = Field(default_factory=lambda: Path.home() / ".annocache" / "cache")
    cache_ttl_days: float = 7.0

    # Memory tier
    memory_cache_entries: int = 100
    range_cache_max_samples: int = 500_000

    # Resilience
    # Consecutive failures per rounded region (or identifier) before lookups
    # short-circuit for the rest of the session.
    max_region_failures: int = 2
    failure_grid: int = 10_000

    # Network
    request_timeout: float = 30.0
    connect_timeout: float = 15.0
    user_agent: str = "annocache/0.1"

    # gnomAD
    gnomad_api_url: str = "https://gnomad.broadinstitute.org/api"
    gnomad_dataset: str = "gnomad_r3"
    gnomad_max_region: int = 50_000

    # UCSC
    ucsc_api_url: str = "https://api.genome.ucsc.edu"
    ucsc_genome: str = "hg38"
    ucsc_track: str = "phyloP100way"
    ucsc_max_region: int = 100_000
    ucsc_base_level_threshold: int = 10_000
    ucsc_fetch_buffer: int = 10_000
    ucsc_max_bins: int = 500

    # AlphaFold / UniProt
    alphafold_api_url: str = "https://alphafold.ebi.ac.uk/api"
    alphafold_files_url: str = "https://alphafold.ebi.ac.uk/files"
    uniprot_api_url: str = "https://rest.uniprot.org"
    proteins_api_url: str = "https://www.ebi.ac.uk/proteins/api"
    alphafold_timeout: float = 15.0

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_dir: Path = Path(".log")
    log_to_file: bool = False
    # httpx logs one INFO line per request; failures are already logged once
    # by the coordinator.
    log_http_requests: bool = False

    # ── Derived ──

    @property
    def cache_ttl(self) -> timedelta:
        return timedelta(days=self.cache_ttl_days)

    def data_type_dir(self, data_type: str) -> Path:
        """data_type='gnomad' → <cache_dir>/gnomad/"""
        return self.cache_dir / data_type
