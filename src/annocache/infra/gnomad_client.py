"""gnomAD population variants by region."""

from __future__ import annotations

import logging

from annocache.adapters.gnomad import GnomadCodec, parse_variants
from annocache.exceptions import InvalidRegionError
from annocache.infra.http_fetcher import HttpFetcher
from annocache.models import Failure, FetchResult, VariantData
from annocache.services.coordinator import FetchCoordinator
from annocache.services.keys import strip_chrom, validate_region

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://gnomad.broadinstitute.org/api"
DEFAULT_DATASET = "gnomad_r3"
MAX_REGION = 50_000

# transcript_consequence is singular in the gnomAD schema
VARIANTS_QUERY = """
query VariantsInRegion {
  region(chrom: "%(chrom)s", start: %(start)d, stop: %(stop)d, reference_genome: GRCh38) {
    variants(dataset: %(dataset)s) {
      variant_id
      pos
      ref
      alt
      exome { ac an af }
      genome { ac an af }
      transcript_consequence {
        gene_symbol
        major_consequence
        hgvsc
        hgvsp
        lof
      }
    }
  }
}
"""


def build_query(chrom: str, start: int, end: int, dataset: str) -> dict:
    """GraphQL request body. gnomAD takes bare chromosome names ("1", not "chr1")."""
    query = VARIANTS_QUERY % {
        "chrom": strip_chrom(chrom),
        "start": start,
        "stop": end,
        "dataset": dataset,
    }
    return {"query": query}


class GnomadClient:
    """Variants in a region, cached per (chrom, start, end, dataset)."""

    def __init__(
        self,
        coordinator: FetchCoordinator,
        http: HttpFetcher,
        *,
        api_url: str = DEFAULT_API_URL,
        dataset: str = DEFAULT_DATASET,
        max_region: int = MAX_REGION,
    ) -> None:
        self._coordinator = coordinator
        self._http = http
        self._api_url = api_url
        self._dataset = dataset
        self._max_region = max_region
        self._codec = GnomadCodec()

    @property
    def max_region(self) -> int:
        return self._max_region

    async def fetch_variants(
        self,
        chrom: str,
        start: int,
        end: int,
        dataset: str | None = None,
        *,
        force_refresh: bool = False,
    ) -> FetchResult[VariantData]:
        try:
            interval = validate_region(chrom, start, end, self._max_region)
        except InvalidRegionError as e:
            return Failure(e.kind, str(e))

        dataset = dataset or self._dataset

        async def fetch() -> VariantData:
            logger.info("gnomAD: fetching %s:%d-%d (%s)", chrom, start, end, dataset)
            body = await self._http.post_json(
                self._api_url, build_query(chrom, start, end, dataset)
            )
            return parse_variants(body, start, end)

        return await self._coordinator.fetch(
            self._codec,
            chrom,
            interval,
            fetch,
            variant=dataset,
            force_refresh=force_refresh,
        )
