"""AlphaFold structure metadata and missense pathogenicity by gene or UniProt id.

Gene symbols resolve to reviewed human UniProt accessions. Missense
predictions are fetched for the whole protein once and filtered by residue;
when AlphaMissense has nothing for a residue, clinical variants from the EBI
Proteins API are used instead.
"""

from __future__ import annotations

import logging

from annocache.adapters.alphafold import (
    MISSENSE_TYPE,
    PROTEIN_VARIANTS_TYPE,
    AlphaFoldEntryCodec,
    PredictionListCodec,
    UniProtIdCodec,
    parse_entry,
    parse_missense_csv,
    parse_protein_variants,
    parse_uniprot_search,
)
from annocache.exceptions import InvalidRegionError
from annocache.infra.http_fetcher import HttpFetcher
from annocache.models import (
    AlphaFoldEntry,
    Empty,
    Failure,
    FetchResult,
    MissensePrediction,
    Success,
)
from annocache.services.coordinator import FetchCoordinator

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://alphafold.ebi.ac.uk/api"
DEFAULT_FILES_URL = "https://alphafold.ebi.ac.uk/files"
DEFAULT_UNIPROT_URL = "https://rest.uniprot.org"
DEFAULT_PROTEINS_URL = "https://www.ebi.ac.uk/proteins/api"
ENTRY_URL = "https://alphafold.ebi.ac.uk/entry"
HUMAN_TAXON = 9606


def _require(value: str, what: str) -> str:
    value = (value or "").strip()
    if not value:
        raise InvalidRegionError(f"Missing {what}")
    return value


class AlphaFoldClient:
    def __init__(
        self,
        coordinator: FetchCoordinator,
        http: HttpFetcher,
        *,
        api_url: str = DEFAULT_API_URL,
        files_url: str = DEFAULT_FILES_URL,
        uniprot_url: str = DEFAULT_UNIPROT_URL,
        proteins_url: str = DEFAULT_PROTEINS_URL,
        timeout: float = 15.0,
    ) -> None:
        self._coordinator = coordinator
        self._http = http
        self._api_url = api_url.rstrip("/")
        self._files_url = files_url.rstrip("/")
        self._uniprot_url = uniprot_url.rstrip("/")
        self._proteins_url = proteins_url.rstrip("/")
        self._timeout = timeout

        self._id_codec = UniProtIdCodec()
        self._entry_codec = AlphaFoldEntryCodec()
        self._missense_codec = PredictionListCodec(MISSENSE_TYPE)
        self._variants_codec = PredictionListCodec(PROTEIN_VARIANTS_TYPE)

    # ── Lookups ──

    async def uniprot_id(self, gene: str, *, force_refresh: bool = False) -> FetchResult[str]:
        """Gene symbol → reviewed human UniProt accession (e.g. BRCA1 → P38398)."""
        try:
            gene = _require(gene, "gene symbol").upper()
        except InvalidRegionError as e:
            return Failure(e.kind, str(e))

        async def fetch() -> str:
            params = {
                "query": f"gene_exact:{gene} AND organism_id:{HUMAN_TAXON} AND reviewed:true",
                "fields": "accession",
                "format": "json",
                "size": 1,
            }
            body = await self._http.get_text(
                f"{self._uniprot_url}/uniprotkb/search", params=params, timeout=self._timeout
            )
            accession = parse_uniprot_search(body)
            logger.info("UniProt: %s → %s", gene, accession or "none")
            return accession

        return await self._coordinator.fetch_entity(
            self._id_codec, gene, fetch, force_refresh=force_refresh
        )

    async def entry(
        self, uniprot_id: str, *, force_refresh: bool = False
    ) -> FetchResult[AlphaFoldEntry]:
        """Prediction metadata. A 404 (protein not modelled) is cached as Empty."""
        try:
            uniprot_id = _require(uniprot_id, "UniProt id")
        except InvalidRegionError as e:
            return Failure(e.kind, str(e))

        async def fetch() -> AlphaFoldEntry | None:
            body = await self._http.get_text(
                f"{self._api_url}/prediction/{uniprot_id}",
                timeout=self._timeout,
                allow_not_found=True,
            )
            if body is None:
                logger.info("AlphaFold: no prediction for %s", uniprot_id)
                return None
            return parse_entry(body, uniprot_id)

        return await self._coordinator.fetch_entity(
            self._entry_codec, uniprot_id, fetch, force_refresh=force_refresh
        )

    async def entry_for_gene(
        self, gene: str, *, force_refresh: bool = False
    ) -> FetchResult[AlphaFoldEntry]:
        resolved = await self.uniprot_id(gene, force_refresh=force_refresh)
        if not isinstance(resolved, Success):
            return resolved
        return await self.entry(resolved.value, force_refresh=force_refresh)

    async def missense_predictions(
        self, gene: str, position: int, *, force_refresh: bool = False
    ) -> FetchResult[list[MissensePrediction]]:
        """Predictions for one residue of the gene's protein."""
        if position < 1:
            return Failure(InvalidRegionError.kind, f"Invalid residue {position}")
        resolved = await self.uniprot_id(gene, force_refresh=force_refresh)
        if not isinstance(resolved, Success):
            return resolved
        uniprot_id = resolved.value

        primary = await self._all_missense(uniprot_id, force_refresh)
        if isinstance(primary, Success):
            hits = [p for p in primary.value if p.position == position]
            if hits:
                return Success(hits, from_cache=primary.from_cache)

        fallback = await self._all_protein_variants(uniprot_id, force_refresh)
        if isinstance(fallback, Success):
            hits = [p for p in fallback.value if p.position == position]
            if hits:
                return Success(hits, from_cache=fallback.from_cache)
        if isinstance(primary, Failure):
            return primary
        if isinstance(fallback, Failure):
            return fallback
        return Empty(from_cache=_all_cached(primary, fallback))

    # ── URL helpers ──

    def pae_image_url(self, uniprot_id: str) -> str:
        return f"{self._files_url}/AF-{uniprot_id}-F1-predicted_aligned_error_v4.png"

    def model_image_url(self, uniprot_id: str) -> str:
        return f"{self._files_url}/AF-{uniprot_id}-F1-model_v4.png"

    @staticmethod
    def viewer_url_for_residue(uniprot_id: str, position: int) -> str:
        return f"{ENTRY_URL}/{uniprot_id}#residue-{position}"

    # ── Internal ──

    async def _all_missense(
        self, uniprot_id: str, force_refresh: bool
    ) -> FetchResult[list[MissensePrediction]]:
        async def fetch() -> list[MissensePrediction]:
            text = await self._http.get_text(
                f"{self._files_url}/AF-{uniprot_id}-F1-aa-substitutions.csv",
                timeout=self._timeout,
                allow_not_found=True,
            )
            if text is None:
                logger.info("AlphaMissense: no data for %s", uniprot_id)
                return []
            predictions = parse_missense_csv(text)
            logger.info("AlphaMissense: %d predictions for %s", len(predictions), uniprot_id)
            return predictions

        return await self._coordinator.fetch_entity(
            self._missense_codec, uniprot_id, fetch, force_refresh=force_refresh
        )

    async def _all_protein_variants(
        self, uniprot_id: str, force_refresh: bool
    ) -> FetchResult[list[MissensePrediction]]:
        async def fetch() -> list[MissensePrediction]:
            body = await self._http.get_text(
                f"{self._proteins_url}/variation/{uniprot_id}",
                params={"format": "json"},
                timeout=self._timeout,
                allow_not_found=True,
            )
            if body is None:
                return []
            return parse_protein_variants(body)

        return await self._coordinator.fetch_entity(
            self._variants_codec, uniprot_id, fetch, force_refresh=force_refresh
        )


def _all_cached(*results) -> bool:
    return all(getattr(r, "from_cache", False) for r in results)
