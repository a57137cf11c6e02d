"""gnomAD GraphQL region response → VariantData."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import Field, ValidationError

from annocache.adapters.base import LenientModel, load_body
from annocache.exceptions import ParseError
from annocache.models import Impact, Variant, VariantData

logger = logging.getLogger(__name__)

DATA_TYPE = "gnomad"

# First matching row wins; consequence terms are matched by substring.
CONSEQUENCE_IMPACT: tuple[tuple[Impact, tuple[str, ...]], ...] = (
    (
        Impact.HIGH,
        (
            "stop_gained",
            "stop_lost",
            "frameshift",
            "splice_acceptor",
            "splice_donor",
            "start_lost",
            "transcript_ablation",
        ),
    ),
    (Impact.MODERATE, ("missense", "inframe_insertion", "inframe_deletion", "protein_altering")),
    (Impact.LOW, ("synonymous", "stop_retained", "splice_region")),
)

# LOFTEE high/low confidence loss-of-function calls
LOF_HIGH_IMPACT = frozenset({"HC", "LC"})


def impact_for(consequence: str | None, lof: str | None = None) -> Impact:
    if lof in LOF_HIGH_IMPACT:
        return Impact.HIGH
    if not consequence:
        return Impact.MODIFIER
    for impact, terms in CONSEQUENCE_IMPACT:
        if any(term in consequence for term in terms):
            return impact
    return Impact.MODIFIER


# ── Response schema ──


class AlleleCounts(LenientModel):
    ac: int | None = None
    an: int | None = None
    af: float | None = None


class TranscriptConsequence(LenientModel):
    gene_symbol: str | None = None
    major_consequence: str | None = None
    hgvsc: str | None = None
    hgvsp: str | None = None
    lof: str | None = None


class GnomadVariant(LenientModel):
    variant_id: str | None = None
    pos: int
    ref: str | None = None
    alt: str | None = None
    exome: AlleleCounts | None = None
    genome: AlleleCounts | None = None
    transcript_consequence: TranscriptConsequence | None = None


class GnomadRegion(LenientModel):
    variants: list[GnomadVariant] | None = None


class GnomadData(LenientModel):
    region: GnomadRegion | None = None


class GraphQLError(LenientModel):
    message: str = ""


class GnomadResponse(LenientModel):
    data: GnomadData | None = None
    errors: list[GraphQLError] = Field(default_factory=list)


# ── Parsing ──


def _to_variant(v: GnomadVariant) -> Variant:
    # Exome frequencies preferred, genome as fallback
    counts = AlleleCounts()
    if v.exome is not None:
        counts = v.exome
    if not counts.af and v.genome is not None:
        counts = v.genome

    tc = v.transcript_consequence or TranscriptConsequence()
    consequence = tc.major_consequence or ""
    impact = impact_for(consequence, tc.lof) if v.transcript_consequence else Impact.MODIFIER

    return Variant(
        position=v.pos,
        ref=v.ref or "",
        alt=v.alt or "",
        allele_frequency=counts.af or 0.0,
        allele_count=counts.ac or 0,
        allele_number=counts.an or 0,
        consequence=consequence,
        impact=impact,
        gene_symbol=tc.gene_symbol or "",
        hgvsc=tc.hgvsc or "",
        hgvsp=tc.hgvsp or "",
    )


def parse_variants(raw: Any, start: int, end: int) -> VariantData:
    """GraphQL body → VariantData. Missing data/region/variants → no variants.

    Raises ParseError when the body is not the expected shape or carries
    GraphQL errors.
    """
    body = load_body(raw)
    try:
        response = GnomadResponse.model_validate(body)
    except ValidationError as e:
        raise ParseError(f"Unexpected gnomAD response: {e}") from e

    if response.errors:
        message = response.errors[0].message
        raise ParseError(f"gnomAD returned error: {message}", reason=f"API: {message}")

    region = response.data.region if response.data else None
    if region is None or not region.variants:
        logger.debug("gnomAD: no variants in %d-%d", start, end)
        return VariantData(start, end, [])

    variants = [_to_variant(v) for v in region.variants]
    logger.debug("gnomAD: %d variants in %d-%d", len(variants), start, end)
    return VariantData(start, end, variants)


# ── Disk codec ──


class GnomadCodec:
    data_type = DATA_TYPE

    def to_document(self, value: VariantData) -> dict:
        return {
            "start": value.start,
            "end": value.end,
            "hasData": bool(value.variants),
            "variants": [
                {
                    "position": v.position,
                    "ref": v.ref,
                    "alt": v.alt,
                    "alleleFrequency": v.allele_frequency,
                    "alleleCount": v.allele_count,
                    "alleleNumber": v.allele_number,
                    "consequence": v.consequence,
                    "impact": v.impact.value,
                    "geneSymbol": v.gene_symbol,
                    "hgvsc": v.hgvsc,
                    "hgvsp": v.hgvsp,
                }
                for v in value.variants
            ],
        }

    def from_document(self, document: dict) -> VariantData:
        variants = []
        for v in document.get("variants") or []:
            variants.append(
                Variant(
                    position=int(v["position"]),
                    ref=v.get("ref") or "",
                    alt=v.get("alt") or "",
                    allele_frequency=float(v.get("alleleFrequency") or 0.0),
                    allele_count=int(v.get("alleleCount") or 0),
                    allele_number=int(v.get("alleleNumber") or 0),
                    consequence=v.get("consequence") or "",
                    impact=Impact(v.get("impact") or Impact.MODIFIER.value),
                    gene_symbol=v.get("geneSymbol") or "",
                    hgvsc=v.get("hgvsc") or "",
                    hgvsp=v.get("hgvsp") or "",
                )
            )
        return VariantData(int(document["start"]), int(document["end"]), variants)

    def is_empty(self, value: VariantData) -> bool:
        return not value.variants
