"""AlphaFold DB, AlphaMissense, UniProt search and EBI Proteins responses."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import Field, TypeAdapter, ValidationError

from annocache.adapters.base import LenientModel, load_body
from annocache.exceptions import ParseError
from annocache.models import AlphaFoldEntry, MissensePrediction

logger = logging.getLogger(__name__)

ENTRY_TYPE = "alphafold"
MISSENSE_TYPE = "alphafold_missense"
UNIPROT_ID_TYPE = "uniprot_ids"
PROTEIN_VARIANTS_TYPE = "uniprot_variants"

# AlphaMissense am_class column → classification
AM_CLASSES = {
    "LPath": "pathogenic",
    "Path": "pathogenic",
    "LBen": "benign",
    "Ben": "benign",
}

# Clinical significance substring → (score, classification), first match wins
CLINICAL_SIGNIFICANCE: tuple[tuple[str, float, str], ...] = (
    ("pathogenic", 0.8, "pathogenic"),
    ("benign", 0.2, "benign"),
)
UNCLASSIFIED = (0.5, "ambiguous")


# ── AlphaFold prediction metadata ──


class PredictionRecord(LenientModel):
    uniprot_accession: str = Field(default="", alias="uniprotAccession")
    uniprot_description: str = Field(default="", alias="uniprotDescription")
    gene: str = ""
    sequence_end: int | None = Field(default=None, alias="sequenceEnd")
    uniprot_end: int | None = Field(default=None, alias="uniprotEnd")
    pdb_url: str = Field(default="", alias="pdbUrl")
    cif_url: str = Field(default="", alias="cifUrl")
    pae_image_url: str = Field(default="", alias="paeImageUrl")
    model_url: str = Field(default="", alias="modelUrl")
    global_metric_value: float = Field(default=0.0, alias="globalMetricValue")


_PREDICTIONS = TypeAdapter(list[PredictionRecord])


def parse_entry(raw: Any, uniprot_id: str) -> AlphaFoldEntry | None:
    """/prediction/{id} body (a JSON array) → first entry, None when the array is empty."""
    body = load_body(raw)
    try:
        records = _PREDICTIONS.validate_python(body)
    except ValidationError as e:
        raise ParseError(f"Unexpected AlphaFold response: {e}") from e
    if not records:
        return None

    r = records[0]
    length = r.sequence_end if r.sequence_end is not None else (r.uniprot_end or 0)
    return AlphaFoldEntry(
        uniprot_id=uniprot_id,
        uniprot_description=r.uniprot_description,
        gene=r.gene,
        sequence_length=length,
        pdb_url=r.pdb_url,
        cif_url=r.cif_url,
        pae_image_url=r.pae_image_url,
        model_url=r.model_url,
        global_metric_value=r.global_metric_value,
    )


# ── UniProt search ──


class UniProtHit(LenientModel):
    primary_accession: str = Field(default="", alias="primaryAccession")


class UniProtSearch(LenientModel):
    results: list[UniProtHit] = Field(default_factory=list)


def parse_uniprot_search(raw: Any) -> str:
    """Search body → primary accession of the first hit, '' when there is none."""
    try:
        search = UniProtSearch.model_validate(load_body(raw))
    except ValidationError as e:
        raise ParseError(f"Unexpected UniProt response: {e}") from e
    if not search.results:
        return ""
    return search.results[0].primary_accession


# ── AlphaMissense CSV ──


def _split_substitution(variant: str) -> tuple[str, int, str]:
    """'M1A' → ('M', 1, 'A')."""
    if len(variant) < 3:
        raise ValueError(f"bad substitution {variant!r}")
    return variant[0], int(variant[1:-1]), variant[-1]


def parse_missense_csv(text: str) -> list[MissensePrediction]:
    """Full-protein substitutions CSV. Header skipped, malformed rows dropped."""
    predictions = []
    skipped = 0
    for line in text.splitlines()[1:]:
        line = line.strip()
        if not line:
            continue
        parts = line.split(",")
        if len(parts) < 3:
            skipped += 1
            continue
        try:
            ref, pos, alt = _split_substitution(parts[0])
            score = float(parts[1])
        except ValueError:
            skipped += 1
            continue
        classification = AM_CLASSES.get(parts[2].strip(), "ambiguous")
        predictions.append(MissensePrediction(pos, ref, alt, score, classification))
    if skipped:
        logger.debug("AlphaMissense: skipped %d malformed rows", skipped)
    return predictions


# ── EBI Proteins variation ──


class ClinicalSignificance(LenientModel):
    type: str = ""


class VariationFeature(LenientModel):
    type: str = ""
    begin: int | None = None
    wild_type: str | None = Field(default=None, alias="wildType")
    alternative_sequence: str | None = Field(default=None, alias="alternativeSequence")
    clinical_significances: list[ClinicalSignificance] = Field(
        default_factory=list, alias="clinicalSignificances"
    )


class ProteinVariation(LenientModel):
    features: list[VariationFeature] = Field(default_factory=list)


def _classify_clinical(significance: str) -> tuple[float, str]:
    lowered = significance.lower()
    for term, score, classification in CLINICAL_SIGNIFICANCE:
        if term in lowered:
            return score, classification
    return UNCLASSIFIED


def parse_protein_variants(raw: Any) -> list[MissensePrediction]:
    """Single-residue VARIANT features, scored from their first clinical significance."""
    try:
        variation = ProteinVariation.model_validate(load_body(raw))
    except ValidationError as e:
        raise ParseError(f"Unexpected Proteins API response: {e}") from e

    predictions = []
    for feature in variation.features:
        if feature.type != "VARIANT" or not feature.begin or feature.begin <= 0:
            continue
        alt = feature.alternative_sequence
        if alt is None or len(alt) != 1:
            continue
        ref = feature.wild_type if feature.wild_type and len(feature.wild_type) == 1 else "X"
        significance = feature.clinical_significances[0].type if feature.clinical_significances else ""
        score, classification = _classify_clinical(significance)
        predictions.append(MissensePrediction(feature.begin, ref, alt, score, classification))
    return predictions


# ── Disk codecs ──


def _prediction_rows(predictions: list[MissensePrediction]) -> list[dict]:
    return [
        {
            "position": p.position,
            "ref": p.reference_aa,
            "alt": p.alternate_aa,
            "score": p.pathogenicity,
            "class": p.classification,
        }
        for p in predictions
    ]


def _predictions_from_rows(rows: list[dict]) -> list[MissensePrediction]:
    return [
        MissensePrediction(
            position=int(r["position"]),
            reference_aa=r["ref"],
            alternate_aa=r["alt"],
            pathogenicity=float(r["score"]),
            classification=r["class"],
        )
        for r in rows
    ]


class AlphaFoldEntryCodec:
    """A missing prediction (404) is stored as {"found": false}."""

    data_type = ENTRY_TYPE

    def to_document(self, value: AlphaFoldEntry | None) -> dict:
        if value is None:
            return {"found": False}
        return {
            "found": True,
            "uniprotId": value.uniprot_id,
            "description": value.uniprot_description,
            "gene": value.gene,
            "sequenceLength": value.sequence_length,
            "pdbUrl": value.pdb_url,
            "cifUrl": value.cif_url,
            "paeImageUrl": value.pae_image_url,
            "modelUrl": value.model_url,
            "plddt": value.global_metric_value,
        }

    def from_document(self, document: dict) -> AlphaFoldEntry | None:
        if not document.get("found", True):
            return None
        return AlphaFoldEntry(
            uniprot_id=document["uniprotId"],
            uniprot_description=document.get("description") or "",
            gene=document.get("gene") or "",
            sequence_length=int(document.get("sequenceLength") or 0),
            pdb_url=document.get("pdbUrl") or "",
            cif_url=document.get("cifUrl") or "",
            pae_image_url=document.get("paeImageUrl") or "",
            model_url=document.get("modelUrl") or "",
            global_metric_value=float(document.get("plddt") or 0.0),
        )

    def is_empty(self, value: AlphaFoldEntry | None) -> bool:
        return value is None


class UniProtIdCodec:
    data_type = UNIPROT_ID_TYPE

    def to_document(self, value: str) -> dict:
        return {"uniprotId": value}

    def from_document(self, document: dict) -> str:
        return document.get("uniprotId") or ""

    def is_empty(self, value: str) -> bool:
        return not value


class PredictionListCodec:
    """Full-protein prediction lists (AlphaMissense or EBI Proteins)."""

    def __init__(self, data_type: str) -> None:
        self.data_type = data_type

    def to_document(self, value: list[MissensePrediction]) -> dict:
        return {"predictions": _prediction_rows(value)}

    def from_document(self, document: dict) -> list[MissensePrediction]:
        return _predictions_from_rows(document.get("predictions") or [])

    def is_empty(self, value: list[MissensePrediction]) -> bool:
        return not value
