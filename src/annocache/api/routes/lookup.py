"""Annotation lookups. Every response is a serialized fetch result."""

from fastapi import APIRouter, Depends, Query

from annocache.api.deps import get_context
from annocache.infra.context import AnnotationContext
from annocache.models import Success, result_to_dict

router = APIRouter()


@router.get("/variants")
async def get_variants(
    chrom: str = Query(...),
    start: int = Query(...),
    end: int = Query(...),
    dataset: str | None = Query(None),
    refresh: bool = Query(False),
    context: AnnotationContext = Depends(get_context),
):
    result = await context.gnomad.fetch_variants(
        chrom, start, end, dataset, force_refresh=refresh
    )
    return result_to_dict(result)


@router.get("/conservation")
async def get_conservation(
    chrom: str = Query(...),
    start: int = Query(...),
    end: int = Query(...),
    bins: int = Query(500),
    refresh: bool = Query(False),
    context: AnnotationContext = Depends(get_context),
):
    result = await context.ucsc.fetch_conservation(
        chrom, start, end, bins, force_refresh=refresh
    )
    return result_to_dict(result)


@router.get("/alphafold/{gene}")
async def get_alphafold(
    gene: str,
    refresh: bool = Query(False),
    context: AnnotationContext = Depends(get_context),
):
    result = await context.alphafold.entry_for_gene(gene, force_refresh=refresh)
    payload = result_to_dict(result)
    if isinstance(result, Success):
        client = context.alphafold
        uniprot_id = result.value.uniprot_id
        payload["links"] = {
            "entry": result.value.alphafold_url,
            "viewer": result.value.viewer_url,
            "pae_image": client.pae_image_url(uniprot_id),
            "model_image": client.model_image_url(uniprot_id),
        }
    return payload


@router.get("/missense/{gene}")
async def get_missense(
    gene: str,
    position: int = Query(..., ge=1),
    refresh: bool = Query(False),
    context: AnnotationContext = Depends(get_context),
):
    result = await context.alphafold.missense_predictions(gene, position, force_refresh=refresh)
    return result_to_dict(result)
