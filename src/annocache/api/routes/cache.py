"""Cache inspection and invalidation."""

import logging

from fastapi import APIRouter, Depends

from annocache.api.deps import get_context
from annocache.infra.context import AnnotationContext

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/stats")
def get_cache_stats(context: AnnotationContext = Depends(get_context)):
    return context.cache_stats()


@router.delete("")
def clear_all(context: AnnotationContext = Depends(get_context)):
    removed = context.clear_cache()
    logger.info("Cleared all caches (%d entries)", removed)
    return {"data_type": None, "removed": removed}


@router.delete("/{data_type}")
def clear_data_type(data_type: str, context: AnnotationContext = Depends(get_context)):
    removed = context.clear_cache(data_type)
    logger.info("Cleared %s cache (%d entries)", data_type, removed)
    return {"data_type": data_type, "removed": removed}
