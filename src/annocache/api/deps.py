"""FastAPI dependency injection."""

from functools import lru_cache

from fastapi import Request

from annocache.config import AppConfig
from annocache.infra.context import AnnotationContext


@lru_cache
def get_config() -> AppConfig:
    return AppConfig()


def get_context(request: Request) -> AnnotationContext:
    """The AnnotationContext created by the app lifespan."""
    return request.app.state.context
