"""FastAPI app factory: local lookup API over the annotation caches."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from annocache import __version__
from annocache.api.deps import get_config
from annocache.api.routes import cache, lookup
from annocache.exceptions import AnnoCacheError
from annocache.infra.context import AnnotationContext
from annocache.logging_config import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    context = AnnotationContext(get_config())
    app.state.context = context
    logger.info("Lookup API ready (cache_dir=%s)", context.config.cache_dir)
    try:
        yield
    finally:
        await context.aclose()


def create_app() -> FastAPI:
    configure_logging(get_config())
    app = FastAPI(title="annocache", version=__version__, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(lookup.router, prefix="/api", tags=["lookup"])
    app.include_router(cache.router, prefix="/api/cache", tags=["cache"])

    @app.exception_handler(AnnoCacheError)
    async def handle_annocache_error(request: Request, exc: AnnoCacheError) -> JSONResponse:
        return JSONResponse(status_code=500, content={"error": str(exc)})

    return app


app = create_app()
