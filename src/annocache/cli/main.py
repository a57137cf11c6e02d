"""annocache CLI, built on Typer."""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable

import typer

from annocache.config import AppConfig
from annocache.infra.context import AnnotationContext
from annocache.logging_config import configure_logging
from annocache.models import Failure, result_to_dict

logger = logging.getLogger(__name__)

app = typer.Typer(help="Cached genome annotation lookups (gnomAD, UCSC, AlphaFold)")
cache_app = typer.Typer(help="Inspect and clear the annotation cache")
app.add_typer(cache_app, name="cache")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable DEBUG logging"),
    log_file: bool = typer.Option(False, "--log-file", help="Also write a DEBUG log under log_dir"),
) -> None:
    """Cached genome annotation lookups."""
    configure_logging(_get_config(), verbose=verbose, log_file=log_file)


def _get_config() -> AppConfig:
    return AppConfig()


def _echo_json(payload: dict) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _lookup(call: Callable[[AnnotationContext], Awaitable]) -> None:
    """Run one lookup in a fresh context, print it, exit 1 on Failure."""

    async def _run():
        async with AnnotationContext(_get_config()) as ctx:
            return await call(ctx)

    result = asyncio.run(_run())
    _echo_json(result_to_dict(result))
    if isinstance(result, Failure):
        raise typer.Exit(code=1)


# ── Lookups ──


@app.command()
def variants(
    chrom: str = typer.Argument(help="Chromosome, e.g. 1 or chr1"),
    start: int = typer.Argument(help="Start position (1-based)"),
    end: int = typer.Argument(help="End position (exclusive)"),
    dataset: str = typer.Option(None, help="gnomAD dataset (default from config)"),
    refresh: bool = typer.Option(False, "--refresh", help="Bypass cached entries"),
) -> None:
    """gnomAD population variants in a region."""
    logger.info("Command: variants %s:%d-%d", chrom, start, end)
    _lookup(lambda ctx: ctx.gnomad.fetch_variants(chrom, start, end, dataset, force_refresh=refresh))


@app.command()
def conservation(
    chrom: str = typer.Argument(help="Chromosome, e.g. 1 or chr1"),
    start: int = typer.Argument(help="Start position (1-based)"),
    end: int = typer.Argument(help="End position (exclusive)"),
    bins: int = typer.Option(500, help="Bin count for regions too large for per-base scores"),
    refresh: bool = typer.Option(False, "--refresh", help="Bypass cached entries"),
) -> None:
    """UCSC phyloP conservation scores in a region."""
    logger.info("Command: conservation %s:%d-%d bins=%d", chrom, start, end, bins)
    _lookup(
        lambda ctx: ctx.ucsc.fetch_conservation(chrom, start, end, bins, force_refresh=refresh)
    )


@app.command()
def alphafold(
    gene: str = typer.Argument(help="Gene symbol, e.g. BRCA1"),
    refresh: bool = typer.Option(False, "--refresh", help="Bypass cached entries"),
) -> None:
    """AlphaFold structure metadata for a gene."""
    logger.info("Command: alphafold %s", gene)
    _lookup(lambda ctx: ctx.alphafold.entry_for_gene(gene, force_refresh=refresh))


@app.command()
def missense(
    gene: str = typer.Argument(help="Gene symbol, e.g. BRCA1"),
    position: int = typer.Argument(help="Residue position (1-based)"),
    refresh: bool = typer.Option(False, "--refresh", help="Bypass cached entries"),
) -> None:
    """Missense pathogenicity predictions for one residue."""
    logger.info("Command: missense %s %d", gene, position)

    async def call(ctx: AnnotationContext):
        return await ctx.alphafold.missense_predictions(gene, position, force_refresh=refresh)

    _lookup(call)


# ── Cache management ──


@cache_app.command("stats")
def cache_stats() -> None:
    """Disk and memory cache usage."""
    context = AnnotationContext(_get_config())
    try:
        _echo_json(context.cache_stats())
    finally:
        asyncio.run(context.aclose())


@cache_app.command("clear")
def cache_clear(
    data_type: str = typer.Argument(None, help="Data type to clear (default: everything)"),
) -> None:
    """Delete cached entries."""
    context = AnnotationContext(_get_config())
    try:
        removed = context.clear_cache(data_type)
    finally:
        asyncio.run(context.aclose())
    label = data_type or "all data types"
    typer.echo(f"Removed {removed} cached entries ({label})")