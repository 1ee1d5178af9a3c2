"""
One generator run, start to finish.

    index -> fetch + parse (IO pool) -> barrier -> resolve
          -> images (IO pool + CPU pool) + fragments -> barrier -> assemble

Entry-scoped failures are recorded in the :class:`RunReport` and degrade
the entry.  Anything else raised inside a worker cancels the pending work
and propagates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Iterable, Optional

from dexbook.cache import DiskCache, images_namespace
from dexbook.config import BuildConfig, QualityTier
from dexbook.errors import FetchError, ImageError, ParseError
from dexbook.models import CatalogEntry, EntryFragment, ImageAsset, ImageRef
from dexbook.pipeline.assembler import AssemblyResult, assemble
from dexbook.pipeline.entry_builder import build_fragment
from dexbook.pipeline.images import ImagePipeline
from dexbook.pipeline.resolver import resolve
from dexbook.report import RunReport
from dexbook.scraper.base import Fetcher
from dexbook.scraper.bulbapedia import parse_entry, stub_entry
from dexbook.scraper.index import CatalogIndex, IndexEntry, read_index
from dexbook.utils.workers import ProcessExecutor, ThreadExecutor

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    assembly: AssemblyResult
    report: RunReport
    entries: list[CatalogEntry]


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


def _read_entry(
    item: IndexEntry,
    fetcher: Fetcher,
    index: CatalogIndex,
    config: BuildConfig,
    report: RunReport,
) -> CatalogEntry:
    try:
        raw = fetcher.get(item.url)
        entry = parse_entry(raw, item.url, index, config.max_body_sections)
    except (FetchError, ParseError) as exc:
        report.record(exc, item.identifier)
        return stub_entry(item.identifier, item.name, item.url, f"page unavailable: {exc}")

    if entry.identifier != item.identifier:
        logger.warning(
            "Page %s is numbered #%d but listed as #%d", item.url, entry.identifier, item.identifier
        )
    return entry


def _build_images(
    refs: Iterable[ImageRef],
    pipeline: ImagePipeline,
    report: RunReport,
    identifier: int,
    missing: list[str],
) -> dict[ImageRef, ImageAsset]:
    built: dict[ImageRef, ImageAsset] = {}
    for ref in refs:
        if ref in built:
            continue
        try:
            built[ref] = pipeline.build(ref)
        except ImageError as exc:
            report.record(exc, identifier)
            missing.append(ref.source_id)
    return built


def _build_entry(
    entry: CatalogEntry,
    pipeline: ImagePipeline,
    body_pipeline: ImagePipeline,
    report: RunReport,
) -> tuple[CatalogEntry, EntryFragment, list[ImageAsset]]:
    missing: list[str] = []
    header = _build_images(entry.images, pipeline, report, entry.identifier, missing)
    body = _build_images(
        (ref for block in entry.text_blocks for ref in block.images),
        body_pipeline,
        report,
        entry.identifier,
        missing,
    )

    if missing:
        entry = replace(
            entry,
            degraded=True,
            degraded_reasons=entry.degraded_reasons + (f"missing image {', '.join(missing)}",),
        )
    assets = list(header.values())
    return entry, build_fragment(entry, assets, body), assets + list(body.values())


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def run_build(config: BuildConfig, session: Optional[Any] = None) -> BuildResult:
    """
    Build the dictionary bundle described by *config*.

    Parameters
    ----------
    config : BuildConfig
        Run settings.
    session : requests.Session-like, optional
        Injected HTTP session, mostly for tests.

    Raises
    ------
    FetchError, ParseError
        When the catalog index itself cannot be read.
    AssemblyError
        When the assembled document fails validation.  No document is
        written in that case.
    """
    cache = DiskCache(config.cache_dir)
    fetcher = Fetcher(config, cache, session=session)
    report = RunReport()

    index = read_index(fetcher, config.index_url).limited(config.limit)
    items = [index.pages[identifier] for identifier in sorted(index.pages)]
    logger.info("Reading %d pages with %d workers", len(items), config.workers)

    with ThreadExecutor(config.workers, "pages") as pool:
        entries = pool.map_ordered(
            lambda item: _read_entry(item, fetcher, index, config, report), items
        )

    resolution = resolve(entries)
    report.resolver = resolution.report
    logger.info("Resolved %d entries", len(resolution.entries))

    logger.info(
        "Building images (%s tier, body images %s tier)",
        config.quality.value,
        config.body_quality.value,
    )
    with ProcessExecutor(config.image_workers) as cpu, ThreadExecutor(config.workers, "images") as pool:
        pipeline = ImagePipeline(fetcher, cache, config.quality, executor=cpu.executor)
        body_pipeline = (
            pipeline
            if config.body_quality is config.quality
            else ImagePipeline(fetcher, cache, config.body_quality, executor=cpu.executor)
        )
        built = pool.map_ordered(
            lambda entry: _build_entry(entry, pipeline, body_pipeline, report), resolution.entries
        )

    final_entries = [entry for entry, _, _ in built]
    fragments = [fragment for _, fragment, _ in built]
    assets = [asset for _, _, entry_assets in built for asset in entry_assets]
    for entry in final_entries:
        report.note_degraded(entry)

    assembly = assemble(fragments, assets, config.output_dir)
    report.entry_count = assembly.entry_count
    report.image_count = assembly.image_count
    logger.info("Network requests this run: %d", fetcher.network_requests)

    return BuildResult(assembly=assembly, report=report, entries=final_entries)


def clear_image_cache(config: BuildConfig, tier: QualityTier) -> int:
    """Drop the built artifacts of one tier.  Sources and pages are kept."""
    cache = DiskCache(config.cache_dir)
    return cache.invalidate(images_namespace(QualityTier(tier).value))
