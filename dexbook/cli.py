"""
dexbook CLI.

Builds the Bulbapedia Pokédex dictionary bundle for Apple's Dictionary
Development Kit.

Usage
-----
dexbook                                   # fast images, lead + first section
dexbook --quality high                    # full-size images, slower
dexbook --hq                              # same as --quality high
dexbook --hq-body-images                  # full-size images inside the text too
dexbook --max-body-sections 3             # keep more of each article
dexbook --limit 20 -v                     # first 20 entries, debug logging
dexbook --clear-image-cache high          # drop built high-tier images

Afterwards run ``make`` inside the output directory to compile the bundle.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from dexbook.config import BuildConfig, QualityTier
from dexbook.errors import AssemblyError, FetchError, ParseError

logger = logging.getLogger("dexbook")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
    )
    # urllib3 logs every retry at DEBUG; keep it quiet unless asked
    logging.getLogger("urllib3").setLevel(logging.DEBUG if verbose else logging.WARNING)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _config_from_args(args: argparse.Namespace) -> BuildConfig:
    quality = QualityTier.HIGH if args.hq else QualityTier(args.quality)
    return BuildConfig(
        cache_dir=Path(args.cache_dir),
        output_dir=Path(args.output_dir),
        quality=quality,
        body_quality=QualityTier.HIGH if args.hq_body_images else QualityTier.FAST,
        max_body_sections=args.max_body_sections,
        workers=args.workers,
        image_workers=args.image_workers,
        calls_per_second=args.rps,
        limit=args.limit,
    )


def cmd_clear_image_cache(args: argparse.Namespace) -> int:
    from dexbook.pipeline.run import clear_image_cache

    removed = clear_image_cache(_config_from_args(args), QualityTier(args.clear_image_cache))
    print(f"Removed {removed} cached {args.clear_image_cache} images.")
    return EXIT_OK


def cmd_build(args: argparse.Namespace) -> int:
    from dexbook.pipeline.run import run_build

    config = _config_from_args(args)
    try:
        result = run_build(config)
    except (FetchError, ParseError) as exc:
        logger.error("Could not read the catalog index: %s", exc)
        return EXIT_FAILED
    except AssemblyError as exc:
        logger.error("Assembly failed, no document written: %s", exc)
        return EXIT_FAILED

    result.report.log_summary()
    print(f"\nWrote {result.assembly.document_path}")
    print(f"Next: cd {config.output_dir} && make")
    return EXIT_OK


# ---------------------------------------------------------------------------
# Argument parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    defaults = BuildConfig()
    root = argparse.ArgumentParser(
        prog="dexbook",
        description="Generate a Pokédex dictionary bundle from Bulbapedia",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    root.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    # ---- paths ----
    root.add_argument("--cache-dir", default=str(defaults.cache_dir), metavar="DIR")
    root.add_argument("--output-dir", default=str(defaults.output_dir), metavar="DIR")

    # ---- content ----
    root.add_argument(
        "--quality",
        choices=[tier.value for tier in QualityTier],
        default=defaults.quality.value,
        help="Image quality tier",
    )
    root.add_argument(
        "--hq",
        action="store_true",
        help="Load high-resolution images instead of thumbnails (--quality high)",
    )
    root.add_argument(
        "--hq-body-images",
        action="store_true",
        help="Load high-resolution images for the figures inside the article text",
    )
    root.add_argument(
        "--max-body-sections",
        type=int,
        default=defaults.max_body_sections,
        metavar="N",
        help="Article sections to keep after the lead",
    )
    root.add_argument("--limit", type=int, default=None, metavar="N", help="Only the first N entries")

    # ---- throughput ----
    root.add_argument("--workers", type=int, default=defaults.workers, help="Fetch threads")
    root.add_argument(
        "--image-workers",
        type=int,
        default=defaults.image_workers,
        help="Image encoding processes (0 encodes inline)",
    )
    root.add_argument("--rps", type=float, default=defaults.calls_per_second, help="Requests per second")

    # ---- maintenance ----
    root.add_argument(
        "--clear-image-cache",
        choices=[tier.value for tier in QualityTier],
        default=None,
        metavar="TIER",
        help="Delete the built images of one tier and exit",
    )

    root.set_defaults(func=cmd_build)
    return root


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    handler = cmd_clear_image_cache if args.clear_image_cache else args.func
    try:
        return handler(args)
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
