"""
Document assembler: fragments + built images -> DDK project input.

Output layout under ``output_dir``::

    Dictionary.xml
    OtherResources/
        images/<source_id>.<ext>

Nothing is written until the whole document has passed validation.  The
image tree is staged in a sibling directory and swapped in, then the
document replaces the previous one atomically.  A failed assembly leaves
whatever the last successful run wrote.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterable

from lxml import etree

from dexbook.cache import atomic_write_bytes
from dexbook.errors import AssemblyError, AssemblyErrorKind
from dexbook.models import EntryFragment, ImageAsset

logger = logging.getLogger(__name__)

XHTML_NS = "http://www.w3.org/1999/xhtml"
DICTIONARY_NS = "http://www.apple.com/DTDs/DictionaryService-1.0.rng"
IMAGES_DIR = "images"

DOCUMENT_HEADER = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    "<!-- generated file -->\n"
    f'<d:dictionary xmlns="{XHTML_NS}" xmlns:d="{DICTIONARY_NS}">\n'
)
DOCUMENT_FOOTER = "</d:dictionary>\n"


@dataclass
class AssemblyResult:
    document_path: Path
    images_dir: Path
    entry_count: int
    image_count: int


def render_document(fragments: Iterable[EntryFragment]) -> str:
    body = "\n".join(fragment.markup for fragment in fragments)
    return f"{DOCUMENT_HEADER}{body}\n{DOCUMENT_FOOTER}"


def _check_duplicates(fragments: list[EntryFragment]) -> None:
    seen: set[int] = set()
    for fragment in fragments:
        if fragment.identifier in seen:
            raise AssemblyError(
                AssemblyErrorKind.DUPLICATE_IDENTIFIER,
                f"entry #{fragment.identifier:04d} appears more than once",
            )
        seen.add(fragment.identifier)


def validate_document(document: str, expected_entries: int) -> list[str]:
    """
    Parse the assembled document and check its shape.

    Returns the ``src`` of every ``img`` in the document.

    Raises:
        AssemblyError: ``MALFORMED_OUTPUT`` when the document is not
            well-formed, has the wrong root, or the entry count does not
            match the fragments.
    """
    parser = etree.XMLParser(resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(document.encode("utf-8"), parser)
    except etree.XMLSyntaxError as exc:
        raise AssemblyError(AssemblyErrorKind.MALFORMED_OUTPUT, str(exc)) from exc

    if root.tag != f"{{{DICTIONARY_NS}}}dictionary":
        raise AssemblyError(AssemblyErrorKind.MALFORMED_OUTPUT, f"unexpected root element {root.tag}")

    entries = root.findall(f"{{{DICTIONARY_NS}}}entry")
    if len(entries) != expected_entries:
        raise AssemblyError(
            AssemblyErrorKind.MALFORMED_OUTPUT,
            f"expected {expected_entries} entries, found {len(entries)}",
        )
    ids = [entry.get("id") for entry in entries]
    if len(set(ids)) != len(ids):
        raise AssemblyError(AssemblyErrorKind.DUPLICATE_IDENTIFIER, "duplicate entry id attribute")

    return [img.get("src", "") for img in root.iter(f"{{{XHTML_NS}}}img")]


def _bundle_relative(bundle_path: str) -> PurePosixPath:
    path = PurePosixPath(bundle_path)
    if path.is_absolute() or ".." in path.parts or path.parts[:1] != (IMAGES_DIR,) or len(path.parts) < 2:
        raise AssemblyError(
            AssemblyErrorKind.DANGLING_IMAGE_REFERENCE,
            f"image path outside the bundle image tree: {bundle_path}",
        )
    return PurePosixPath(*path.parts[1:])


def _stage_images(referenced: list[str], available: dict[str, Path], resources: Path) -> Path:
    staging = resources / f".{IMAGES_DIR}-{uuid.uuid4().hex}"
    staging.mkdir(parents=True)
    for bundle_path in referenced:
        destination = staging / _bundle_relative(bundle_path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(available[bundle_path], destination)
    return staging


def _swap_in(staging: Path, target: Path) -> None:
    previous = None
    if target.exists():
        previous = target.with_name(f".{target.name}-old-{uuid.uuid4().hex}")
        target.rename(previous)
    staging.rename(target)
    if previous is not None:
        shutil.rmtree(previous)


def _available_images(assets: Iterable[ImageAsset]) -> dict[str, Path]:
    """Bundle path -> artifact on disk; a path may not name two different images."""
    available: dict[str, Path] = {}
    for asset in assets:
        if not asset.cache_path.is_file():
            continue
        known = available.setdefault(asset.bundle_path, asset.cache_path)
        if known != asset.cache_path and known.read_bytes() != asset.cache_path.read_bytes():
            raise AssemblyError(
                AssemblyErrorKind.MALFORMED_OUTPUT,
                f"two different images share the bundle path {asset.bundle_path}",
            )
    return available


def assemble(
    fragments: Iterable[EntryFragment],
    assets: Iterable[ImageAsset],
    output_dir: Path,
    document_name: str = "Dictionary.xml",
    resources_dir: str = "OtherResources",
) -> AssemblyResult:
    """
    Validate and write the dictionary document and its image tree.

    Fragments are ordered by identifier.  Every image a fragment lists (and
    every ``img`` in its markup) must have a built artifact on disk.

    Raises:
        AssemblyError: on a duplicate identifier, a dangling image
            reference, two images sharing a bundle path or malformed
            output.  Nothing is written in that case.
    """
    ordered = sorted(fragments, key=lambda fragment: fragment.identifier)
    _check_duplicates(ordered)

    available = _available_images(assets)

    document = render_document(ordered)
    sources = validate_document(document, expected_entries=len(ordered))

    referenced = list(
        dict.fromkeys([path for fragment in ordered for path in fragment.image_paths] + sources)
    )
    for bundle_path in referenced:
        _bundle_relative(bundle_path)
        if bundle_path not in available:
            raise AssemblyError(
                AssemblyErrorKind.DANGLING_IMAGE_REFERENCE,
                f"no built image for {bundle_path}",
            )

    output_dir = Path(output_dir)
    resources = output_dir / resources_dir
    images_dir = resources / IMAGES_DIR

    staging = _stage_images(referenced, available, resources)
    try:
        _swap_in(staging, images_dir)
    finally:
        if staging.exists():
            shutil.rmtree(staging)

    document_path = output_dir / document_name
    atomic_write_bytes(document_path, document.encode("utf-8"))
    logger.info(
        "Wrote %s (%d entries, %d images)", document_path, len(ordered), len(referenced)
    )

    return AssemblyResult(
        document_path=document_path,
        images_dir=images_dir,
        entry_count=len(ordered),
        image_count=len(referenced),
    )
