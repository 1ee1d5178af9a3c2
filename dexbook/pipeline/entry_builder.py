"""
Render one resolved :class:`CatalogEntry` as a ``<d:entry>`` fragment.

Markup is produced from f-string templates.  Every piece of page text goes
through :func:`_text` or :func:`_attr`; nothing from the page is inserted
raw.
"""

from __future__ import annotations

import html
import re
from typing import Iterable, Mapping, Optional, Sequence

from dexbook.models import (
    STAT_LABELS,
    CatalogEntry,
    EntryFragment,
    ImageAsset,
    ImageRef,
    RelationKind,
    RelationRef,
    TextBlock,
    TextSpan,
    type_page_url,
)
from dexbook.pipeline.pronunciation import pronunciation_for

# Characters XML 1.0 does not allow, even escaped
XML_INVALID_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")

RELATION_LABELS = {
    RelationKind.EVOLUTION_PREDECESSOR: ("evolves-from", "Evolves from"),
    RelationKind.EVOLUTION_SUCCESSOR: ("evolves-into", "Evolves into"),
    RelationKind.ALTERNATE_FORM: ("alternate-forms", "Other forms"),
}


def entry_id(identifier: int) -> str:
    return f"pokemon-{identifier}"


def entry_link(identifier: int) -> str:
    return f"x-dictionary:r:{entry_id(identifier)}"


def _text(value: str) -> str:
    return html.escape(XML_INVALID_RE.sub("", value), quote=False)


def _attr(value: str) -> str:
    return html.escape(XML_INVALID_RE.sub("", value), quote=True)


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def _index_rows(entry: CatalogEntry, images: Sequence[ImageAsset]) -> list[str]:
    names_seen = {entry.name}
    rows = [f'<d:index d:value="{_attr(entry.name)}"/>']
    if entry.japanese_name and entry.japanese_name not in names_seen:
        names_seen.add(entry.japanese_name)
        rows.append(f'<d:index d:value="{_attr(entry.japanese_name)}"/>')

    for i, asset in enumerate(images):
        caption = asset.ref.caption
        if not caption:
            continue
        # "Spring Form" alone is no use as a lookup term
        name = caption if entry.name in caption else f"{entry.name} - {caption}"
        if name in names_seen:
            continue
        names_seen.add(name)
        rows.append(
            f'<d:index d:value="{_attr(name)}" '
            f"d:anchor=\"xpointer(//*[@id='pokemon-image-{i}'])\"/>"
        )
    return rows


def _pronunciation(entry: CatalogEntry) -> Optional[str]:
    reading = pronunciation_for(entry.pronunciation)
    if reading is None:
        return None
    return f'<span class="pronunciation" d:pr="ja">| {_text(reading)} |</span>'


def _japanese_name(entry: CatalogEntry) -> Optional[str]:
    if not entry.japanese_name:
        return None
    romaji = f" ({_text(entry.romanization)})" if entry.romanization else ""
    return f'<div class="pokemon-name-jp">{_text(entry.japanese_name)}{romaji}</div>'


def _list(css_class: str, items: Iterable[str]) -> Optional[str]:
    items = list(items)
    if not items:
        return None
    body = "".join(f"<li>{item}</li>" for item in items)
    return f'<ul class="{css_class}">{body}</ul>'


def _types(entry: CatalogEntry) -> Optional[str]:
    links = [
        f'<a href="{_attr(type_page_url(str(ref.target)))}">{_text(ref.target_title or str(ref.target))}</a>'
        for ref in entry.relations_of(RelationKind.TYPE_ASSOCIATION)
        if ref.is_resolved
    ]
    return _list("pokemon-types", links)


def _image(asset: ImageAsset, i: int) -> str:
    ref = asset.ref
    style = f' style="width: {ref.width}px"' if ref.width else ""
    caption = (
        f'<div class="image-caption">{_text(ref.caption)}</div>' if ref.caption else ""
    )
    return (
        f'<li class="pokemon-image" id="pokemon-image-{i}">'
        f'<img alt="{_attr(ref.alt)}" src="{_attr(asset.bundle_path)}"{style}/>'
        f"{caption}</li>"
    )


def _images(images: Sequence[ImageAsset]) -> Optional[str]:
    if not images:
        return None
    parts: list[str] = []
    i = 0
    while i < len(images):
        # Runs of two or more flex images share one row
        if images[i].ref.flex and i + 1 < len(images) and images[i + 1].ref.flex:
            group: list[str] = []
            while i < len(images) and images[i].ref.flex:
                group.append(_image(images[i], i))
                i += 1
            parts.append(f'<li class="pokemon-images-flex"><ul>{"".join(group)}</ul></li>')
        else:
            parts.append(_image(images[i], i))
            i += 1
    return f'<ul class="pokemon-images">{"".join(parts)}</ul>'


def _stats(entry: CatalogEntry) -> Optional[str]:
    if entry.stats.is_empty:
        return None
    rows = [
        f"<tr><th>{_text(STAT_LABELS[name])}</th><td>{value}</td></tr>"
        for name, value in entry.stats.items()
        if value is not None
    ]
    total = entry.stats.total
    if total is not None:
        rows.append(f'<tr class="stat-total"><th>Total</th><td>{total}</td></tr>')
    return f'<table class="pokemon-stats"><tbody>{"".join(rows)}</tbody></table>'


def _relation_link(ref: RelationRef) -> str:
    title = ref.target_title or f"#{ref.target}"
    return f'<a href="{entry_link(ref.target)}">{_text(title)}</a>'


def _relations(entry: CatalogEntry) -> Optional[str]:
    rows: list[str] = []
    for kind, (css_class, label) in RELATION_LABELS.items():
        links = [_relation_link(ref) for ref in entry.relations_of(kind) if ref.is_resolved]
        if links:
            rows.append(f'<div class="relation {css_class}">{label}: {", ".join(links)}</div>')
    if not rows:
        return None
    return f'<div class="pokemon-relations">{"".join(rows)}</div>'


def _info_box(entry: CatalogEntry, extra: bool) -> Optional[str]:
    fields = [f for f in entry.info_fields if f.extra is extra]
    if not fields:
        return None
    css_class = "extra-info-box" if extra else "top-info-box"
    rows = "".join(
        f"<tr><th>{_text(f.label)}</th><td>{'<br/>'.join(_text(v) for v in f.values)}</td></tr>"
        for f in fields
    )
    return f'<table class="roundy {css_class}"><tbody>{rows}</tbody></table>'


def _span(span: TextSpan) -> str:
    link = span.link
    if link is not None and link.is_resolved and isinstance(link.target, int):
        return f'<a href="{entry_link(link.target)}">{_text(span.text)}</a>'
    return _text(span.text)


def _body_image(asset: ImageAsset) -> str:
    ref = asset.ref
    style = f' style="width: {ref.width}px"' if ref.width else ""
    caption = (
        f'<div class="image-caption">{_text(ref.caption)}</div>' if ref.caption else ""
    )
    return (
        f'<div class="body-image"><img alt="{_attr(ref.alt)}" src="{_attr(asset.bundle_path)}"{style}/>'
        f"{caption}</div>"
    )


def _text_block(block: TextBlock, body_images: Mapping[ImageRef, ImageAsset]) -> str:
    heading = f"<h2>{_text(block.heading)}</h2>" if block.heading else ""
    paragraphs = "".join(
        f"<p>{''.join(_span(span) for span in spans)}</p>" for spans in block.paragraphs
    )
    figures = [_body_image(body_images[ref]) for ref in block.images if ref in body_images]
    images = f'<div class="body-images">{"".join(figures)}</div>' if figures else ""
    return f'<div class="text-block">{heading}{paragraphs}{images}</div>'


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_fragment(
    entry: CatalogEntry,
    images: Sequence[ImageAsset] = (),
    body_images: Optional[Mapping[ImageRef, ImageAsset]] = None,
) -> EntryFragment:
    """
    Build the ``<d:entry>`` markup for *entry*.

    Args:
        entry: A resolved entry.  Only relations and text mentions marked
            ``resolved`` are rendered as links; dangling ones are left out
            or kept as plain text.
        images: Built assets for the entry's images, in page order.  Images
            that failed to build are simply absent.
        body_images: Built assets for the figures inside text blocks, keyed
            by the reference the parser found.  Missing figures are skipped.

    Returns:
        The fragment plus the bundle paths of the images it references.
    """
    body_images = body_images or {}
    lead = [block for block in entry.text_blocks if block.heading is None]
    sections = [block for block in entry.text_blocks if block.heading is not None]

    body = [
        f'<div class="pokedex-id">{entry.dex_id}</div>',
        f'<h1 class="pokemon-name">{_text(entry.name)}</h1>',
        _pronunciation(entry),
        _list("pokemon-categories", (_text(c) for c in entry.categories)),
        _japanese_name(entry),
        _types(entry),
        _images(images),
        _info_box(entry, extra=False),
        *(_text_block(block, body_images) for block in lead),
        _info_box(entry, extra=True),
        _stats(entry),
        _relations(entry),
        *(_text_block(block, body_images) for block in sections),
        f'<div class="footer-read-more"><a href="{_attr(entry.url)}">Read more on Bulbapedia</a></div>',
    ]

    lines = [f'<d:entry id="{entry_id(entry.identifier)}" d:title="{_attr(entry.name)}">']
    lines.extend(_index_rows(entry, images))
    lines.append('<div class="outer-container">')
    lines.extend(part for part in body if part)
    lines.append("</div></d:entry>")

    used = [asset.bundle_path for asset in images]
    for block in entry.text_blocks:
        used.extend(body_images[ref].bundle_path for ref in block.images if ref in body_images)
    return EntryFragment(
        identifier=entry.identifier,
        markup="\n".join(lines),
        image_paths=tuple(dict.fromkeys(used)),
    )
