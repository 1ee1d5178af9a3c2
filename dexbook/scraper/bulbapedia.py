"""
Bulbapedia page parser for dexbook.

Turns the raw HTML of one Pokémon page into a :class:`CatalogEntry`.

The parser is a fixed set of extractors rather than a model of every page
shape.  Two of them are strict: the entry name and the National Pokédex
number identify the entry, and a page without them fails with
:class:`ParseError`.  Everything else (categories, types, stats, images,
text, evolution and form links) is optional: a missing section yields an
empty value, and a section that is present but unreadable is dropped and
noted in ``degraded_reasons``.

Page landmarks used (as of the current Bulbapedia skin)::

    .mw-parser-output
        table.roundy                     info box
            tr (first)                   header: <big> name, #NNNN link,
                                         category link, [lang=ja] name + <i>,
                                         image table with <small> captions
            td > b "Type"                type links (*_(type))
            td > b label + table         other info fields (abilities, catch
                                         rate, height, ...)
        th "HP: 45" ...                  base stats
        p / h2                           lead text and body sections
        div.thumb / figure               images inside body sections
        h3 "Evolution" + table           evolution family with stage labels
        h3 "Forms"                       links to alternate forms
"""

from __future__ import annotations

import logging
import re
from copy import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union
from urllib.parse import unquote, urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from dexbook.errors import ParseError
from dexbook.models import (
    ELEMENTAL_TYPES,
    STAT_LABELS,
    CatalogEntry,
    ImageRef,
    InfoField,
    RelationKind,
    RelationRef,
    Stats,
    TextBlock,
    TextSpan,
)
from dexbook.scraper.index import CatalogIndex, normalize_url
from dexbook.utils.text import collapse_whitespace, slugify

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEX_LINK_RE = re.compile(r"#(\d{1,4})")
POKEMON_PAGE_RE = re.compile(r"_\((?:Pok%C3%A9mon|Pokémon)\)$")
TYPE_PAGE_RE = re.compile(r"/wiki/([^/]+)_\(type\)$")
KANA_RE = re.compile(r"[぀-ヿ]")
HEADINGS = ("h2", "h3", "h4")

STAT_RE = re.compile(
    r"^(" + "|".join(re.escape(label) for label in STAT_LABELS.values()) + r")\s*:\s*(\d+)$"
)
STAT_BY_LABEL: dict[str, str] = {label: name for name, label in STAT_LABELS.items()}

STAGE_LABELS: dict[str, int] = {
    "unevolved": 0,
    "first evolution": 1,
    "second evolution": 2,
}
STAGE_RE = re.compile("|".join(STAGE_LABELS), re.IGNORECASE)

THUMB_HOST = "archives.bulbagarden.net"
THUMB_PREFIX = "/media/upload/thumb/"

# Info box rows from this one on go below the lead text
FIRST_EXTRA_INFO_ROW = "Gender ratio"
WHITESPACE_RE = re.compile(r"\s+")

# Text of an inline node and the entry it links to, if any
_Piece = tuple[str, Optional[Union[int, str]]]


# ---------------------------------------------------------------------------
# Page context
# ---------------------------------------------------------------------------


@dataclass
class _Page:
    """Everything the extractors share while parsing one page."""

    url: str
    output: Tag
    info_box: Tag
    header: Tag
    index: Optional[CatalogIndex]
    max_body_sections: int
    identifier: int = 0
    degraded_reasons: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------


def _style(node: Tag) -> dict[str, str]:
    values: dict[str, str] = {}
    for entry in (node.get("style") or "").split(";"):
        if ":" in entry:
            key, value = entry.split(":", 1)
            values[key.strip().lower()] = value.strip().lower()
    return values


def _is_hidden(node: Tag, stop: Tag) -> bool:
    """True when *node* or an ancestor below *stop* has ``display: none``."""
    current: Optional[Tag] = node
    while current is not None and current is not stop:
        if _style(current).get("display") == "none":
            return True
        current = current.parent
    return False


def _heading_text(heading: Tag) -> str:
    headline = heading.find(class_="mw-headline")
    return collapse_whitespace((headline or heading).get_text(" ", strip=True))


def _find_heading(output: Tag, title: str) -> Optional[Tag]:
    for heading in output.find_all(HEADINGS):
        if _heading_text(heading).lower() == title.lower():
            return heading
    return None


def _page_slug(href: str) -> str:
    name = unquote(href.rstrip("/").rsplit("/", 1)[-1])
    return POKEMON_PAGE_RE.sub("", name.replace("%C3%A9", "é")) or name


def _link_target(page: _Page, link: Tag) -> Optional[Union[int, str]]:
    """
    Map a link to another Pokémon page to its catalog identifier.

    Links to pages outside the index keep their page slug, so the resolver
    can report them.  Returns ``None`` for links that are not Pokémon pages.
    """
    href = link.get("href") or ""
    if not POKEMON_PAGE_RE.search(href.split("#", 1)[0]):
        return None
    if page.index is not None:
        identifier = page.index.identifier_for_url(href, page.url)
        if identifier is not None:
            return identifier
    if normalize_url(href, page.url) == normalize_url(page.url):
        return page.identifier
    return _page_slug(href.split("#", 1)[0])


# ---------------------------------------------------------------------------
# Strict identity extractors
# ---------------------------------------------------------------------------


def _extract_name(page: _Page) -> str:
    big = page.header.find("big")
    name = collapse_whitespace(big.get_text(" ", strip=True)) if big else ""
    if not name:
        raise ParseError.missing("name")
    return name


def _extract_identifier(page: _Page) -> int:
    for link in page.header.find_all("a"):
        match = DEX_LINK_RE.fullmatch(link.get_text(strip=True))
        if match:
            return int(match.group(1))
    raise ParseError.missing("identifier")


# ---------------------------------------------------------------------------
# Optional extractors
# ---------------------------------------------------------------------------


def _extract_categories(page: _Page) -> tuple[str, ...]:
    link = page.header.find("a", title="Pokémon category")
    if link is None:
        return ()
    lines = (collapse_whitespace(line) for line in link.get_text("\n").split("\n"))
    return tuple(line for line in lines if line)


def _extract_japanese(page: _Page) -> dict[str, Optional[str]]:
    ja = page.header.find(attrs={"lang": "ja"})
    if ja is None:
        return {"japanese_name": None, "pronunciation": None, "romanization": None}

    japanese_name = collapse_whitespace(ja.get_text(strip=True)) or None
    pronunciation = japanese_name if japanese_name and KANA_RE.search(japanese_name) else None

    romanization = None
    cell = ja.find_parent("td")
    italic = cell.find("i") if cell is not None else None
    if italic is not None:
        romanization = collapse_whitespace(italic.get_text(" ", strip=True)) or None

    return {
        "japanese_name": japanese_name,
        "pronunciation": pronunciation,
        "romanization": romanization,
    }


def _extract_types(page: _Page) -> tuple[RelationRef, ...]:
    for cell in page.info_box.find_all("td"):
        label = cell.find("b")
        if label is None or label.get_text(strip=True) != "Type":
            continue
        slugs: list[str] = []
        for link in cell.find_all("a", href=True):
            match = TYPE_PAGE_RE.search(link["href"])
            if not match or _is_hidden(link, cell):
                continue
            slug = unquote(match.group(1)).lower()
            if slug != "unknown" and slug not in slugs:
                slugs.append(slug)
        return tuple(RelationRef(RelationKind.TYPE_ASSOCIATION, slug) for slug in slugs)
    return ()


def _rows(table: Tag) -> list[Tag]:
    body = table.find("tbody", recursive=False) or table
    return body.find_all("tr", recursive=False)


def _plain_text(node: Tag) -> str:
    """Text of *node* with ``<br>`` read as a space."""
    parts: list[str] = []
    for item in node.descendants:
        if isinstance(item, Tag):
            if item.name == "br":
                parts.append(" ")
        elif not isinstance(item, Comment):
            parts.append(str(item))
    return collapse_whitespace("".join(parts))


def _field_values(cell: Tag) -> tuple[str, ...]:
    inner = cell.find("table")
    if inner is None:
        cell = copy(cell)
        cell.find("b").decompose()
        text = _plain_text(cell)
        return (text,) if text else ()

    values: list[str] = []
    for td in inner.find_all("td"):
        # innermost cells only, so nested layout tables are not read twice
        if td.find("td") is not None or _is_hidden(td, inner):
            continue
        text = _plain_text(td)
        if text:
            values.append(text)
    return tuple(values)


def _extract_info_fields(page: _Page) -> tuple[InfoField, ...]:
    fields: list[InfoField] = []
    extra = False
    for row in _rows(page.info_box):
        if row is page.header:
            continue
        if collapse_whitespace(row.get_text(" ", strip=True)).startswith(FIRST_EXTRA_INFO_ROW):
            extra = True
        for cell in row.find_all("td", recursive=False):
            label = cell.find("b")
            if label is None or _is_hidden(cell, row):
                continue
            name = collapse_whitespace(label.get_text(" ", strip=True))
            if not name or name == "Type":
                continue
            values = _field_values(cell)
            if values:
                fields.append(InfoField(label=name, values=values, extra=extra))
    return tuple(fields)


def _extract_stats(page: _Page) -> Stats:
    values: dict[str, int] = {}
    for th in page.output.find_all("th"):
        match = STAT_RE.match(collapse_whitespace(th.get_text(" ", strip=True)))
        if match:
            values.setdefault(STAT_BY_LABEL[match.group(1)], int(match.group(2)))
    return Stats(**values)


def _pick_src(img: Tag) -> str:
    """Highest-density source from ``srcset``: 2x, then 1.5x, then ``src``."""
    candidates: dict[str, str] = {"1x": img.get("src") or ""}
    for entry in (img.get("srcset") or "").split(","):
        parts = entry.strip().rsplit(" ", 1)
        if len(parts) == 2:
            candidates[parts[1].strip()] = parts[0].strip()
    return candidates.get("2x") or candidates.get("1.5x") or candidates["1x"]


def thumbnail_origin(url: str) -> str:
    """
    Full-size original behind a MediaWiki thumbnail URL.

    ``/media/upload/thumb/f/fb/File.png/250px-File.png`` becomes
    ``/media/upload/f/fb/File.png``.  Other URLs are returned unchanged.
    """
    parts = urlsplit(url)
    if parts.hostname != THUMB_HOST or not parts.path.startswith(THUMB_PREFIX):
        return url
    segments = parts.path[len(THUMB_PREFIX):].split("/")
    if len(segments) < 3:
        return url
    path = "/media/upload/" + "/".join(segments[:3])
    return urlunsplit((parts.scheme, parts.netloc, path, "", ""))


def _image_source_id(origin_url: str) -> str:
    file_name = unquote(urlsplit(origin_url).path.rsplit("/", 1)[-1])
    stem = file_name.rsplit(".", 1)[0] if "." in file_name else file_name
    return slugify(stem)


def _image_ref(
    page: _Page, img: Tag, caption: Optional[str] = None, flex: bool = False
) -> Optional[ImageRef]:
    src = _pick_src(img)
    if not src:
        return None
    thumb_url = urljoin(page.url, src)
    origin_url = thumbnail_origin(thumb_url)
    width = img.get("width")
    return ImageRef(
        source_id=_image_source_id(origin_url),
        thumb_url=thumb_url,
        origin_url=origin_url,
        alt=img.get("alt") or "",
        width=int(width) if width and width.isdigit() else None,
        caption=caption,
        flex=flex,
    )


def _extract_images(page: _Page) -> tuple[ImageRef, ...]:
    images: list[ImageRef] = []
    seen: set[str] = set()

    for img in page.header.find_all("img"):
        if _is_hidden(img, page.header):
            continue

        cell = img.find_parent("td")
        caption = None
        flex = False
        if cell is not None:
            small = cell.find("small")
            if small is not None:
                caption = collapse_whitespace(small.get_text(" ", strip=True)) or None
            row = cell.find_parent("tr")
            if row is not None:
                visible = [
                    td
                    for td in row.find_all("td", recursive=False)
                    if _style(td).get("display") != "none"
                ]
                flex = len(visible) > 1

        ref = _image_ref(page, img, caption=caption, flex=flex)
        if ref is None or ref.origin_url in seen:
            continue
        seen.add(ref.origin_url)
        images.append(ref)
    return tuple(images)


def _inline_pieces(page: _Page, node: Tag, pieces: list[_Piece]) -> None:
    for child in node.children:
        if isinstance(child, Comment):
            continue
        if isinstance(child, NavigableString):
            pieces.append((str(child), None))
        elif child.name == "br":
            pieces.append((" ", None))
        elif child.name == "a":
            target = _link_target(page, child)
            # a page linking to itself is just text
            if target == page.identifier:
                target = None
            pieces.append((child.get_text(), target))
        else:
            _inline_pieces(page, child, pieces)


def _paragraph_spans(page: _Page, paragraph: Tag) -> tuple[TextSpan, ...]:
    """
    Split a paragraph into plain runs and links to other Pokémon.

    Whitespace is collapsed across span boundaries, so the joined span
    texts read the same as the paragraph's collapsed plain text.
    """
    pieces: list[_Piece] = []
    _inline_pieces(page, paragraph, pieces)

    spans: list[TextSpan] = []
    for text, target in pieces:
        text = WHITESPACE_RE.sub(" ", text)
        if not spans or spans[-1].text.endswith(" "):
            text = text.lstrip(" ")
        if not text:
            continue
        if target is None and spans and spans[-1].link is None:
            spans[-1] = TextSpan(spans[-1].text + text)
        else:
            link = RelationRef(RelationKind.TEXT_MENTION, target) if target is not None else None
            spans.append(TextSpan(text, link))

    while spans and not spans[-1].text.rstrip(" "):
        spans.pop()
    if spans:
        last = spans[-1]
        spans[-1] = TextSpan(last.text.rstrip(" "), last.link)
    return tuple(spans)


def _section_images(page: _Page, node: Tag) -> list[ImageRef]:
    caption_tag = node.find(class_="thumbcaption") or node.find("figcaption")
    caption = None
    if caption_tag is not None:
        caption = collapse_whitespace(caption_tag.get_text(" ", strip=True)) or None

    images: list[ImageRef] = []
    for img in node.find_all("img"):
        if _is_hidden(img, page.output):
            continue
        ref = _image_ref(page, img, caption=caption)
        if ref is not None:
            images.append(ref)
    return images


def _extract_text_blocks(page: _Page) -> tuple[TextBlock, ...]:
    blocks: list[TextBlock] = []
    heading: Optional[str] = None
    paragraphs: list[tuple[TextSpan, ...]] = []
    images: list[ImageRef] = []
    sections_seen = 0

    def flush() -> None:
        if paragraphs or images:
            blocks.append(
                TextBlock(heading=heading, paragraphs=tuple(paragraphs), images=tuple(images))
            )

    for node in page.output.find_all(recursive=False):
        if node.get("id") == "toc" or "toc" in (node.get("class") or []):
            continue
        h2 = node if node.name == "h2" else None
        if h2 is None and "mw-heading2" in (node.get("class") or []):
            h2 = node.find("h2")
        if h2 is not None:
            flush()
            sections_seen += 1
            if sections_seen > page.max_body_sections:
                return tuple(blocks)
            heading, paragraphs, images = _heading_text(h2), [], []
            continue
        if node.name == "p":
            spans = _paragraph_spans(page, node)
            if spans:
                paragraphs.append(spans)
        elif node.name != "table" and node.name not in HEADINGS:
            for ref in _section_images(page, node):
                if ref not in images:
                    images.append(ref)

    flush()
    return tuple(blocks)


def _stage_of(link: Tag, table: Tag) -> Optional[int]:
    """Stage label of the innermost cell around *link* naming exactly one stage."""
    for parent in link.parents:
        if parent is table:
            break
        if parent.name != "td":
            continue
        labels = {STAGE_LABELS[m.lower()] for m in STAGE_RE.findall(parent.get_text(" "))}
        if len(labels) == 1:
            return labels.pop()
        if len(labels) > 1:
            return None
    return None


def _extract_evolution(page: _Page) -> tuple[RelationRef, ...]:
    heading = _find_heading(page.output, "Evolution")
    if heading is None:
        return ()
    table = heading.find_next("table")
    if table is None:
        return ()

    members: list[tuple[Union[int, str], Optional[int]]] = []
    for link in table.find_all("a", href=True):
        target = _link_target(page, link)
        if target is None or any(target == known for known, _ in members):
            continue
        members.append((target, _stage_of(link, table)))

    positions = [i for i, (target, _) in enumerate(members) if target == page.identifier]
    if not positions:
        return ()
    own = positions[0]

    if all(stage is not None for _, stage in members):
        own_stage = members[own][1]
        before = [t for t, stage in members if stage == own_stage - 1]
        after = [t for t, stage in members if stage == own_stage + 1]
    else:
        before = [members[own - 1][0]] if own > 0 else []
        after = [members[own + 1][0]] if own + 1 < len(members) else []

    return tuple(
        [RelationRef(RelationKind.EVOLUTION_PREDECESSOR, target) for target in before]
        + [RelationRef(RelationKind.EVOLUTION_SUCCESSOR, target) for target in after]
    )


def _extract_forms(page: _Page) -> tuple[RelationRef, ...]:
    heading = _find_heading(page.output, "Forms")
    if heading is None:
        return ()

    targets: list[Union[int, str]] = []
    for node in heading.find_all_next(["a", *HEADINGS]):
        if node.name in HEADINGS:
            break
        target = _link_target(page, node)
        if target is None or target == page.identifier or target in targets:
            continue
        targets.append(target)
    return tuple(RelationRef(RelationKind.ALTERNATE_FORM, target) for target in targets)


# Optional capabilities: name -> (extractor, value when the section is unreadable)
OPTIONAL_EXTRACTORS: dict[str, tuple[Callable[[_Page], Any], Any]] = {
    "categories": (_extract_categories, ()),
    "japanese": (_extract_japanese, {}),
    "types": (_extract_types, ()),
    "info_fields": (_extract_info_fields, ()),
    "stats": (_extract_stats, Stats()),
    "images": (_extract_images, ()),
    "text_blocks": (_extract_text_blocks, ()),
    "evolution": (_extract_evolution, ()),
    "forms": (_extract_forms, ()),
}


def _run_optional(page: _Page, name: str) -> Any:
    extractor, empty = OPTIONAL_EXTRACTORS[name]
    try:
        return extractor(page)
    except (AttributeError, KeyError, TypeError, ValueError, IndexError) as exc:
        logger.debug("Unreadable %s section on %s: %s", name, page.url, exc)
        page.degraded_reasons.append(f"unreadable {name} section")
        return empty


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def parse_entry(
    raw: bytes,
    url: str,
    index: Optional[CatalogIndex] = None,
    max_body_sections: int = 1,
) -> CatalogEntry:
    """
    Parse one raw Bulbapedia page.

    Parameters
    ----------
    raw : bytes
        Page bytes as returned by the Fetcher.
    url : str
        The page URL; relative links and image sources are resolved
        against it.
    index : CatalogIndex, optional
        Used to map links to other pages onto catalog identifiers.
    max_body_sections : int
        Number of ``h2`` sections to keep after the lead paragraphs.

    Raises
    ------
    ParseError
        ``MALFORMED_STRUCTURE`` when the page has no content area or info
        box, ``MISSING_REQUIRED_FIELD`` when the name or number is missing.
    """
    try:
        html = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ParseError.malformed(f"page is not valid UTF-8: {exc}") from exc

    soup = BeautifulSoup(html, "lxml")
    output = soup.select_one(".mw-parser-output")
    if output is None:
        raise ParseError.malformed("no .mw-parser-output content area")
    info_box = output.select_one("table.roundy")
    if info_box is None:
        raise ParseError.malformed("could not find info box")
    header = info_box.find("tr")
    if header is None:
        raise ParseError.malformed("info box has no header row")

    for junk in output.select("sup.reference, span.mw-editsection, style, script"):
        junk.decompose()

    page = _Page(
        url=url,
        output=output,
        info_box=info_box,
        header=header,
        index=index,
        max_body_sections=max_body_sections,
    )
    name = _extract_name(page)
    page.identifier = _extract_identifier(page)

    japanese = _run_optional(page, "japanese")
    relations = (
        _run_optional(page, "evolution")
        + _run_optional(page, "forms")
        + _run_optional(page, "types")
    )

    return CatalogEntry(
        identifier=page.identifier,
        name=name,
        url=url,
        categories=_run_optional(page, "categories"),
        japanese_name=japanese.get("japanese_name"),
        pronunciation=japanese.get("pronunciation"),
        romanization=japanese.get("romanization"),
        info_fields=_run_optional(page, "info_fields"),
        text_blocks=_run_optional(page, "text_blocks"),
        stats=_run_optional(page, "stats"),
        relations=relations,
        images=_run_optional(page, "images"),
        degraded=bool(page.degraded_reasons),
        degraded_reasons=tuple(page.degraded_reasons),
    )


def stub_entry(identifier: int, name: str, url: str, reason: str) -> CatalogEntry:
    """Placeholder for an entry whose page could not be fetched or parsed."""
    return CatalogEntry(
        identifier=identifier,
        name=name,
        url=url,
        degraded=True,
        degraded_reasons=(reason,),
    )


__all__ = ["parse_entry", "stub_entry", "thumbnail_origin"]
