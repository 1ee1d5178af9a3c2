"""
Catalog index: the "List of Pokémon by National Pokédex number" page.

The index fixes the catalog.  It maps every National Pokédex number to its
Bulbapedia page, and lets the parser turn links between pages back into
catalog identifiers.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import unquote, urljoin, urldefrag

from bs4 import BeautifulSoup

from dexbook.errors import ParseError
from dexbook.scraper.base import Fetcher

logger = logging.getLogger(__name__)

DEX_NUMBER_RE = re.compile(r"#?(\d{1,4})")
PAGE_LINK_RE = re.compile(r"mon\)$")
PAGE_SUFFIX_RE = re.compile(r"\s*\(Pokémon\)$")


def normalize_url(url: str, base_url: str = "") -> str:
    """Absolute, unquoted, fragment- and query-free form of a page URL."""
    absolute, _ = urldefrag(urljoin(base_url, url))
    return unquote(absolute.split("?", 1)[0])


@dataclass(frozen=True)
class IndexEntry:
    identifier: int
    name: str
    url: str


@dataclass
class CatalogIndex:
    """Every catalog entry known to the run, keyed by identifier."""

    pages: dict[int, IndexEntry] = field(default_factory=dict)
    _by_url: dict[str, int] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        for entry in self.pages.values():
            self._by_url.setdefault(normalize_url(entry.url), entry.identifier)

    def __len__(self) -> int:
        return len(self.pages)

    def add(self, entry: IndexEntry) -> None:
        if entry.identifier in self.pages:
            return
        self.pages[entry.identifier] = entry
        self._by_url.setdefault(normalize_url(entry.url), entry.identifier)

    def identifier_for_url(self, url: str, base_url: str = "") -> Optional[int]:
        return self._by_url.get(normalize_url(url, base_url))

    def limited(self, limit: Optional[int]) -> "CatalogIndex":
        """A copy holding only the first *limit* entries (by identifier)."""
        if limit is None:
            return self
        keep = sorted(self.pages)[:limit]
        return CatalogIndex(pages={identifier: self.pages[identifier] for identifier in keep})


def parse_index(html: str, base_url: str) -> CatalogIndex:
    """
    Parse the National Pokédex list into a :class:`CatalogIndex`.

    Rows whose first cell is not a ``#NNNN`` number are headers or spacers
    and are skipped.  Regional form rows repeat the number and point at the
    same page; the first row wins.
    """
    soup = BeautifulSoup(html, "lxml")
    index = CatalogIndex()

    for tr in soup.find_all("tr"):
        td = tr.find("td")
        if td is None:
            continue
        match = DEX_NUMBER_RE.fullmatch(td.get_text(strip=True))
        if not match:
            continue
        identifier = int(match.group(1))

        link = tr.find("a", href=PAGE_LINK_RE)
        if link is None:
            raise ParseError.malformed(f"missing page link for entry #{identifier:04d}")

        name = link.get_text(strip=True) or PAGE_SUFFIX_RE.sub("", link.get("title", ""))
        index.add(
            IndexEntry(
                identifier=identifier,
                name=name,
                url=urljoin(base_url, link["href"]),
            )
        )

    if not index.pages:
        raise ParseError.malformed("catalog index page lists no entries")
    return index


def read_index(fetcher: Fetcher, url: str) -> CatalogIndex:
    index = parse_index(fetcher.get_text(url), url)
    logger.info("Catalog index lists %d entries", len(index))
    return index
