"""
Data models shared by every stage of the generator.

All records are frozen: a stage that needs to change a record builds a new
one with :func:`dataclasses.replace` and hands that downstream.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from dexbook.config import BULBAPEDIA_BASE, QualityTier

# The 18 elemental types; type associations resolve against this registry
ELEMENTAL_TYPES: dict[str, str] = {
    "normal": "Normal",
    "fire": "Fire",
    "water": "Water",
    "grass": "Grass",
    "electric": "Electric",
    "ice": "Ice",
    "fighting": "Fighting",
    "poison": "Poison",
    "ground": "Ground",
    "flying": "Flying",
    "psychic": "Psychic",
    "bug": "Bug",
    "rock": "Rock",
    "ghost": "Ghost",
    "dragon": "Dragon",
    "dark": "Dark",
    "steel": "Steel",
    "fairy": "Fairy",
}


def type_page_url(slug: str) -> str:
    return f"{BULBAPEDIA_BASE}/wiki/{ELEMENTAL_TYPES.get(slug, slug.title())}_(type)"


def format_dex_id(identifier: int) -> str:
    """``25`` -> ``#0025``, the way the Pokédex numbers are printed."""
    return f"#{identifier:04d}"


# ---------------------------------------------------------------------------
# Relations
# ---------------------------------------------------------------------------


class RelationKind(str, Enum):
    EVOLUTION_PREDECESSOR = "evolution-predecessor"
    EVOLUTION_SUCCESSOR = "evolution-successor"
    ALTERNATE_FORM = "alternate-form"
    TYPE_ASSOCIATION = "type-association"
    # A link to another entry inside the descriptive text
    TEXT_MENTION = "text-mention"

    @property
    def targets_entry(self) -> bool:
        return self is not RelationKind.TYPE_ASSOCIATION


class RelationStatus(str, Enum):
    UNRESOLVED = "unresolved"
    RESOLVED = "resolved"
    DANGLING = "dangling"


@dataclass(frozen=True)
class RelationRef:
    """
    A link from one entry to another entry (or to an elemental type).

    ``target`` is a catalog identifier for entry relations.  A link the
    parser could not map to an identifier keeps the page slug as a string;
    the resolver reports it as dangling.  Type associations target a type
    slug such as ``"grass"``.
    """

    kind: RelationKind
    target: Union[int, str]
    status: RelationStatus = RelationStatus.UNRESOLVED
    target_title: Optional[str] = None
    # Declared ordering among siblings, when the page gives one
    position: Optional[int] = None

    @property
    def is_resolved(self) -> bool:
        return self.status is RelationStatus.RESOLVED


# ---------------------------------------------------------------------------
# Catalog entries
# ---------------------------------------------------------------------------


STAT_FIELDS: tuple[str, ...] = ("hp", "attack", "defense", "sp_atk", "sp_def", "speed")

STAT_LABELS: dict[str, str] = {
    "hp": "HP",
    "attack": "Attack",
    "defense": "Defense",
    "sp_atk": "Sp. Atk",
    "sp_def": "Sp. Def",
    "speed": "Speed",
}


@dataclass(frozen=True)
class Stats:
    hp: Optional[int] = None
    attack: Optional[int] = None
    defense: Optional[int] = None
    sp_atk: Optional[int] = None
    sp_def: Optional[int] = None
    speed: Optional[int] = None

    def items(self) -> list[tuple[str, Optional[int]]]:
        return [(name, getattr(self, name)) for name in STAT_FIELDS]

    @property
    def is_empty(self) -> bool:
        return all(value is None for _, value in self.items())

    @property
    def total(self) -> Optional[int]:
        values = [value for _, value in self.items()]
        if any(value is None for value in values):
            return None
        return sum(values)


@dataclass(frozen=True)
class TextSpan:
    """A run of paragraph text, optionally linking to another entry."""

    text: str
    link: Optional[RelationRef] = None


@dataclass(frozen=True)
class InfoField:
    """
    One labelled cell of the info box, e.g. ``Catch rate`` or ``Height``.

    ``extra`` marks the fields from the gender ratio row on; those are
    shown after the lead text rather than above it.
    """

    label: str
    values: tuple[str, ...]
    extra: bool = False


@dataclass(frozen=True)
class ImageRef:
    """An image as referenced by a page, before anything is downloaded."""

    source_id: str
    thumb_url: str
    origin_url: str
    alt: str = ""
    width: Optional[int] = None
    caption: Optional[str] = None
    # Shown side by side with neighbouring flex images
    flex: bool = False

    def url_for(self, tier: QualityTier) -> str:
        return self.origin_url if tier is QualityTier.HIGH else self.thumb_url


@dataclass(frozen=True)
class TextBlock:
    """
    One descriptive section: the lead (no heading) or an ``h2`` section.

    Each paragraph is a sequence of spans so that mentions of other
    entries survive as links.  ``images`` are the figures placed in the
    section body.
    """

    heading: Optional[str]
    paragraphs: tuple[tuple[TextSpan, ...], ...]
    images: tuple[ImageRef, ...] = ()

    @property
    def texts(self) -> tuple[str, ...]:
        return tuple("".join(span.text for span in spans) for spans in self.paragraphs)


@dataclass(frozen=True)
class CatalogEntry:
    identifier: int
    name: str
    url: str
    categories: tuple[str, ...] = ()
    japanese_name: Optional[str] = None
    pronunciation: Optional[str] = None
    romanization: Optional[str] = None
    info_fields: tuple[InfoField, ...] = ()
    text_blocks: tuple[TextBlock, ...] = ()
    stats: Stats = field(default_factory=Stats)
    relations: tuple[RelationRef, ...] = ()
    images: tuple[ImageRef, ...] = ()
    degraded: bool = False
    degraded_reasons: tuple[str, ...] = ()

    @property
    def dex_id(self) -> str:
        return format_dex_id(self.identifier)

    def relations_of(self, kind: RelationKind) -> list[RelationRef]:
        return [ref for ref in self.relations if ref.kind is kind]


# ---------------------------------------------------------------------------
# Built artifacts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImageAsset:
    """A ready artifact in the image cache plus where it lands in the bundle."""

    source_id: str
    tier: QualityTier
    content_hash: str
    cache_path: Path
    bundle_path: str
    ref: ImageRef


@dataclass(frozen=True)
class EntryFragment:
    """Rendered markup for one entry and the bundle image paths it uses."""

    identifier: int
    markup: str
    image_paths: tuple[str, ...] = ()
