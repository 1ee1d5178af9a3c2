"""Configuration objects and constants for a dexbook run."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

BULBAPEDIA_BASE = "https://bulbapedia.bulbagarden.net"
INDEX_URL = (
    f"{BULBAPEDIA_BASE}/wiki/List_of_Pok%C3%A9mon_by_National_Pok%C3%A9dex_number"
)


class QualityTier(str, Enum):
    """Image quality preset. Only the image pipeline looks at it."""

    FAST = "fast"
    HIGH = "high"


@dataclass(frozen=True)
class TierSettings:
    max_side: int
    quality: int
    method: int
    # Fetch the full-size original instead of the page thumbnail
    use_origin: bool


TIER_SETTINGS: dict[QualityTier, TierSettings] = {
    QualityTier.FAST: TierSettings(max_side=320, quality=70, method=0, use_origin=False),
    QualityTier.HIGH: TierSettings(max_side=1280, quality=90, method=6, use_origin=True),
}


@dataclass
class BuildConfig:
    """
    Settings for one generator run.

    Parameters
    ----------
    cache_dir : Path
        Durable cache for fetched pages, raw image sources and built
        artifacts.  Survives across runs.
    output_dir : Path
        DDK project directory receiving ``Dictionary.xml`` and
        ``OtherResources/images``.
    quality : QualityTier
        Image tier, ``fast`` unless asked otherwise.
    body_quality : QualityTier
        Tier of the images inside the article text.  Kept apart from
        ``quality`` because a page can carry many of them.
    max_body_sections : int
        How many ``h2`` body sections ("Biology", "In the anime", ...) to keep.
    workers : int
        Size of the network-bound worker pool.
    image_workers : int
        Size of the CPU-bound encode pool.  ``0`` encodes inline.
    """

    cache_dir: Path = field(default_factory=lambda: Path("data/cache"))
    output_dir: Path = field(default_factory=lambda: Path("ddk"))
    quality: QualityTier = QualityTier.FAST
    body_quality: QualityTier = QualityTier.FAST
    max_body_sections: int = 1
    workers: int = 8
    image_workers: int = 2
    calls_per_second: float = 2.0
    max_retries: int = 4
    backoff_factor: float = 0.5
    timeout: int = 30
    limit: Optional[int] = None
    index_url: str = INDEX_URL

    def __post_init__(self) -> None:
        self.cache_dir = Path(self.cache_dir)
        self.output_dir = Path(self.output_dir)
        self.quality = QualityTier(self.quality)
        self.body_quality = QualityTier(self.body_quality)

    @property
    def tier_settings(self) -> TierSettings:
        return TIER_SETTINGS[self.quality]
