"""
Image pipeline: fetch, normalise and cache the images an entry shows.

Each :class:`ImageRef` becomes an :class:`ImageAsset` in three steps:

1. The source bytes are fetched through the Fetcher (``sources`` cache).
   The ``fast`` tier uses the page thumbnail, ``high`` the full-size origin.
2. The bytes are hashed; the hash keys the artifact in the tier's own
   cache namespace, so the two tiers never overwrite each other.
3. On a cache miss the source is re-encoded by :func:`encode_artifact`,
   on the injected executor when there is one.

Encoding is deterministic: the same source and tier always give the same
artifact bytes.  Bundle file names carry a prefix of the artifact hash, so
two different images whose file names slugify alike (``Nidoran♀.png`` and
``Nidoran♂.png``) never share a bundle path.
"""

from __future__ import annotations

import hashlib
import io
import logging
from concurrent.futures import Executor
from typing import Optional

from filetype import guess
from PIL import Image

from dexbook.cache import DiskCache, images_namespace
from dexbook.config import TIER_SETTINGS, QualityTier
from dexbook.errors import FetchError, ImageError, ImageErrorKind
from dexbook.models import ImageAsset, ImageRef
from dexbook.scraper.base import Fetcher, ResourceKind

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {"png", "jpg", "gif", "webp", "bmp", "tiff"}
RESAMPLE = getattr(Image, "Resampling", Image).LANCZOS
# Hex digits of the artifact hash kept in bundle file names
BUNDLE_HASH_LENGTH = 12


def detect_image_format(data: bytes) -> Optional[str]:
    """Detect image type using filetype; returns lowercase extension."""
    kind = guess(data)
    if kind and kind.mime.startswith("image/"):
        ext = kind.extension.lower()
        # APNG is a PNG that carries frames
        if ext == "apng":
            return "png"
        if ext == "jpeg":
            return "jpg"
        return ext
    return None


def _fit(size: tuple[int, int], max_side: int) -> tuple[int, int]:
    width, height = size
    longest = max(width, height)
    if longest <= max_side:
        return size
    ratio = max_side / longest
    return max(1, round(width * ratio)), max(1, round(height * ratio))


def encode_artifact(data: bytes, tier: str, source_id: str) -> bytes:
    """
    Re-encode one image source for *tier*.

    Still images are downscaled to the tier's longest side and written as
    WebP without metadata.  Animated images are returned unchanged.  Runs
    in worker processes, so it only takes plain, picklable arguments.

    Raises
    ------
    ImageError
        ``UNSUPPORTED_FORMAT`` when the bytes are not an allowed image type,
        ``DECODE_FAILED`` when Pillow cannot read them.
    """
    settings = TIER_SETTINGS[QualityTier(tier)]

    fmt = detect_image_format(data)
    if fmt is None or fmt not in ALLOWED_IMAGE_TYPES:
        raise ImageError(
            ImageErrorKind.UNSUPPORTED_FORMAT,
            source_id,
            f"unsupported image type {fmt or 'unknown'}: {source_id}",
        )

    try:
        with Image.open(io.BytesIO(data)) as src:
            if getattr(src, "is_animated", False):
                return data
            image = src.convert("RGBA")
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as exc:
        raise ImageError(ImageErrorKind.DECODE_FAILED, source_id, f"decode failed: {exc}") from exc

    target = _fit(image.size, settings.max_side)
    if target != image.size:
        image = image.resize(target, RESAMPLE)

    buffer = io.BytesIO()
    image.save(buffer, format="WEBP", quality=settings.quality, method=settings.method)
    return buffer.getvalue()


class ImagePipeline:
    """
    Builds :class:`ImageAsset` records for one quality tier.

    Args:
        fetcher: Fetcher used for the raw image sources.
        cache: Cache holding the built artifacts.
        tier: Quality tier of every artifact this pipeline builds.
        executor: Optional pool for the CPU-bound encode step.  Encoding
            runs inline when omitted.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        cache: DiskCache,
        tier: QualityTier,
        executor: Optional[Executor] = None,
    ) -> None:
        self.fetcher = fetcher
        self.cache = cache
        self.tier = QualityTier(tier)
        self.executor = executor
        self.namespace = images_namespace(self.tier.value)

    def _encode(self, data: bytes, source_id: str) -> bytes:
        if self.executor is None:
            return encode_artifact(data, self.tier.value, source_id)
        return self.executor.submit(encode_artifact, data, self.tier.value, source_id).result()

    def build(self, ref: ImageRef) -> ImageAsset:
        """
        Return the artifact for *ref*, building it on a cache miss.

        Raises:
            ImageError: ``SOURCE_UNAVAILABLE`` (with the FetchError as cause)
                when the source cannot be fetched, or an encode failure.
        """
        url = ref.url_for(self.tier)
        try:
            data = self.fetcher.get(url, ResourceKind.IMAGE)
        except FetchError as exc:
            raise ImageError(ImageErrorKind.SOURCE_UNAVAILABLE, ref.source_id, str(exc)) from exc

        content_hash = hashlib.sha256(data).hexdigest()
        artifact = self.cache.get_or_create(
            self.namespace,
            content_hash,
            lambda: self._encode(data, ref.source_id),
        )
        ext = detect_image_format(artifact) or "webp"
        artifact_hash = hashlib.sha256(artifact).hexdigest()[:BUNDLE_HASH_LENGTH]
        logger.debug("image %s ready (%s, %d bytes)", ref.source_id, self.tier.value, len(artifact))

        return ImageAsset(
            source_id=ref.source_id,
            tier=self.tier,
            content_hash=content_hash,
            cache_path=self.cache.path_for(self.namespace, content_hash),
            bundle_path=f"images/{ref.source_id}-{artifact_hash}.{ext}",
            ref=ref,
        )
