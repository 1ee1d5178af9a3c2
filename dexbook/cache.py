"""
Durable on-disk cache shared by the Fetcher and the Image Pipeline.

Layout::

    <root>/
        pages/          raw HTML, keyed by URL
        sources/        raw image bytes, keyed by URL
        images-fast/    built artifacts, keyed by source hash
        images-high/

Every write goes to a temporary file first and is moved into place with
``os.replace``, so a crashed or cancelled run never leaves a truncated entry
behind.  Writers for the same key are serialised with a per-key lock; readers
never lock.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import threading
import uuid
from pathlib import Path
from typing import Callable, Optional

logger = logging.getLogger(__name__)

PAGES = "pages"
SOURCES = "sources"


def images_namespace(tier: str) -> str:
    return f"images-{tier}"


def cache_key(locator: str, suffix: str = "") -> str:
    """
    Derive a filesystem-safe cache key from a URL.

    Strips the scheme, replaces ``/`` with ``__`` and truncates very long
    names with an md5 suffix to stay under OS filename limits.
    """
    safe = (
        locator.split("://", 1)[-1]
        .strip("/")
        .replace("/", "__")
        .replace("?", "__q__")
        .replace("&", "__a__")
        .replace(":", "__c__")
        .replace("%", "__p__")
    )
    if len(safe) > 200:
        safe = safe[:160] + "__" + hashlib.md5(safe.encode()).hexdigest()[:8]
    return f"{safe}{suffix}"


def atomic_write_bytes(path: Path, payload: bytes) -> None:
    """Write *payload* to a temporary sibling and move it over *path*."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        tmp_path.write_bytes(payload)
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


class DiskCache:
    """Content store with get / put-if-absent semantics."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Paths and locks
    # ------------------------------------------------------------------

    def path_for(self, namespace: str, key: str) -> Path:
        return self.root / namespace / key

    def _lock_for(self, namespace: str, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get((namespace, key))
            if lock is None:
                lock = self._locks[(namespace, key)] = threading.Lock()
            return lock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, namespace: str, key: str) -> Optional[bytes]:
        path = self.path_for(namespace, key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def contains(self, namespace: str, key: str) -> bool:
        return self.path_for(namespace, key).is_file()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _write_atomic(self, path: Path, data: bytes) -> None:
        atomic_write_bytes(path, data)

    def get_or_create(
        self,
        namespace: str,
        key: str,
        factory: Callable[[], bytes],
    ) -> bytes:
        """
        Return the cached value, running *factory* to create it on a miss.

        The factory runs at most once per key even when several workers ask
        for the same key at the same time.
        """
        cached = self.get(namespace, key)
        if cached is not None:
            return cached
        with self._lock_for(namespace, key):
            cached = self.get(namespace, key)
            if cached is not None:
                return cached
            data = factory()
            self._write_atomic(self.path_for(namespace, key), data)
            return data

    def invalidate(self, namespace: str) -> int:
        """Drop every entry of one namespace.  Returns the number removed."""
        directory = self.root / namespace
        if not directory.is_dir():
            return 0
        removed = sum(1 for path in directory.iterdir() if path.is_file())
        shutil.rmtree(directory)
        logger.info("Cleared %d cached entries from %s", removed, directory)
        return removed
