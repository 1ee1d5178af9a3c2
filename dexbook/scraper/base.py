"""
Fetcher for dexbook.

Every page and every image source goes through :class:`Fetcher`, which
gives the rest of the generator:

  - A requests.Session pre-configured with exponential-backoff retries
  - Transparent disk caching through the injected :class:`DiskCache`
  - A fixed-interval rate limiter so we stay polite to Bulbapedia
  - Browser-like request headers (the wiki rejects obvious bots)
  - A single failure type, :class:`FetchError`, with a kind per cause

Retries are left to urllib3: only connection problems, timeouts and the
transient statuses in ``TRANSIENT_STATUSES`` are retried.  A 404 or any
other permanent status fails on the first answer.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from dexbook.cache import PAGES, SOURCES, DiskCache, cache_key
from dexbook.config import BULBAPEDIA_BASE, BuildConfig
from dexbook.errors import FetchError, FetchErrorKind

TRANSIENT_STATUSES = (429, 500, 502, 503, 504)
NOT_FOUND_STATUSES = (404, 410)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.3 Safari/605.1.15"
)


class ResourceKind(str, Enum):
    PAGE = "page"
    IMAGE = "image"


# Extra headers per resource kind, on top of the session defaults
REQUEST_HEADERS: dict[ResourceKind, dict[str, str]] = {
    ResourceKind.PAGE: {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
    },
    ResourceKind.IMAGE: {
        "Accept": "image/webp,image/avif,image/png,image/svg+xml,image/*;q=0.8,*/*;q=0.5",
        "Sec-Fetch-Dest": "image",
        "Sec-Fetch-Mode": "no-cors",
        "Sec-Fetch-Site": "same-site",
        "Referer": f"{BULBAPEDIA_BASE}/",
    },
}


# ---------------------------------------------------------------------------
# Rate limiter dataclass
# ---------------------------------------------------------------------------


@dataclass
class RateLimiter:
    """
    Simple fixed-interval rate limiter.

    Tracks the timestamp of the last outbound call and sleeps just long
    enough to honour ``calls_per_second`` before each new request.  Shared
    by all fetch workers, so the bookkeeping is guarded by a lock.
    """

    calls_per_second: float = 2.0
    _last_call: float = field(default=0.0, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def wait(self) -> None:
        """Block until it is safe to make the next request."""
        if self.calls_per_second <= 0:
            return
        interval = 1.0 / self.calls_per_second
        with self._lock:
            now = time.monotonic()
            sleep_for = interval - (now - self._last_call)
            if sleep_for > 0:
                time.sleep(sleep_for)
            self._last_call = time.monotonic()


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------


class Fetcher:
    """
    Cache-first downloader for pages and image sources.

    Parameters
    ----------
    config : BuildConfig
        Retry, timeout and rate settings.
    cache : DiskCache
        Durable cache; pages and image sources live in separate namespaces.
    session : requests.Session, optional
        Injected session.  When omitted a session with retry adapters is
        built from *config*.
    """

    def __init__(
        self,
        config: BuildConfig,
        cache: DiskCache,
        session: Optional[Any] = None,
    ) -> None:
        self.config = config
        self.cache = cache
        self._rate_limiter = RateLimiter(config.calls_per_second)
        self._session = session if session is not None else self._build_session()
        self._counter_lock = threading.Lock()
        self.network_requests = 0
        self.logger = logging.getLogger(self.__class__.__name__)

    # ------------------------------------------------------------------
    # Session setup
    # ------------------------------------------------------------------

    def _build_session(self) -> requests.Session:
        """Build a requests.Session with retry logic and browser-like headers."""
        session = requests.Session()
        retry = Retry(
            total=self.config.max_retries,
            backoff_factor=self.config.backoff_factor,
            status_forcelist=list(TRANSIENT_STATUSES),
            respect_retry_after_header=True,
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry, pool_maxsize=max(self.config.workers, 10))
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        session.headers["User-Agent"] = USER_AGENT
        session.headers["Accept-Language"] = "en-US,en;q=0.9"
        return session

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, locator: str, kind: ResourceKind = ResourceKind.PAGE) -> bytes:
        """
        Return the raw bytes behind *locator*.

        The cache is checked first; on a miss the response is downloaded,
        stored, and returned.  Concurrent calls for the same locator share
        one download.

        Raises
        ------
        FetchError
            With kind ``NOT_FOUND``, ``TIMEOUT``, ``TRANSIENT_NETWORK`` (retries
            exhausted) or ``PERMANENT_HTTP``.
        """
        namespace = PAGES if kind is ResourceKind.PAGE else SOURCES
        key = cache_key(locator)

        cached = self.cache.get(namespace, key)
        if cached is not None:
            self.logger.debug(f"cache hit: {locator}")
            return cached

        return self.cache.get_or_create(namespace, key, lambda: self._download(locator, kind))

    def get_text(self, locator: str) -> str:
        """Fetch a page and decode it as UTF-8."""
        return self.get(locator, ResourceKind.PAGE).decode("utf-8", errors="replace")

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    def _download(self, locator: str, kind: ResourceKind) -> bytes:
        self._rate_limiter.wait()
        with self._counter_lock:
            self.network_requests += 1
        self.logger.info(f"fetching {locator}")

        try:
            resp = self._session.get(
                locator,
                headers=REQUEST_HEADERS[kind],
                timeout=self.config.timeout,
            )
        except requests.Timeout as exc:
            raise FetchError(FetchErrorKind.TIMEOUT, locator) from exc
        except (requests.ConnectionError, requests.exceptions.RetryError) as exc:
            raise FetchError(FetchErrorKind.TRANSIENT_NETWORK, locator, message=str(exc)) from exc
        except requests.RequestException as exc:
            raise FetchError(FetchErrorKind.PERMANENT_HTTP, locator, message=str(exc)) from exc

        status = resp.status_code
        if status in NOT_FOUND_STATUSES:
            raise FetchError(FetchErrorKind.NOT_FOUND, locator, status=status)
        if status in TRANSIENT_STATUSES:
            raise FetchError(FetchErrorKind.TRANSIENT_NETWORK, locator, status=status)
        if not 200 <= status < 300:
            raise FetchError(FetchErrorKind.PERMANENT_HTTP, locator, status=status)
        return resp.content
