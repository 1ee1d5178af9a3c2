"""
Error taxonomy for the dexbook generator.

Three families are entry/asset scoped and recoverable: the run records them
in the end-of-run report and keeps going with a degraded entry.

  - FetchError  : a page or image could not be downloaded
  - ParseError  : a page could not be turned into a CatalogEntry
  - ImageError  : an image could not be fetched, decoded or re-encoded

AssemblyError is batch-fatal: a document that fails final validation is
never written.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class DexbookError(Exception):
    """Base class for every error raised by the generator."""


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------


class FetchErrorKind(str, Enum):
    NOT_FOUND = "not-found"
    TIMEOUT = "timeout"
    TRANSIENT_NETWORK = "transient-network"
    PERMANENT_HTTP = "permanent-http"


class FetchError(DexbookError):
    """Raised by the Fetcher once a locator cannot be retrieved."""

    def __init__(
        self,
        kind: FetchErrorKind,
        locator: str,
        status: Optional[int] = None,
        message: str = "",
    ) -> None:
        self.kind = kind
        self.locator = locator
        self.status = status
        detail = f" (HTTP {status})" if status is not None else ""
        super().__init__(message or f"{kind.value}{detail}: {locator}")

    @property
    def retryable(self) -> bool:
        return self.kind in (FetchErrorKind.TIMEOUT, FetchErrorKind.TRANSIENT_NETWORK)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


class ParseErrorKind(str, Enum):
    MALFORMED_STRUCTURE = "malformed-structure"
    MISSING_REQUIRED_FIELD = "missing-required-field"


class ParseError(DexbookError):
    """Raised when a raw page lacks the structure or identity fields we need."""

    def __init__(
        self,
        kind: ParseErrorKind,
        message: str,
        field: Optional[str] = None,
    ) -> None:
        self.kind = kind
        self.field = field
        super().__init__(message)

    @classmethod
    def missing(cls, field: str) -> "ParseError":
        return cls(
            ParseErrorKind.MISSING_REQUIRED_FIELD,
            f"missing required field: {field}",
            field=field,
        )

    @classmethod
    def malformed(cls, message: str) -> "ParseError":
        return cls(ParseErrorKind.MALFORMED_STRUCTURE, message)


# ---------------------------------------------------------------------------
# Images
# ---------------------------------------------------------------------------


class ImageErrorKind(str, Enum):
    DECODE_FAILED = "decode-failed"
    UNSUPPORTED_FORMAT = "unsupported-format"
    SOURCE_UNAVAILABLE = "source-unavailable"


class ImageError(DexbookError):
    """Raised when an image reference cannot be turned into an artifact."""

    def __init__(self, kind: ImageErrorKind, source_id: str, message: str = "") -> None:
        self.kind = kind
        self.source_id = source_id
        super().__init__(message or f"{kind.value}: {source_id}")

    def __reduce__(self):
        # Raised inside encode workers, so it must survive pickling
        return (self.__class__, (self.kind, self.source_id, str(self)))


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


class AssemblyErrorKind(str, Enum):
    DUPLICATE_IDENTIFIER = "duplicate-identifier"
    DANGLING_IMAGE_REFERENCE = "dangling-image-reference"
    MALFORMED_OUTPUT = "malformed-output"


class AssemblyError(DexbookError):
    """Fatal validation failure of the assembled document."""

    def __init__(self, kind: AssemblyErrorKind, message: str) -> None:
        self.kind = kind
        super().__init__(f"{kind.value}: {message}")


RECOVERABLE_ERRORS = (FetchError, ParseError, ImageError)
