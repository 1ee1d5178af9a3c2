"""
End-of-run report.

Recoverable failures are not logged as they happen; they are recorded here
and printed once when the run finishes, so one broken page does not bury
the progress output.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from dexbook.errors import DexbookError
from dexbook.models import CatalogEntry
from dexbook.pipeline.resolver import ResolverReport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordedError:
    identifier: Optional[int]
    error_class: str
    kind: str
    message: str


@dataclass
class RunReport:
    """Everything the run wants to tell the user once it is done."""

    errors: list[RecordedError] = field(default_factory=list)
    degraded: dict[int, tuple[str, ...]] = field(default_factory=dict)
    resolver: ResolverReport = field(default_factory=ResolverReport)
    entry_count: int = 0
    image_count: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def record(self, error: DexbookError, identifier: Optional[int] = None) -> None:
        kind = getattr(error, "kind", None)
        recorded = RecordedError(
            identifier=identifier,
            error_class=type(error).__name__,
            kind=kind.value if kind is not None else "",
            message=str(error),
        )
        with self._lock:
            self.errors.append(recorded)
        logger.debug("recorded %s for #%s: %s", recorded.error_class, identifier, error)

    def note_degraded(self, entry: CatalogEntry) -> None:
        if entry.degraded:
            with self._lock:
                self.degraded[entry.identifier] = entry.degraded_reasons

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def errors_of(self, error_class: str) -> list[RecordedError]:
        return [error for error in self.errors if error.error_class == error_class]

    def counts(self) -> Counter:
        """Number of recorded errors per ``(error class, kind)``."""
        return Counter((error.error_class, error.kind) for error in self.errors)

    def affected(self) -> list[int]:
        return sorted({e.identifier for e in self.errors if e.identifier is not None})

    @property
    def is_clean(self) -> bool:
        return not self.errors and not self.degraded and self.resolver.is_clean

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def summary_lines(self) -> list[str]:
        lines = [f"Entries: {self.entry_count}, images: {self.image_count}"]
        for (error_class, kind), count in sorted(self.counts().items()):
            ids = sorted(
                {
                    e.identifier
                    for e in self.errors
                    if e.error_class == error_class and e.kind == kind and e.identifier is not None
                }
            )
            lines.append(f"{error_class}[{kind}]: {count} ({', '.join(f'#{i}' for i in ids)})")
        for identifier, reasons in sorted(self.degraded.items()):
            lines.append(f"Degraded #{identifier}: {'; '.join(reasons)}")
        for ref in self.resolver.dangling:
            lines.append(f"Dangling {ref.kind.value} from #{ref.source} to {ref.target!r}")
        for cycle in self.resolver.cycles:
            lines.append(f"Evolution cycle: {' -> '.join(str(i) for i in cycle)}")
        return lines

    def log_summary(self) -> None:
        logger.info("=" * 60)
        for line in self.summary_lines():
            logger.info(line)
        logger.info("=" * 60)
