"""
Cross-reference resolution over the full set of parsed entries.

The entries never hold each other: relations stay identifier-valued
:class:`RelationRef` edges, looked up in an identifier -> entry arena once
every page has been parsed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable, Union

from dexbook.models import (
    ELEMENTAL_TYPES,
    CatalogEntry,
    RelationKind,
    RelationRef,
    RelationStatus,
    TextBlock,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DanglingRef:
    source: int
    kind: RelationKind
    target: Union[int, str]


@dataclass
class ResolverReport:
    """Data-integrity warnings found while resolving.  Never fatal."""

    dangling: list[DanglingRef] = field(default_factory=list)
    cycles: list[tuple[int, ...]] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.dangling and not self.cycles


@dataclass
class ResolutionResult:
    entries: list[CatalogEntry]
    report: ResolverReport


def _resolve_ref(ref: RelationRef, arena: dict[int, CatalogEntry]) -> RelationRef:
    if not ref.kind.targets_entry:
        title = ELEMENTAL_TYPES.get(str(ref.target))
    else:
        target = arena.get(ref.target) if isinstance(ref.target, int) else None
        title = target.name if target is not None else None

    if title is None:
        return replace(ref, status=RelationStatus.DANGLING, target_title=None)
    return replace(ref, status=RelationStatus.RESOLVED, target_title=title)


def _form_order(ref: RelationRef) -> tuple:
    # Declared positions first, then by identifier; slug targets sort last
    is_int = isinstance(ref.target, int)
    return (
        ref.position is None,
        ref.position if ref.position is not None else 0,
        not is_int,
        ref.target if is_int else 0,
        "" if is_int else str(ref.target),
    )


def _ordered(relations: Iterable[RelationRef]) -> tuple[RelationRef, ...]:
    relations = list(relations)
    forms = sorted(
        (ref for ref in relations if ref.kind is RelationKind.ALTERNATE_FORM),
        key=_form_order,
    )
    others = [ref for ref in relations if ref.kind is not RelationKind.ALTERNATE_FORM]

    # Forms take the slot of the first form the page listed
    if not forms:
        return tuple(others)
    first_form = next(
        i for i, ref in enumerate(relations) if ref.kind is RelationKind.ALTERNATE_FORM
    )
    before = [ref for ref in relations[:first_form] if ref.kind is not RelationKind.ALTERNATE_FORM]
    after = others[len(before):]
    return tuple(before + forms + after)


def _evolution_graph(entries: Iterable[CatalogEntry]) -> dict[int, set[int]]:
    """Resolved evolution edges as ``predecessor -> {successors}``."""
    graph: dict[int, set[int]] = {}
    for entry in entries:
        for ref in entry.relations:
            if not ref.is_resolved:
                continue
            if ref.kind is RelationKind.EVOLUTION_SUCCESSOR:
                graph.setdefault(entry.identifier, set()).add(ref.target)
            elif ref.kind is RelationKind.EVOLUTION_PREDECESSOR:
                graph.setdefault(ref.target, set()).add(entry.identifier)
    return graph


def _canonical_cycle(path: list[int]) -> tuple[int, ...]:
    start = path.index(min(path))
    return tuple(path[start:] + path[:start])


def find_cycles(graph: dict[int, set[int]]) -> list[tuple[int, ...]]:
    """
    Evolution loops in *graph*, found by one depth-first search.

    Each strongly connected group of entries that loops yields at least
    one reported cycle.  An
    edge back onto a node whose search has finished is not followed, so
    when two loops share such a node (``1 -> 2 -> 4 -> 1`` and
    ``1 -> 3 -> 4 -> 1``) only the first one found is listed.  Each cycle
    is rotated to start at its smallest identifier so the same loop found
    from different starting points is reported once.
    """
    found: set[tuple[int, ...]] = set()
    state: dict[int, int] = {}  # 1 = on stack, 2 = done
    stack: list[int] = []

    def visit(node: int) -> None:
        state[node] = 1
        stack.append(node)
        for nxt in sorted(graph.get(node, ())):
            if state.get(nxt) == 1:
                found.add(_canonical_cycle(stack[stack.index(nxt):]))
            elif nxt not in state:
                visit(nxt)
        stack.pop()
        state[node] = 2

    for node in sorted(graph):
        if node not in state:
            visit(node)
    return sorted(found)


def _resolve_mentions(
    entry: CatalogEntry, arena: dict[int, CatalogEntry], report: ResolverReport
) -> tuple[TextBlock, ...]:
    reported: set[Union[int, str]] = set()
    blocks: list[TextBlock] = []
    for block in entry.text_blocks:
        paragraphs = []
        for spans in block.paragraphs:
            resolved_spans = []
            for span in spans:
                if span.link is not None:
                    link = _resolve_ref(span.link, arena)
                    if link.status is RelationStatus.DANGLING and link.target not in reported:
                        reported.add(link.target)
                        report.dangling.append(DanglingRef(entry.identifier, link.kind, link.target))
                    span = replace(span, link=link)
                resolved_spans.append(span)
            paragraphs.append(tuple(resolved_spans))
        blocks.append(replace(block, paragraphs=tuple(paragraphs)))
    return tuple(blocks)


def resolve(entries: Iterable[CatalogEntry]) -> ResolutionResult:
    """
    Resolve every relation and in-text mention of every entry.

    Returns the entries (same order, new records) with each ref marked
    ``resolved`` or ``dangling``, plus a report of the dangling refs and of
    any evolution cycle.  Resolving an already resolved set gives equal
    entries and an equal report.
    """
    entries = list(entries)
    arena: dict[int, CatalogEntry] = {}
    for entry in entries:
        arena.setdefault(entry.identifier, entry)

    report = ResolverReport()
    resolved: list[CatalogEntry] = []
    for entry in entries:
        refs = [_resolve_ref(ref, arena) for ref in entry.relations]
        for ref in refs:
            if ref.status is RelationStatus.DANGLING:
                report.dangling.append(DanglingRef(entry.identifier, ref.kind, ref.target))
        text_blocks = _resolve_mentions(entry, arena, report)
        resolved.append(replace(entry, relations=_ordered(refs), text_blocks=text_blocks))

    report.cycles = find_cycles(_evolution_graph(resolved))

    if report.dangling:
        logger.info("Resolver: %d dangling reference(s)", len(report.dangling))
    for cycle in report.cycles:
        logger.warning("Evolution cycle: %s", " -> ".join(str(i) for i in cycle))

    return ResolutionResult(entries=resolved, report=report)
