"""Tree description builder.

Turns a calibration's include (+) / exclude (-) hints into the minimal set of
multitree nodes whose clades together match the hints:

1. Resolve and deduplicate hints; a node hinted both ways is included.
2. Order hints root to leaf by the depth of their node.
3. Seed the description with the MRCA of every included reference-taxonomy
   node.
4. Walk the hints again: add included nodes not yet covered, and prune
   excluded nodes by promoting their siblings one level at a time until the
   walk reaches an entry that was providing the coverage.

All scratch state lives in a per-call _BuildState, so one builder can serve
concurrent requests over the same store.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field

from multitree.engine.core import (
    MAX_HIERARCHY_DEPTH,
    UNRESOLVED_DEPTH,
    HierarchyIntegrityError,
    TaxonomyCore,
    TaxonRef,
    UnresolvableReference,
)
from multitree.engine.enrichment import NodeInfoRecord, get_full_node_info

logger = logging.getLogger(__name__)

INCLUDE = "+"
EXCLUDE = "-"

EnrichFn = Callable[[TaxonomyCore, Iterable[int], Mapping[int, int]], list[NodeInfoRecord]]


@dataclass
class Hint:
    """A user instruction to include or exclude a taxon for a calibration.

    Raises:
        ValueError: If operator is not "+"/"-" or definition_side is not "A"/"B"
    """

    source_tree: str
    source_node_id: int | None
    operator: str = INCLUDE
    matching_name: str = ""
    calibration_id: int | None = None
    definition_side: str = "A"
    display_order: int = 0

    def __post_init__(self) -> None:
        if self.operator not in (INCLUDE, EXCLUDE):
            raise ValueError(f"Hint operator must be '+' or '-', got: {self.operator!r}")
        if self.definition_side not in ("A", "B"):
            raise ValueError(
                f"Hint definition_side must be 'A' or 'B', got: {self.definition_side!r}"
            )

    @property
    def is_complete(self) -> bool:
        return bool(
            (self.matching_name or "").strip()
            and (self.source_tree or "").strip()
            and self.source_node_id is not None
        )


@dataclass
class SkippedHint:
    hint: Hint
    reason: str


@dataclass
class TreeDescriptionEntry:
    """One node included in a computed tree description."""

    unique_name: str
    entered_name: str | None
    depth: int
    source_tree: str
    source_node_id: int
    parent_node_id: int | None
    multitree_node_id: int
    is_pinned_node: bool
    is_public_node: bool
    calibration_id: int | None
    is_explicit: bool

    @property
    def ref(self) -> TaxonRef:
        return TaxonRef(self.source_tree, self.source_node_id)


@dataclass
class TreeDescriptionResult:
    entries: list[TreeDescriptionEntry] = field(default_factory=list)
    seed_node_id: int | None = None
    skipped: list[SkippedHint] = field(default_factory=list)


@dataclass
class _NormalizedHint:
    node_id: int
    ref: TaxonRef
    operator: str
    matching_name: str
    depth: int = UNRESOLVED_DEPTH


@dataclass
class _Listed:
    node_id: int
    ref: TaxonRef
    is_explicit: bool


@dataclass
class _BuildState:
    hints: list[_NormalizedHint]
    excluded: set[int]
    entered_names: dict[int, str]
    listed: dict[int, _Listed] = field(default_factory=dict)
    seed_node_id: int | None = None


class TreeDescriptionBuilder:
    """Builds tree descriptions from hints against one TaxonomyCore.

    Args:
        store: The multitree to read from
        enrich: Node info enricher, called once per non-empty build
        max_depth: Cap on the number of levels an exclusion walk may climb
    """

    def __init__(
        self,
        store: TaxonomyCore,
        *,
        enrich: EnrichFn = get_full_node_info,
        max_depth: int = MAX_HIERARCHY_DEPTH,
    ) -> None:
        self.store = store
        self._enrich = enrich
        self.max_depth = max_depth

    def build(
        self, hints: Iterable[Hint], calibration_id: int | None = None
    ) -> TreeDescriptionResult:
        """Compute the tree description for a calibration's hints (both sides combined).

        Args:
            hints: Hints in any order
            calibration_id: Calibration to attribute entries to; defaults to
                the first calibration id found on the hints

        Returns:
            The description, its seed node and any skipped hints

        Raises:
            NoCommonAncestor: If included reference-taxonomy nodes lie in
                disconnected components
        """
        hints = list(hints)
        if calibration_id is None:
            calibration_id = next(
                (h.calibration_id for h in hints if h.calibration_id is not None), None
            )

        with self.store.batch():
            skipped: list[SkippedHint] = []
            normalized = self._normalize(hints, skipped)
            if not normalized:
                logger.debug("No usable hints; tree description is empty")
                return TreeDescriptionResult(skipped=skipped)

            state = _BuildState(
                hints=normalized,
                excluded={h.node_id for h in normalized if h.operator == EXCLUDE},
                entered_names={h.node_id: h.matching_name for h in normalized},
            )
            self._seed(state)

            if not state.excluded:
                logger.debug("No excluded taxa; finishing with seed %s", state.seed_node_id)
            else:
                for hint in state.hints:
                    if hint.operator == INCLUDE:
                        self._include(state, hint)
                    else:
                        self._apply_exclusion(state, hint)

            entries = self._describe(state, calibration_id)
            return TreeDescriptionResult(
                entries=entries, seed_node_id=state.seed_node_id, skipped=skipped
            )

    # ========== Normalization ==========

    def _normalize(self, hints: list[Hint], skipped: list[SkippedHint]) -> list[_NormalizedHint]:
        """Resolve hints, collapse duplicates per node and sort root to leaf."""
        by_node: dict[int, list[tuple[Hint, TaxonRef]]] = {}
        for hint in sorted(hints, key=lambda h: (h.definition_side, h.display_order)):
            if not hint.is_complete:
                logger.warning("Skipping incomplete hint %r", hint)
                skipped.append(SkippedHint(hint, "incomplete hint"))
                continue
            assert hint.source_node_id is not None
            try:
                node_id = self.store.resolve_identity(hint.source_tree, hint.source_node_id)
            except UnresolvableReference as exc:
                logger.warning("Skipping hint %r: %s", hint.matching_name, exc)
                skipped.append(SkippedHint(hint, str(exc)))
                continue
            ref = TaxonRef(hint.source_tree, hint.source_node_id)
            by_node.setdefault(node_id, []).append((hint, ref))

        normalized = []
        for node_id, group in by_node.items():
            # include wins over exclude, whatever the order of the hints
            operator = INCLUDE if any(h.operator == INCLUDE for h, _ in group) else EXCLUDE
            hint, ref = next((h, r) for h, r in group if h.operator == operator)
            path = self.store.get_ancestors(node_id)
            normalized.append(
                _NormalizedHint(
                    node_id=node_id,
                    ref=ref,
                    operator=operator,
                    matching_name=hint.matching_name,
                    depth=len(path) if path else UNRESOLVED_DEPTH,
                )
            )

        normalized.sort(key=lambda h: (h.depth, h.node_id))
        return normalized

    # ========== Seed ==========

    def _seed(self, state: _BuildState) -> None:
        """List the MRCA of all included reference-taxonomy hints as the first entry."""
        first, *rest = state.hints
        seed_id = first.node_id
        for hint in rest:
            if hint.operator == INCLUDE and hint.ref.source_tree == self.store.default_source_tree:
                seed_id = self.store.most_recent_common_ancestor(seed_id, hint.node_id)
        logger.debug("Seed node for %d hints: %s", len(state.hints), seed_id)

        seed_ref = (
            first.ref
            if seed_id == first.node_id
            else self.store.preferred_reference(seed_id, first.ref.source_tree)
        )
        state.seed_node_id = seed_id
        state.listed[seed_id] = _Listed(seed_id, seed_ref, is_explicit=False)

    # ========== Inclusion / Exclusion ==========

    def _is_covered(self, state: _BuildState, node_id: int, source_tree: str) -> bool:
        """True if the node or one of its ancestors is listed from the same source tree."""
        path_ids = {row.node_id for row in self.store.get_ancestors(node_id)}
        return any(
            listed.node_id in path_ids and listed.ref.source_tree == source_tree
            for listed in state.listed.values()
        )

    def _include(self, state: _BuildState, hint: _NormalizedHint) -> None:
        if hint.node_id in state.listed:
            return
        if self._is_covered(state, hint.node_id, hint.ref.source_tree):
            return
        logger.debug("Including node %s (%s)", hint.node_id, hint.ref)
        state.listed[hint.node_id] = _Listed(hint.node_id, hint.ref, is_explicit=True)

    def _apply_exclusion(self, state: _BuildState, hint: _NormalizedHint) -> None:
        if not self._is_covered(state, hint.node_id, hint.ref.source_tree):
            logger.debug("Node %s is not covered; nothing to exclude", hint.node_id)
            return
        self._exclude(state, hint.node_id, hint.ref.source_tree)

    def _exclude(self, state: _BuildState, node_id: int, source_tree: str) -> None:
        """Prune a node, promoting siblings while walking up to the covering entry.

        A listed node is simply removed. A node covered only through an
        ancestor is replaced by its siblings (minus excluded ones) and the
        walk continues with its parent, which is where the coverage came
        from. The walk never climbs past the seed.

        Raises:
            HierarchyIntegrityError: If the walk exceeds max_depth levels
        """
        current = node_id
        for _ in range(self.max_depth + 1):
            if current in state.listed:
                logger.debug("Removing listed node %s", current)
                del state.listed[current]
                return
            if current == state.seed_node_id:
                return
            parent_id = self.store.parent_of(current)
            if parent_id is None or parent_id == current:
                logger.debug("Exclusion walk reached root %s", current)
                return

            promoted = 0
            for sibling_id in self.store.children_of(parent_id):
                if sibling_id == current or sibling_id in state.excluded:
                    continue
                if sibling_id not in state.listed:
                    state.listed[sibling_id] = _Listed(
                        sibling_id,
                        self.store.preferred_reference(sibling_id, source_tree),
                        is_explicit=False,
                    )
                    promoted += 1
            logger.debug("Excluded %s; promoted %d sibling(s) under %s", current, promoted, parent_id)
            current = parent_id

        raise HierarchyIntegrityError(
            f"Exclusion of node {node_id} climbed more than {self.max_depth} levels"
        )

    # ========== Output ==========

    def _describe(self, state: _BuildState, calibration_id: int | None) -> list[TreeDescriptionEntry]:
        """Enrich listed nodes and order them by their path from the root."""
        paths = {
            node_id: tuple(row.node_id for row in reversed(self.store.get_ancestors(node_id)))
            for node_id in state.listed
        }
        depths = {node_id: max(len(path) - 1, 0) for node_id, path in paths.items()}

        records: dict[int, list[NodeInfoRecord]] = {}
        for record in self._enrich(self.store, list(state.listed), depths):
            records.setdefault(record.multitree_node_id, []).append(record)

        entries = []
        for node_id in sorted(state.listed, key=lambda n: paths[n] or (n,)):
            listed = state.listed[node_id]
            candidates = records.get(node_id, [])
            record = next((r for r in candidates if r.ref == listed.ref), None)
            if record is None and candidates:
                record = candidates[0]
            entries.append(
                TreeDescriptionEntry(
                    unique_name=record.unique_name if record else str(listed.ref),
                    entered_name=state.entered_names.get(node_id),
                    depth=depths[node_id],
                    source_tree=listed.ref.source_tree,
                    source_node_id=listed.ref.source_node_id,
                    parent_node_id=self.store.parent_of(node_id),
                    multitree_node_id=node_id,
                    is_pinned_node=record.is_pinned_node if record else False,
                    is_public_node=record.is_public_node if record else True,
                    calibration_id=calibration_id,
                    is_explicit=listed.is_explicit,
                )
            )
        return entries
