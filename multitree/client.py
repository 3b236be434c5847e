"""Multitree client — the primary interface for querying a multitree."""

from __future__ import annotations

from collections.abc import Generator, Iterable
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from multitree.engine.builder import Hint as CoreHint
from multitree.engine.builder import TreeDescriptionBuilder, TreeDescriptionResult
from multitree.engine.core import (
    DEFAULT_SOURCE_TREE,
    SCIENTIFIC_NAME,
    Calibration,
    CustomTree,
    Identity,
    MultitreeNode,
    Publication,
    TaxonName,
    TaxonomyCore,
)
from multitree.engine.enrichment import NodeInfoRecord, get_full_node_info
from multitree.engine.persistence import load_store, save_store
from multitree.engine.storage import SQLiteStorage
from multitree.engine.taxdump import load_taxdump
from multitree.models import (
    AncestorStep,
    CladeMember,
    Hint,
    MultitreeStats,
    NodeInfo,
    SkippedHint,
    TaxonReference,
    TreeDescription,
    TreeDescriptionEntry,
    ValidationResult,
)

# --- Conversion helpers: engine core types <-> pydantic models ---


def _model_hint_to_core(hint: Hint) -> CoreHint:
    return CoreHint(
        source_tree=hint.source_tree,
        source_node_id=hint.source_node_id,
        operator=hint.operator,
        matching_name=hint.taxon_name,
        calibration_id=hint.calibration_id,
        definition_side=hint.side,
        display_order=hint.display_order,
    )


def _core_hint_to_model(hint: CoreHint) -> Hint:
    return Hint(
        source_tree=hint.source_tree,
        source_node_id=hint.source_node_id,
        operator=hint.operator,  # type: ignore[arg-type]
        taxon_name=hint.matching_name,
        side=hint.definition_side,  # type: ignore[arg-type]
        display_order=hint.display_order,
        calibration_id=hint.calibration_id,
    )


def _core_info_to_model(record: NodeInfoRecord) -> NodeInfo:
    return NodeInfo(
        multitree_node_id=record.multitree_node_id,
        parent_multitree_node_id=record.parent_multitree_node_id,
        query_depth=record.query_depth,
        source_tree=record.source_tree,
        source_node_id=record.source_node_id,
        is_pinned_node=record.is_pinned_node,
        is_public_node=record.is_public_node,
        unique_name=record.unique_name,
        name_class=record.name_class,
        tree_id=record.tree_id,
        calibration_id=record.calibration_id,
        is_calibration_target=record.is_calibration_target,
        publication_desc=record.publication_desc,
    )


def _core_result_to_model(result: TreeDescriptionResult) -> TreeDescription:
    return TreeDescription(
        entries=[
            TreeDescriptionEntry(
                unique_name=e.unique_name,
                entered_name=e.entered_name,
                depth=e.depth,
                source_tree=e.source_tree,
                source_node_id=e.source_node_id,
                parent_node_id=e.parent_node_id,
                multitree_node_id=e.multitree_node_id,
                is_pinned_node=e.is_pinned_node,
                is_public_node=e.is_public_node,
                calibration_id=e.calibration_id,
                is_explicit=e.is_explicit,
            )
            for e in result.entries
        ],
        seed_node_id=result.seed_node_id,
        skipped=[
            SkippedHint(hint=_core_hint_to_model(s.hint), reason=s.reason) for s in result.skipped
        ],
    )


class Multitree:
    """A multitree client.

    Holds a reference taxonomy and its custom-tree overlays, and answers
    identity, ancestry, clade and tree-description queries over them.

    Constructor patterns:
        - ``Multitree()`` — in-memory, ephemeral
        - ``Multitree("taxa.db")`` — local persistent SQLite file

    Example:
        ```python
        mt = Multitree()
        mt.node(1, parent=1)            # self-parenting root
        mt.node(9606, parent=9605)
        mt.name("NCBI", 9606, "Homo sapiens")

        mt.mrca(9606, 9598)
        mt.tree_description([Hint(source_tree="NCBI", source_node_id=9606,
                                   taxon_name="Homo sapiens")])
        ```
    """

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        default_source_tree: str = DEFAULT_SOURCE_TREE,
    ) -> None:
        self._path = str(path) if path else None
        if self._path:
            self._storage: SQLiteStorage | None = SQLiteStorage(self._path)
            self._store = self._storage.load()
        else:
            self._storage = None
            self._store = TaxonomyCore(default_source_tree=default_source_tree)
        self._batch_depth: int = 0

    @property
    def store(self) -> TaxonomyCore:
        """The underlying engine store."""
        return self._store

    @property
    def default_source_tree(self) -> str:
        return self._store.default_source_tree

    def close(self) -> None:
        """Save pending changes and release the SQLite connection.

        No-op for in-memory instances.
        """
        if self._storage:
            try:
                self._storage.save(self._store)
            finally:
                self._storage.close()
                self._storage = None

    def save(self) -> None:
        """Persist current state to SQLite. No-op for in-memory instances."""
        if self._storage:
            self._storage.save(self._store)

    def _auto_save(self) -> None:
        """Persist to SQLite if file-backed and not inside a batch."""
        if self._storage and self._batch_depth == 0:
            self._storage.save(self._store)

    def __enter__(self) -> Multitree:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @contextmanager
    def batch(self) -> Generator[None, None, None]:
        """Group write operations and save them all at once.

        Batches can nest; only the outermost batch triggers a save. This is
        batched persistence, **not** transaction rollback.

        Example:
            ```python
            with mt.batch():
                for child in range(100, 110):
                    mt.node(child, parent=10)
            ```
        """
        with self._store.batch():
            self._batch_depth += 1
            try:
                yield
            finally:
                self._batch_depth -= 1
                if self._batch_depth == 0:
                    self._auto_save()

    # --- Hierarchy maintenance ---

    def node(self, node_id: int, *, parent: int | None = None, is_public_path: bool = True) -> None:
        """Create or re-parent a multitree node.

        Args:
            node_id: Multitree node id.
            parent: Parent node id. ``None`` or ``node_id`` itself makes a root.
            is_public_path: Whether the edge to the parent is public.
        """
        self._store.add_node(MultitreeNode(node_id, parent, is_public_path))
        self._auto_save()

    def name(
        self,
        source_tree: str,
        source_node_id: int,
        name: str,
        *,
        unique_name: str = "",
        name_class: str = SCIENTIFIC_NAME,
    ) -> None:
        """Attach a name to a source-tree node."""
        self._store.add_name(TaxonName(source_tree, source_node_id, name, unique_name, name_class))
        self._auto_save()

    def identity(
        self,
        source_tree: str,
        source_node_id: int,
        multitree_node_id: int,
        *,
        is_pinned: bool = False,
        is_public: bool = True,
    ) -> None:
        """Map a source-tree reference onto a multitree node."""
        self._store.add_identity(
            Identity(source_tree, source_node_id, multitree_node_id, is_pinned, is_public)
        )
        self._auto_save()

    def pin(
        self, source_tree: str, source_node_id: int, multitree_node_id: int, *, is_public: bool = True
    ) -> None:
        """Pin a custom-tree node onto an existing multitree node."""
        self.identity(
            source_tree, source_node_id, multitree_node_id, is_pinned=True, is_public=is_public
        )

    def custom_tree(
        self,
        tree_id: int,
        source_tree: str,
        *,
        root_node_id: int | None = None,
        calibration_id: int | None = None,
        is_public: bool = False,
    ) -> None:
        """Register a custom tree overlay."""
        self._store.add_custom_tree(
            CustomTree(tree_id, source_tree, root_node_id, calibration_id, is_public)
        )
        self._auto_save()

    def calibration(
        self,
        calibration_id: int,
        *,
        node_name: str = "",
        publication_id: int | None = None,
        min_age: float | None = None,
        max_age: float | None = None,
    ) -> None:
        self._store.add_calibration(
            Calibration(calibration_id, node_name, publication_id, min_age, max_age)
        )
        self._auto_save()

    def publication(self, publication_id: int, *, short_name: str = "", full_reference: str = "") -> None:
        self._store.add_publication(Publication(publication_id, short_name, full_reference))
        self._auto_save()

    # --- Identity ---

    def resolve(self, source_tree: str, source_node_id: int) -> int:
        """Multitree node id for a source-tree reference.

        Raises:
            UnresolvableReference: If a custom-tree reference has no mapping.
        """
        return self._store.resolve_identity(source_tree, source_node_id)

    def references(self, node_id: int) -> list[TaxonReference]:
        """All source-tree references for a multitree node (several if pinned)."""
        return [
            TaxonReference(source_tree=r.source_tree, source_node_id=r.source_node_id)
            for r in self._store.references_for(node_id)
        ]

    def lookup_name(self, node_id: int) -> dict[str, Any]:
        return self._store.lookup_name(node_id)

    # --- Structure ---

    def parent_of(self, node_id: int) -> int | None:
        return self._store.parent_of(node_id)

    def children_of(self, node_id: int) -> list[int]:
        return self._store.children_of(node_id)

    def ancestors(self, node_id: int) -> list[AncestorStep]:
        """Root-ward path of a node; the node itself is at depth 0.

        Returns:
            Steps from the node up to its root. Empty if the node is unknown.
        """
        return [
            AncestorStep(node_id=r.node_id, parent_node_id=r.parent_node_id, depth=r.depth)
            for r in self._store.get_ancestors(node_id)
        ]

    def mrca(self, node_a: int, node_b: int) -> int:
        """Most recent common ancestor of two multitree nodes.

        Raises:
            NoCommonAncestor: If the nodes are in disconnected components.
        """
        return self._store.most_recent_common_ancestor(node_a, node_b)

    def clade(self, node_id: int, *, depth_limit: int | None = None) -> list[CladeMember]:
        """A node and its descendants, ordered by depth then node id.

        Args:
            node_id: Clade root.
            depth_limit: Deepest level to return (0 = the root only, 1 = the root and its children).
        """
        return [
            CladeMember(node_id=r.node_id, parent_node_id=r.parent_node_id, depth=r.depth)
            for r in self._store.get_clade(node_id, depth_limit)
        ]

    def node_info(self, node_ids: Iterable[int]) -> list[NodeInfo]:
        """Enrich multitree node ids with names, identity and calibration data."""
        return [_core_info_to_model(r) for r in get_full_node_info(self._store, node_ids)]

    # --- Tree descriptions ---

    def tree_description(
        self, hints: Iterable[Hint | dict[str, Any]], *, calibration_id: int | None = None
    ) -> TreeDescription:
        """Compute the tree description for a calibration's hints.

        Args:
            hints: Hints from both sides of the node definition, as ``Hint``
                models or plain dicts.
            calibration_id: Calibration to attribute entries to.

        Returns:
            The included nodes; empty when no usable hints were given.

        Raises:
            NoCommonAncestor: If included taxa are in disconnected components.
        """
        core_hints = [
            _model_hint_to_core(h if isinstance(h, Hint) else Hint.model_validate(h)) for h in hints
        ]
        result = TreeDescriptionBuilder(self._store).build(core_hints, calibration_id)
        return _core_result_to_model(result)

    # --- Import / export ---

    def to_dict(self) -> dict[str, Any]:
        return self._store.to_dict()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Multitree:
        """Build a new in-memory Multitree from a ``to_dict()`` snapshot."""
        mt = cls()
        mt._store = TaxonomyCore.from_dict(data)
        return mt

    def export_json(self, path: str | Path) -> None:
        """Write the multitree to a JSON snapshot."""
        save_store(self._store, str(path))

    def import_json(self, path: str | Path) -> None:
        """Replace the multitree with the contents of a JSON snapshot."""
        self._store = load_store(str(path))
        self._auto_save()

    def load_taxdump(self, nodes_path: str | Path, names_path: str | Path | None = None) -> dict[str, int]:
        """Load NCBI ``nodes.dmp`` (and optionally ``names.dmp``) into the reference taxonomy."""
        with self.batch():
            return load_taxdump(self._store, nodes_path, names_path)

    # --- Stats ---

    def stats(self) -> MultitreeStats:
        s = self._store.stats()
        return MultitreeStats(
            node_count=s["num_nodes"],
            root_count=s["num_roots"],
            identity_count=s["num_identities"],
            pinned_count=s["num_pinned"],
            name_count=s["num_names"],
            custom_tree_count=s["num_custom_trees"],
            calibration_count=s["num_calibrations"],
        )

    def validate(self) -> ValidationResult:
        """Check the hierarchy for internal consistency."""
        result = self._store.validate()
        return ValidationResult(
            valid=result["valid"],
            errors=result.get("errors", []),
            warnings=result.get("warnings", []),
        )
