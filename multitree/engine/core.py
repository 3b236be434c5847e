"""Core multitree data structures and operations.

The multitree is the union of a default reference taxonomy (NCBI) and any
number of custom trees overlaid on it. Every taxon reference, in whatever
source tree it originates from, resolves to one integer node in this unified
hierarchy.

Domain-agnostic about storage: no SQL here. See ``storage.py`` for the SQLite
adapter and ``persistence.py`` for JSON snapshots.

Thread Safety:
    All operations on TaxonomyCore are protected by an internal RLock. Use
    the batch() context manager to hold the lock across several reads so
    that a computation observes one consistent snapshot:

        with store.batch():
            seed = store.most_recent_common_ancestor(9606, 9598)
            clade = store.get_clade(seed)
"""

import threading
from collections import defaultdict, deque
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

DEFAULT_SOURCE_TREE = "NCBI"
SCIENTIFIC_NAME = "scientific name"

# Sentinel depth for hints whose ancestor path cannot be computed
UNRESOLVED_DEPTH = 999

# Upper bound on hierarchy depth for upward walks
MAX_HIERARCHY_DEPTH = 255


# ========== Errors ==========


class MultitreeError(Exception):
    """Base class for multitree errors."""


class UnresolvableReference(MultitreeError, LookupError):
    """A taxon reference has no identity mapping and no fallback."""

    def __init__(self, source_tree: str, source_node_id: int) -> None:
        self.source_tree = source_tree
        self.source_node_id = source_node_id
        super().__init__(
            f"No multitree node for {source_tree}:{source_node_id} "
            f"(only {DEFAULT_SOURCE_TREE} references fall back to their own id)"
        )


class NoCommonAncestor(MultitreeError, LookupError):
    """Two nodes share no ancestor (disconnected components)."""

    def __init__(self, node_a: int, node_b: int) -> None:
        self.node_a = node_a
        self.node_b = node_b
        super().__init__(f"Nodes {node_a} and {node_b} have no common ancestor")


class HierarchyIntegrityError(MultitreeError, ValueError):
    """The hierarchy is malformed (too deep or cyclic)."""


# ========== Data Types ==========


@dataclass(frozen=True, order=True)
class TaxonRef:
    """A node as reckoned from its source tree.

    Attributes:
        source_tree: Source tree label (e.g., "NCBI", "FCD-12")
        source_node_id: Node id within that tree
    """

    source_tree: str
    source_node_id: int

    def __str__(self) -> str:
        return f"{self.source_tree}:{self.source_node_id}"


@dataclass
class MultitreeNode:
    """A node of the unified hierarchy and its parent edge.

    A root either has no parent (``parent_node_id is None``) or is its own
    parent, like the NCBI root.

    Raises:
        TypeError: If node_id or parent_node_id is not an int
    """

    node_id: int
    parent_node_id: int | None = None
    is_public_path: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.node_id, int) or isinstance(self.node_id, bool):
            raise TypeError(f"node_id must be an int, got: {type(self.node_id).__name__}")
        if self.parent_node_id is not None and (
            not isinstance(self.parent_node_id, int) or isinstance(self.parent_node_id, bool)
        ):
            raise TypeError(
                f"parent_node_id must be an int or None, "
                f"got: {type(self.parent_node_id).__name__}"
            )

    @property
    def is_root(self) -> bool:
        return self.parent_node_id is None or self.parent_node_id == self.node_id


@dataclass
class Identity:
    """Maps a source-tree reference onto a multitree node.

    Pinned identities re-use an existing node (usually from the reference
    taxonomy) instead of introducing a new one.
    """

    source_tree: str
    source_node_id: int
    multitree_node_id: int
    is_pinned_node: bool = False
    is_public_node: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.source_tree, str) or not self.source_tree:
            raise ValueError("Identity source_tree must be a non-empty string")

    @property
    def ref(self) -> TaxonRef:
        return TaxonRef(self.source_tree, self.source_node_id)


@dataclass
class TaxonName:
    """A name attached to a source-tree node."""

    source_tree: str
    source_node_id: int
    name: str = ""
    unique_name: str = ""
    name_class: str = SCIENTIFIC_NAME

    @property
    def ref(self) -> TaxonRef:
        return TaxonRef(self.source_tree, self.source_node_id)


@dataclass
class CustomTree:
    """A user-defined tree overlaid on the reference taxonomy.

    Attributes:
        tree_id: Numeric tree id
        source_tree: Label used in taxon references (e.g., "FCD-12")
        root_node_id: Source node id of the tree's root, the calibrated node
        calibration_id: Calibration this tree describes, if any
        is_public: Whether the tree is visible to searchers
    """

    tree_id: int
    source_tree: str
    root_node_id: int | None = None
    calibration_id: int | None = None
    is_public: bool = False


@dataclass
class Calibration:
    calibration_id: int
    node_name: str = ""
    publication_id: int | None = None
    min_age: float | None = None
    max_age: float | None = None


@dataclass
class Publication:
    publication_id: int
    short_name: str = ""
    full_reference: str = ""


@dataclass(frozen=True)
class AncestorRow:
    """One step of an ancestor path. Depth is 0 for the queried node, negative above it."""

    node_id: int
    parent_node_id: int | None
    depth: int


@dataclass(frozen=True)
class CladeRow:
    """One member of a clade. Depth is 0 for the clade root, positive below it."""

    node_id: int
    parent_node_id: int | None
    depth: int


class TaxonomyCore:
    """In-memory multitree with identity, naming and calibration tables.

    Holds the parent edges of the unified hierarchy with a children index,
    the identity table that maps source-tree references onto multitree
    nodes, names for every source tree, and the custom tree / calibration /
    publication records used to enrich node info.
    """

    def __init__(self, default_source_tree: str = DEFAULT_SOURCE_TREE) -> None:
        self.default_source_tree = default_source_tree
        self._nodes: dict[int, MultitreeNode] = {}
        self._children: dict[int, set[int]] = defaultdict(set)
        self._identities: dict[TaxonRef, Identity] = {}
        # Reverse index: multitree node -> references that resolve to it
        self._refs_by_node: dict[int, set[TaxonRef]] = defaultdict(set)
        self._names: dict[TaxonRef, TaxonName] = {}
        self._trees: dict[int, CustomTree] = {}
        self._trees_by_source: dict[str, int] = {}
        self._calibrations: dict[int, Calibration] = {}
        self._publications: dict[int, Publication] = {}
        self._lock = threading.RLock()

    def __getstate__(self) -> dict[str, Any]:
        """Support for pickle/deepcopy - exclude the lock."""
        state = self.__dict__.copy()
        del state["_lock"]
        return state

    def __setstate__(self, state: dict[str, Any]) -> None:
        """Support for pickle/deepcopy - recreate the lock."""
        self.__dict__.update(state)
        self._lock = threading.RLock()

    # ========== Thread Safety ==========

    @contextmanager
    def batch(self) -> Generator[None, None, None]:
        """Hold the lock for several operations.

        Other threads see either none or all of the changes made inside the
        block, and reads inside the block observe one consistent snapshot.
        This does NOT provide rollback.
        """
        with self._lock:
            yield

    # ========== Node Operations ==========

    def add_node(self, node: MultitreeNode) -> None:
        """Add a node, replacing any existing node with the same id."""
        with self._lock:
            existing = self._nodes.get(node.node_id)
            if existing is not None and existing.parent_node_id is not None:
                self._children[existing.parent_node_id].discard(node.node_id)
                if not self._children[existing.parent_node_id]:
                    del self._children[existing.parent_node_id]
            self._nodes[node.node_id] = node
            if node.parent_node_id is not None and node.parent_node_id != node.node_id:
                self._children[node.parent_node_id].add(node.node_id)

    def get_node(self, node_id: int) -> MultitreeNode | None:
        with self._lock:
            return self._nodes.get(node_id)

    def has_node(self, node_id: int) -> bool:
        with self._lock:
            return node_id in self._nodes

    def get_all_nodes(self) -> list[MultitreeNode]:
        with self._lock:
            return list(self._nodes.values())

    def delete_node(self, node_id: int) -> bool:
        """Delete a node. Returns True if deleted, False if not found.

        Children keep pointing at the deleted id; validate() reports them.
        """
        with self._lock:
            node = self._nodes.pop(node_id, None)
            if node is None:
                return False
            if node.parent_node_id is not None:
                self._children[node.parent_node_id].discard(node_id)
                if not self._children[node.parent_node_id]:
                    del self._children[node.parent_node_id]
            return True

    def parent_of(self, node_id: int) -> int | None:
        """Parent id as stored (a self-parenting root returns itself)."""
        with self._lock:
            node = self._nodes.get(node_id)
            return node.parent_node_id if node else None

    def children_of(self, node_id: int) -> list[int]:
        """Direct children, sorted by id. A self-parenting root is not its own child."""
        with self._lock:
            return sorted(self._children.get(node_id, ()))

    # ========== Identity Resolution ==========

    def add_identity(self, identity: Identity) -> None:
        with self._lock:
            ref = identity.ref
            existing = self._identities.get(ref)
            if existing is not None:
                self._refs_by_node[existing.multitree_node_id].discard(ref)
                if not self._refs_by_node[existing.multitree_node_id]:
                    del self._refs_by_node[existing.multitree_node_id]
            self._identities[ref] = identity
            self._refs_by_node[identity.multitree_node_id].add(ref)

    def get_identity(self, source_tree: str, source_node_id: int) -> Identity | None:
        with self._lock:
            return self._identities.get(TaxonRef(source_tree, source_node_id))

    def resolve_identity(self, source_tree: str, source_node_id: int) -> int:
        """Translate a source-tree reference into its multitree node id.

        Unmapped references in the default reference taxonomy are their own
        multitree id.

        Raises:
            UnresolvableReference: If a custom-tree reference has no mapping
        """
        with self._lock:
            identity = self._identities.get(TaxonRef(source_tree, source_node_id))
            if identity is not None:
                return identity.multitree_node_id
            if source_tree == self.default_source_tree:
                return source_node_id
            raise UnresolvableReference(source_tree, source_node_id)

    def references_for(self, node_id: int) -> list[TaxonRef]:
        """All references that resolve to a multitree node.

        A node with no identity records, or one that custom nodes are pinned
        onto, is also reachable through the implicit default-tree reference
        carrying its own id. Nodes created for a custom tree are not. The
        implicit reference is kept even when an identity record maps it to
        another node, so every known node has at least one reference.
        """
        with self._lock:
            refs = set(self._refs_by_node.get(node_id, ()))
            implicit = TaxonRef(self.default_source_tree, node_id)
            if not refs:
                refs.add(implicit)
            elif implicit not in self._identities and any(
                self._identities[r].is_pinned_node for r in refs
            ):
                refs.add(implicit)
            # default tree first, then by tree label and id
            return sorted(refs, key=lambda r: (r.source_tree != self.default_source_tree, r))

    def preferred_reference(self, node_id: int, source_tree: str | None = None) -> TaxonRef:
        """The node's reference in source_tree when it has one, else its default-tree reference."""
        refs = self.references_for(node_id)
        if source_tree is not None:
            for ref in refs:
                if ref.source_tree == source_tree:
                    return ref
        for ref in refs:
            if ref.source_tree == self.default_source_tree:
                return ref
        return refs[0]

    def identity_for_ref(self, ref: TaxonRef, node_id: int | None = None) -> Identity:
        """Identity record for a reference, synthesizing the implicit default-tree one.

        When node_id is given, a record mapping ref onto a different node is
        ignored and the implicit identity of node_id is returned instead.
        """
        with self._lock:
            identity = self._identities.get(ref)
            if identity is not None and (node_id is None or identity.multitree_node_id == node_id):
                return identity
            if node_id is None:
                node_id = self.resolve_identity(ref.source_tree, ref.source_node_id)
            return Identity(
                source_tree=ref.source_tree,
                source_node_id=ref.source_node_id,
                multitree_node_id=node_id,
            )

    # ========== Names ==========

    def add_name(self, name: TaxonName) -> None:
        """Add a name. For the reference taxonomy only scientific names are kept."""
        with self._lock:
            if name.source_tree == self.default_source_tree and name.name_class != SCIENTIFIC_NAME:
                return
            self._names[name.ref] = name

    def get_name(self, ref: TaxonRef) -> TaxonName | None:
        with self._lock:
            return self._names.get(ref)

    def resolve_unique_name(self, node_id: int, ref: TaxonRef) -> tuple[str, str | None]:
        """Unique display name of a node as seen through one of its references.

        Fallback chain, skipping empty strings:
        custom-tree unique name, custom-tree name, reference-taxonomy unique
        name, reference-taxonomy name, then "{source_tree}:{source_node_id}".
        Custom-tree names only apply when ref is a custom-tree reference.

        Returns:
            Tuple of (unique_name, name_class); name_class is None for the
            synthesized fallback
        """
        with self._lock:
            custom = self._names.get(ref) if ref.source_tree != self.default_source_tree else None
            default_ref = next(
                (r for r in self.references_for(node_id) if r.source_tree == self.default_source_tree),
                None,
            )
            reference = self._names.get(default_ref) if default_ref is not None else None

            if custom is not None:
                if custom.unique_name:
                    return custom.unique_name, custom.name_class
                if custom.name:
                    return custom.name, custom.name_class
            if reference is not None:
                if reference.unique_name:
                    return reference.unique_name, reference.name_class
                if reference.name:
                    return reference.name, reference.name_class
            return str(ref), None

    def lookup_name(self, node_id: int) -> dict[str, Any]:
        """Display names for a multitree node.

        Custom-tree references take precedence over the default-tree one.

        Returns:
            Dict with unique_name, plain_name, name_class and source_tree
        """
        with self._lock:
            refs = self.references_for(node_id)
            ref = next((r for r in refs if r.source_tree != self.default_source_tree), refs[0])
            unique_name, name_class = self.resolve_unique_name(node_id, ref)
            own = self._names.get(ref)
            return {
                "unique_name": unique_name,
                "plain_name": own.name if own else "",
                "name_class": name_class,
                "source_tree": ref.source_tree,
            }

    # ========== Custom Trees, Calibrations, Publications ==========

    def add_custom_tree(self, tree: CustomTree) -> None:
        with self._lock:
            existing = self._trees.get(tree.tree_id)
            if existing is not None:
                self._trees_by_source.pop(existing.source_tree, None)
            self._trees[tree.tree_id] = tree
            self._trees_by_source[tree.source_tree] = tree.tree_id

    def get_custom_tree(self, tree_id: int) -> CustomTree | None:
        with self._lock:
            return self._trees.get(tree_id)

    def get_custom_tree_by_source(self, source_tree: str) -> CustomTree | None:
        with self._lock:
            tree_id = self._trees_by_source.get(source_tree)
            return self._trees.get(tree_id) if tree_id is not None else None

    def add_calibration(self, calibration: Calibration) -> None:
        with self._lock:
            self._calibrations[calibration.calibration_id] = calibration

    def get_calibration(self, calibration_id: int) -> Calibration | None:
        with self._lock:
            return self._calibrations.get(calibration_id)

    def add_publication(self, publication: Publication) -> None:
        with self._lock:
            self._publications[publication.publication_id] = publication

    def get_publication(self, publication_id: int) -> Publication | None:
        with self._lock:
            return self._publications.get(publication_id)

    # ========== Ancestors, MRCA, Clades ==========

    def get_ancestors(self, node_id: int) -> list[AncestorRow]:
        """Root-ward path of a node, the node itself included at depth 0.

        Iterative closure: each pass adds the parent of the nodes found in the
        previous pass and the walk ends when a pass adds nothing. Roots are
        not known in advance; a self-parenting node or a missing parent simply
        contributes no new row. A node already on the path is never added
        again, so cyclic data terminates too.

        Returns:
            Rows ordered from the queried node (depth 0) up to the root
            (most negative depth). Empty if the node is unknown.

        Raises:
            HierarchyIntegrityError: If the path exceeds MAX_HIERARCHY_DEPTH
        """
        with self._lock:
            start = self._nodes.get(node_id)
            if start is None:
                return []

            path: dict[int, AncestorRow] = {
                node_id: AncestorRow(node_id, start.parent_node_id, 0)
            }
            frontier = [start]
            depth = 0
            while frontier:
                depth -= 1
                next_frontier = []
                for current in frontier:
                    parent_id = current.parent_node_id
                    # self-parenting roots are not their own parent for expansion
                    if parent_id is None or parent_id == current.node_id or parent_id in path:
                        continue
                    parent = self._nodes.get(parent_id)
                    if parent is None:
                        continue
                    if -depth > MAX_HIERARCHY_DEPTH:
                        raise HierarchyIntegrityError(
                            f"Ancestor path of node {node_id} exceeds {MAX_HIERARCHY_DEPTH} levels"
                        )
                    path[parent_id] = AncestorRow(parent_id, parent.parent_node_id, depth)
                    next_frontier.append(parent)
                frontier = next_frontier
            return list(path.values())

    def depth_of(self, node_id: int) -> int:
        """Absolute depth of a node (root = 0), or UNRESOLVED_DEPTH if unknown."""
        path = self.get_ancestors(node_id)
        if not path:
            return UNRESOLVED_DEPTH
        return len(path) - 1

    def most_recent_common_ancestor(self, node_a: int, node_b: int) -> int:
        """Deepest node shared by the ancestor paths of node_a and node_b.

        Raises:
            NoCommonAncestor: If the paths are disjoint or either node is unknown
        """
        with self._lock:
            path_a = self.get_ancestors(node_a)
            ids_b = {row.node_id for row in self.get_ancestors(node_b)}
        shared = [row for row in path_a if row.node_id in ids_b]
        if not shared:
            raise NoCommonAncestor(node_a, node_b)
        # depth is relative to node_a on either path, so the max is the closest
        return max(shared, key=lambda row: row.depth).node_id

    def get_clade(self, node_id: int, depth_limit: int | None = None) -> list[CladeRow]:
        """A node and its descendants, breadth-first.

        Args:
            node_id: Clade root
            depth_limit: Deepest relative level to return (0 = root only,
                1 = root and children, None = the full clade)

        Returns:
            Rows ordered by (depth, node_id). Empty if the root is unknown.
        """
        if depth_limit is not None and depth_limit < 0:
            raise ValueError(f"depth_limit must be >= 0 or None, got: {depth_limit}")

        with self._lock:
            root = self._nodes.get(node_id)
            if root is None:
                return []

            rows = [CladeRow(node_id, root.parent_node_id, 0)]
            seen = {node_id}
            level: deque[int] = deque([node_id])
            depth = 0
            while level:
                if depth_limit is not None and depth >= depth_limit:
                    break
                depth += 1
                next_level: deque[int] = deque()
                for parent_id in level:
                    for child_id in sorted(self._children.get(parent_id, ())):
                        if child_id in seen:
                            continue
                        seen.add(child_id)
                        rows.append(CladeRow(child_id, parent_id, depth))
                        next_level.append(child_id)
                level = next_level

            rows.sort(key=lambda row: (row.depth, row.node_id))
            return rows

    # ========== Statistics & Validation ==========

    def stats(self) -> dict[str, Any]:
        """Counts of nodes, roots, identities, pinned identities and names."""
        with self._lock:
            return {
                "num_nodes": len(self._nodes),
                "num_roots": sum(1 for n in self._nodes.values() if n.is_root),
                "num_identities": len(self._identities),
                "num_pinned": sum(1 for i in self._identities.values() if i.is_pinned_node),
                "num_names": len(self._names),
                "num_custom_trees": len(self._trees),
                "num_calibrations": len(self._calibrations),
            }

    def validate(self) -> dict[str, Any]:
        """Check hierarchy integrity.

        Checks for:
        - Nodes whose parent does not exist
        - Identities pointing at missing multitree nodes
        - Parent cycles that never reach a root
        - Custom trees pointing at missing calibrations

        Returns:
            Dict with 'valid' (bool), 'errors' and 'warnings' (lists of str)
        """
        with self._lock:
            errors: list[str] = []
            warnings: list[str] = []

            for node in self._nodes.values():
                if node.is_root:
                    continue
                if node.parent_node_id not in self._nodes:
                    errors.append(
                        f"Node {node.node_id} references non-existent parent {node.parent_node_id}"
                    )

            for ref, identity in self._identities.items():
                if identity.multitree_node_id not in self._nodes:
                    errors.append(
                        f"Identity {ref} references non-existent node {identity.multitree_node_id}"
                    )

            # Detect cycles: follow parents with a visited set per walk
            settled: set[int] = set()
            for node_id in self._nodes:
                trail: list[int] = []
                on_trail: set[int] = set()
                current: int | None = node_id
                while current is not None and current not in settled:
                    if current in on_trail:
                        errors.append(f"Parent cycle through node {current}")
                        break
                    trail.append(current)
                    on_trail.add(current)
                    node = self._nodes.get(current)
                    if node is None or node.is_root:
                        break
                    current = node.parent_node_id
                settled.update(trail)

            for tree in self._trees.values():
                if tree.calibration_id is not None and tree.calibration_id not in self._calibrations:
                    warnings.append(
                        f"Custom tree {tree.tree_id} references unknown calibration "
                        f"{tree.calibration_id}"
                    )

            return {"valid": not errors, "errors": errors, "warnings": warnings}

    # ========== Serialization ==========

    def to_dict(self) -> dict[str, Any]:
        """Export to a plain dict (JSON-compatible)."""
        with self._lock:
            return {
                "default_source_tree": self.default_source_tree,
                "nodes": [
                    {
                        "node_id": n.node_id,
                        "parent_node_id": n.parent_node_id,
                        "is_public_path": n.is_public_path,
                    }
                    for n in self._nodes.values()
                ],
                "identities": [
                    {
                        "source_tree": i.source_tree,
                        "source_node_id": i.source_node_id,
                        "multitree_node_id": i.multitree_node_id,
                        "is_pinned_node": i.is_pinned_node,
                        "is_public_node": i.is_public_node,
                    }
                    for i in self._identities.values()
                ],
                "names": [
                    {
                        "source_tree": n.source_tree,
                        "source_node_id": n.source_node_id,
                        "name": n.name,
                        "unique_name": n.unique_name,
                        "name_class": n.name_class,
                    }
                    for n in self._names.values()
                ],
                "custom_trees": [
                    {
                        "tree_id": t.tree_id,
                        "source_tree": t.source_tree,
                        "root_node_id": t.root_node_id,
                        "calibration_id": t.calibration_id,
                        "is_public": t.is_public,
                    }
                    for t in self._trees.values()
                ],
                "calibrations": [
                    {
                        "calibration_id": c.calibration_id,
                        "node_name": c.node_name,
                        "publication_id": c.publication_id,
                        "min_age": c.min_age,
                        "max_age": c.max_age,
                    }
                    for c in self._calibrations.values()
                ],
                "publications": [
                    {
                        "publication_id": p.publication_id,
                        "short_name": p.short_name,
                        "full_reference": p.full_reference,
                    }
                    for p in self._publications.values()
                ],
            }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaxonomyCore":
        """Import from a plain dict produced by to_dict()."""
        store = cls(default_source_tree=data.get("default_source_tree", DEFAULT_SOURCE_TREE))
        for node_data in data.get("nodes", []):
            store.add_node(
                MultitreeNode(
                    node_id=node_data["node_id"],
                    parent_node_id=node_data.get("parent_node_id"),
                    is_public_path=node_data.get("is_public_path", True),
                )
            )
        for identity_data in data.get("identities", []):
            store.add_identity(Identity(**identity_data))
        for name_data in data.get("names", []):
            store.add_name(TaxonName(**name_data))
        for tree_data in data.get("custom_trees", []):
            store.add_custom_tree(CustomTree(**tree_data))
        for cal_data in data.get("calibrations", []):
            store.add_calibration(Calibration(**cal_data))
        for pub_data in data.get("publications", []):
            store.add_publication(Publication(**pub_data))
        return store
