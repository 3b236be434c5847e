"""Node info enrichment.

Attaches identity, naming and calibration details to bare multitree node ids,
the way query results are presented to callers. A pinned node yields one
record per reference, so the same multitree id can appear more than once.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from multitree.engine.core import TaxonomyCore, TaxonRef


@dataclass
class NodeInfoRecord:
    """Full info for one (multitree node, reference) pair."""

    multitree_node_id: int
    parent_multitree_node_id: int | None
    query_depth: int
    source_tree: str
    source_node_id: int
    is_pinned_node: bool
    is_public_node: bool
    unique_name: str
    name_class: str | None = None
    tree_id: int | None = None
    calibration_id: int | None = None
    is_calibration_target: bool = False
    publication_desc: str | None = None

    @property
    def ref(self) -> TaxonRef:
        return TaxonRef(self.source_tree, self.source_node_id)


def get_full_node_info(
    store: TaxonomyCore,
    node_ids: Iterable[int],
    depths: Mapping[int, int] | None = None,
) -> list[NodeInfoRecord]:
    """Enrich multitree node ids with names, identity and calibration data.

    Args:
        store: The multitree to read from
        node_ids: Multitree node ids; duplicates are reported once
        depths: Optional query depth per node id (e.g. from a clade or
            ancestor query); missing ids get depth 0

    Returns:
        Records ordered by query depth, then by input order
    """
    depths = depths or {}
    records: list[NodeInfoRecord] = []
    with store.batch():
        seen: set[int] = set()
        for node_id in node_ids:
            if node_id in seen:
                continue
            seen.add(node_id)
            for ref in store.references_for(node_id):
                records.append(_build_record(store, node_id, ref, depths.get(node_id, 0)))
    records.sort(key=lambda r: r.query_depth)
    return records


def _build_record(store: TaxonomyCore, node_id: int, ref: TaxonRef, depth: int) -> NodeInfoRecord:
    identity = store.identity_for_ref(ref, node_id)
    unique_name, name_class = store.resolve_unique_name(node_id, ref)
    record = NodeInfoRecord(
        multitree_node_id=node_id,
        parent_multitree_node_id=store.parent_of(node_id),
        query_depth=depth,
        source_tree=ref.source_tree,
        source_node_id=ref.source_node_id,
        is_pinned_node=identity.is_pinned_node,
        is_public_node=identity.is_public_node,
        unique_name=unique_name,
        name_class=name_class,
    )

    tree = store.get_custom_tree_by_source(ref.source_tree)
    if tree is not None:
        record.tree_id = tree.tree_id
        record.calibration_id = tree.calibration_id
        record.is_calibration_target = tree.root_node_id == ref.source_node_id
        calibration = (
            store.get_calibration(tree.calibration_id) if tree.calibration_id is not None else None
        )
        if calibration is not None and calibration.publication_id is not None:
            publication = store.get_publication(calibration.publication_id)
            if publication is not None:
                record.publication_desc = publication.short_name
    return record
