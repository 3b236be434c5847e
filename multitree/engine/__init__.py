from multitree.engine.builder import Hint, TreeDescriptionBuilder, TreeDescriptionEntry
from multitree.engine.core import (
    AncestorRow,
    Calibration,
    CladeRow,
    CustomTree,
    HierarchyIntegrityError,
    Identity,
    MultitreeError,
    MultitreeNode,
    NoCommonAncestor,
    Publication,
    TaxonName,
    TaxonomyCore,
    TaxonRef,
    UnresolvableReference,
)
from multitree.engine.enrichment import NodeInfoRecord, get_full_node_info
from multitree.engine.persistence import load_store, save_store
from multitree.engine.taxdump import load_taxdump

__all__ = [
    "AncestorRow",
    "Calibration",
    "CladeRow",
    "CustomTree",
    "HierarchyIntegrityError",
    "Hint",
    "Identity",
    "MultitreeError",
    "MultitreeNode",
    "NoCommonAncestor",
    "NodeInfoRecord",
    "Publication",
    "TaxonName",
    "TaxonRef",
    "TaxonomyCore",
    "TreeDescriptionBuilder",
    "TreeDescriptionEntry",
    "UnresolvableReference",
    "get_full_node_info",
    "load_store",
    "load_taxdump",
    "save_store",
]
