"""multitree — resolve taxon hints against a multi-source taxonomy into calibration tree descriptions."""

__version__ = "0.1.0"

from multitree.client import Multitree
from multitree.engine.core import (
    HierarchyIntegrityError,
    MultitreeError,
    NoCommonAncestor,
    UnresolvableReference,
)
from multitree.models import (
    AncestorStep,
    CladeMember,
    Hint,
    MultitreeStats,
    NodeInfo,
    TaxonReference,
    TreeDescription,
    TreeDescriptionEntry,
    ValidationResult,
)
from multitree.preview import render_preview

__all__ = [
    "AncestorStep",
    "CladeMember",
    "HierarchyIntegrityError",
    "Hint",
    "Multitree",
    "MultitreeError",
    "MultitreeStats",
    "NoCommonAncestor",
    "NodeInfo",
    "TaxonReference",
    "TreeDescription",
    "TreeDescriptionEntry",
    "UnresolvableReference",
    "ValidationResult",
    "__version__",
    "render_preview",
]
