"""Pydantic models for the multitree public API.

These are thin wrappers over the core engine types (engine.core,
engine.enrichment, engine.builder), providing validation and serialization
for the client-facing API.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator


class TaxonReference(BaseModel):
    """A node as reckoned from one source tree (e.g. ``NCBI:9606``)."""

    source_tree: str
    source_node_id: int

    def __str__(self) -> str:
        return f"{self.source_tree}:{self.source_node_id}"


class Hint(BaseModel):
    """An instruction to include (+) or exclude (-) a taxon for a calibration.

    ``taxon_name`` is the name the administrator entered; it is shown in
    previews but plays no part in matching.
    """

    source_tree: str
    source_node_id: int | None = None
    operator: Literal["+", "-"] = "+"
    taxon_name: str = ""
    side: Literal["A", "B"] = "A"
    display_order: int = 0
    calibration_id: int | None = None

    @field_validator("source_tree", "taxon_name")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


class AncestorStep(BaseModel):
    """One node on an ancestor path; depth 0 is the queried node, negative above."""

    node_id: int
    parent_node_id: int | None
    depth: int


class CladeMember(BaseModel):
    """One node of a clade; depth 0 is the clade root."""

    node_id: int
    parent_node_id: int | None
    depth: int


class NodeInfo(BaseModel):
    """A multitree node enriched with identity, naming and calibration data.

    Pinned nodes produce one NodeInfo per reference.
    """

    multitree_node_id: int
    parent_multitree_node_id: int | None = None
    query_depth: int = 0
    source_tree: str
    source_node_id: int
    is_pinned_node: bool = False
    is_public_node: bool = True
    unique_name: str
    name_class: str | None = None
    tree_id: int | None = None
    calibration_id: int | None = None
    is_calibration_target: bool = False
    publication_desc: str | None = None


class TreeDescriptionEntry(BaseModel):
    """One node included in a calibration's computed tree description."""

    unique_name: str
    entered_name: str | None = None
    depth: int
    source_tree: str
    source_node_id: int
    parent_node_id: int | None = None
    multitree_node_id: int
    is_pinned_node: bool = False
    is_public_node: bool = True
    calibration_id: int | None = None
    is_explicit: bool = False


class SkippedHint(BaseModel):
    """A hint the builder could not use, with the reason."""

    hint: Hint
    reason: str


class TreeDescription(BaseModel):
    """The minimal node set matching a calibration's hints.

    Empty when no usable hints were supplied; ``skipped`` lists the hints
    that were dropped (incomplete or unresolvable).
    """

    entries: list[TreeDescriptionEntry] = Field(default_factory=list)
    seed_node_id: int | None = None
    skipped: list[SkippedHint] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def node_ids(self) -> list[int]:
        return [e.multitree_node_id for e in self.entries]


class ValidationResult(BaseModel):
    """Result of a hierarchy consistency check."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class MultitreeStats(BaseModel):
    """Summary counts for a multitree."""

    node_count: int
    root_count: int
    identity_count: int
    pinned_count: int
    name_count: int
    custom_tree_count: int
    calibration_count: int
