"""Import of NCBI taxdump files into a TaxonomyCore.

``nodes.dmp`` rows are ``tax_id | parent tax_id | rank | ...`` and
``names.dmp`` rows are ``tax_id | name_txt | unique name | name class``,
fields separated by ``\\t|\\t`` and rows terminated by ``\\t|``. The NCBI
root (tax_id 1) is its own parent.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

from .core import SCIENTIFIC_NAME, MultitreeNode, TaxonName, TaxonomyCore

logger = logging.getLogger(__name__)


def _iter_rows(path: str | Path) -> Iterator[list[str]]:
    with open(path, encoding="utf-8") as f:
        for line_no, line in enumerate(f, start=1):
            line = line.rstrip("\n")
            if not line.strip():
                continue
            if line.endswith("\t|"):
                line = line[:-2]
            fields = [field.strip() for field in line.split("\t|\t")]
            if len(fields) < 2:
                raise ValueError(f"{path}:{line_no}: expected '|'-delimited fields, got {line!r}")
            yield fields


def load_nodes(store: TaxonomyCore, nodes_path: str | Path) -> int:
    """Load parent edges from nodes.dmp. Returns the number of nodes read."""
    count = 0
    with store.batch():
        for fields in _iter_rows(nodes_path):
            store.add_node(MultitreeNode(int(fields[0]), int(fields[1])))
            count += 1
    logger.info("Loaded %d nodes from %s", count, nodes_path)
    return count


def load_names(store: TaxonomyCore, names_path: str | Path) -> int:
    """Load scientific names from names.dmp. Returns the number of names kept."""
    count = 0
    with store.batch():
        for fields in _iter_rows(names_path):
            if len(fields) < 4 or fields[3] != SCIENTIFIC_NAME:
                continue
            store.add_name(
                TaxonName(
                    source_tree=store.default_source_tree,
                    source_node_id=int(fields[0]),
                    name=fields[1],
                    unique_name=fields[2],
                    name_class=fields[3],
                )
            )
            count += 1
    logger.info("Loaded %d scientific names from %s", count, names_path)
    return count


def load_taxdump(
    store: TaxonomyCore, nodes_path: str | Path, names_path: str | Path | None = None
) -> dict[str, int]:
    """Load an NCBI taxdump into the reference taxonomy of a store.

    Returns:
        Dict with the number of nodes and names loaded
    """
    nodes = load_nodes(store, nodes_path)
    names = load_names(store, names_path) if names_path is not None else 0
    return {"nodes": nodes, "names": names}
