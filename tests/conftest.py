"""Shared fixtures for multitree tests."""

import pytest

from multitree import Multitree


@pytest.fixture()
def mt():
    """Fresh in-memory Multitree instance."""
    return Multitree()


@pytest.fixture()
def tmp_db_path(tmp_path):
    """Temporary database path with automatic cleanup."""
    return str(tmp_path / "test.db")


def _add_primates(mt: Multitree) -> None:
    taxa = [
        # (node_id, parent, scientific name)
        (1, 1, "root"),
        (9443, 1, "Primates"),
        (9604, 9443, "Hominidae"),
        (207598, 9604, "Homininae"),
        (9605, 207598, "Homo"),
        (9606, 9605, "Homo sapiens"),
        (9596, 207598, "Pan"),
        (9598, 9596, "Pan troglodytes"),
        (9597, 9596, "Pan paniscus"),
        (9592, 207598, "Gorilla"),
        (9593, 9592, "Gorilla gorilla"),
        (9599, 9604, "Pongo"),
        (9600, 9599, "Pongo pygmaeus"),
    ]
    with mt.batch():
        for node_id, parent, name in taxa:
            mt.node(node_id, parent=parent)
            mt.name("NCBI", node_id, name)
        # a second, unconnected root
        mt.node(500, parent=None)
        mt.name("NCBI", 500, "Viruses")


@pytest.fixture()
def primates():
    """In-memory Multitree with a small slice of the NCBI primate taxonomy.

    Hierarchy (NCBI ids, absolute depth in brackets):
        1 root [0] (its own parent)
          9443 Primates [1]
            9604 Hominidae [2]
              207598 Homininae [3]
                9592 Gorilla [4]      -> 9593 Gorilla gorilla [5]
                9596 Pan [4]          -> 9597 Pan paniscus, 9598 Pan troglodytes [5]
                9605 Homo [4]         -> 9606 Homo sapiens [5]
              9599 Pongo [3]          -> 9600 Pongo pygmaeus [4]
        500 Viruses [0] (no parent, disconnected)
    """
    mt = Multitree()
    _add_primates(mt)
    return mt


@pytest.fixture()
def calibrated(primates):
    """Primates plus a custom tree "FCD-12" overlaid on Hominidae.

    FCD-12 nodes:
        1 -> pinned onto 9604 (unique name "Hominidae (crown)"), the calibrated node
        2 -> new multitree node 1000001 under 9604, named "Stem hominid"
        3 -> pinned onto 9596, no custom name
    Calibration 7 cites publication 3 ("Benton 2009").
    """
    mt = primates
    with mt.batch():
        mt.publication(3, short_name="Benton 2009", full_reference="Benton et al. (2009)")
        mt.calibration(7, node_name="Hominidae", publication_id=3, min_age=5.7, max_age=10.0)
        mt.custom_tree(12, "FCD-12", root_node_id=1, calibration_id=7)
        mt.pin("FCD-12", 1, 9604)
        mt.name("FCD-12", 1, "Hominidae", unique_name="Hominidae (crown)")
        mt.node(1000001, parent=9604)
        mt.identity("FCD-12", 2, 1000001)
        mt.name("FCD-12", 2, "Stem hominid")
        mt.pin("FCD-12", 3, 9596)
    return mt


@pytest.fixture()
def family():
    """In-memory Multitree with one family (100) of ten genera (101-110) under root 1."""
    mt = Multitree()
    with mt.batch():
        mt.node(1, parent=1)
        mt.node(100, parent=1)
        mt.name("NCBI", 100, "Familia")
        for genus in range(101, 111):
            mt.node(genus, parent=100)
            mt.name("NCBI", genus, f"Genus{genus - 100}")
    return mt
