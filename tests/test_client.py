"""Tests for the Multitree client API."""

import sqlite3

import pytest
from pydantic import ValidationError

from multitree import (
    Hint,
    Multitree,
    NoCommonAncestor,
    TaxonReference,
    UnresolvableReference,
)
from multitree.engine.storage import SQLiteStorage


class TestIdentity:
    def test_resolve_default_tree(self, primates):
        assert primates.resolve("NCBI", 9606) == 9606

    def test_resolve_pinned(self, calibrated):
        assert calibrated.resolve("FCD-12", 1) == 9604

    def test_resolve_unknown_custom_reference(self, calibrated):
        with pytest.raises(UnresolvableReference):
            calibrated.resolve("FCD-12", 99)

    def test_references(self, calibrated):
        assert calibrated.references(9604) == [
            TaxonReference(source_tree="NCBI", source_node_id=9604),
            TaxonReference(source_tree="FCD-12", source_node_id=1),
        ]
        assert str(calibrated.references(1000001)[0]) == "FCD-12:2"

    def test_lookup_name(self, primates):
        assert primates.lookup_name(9606)["unique_name"] == "Homo sapiens"


class TestStructure:
    def test_parent_and_children(self, primates):
        assert primates.parent_of(9606) == 9605
        assert primates.children_of(9596) == [9597, 9598]

    def test_ancestors(self, primates):
        steps = primates.ancestors(9598)
        assert [s.node_id for s in steps] == [9598, 9596, 207598, 9604, 9443, 1]
        assert steps[0].depth == 0
        assert steps[-1].depth == -5

    def test_ancestors_of_unknown_node(self, primates):
        assert primates.ancestors(424242) == []

    def test_mrca(self, primates):
        assert primates.mrca(9606, 9598) == primates.mrca(9598, 9606) == 207598

    def test_mrca_disconnected(self, primates):
        with pytest.raises(NoCommonAncestor):
            primates.mrca(9606, 500)

    def test_clade(self, primates):
        members = primates.clade(9596)
        assert [(m.node_id, m.depth) for m in members] == [(9596, 0), (9597, 1), (9598, 1)]

    def test_clade_depth_limit(self, primates):
        assert len(primates.clade(9604, depth_limit=1)) == 3
        assert len(primates.clade(9604)) == 11

    def test_node_info(self, calibrated):
        infos = calibrated.node_info([9604])
        assert {i.unique_name for i in infos} == {"Hominidae", "Hominidae (crown)"}


class TestTreeDescription:
    def test_accepts_models_and_dicts(self, primates):
        models = primates.tree_description(
            [
                Hint(source_tree="NCBI", source_node_id=9606, taxon_name="Homo sapiens"),
                Hint(source_tree="NCBI", source_node_id=9598, taxon_name="Pan troglodytes"),
            ]
        )
        dicts = primates.tree_description(
            [
                {"source_tree": "NCBI", "source_node_id": 9606, "taxon_name": "Homo sapiens"},
                {"source_tree": "NCBI", "source_node_id": 9598, "taxon_name": "Pan troglodytes"},
            ]
        )
        assert models == dicts
        assert models.node_ids() == [207598]
        assert models.seed_node_id == 207598

    def test_exclusion(self, family):
        description = family.tree_description(
            [
                Hint(source_tree="NCBI", source_node_id=100, taxon_name="Familia"),
                Hint(source_tree="NCBI", source_node_id=103, operator="-", taxon_name="Genus3"),
            ],
            calibration_id=42,
        )
        assert len(description.entries) == 9
        assert all(e.calibration_id == 42 for e in description.entries)

    def test_empty(self, primates):
        description = primates.tree_description([])
        assert description.is_empty
        assert description.skipped == []

    def test_skipped_hints_round_trip_to_models(self, primates):
        description = primates.tree_description(
            [
                Hint(source_tree="NCBI", source_node_id=9606, taxon_name="Homo sapiens"),
                Hint(source_tree="FCD-99", source_node_id=5, taxon_name="mystery", side="B"),
            ]
        )
        assert description.node_ids() == [9606]
        skipped = description.skipped[0]
        assert skipped.hint.source_tree == "FCD-99"
        assert skipped.hint.side == "B"
        assert skipped.hint.taxon_name == "mystery"

    def test_invalid_operator_rejected(self, primates):
        with pytest.raises(ValidationError):
            primates.tree_description([{"source_tree": "NCBI", "source_node_id": 1, "operator": "x"}])

    def test_names_are_stripped(self):
        hint = Hint(source_tree=" NCBI ", source_node_id=9606, taxon_name="  Homo sapiens ")
        assert hint.source_tree == "NCBI"
        assert hint.taxon_name == "Homo sapiens"


class TestStatsAndValidation:
    def test_stats(self, calibrated):
        s = calibrated.stats()
        assert s.node_count == 15
        assert s.root_count == 2
        assert s.identity_count == 3
        assert s.pinned_count == 2
        assert s.custom_tree_count == 1
        assert s.calibration_count == 1

    def test_validate(self, primates):
        assert primates.validate().valid is True

    def test_validate_reports_errors(self, primates):
        primates.node(42, parent=41)
        result = primates.validate()
        assert result.valid is False
        assert result.errors


class TestPersistence:
    def test_file_backed_round_trip(self, tmp_db_path):
        with Multitree(tmp_db_path) as mt:
            mt.node(1, parent=1)
            mt.node(9606, parent=1)
            mt.name("NCBI", 9606, "Homo sapiens")
            mt.pin("FCD-12", 1, 9606)

        with Multitree(tmp_db_path) as mt:
            assert mt.resolve("FCD-12", 1) == 9606
            assert [s.node_id for s in mt.ancestors(9606)] == [9606, 1]
            assert mt.lookup_name(9606)["unique_name"] == "Homo sapiens"

    def test_auto_save_outside_batch(self, tmp_db_path):
        mt = Multitree(tmp_db_path)
        mt.node(1, parent=1)
        reader = SQLiteStorage(tmp_db_path)
        assert reader.load().has_node(1)
        reader.close()
        mt.close()

    def test_batch_saves_once_at_the_end(self, tmp_db_path):
        mt = Multitree(tmp_db_path)
        with mt.batch():
            mt.node(1, parent=1)
            with mt.batch():
                mt.node(2, parent=1)
            conn = sqlite3.connect(tmp_db_path)
            assert conn.execute("SELECT count(*) FROM multitree").fetchone()[0] == 0
            conn.close()
        conn = sqlite3.connect(tmp_db_path)
        assert conn.execute("SELECT count(*) FROM multitree").fetchone()[0] == 2
        conn.close()
        mt.close()

    def test_to_dict_from_dict(self, calibrated):
        restored = Multitree.from_dict(calibrated.to_dict())
        assert restored.resolve("FCD-12", 1) == 9604
        assert restored.to_dict() == calibrated.to_dict()

    def test_json_export_import(self, calibrated, tmp_path):
        path = tmp_path / "snapshot.json"
        calibrated.export_json(path)
        mt = Multitree()
        mt.import_json(path)
        assert mt.to_dict() == calibrated.to_dict()

    def test_load_taxdump(self, mt, tmp_path):
        nodes = tmp_path / "nodes.dmp"
        nodes.write_text("1\t|\t1\t|\tno rank\t|\n9606\t|\t1\t|\tspecies\t|\n")
        assert mt.load_taxdump(nodes) == {"nodes": 2, "names": 0}
        assert mt.parent_of(9606) == 1
