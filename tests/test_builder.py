"""Tests for the tree description builder."""

import pytest

from multitree.engine.builder import Hint, TreeDescriptionBuilder
from multitree.engine.core import HierarchyIntegrityError, NoCommonAncestor
from multitree.engine.enrichment import get_full_node_info


def _hint(node_id, operator="+", name=None, tree="NCBI", **kwargs):
    return Hint(
        source_tree=tree,
        source_node_id=node_id,
        operator=operator,
        matching_name=name if name is not None else f"taxon {node_id}",
        **kwargs,
    )


def _build(mt, hints, **kwargs):
    return TreeDescriptionBuilder(mt.store).build(hints, **kwargs)


def _ids(result):
    return [e.multitree_node_id for e in result.entries]


class TestHint:
    def test_invalid_operator(self):
        with pytest.raises(ValueError, match="operator"):
            Hint("NCBI", 9606, operator="*")

    def test_invalid_side(self):
        with pytest.raises(ValueError, match="definition_side"):
            Hint("NCBI", 9606, definition_side="C")

    def test_completeness(self):
        assert _hint(9606).is_complete
        assert not Hint("NCBI", 9606, matching_name="  ").is_complete
        assert not Hint("", 9606, matching_name="Homo sapiens").is_complete
        assert not Hint("NCBI", None, matching_name="Homo sapiens").is_complete


class TestInclusionOnly:
    def test_human_and_chimp_give_their_mrca(self, primates):
        result = _build(
            primates, [_hint(9606, name="Homo sapiens"), _hint(9598, name="Pan troglodytes")]
        )
        assert result.seed_node_id == 207598
        assert len(result.entries) == 1
        entry = result.entries[0]
        assert entry.multitree_node_id == 207598
        assert entry.unique_name == "Homininae"
        assert entry.is_explicit is False
        assert entry.depth == 3
        assert entry.parent_node_id == 9604
        assert (entry.source_tree, entry.source_node_id) == ("NCBI", 207598)

    def test_single_include(self, primates):
        result = _build(primates, [_hint(9606, name="human")])
        assert _ids(result) == [9606]
        assert result.entries[0].entered_name == "human"
        assert result.entries[0].unique_name == "Homo sapiens"

    def test_calibration_id_taken_from_hints(self, primates):
        result = _build(primates, [_hint(9606, calibration_id=7)])
        assert result.entries[0].calibration_id == 7

    def test_explicit_calibration_id_wins(self, primates):
        result = _build(primates, [_hint(9606, calibration_id=7)], calibration_id=8)
        assert result.entries[0].calibration_id == 8


class TestExclusion:
    def test_genus_excluded_from_family(self, family):
        result = _build(family, [_hint(100, name="Familia"), _hint(103, "-", name="Genus3")])
        assert _ids(result) == [101, 102, 104, 105, 106, 107, 108, 109, 110]
        assert all(e.parent_node_id == 100 for e in result.entries)
        assert all(e.is_explicit is False for e in result.entries)
        assert all(e.depth == 2 for e in result.entries)
        assert 100 not in _ids(result)

    def test_explicit_removal_of_listed_node(self, primates):
        result = _build(primates, [_hint(9606), _hint(9598), _hint(207598, "-")])
        # the seed itself was excluded: removed outright, no siblings promoted
        assert _ids(result) == [9598, 9606]
        assert all(e.is_explicit for e in result.entries)

    def test_promotion_climbs_to_the_covering_entry(self, primates):
        result = _build(primates, [_hint(9604), _hint(9606, "-")])
        # Homo has no other children; Homininae and Hominidae siblings are promoted
        assert _ids(result) == [9599, 9592, 9596]
        assert [e.depth for e in result.entries] == [3, 4, 4]

    def test_excluded_sibling_is_not_promoted(self, primates):
        result = _build(primates, [_hint(207598), _hint(9596, "-"), _hint(9605, "-")])
        assert _ids(result) == [9592]

    def test_reinclude_subclade(self, primates):
        result = _build(primates, [_hint(9604), _hint(207598, "-"), _hint(9606, name="human")])
        assert _ids(result) == [9599, 9606]
        by_id = {e.multitree_node_id: e for e in result.entries}
        assert by_id[9599].is_explicit is False
        assert by_id[9606].is_explicit is True

    def test_uncovered_exclusion_is_ignored(self, primates):
        result = _build(primates, [_hint(9596), _hint(9600, "-")])
        assert _ids(result) == [9596]

    def test_included_node_under_listed_entry_is_skipped(self, primates):
        result = _build(primates, [_hint(9604), _hint(9606), _hint(9600, "-")])
        assert 9606 not in _ids(result)
        assert 207598 in _ids(result)

    def test_walk_limited_by_max_depth(self, primates):
        builder = TreeDescriptionBuilder(primates.store, max_depth=1)
        with pytest.raises(HierarchyIntegrityError):
            builder.build([_hint(9604), _hint(9606, "-")])


class TestNormalization:
    def test_include_wins_in_any_order(self, primates):
        forward = _build(primates, [_hint(9604), _hint(9596, "-"), _hint(9596, "+")])
        backward = _build(primates, [_hint(9596, "+"), _hint(9596, "-"), _hint(9604)])
        assert _ids(forward) == _ids(backward) == [9604]

    def test_duplicates_collapse(self, family):
        once = _build(family, [_hint(100), _hint(103, "-")])
        twice = _build(family, [_hint(100), _hint(103, "-"), _hint(103, "-"), _hint(100)])
        assert once == twice

    def test_idempotent(self, family):
        hints = [_hint(100), _hint(103, "-"), _hint(107, "-")]
        builder = TreeDescriptionBuilder(family.store)
        assert builder.build(hints) == builder.build(hints)

    def test_entered_name_from_first_hint_in_display_order(self, primates):
        result = _build(
            primates,
            [
                _hint(9606, name="man", display_order=2),
                _hint(9606, name="human", display_order=1),
            ],
        )
        assert result.entries[0].entered_name == "human"


class TestSkippedHints:
    def test_empty_input_never_enriches(self, primates):
        calls = []

        def spy(store, node_ids, depths):
            calls.append(list(node_ids))
            return get_full_node_info(store, node_ids, depths)

        result = TreeDescriptionBuilder(primates.store, enrich=spy).build([])
        assert result.entries == []
        assert result.seed_node_id is None
        assert calls == []

    def test_incomplete_hints_are_skipped(self, primates):
        calls = []

        def spy(store, node_ids, depths):
            calls.append(list(node_ids))
            return []

        builder = TreeDescriptionBuilder(primates.store, enrich=spy)
        result = builder.build(
            [Hint("NCBI", 9606, matching_name=""), Hint("NCBI", None, matching_name="x")]
        )
        assert result.entries == []
        assert [s.reason for s in result.skipped] == ["incomplete hint", "incomplete hint"]
        assert calls == []

    def test_enricher_called_once(self, family):
        calls = []

        def spy(store, node_ids, depths):
            calls.append(sorted(node_ids))
            return get_full_node_info(store, node_ids, depths)

        TreeDescriptionBuilder(family.store, enrich=spy).build([_hint(100), _hint(103, "-")])
        assert len(calls) == 1
        assert 103 not in calls[0]

    def test_unresolvable_reference_is_skipped(self, primates):
        result = _build(primates, [_hint(9606), _hint(5, tree="FCD-99", name="mystery")])
        assert _ids(result) == [9606]
        assert len(result.skipped) == 1
        assert result.skipped[0].hint.matching_name == "mystery"
        assert "FCD-99:5" in result.skipped[0].reason

    def test_disconnected_includes_abort(self, primates):
        with pytest.raises(NoCommonAncestor):
            _build(primates, [_hint(9606), _hint(500)])


class TestCustomTrees:
    def test_custom_reference_resolves_through_pin(self, calibrated):
        result = _build(calibrated, [_hint(1, tree="FCD-12", name="Hominidae")])
        entry = result.entries[0]
        assert entry.multitree_node_id == 9604
        assert (entry.source_tree, entry.source_node_id) == ("FCD-12", 1)
        assert entry.unique_name == "Hominidae (crown)"
        assert entry.is_pinned_node is True

    def test_custom_entry_does_not_cover_reference_hints(self, calibrated):
        result = _build(
            calibrated,
            [_hint(1, tree="FCD-12"), _hint(9606), _hint(9600, "-")],
        )
        # the NCBI hint is not covered by the FCD-12 entry above it
        assert 9606 in _ids(result)

    def test_custom_only_node(self, calibrated):
        result = _build(calibrated, [_hint(2, tree="FCD-12", name="stem")])
        entry = result.entries[0]
        assert entry.multitree_node_id == 1000001
        assert entry.unique_name == "Stem hominid"
        assert entry.entered_name == "stem"

    def test_promoted_sibling_whose_default_reference_is_mapped_elsewhere(self, primates):
        primates.identity("NCBI", 9597, 9598)
        result = _build(primates, [_hint(9596), _hint(9598, "-")])
        assert _ids(result) == [9597]
        entry = result.entries[0]
        assert (entry.source_tree, entry.source_node_id) == ("NCBI", 9597)
        assert entry.unique_name == "Pan paniscus"
        assert entry.is_explicit is False
