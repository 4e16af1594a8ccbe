"""Tests for cruxmap/community_graph.py."""

import logging

import pytest

from cruxmap.community_graph import (
    build_community_graph,
    classify_node,
    compare_claims,
    disagreement_type,
    identify_cruxes,
    merge_qbafs,
    rank_cruxes,
)
from cruxmap.df_quad import compute_strengths
from cruxmap.models import ClaimMapping
from cruxmap.schemas import ClaimComparisonResponse, ClaimPairSpec
from tests.conftest import make_qbaf


@pytest.fixture
def pair():
    qbaf_a = compute_strengths(make_qbaf(
        "alice",
        [("a0", "Rent control helps tenants", 0.5, 0), ("a1", "Rents stabilise under control", 0.8, 1)],
        [("a1", "a0", "support", 1.0)],
    ))
    qbaf_b = compute_strengths(make_qbaf(
        "bob",
        [("b0", "Rent control hurts tenants", 0.5, 0), ("b1", "Controlled rents stay stable", 0.2, 1)],
        [("b1", "b0", "attack", 1.0)],
    ))
    return qbaf_a, qbaf_b


def _mapping(a: str, b: str, relationship: str = "opposition", confidence: float = 0.9) -> ClaimMapping:
    return ClaimMapping(node_id_a=a, node_id_b=b, relationship=relationship, confidence=confidence, shared_topic="rent")


def test_identical_claims_merge_into_consensus():
    qbaf_a = make_qbaf("alice", [("a0", "Vaccines are safe", 0.7, 0)])
    qbaf_b = make_qbaf("bob", [("b0", "Vaccines are safe", 0.7, 0)])
    graph = merge_qbafs(qbaf_a, qbaf_b, [_mapping("a0", "b0", "agreement")])
    assert len(graph.nodes) == 1
    node = graph.nodes[0]
    assert node.classification == "consensus"
    assert node.variance == pytest.approx(0.0)
    assert node.community_strength == pytest.approx(0.7)
    assert node.claim == "Vaccines are safe"
    assert graph.consensus_nodes == (node.id,)


def test_opposition_merge_is_crux_with_combined_claim(pair):
    graph = merge_qbafs(*pair, [_mapping("a1", "b1")])
    merged = next(n for n in graph.nodes if len(n.merged_from) == 2)
    assert merged.classification == "crux"
    assert merged.claim == "[rent] Rents stabilise under control vs. Controlled rents stay stable"
    assert merged.base_scores == {"alice": 0.8, "bob": 0.2}
    assert merged.id in graph.crux_nodes


def test_singletons_are_neutral_without_variance(pair):
    graph = merge_qbafs(*pair, [])
    assert len(graph.nodes) == 4
    assert all(n.classification == "neutral" and n.variance is None for n in graph.nodes)


def test_classification_partition(pair):
    graph = merge_qbafs(*pair, [_mapping("a1", "b1", "related"), _mapping("a0", "b0", "agreement", 0.8)])
    for node in graph.nodes:
        assert node.classification in {"consensus", "crux", "neutral"}
        if len(node.merged_from) < 2:
            assert node.classification != "consensus"
    assert set(graph.crux_nodes).isdisjoint(graph.consensus_nodes)


def test_classify_node_thresholds():
    assert classify_node(1, None, None) == "neutral"
    assert classify_node(2, "opposition", 0.0) == "crux"
    assert classify_node(2, "related", 0.16) == "neutral"
    assert classify_node(2, "related", 0.16, crux_threshold=0.1) == "crux"
    assert classify_node(2, "agreement", 0.04) == "consensus"


def test_greedy_matching_uses_each_node_once(pair):
    graph = merge_qbafs(*pair, [
        _mapping("a1", "b0", "related", 0.5),
        _mapping("a1", "b1", "opposition", 0.95),
    ])
    merged = [n for n in graph.nodes if len(n.merged_from) == 2]
    assert len(merged) == 1
    assert merged[0].merged_from == ("a1", "b1")
    assert len(graph.nodes) == 3


def test_edges_are_remapped_and_deduplicated():
    qbaf_a = make_qbaf("alice", [("a0", "X", 0.5, 0), ("a1", "Y", 0.5, 1)], [("a1", "a0", "support", 1.0)])
    qbaf_b = make_qbaf("bob", [("b0", "X", 0.5, 0), ("b1", "Y", 0.5, 1)], [("b1", "b0", "support", 1.0)])
    graph = merge_qbafs(qbaf_a, qbaf_b, [_mapping("a0", "b0", "agreement"), _mapping("a1", "b1", "agreement")])
    assert len(graph.nodes) == 2
    assert len(graph.edges) == 1
    node_ids = {n.id for n in graph.nodes}
    assert graph.edges[0].from_id in node_ids and graph.edges[0].to_id in node_ids


def test_disagreement_type():
    assert disagreement_type(0.09, 0.3) == "both"
    assert disagreement_type(0.01, 0.3) == "edge_structure"
    assert disagreement_type(0.09, 0.0) == "base_score"
    assert disagreement_type(None, 0.0) == "base_score"


def test_rank_cruxes_scores_counterfactual_divergence(pair):
    graph = merge_qbafs(*pair, [_mapping("a1", "b1")])
    cruxes = rank_cruxes(graph, *pair)
    assert len(cruxes) == 1
    crux = cruxes[0]
    # alice: 0.9 -> 0.5 without a1; bob: 0.4 -> 0.5 without b1.
    assert crux.crux_score == pytest.approx(abs(0.4 - 0.1) + 0.1)
    assert crux.disagreement_type == "both"
    assert crux.persona_positions["alice"].contribution == pytest.approx(0.4)
    assert crux.persona_positions["bob"].base_score == pytest.approx(0.2)
    assert "alice" in crux.counterfactual and "bob" in crux.counterfactual


def test_rank_cruxes_respects_top_k(pair):
    graph = merge_qbafs(*pair, [_mapping("a1", "b1"), _mapping("a0", "b0", confidence=0.8)])
    assert len(rank_cruxes(graph, *pair, top_k=1)) == 1
    assert len(rank_cruxes(graph, *pair)) == 2


async def test_compare_claims_maps_indices_and_drops_out_of_range(scripted, sample_prompts_config, pair):
    scripted.queue(ClaimComparisonResponse, ClaimComparisonResponse(mappings=[
        ClaimPairSpec(index_a=1, index_b=1, relationship="opposition", confidence=0.9, shared_topic="rent"),
        ClaimPairSpec(index_a=5, index_b=0, relationship="agreement", confidence=0.7),
    ]))
    mappings = await compare_claims(*pair, scripted, sample_prompts_config)
    assert mappings == [_mapping("a1", "b1")]


async def test_compare_claims_failure_yields_no_merges(scripted, sample_prompts_config, pair, caplog):
    with caplog.at_level(logging.WARNING):
        graph = await build_community_graph(*pair, scripted, sample_prompts_config)
    assert len(graph.nodes) == 4
    assert "Claim comparison failed" in caplog.text


async def test_identify_cruxes_attaches_settling_questions(scripted, sample_prompts_config, pair):
    graph = merge_qbafs(*pair, [_mapping("a1", "b1")])
    scripted.queue_text("Do rents rise faster in controlled cities?")
    cruxes = await identify_cruxes(graph, *pair, scripted, sample_prompts_config)
    assert cruxes[0].settling_question == "Do rents rise faster in controlled cities?"


async def test_identify_cruxes_falls_back_to_template(scripted, sample_prompts_config, pair):
    graph = merge_qbafs(*pair, [_mapping("a1", "b1")])
    cruxes = await identify_cruxes(graph, *pair, scripted, sample_prompts_config)
    assert cruxes[0].settling_question.startswith("What evidence would confirm or refute")
