"""Tests for cruxmap/extract_qbaf.py."""

import logging

import pytest

from cruxmap.df_quad import find_node, root_strength
from cruxmap.extract_qbaf import default_qbaf, extract_qbaf
from cruxmap.schemas import (
    ArgumentsResponse,
    BaseScoresResponse,
    RootClaimResponse,
    StancedClaim,
    SubArgumentsResponse,
)


def _queue_full_extraction(scripted, scores: dict[str, float] | None = None, sub_calls: int = 3):
    scripted.queue(RootClaimResponse, RootClaimResponse(claim="AI will create more jobs than it destroys"))
    scripted.queue(ArgumentsResponse, ArgumentsResponse(arguments=[
        StancedClaim(claim="New industries emerge", type="pro"),
        StancedClaim(claim="Automation is faster this time", type="con"),
        StancedClaim(claim="Productivity gains raise demand", type="pro"),
        StancedClaim(claim="Ignored extra argument", type="pro"),
    ]))
    for i in range(sub_calls):
        scripted.queue(SubArgumentsResponse, SubArgumentsResponse(sub_arguments=[
            StancedClaim(claim=f"Support {i}", type="pro"),
            StancedClaim(claim=f"Objection {i}", type="con"),
            StancedClaim(claim=f"Ignored {i}", type="pro"),
        ]))
    if scores is not None:
        scripted.queue(BaseScoresResponse, BaseScoresResponse(scores=scores))


def test_default_qbaf_is_single_root():
    qbaf = default_qbaf("alice", "Topic")
    assert len(qbaf.nodes) == 1
    assert qbaf.root_claim == "alice-root"
    assert root_strength(qbaf) == 0.5


async def test_extract_builds_depth_two_tree(scripted, sample_prompts_config):
    _queue_full_extraction(scripted, scores={"alice-root": 0.7, "alice-d1-1": 1.5})
    qbaf = await extract_qbaf("alice", "profile", "AI and jobs", scripted, sample_prompts_config)

    assert len(qbaf.nodes) == 10
    assert len(qbaf.edges) == 9
    assert {n.depth for n in qbaf.nodes} == {0, 1, 2}
    assert find_node(qbaf, "alice-d1-1").type == "con"
    edge_types = {e.id: e.type for e in qbaf.edges}
    assert edge_types["alice-d1-1->alice-root"] == "attack"
    assert edge_types["alice-d1-0->alice-root"] == "support"
    assert edge_types["alice-d1-0-d2-1->alice-d1-0"] == "attack"


async def test_extract_applies_clamped_scores_with_default(scripted, sample_prompts_config):
    _queue_full_extraction(scripted, scores={"alice-root": 0.7, "alice-d1-1": 1.5})
    qbaf = await extract_qbaf("alice", "profile", "AI and jobs", scripted, sample_prompts_config)
    assert find_node(qbaf, "alice-root").base_score == 0.7
    assert find_node(qbaf, "alice-d1-1").base_score == 1.0
    assert find_node(qbaf, "alice-d1-0").base_score == 0.5


async def test_extract_runs_df_quad(scripted, sample_prompts_config):
    _queue_full_extraction(scripted, scores={})
    qbaf = await extract_qbaf("alice", "profile", "AI and jobs", scripted, sample_prompts_config)
    # Each depth-1 node has one supporter and one attacker of equal strength, so
    # sigma stays 0.5; the root then sees supports 0.75 against attack 0.5.
    assert find_node(qbaf, "alice-d1-0").dialectical_strength == pytest.approx(0.5)
    assert root_strength(qbaf) == pytest.approx(0.5 + 0.5 * 0.25)


async def test_extract_root_failure_returns_default(scripted, sample_prompts_config, caplog):
    with caplog.at_level(logging.WARNING):
        qbaf = await extract_qbaf("alice", "profile", "AI and jobs", scripted, sample_prompts_config)
    assert len(qbaf.nodes) == 1
    assert root_strength(qbaf) == 0.5
    assert "using default QBAF" in caplog.text


async def test_extract_without_arguments_keeps_root_claim(scripted, sample_prompts_config):
    scripted.queue(RootClaimResponse, RootClaimResponse(claim="A thesis"))
    scripted.queue(ArgumentsResponse, ArgumentsResponse(arguments=[]))
    qbaf = await extract_qbaf("alice", "profile", "AI and jobs", scripted, sample_prompts_config)
    assert len(qbaf.nodes) == 1
    assert qbaf.nodes[0].claim == "A thesis"


async def test_extract_sub_argument_failure_leaves_branch_shallow(scripted, sample_prompts_config):
    _queue_full_extraction(scripted, scores={}, sub_calls=2)
    qbaf = await extract_qbaf("alice", "profile", "AI and jobs", scripted, sample_prompts_config)
    assert len(qbaf.nodes) == 8


async def test_extract_scoring_failure_keeps_defaults(scripted, sample_prompts_config):
    _queue_full_extraction(scripted, scores=None)
    qbaf = await extract_qbaf("alice", "profile", "AI and jobs", scripted, sample_prompts_config)
    assert len(qbaf.nodes) == 10
    assert all(n.base_score == 0.5 for n in qbaf.nodes)
