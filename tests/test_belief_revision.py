"""Tests for cruxmap/belief_revision.py."""

import logging

import pytest

from cruxmap.belief_revision import (
    DEFAULT_RESISTANCE,
    EPSILON,
    MAX_ITERATIONS,
    analyze_polarity,
    apply_revision,
    compute_priority,
    compute_revision_resistance,
    determine_target_strength,
    modulated_target,
    revise_beliefs,
)
from cruxmap.df_quad import compute_strengths, find_node, root_strength
from cruxmap.schemas import RevisionResistanceResponse, TargetStrengthResponse
from tests.conftest import make_qbaf


@pytest.fixture
def scored_line(line_qbaf):
    return compute_strengths(line_qbaf)


def test_polarity_direct_supporter_is_positive(line_qbaf):
    assert analyze_polarity(line_qbaf, "mid", "root") == "positive"


def test_polarity_attacker_of_supporter_is_negative(line_qbaf):
    assert analyze_polarity(line_qbaf, "leaf", "root") == "negative"


def test_polarity_mixed_paths_is_neutral():
    qbaf = make_qbaf(
        "p",
        [("root", "R", 0.5, 0), ("mid", "M", 0.5, 1), ("x", "X", 0.5, 2)],
        [("mid", "root", "support", 1.0), ("x", "mid", "support", 1.0), ("x", "root", "attack", 1.0)],
    )
    assert analyze_polarity(qbaf, "x", "root") == "neutral"


def test_polarity_without_path_is_neutral():
    qbaf = make_qbaf("p", [("root", "R", 0.5, 0), ("island", "I", 0.5, 1)])
    assert analyze_polarity(qbaf, "island", "root") == "neutral"


def test_priority_decreases_with_depth(line_qbaf):
    assert compute_priority(line_qbaf, "mid") == pytest.approx(0.5)
    assert compute_priority(line_qbaf, "leaf") == pytest.approx(1 / 3)
    assert compute_priority(line_qbaf, "missing") == 0.0


def test_revision_reaches_reachable_target(scored_line):
    result = revise_beliefs(scored_line, 0.605)
    assert abs(result.final_strength - 0.605) < EPSILON
    assert result.iterations < MAX_ITERATIONS
    assert result.total_shift > 0


def test_revision_stops_at_iteration_bound_for_unreachable_target(scored_line):
    # The root cannot drop below its own base score of 0.6 with only a supporter.
    result = revise_beliefs(scored_line, 0.3)
    assert result.iterations == MAX_ITERATIONS
    assert result.final_strength >= 0.6 - 1e-9


@pytest.mark.parametrize("target", [0.0, 0.3, 0.61, 0.62, 0.8, 1.0])
def test_revision_converges_or_exhausts_bound(scored_line, target):
    result = revise_beliefs(scored_line, target)
    assert abs(result.final_strength - target) < EPSILON or result.iterations == MAX_ITERATIONS
    assert result.total_shift >= 0.0


def test_revision_at_target_changes_nothing(scored_line):
    result = revise_beliefs(scored_line, root_strength(scored_line))
    assert result.iterations == 0
    assert result.adjusted_scores == {}
    assert result.total_shift == 0.0


def test_revision_never_adjusts_root(scored_line):
    result = revise_beliefs(scored_line, 0.9)
    assert "root" not in result.adjusted_scores
    assert "root" not in result.polarity_map


def test_revision_keeps_scores_in_unit_interval(scored_line):
    result = revise_beliefs(scored_line, 1.0, max_iterations=500)
    assert all(0.0 <= score <= 1.0 for score in result.adjusted_scores.values())


def test_apply_revision_updates_base_scores_and_strengths(scored_line):
    result = revise_beliefs(scored_line, 0.605)
    revised = apply_revision(scored_line, result)
    for node_id, score in result.adjusted_scores.items():
        assert find_node(revised, node_id).base_score == score
    assert root_strength(revised) == pytest.approx(result.final_strength)


def test_modulated_target_damps_by_resistance():
    assert modulated_target(0.5, 0.6, 0.5) == pytest.approx(0.55)
    assert modulated_target(0.5, 0.6, 1.0) == pytest.approx(0.5)


def test_modulated_target_clamped_to_max_shift():
    assert modulated_target(0.5, 1.0, 0.0) == pytest.approx(0.7)
    assert modulated_target(0.5, 0.0, 0.0) == pytest.approx(0.3)
    assert modulated_target(0.5, 1.0, 0.0, max_shift=0.1) == pytest.approx(0.6)


async def test_determine_target_strength(scripted, sample_prompts_config, scored_line):
    scripted.queue(TargetStrengthResponse, TargetStrengthResponse(target_strength=0.72))
    scripted.queue(RevisionResistanceResponse, RevisionResistanceResponse(resistance=0.5, reasoning="Open to data"))
    assessment = await determine_target_strength(
        scored_line, ["Costs fell"], "alice", "profile", scripted, sample_prompts_config,
    )
    assert assessment.raw_target == pytest.approx(0.72)
    assert assessment.resistance == pytest.approx(0.5)
    assert assessment.target == pytest.approx(0.67)
    assert assessment.reasoning == "Open to data"


async def test_determine_target_strength_failure_holds_position(scripted, sample_prompts_config, scored_line, caplog):
    with caplog.at_level(logging.WARNING):
        assessment = await determine_target_strength(
            scored_line, ["Costs fell"], "alice", "profile", scripted, sample_prompts_config,
        )
    assert assessment.target == pytest.approx(root_strength(scored_line))
    assert assessment.resistance == 1.0
    assert "Target strength unavailable" in caplog.text


async def test_resistance_failure_uses_default(scripted, sample_prompts_config, caplog):
    with caplog.at_level(logging.WARNING):
        resistance, _ = await compute_revision_resistance("profile", ["a"], scripted, sample_prompts_config)
    assert resistance == DEFAULT_RESISTANCE


async def test_resistance_is_clamped(scripted, sample_prompts_config):
    scripted.queue(RevisionResistanceResponse, RevisionResistanceResponse(resistance=1.7))
    resistance, _ = await compute_revision_resistance("profile", ["a"], scripted, sample_prompts_config)
    assert resistance == 1.0
