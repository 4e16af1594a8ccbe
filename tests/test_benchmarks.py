"""Tests for cruxmap/benchmarks.py."""

import pytest

from cruxmap.benchmarks import compute_benchmarks, convergence_round
from cruxmap.community_graph import merge_qbafs, rank_cruxes
from cruxmap.df_quad import compute_strengths, root_strength
from cruxmap.models import ClaimMapping, RoundSnapshot
from tests.conftest import make_qbaf


def _snapshot(round_number, qbafs, costs):
    return RoundSnapshot(
        round=round_number,
        qbafs=qbafs,
        root_strengths={pid: root_strength(q) for pid, q in qbafs.items()},
        revision_costs=costs,
    )


@pytest.fixture
def experiment_rounds():
    initial = {
        "alice": make_qbaf("alice", [("a0", "Thesis A", 0.5, 0)]),
        "bob": make_qbaf("bob", [("b0", "Thesis B", 0.5, 0)]),
    }
    final = {
        "alice": compute_strengths(make_qbaf(
            "alice", [("a0", "Thesis A", 0.5, 0), ("a1", "Backing A", 0.4, 1)], [("a1", "a0", "support", 1.0)],
        )),
        "bob": compute_strengths(make_qbaf(
            "bob", [("b0", "Thesis B", 0.5, 0), ("b1", "Objection B", 0.6, 1)], [("b1", "b0", "attack", 1.0)],
        )),
    }
    return [
        _snapshot(0, initial, {"alice": 0.0, "bob": 0.0}),
        _snapshot(1, final, {"alice": 0.1, "bob": 0.4}),
    ]


@pytest.fixture
def community(experiment_rounds):
    final = experiment_rounds[-1].qbafs
    mapping = ClaimMapping(node_id_a="a1", node_id_b="b1", relationship="opposition", confidence=0.9)
    graph = merge_qbafs(final["alice"], final["bob"], [mapping])
    return graph, rank_cruxes(graph, final["alice"], final["bob"])


def test_root_strength_delta_and_stance_divergence(experiment_rounds, community):
    metrics = compute_benchmarks(experiment_rounds, *community)
    # alice 0.5 -> 0.7, bob 0.5 -> 0.2
    assert metrics.root_strength_delta["alice"] == pytest.approx(0.2)
    assert metrics.root_strength_delta["bob"] == pytest.approx(0.3)
    assert metrics.stance_divergence == pytest.approx(0.25)


def test_revision_cost_and_growth_are_per_final_node(experiment_rounds, community):
    metrics = compute_benchmarks(experiment_rounds, *community)
    assert metrics.belief_revision_cost["alice"] == pytest.approx(0.05)
    assert metrics.belief_revision_cost["bob"] == pytest.approx(0.2)
    assert metrics.graph_growth_rate == {"alice": 2.0, "bob": 2.0}


def test_community_rates(experiment_rounds, community):
    metrics = compute_benchmarks(experiment_rounds, *community)
    assert metrics.crux_localization_rate == pytest.approx(1 / 3)
    assert metrics.argument_coverage == pytest.approx(1.5)


def test_counterfactual_sensitivity_uses_top_crux(experiment_rounds, community):
    metrics = compute_benchmarks(experiment_rounds, *community)
    assert metrics.counterfactual_sensitivity == pytest.approx(0.3)


def test_counterfactual_sensitivity_without_cruxes(experiment_rounds, community):
    metrics = compute_benchmarks(experiment_rounds, community[0], [])
    assert metrics.counterfactual_sensitivity == 0.0


def test_convergence_round_none_when_still_moving(experiment_rounds, community):
    assert compute_benchmarks(experiment_rounds, *community).convergence_round is None


def test_convergence_round_found(experiment_rounds):
    settled = _snapshot(2, experiment_rounds[-1].qbafs, {"alice": 0.0, "bob": 0.0})
    rounds = [*experiment_rounds, settled]
    assert convergence_round(rounds, ["alice", "bob"]) == 2


def test_single_snapshot_has_zero_deltas(experiment_rounds, community):
    metrics = compute_benchmarks(experiment_rounds[:1], *community)
    assert metrics.root_strength_delta == {"alice": 0.0, "bob": 0.0}
    assert metrics.stance_divergence == 0.0
    assert metrics.convergence_round is None


def test_compute_benchmarks_requires_rounds(community):
    with pytest.raises(ValueError):
        compute_benchmarks([], *community)
