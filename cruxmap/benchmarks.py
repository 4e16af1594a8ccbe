"""Scalar metrics over a completed belief-graph experiment. Deterministic, no generator calls."""

import logging
from collections.abc import Mapping, Sequence
from statistics import fmean, pstdev

from cruxmap.df_quad import counterfactual_impact, find_node, root_strength
from cruxmap.models import (
    BenchmarkMetrics,
    CommunityGraph,
    PersonaQBAF,
    RoundSnapshot,
    StructuralCrux,
)

logger = logging.getLogger(__name__)

CONVERGENCE_THRESHOLD = 0.02


def _stdev(values: Sequence[float]) -> float:
    return pstdev(values) if len(values) >= 2 else 0.0


def convergence_round(
    rounds: Sequence[RoundSnapshot],
    persona_ids: Sequence[str],
    threshold: float = CONVERGENCE_THRESHOLD,
) -> int | None:
    """First round whose root strengths all moved less than threshold since the previous one."""
    for prev, curr in zip(rounds, rounds[1:]):
        if all(
            abs(curr.root_strengths.get(pid, 0.0) - prev.root_strengths.get(pid, 0.0)) < threshold
            for pid in persona_ids
        ):
            return curr.round
    return None


def counterfactual_sensitivity(
    final: Mapping[str, PersonaQBAF],
    community: CommunityGraph,
    cruxes: Sequence[StructuralCrux],
) -> float:
    """Largest single-node root impact among the top crux's sources, over every persona."""
    if not cruxes:
        return 0.0
    node = next((n for n in community.nodes if n.id == cruxes[0].node_id), None)
    if node is None:
        return 0.0
    impacts = [
        counterfactual_impact(qbaf, source_id, qbaf.root_claim)
        for qbaf in final.values()
        for source_id in node.merged_from
        if find_node(qbaf, source_id) is not None
    ]
    return max(impacts, default=0.0)


def compute_benchmarks(
    rounds: Sequence[RoundSnapshot],
    community: CommunityGraph,
    cruxes: Sequence[StructuralCrux],
    convergence_threshold: float = CONVERGENCE_THRESHOLD,
) -> BenchmarkMetrics:
    """Derive every metric from the round snapshots and the community artifacts.

    rounds[0] is the post-extraction snapshot and rounds[-1] the final one.
    """
    if not rounds:
        raise ValueError("compute_benchmarks needs at least the initial round snapshot")
    initial, final = rounds[0].qbafs, rounds[-1].qbafs
    persona_ids = list(initial)

    initial_roots = {pid: root_strength(initial[pid]) for pid in persona_ids}
    final_roots = {pid: root_strength(final[pid]) for pid in persona_ids}

    revision_cost = {}
    growth = {}
    for pid in persona_ids:
        spent = sum(r.revision_costs.get(pid, 0.0) for r in rounds)
        final_count = len(final[pid].nodes)
        initial_count = len(initial[pid].nodes)
        revision_cost[pid] = spent / final_count if final_count else 0.0
        growth[pid] = final_count / initial_count if initial_count else 1.0

    average_initial = fmean(len(initial[pid].nodes) for pid in persona_ids) if persona_ids else 0.0
    node_count = len(community.nodes)

    metrics = BenchmarkMetrics(
        root_strength_delta={pid: abs(final_roots[pid] - initial_roots[pid]) for pid in persona_ids},
        stance_divergence=_stdev(list(final_roots.values())) - _stdev(list(initial_roots.values())),
        belief_revision_cost=revision_cost,
        crux_localization_rate=len(community.crux_nodes) / node_count if node_count else 0.0,
        argument_coverage=node_count / (2 * average_initial) if average_initial else 0.0,
        graph_growth_rate=growth,
        counterfactual_sensitivity=counterfactual_sensitivity(final, community, cruxes),
        convergence_round=convergence_round(rounds, persona_ids, convergence_threshold),
    )
    logger.info(
        "Benchmarks: stance divergence %.3f, crux localization %.2f, convergence round %s",
        metrics.stance_divergence, metrics.crux_localization_rate, metrics.convergence_round,
    )
    return metrics
