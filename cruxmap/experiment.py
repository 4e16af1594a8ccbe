"""Belief-graph experiment: extract two QBAFs, debate for N rounds, then map the cruxes."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from config.config_loader import BeliefGraphConfig, PromptsConfig
from cruxmap.belief_revision import apply_revision, determine_target_strength, revise_beliefs
from cruxmap.benchmarks import compute_benchmarks
from cruxmap.community_graph import build_community_graph, identify_cruxes
from cruxmap.debate_round import run_debate_round
from cruxmap.df_quad import root_strength
from cruxmap.engine import persona_system_prompt
from cruxmap.extract_qbaf import extract_qbaf
from cruxmap.generation import TextGenerator
from cruxmap.models import (
    EngineEvent,
    ExperimentConfig,
    ExperimentResult,
    PersonaQBAF,
    RoundSnapshot,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Revision:
    qbaf: PersonaQBAF
    cost: float
    resistance: float
    reasoning: str


def _received_claims(before: PersonaQBAF, after: PersonaQBAF) -> list[str]:
    """Claims the opponent added to this graph during the round just played."""
    known = {n.id for n in before.nodes}
    return [n.claim for n in after.nodes if n.id not in known and n.persona_id != after.persona_id]


async def _revise(
    qbaf: PersonaQBAF,
    received: list[str],
    profile: str,
    generator: TextGenerator,
    prompts: PromptsConfig,
    settings: BeliefGraphConfig,
) -> _Revision:
    if not received:
        return _Revision(qbaf, 0.0, 0.0, "No attacks received")
    assessment = await determine_target_strength(
        qbaf, received, qbaf.persona_id, profile, generator, prompts, settings.max_shift_per_round,
    )
    revision = revise_beliefs(
        qbaf,
        assessment.target,
        epsilon=settings.revision_epsilon,
        max_iterations=settings.revision_max_iterations,
        step_size=settings.revision_step_size,
    )
    return _Revision(apply_revision(qbaf, revision), revision.total_shift, assessment.resistance, assessment.reasoning)


def _snapshot(round_number: int, qbafs: dict[str, PersonaQBAF], costs: dict[str, float]) -> RoundSnapshot:
    return RoundSnapshot(
        round=round_number,
        qbafs=dict(qbafs),
        root_strengths={pid: root_strength(q) for pid, q in qbafs.items()},
        revision_costs=dict(costs),
    )


async def run_experiment(
    config: ExperimentConfig,
    generator: TextGenerator,
    prompts: PromptsConfig,
    settings: BeliefGraphConfig | None = None,
    on_event: Callable[[EngineEvent], None] | None = None,
) -> ExperimentResult:
    """Run the full belief-graph pipeline for two personas.

    Generator failures never abort the run: extraction falls back to a
    single-node QBAF, a failed move call contributes no moves, and a failed
    judgment leaves the root where it is.
    """
    settings = settings or BeliefGraphConfig()
    pid_a, pid_b = config.persona_ids
    profiles = {pid: persona_system_prompt(prompts, pid) for pid in config.persona_ids}

    def emit(event_type: str, **payload) -> None:
        if on_event:
            on_event(EngineEvent(type=event_type, payload=payload))

    emit("experiment_start", topic=config.topic, persona_ids=config.persona_ids)
    logger.info("Starting experiment on %r: %s vs %s", config.topic, pid_a, pid_b)

    for pid in config.persona_ids:
        emit("extraction_start", persona_id=pid)
    extracted = await asyncio.gather(*(
        extract_qbaf(pid, profiles[pid], config.topic, generator, prompts) for pid in config.persona_ids
    ))
    qbafs = dict(zip(config.persona_ids, extracted))
    for pid, qbaf in qbafs.items():
        emit("extraction_complete", persona_id=pid, qbaf=qbaf)

    rounds = [_snapshot(0, qbafs, {pid_a: 0.0, pid_b: 0.0})]
    converged = False

    for round_number in range(1, config.max_rounds + 1):
        emit("round_start", round=round_number)
        logger.info("Round %d/%d", round_number, config.max_rounds)
        previous = dict(qbafs)

        outcome = await run_debate_round(
            qbafs[pid_a], qbafs[pid_b], profiles[pid_a], profiles[pid_b], round_number, generator, prompts,
        )
        emit("debate_moves", round=round_number, persona_id=pid_a, new_nodes=outcome.new_nodes_a)
        emit("debate_moves", round=round_number, persona_id=pid_b, new_nodes=outcome.new_nodes_b)
        debated = {pid_a: outcome.qbaf_a, pid_b: outcome.qbaf_b}

        revisions = await asyncio.gather(*(
            _revise(debated[pid], _received_claims(previous[pid], debated[pid]), profiles[pid],
                    generator, prompts, settings)
            for pid in config.persona_ids
        ))
        for pid, revision in zip(config.persona_ids, revisions):
            qbafs[pid] = revision.qbaf
            emit(
                "revision_complete",
                round=round_number,
                persona_id=pid,
                root_strength=root_strength(revision.qbaf),
                revision_cost=revision.cost,
                resistance=revision.resistance,
                reasoning=revision.reasoning,
            )

        snapshot = _snapshot(round_number, qbafs, {pid: r.cost for pid, r in zip(config.persona_ids, revisions)})
        rounds.append(snapshot)
        emit("round_complete", round=round_number, snapshot=snapshot)

        deltas = {pid: abs(root_strength(qbafs[pid]) - root_strength(previous[pid])) for pid in config.persona_ids}
        converged = all(d < config.convergence_threshold for d in deltas.values())
        emit("convergence_check", round=round_number, converged=converged, deltas=deltas)
        if converged:
            logger.info("Converged after round %d", round_number)
            break

    community = await build_community_graph(
        qbafs[pid_a], qbafs[pid_b], generator, prompts,
        config.crux_variance_threshold, config.consensus_variance_threshold,
    )
    emit("community_graph_built", graph=community)

    cruxes = await identify_cruxes(community, qbafs[pid_a], qbafs[pid_b], generator, prompts, config.top_k_cruxes)
    emit("cruxes_identified", cruxes=tuple(cruxes))

    benchmarks = compute_benchmarks(rounds, community, cruxes, config.convergence_threshold)
    emit("benchmarks_computed", benchmarks=benchmarks)

    result = ExperimentResult(
        config=config,
        rounds=tuple(rounds),
        community_graph=community,
        cruxes=tuple(cruxes),
        benchmarks=benchmarks,
        total_rounds=len(rounds) - 1,
        converged=converged,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
    logger.info("Experiment complete: %d rounds, %d cruxes, converged=%s", result.total_rounds, len(cruxes), converged)
    emit("experiment_complete", result=result)
    return result
