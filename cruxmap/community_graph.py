"""Merge two persona QBAFs into a community graph and rank its structural cruxes.

Only the claim comparison and the settling questions call the generator.
Matching, remapping, classification and crux scoring are deterministic.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace
from statistics import fmean, pvariance

from config.config_loader import PromptsConfig
from cruxmap.crux_extractor import settling_question
from cruxmap.df_quad import compute_strengths, counterfactual_impact, find_node
from cruxmap.generation import TextGenerator
from cruxmap.models import (
    ClaimMapping,
    Classification,
    CommunityGraph,
    CommunityNode,
    DisagreementType,
    PersonaCruxPosition,
    PersonaQBAF,
    QBAFEdge,
    QBAFNode,
    Relationship,
    StructuralCrux,
)
from cruxmap.providers.base import ProviderError
from cruxmap.schemas import ClaimComparisonResponse

logger = logging.getLogger(__name__)

CRUX_VARIANCE_THRESHOLD = 0.3
CONSENSUS_VARIANCE_THRESHOLD = 0.1
TOP_K_CRUXES = 5
MERGE_BONUS = 0.1
BASE_SCORE_DIFF_VARIANCE = 0.05
EDGE_DIFF_IMPACT = 0.01

_COMPARE_TEMPERATURE = 0.2
_QUESTION_TEMPERATURE = 0.3


@dataclass
class _Merge:
    community_id: str
    source_ids: list[str]
    claim: str
    base_scores: dict[str, float]
    relationship: Relationship | None


async def compare_claims(
    qbaf_a: PersonaQBAF,
    qbaf_b: PersonaQBAF,
    generator: TextGenerator,
    prompts: PromptsConfig,
) -> list[ClaimMapping]:
    """Ask the generator which claim pairs discuss the same phenomenon. Empty on failure."""
    prompt = prompts.claim_comparison.format(
        claims_a="\n".join(f'A[{i}] "{n.claim}"' for i, n in enumerate(qbaf_a.nodes)),
        claims_b="\n".join(f'B[{i}] "{n.claim}"' for i, n in enumerate(qbaf_b.nodes)),
    )
    try:
        response = await generator.complete_json(
            prompts.judge_system, prompt, ClaimComparisonResponse, temperature=_COMPARE_TEMPERATURE,
        )
    except ProviderError as exc:
        logger.warning("Claim comparison failed, building graph without merges: %s", exc)
        return []

    return [
        ClaimMapping(
            node_id_a=qbaf_a.nodes[m.index_a].id,
            node_id_b=qbaf_b.nodes[m.index_b].id,
            relationship=m.relationship,
            confidence=m.confidence,
            shared_topic=m.shared_topic,
        )
        for m in response.mappings
        if m.index_a < len(qbaf_a.nodes) and m.index_b < len(qbaf_b.nodes)
    ]


def classify_node(
    source_count: int,
    relationship: Relationship | None,
    variance: float | None,
    crux_threshold: float = CRUX_VARIANCE_THRESHOLD,
    consensus_threshold: float = CONSENSUS_VARIANCE_THRESHOLD,
) -> Classification:
    """Singletons are always neutral; opposition merges are always crux."""
    if source_count < 2 or variance is None:
        return "neutral"
    if relationship == "opposition":
        return "crux"
    if variance > crux_threshold:
        return "crux"
    if variance < consensus_threshold:
        return "consensus"
    return "neutral"


def _match(qbaf_a: PersonaQBAF, qbaf_b: PersonaQBAF, mappings: Sequence[ClaimMapping]) -> list[_Merge]:
    nodes_a = {n.id: n for n in qbaf_a.nodes}
    nodes_b = {n.id: n for n in qbaf_b.nodes}
    used_a: set[str] = set()
    used_b: set[str] = set()
    merges: list[_Merge] = []

    for mapping in sorted(mappings, key=lambda m: m.confidence, reverse=True):
        if mapping.node_id_a in used_a or mapping.node_id_b in used_b:
            continue
        node_a, node_b = nodes_a.get(mapping.node_id_a), nodes_b.get(mapping.node_id_b)
        if node_a is None or node_b is None:
            continue
        claim = (
            node_a.claim if mapping.relationship == "agreement"
            else f"[{mapping.shared_topic}] {node_a.claim} vs. {node_b.claim}"
        )
        merges.append(_Merge(
            community_id=f"c-{len(merges)}",
            source_ids=[node_a.id, node_b.id],
            claim=claim,
            base_scores={qbaf_a.persona_id: node_a.base_score, qbaf_b.persona_id: node_b.base_score},
            relationship=mapping.relationship,
        ))
        used_a.add(node_a.id)
        used_b.add(node_b.id)

    for qbaf, used in ((qbaf_a, used_a), (qbaf_b, used_b)):
        for node in qbaf.nodes:
            if node.id in used:
                continue
            merges.append(_Merge(
                community_id=f"c-{len(merges)}",
                source_ids=[node.id],
                claim=node.claim,
                base_scores={qbaf.persona_id: node.base_score},
                relationship=None,
            ))
    return merges


def _remap_edges(edges: Sequence[QBAFEdge], source_to_community: dict[str, str]) -> list[QBAFEdge]:
    seen: set[tuple[str, str, str]] = set()
    remapped: list[QBAFEdge] = []
    for edge in edges:
        from_c = source_to_community.get(edge.from_id)
        to_c = source_to_community.get(edge.to_id)
        if from_c is None or to_c is None or from_c == to_c:
            continue
        key = (from_c, to_c, edge.type)
        if key in seen:
            continue
        seen.add(key)
        remapped.append(QBAFEdge(id=f"ce-{len(remapped)}", from_id=from_c, to_id=to_c, type=edge.type, weight=edge.weight))
    return remapped


def merge_qbafs(
    qbaf_a: PersonaQBAF,
    qbaf_b: PersonaQBAF,
    mappings: Sequence[ClaimMapping],
    crux_threshold: float = CRUX_VARIANCE_THRESHOLD,
    consensus_threshold: float = CONSENSUS_VARIANCE_THRESHOLD,
) -> CommunityGraph:
    """Greedy merge by descending confidence, each node used at most once.

    Community strength is DF-QuAD over the merged graph, seeded with the mean
    base score of each node's sources.
    """
    merges = _match(qbaf_a, qbaf_b, mappings)
    source_to_community = {sid: m.community_id for m in merges for sid in m.source_ids}
    edges = _remap_edges(list(qbaf_a.edges) + list(qbaf_b.edges), source_to_community)

    propagated = compute_strengths(PersonaQBAF(
        persona_id="community",
        topic=qbaf_a.topic,
        root_claim="",
        nodes=tuple(
            QBAFNode(id=m.community_id, claim=m.claim, type="pro", base_score=fmean(m.base_scores.values()))
            for m in merges
        ),
        edges=tuple(edges),
    ))
    strength = {n.id: n.dialectical_strength for n in propagated.nodes}

    nodes: list[CommunityNode] = []
    for merge in merges:
        variance = pvariance(merge.base_scores.values()) if len(merge.source_ids) >= 2 else None
        nodes.append(CommunityNode(
            id=merge.community_id,
            claim=merge.claim,
            merged_from=tuple(merge.source_ids),
            base_scores=dict(merge.base_scores),
            community_strength=strength[merge.community_id],
            variance=variance,
            classification=classify_node(
                len(merge.source_ids), merge.relationship, variance, crux_threshold, consensus_threshold,
            ),
            relationship=merge.relationship,
        ))

    graph = CommunityGraph(
        topic=qbaf_a.topic,
        personas=(qbaf_a.persona_id, qbaf_b.persona_id),
        nodes=tuple(nodes),
        edges=tuple(edges),
        crux_nodes=tuple(n.id for n in nodes if n.classification == "crux"),
        consensus_nodes=tuple(n.id for n in nodes if n.classification == "consensus"),
    )
    logger.info(
        "Community graph: %d nodes (%d merged), %d edges, %d crux, %d consensus",
        len(nodes), sum(1 for n in nodes if len(n.merged_from) >= 2), len(edges),
        len(graph.crux_nodes), len(graph.consensus_nodes),
    )
    return graph


async def build_community_graph(
    qbaf_a: PersonaQBAF,
    qbaf_b: PersonaQBAF,
    generator: TextGenerator,
    prompts: PromptsConfig,
    crux_threshold: float = CRUX_VARIANCE_THRESHOLD,
    consensus_threshold: float = CONSENSUS_VARIANCE_THRESHOLD,
) -> CommunityGraph:
    mappings = await compare_claims(qbaf_a, qbaf_b, generator, prompts)
    return merge_qbafs(qbaf_a, qbaf_b, mappings, crux_threshold, consensus_threshold)


def persona_impact(qbaf: PersonaQBAF, node_ids: Sequence[str]) -> float:
    """Summed counterfactual impact on qbaf's own root of whichever node_ids it contains."""
    return sum(
        counterfactual_impact(qbaf, node_id, qbaf.root_claim)
        for node_id in node_ids
        if find_node(qbaf, node_id) is not None
    )


def disagreement_type(variance: float | None, impact_diff: float) -> DisagreementType:
    base = variance is not None and variance > BASE_SCORE_DIFF_VARIANCE
    edge = impact_diff > EDGE_DIFF_IMPACT
    if base and edge:
        return "both"
    if edge:
        return "edge_structure"
    return "base_score"


def rank_cruxes(
    graph: CommunityGraph,
    qbaf_a: PersonaQBAF,
    qbaf_b: PersonaQBAF,
    top_k: int = TOP_K_CRUXES,
) -> list[StructuralCrux]:
    """Score crux-classified nodes by counterfactual divergence, highest first."""
    qbafs = {qbaf_a.persona_id: qbaf_a, qbaf_b.persona_id: qbaf_b}
    candidates: list[StructuralCrux] = []
    for node in graph.nodes:
        if node.classification != "crux":
            continue
        impacts = {pid: persona_impact(q, node.merged_from) for pid, q in qbafs.items()}
        diff = abs(impacts[qbaf_a.persona_id] - impacts[qbaf_b.persona_id])
        bonus = MERGE_BONUS if len(node.merged_from) >= 2 else 0.0

        positions: dict[str, PersonaCruxPosition] = {}
        for pid in graph.personas:
            qbaf = qbafs[pid]
            source = next((find_node(qbaf, sid) for sid in node.merged_from if find_node(qbaf, sid)), None)
            positions[pid] = PersonaCruxPosition(
                base_score=node.base_scores.get(pid, 0.5),
                dialectical_strength=source.dialectical_strength if source else 0.0,
                contribution=impacts[pid],
            )

        candidates.append(StructuralCrux(
            id=f"crux-{node.id}",
            node_id=node.id,
            claim=node.claim,
            crux_score=diff + bonus,
            disagreement_type=disagreement_type(node.variance, diff),
            persona_positions=positions,
            counterfactual=_counterfactual_text(positions),
        ))

    candidates.sort(key=lambda c: c.crux_score, reverse=True)
    return candidates[:top_k]


def _counterfactual_text(positions: dict[str, PersonaCruxPosition]) -> str:
    parts = [
        f"{pid} (sigma={pos.dialectical_strength:.2f}, impact={pos.contribution:.3f})"
        for pid, pos in positions.items()
    ]
    return " vs ".join(parts)


async def identify_cruxes(
    graph: CommunityGraph,
    qbaf_a: PersonaQBAF,
    qbaf_b: PersonaQBAF,
    generator: TextGenerator,
    prompts: PromptsConfig,
    top_k: int = TOP_K_CRUXES,
) -> list[StructuralCrux]:
    """Rank cruxes, then attach a generated settling question to each."""
    ranked = rank_cruxes(graph, qbaf_a, qbaf_b, top_k)
    result: list[StructuralCrux] = []
    for crux in ranked:
        positions = "\n".join(
            f"{pid}: base score {pos.base_score:.2f}, dialectical strength {pos.dialectical_strength:.2f}"
            for pid, pos in crux.persona_positions.items()
        )
        try:
            question = await generator.complete_text(
                prompts.settling_system,
                prompts.settling_question.format(claim=crux.claim, positions=positions),
                temperature=_QUESTION_TEMPERATURE,
            )
        except ProviderError as exc:
            logger.warning("Settling question for %s unavailable: %s", crux.node_id, exc)
            question = settling_question(crux.claim)
        result.append(replace(crux, settling_question=question))
    return result
