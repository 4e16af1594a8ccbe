"""Build a persona's topic-scoped QBAF: root thesis, 3 arguments, 2 sub-arguments each."""

import asyncio
import logging
from dataclasses import replace

from config.config_loader import PromptsConfig
from cruxmap.df_quad import compute_strengths
from cruxmap.generation import TextGenerator
from cruxmap.models import PersonaQBAF, QBAFEdge, QBAFNode
from cruxmap.providers.base import ProviderError
from cruxmap.schemas import (
    ArgumentsResponse,
    BaseScoresResponse,
    RootClaimResponse,
    StancedClaim,
    SubArgumentsResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_SCORE = 0.5
DEPTH_ONE_WIDTH = 3
DEPTH_TWO_WIDTH = 2

_CREATIVE_TEMPERATURE = 0.7
_SCORING_TEMPERATURE = 0.2


def default_qbaf(persona_id: str, topic: str, claim: str | None = None) -> PersonaQBAF:
    """Single-node fallback: a root with tau = sigma = 0.5."""
    root = QBAFNode(
        id=f"{persona_id}-root",
        claim=claim or f"{persona_id}'s position on {topic}",
        type="root",
        base_score=DEFAULT_BASE_SCORE,
        dialectical_strength=DEFAULT_BASE_SCORE,
        persona_id=persona_id,
        depth=0,
    )
    return PersonaQBAF(persona_id=persona_id, topic=topic, root_claim=root.id, nodes=(root,))


def _child(spec: StancedClaim, node_id: str, parent_id: str, persona_id: str, depth: int) -> tuple[QBAFNode, QBAFEdge]:
    node = QBAFNode(
        id=node_id,
        claim=spec.claim,
        type=spec.type,
        base_score=DEFAULT_BASE_SCORE,
        grounding=tuple(spec.grounding),
        persona_id=persona_id,
        depth=depth,
    )
    edge = QBAFEdge(
        id=f"{node_id}->{parent_id}",
        from_id=node_id,
        to_id=parent_id,
        type="support" if spec.type == "pro" else "attack",
    )
    return node, edge


async def _sub_arguments(
    parent: QBAFNode,
    topic: str,
    system: str,
    generator: TextGenerator,
    prompts: PromptsConfig,
) -> list[StancedClaim]:
    prompt = prompts.qbaf_sub_arguments.format(
        topic=topic,
        claim=parent.claim,
        stance="supporting" if parent.type == "pro" else "opposing",
    )
    try:
        response = await generator.complete_json(system, prompt, SubArgumentsResponse, temperature=_CREATIVE_TEMPERATURE)
    except ProviderError as exc:
        logger.warning("Sub-arguments for %s unavailable: %s", parent.id, exc)
        return []
    return response.sub_arguments[:DEPTH_TWO_WIDTH]


async def extract_qbaf(
    persona_id: str,
    profile: str,
    topic: str,
    generator: TextGenerator,
    prompts: PromptsConfig,
) -> PersonaQBAF:
    """Generate and score a depth-2 QBAF for persona_id on topic.

    Never raises on generator failure: a missing root or an empty first
    level yields the single-node default; failed sub-argument calls just
    leave that branch shallow; failed scoring keeps every tau at 0.5.
    """
    system = profile

    try:
        root_response = await generator.complete_json(
            system, prompts.qbaf_root.format(topic=topic), RootClaimResponse, temperature=_CREATIVE_TEMPERATURE,
        )
    except ProviderError as exc:
        logger.warning("Root claim for %s unavailable, using default QBAF: %s", persona_id, exc)
        return default_qbaf(persona_id, topic)

    root = QBAFNode(
        id=f"{persona_id}-root",
        claim=root_response.claim,
        type="root",
        base_score=DEFAULT_BASE_SCORE,
        grounding=tuple(root_response.grounding),
        persona_id=persona_id,
        depth=0,
    )

    try:
        depth_one = await generator.complete_json(
            system,
            prompts.qbaf_arguments.format(topic=topic, root_claim=root.claim),
            ArgumentsResponse,
            temperature=_CREATIVE_TEMPERATURE,
        )
    except ProviderError as exc:
        logger.warning("Arguments for %s unavailable: %s", persona_id, exc)
        return default_qbaf(persona_id, topic, root.claim)
    if not depth_one.arguments:
        logger.warning("No arguments extracted for %s, using default QBAF", persona_id)
        return default_qbaf(persona_id, topic, root.claim)

    nodes: list[QBAFNode] = [root]
    edges: list[QBAFEdge] = []
    parents: list[QBAFNode] = []
    for i, spec in enumerate(depth_one.arguments[:DEPTH_ONE_WIDTH]):
        node, edge = _child(spec, f"{persona_id}-d1-{i}", root.id, persona_id, 1)
        parents.append(node)
        nodes.append(node)
        edges.append(edge)

    children = await asyncio.gather(*(
        _sub_arguments(parent, topic, system, generator, prompts) for parent in parents
    ))
    for parent, specs in zip(parents, children):
        for j, spec in enumerate(specs):
            node, edge = _child(spec, f"{parent.id}-d2-{j}", parent.id, persona_id, 2)
            nodes.append(node)
            edges.append(edge)

    node_list = "\n".join(f'{n.id}: "{n.claim}" ({n.type})' for n in nodes)
    try:
        scored = await generator.complete_json(
            prompts.qbaf_scores_system.format(topic=topic),
            prompts.qbaf_scores.format(nodes=node_list),
            BaseScoresResponse,
            temperature=_SCORING_TEMPERATURE,
        )
        scores = scored.scores
    except ProviderError as exc:
        logger.warning("Base scores for %s unavailable, keeping %.1f: %s", persona_id, DEFAULT_BASE_SCORE, exc)
        scores = {}

    nodes = [
        replace(n, base_score=max(0.0, min(1.0, scores.get(n.id, DEFAULT_BASE_SCORE))))
        for n in nodes
    ]

    qbaf = PersonaQBAF(
        persona_id=persona_id,
        topic=topic,
        root_claim=root.id,
        nodes=tuple(nodes),
        edges=tuple(edges),
        round=0,
    )
    logger.info("Extracted QBAF for %s: %d nodes, %d edges", persona_id, len(nodes), len(edges))
    return compute_strengths(qbaf)
