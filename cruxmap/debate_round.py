"""One belief-graph debate round: each persona attacks or supports the other's QBAF."""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, replace

from config.config_loader import PromptsConfig
from cruxmap.df_quad import compute_strengths, find_node
from cruxmap.generation import TextGenerator
from cruxmap.models import PersonaQBAF, QBAFEdge, QBAFNode
from cruxmap.providers.base import ProviderError
from cruxmap.schemas import DebateMoveSpec, DebateMovesResponse

logger = logging.getLogger(__name__)

MAX_MOVES = 3
_MOVES_TEMPERATURE = 0.75


@dataclass(frozen=True)
class RoundOutcome:
    qbaf_a: PersonaQBAF
    qbaf_b: PersonaQBAF
    new_nodes_a: int   # nodes added to A's graph (by B)
    new_nodes_b: int


def serialize_qbaf(qbaf: PersonaQBAF) -> str:
    """Indented tree from the root down through attackers and supporters."""
    nodes = {n.id: n for n in qbaf.nodes}
    children: dict[str, list[QBAFEdge]] = {}
    for edge in qbaf.edges:
        children.setdefault(edge.to_id, []).append(edge)

    lines: list[str] = []
    seen: set[str] = set()

    def emit(node_id: str, indent: int) -> None:
        node = nodes.get(node_id)
        if node is None or node_id in seen:
            return
        seen.add(node_id)
        pad = "  " * indent
        lines.append(f"{pad}[{node.id}] ({node.type}) tau={node.base_score:.2f} sigma={node.dialectical_strength:.2f}")
        lines.append(f'{pad}  "{node.claim}"')
        for edge in children.get(node_id, []):
            relation = "ATTACKS" if edge.type == "attack" else "SUPPORTS"
            lines.append(f"{pad}  {relation} (weight={edge.weight:.2f}):")
            emit(edge.from_id, indent + 2)

    emit(qbaf.root_claim, 0)
    return "\n".join(lines)


async def generate_moves(
    system: str,
    own: PersonaQBAF,
    opponent: PersonaQBAF,
    round_number: int,
    generator: TextGenerator,
    prompts: PromptsConfig,
) -> list[DebateMoveSpec]:
    """Up to three moves on the opponent's graph. Unknown target ids are dropped."""
    targets = [n.id for n in opponent.nodes]
    prompt = prompts.debate_moves.format(
        round=round_number,
        topic=opponent.topic,
        own_graph=serialize_qbaf(own),
        opponent_graph=serialize_qbaf(opponent),
        targets=", ".join(targets),
    )
    try:
        response = await generator.complete_json(system, prompt, DebateMovesResponse, temperature=_MOVES_TEMPERATURE)
    except ProviderError as exc:
        logger.warning("Moves from %s in round %d unavailable: %s", own.persona_id, round_number, exc)
        return []

    valid = set(targets)
    moves = [m for m in response.moves if m.target_node_id in valid]
    dropped = len(response.moves) - len(moves)
    if dropped:
        logger.debug("Dropped %d moves from %s targeting unknown nodes", dropped, own.persona_id)
    return moves[:MAX_MOVES]


def apply_moves(
    qbaf: PersonaQBAF,
    moves: Sequence[DebateMoveSpec],
    source_persona_id: str,
    round_number: int,
) -> PersonaQBAF:
    """Append one node and one edge per move. Rounds only ever add to a QBAF."""
    new_nodes: list[QBAFNode] = []
    new_edges: list[QBAFEdge] = []
    for i, move in enumerate(moves):
        target = find_node(qbaf, move.target_node_id)
        if target is None:
            continue
        node_id = f"{source_persona_id}-r{round_number}-{i}"
        new_nodes.append(QBAFNode(
            id=node_id,
            claim=move.claim,
            type="con" if move.type == "attack" else "pro",
            base_score=0.5,
            grounding=tuple(move.grounding),
            persona_id=source_persona_id,
            depth=target.depth + 1,
        ))
        new_edges.append(QBAFEdge(
            id=f"{node_id}->{move.target_node_id}",
            from_id=node_id,
            to_id=move.target_node_id,
            type=move.type,
            weight=max(0.0, min(1.0, move.weight)),
        ))
    return replace(qbaf, nodes=qbaf.nodes + tuple(new_nodes), edges=qbaf.edges + tuple(new_edges))


async def run_debate_round(
    qbaf_a: PersonaQBAF,
    qbaf_b: PersonaQBAF,
    profile_a: str,
    profile_b: str,
    round_number: int,
    generator: TextGenerator,
    prompts: PromptsConfig,
) -> RoundOutcome:
    """Both personas generate moves concurrently; each graph receives the other's moves."""
    moves_from_a, moves_from_b = await asyncio.gather(
        generate_moves(profile_a, qbaf_a, qbaf_b, round_number, generator, prompts),
        generate_moves(profile_b, qbaf_b, qbaf_a, round_number, generator, prompts),
    )
    updated_a = compute_strengths(apply_moves(qbaf_a, moves_from_b, qbaf_b.persona_id, round_number))
    updated_b = compute_strengths(apply_moves(qbaf_b, moves_from_a, qbaf_a.persona_id, round_number))
    return RoundOutcome(
        qbaf_a=replace(updated_a, round=round_number),
        qbaf_b=replace(updated_b, round=round_number),
        new_nodes_a=len(moves_from_b),
        new_nodes_b=len(moves_from_a),
    )
