"""DF-QuAD dialectical strength over a PersonaQBAF. Pure numerics, no generator calls.

Reference: Rago et al. 2016, "Discontinuity-Free Decision Support with
Quantitative Argumentation Debates".
"""

import logging
import math
from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import replace

from cruxmap.models import PersonaQBAF, QBAFEdge, QBAFNode

logger = logging.getLogger(__name__)

COMBINE_EPSILON = 1e-9


def aggregate(strengths: Iterable[float]) -> float:
    """Probabilistic sum: 1 - prod(1 - s). Empty input aggregates to 0."""
    return 1.0 - math.prod(1.0 - s for s in strengths)


def combine(base_score: float, attack: float, support: float) -> float:
    """Pull base_score toward 0 when attacks dominate, toward 1 when supports do."""
    diff = attack - support
    if abs(diff) < COMBINE_EPSILON:
        return base_score
    if diff > 0:
        return base_score - base_score * diff
    return base_score + (1.0 - base_score) * (-diff)


def topological_order(node_ids: Sequence[str], edges: Iterable[QBAFEdge]) -> list[str]:
    """Sources before targets (Kahn). Nodes on a cycle are left out."""
    known = set(node_ids)
    outgoing: dict[str, list[str]] = {n: [] for n in node_ids}
    in_degree: dict[str, int] = {n: 0 for n in node_ids}
    for edge in edges:
        if edge.from_id not in known or edge.to_id not in known:
            continue
        outgoing[edge.from_id].append(edge.to_id)
        in_degree[edge.to_id] += 1

    queue = deque(n for n in node_ids if in_degree[n] == 0)
    order: list[str] = []
    while queue:
        current = queue.popleft()
        order.append(current)
        for target in outgoing[current]:
            in_degree[target] -= 1
            if in_degree[target] == 0:
                queue.append(target)
    return order


def compute_strengths(qbaf: PersonaQBAF) -> PersonaQBAF:
    """Return qbaf with every node's dialectical_strength recomputed.

    Edges referencing unknown nodes are ignored. Nodes on a cycle cannot be
    ordered; they keep sigma = tau and a warning is logged.
    """
    node_ids = [n.id for n in qbaf.nodes]
    known = set(node_ids)
    incoming: dict[str, list[QBAFEdge]] = {}
    for edge in qbaf.edges:
        if edge.from_id in known and edge.to_id in known:
            incoming.setdefault(edge.to_id, []).append(edge)

    base = {n.id: n.base_score for n in qbaf.nodes}
    strength: dict[str, float] = {}
    order = topological_order(node_ids, qbaf.edges)

    for node_id in order:
        edges = incoming.get(node_id, [])
        if not edges:
            strength[node_id] = base[node_id]
            continue
        attacks = [strength[e.from_id] * e.weight for e in edges if e.type == "attack"]
        supports = [strength[e.from_id] * e.weight for e in edges if e.type == "support"]
        strength[node_id] = combine(base[node_id], aggregate(attacks), aggregate(supports))

    if len(order) < len(node_ids):
        cyclic = [n for n in node_ids if n not in strength]
        logger.warning("QBAF %s has a cycle through %s; leaving their strength at base score",
                       qbaf.persona_id, ", ".join(cyclic))
        for node_id in cyclic:
            strength[node_id] = base[node_id]

    return replace(
        qbaf,
        nodes=tuple(replace(n, dialectical_strength=strength[n.id]) for n in qbaf.nodes),
    )


def find_node(qbaf: PersonaQBAF, node_id: str) -> QBAFNode | None:
    return next((n for n in qbaf.nodes if n.id == node_id), None)


def root_strength(qbaf: PersonaQBAF) -> float:
    """Stored sigma of the root; 0 when the root is missing."""
    root = find_node(qbaf, qbaf.root_claim)
    return root.dialectical_strength if root else 0.0


def without_node(qbaf: PersonaQBAF, node_id: str) -> PersonaQBAF:
    return replace(
        qbaf,
        nodes=tuple(n for n in qbaf.nodes if n.id != node_id),
        edges=tuple(e for e in qbaf.edges if node_id not in (e.from_id, e.to_id)),
    )


def counterfactual_impact(qbaf: PersonaQBAF, node_id: str, root_id: str) -> float:
    """|sigma(root) - sigma(root without node_id)|, both recomputed from scratch.

    Returns 0 when root_id is not in the graph or node_id is the root itself.
    """
    with_node = compute_strengths(qbaf)
    root_with = find_node(with_node, root_id)
    if root_with is None or node_id == root_id:
        return 0.0
    root_without = find_node(compute_strengths(without_node(qbaf, node_id)), root_id)
    return abs(root_with.dialectical_strength - root_without.dialectical_strength)
