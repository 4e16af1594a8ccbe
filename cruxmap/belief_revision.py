"""Persona-modulated belief revision over a PersonaQBAF.

Base scores of non-root nodes are nudged, closest-to-root first, until the
root's dialectical strength is within epsilon of a target. Follows the
counterfactual-explanation search of CE-QArg (arXiv:2407.08497), with the
target damped by a revision resistance R:

    target = current + (1 - R) * (raw - current), clamped to +/- max_shift
"""

import logging
from collections.abc import Sequence
from dataclasses import replace

from config.config_loader import PromptsConfig
from cruxmap.df_quad import compute_strengths, find_node, root_strength
from cruxmap.generation import TextGenerator
from cruxmap.models import PersonaQBAF, Polarity, RevisionResult, TargetAssessment
from cruxmap.providers.base import ProviderError
from cruxmap.schemas import RevisionResistanceResponse, TargetStrengthResponse

logger = logging.getLogger(__name__)

STEP_SIZE = 0.02
EPSILON = 0.01
MAX_ITERATIONS = 50
MAX_SHIFT_PER_ROUND = 0.2
MOVED_THRESHOLD = 0.001
DEFAULT_RESISTANCE = 0.5

_JUDGE_TEMPERATURE = 0.2


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _attack_counts_to_root(qbaf: PersonaQBAF, node_id: str, root_id: str) -> list[int]:
    """Attack-edge count along every simple path from node_id to root_id."""
    outgoing: dict[str, list[tuple[str, bool]]] = {}
    for edge in qbaf.edges:
        outgoing.setdefault(edge.from_id, []).append((edge.to_id, edge.type == "attack"))

    counts: list[int] = []
    on_path: set[str] = set()

    def walk(current: str, attacks: int) -> None:
        if current == root_id:
            counts.append(attacks)
            return
        if current in on_path:
            return
        on_path.add(current)
        for target, is_attack in outgoing.get(current, []):
            walk(target, attacks + int(is_attack))
        on_path.discard(current)

    walk(node_id, 0)
    return counts


def analyze_polarity(qbaf: PersonaQBAF, node_id: str, root_id: str) -> Polarity:
    """Whether raising node_id's base score raises (positive) or lowers (negative) the root.

    Every path to the root must agree: all even attack counts is positive,
    all odd is negative. Mixed parity, or no path at all, is neutral.
    """
    counts = _attack_counts_to_root(qbaf, node_id, root_id)
    if not counts:
        return "neutral"
    parities = {c % 2 for c in counts}
    if parities == {0}:
        return "positive"
    if parities == {1}:
        return "negative"
    return "neutral"


def compute_priority(qbaf: PersonaQBAF, node_id: str) -> float:
    node = find_node(qbaf, node_id)
    if node is None:
        return 0.0
    return 1.0 / (node.depth + 1)


def revise_beliefs(
    qbaf: PersonaQBAF,
    target_strength: float,
    epsilon: float = EPSILON,
    max_iterations: int = MAX_ITERATIONS,
    step_size: float = STEP_SIZE,
) -> RevisionResult:
    """Minimally perturb non-root base scores so the root approaches target_strength.

    Terminates when |gap| < epsilon or after max_iterations nudge passes.
    adjusted_scores holds only nodes whose base score moved by more than 0.001.
    """
    root_id = qbaf.root_claim
    original = {n.id: n.base_score for n in qbaf.nodes}
    scores = dict(original)

    polarity_map: dict[str, Polarity] = {
        n.id: analyze_polarity(qbaf, n.id, root_id) for n in qbaf.nodes if n.id != root_id
    }
    adjustable = sorted(
        ((node_id, pol, compute_priority(qbaf, node_id)) for node_id, pol in polarity_map.items() if pol != "neutral"),
        key=lambda item: item[2],
        reverse=True,
    )

    def propagate() -> float:
        nodes = tuple(replace(n, base_score=scores[n.id]) for n in qbaf.nodes)
        return root_strength(compute_strengths(replace(qbaf, nodes=nodes)))

    iterations = 0
    current = propagate()
    while iterations < max_iterations:
        gap = target_strength - current
        if abs(gap) < epsilon:
            break
        for node_id, polarity, priority in adjustable:
            delta = step_size * priority
            raise_score = (gap > 0) == (polarity == "positive")
            scores[node_id] = _clamp(scores[node_id] + (delta if raise_score else -delta))
        iterations += 1
        current = propagate()
        logger.debug("Revision %s iteration %d: root=%.4f target=%.4f",
                     qbaf.persona_id, iterations, current, target_strength)

    shifts = {node_id: abs(scores[node_id] - original[node_id]) for node_id in scores}
    return RevisionResult(
        adjusted_scores={nid: scores[nid] for nid, shift in shifts.items() if shift > MOVED_THRESHOLD},
        total_shift=sum(shifts.values()),
        polarity_map=polarity_map,
        iterations=iterations,
        final_strength=current,
    )


def apply_revision(qbaf: PersonaQBAF, revision: RevisionResult) -> PersonaQBAF:
    nodes = tuple(
        replace(n, base_score=revision.adjusted_scores[n.id]) if n.id in revision.adjusted_scores else n
        for n in qbaf.nodes
    )
    return compute_strengths(replace(qbaf, nodes=nodes))


def modulated_target(
    current: float,
    raw_target: float,
    resistance: float,
    max_shift: float = MAX_SHIFT_PER_ROUND,
) -> float:
    """Damp the move from current to raw_target by resistance, then cap it at max_shift."""
    target = current + (1.0 - resistance) * (raw_target - current)
    return _clamp(target, current - max_shift, current + max_shift)


def _numbered(items: Sequence[str]) -> str:
    return "\n".join(f"{i}. {text}" for i, text in enumerate(items, 1))


async def compute_revision_resistance(
    profile: str,
    attacks: Sequence[str],
    generator: TextGenerator,
    prompts: PromptsConfig,
) -> tuple[float, str]:
    """Resistance R in [0, 1], judged from the persona profile. Opaque to the revision math."""
    prompt = prompts.revision_resistance.format(profile=profile[:2400], attacks=_numbered(attacks))
    try:
        response = await generator.complete_json(
            prompts.judge_system, prompt, RevisionResistanceResponse, temperature=_JUDGE_TEMPERATURE,
        )
    except ProviderError as exc:
        logger.warning("Revision resistance unavailable, using %.1f: %s", DEFAULT_RESISTANCE, exc)
        return DEFAULT_RESISTANCE, "Resistance assessment unavailable"
    return _clamp(response.resistance), response.reasoning


async def determine_target_strength(
    qbaf: PersonaQBAF,
    attacks: Sequence[str],
    persona_name: str,
    profile: str,
    generator: TextGenerator,
    prompts: PromptsConfig,
    max_shift: float = MAX_SHIFT_PER_ROUND,
) -> TargetAssessment:
    """Judge a raw target for the root, then damp it by the persona's resistance.

    If the raw target cannot be obtained the assessment is neutral: target
    equals the current strength.
    """
    current = root_strength(qbaf)
    root = find_node(qbaf, qbaf.root_claim)
    prompt = prompts.target_strength.format(
        persona=persona_name,
        thesis=root.claim if root else "",
        strength=f"{current:.3f}",
        attacks=_numbered(attacks),
    )
    try:
        response = await generator.complete_json(
            prompts.judge_system, prompt, TargetStrengthResponse, temperature=_JUDGE_TEMPERATURE,
        )
    except ProviderError as exc:
        logger.warning("Target strength unavailable for %s, holding at %.3f: %s", persona_name, current, exc)
        return TargetAssessment(target=current, resistance=1.0, raw_target=current,
                                reasoning="Target assessment unavailable")

    raw = _clamp(response.target_strength)
    resistance, reasoning = await compute_revision_resistance(profile, attacks, generator, prompts)
    return TargetAssessment(
        target=modulated_target(current, raw, resistance, max_shift),
        resistance=resistance,
        raw_target=raw,
        reasoning=reasoning,
    )
