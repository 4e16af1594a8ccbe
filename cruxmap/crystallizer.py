"""Crystallization: distil a window of dialogue into graph edits via the generator."""

import itertools
import logging
from collections.abc import Sequence

from config.config_loader import PromptsConfig
from cruxmap.generation import TextGenerator
from cruxmap.graph_state import (
    add_arguments,
    add_attacks,
    get_argument,
    remove_argument,
    remove_attack,
    update_argument,
)
from cruxmap.models import (
    Argument,
    ArgumentationGraphState,
    ArgumentUpdate,
    Attack,
    AttackTarget,
    Concession,
    CrystallizationResult,
    DialogueTurn,
    ValidationResult,
)
from cruxmap.providers.base import ProviderError
from cruxmap.schemas import AttackSpec, CrystallizationResponse, DiscoveryResponse
from cruxmap.semantics import PREFERRED_SEARCH_LIMIT, recompute_semantics

logger = logging.getLogger(__name__)

_CRYSTALLIZE_TEMPERATURE = 0.3
_DISCOVERY_TEMPERATURE = 0.5
_PLACEHOLDER_PREFIX = "arg-NEW-"


class IdAllocator:
    """Stable id source for arguments (arg-N) and attacks (atk-N) within one debate."""

    def __init__(self) -> None:
        self._args = itertools.count()
        self._attacks = itertools.count()

    def next_argument_id(self) -> str:
        return f"arg-{next(self._args)}"

    def next_attack_id(self) -> str:
        return f"atk-{next(self._attacks)}"


def format_arguments(state: ArgumentationGraphState) -> str:
    if not state.arguments:
        return "  (no arguments yet)"
    lines = []
    for arg in state.arguments:
        label = state.labelling.get(arg.id, "UNDEC")
        assumptions = f" | Assumptions: {'; '.join(arg.assumptions)}" if arg.assumptions else ""
        lines.append(f"  [{arg.id}] [{label}] ({arg.speaker_id}): {arg.claim}{assumptions}")
    return "\n".join(lines)


def format_attacks(state: ArgumentationGraphState) -> str:
    if not state.attacks:
        return "  (no attacks yet)"
    return "\n".join(
        f"  [{a.id}] {a.from_arg_id} -> {a.to_arg_id} ({a.type}, targets {a.target.component})"
        for a in state.attacks
    )


def format_dialogue(turns: Sequence[DialogueTurn]) -> str:
    return "\n".join(f"  [Turn {t.turn_index}] {t.persona_id} ({t.move}): {t.dialogue}" for t in turns)


def _format_argument_detail(arg: Argument) -> str:
    lines = [f"[{arg.id}] (by {arg.speaker_id})", f"  claim: {arg.claim}"]
    lines += [f"  premise[{i}]: {p}" for i, p in enumerate(arg.premises)]
    lines += [f"  assumption[{i}]: {a}" for i, a in enumerate(arg.assumptions)]
    return "\n".join(lines)


def _build_attack(spec: AttackSpec, attack_id: str, from_id: str, to_id: str, speaker_id: str, **extra) -> Attack:
    return Attack(
        id=attack_id,
        from_arg_id=from_id,
        to_arg_id=to_id,
        type=spec.type,
        target=AttackTarget(arg_id=to_id, component=spec.target_component, index=spec.target_index),
        counter_proposition=spec.counter_proposition,
        rationale=spec.rationale,
        speaker_id=speaker_id,
        **extra,
    )


def _concession_turn(cluster: Sequence[DialogueTurn], predicate) -> DialogueTurn:
    return next((t for t in cluster if t.move == "CONCEDE" and predicate(t)), cluster[-1])


async def crystallize(
    cluster: Sequence[DialogueTurn],
    state: ArgumentationGraphState,
    generator: TextGenerator,
    prompts: PromptsConfig,
    ids: IdAllocator,
    search_limit: int = PREFERRED_SEARCH_LIMIT,
) -> tuple[ArgumentationGraphState, CrystallizationResult, list[Concession]]:
    """Apply one crystallization to state.

    Order: removals, narrowing updates, new arguments, attack removals, new
    attacks, then recompute semantics. On a generator failure the prior state
    is returned unchanged.
    """
    if not cluster:
        return state, CrystallizationResult(), []

    prompt = prompts.crystallization.format(
        topic=state.topic,
        arguments=format_arguments(state),
        attacks=format_attacks(state),
        dialogue=format_dialogue(cluster),
    )
    try:
        raw = await generator.complete_json(
            prompts.judge_system, prompt, CrystallizationResponse, temperature=_CRYSTALLIZE_TEMPERATURE,
        )
    except ProviderError as exc:
        logger.warning("Crystallization failed, keeping prior graph: %s", exc)
        return state, CrystallizationResult(), []

    original = state
    updated = state
    concessions: list[Concession] = []

    # 1. Removals are full concessions by the argument's speaker.
    removed_arg_ids: list[str] = []
    for arg_id in raw.removed_arg_ids:
        arg = get_argument(updated, arg_id)
        if arg is None:
            logger.debug("Ignoring removal of unknown argument %s", arg_id)
            continue
        turn = _concession_turn(cluster, lambda t, speaker=arg.speaker_id: t.persona_id != speaker)
        concessions.append(Concession(
            turn_index=turn.turn_index,
            persona_id=arg.speaker_id,
            type="full",
            conceded_claim=arg.claim,
            effect=f'Removed argument [{arg_id}]: "{arg.claim}"',
            removed_arg_ids=(arg_id,),
        ))
        updated = remove_argument(updated, arg_id)
        removed_arg_ids.append(arg_id)

    # 2. Narrowing. A changed claim is a partial concession.
    applied_updates: list[ArgumentUpdate] = []
    for upd in raw.updated_args:
        if get_argument(updated, upd.id) is None:
            continue
        updated = update_argument(updated, upd.id, claim=upd.claim, assumptions=upd.assumptions)
        applied_updates.append(ArgumentUpdate(
            id=upd.id,
            claim=upd.claim,
            assumptions=tuple(upd.assumptions) if upd.assumptions is not None else None,
        ))
        before = get_argument(original, upd.id)
        if upd.claim and before is not None and before.claim != upd.claim:
            turn = _concession_turn(cluster, lambda t, speaker=before.speaker_id: t.persona_id == speaker)
            concessions.append(Concession(
                turn_index=turn.turn_index,
                persona_id=before.speaker_id,
                type="partial",
                conceded_claim=before.claim,
                effect=f'Narrowed [{upd.id}] from "{before.claim}" to "{upd.claim}"',
                updated_arg_ids=(upd.id,),
            ))

    # 3. New arguments get real ids; placeholders resolve through id_map.
    id_map: dict[str, str] = {}
    new_args: list[Argument] = []
    for index, spec in enumerate(raw.new_args):
        real_id = ids.next_argument_id()
        id_map[f"{_PLACEHOLDER_PREFIX}{index}"] = real_id
        new_args.append(Argument(
            id=real_id,
            speaker_id=spec.speaker_id,
            claim=spec.claim,
            premises=tuple(spec.premises),
            assumptions=tuple(spec.assumptions),
            evidence=tuple(spec.evidence),
        ))
    if id_map:
        logger.debug("Placeholder id mapping: %s", id_map)
    updated = add_arguments(updated, new_args)

    # 4. Attack removals.
    removed_attack_ids: list[str] = []
    for attack_id in raw.removed_attack_ids:
        if any(a.id == attack_id for a in updated.attacks):
            updated = remove_attack(updated, attack_id)
            removed_attack_ids.append(attack_id)

    # 5. New attacks, validated at the default strength.
    live_ids = {a.id for a in updated.arguments}
    new_attacks: list[Attack] = []
    validations: list[ValidationResult] = []
    for spec in raw.new_attacks:
        from_id = id_map.get(spec.from_arg_id, spec.from_arg_id)
        to_id = id_map.get(spec.to_arg_id, spec.to_arg_id)
        if from_id not in live_ids or to_id not in live_ids or from_id == to_id:
            logger.debug("Dropping malformed crystallized attack %s -> %s", from_id, to_id)
            continue
        attack_id = ids.next_attack_id()
        speaker = get_argument(updated, from_id).speaker_id
        new_attacks.append(_build_attack(spec, attack_id, from_id, to_id, speaker))
        validations.append(ValidationResult(attack_id=attack_id, valid=True))
    updated = add_attacks(updated, new_attacks, validations)

    updated = recompute_semantics(updated, search_limit)

    result = CrystallizationResult(
        new_args=tuple(new_args),
        updated_args=tuple(applied_updates),
        removed_arg_ids=tuple(removed_arg_ids),
        new_attacks=tuple(new_attacks),
        removed_attack_ids=tuple(removed_attack_ids),
    )
    logger.info(
        "Crystallized %d turns: +%d args, ~%d, -%d, +%d attacks, -%d",
        len(cluster), len(new_args), len(applied_updates), len(removed_arg_ids),
        len(new_attacks), len(removed_attack_ids),
    )
    return updated, result, concessions


async def discover_attacks(
    state: ArgumentationGraphState,
    generator: TextGenerator,
    prompts: PromptsConfig,
    ids: IdAllocator,
    default_speaker: str = "",
    search_limit: int = PREFERRED_SEARCH_LIMIT,
) -> tuple[ArgumentationGraphState, list[Attack]]:
    """Ask a neutral judge for every attack among the current arguments.

    The judge also rules on validity and strength. Returns the state unchanged
    when fewer than two arguments exist or the call fails.
    """
    if len(state.arguments) < 2:
        return state, []

    prompt = prompts.discovery.format(
        topic=state.topic,
        arguments="\n\n".join(_format_argument_detail(a) for a in state.arguments),
    )
    try:
        raw = await generator.complete_json(
            prompts.judge_system, prompt, DiscoveryResponse, temperature=_DISCOVERY_TEMPERATURE,
        )
    except ProviderError as exc:
        logger.warning("Attack discovery failed, continuing without cross-attacks: %s", exc)
        return state, []

    live_ids = {a.id for a in state.arguments}
    attacks: list[Attack] = []
    validations: list[ValidationResult] = []
    for spec in raw.attacks:
        if spec.from_arg_id not in live_ids or spec.to_arg_id not in live_ids:
            continue
        if spec.from_arg_id == spec.to_arg_id:
            continue
        attack_id = ids.next_attack_id()
        speaker = get_argument(state, spec.from_arg_id).speaker_id or default_speaker
        attacks.append(_build_attack(
            spec, attack_id, spec.from_arg_id, spec.to_arg_id, speaker,
            evidence=tuple(spec.evidence),
            confidence=spec.confidence,
        ))
        strength = spec.attack_strength if spec.attack_strength is not None else spec.confidence
        validations.append(ValidationResult(attack_id=attack_id, valid=spec.valid, attack_strength=strength))

    if not attacks:
        return state, []
    updated = recompute_semantics(add_attacks(state, attacks, validations), search_limit)
    logger.info("Discovery added %d attacks (%d valid)", len(attacks), sum(v.valid for v in validations))
    return updated, attacks
