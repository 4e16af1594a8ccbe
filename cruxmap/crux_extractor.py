"""Read a finished argument graph into common ground, camps and crux assumptions.

Crux assumptions come from the first strategy that yields anything:
assumptions and premises of the symmetric difference between the first two
preferred extensions, then of UNDEC arguments, then the most-attacked claims
with their counter-propositions, then the highest attack-degree claims.
"""

import re
from collections import Counter
from collections.abc import Iterable, Sequence

from cruxmap.graph_state import valid_attacks
from cruxmap.models import (
    Argument,
    ArgumentationGraphState,
    Attack,
    Camp,
    CruxAssumption,
    EvidenceLedgerEntry,
    FlipCondition,
    GraphDebateOutput,
)

TOP_CRUX_ASSUMPTIONS = 3
_MAX_CONTESTED_TARGETS = 5
_MAX_ACCEPTED_EVIDENCE = 5
_MAX_REJECTED_EVIDENCE = 3

_LEADING_THAT_RE = re.compile(r"^that\s+", re.IGNORECASE)


def settling_question(text: str) -> str:
    cleaned = _LEADING_THAT_RE.sub("", text.strip()).rstrip(".")
    return f"What evidence would confirm or refute that {cleaned}?"


def _truncate(text: str, max_len: int) -> str:
    return text if len(text) <= max_len else text[: max_len - 3] + "..."


def _attack_degree(attacks: Iterable[Attack]) -> Counter:
    degree: Counter = Counter()
    for atk in attacks:
        degree[atk.from_arg_id] += 1
        degree[atk.to_arg_id] += 1
    return degree


def _rank(candidates: dict[str, list[str]], degree: Counter) -> list[CruxAssumption]:
    ranked = []
    for text, dep_ids in candidates.items():
        unique = list(dict.fromkeys(dep_ids))
        ranked.append(CruxAssumption(
            assumption=text,
            dependent_arg_ids=tuple(unique),
            centrality=sum(degree[i] for i in unique),
            settling_question=settling_question(text),
        ))
    ranked.sort(key=lambda c: (len(c.dependent_arg_ids), c.centrality), reverse=True)
    return ranked[:TOP_CRUX_ASSUMPTIONS]


def _from_assumptions(args: Iterable[Argument], degree: Counter) -> list[CruxAssumption]:
    candidates: dict[str, list[str]] = {}
    for arg in args:
        for text in (*arg.assumptions, *arg.premises):
            if text.strip():
                candidates.setdefault(text.strip().lower(), []).append(arg.id)
    return _rank(candidates, degree)


def _from_attack_targets(
    args_by_id: dict[str, Argument],
    attacks: Sequence[Attack],
    degree: Counter,
) -> list[CruxAssumption]:
    attackers: dict[str, set[str]] = {}
    for atk in attacks:
        attackers.setdefault(atk.to_arg_id, set()).add(atk.speaker_id)
    contested = sorted(attackers.items(), key=lambda item: len(item[1]), reverse=True)[:_MAX_CONTESTED_TARGETS]

    candidates: dict[str, list[str]] = {}
    for arg_id, _ in contested:
        arg = args_by_id.get(arg_id)
        if arg is None:
            continue
        if arg.claim.strip():
            candidates.setdefault(arg.claim.strip().lower(), []).append(arg_id)
        for atk in attacks:
            if atk.to_arg_id == arg_id and atk.counter_proposition.strip():
                candidates.setdefault(atk.counter_proposition.strip().lower(), []).append(atk.from_arg_id)
    return _rank(candidates, degree)


def _from_top_arguments(args: Sequence[Argument], degree: Counter) -> list[CruxAssumption]:
    scored = [(arg, degree[arg.id]) for arg in args if degree[arg.id] > 0 and arg.claim.strip()]
    scored.sort(key=lambda item: item[1], reverse=True)
    return [
        CruxAssumption(
            assumption=arg.claim,
            dependent_arg_ids=(arg.id,),
            centrality=deg,
            settling_question=settling_question(arg.claim),
        )
        for arg, deg in scored[:TOP_CRUX_ASSUMPTIONS]
    ]


def _defeating_attack(arg_id: str, attacks: Sequence[Attack]) -> Attack | None:
    return next((a for a in attacks if a.to_arg_id == arg_id), None)


def build_flip_conditions(
    state: ArgumentationGraphState,
    persona_ids: Sequence[str],
) -> list[FlipCondition]:
    """Per persona: its most-attacked OUT argument and what defeated it."""
    attacks = valid_attacks(state)
    incoming = Counter(a.to_arg_id for a in attacks)
    conditions = []
    for pid in persona_ids:
        defeated = [a for a in state.arguments if a.speaker_id == pid and state.labelling.get(a.id) == "OUT"]
        if not defeated:
            continue
        best = max(defeated, key=lambda a: incoming[a.id])
        attack = _defeating_attack(best.id, attacks)
        if attack is None:
            continue
        conditions.append(FlipCondition(
            persona_id=pid,
            condition=f'Would reconsider if "{attack.counter_proposition}" were shown to be false',
            argument_id=best.id,
            attack_id=attack.id,
        ))
    return conditions


def build_evidence_ledger(
    state: ArgumentationGraphState,
    persona_ids: Sequence[str],
) -> list[EvidenceLedgerEntry]:
    attacks = valid_attacks(state)
    ledger = []
    for pid in persona_ids:
        accepted: dict[str, None] = {}
        rejected: dict[str, str] = {}
        for arg in state.arguments:
            if arg.speaker_id != pid:
                continue
            if state.labelling.get(arg.id) == "OUT":
                attack = _defeating_attack(arg.id, attacks)
                reason = (
                    f'Countered: "{_truncate(attack.counter_proposition, 80)}"'
                    if attack else "Defeated by opposing argument"
                )
                for item in arg.evidence:
                    if item.strip():
                        rejected[item] = reason
            else:
                for item in arg.evidence:
                    if item.strip():
                        accepted[item] = None
        for item in accepted:
            rejected.pop(item, None)
        if accepted or rejected:
            ledger.append(EvidenceLedgerEntry(
                persona_id=pid,
                accepted=tuple(list(accepted)[:_MAX_ACCEPTED_EVIDENCE]),
                rejected=tuple(list(rejected.items())[:_MAX_REJECTED_EVIDENCE]),
            ))
    return ledger


def extract_graph_output(
    state: ArgumentationGraphState,
    persona_ids: Sequence[str] = (),
) -> GraphDebateOutput:
    args_by_id = {a.id: a for a in state.arguments}
    attacks = valid_attacks(state)
    degree = _attack_degree(attacks)

    common_ground = tuple(a for a in state.arguments if a.id in state.grounded_extension)

    camps = tuple(
        Camp(
            extension_index=idx,
            argument_ids=tuple(a.id for a in state.arguments if a.id in ext),
            persona_ids=tuple(dict.fromkeys(a.speaker_id for a in state.arguments if a.id in ext)),
        )
        for idx, ext in enumerate(state.preferred_extensions)
    )

    symmetric_difference: tuple[Argument, ...] = ()
    if len(state.preferred_extensions) >= 2:
        first, second = state.preferred_extensions[0], state.preferred_extensions[1]
        symmetric_difference = tuple(a for a in state.arguments if a.id in first ^ second)

    cruxes = _from_assumptions(symmetric_difference, degree)
    if not cruxes:
        undec = [a for a in state.arguments if state.labelling.get(a.id) == "UNDEC"]
        cruxes = _from_assumptions(undec, degree)
    if not cruxes:
        cruxes = _from_attack_targets(args_by_id, attacks, degree)
    if not cruxes:
        cruxes = _from_top_arguments(state.arguments, degree)

    return GraphDebateOutput(
        common_ground=common_ground,
        camps=camps,
        crux_assumptions=tuple(cruxes),
        symmetric_difference=symmetric_difference,
        flip_conditions=tuple(build_flip_conditions(state, persona_ids)),
        evidence_ledger=tuple(build_evidence_ledger(state, persona_ids)),
    )
