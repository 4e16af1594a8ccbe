"""Argument graph store: pure structural edits over ArgumentationGraphState.

Every function returns a new state. Derived fields (labelling and the
extensions) are left stale; call semantics.recompute_semantics afterwards.
"""

import logging
from collections.abc import Iterable
from dataclasses import replace

from cruxmap.models import Argument, ArgumentationGraphState, Attack, ValidationResult

logger = logging.getLogger(__name__)


def create_graph_state(topic: str) -> ArgumentationGraphState:
    return ArgumentationGraphState(topic=topic)


def get_argument(state: ArgumentationGraphState, arg_id: str) -> Argument | None:
    for arg in state.arguments:
        if arg.id == arg_id:
            return arg
    return None


def add_arguments(state: ArgumentationGraphState, arguments: Iterable[Argument]) -> ArgumentationGraphState:
    """Append arguments, ignoring any whose id is already present."""
    known = {a.id for a in state.arguments}
    added: list[Argument] = []
    for arg in arguments:
        if arg.id in known:
            logger.debug("Dropping duplicate argument id %s", arg.id)
            continue
        known.add(arg.id)
        added.append(arg)
    if not added:
        return state
    return replace(state, arguments=state.arguments + tuple(added))


def add_attacks(
    state: ArgumentationGraphState,
    attacks: Iterable[Attack],
    validations: Iterable[ValidationResult] = (),
) -> ArgumentationGraphState:
    """Append attacks with their validation results.

    Attacks referencing a missing argument, self-loops and duplicate ids are
    dropped silently, along with their validation results.
    """
    arg_ids = {a.id for a in state.arguments}
    known = {a.id for a in state.attacks}
    added: list[Attack] = []
    for atk in attacks:
        if atk.from_arg_id not in arg_ids or atk.to_arg_id not in arg_ids:
            logger.debug("Dropping dangling attack %s (%s -> %s)", atk.id, atk.from_arg_id, atk.to_arg_id)
            continue
        if atk.from_arg_id == atk.to_arg_id:
            logger.debug("Dropping self-attack %s on %s", atk.id, atk.from_arg_id)
            continue
        if atk.id in known:
            logger.debug("Dropping duplicate attack id %s", atk.id)
            continue
        known.add(atk.id)
        added.append(atk)

    added_ids = {a.id for a in added}
    kept_validations = tuple(v for v in validations if v.attack_id in added_ids)
    if not added:
        return state
    return replace(
        state,
        attacks=state.attacks + tuple(added),
        validation_results=state.validation_results + kept_validations,
    )


def update_argument(
    state: ArgumentationGraphState,
    arg_id: str,
    claim: str | None = None,
    assumptions: Iterable[str] | None = None,
) -> ArgumentationGraphState:
    """Narrow an argument's claim and/or assumptions. Unknown ids are a no-op."""
    if get_argument(state, arg_id) is None:
        logger.debug("Ignoring update of unknown argument %s", arg_id)
        return state
    changes: dict = {}
    if claim:
        changes["claim"] = claim
    if assumptions is not None:
        changes["assumptions"] = tuple(assumptions)
    if not changes:
        return state
    return replace(
        state,
        arguments=tuple(replace(a, **changes) if a.id == arg_id else a for a in state.arguments),
    )


def remove_argument(state: ArgumentationGraphState, arg_id: str) -> ArgumentationGraphState:
    """Remove an argument and every attack touching it."""
    if get_argument(state, arg_id) is None:
        return state
    dropped = {a.id for a in state.attacks if arg_id in (a.from_arg_id, a.to_arg_id)}
    return replace(
        state,
        arguments=tuple(a for a in state.arguments if a.id != arg_id),
        attacks=tuple(a for a in state.attacks if a.id not in dropped),
        validation_results=tuple(v for v in state.validation_results if v.attack_id not in dropped),
    )


def remove_attack(state: ArgumentationGraphState, attack_id: str) -> ArgumentationGraphState:
    if not any(a.id == attack_id for a in state.attacks):
        return state
    return replace(
        state,
        attacks=tuple(a for a in state.attacks if a.id != attack_id),
        validation_results=tuple(v for v in state.validation_results if v.attack_id != attack_id),
    )


def valid_attacks(state: ArgumentationGraphState) -> list[Attack]:
    """Attacks whose validation result says they hold. Unvalidated attacks are excluded."""
    valid_ids = {v.attack_id for v in state.validation_results if v.valid}
    return [a for a in state.attacks if a.id in valid_ids]


def compute_contested_frontier(state: ArgumentationGraphState) -> list[str]:
    """Arguments that are in some preferred extensions and not in others (labelled UNDEC)."""
    return [arg.id for arg in state.arguments if state.labelling.get(arg.id) == "UNDEC"]
