"""Dung-style acceptability over the argument graph: grounded, preferred, labelling.

Only attacks with a valid ValidationResult form the defeat relation. The
graph is assumed well formed; graph_state drops malformed attacks on entry.
"""

import itertools
import logging
import math
from collections.abc import Iterable
from dataclasses import replace

from cruxmap.graph_state import valid_attacks
from cruxmap.models import ArgumentationGraphState, Label

logger = logging.getLogger(__name__)

PREFERRED_SEARCH_LIMIT = 10_000
MAX_REPORTED_EXTENSIONS = 256


def _defeaters(state: ArgumentationGraphState) -> dict[str, set[str]]:
    """Map each argument id to the ids of arguments that defeat it."""
    defeaters: dict[str, set[str]] = {a.id: set() for a in state.arguments}
    for atk in valid_attacks(state):
        defeaters.setdefault(atk.to_arg_id, set()).add(atk.from_arg_id)
    return defeaters


def grounded_labelling(arg_ids: Iterable[str], defeaters: dict[str, set[str]]) -> dict[str, Label]:
    """Least-fixpoint labelling. Undetermined arguments end UNDEC."""
    labels: dict[str, Label] = {}
    pending = list(arg_ids)
    changed = True
    while changed:
        changed = False
        still_pending: list[str] = []
        for arg_id in pending:
            attackers = defeaters.get(arg_id, set())
            if all(labels.get(d) == "OUT" for d in attackers):
                labels[arg_id] = "IN"
                changed = True
            elif any(labels.get(d) == "IN" for d in attackers):
                labels[arg_id] = "OUT"
                changed = True
            else:
                still_pending.append(arg_id)
        pending = still_pending
    for arg_id in pending:
        labels[arg_id] = "UNDEC"
    return labels


def _is_conflict_free(candidate: set[str], defeaters: dict[str, set[str]]) -> bool:
    return all(not (defeaters.get(a, set()) & candidate) for a in candidate)


def _defends_all(candidate: set[str], defeaters: dict[str, set[str]]) -> bool:
    """Every external defeater of a member is itself defeated by the candidate."""
    for member in candidate:
        for attacker in defeaters.get(member, set()):
            if not (defeaters.get(attacker, set()) & candidate):
                return False
    return True


def _open_components(open_args: list[str], defeaters: dict[str, set[str]]) -> list[list[str]]:
    """Split the undecided arguments into groups connected by defeats."""
    open_set = set(open_args)
    neighbours: dict[str, set[str]] = {a: set() for a in open_args}
    for target in open_args:
        for attacker in defeaters.get(target, set()) & open_set:
            neighbours[target].add(attacker)
            neighbours[attacker].add(target)

    components: list[list[str]] = []
    seen: set[str] = set()
    for start in open_args:
        if start in seen:
            continue
        seen.add(start)
        stack, found = [start], {start}
        while stack:
            for other in neighbours[stack.pop()] - seen:
                seen.add(other)
                found.add(other)
                stack.append(other)
        components.append([a for a in open_args if a in found])
    return components


def _component_extensions(
    component: list[str],
    defeaters: dict[str, set[str]],
    search_limit: int,
) -> list[frozenset[str]] | None:
    """Maximal admissible subsets of one component, or None past search_limit.

    A branch is cut as soon as some member has an attacker whose defeaters
    are all decided and none of them was taken.
    """
    members = set(component)
    position = {a: i for i, a in enumerate(component)}
    attackers = {a: defeaters.get(a, set()) & members for a in component}
    admissible: list[frozenset[str]] = []
    visited = 0

    def undefendable(current: set[str], decided: int) -> bool:
        for member in current:
            for attacker in attackers[member]:
                counters = attackers[attacker]
                if not (counters & current) and all(position[c] < decided for c in counters):
                    return True
        return False

    def search(index: int, current: set[str]) -> bool:
        nonlocal visited
        visited += 1
        if visited > search_limit:
            return False
        if index == len(component):
            if _defends_all(current, attackers) and not any(
                _is_conflict_free(current | {a}, attackers) and _defends_all(current | {a}, attackers)
                for a in component if a not in current
            ):
                admissible.append(frozenset(current))
            return True
        arg_id = component[index]
        if _is_conflict_free(current | {arg_id}, attackers):
            current.add(arg_id)
            if not undefendable(current, index + 1) and not search(index + 1, current):
                return False
            current.discard(arg_id)
        if not undefendable(current, index + 1):
            return search(index + 1, current)
        return True

    if not search(0, set()):
        return None
    maximal: list[frozenset[str]] = []
    for ext in admissible:
        if any(ext < other for other in admissible):
            continue
        if ext not in maximal:
            maximal.append(ext)
    return maximal


def _preferred_by_component(
    arg_ids: list[str],
    defeaters: dict[str, set[str]],
    grounded: frozenset[str],
    search_limit: int,
) -> list[tuple[list[str], list[frozenset[str]]]] | None:
    """Preferred choices for each independent group of undecided arguments.

    Every preferred extension contains the grounded extension and excludes
    anything it defeats. The remaining arguments only defeat each other, so
    each connected group is searched on its own and a preferred extension
    is the grounded extension plus one choice per group.
    """
    excluded = {a for a in arg_ids if defeaters.get(a, set()) & grounded}
    open_args = [a for a in arg_ids if a not in grounded and a not in excluded]
    groups = []
    for component in _open_components(open_args, defeaters):
        extensions = _component_extensions(component, defeaters, search_limit)
        if extensions is None:
            return None
        groups.append((component, extensions))
    return groups


def preferred_extensions(
    arg_ids: list[str],
    defeaters: dict[str, set[str]],
    grounded: frozenset[str],
    search_limit: int = PREFERRED_SEARCH_LIMIT,
    max_reported: int = MAX_REPORTED_EXTENSIONS,
) -> list[frozenset[str]] | None:
    """Maximal admissible sets, searched outward from the grounded extension.

    Returns None when a group search visits more than search_limit states.
    Independent groups multiply the number of extensions, so at most
    max_reported of them are listed.
    """
    groups = _preferred_by_component(arg_ids, defeaters, grounded, search_limit)
    if groups is None:
        return None
    return _combine_groups(grounded, groups, max_reported)


def _combine_groups(
    grounded: frozenset[str],
    groups: list[tuple[list[str], list[frozenset[str]]]],
    max_reported: int,
) -> list[frozenset[str]]:
    choices = itertools.product(*(extensions for _, extensions in groups))
    combined = [grounded.union(*picked) for picked in itertools.islice(choices, max_reported)]
    total = math.prod(len(extensions) for _, extensions in groups)
    if total > max_reported:
        logger.info("Listing %d of %d preferred extensions", max_reported, total)
    return combined


def recompute_semantics(
    state: ArgumentationGraphState,
    search_limit: int = PREFERRED_SEARCH_LIMIT,
) -> ArgumentationGraphState:
    """Rebuild labelling, grounded and preferred extensions from scratch.

    Labels come from the per-group search, so they hold even when only part
    of the preferred extensions is listed. If a group search exceeds
    search_limit, the grounded extension is reported as the only preferred
    extension and the grounded labelling is kept.
    """
    arg_ids = [a.id for a in state.arguments]
    defeaters = _defeaters(state)

    grounded_labels = grounded_labelling(arg_ids, defeaters)
    grounded_labels = {a: grounded_labels[a] for a in arg_ids}
    grounded = frozenset(a for a in arg_ids if grounded_labels[a] == "IN")

    groups = _preferred_by_component(arg_ids, defeaters, grounded, search_limit)
    if groups is None:
        logger.warning(
            "Preferred-extension search exceeded %d states over %d arguments; using grounded extension",
            search_limit, len(arg_ids),
        )
        return replace(
            state,
            labelling=grounded_labels,
            grounded_extension=grounded,
            preferred_extensions=(grounded,),
        )

    labelling = dict(grounded_labels)
    for component, extensions in groups:
        for arg_id in component:
            hits = sum(1 for ext in extensions if arg_id in ext)
            if hits == len(extensions):
                labelling[arg_id] = "IN"
            elif hits == 0:
                labelling[arg_id] = "OUT"
            else:
                labelling[arg_id] = "UNDEC"

    return replace(
        state,
        labelling=labelling,
        grounded_extension=grounded,
        preferred_extensions=tuple(_combine_groups(grounded, groups, MAX_REPORTED_EXTENSIONS)),
    )
