"""Debate controller: turn-taking, crystallization triggers, phase machine.

All functions are pure. ControllerState is threaded by the engine and every
update returns a new value.
"""

import logging
import re
from collections.abc import Sequence
from dataclasses import replace

from cruxmap.models import (
    Concession,
    ControllerDecision,
    ControllerState,
    DebatePhase,
    DialogueMove,
    DialogueTurn,
    PhaseTransition,
)

logger = logging.getLogger(__name__)

SUBSTANTIVE_MOVES: frozenset[str] = frozenset({"CLAIM", "CHALLENGE", "CONCEDE", "REFRAME", "PROPOSE_CRUX"})
URGENT_MOVES: frozenset[str] = frozenset({"CONCEDE", "REFRAME", "PROPOSE_CRUX"})
_MOVE_WINDOW = 10

STOP_WORDS = frozenset({
    "the", "a", "an", "is", "are", "was", "were", "be", "been", "have", "has", "had",
    "do", "does", "did", "will", "would", "could", "should", "may", "might", "can",
    "to", "of", "in", "for", "on", "with", "at", "by", "from", "as", "and", "but",
    "or", "not", "so", "yet", "if", "that", "this", "it", "its", "you", "your",
    "they", "their", "we", "our", "i", "my", "me",
})
_NON_WORD_RE = re.compile(r"[^a-z0-9\s]")


def create_controller_state() -> ControllerState:
    return ControllerState()


def set_phase(state: ControllerState, phase: DebatePhase) -> ControllerState:
    """Move to phase. Raises ValueError on a backward move."""
    if phase < state.phase:
        raise ValueError(f"Cannot move debate from phase {state.phase} back to phase {phase}")
    return replace(state, phase=phase)


def update_controller_state(
    state: ControllerState,
    turn: DialogueTurn,
    concessions: Sequence[Concession] = (),
    transcript: Sequence[DialogueTurn] | None = None,
) -> ControllerState:
    """Record a dialogue turn. Pass the transcript to refresh circling_detected."""
    moves = state.substantive_moves_in_window
    if turn.move in SUBSTANTIVE_MOVES:
        moves = moves[-_MOVE_WINDOW:] + (turn.move,)
    return replace(
        state,
        turns_since_last_crystallization=state.turns_since_last_crystallization + 1,
        substantive_moves_in_window=moves,
        concessions=state.concessions + tuple(concessions),
        circling_detected=detect_circling(transcript) if transcript is not None else state.circling_detected,
    )


def reset_crystallization_counter(state: ControllerState, contested_frontier_size: int) -> ControllerState:
    """Called after every crystallization with the new contested-frontier size."""
    return replace(
        state,
        turns_since_last_crystallization=0,
        substantive_moves_in_window=(),
        contested_frontier_history=state.contested_frontier_history + (contested_frontier_size,),
    )


def pick_next_speaker(transcript: Sequence[DialogueTurn], persona_ids: Sequence[str]) -> str:
    """Round-robin after the last speaker."""
    if not transcript:
        return persona_ids[0]
    last = transcript[-1].persona_id
    if last not in persona_ids:
        return persona_ids[0]
    return persona_ids[(list(persona_ids).index(last) + 1) % len(persona_ids)]


def should_crystallize(
    state: ControllerState,
    min_turns: int = 2,
    max_turns: int = 5,
) -> bool:
    if state.turns_since_last_crystallization < min_turns:
        return False
    recent: tuple[DialogueMove, ...] = state.substantive_moves_in_window
    if URGENT_MOVES.intersection(recent):
        return True
    if state.turns_since_last_crystallization >= max_turns:
        return True
    last_two = recent[-2:]
    return len(last_two) == 2 and "CLAIM" in last_two and "CHALLENGE" in last_two


def _word_set(text: str) -> set[str]:
    words = _NON_WORD_RE.sub("", text.lower()).split()
    return {w for w in words if len(w) > 2 and w not in STOP_WORDS}


def detect_circling(
    transcript: Sequence[DialogueTurn],
    window: int = 4,
    overlap_threshold: float = 0.6,
) -> bool:
    """True when the last window turns mostly reuse the vocabulary of the window before."""
    if len(transcript) < 2 * window:
        return False
    recent = _word_set(" ".join(t.dialogue for t in transcript[-window:]))
    earlier = _word_set(" ".join(t.dialogue for t in transcript[-2 * window:-window]))
    if not recent or not earlier:
        return False
    overlap = len(recent & earlier) / min(len(recent), len(earlier))
    return overlap > overlap_threshold


def _crux_proposers(transcript: Sequence[DialogueTurn]) -> set[str]:
    return {t.persona_id for t in transcript if t.move == "PROPOSE_CRUX"}


def check_phase_transition(
    state: ControllerState,
    transcript: Sequence[DialogueTurn],
    persona_ids: Sequence[str],
    max_turns: int,
    crux_seeking_budget: float = 0.6,
    resolution_budget: float = 0.85,
    circling_window: int = 4,
    circling_overlap: float = 0.6,
) -> PhaseTransition | None:
    budget_used = len(transcript) / max_turns if max_turns > 0 else 1.0

    if state.phase == 1:
        speakers = {t.persona_id for t in transcript if t.phase == 1}
        if speakers >= set(persona_ids):
            return PhaseTransition(to=2, reason="All participants have given opening statements")

    elif state.phase == 2:
        history = state.contested_frontier_history
        if len(history) >= 3 and len(set(history[-3:])) == 1:
            return PhaseTransition(to=3, reason="Contested frontier stable across 3 crystallizations")
        if detect_circling(transcript, circling_window, circling_overlap):
            return PhaseTransition(to=3, reason="Dialogue is circling, moving to crux seeking")
        if budget_used >= crux_seeking_budget:
            return PhaseTransition(to=3, reason=f"Turn budget {crux_seeking_budget:.0%} consumed")

    elif state.phase == 3:
        if _crux_proposers(transcript) >= set(persona_ids):
            return PhaseTransition(to=4, reason="Every participant has proposed a crux")
        if budget_used >= resolution_budget:
            return PhaseTransition(to=4, reason="Turn budget nearly exhausted")

    return None


def compute_steering_hint(
    state: ControllerState,
    transcript: Sequence[DialogueTurn],
    persona_ids: Sequence[str],
    next_speaker: str,
    circling_window: int = 4,
    circling_overlap: float = 0.6,
) -> str | None:
    """Advisory prompt text for the next speaker. None in phases 1 and 4."""
    if state.phase in (1, 4) or not transcript:
        return None

    other = next((p for p in persona_ids if p != next_speaker), persona_ids[0])
    last = transcript[-1]

    if state.phase == 3:
        crux_turns = [t for t in transcript if t.move == "PROPOSE_CRUX"]
        proposers = {t.persona_id for t in crux_turns}
        if not proposers:
            return f"In one sentence, what do you think is the core disagreement between you and {other}?"
        if next_speaker not in proposers:
            latest = crux_turns[-1]
            return (
                f'{latest.persona_id} thinks the crux is: "{latest.dialogue[:150]}". '
                "Do you agree, or is the real disagreement about something else?"
            )
        return None

    if last.move == "CONCEDE" and last.persona_id != next_speaker:
        return f"{last.persona_id} just conceded a point. Given that, does your position change on anything?"
    if last.move == "REFRAME":
        return f"{last.persona_id} reframed the debate. Do you agree that's the right framing?"
    if detect_circling(transcript, circling_window, circling_overlap):
        return "You've been going back and forth on similar points. What specific evidence or scenario would change your mind?"
    recent_moves = [t.move for t in transcript[-6:]]
    if len(recent_moves) >= 4 and all(m == "CHALLENGE" for m in recent_moves[-4:]):
        return f"Is there any part of {other}'s argument you find compelling?"
    return None


def controller_step(
    state: ControllerState,
    transcript: Sequence[DialogueTurn],
    persona_ids: Sequence[str],
    max_turns: int,
    *,
    min_turns_between_crystallizations: int = 2,
    max_turns_between_crystallizations: int = 5,
    crux_seeking_budget: float = 0.6,
    resolution_budget: float = 0.85,
    circling_window: int = 4,
    circling_overlap: float = 0.6,
) -> ControllerDecision:
    """Decide who speaks next, with what hint, and whether to crystallize or change phase first."""
    transition = check_phase_transition(
        state, transcript, persona_ids, max_turns,
        crux_seeking_budget, resolution_budget, circling_window, circling_overlap,
    )
    next_speaker = pick_next_speaker(transcript, persona_ids)
    return ControllerDecision(
        next_speaker=next_speaker,
        steering_hint=compute_steering_hint(
            state, transcript, persona_ids, next_speaker, circling_window, circling_overlap,
        ),
        should_crystallize=should_crystallize(
            state, min_turns_between_crystallizations, max_turns_between_crystallizations,
        ),
        phase_transition=transition,
    )
