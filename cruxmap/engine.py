"""Live multi-turn debate: controller-driven dialogue crystallized into an argument graph."""

import asyncio
import logging
import time
from collections import Counter
from collections.abc import Callable, Sequence

from config.config_loader import DebateConfig, PromptsConfig
from cruxmap.controller import (
    controller_step,
    create_controller_state,
    reset_crystallization_counter,
    set_phase,
    update_controller_state,
)
from cruxmap.convergence import check_convergence
from cruxmap.crux_extractor import extract_graph_output
from cruxmap.crystallizer import IdAllocator, crystallize, discover_attacks
from cruxmap.generation import TextGenerator
from cruxmap.graph_state import compute_contested_frontier, create_graph_state
from cruxmap.models import (
    DIALOGUE_MOVES,
    ArgumentationGraphState,
    Camp,
    Concession,
    ControllerState,
    DebateEngineOutput,
    DebatePhase,
    DialogueTurn,
    EngineEvent,
    ProposedCrux,
    Regime,
)
from cruxmap.providers.base import ProviderError
from cruxmap.schemas import DialogueResponse

logger = logging.getLogger(__name__)

_DIALOGUE_TEMPERATURE = 0.7
_RESOLUTION_TEMPERATURE = 0.5
_RECENT_TURNS = 8
_DEFAULT_PERSONA = "You are a thoughtful debater. Argue your position honestly and concede good points."


def persona_system_prompt(prompts: PromptsConfig, persona_id: str) -> str:
    return prompts.personas.get(persona_id) or _DEFAULT_PERSONA


def format_turns(turns: Sequence[DialogueTurn]) -> str:
    return "\n".join(f"[{t.move}] {t.persona_id}: {t.dialogue}" for t in turns)


def graph_updated_payload(graph: ArgumentationGraphState) -> dict:
    counts = Counter(graph.labelling.values())
    return {
        "in_count": counts.get("IN", 0),
        "out_count": counts.get("OUT", 0),
        "undec_count": counts.get("UNDEC", 0),
        "preferred_count": len(graph.preferred_extensions),
    }


def build_camps(graph: ArgumentationGraphState, persona_ids: Sequence[str]) -> list[Camp]:
    """Assign each persona to the preferred extension holding most of its arguments."""
    if not graph.preferred_extensions:
        return []
    speaker = {a.id: a.speaker_id for a in graph.arguments}
    members: dict[int, list[str]] = {}
    for pid in persona_ids:
        counts = [sum(1 for arg_id in ext if speaker.get(arg_id) == pid) for ext in graph.preferred_extensions]
        best = counts.index(max(counts))
        members.setdefault(best, []).append(pid)
    camps = []
    for idx, pids in members.items():
        ext = graph.preferred_extensions[idx]
        camps.append(Camp(
            extension_index=idx,
            argument_ids=tuple(a.id for a in graph.arguments if a.id in ext and a.speaker_id in pids),
            persona_ids=tuple(pids),
        ))
    return camps


def classify_regime(graph: ArgumentationGraphState) -> tuple[Regime, str]:
    total = len(graph.arguments)
    preferred = len(graph.preferred_extensions)
    grounded = len(graph.grounded_extension)
    if total == 0:
        return "partial", "No arguments in graph"
    if preferred <= 1 and grounded > total * 0.3:
        return "consensus", f"Consensus: {grounded} of {total} arguments in common ground."
    if preferred >= 2 and grounded < total * 0.15:
        return "polarized", f"Polarized: {preferred} camps, only {grounded} arguments in common ground."
    return "partial", f"Partial agreement: {grounded} in common ground, {preferred} preferred extension(s)."


class _DebateRun:
    """Mutable bookkeeping for one run; the graph and controller state stay immutable values."""

    def __init__(
        self,
        topic: str,
        persona_ids: Sequence[str],
        generator: TextGenerator,
        prompts: PromptsConfig,
        config: DebateConfig,
        max_turns: int,
        on_event: Callable[[EngineEvent], None] | None,
    ) -> None:
        self.topic = topic
        self.persona_ids = tuple(persona_ids)
        self.generator = generator
        self.prompts = prompts
        self.config = config
        self.max_turns = max_turns
        self.on_event = on_event

        self.graph: ArgumentationGraphState = create_graph_state(topic)
        self.ctrl: ControllerState = create_controller_state()
        self.ids = IdAllocator()
        self.transcript: list[DialogueTurn] = []
        self.pending: list[DialogueTurn] = []
        self.concessions: list[Concession] = []
        self.turn_index = 0
        self.consecutive_failures = 0
        self.terminated_early = False

    def emit(self, event_type: str, **payload) -> None:
        if self.on_event:
            self.on_event(EngineEvent(type=event_type, payload=payload))

    def record_turn(self, persona_id: str, dialogue: str, move: str, phase: DebatePhase,
                    hint: str | None = None, track: bool = True) -> DialogueTurn:
        turn = DialogueTurn(
            turn_index=self.turn_index,
            phase=phase,
            persona_id=persona_id,
            dialogue=dialogue,
            move=move,
            steering_hint=hint,
            timestamp=time.time(),
        )
        self.turn_index += 1
        self.transcript.append(turn)
        if track:
            self.pending.append(turn)
            self.ctrl = update_controller_state(self.ctrl, turn, (), self.transcript)
        self.emit("dialogue_turn", turn=turn)
        return turn

    def note_failure(self, persona_id: str, exc: ProviderError) -> None:
        self.consecutive_failures += 1
        logger.warning(
            "Skipping turn for %s (%d consecutive failures): %s",
            persona_id, self.consecutive_failures, exc,
        )
        if self.consecutive_failures >= self.config.max_consecutive_failures:
            logger.warning("Terminating debate early in phase %d", self.ctrl.phase)
            self.terminated_early = True

    async def speak(self, persona_id: str, prompt: str, temperature: float) -> DialogueResponse | ProviderError:
        """One persona turn. Never raises; returns ProviderError on failure."""
        try:
            return await self.generator.complete_json(
                persona_system_prompt(self.prompts, persona_id), prompt, DialogueResponse, temperature=temperature,
            )
        except ProviderError as exc:
            return exc

    async def crystallize_pending(self, announce_concessions: bool = True) -> None:
        if not self.pending:
            return
        self.graph, result, concessions = await crystallize(
            self.pending, self.graph, self.generator, self.prompts, self.ids,
            self.config.preferred_search_limit,
        )
        self.concessions.extend(concessions)
        self.pending = []
        self.ctrl = reset_crystallization_counter(self.ctrl, len(compute_contested_frontier(self.graph)))
        self.emit("crystallization", result=result)
        self.emit("graph_updated", **graph_updated_payload(self.graph))
        if announce_concessions:
            for concession in concessions:
                self.emit("concession", concession=concession)

    def change_phase(self, to: DebatePhase, reason: str) -> None:
        from_phase = self.ctrl.phase
        self.ctrl = set_phase(self.ctrl, to)
        logger.info("Phase %d -> %d: %s", from_phase, to, reason)
        self.emit("phase_transition", from_phase=from_phase, to=to, reason=reason)
        self.emit("phase_start", phase=to)

    async def opening(self) -> None:
        self.emit("phase_start", phase=1)
        prompt = self.prompts.opening.format(topic=self.topic)
        results = await asyncio.gather(*(
            self.speak(pid, prompt, _DIALOGUE_TEMPERATURE) for pid in self.persona_ids
        ))
        for pid, result in zip(self.persona_ids, results):
            if isinstance(result, ProviderError):
                self.note_failure(pid, result)
                continue
            self.consecutive_failures = 0
            self.record_turn(pid, result.dialogue, "CLAIM", 1)

        await self.crystallize_pending()
        self.graph, _ = await discover_attacks(
            self.graph, self.generator, self.prompts, self.ids,
            default_speaker=self.persona_ids[0], search_limit=self.config.preferred_search_limit,
        )
        if len(self.graph.arguments) >= 2:
            self.emit("graph_updated", **graph_updated_payload(self.graph))

    async def dialogue_loop(self) -> None:
        cfg = self.config
        while self.turn_index < self.max_turns and not self.terminated_early:
            decision = controller_step(
                self.ctrl, self.transcript, self.persona_ids, self.max_turns,
                min_turns_between_crystallizations=cfg.min_turns_between_crystallizations,
                max_turns_between_crystallizations=cfg.max_turns_between_crystallizations,
                crux_seeking_budget=cfg.crux_seeking_budget,
                resolution_budget=cfg.resolution_budget,
                circling_window=cfg.circling_window,
                circling_overlap=cfg.circling_overlap,
            )

            if decision.phase_transition:
                await self.crystallize_pending(announce_concessions=False)
                self.change_phase(decision.phase_transition.to, decision.phase_transition.reason)
                if decision.phase_transition.to == 4:
                    break

            if decision.should_crystallize:
                await self.crystallize_pending()

            if decision.steering_hint:
                self.emit("steering", hint=decision.steering_hint, target_persona_id=decision.next_speaker)

            speaker = decision.next_speaker
            allowed = DIALOGUE_MOVES if self.ctrl.phase >= 3 else DIALOGUE_MOVES[:-1]
            prompt = self.prompts.dialogue_turn.format(
                topic=self.topic,
                dialogue=format_turns(self.transcript[-_RECENT_TURNS:]),
                moderator_note=f"\n## Moderator Note\n{decision.steering_hint}\n" if decision.steering_hint else "",
                moves=", ".join(allowed),
            )
            result = await self.speak(speaker, prompt, _DIALOGUE_TEMPERATURE)
            if isinstance(result, ProviderError):
                self.note_failure(speaker, result)
                continue
            self.consecutive_failures = 0

            move = result.move if result.move in DIALOGUE_MOVES else "CLAIM"
            self.record_turn(speaker, result.dialogue, move, self.ctrl.phase, decision.steering_hint)
            if move == "PROPOSE_CRUX":
                self.emit("crux_proposed", persona_id=speaker, statement=result.dialogue)

            if self.turn_index % cfg.convergence_check_interval == 0:
                convergence = check_convergence(
                    self.transcript, self.persona_ids, self.ctrl.contested_frontier_history,
                )
                self.emit("convergence_check", converged=convergence.converged, reason=convergence.reason)
                if convergence.converged:
                    logger.info("Debate converged: %s", convergence.reason)
                    break

    async def resolution(self) -> None:
        prompt = self.prompts.resolution.format(topic=self.topic, dialogue=format_turns(self.transcript))
        results = await asyncio.gather(*(
            self.speak(pid, prompt, _RESOLUTION_TEMPERATURE) for pid in self.persona_ids
        ))
        for pid, result in zip(self.persona_ids, results):
            if isinstance(result, ProviderError):
                logger.warning("Skipping resolution statement for %s: %s", pid, result)
                continue
            self.record_turn(pid, result.dialogue, "CLAIM", 4, track=False)

    def proposed_crux(self) -> ProposedCrux | None:
        crux_turns = [t for t in self.transcript if t.move == "PROPOSE_CRUX"]
        if not crux_turns:
            return None
        proposers = tuple(dict.fromkeys(t.persona_id for t in crux_turns))
        return ProposedCrux(
            proposed_by=proposers,
            statement=crux_turns[-1].dialogue,
            acknowledged=set(proposers) >= set(self.persona_ids),
        )


async def run_debate(
    topic: str,
    persona_ids: Sequence[str],
    generator: TextGenerator,
    prompts: PromptsConfig,
    config: DebateConfig | None = None,
    max_turns: int = 30,
    on_event: Callable[[EngineEvent], None] | None = None,
) -> DebateEngineOutput:
    """Run a live debate and return its transcript, graph and crux analysis.

    Args:
        topic: The proposition under debate.
        persona_ids: Participants in speaking order; keys into prompts.personas.
        generator: Text-generation port used for every persona and judge call.
        prompts: Prompt templates and persona profiles.
        config: Controller tuning; defaults when None.
        max_turns: Turn budget for opening plus dialogue.
        on_event: Optional callback receiving every EngineEvent as it happens.

    Returns:
        DebateEngineOutput. If generator calls fail repeatedly the run stops
        early with terminated_early=True and whatever graph was built.

    Raises:
        ValueError: If persona_ids is empty.
    """
    if not persona_ids:
        raise ValueError("At least one persona is required")

    start = time.monotonic()
    run = _DebateRun(topic, persona_ids, generator, prompts, config or DebateConfig(), max_turns, on_event)
    run.emit("engine_start", topic=topic, persona_ids=run.persona_ids)
    logger.info("Starting debate on %r with %s", topic, ", ".join(run.persona_ids))

    await run.opening()
    if not run.terminated_early:
        run.change_phase(2, "Opening statements complete")
        await run.dialogue_loop()

    await run.crystallize_pending()

    if not run.terminated_early and (run.ctrl.phase == 4 or run.turn_index >= max_turns):
        await run.resolution()

    graph = run.graph
    regime, regime_description = classify_regime(graph)
    output = DebateEngineOutput(
        topic=topic,
        persona_ids=run.persona_ids,
        transcript=tuple(run.transcript),
        graph=graph,
        crux=run.proposed_crux(),
        common_ground=tuple(a.id for a in graph.arguments if a.id in graph.grounded_extension),
        camps=tuple(build_camps(graph, run.persona_ids)),
        concession_trail=tuple(run.concessions),
        regime=regime,
        regime_description=regime_description,
        graph_output=extract_graph_output(graph, run.persona_ids),
        total_tokens=generator.total_tokens,
        duration_sec=time.monotonic() - start,
        phase_reached=run.ctrl.phase,
        terminated_early=run.terminated_early,
    )
    logger.info(
        "Debate complete: %d turns, %d arguments, regime %s, phase %d",
        len(output.transcript), len(graph.arguments), regime, output.phase_reached,
    )
    run.emit("engine_complete", output=output)
    return output
