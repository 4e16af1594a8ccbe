"""Early-stop check for the live debate loop."""

from collections.abc import Sequence

from cruxmap.models import ConvergenceResult, DialogueTurn


def check_convergence(
    transcript: Sequence[DialogueTurn],
    persona_ids: Sequence[str],
    contested_frontier_history: Sequence[int],
) -> ConvergenceResult:
    proposers = {t.persona_id for t in transcript if t.move == "PROPOSE_CRUX"}
    if persona_ids and proposers >= set(persona_ids):
        return ConvergenceResult(converged=True, reason="Every participant proposed a crux")

    if len(contested_frontier_history) >= 3 and len(set(contested_frontier_history[-3:])) == 1:
        return ConvergenceResult(converged=True, reason="Graph stable across 3 crystallizations")

    return ConvergenceResult(converged=False)
