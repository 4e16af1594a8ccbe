"""Rich console summaries and JSON artifact files for debate and experiment results."""

import logging
import re
from datetime import datetime
from pathlib import Path

from pydantic import TypeAdapter
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from cruxmap.models import DebateEngineOutput, EngineEvent, ExperimentResult

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_DEBATE_ADAPTER = TypeAdapter(DebateEngineOutput)
_EXPERIMENT_ADAPTER = TypeAdapter(ExperimentResult)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _artifact_path(output_dir: Path, topic: str, suffix: str) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return output_dir / f"{timestamp}_{_slug(topic)}{suffix}"


def _preview(text: str, words: int = 50) -> str:
    """Return first N words of text."""
    all_words = text.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def describe_event(event: EngineEvent) -> str | None:
    """One console line for the events worth showing live; None for the rest."""
    p = event.payload
    if event.type == "phase_transition":
        return f"[cyan]Phase {p['from_phase']} -> {p['to']}[/cyan] {p['reason']}"
    if event.type == "dialogue_turn":
        turn = p["turn"]
        return f"[bold]{turn.persona_id}[/bold] [{turn.move}] {_preview(turn.dialogue, 20)}"
    if event.type == "crystallization":
        result = p["result"]
        return f"[green]Crystallized[/green] +{len(result.new_args)} args, +{len(result.new_attacks)} attacks"
    if event.type == "concession":
        return f"[yellow]Concession[/yellow] {p['concession'].persona_id}: {p['concession'].conceded_claim}"
    if event.type == "round_complete":
        strengths = ", ".join(f"{pid}={s:.3f}" for pid, s in p["snapshot"].root_strengths.items())
        return f"[green]OK[/green] Round {p['round']} complete ({strengths})"
    if event.type == "convergence_check" and p.get("converged"):
        return "[green]Converged[/green]"
    return None


def print_debate_summary(output: DebateEngineOutput) -> None:
    console.print(Rule("[bold green]Debate Summary[/bold green]"))
    console.print(
        Text(
            f"Turns: {len(output.transcript)} | "
            f"Arguments: {len(output.graph.arguments)} | "
            f"Phase reached: {output.phase_reached} | "
            f"Duration: {output.duration_sec:.1f}s | "
            f"Tokens: {output.total_tokens}",
            style="dim",
        )
    )
    if output.terminated_early:
        console.print("[bold red]Terminated early after repeated generator failures.[/bold red]")
    console.print(f"[bold]Regime:[/bold] {output.regime_description}")

    if output.crux:
        status = "acknowledged" if output.crux.acknowledged else "proposed by " + ", ".join(output.crux.proposed_by)
        console.print(Panel(_preview(output.crux.statement, 80), title=f"Proposed crux ({status})", border_style="cyan"))

    if output.graph_output.crux_assumptions:
        table = Table(title="Crux assumptions")
        table.add_column("Assumption")
        table.add_column("Dependents", justify="right")
        table.add_column("Settling question")
        for crux in output.graph_output.crux_assumptions:
            table.add_row(crux.assumption, str(len(crux.dependent_arg_ids)), crux.settling_question)
        console.print(table)

    for camp in output.camps:
        console.print(f"Camp {camp.extension_index}: {', '.join(camp.persona_ids)} ({len(camp.argument_ids)} arguments)")


def print_experiment_summary(result: ExperimentResult) -> None:
    console.print(Rule("[bold green]Belief Graph Experiment[/bold green]"))
    console.print(
        Text(
            f"Rounds: {result.total_rounds} | Converged: {result.converged} | "
            f"Community nodes: {len(result.community_graph.nodes)}",
            style="dim",
        )
    )

    strengths = Table(title="Root strength by round")
    strengths.add_column("Round", justify="right")
    for pid in result.config.persona_ids:
        strengths.add_column(pid, justify="right")
    for snapshot in result.rounds:
        strengths.add_row(str(snapshot.round), *(f"{snapshot.root_strengths[pid]:.3f}" for pid in result.config.persona_ids))
    console.print(strengths)

    if result.cruxes:
        cruxes = Table(title="Structural cruxes")
        cruxes.add_column("Score", justify="right")
        cruxes.add_column("Type")
        cruxes.add_column("Claim")
        cruxes.add_column("Settling question")
        for crux in result.cruxes:
            cruxes.add_row(f"{crux.crux_score:.3f}", crux.disagreement_type, crux.claim, crux.settling_question)
        console.print(cruxes)
    else:
        console.print("[dim]No structural cruxes identified.[/dim]")

    b = result.benchmarks
    console.print(
        f"Stance divergence {b.stance_divergence:+.3f} | crux localization {b.crux_localization_rate:.2f} | "
        f"coverage {b.argument_coverage:.2f} | counterfactual sensitivity {b.counterfactual_sensitivity:.3f} | "
        f"convergence round {b.convergence_round}"
    )


def save_debate(output: DebateEngineOutput, output_dir: Path) -> Path:
    """Write the full debate output as JSON. Returns the file path."""
    filepath = _artifact_path(output_dir, output.topic, "_debate.json")
    filepath.write_bytes(_DEBATE_ADAPTER.dump_json(output, indent=2))
    logger.info("Debate saved to: %s", filepath)
    return filepath


def save_experiment(result: ExperimentResult, output_dir: Path) -> Path:
    """Write QBAF snapshots, community graph, cruxes and benchmarks as one JSON file."""
    filepath = _artifact_path(output_dir, result.config.topic, "_experiment.json")
    filepath.write_bytes(_EXPERIMENT_ADAPTER.dump_json(result, indent=2))
    logger.info("Experiment saved to: %s", filepath)
    return filepath
