"""Click CLI: loads config, builds the generator, runs a debate or experiment, saves output."""

import asyncio
import logging
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import AppConfig, load_config
from cruxmap.engine import run_debate
from cruxmap.experiment import run_experiment
from cruxmap.generation import ProviderTextGenerator
from cruxmap.healthcheck import run_health_checks
from cruxmap.models import EngineEvent, ExperimentConfig
from cruxmap.output import (
    describe_event,
    print_debate_summary,
    print_experiment_summary,
    save_debate,
    save_experiment,
)
from cruxmap.providers.anthropic import AnthropicProvider
from cruxmap.providers.base import AIProvider, ProviderError
from cruxmap.providers.gemini import GeminiProvider
from cruxmap.providers.openai_provider import OpenAIProvider

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

# Keyed by the `sdk` field of a models entry in settings.yaml.
PROVIDER_CLASSES: dict[str, type[AIProvider]] = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "gemini": GeminiProvider,
}


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _build_provider(config: AppConfig, name: str) -> AIProvider:
    """Instantiate the named provider. Exits with a message when it cannot be used."""
    if name not in config.models:
        console.print(f"[bold red]Error:[/bold red] Unknown provider '{name}'. Known: {', '.join(sorted(config.models))}")
        sys.exit(1)
    if name not in config.available_providers:
        console.print(f"[bold red]Error:[/bold red] No API key for '{name}'. Set {config.models[name].api_key_env} in .env.")
        sys.exit(1)
    model_cfg = config.models[name]
    provider_cls = PROVIDER_CLASSES.get(model_cfg.sdk)
    if provider_cls is None:
        console.print(f"[bold red]Error:[/bold red] Provider '{name}' uses unsupported sdk '{model_cfg.sdk}'.")
        sys.exit(1)
    try:
        return provider_cls(model_cfg)
    except ProviderError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)


def _check_provider(provider: AIProvider) -> None:
    """Ping the generator; exit unless it answers or the user chooses to continue."""
    console.print("\n[bold]Checking provider...[/bold]")
    results = asyncio.run(run_health_checks({provider.name(): provider}))
    health = results[provider.name()]
    if health.ok:
        console.print(f"  [green]OK  [/green] {provider.name()} ({provider.model_string()}, {health.latency_sec:.1f}s)\n")
        return
    short_err = health.error.splitlines()[0][:120] if health.error else "unknown error"
    console.print(f"  [red]FAIL[/red] {provider.name()}: {short_err}")
    if not click.confirm("Continue anyway?", default=False):
        sys.exit(1)


def _parse_personas(value: str, config: AppConfig) -> tuple[str, ...]:
    persona_ids = tuple(p.strip() for p in value.split(",") if p.strip())
    unknown = [p for p in persona_ids if p not in config.prompts.personas]
    if unknown:
        logger.warning("No profile configured for %s, using the default debater prompt", ", ".join(unknown))
    return persona_ids


def _load(ctx: click.Context, generator_name: str | None, skip_health_check: bool) -> tuple[AppConfig, ProviderTextGenerator]:
    config: AppConfig = ctx.obj["config"]
    provider = _build_provider(config, generator_name or config.defaults.generator)
    if not skip_health_check:
        _check_provider(provider)
    return config, ProviderTextGenerator(provider)


@click.group()
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None,
              help="Path to settings.yaml (default: bundled config)")
@click.pass_context
def main(ctx: click.Context, verbose: bool, config_path: Path | None) -> None:
    """cruxmap -- find the cruxes of a disagreement between personas.

    \b
    Examples:
      cruxmap debate "Will AI agents replace junior developers by 2030?"
      cruxmap debate "Nuclear or renewables?" --personas optimist,skeptic --turns 20
      cruxmap experiment "Should central banks issue digital currencies?" --rounds 3
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config(config_path) if config_path else load_config()
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)
    ctx.obj = {"config": config}


@main.command()
@click.argument("topic")
@click.option("--personas", default="optimist,skeptic", show_default=True, help="Comma-separated persona ids")
@click.option("--turns", default=None, type=int, help="Turn budget (default: from config)")
@click.option("--generator", "generator_name", default=None, help="Provider to generate with (default: from config)")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
@click.pass_context
def debate(
    ctx: click.Context,
    topic: str,
    personas: str,
    turns: int | None,
    generator_name: str | None,
    output_path: str | None,
    skip_health_check: bool,
) -> None:
    """Run a live multi-turn debate and map its argument graph."""
    config, generator = _load(ctx, generator_name, skip_health_check)
    persona_ids = _parse_personas(personas, config)
    if len(persona_ids) < 2:
        console.print("[bold red]Error:[/bold red] A debate needs at least 2 personas.")
        sys.exit(1)
    max_turns = turns if turns is not None else config.defaults.max_turns
    output_dir = Path(output_path) if output_path else config.defaults.output_dir

    console.print(f"\n[bold cyan]Debate[/bold cyan] {', '.join(persona_ids)}, up to {max_turns} turns")
    console.print(f"Topic: [italic]{topic[:80]}{'...' if len(topic) > 80 else ''}[/italic]\n")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:

        def on_event(event: EngineEvent) -> None:
            line = describe_event(event)
            if line:
                progress.print(line)

        progress.add_task("Debating...", total=None)
        output = asyncio.run(run_debate(
            topic=topic,
            persona_ids=persona_ids,
            generator=generator,
            prompts=config.prompts,
            config=config.debate,
            max_turns=max_turns,
            on_event=on_event,
        ))

    print_debate_summary(output)
    saved_path = save_debate(output, output_dir)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")


@main.command()
@click.argument("topic")
@click.option("--personas", default="optimist,skeptic", show_default=True, help="Exactly two comma-separated persona ids")
@click.option("--rounds", default=None, type=int, help="Maximum debate rounds (default: from config)")
@click.option("--generator", "generator_name", default=None, help="Provider to generate with (default: from config)")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
@click.pass_context
def experiment(
    ctx: click.Context,
    topic: str,
    personas: str,
    rounds: int | None,
    generator_name: str | None,
    output_path: str | None,
    skip_health_check: bool,
) -> None:
    """Run the belief-graph experiment: QBAF extraction, revision rounds, structural cruxes."""
    config, generator = _load(ctx, generator_name, skip_health_check)
    persona_ids = _parse_personas(personas, config)
    if len(persona_ids) != 2:
        console.print("[bold red]Error:[/bold red] The experiment compares exactly 2 personas.")
        sys.exit(1)
    settings = config.belief_graph
    experiment_config = ExperimentConfig(
        topic=topic,
        persona_ids=(persona_ids[0], persona_ids[1]),
        max_rounds=rounds if rounds is not None else config.defaults.max_rounds,
        convergence_threshold=settings.convergence_threshold,
        crux_variance_threshold=settings.crux_variance_threshold,
        consensus_variance_threshold=settings.consensus_variance_threshold,
        top_k_cruxes=settings.top_k_cruxes,
    )
    output_dir = Path(output_path) if output_path else config.defaults.output_dir

    console.print(f"\n[bold cyan]Experiment[/bold cyan] {persona_ids[0]} vs {persona_ids[1]}, "
                  f"up to {experiment_config.max_rounds} rounds")
    console.print(f"Topic: [italic]{topic[:80]}{'...' if len(topic) > 80 else ''}[/italic]\n")

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:

        def on_event(event: EngineEvent) -> None:
            line = describe_event(event)
            if line:
                progress.print(line)

        progress.add_task("Running experiment...", total=None)
        result = asyncio.run(run_experiment(
            experiment_config, generator, config.prompts, settings, on_event=on_event,
        ))

    print_experiment_summary(result)
    saved_path = save_experiment(result, output_dir)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")


if __name__ == "__main__":
    main()
