"""Load settings.yaml into typed dataclasses. Reports provider API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None


@dataclass
class PromptsConfig:
    judge_system: str
    opening: str
    dialogue_turn: str
    resolution: str
    crystallization: str
    discovery: str
    qbaf_root: str
    qbaf_arguments: str
    qbaf_sub_arguments: str
    qbaf_scores_system: str
    qbaf_scores: str
    debate_moves: str
    target_strength: str
    revision_resistance: str
    claim_comparison: str
    settling_system: str
    settling_question: str
    personas: dict[str, str] = field(default_factory=dict)


@dataclass
class DefaultsConfig:
    generator: str
    output_dir: Path
    max_turns: int = 30
    max_rounds: int = 5


@dataclass
class DebateConfig:
    """Controller and semantics tuning for the live debate engine."""

    min_turns_between_crystallizations: int = 2
    max_turns_between_crystallizations: int = 5
    circling_window: int = 4
    circling_overlap: float = 0.6
    crux_seeking_budget: float = 0.6
    resolution_budget: float = 0.85
    convergence_check_interval: int = 4
    preferred_search_limit: int = 10_000
    max_consecutive_failures: int = 3


@dataclass
class BeliefGraphConfig:
    """Thresholds for the quantitative (QBAF) pipeline."""

    convergence_threshold: float = 0.02
    crux_variance_threshold: float = 0.3
    consensus_variance_threshold: float = 0.1
    top_k_cruxes: int = 5
    max_shift_per_round: float = 0.2
    revision_step_size: float = 0.02
    revision_epsilon: float = 0.01
    revision_max_iterations: int = 50


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    debate: DebateConfig = field(default_factory=DebateConfig)
    belief_graph: BeliefGraphConfig = field(default_factory=BeliefGraphConfig)
    available_providers: set[str] = field(default_factory=set)


def _load_section(cls, raw: dict | None):
    """Build a tuning dataclass, keeping defaults for keys the YAML omits."""
    raw = raw or {}
    known = cls.__dataclass_fields__
    unknown = sorted(set(raw) - set(known))
    if unknown:
        logger.warning("Ignoring unknown %s keys: %s", cls.__name__, ", ".join(unknown))
    return cls(**{k: v for k, v in raw.items() if k in known})


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs providers without an API key but does not raise; callers check
    available_providers.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        generator=str(defaults_raw["generator"]),
        output_dir=Path(defaults_raw["output_dir"]),
        max_turns=int(defaults_raw.get("max_turns", 30)),
        max_rounds=int(defaults_raw.get("max_rounds", 5)),
    )

    prompts_raw = dict(raw["prompts"])
    personas_raw = raw.get("personas") or {}
    prompts = PromptsConfig(
        **{name: str(prompts_raw[name]) for name in PromptsConfig.__dataclass_fields__ if name != "personas"},
        personas={k: str(v).strip() for k, v in personas_raw.items()},
    )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
        )
        models[provider_name] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s, set %s in .env",
                provider_name,
                model_raw["api_key_env"],
            )

    return AppConfig(
        defaults=defaults,
        models=models,
        prompts=prompts,
        debate=_load_section(DebateConfig, raw.get("debate")),
        belief_graph=_load_section(BeliefGraphConfig, raw.get("belief_graph")),
        available_providers=available_providers,
    )
