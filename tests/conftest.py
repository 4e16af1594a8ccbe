"""Shared pytest fixtures."""

from collections import defaultdict, deque
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel

from config.config_loader import (
    AppConfig,
    BeliefGraphConfig,
    DebateConfig,
    DefaultsConfig,
    ModelConfig,
    PromptsConfig,
)
from cruxmap.generation import TextGenerator
from cruxmap.models import (
    Argument,
    ArgumentationGraphState,
    Attack,
    AttackTarget,
    ModelResponse,
    PersonaQBAF,
    QBAFEdge,
    QBAFNode,
    ValidationResult,
)
from cruxmap.providers.base import AIProvider, ProviderError


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        sdk="test",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        judge_system="You are a neutral judge.",
        opening="Opening statement on: {topic}",
        dialogue_turn="Topic: {topic}\n{dialogue}{moderator_note}\nMoves: {moves}",
        resolution="Topic: {topic}\n{dialogue}\nFinal position:",
        crystallization="Topic: {topic}\nArgs:\n{arguments}\nAttacks:\n{attacks}\nDialogue:\n{dialogue}",
        discovery="Topic: {topic}\n{arguments}",
        qbaf_root="Thesis on {topic}",
        qbaf_arguments="Topic: {topic}\nThesis: {root_claim}",
        qbaf_sub_arguments="Topic: {topic}\nClaim: {claim} ({stance})",
        qbaf_scores_system="Score claims about {topic}.",
        qbaf_scores="Nodes:\n{nodes}",
        debate_moves="Round {round} on {topic}\nYours:\n{own_graph}\nTheirs:\n{opponent_graph}\nTargets: {targets}",
        target_strength="{persona} holds {thesis} at {strength}.\nAttacks:\n{attacks}",
        revision_resistance="Profile: {profile}\nAttacks:\n{attacks}",
        claim_comparison="A:\n{claims_a}\nB:\n{claims_b}",
        settling_system="Write one settling question.",
        settling_question="Claim: {claim}\n{positions}",
        personas={"optimist": "You are an optimist.", "skeptic": "You are a skeptic."},
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        generator="claude",
        output_dir=tmp_path / "output",
        max_turns=12,
        max_rounds=2,
    )


@pytest.fixture
def sample_app_config(
    sample_defaults_config: DefaultsConfig,
    sample_prompts_config: PromptsConfig,
) -> AppConfig:
    model_cfg = ModelConfig(
        name="claude",
        sdk="anthropic",
        model="claude-sonnet-4-20250514",
        api_key_env="ANTHROPIC_API_KEY",
        timeout_sec=60,
        max_tokens=4096,
    )
    return AppConfig(
        defaults=sample_defaults_config,
        models={"claude": model_cfg},
        prompts=sample_prompts_config,
        debate=DebateConfig(),
        belief_graph=BeliefGraphConfig(),
        available_providers={"claude"},
    )


class MockProvider(AIProvider):
    """Test double AIProvider."""

    def __init__(self, provider_name: str = "mock", response_content: str = "Mock response") -> None:
        self._name = provider_name
        self._response_content = response_content
        # Shadow the class method with an AsyncMock at the instance level.
        # ABC check passes because generate is defined in the class body below.
        self.generate = AsyncMock(  # type: ignore[assignment]
            return_value=ModelResponse(
                provider=provider_name,
                model="mock-model",
                content=response_content,
                latency_sec=0.1,
                token_count=10,
            )
        )

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def generate(
        self, prompt: str, system: str | None = None, temperature: float | None = None, json_mode: bool = False,
    ) -> ModelResponse:
        """Default implementation; replaced by AsyncMock in __init__."""
        return ModelResponse(
            provider=self._name,
            model="mock-model",
            content=self._response_content,
            latency_sec=0.1,
            token_count=10,
        )


class ScriptedGenerator(TextGenerator):
    """Test double TextGenerator returning queued responses by schema.

    Queued items are consumed in order; an Exception item is raised instead.
    When a queue runs dry the schema's default is returned, or ProviderError
    raised if it has none.
    """

    def __init__(self, defaults: dict[type, BaseModel] | None = None, text_default: str | None = None) -> None:
        self._queues: dict[type, deque] = defaultdict(deque)
        self._defaults = dict(defaults or {})
        self._text_queue: deque = deque()
        self._text_default = text_default
        self.calls: list[tuple[str, str | None, str]] = []

    def queue(self, schema: type, *responses) -> "ScriptedGenerator":
        self._queues[schema].extend(responses)
        return self

    def queue_text(self, *responses) -> "ScriptedGenerator":
        self._text_queue.extend(responses)
        return self

    def calls_for(self, schema: type) -> list[tuple[str, str | None, str]]:
        return [c for c in self.calls if c[0] == schema.__name__]

    async def complete_json(self, system, prompt, schema, temperature=None):
        self.calls.append((schema.__name__, system, prompt))
        queue = self._queues[schema]
        if queue:
            item = queue.popleft()
        elif schema in self._defaults:
            item = self._defaults[schema]
        else:
            raise ProviderError("scripted", f"No response queued for {schema.__name__}")
        if isinstance(item, Exception):
            raise item
        return item

    async def complete_text(self, system, prompt, temperature=None):
        self.calls.append(("text", system, prompt))
        if self._text_queue:
            item = self._text_queue.popleft()
        elif self._text_default is not None:
            item = self._text_default
        else:
            raise ProviderError("scripted", "No text response queued")
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()


@pytest.fixture
def scripted() -> ScriptedGenerator:
    return ScriptedGenerator()


# ─── Graph builders ─────────────────────────────────────────


def make_attack(attack_id: str, from_id: str, to_id: str, counter: str = "", speaker: str = "") -> Attack:
    return Attack(
        id=attack_id,
        from_arg_id=from_id,
        to_arg_id=to_id,
        type="rebut",
        target=AttackTarget(arg_id=to_id),
        counter_proposition=counter,
        speaker_id=speaker,
    )


def make_graph(
    arguments: list[Argument],
    attacks: list[Attack] = (),
    invalid: set[str] = frozenset(),
    topic: str = "Test topic",
) -> ArgumentationGraphState:
    """Graph with every attack validated unless its id is listed in invalid."""
    return ArgumentationGraphState(
        topic=topic,
        arguments=tuple(arguments),
        attacks=tuple(attacks),
        validation_results=tuple(ValidationResult(attack_id=a.id, valid=a.id not in invalid) for a in attacks),
    )


def make_qbaf(
    persona_id: str,
    nodes: list[tuple[str, str, float, int]],
    edges: list[tuple[str, str, str, float]] = (),
    topic: str = "Test topic",
) -> PersonaQBAF:
    """nodes: (id, claim, tau, depth); the first node is the root. edges: (from, to, type, weight)."""
    qbaf_nodes = tuple(
        QBAFNode(
            id=node_id,
            claim=claim,
            type="root" if i == 0 else "pro",
            base_score=tau,
            dialectical_strength=tau,
            persona_id=persona_id,
            depth=depth,
        )
        for i, (node_id, claim, tau, depth) in enumerate(nodes)
    )
    qbaf_edges = tuple(
        QBAFEdge(id=f"{src}->{dst}", from_id=src, to_id=dst, type=edge_type, weight=weight)
        for src, dst, edge_type, weight in edges
    )
    return PersonaQBAF(persona_id=persona_id, topic=topic, root_claim=nodes[0][0], nodes=qbaf_nodes, edges=qbaf_edges)


@pytest.fixture
def line_qbaf() -> PersonaQBAF:
    """leaf --attack--> mid --support--> root."""
    return make_qbaf(
        "alice",
        [("root", "Root thesis", 0.6, 0), ("mid", "Middle claim", 0.5, 1), ("leaf", "Leaf claim", 0.9, 2)],
        [("leaf", "mid", "attack", 1.0), ("mid", "root", "support", 1.0)],
    )
