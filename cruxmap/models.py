"""Pure dataclasses for the argumentation core. No logic, no deps.

Graph and QBAF records are frozen: every engine operation takes a value and
returns a new one. Cross-references are by id, never by object.
"""

from dataclasses import dataclass, field
from typing import Any, Literal

Label = Literal["IN", "OUT", "UNDEC"]
AttackType = Literal["rebut", "undermine", "undercut"]
AttackComponent = Literal["claim", "premise", "assumption"]
DialogueMove = Literal["CLAIM", "CHALLENGE", "CLARIFY", "CONCEDE", "REFRAME", "PROPOSE_CRUX"]
DebatePhase = Literal[1, 2, 3, 4]
NodeType = Literal["root", "pro", "con", "evidence"]
EdgeType = Literal["attack", "support"]
Polarity = Literal["positive", "negative", "neutral"]
Relationship = Literal["agreement", "opposition", "related"]
Classification = Literal["consensus", "crux", "neutral"]
DisagreementType = Literal["base_score", "edge_structure", "both"]
Regime = Literal["consensus", "polarized", "partial"]

DIALOGUE_MOVES: tuple[str, ...] = ("CLAIM", "CHALLENGE", "CLARIFY", "CONCEDE", "REFRAME", "PROPOSE_CRUX")


@dataclass
class ModelResponse:
    provider: str          # configured provider name, e.g. "claude"
    model: str             # actual model string used
    content: str
    latency_sec: float
    token_count: int | None


# ─── Qualitative layer ──────────────────────────────────────


@dataclass(frozen=True)
class Argument:
    id: str
    speaker_id: str
    claim: str
    premises: tuple[str, ...] = ()
    assumptions: tuple[str, ...] = ()
    evidence: tuple[str, ...] = ()
    round: int = 0


@dataclass(frozen=True)
class AttackTarget:
    arg_id: str
    component: AttackComponent = "claim"
    index: int = 0


@dataclass(frozen=True)
class Attack:
    id: str
    from_arg_id: str
    to_arg_id: str
    type: AttackType
    target: AttackTarget
    counter_proposition: str = ""
    rationale: str = ""
    evidence: tuple[str, ...] = ()
    confidence: float = 0.8
    speaker_id: str = ""
    round: int = 0


@dataclass(frozen=True)
class ValidationResult:
    attack_id: str
    valid: bool
    attack_strength: float = 0.8
    corrections: str | None = None


@dataclass(frozen=True)
class ArgumentationGraphState:
    topic: str
    arguments: tuple[Argument, ...] = ()
    attacks: tuple[Attack, ...] = ()
    validation_results: tuple[ValidationResult, ...] = ()
    # Derived by semantics.recompute_semantics only
    labelling: dict[str, Label] = field(default_factory=dict)
    grounded_extension: frozenset[str] = frozenset()
    preferred_extensions: tuple[frozenset[str], ...] = ()


# ─── Dialogue & controller ──────────────────────────────────


@dataclass(frozen=True)
class DialogueTurn:
    turn_index: int
    phase: DebatePhase
    persona_id: str
    dialogue: str
    move: DialogueMove
    steering_hint: str | None = None
    timestamp: float = 0.0


@dataclass(frozen=True)
class Concession:
    turn_index: int
    persona_id: str
    type: Literal["full", "partial", "scope_narrowing"]
    conceded_claim: str
    effect: str
    removed_arg_ids: tuple[str, ...] = ()
    updated_arg_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class ArgumentUpdate:
    id: str
    claim: str | None = None
    assumptions: tuple[str, ...] | None = None


@dataclass(frozen=True)
class CrystallizationResult:
    new_args: tuple[Argument, ...] = ()
    updated_args: tuple[ArgumentUpdate, ...] = ()
    removed_arg_ids: tuple[str, ...] = ()
    new_attacks: tuple[Attack, ...] = ()
    removed_attack_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class ControllerState:
    phase: DebatePhase = 1
    turns_since_last_crystallization: int = 0
    substantive_moves_in_window: tuple[DialogueMove, ...] = ()
    contested_frontier_history: tuple[int, ...] = ()
    concessions: tuple[Concession, ...] = ()
    circling_detected: bool = False


@dataclass(frozen=True)
class PhaseTransition:
    to: DebatePhase
    reason: str


@dataclass(frozen=True)
class ControllerDecision:
    next_speaker: str
    steering_hint: str | None
    should_crystallize: bool
    phase_transition: PhaseTransition | None


@dataclass(frozen=True)
class ConvergenceResult:
    converged: bool
    reason: str | None = None


# ─── Graph output (live debate) ─────────────────────────────


@dataclass(frozen=True)
class CruxAssumption:
    assumption: str
    dependent_arg_ids: tuple[str, ...]
    centrality: int
    settling_question: str


@dataclass(frozen=True)
class Camp:
    extension_index: int
    argument_ids: tuple[str, ...]
    persona_ids: tuple[str, ...]


@dataclass(frozen=True)
class FlipCondition:
    persona_id: str
    condition: str
    argument_id: str
    attack_id: str


@dataclass(frozen=True)
class EvidenceLedgerEntry:
    persona_id: str
    accepted: tuple[str, ...]
    rejected: tuple[tuple[str, str], ...]  # (evidence, reason)


@dataclass(frozen=True)
class GraphDebateOutput:
    common_ground: tuple[Argument, ...]
    camps: tuple[Camp, ...]
    crux_assumptions: tuple[CruxAssumption, ...]
    symmetric_difference: tuple[Argument, ...]
    flip_conditions: tuple[FlipCondition, ...] = ()
    evidence_ledger: tuple[EvidenceLedgerEntry, ...] = ()


@dataclass(frozen=True)
class ProposedCrux:
    proposed_by: tuple[str, ...]
    statement: str
    acknowledged: bool


@dataclass(frozen=True)
class DebateEngineOutput:
    topic: str
    persona_ids: tuple[str, ...]
    transcript: tuple[DialogueTurn, ...]
    graph: ArgumentationGraphState
    crux: ProposedCrux | None
    common_ground: tuple[str, ...]
    camps: tuple[Camp, ...]
    concession_trail: tuple[Concession, ...]
    regime: Regime
    regime_description: str
    graph_output: GraphDebateOutput
    total_tokens: int
    duration_sec: float
    phase_reached: DebatePhase
    terminated_early: bool = False


# ─── Quantitative layer ─────────────────────────────────────


@dataclass(frozen=True)
class QBAFNode:
    id: str
    claim: str
    type: NodeType
    base_score: float               # τ, intrinsic plausibility
    dialectical_strength: float = 0.0  # σ, set by df_quad only
    grounding: tuple[str, ...] = ()
    persona_id: str = ""
    depth: int = 0


@dataclass(frozen=True)
class QBAFEdge:
    id: str
    from_id: str  # attacker / supporter
    to_id: str    # target
    type: EdgeType
    weight: float = 1.0


@dataclass(frozen=True)
class PersonaQBAF:
    persona_id: str
    topic: str
    root_claim: str  # root node id
    nodes: tuple[QBAFNode, ...]
    edges: tuple[QBAFEdge, ...] = ()
    round: int = 0


@dataclass(frozen=True)
class RevisionResult:
    adjusted_scores: dict[str, float]     # node id -> new τ, only nodes that moved
    total_shift: float                    # Σ|Δτ|
    polarity_map: dict[str, Polarity]
    iterations: int = 0
    final_strength: float = 0.0


@dataclass(frozen=True)
class TargetAssessment:
    target: float
    resistance: float
    raw_target: float
    reasoning: str


@dataclass(frozen=True)
class ClaimMapping:
    node_id_a: str
    node_id_b: str
    relationship: Relationship
    confidence: float
    shared_topic: str = ""


@dataclass(frozen=True)
class CommunityNode:
    id: str
    claim: str
    merged_from: tuple[str, ...]
    base_scores: dict[str, float]       # persona id -> τ
    community_strength: float
    variance: float | None              # None unless >= 2 sources merged
    classification: Classification
    relationship: Relationship | None = None


@dataclass(frozen=True)
class CommunityGraph:
    topic: str
    personas: tuple[str, ...]
    nodes: tuple[CommunityNode, ...]
    edges: tuple[QBAFEdge, ...]
    crux_nodes: tuple[str, ...]
    consensus_nodes: tuple[str, ...]


@dataclass(frozen=True)
class PersonaCruxPosition:
    base_score: float
    dialectical_strength: float
    contribution: float


@dataclass(frozen=True)
class StructuralCrux:
    id: str
    node_id: str
    claim: str
    crux_score: float
    disagreement_type: DisagreementType
    persona_positions: dict[str, PersonaCruxPosition]
    counterfactual: str = ""
    settling_question: str = ""


@dataclass(frozen=True)
class RoundSnapshot:
    round: int
    qbafs: dict[str, PersonaQBAF]
    root_strengths: dict[str, float]
    revision_costs: dict[str, float]


@dataclass(frozen=True)
class BenchmarkMetrics:
    root_strength_delta: dict[str, float]
    stance_divergence: float
    belief_revision_cost: dict[str, float]
    crux_localization_rate: float
    argument_coverage: float
    graph_growth_rate: dict[str, float]
    counterfactual_sensitivity: float
    convergence_round: int | None


@dataclass(frozen=True)
class ExperimentConfig:
    topic: str
    persona_ids: tuple[str, str]
    max_rounds: int = 5
    convergence_threshold: float = 0.02
    crux_variance_threshold: float = 0.3
    consensus_variance_threshold: float = 0.1
    top_k_cruxes: int = 5


@dataclass(frozen=True)
class ExperimentResult:
    config: ExperimentConfig
    rounds: tuple[RoundSnapshot, ...]
    community_graph: CommunityGraph
    cruxes: tuple[StructuralCrux, ...]
    benchmarks: BenchmarkMetrics
    total_rounds: int
    converged: bool
    timestamp: str
    phase_reached: str = "complete"


# ─── Events ─────────────────────────────────────────────────


@dataclass(frozen=True)
class EngineEvent:
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
