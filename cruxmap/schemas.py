"""Pydantic shapes of every structured response requested from a generator.

Field names are what the prompts ask for. Validation is lenient on optional
lists and strict on the fields the core cannot work without.
"""

from typing import Literal

from pydantic import BaseModel, Field


class DialogueResponse(BaseModel):
    dialogue: str
    move: str = "CLAIM"  # validated against DIALOGUE_MOVES by the engine


# ─── Crystallization & discovery ────────────────────────────


class NewArgumentSpec(BaseModel):
    speaker_id: str
    claim: str
    premises: list[str] = Field(default_factory=list)
    assumptions: list[str] = Field(default_factory=list)
    evidence: list[str] = Field(default_factory=list)


class ArgumentUpdateSpec(BaseModel):
    id: str
    claim: str | None = None
    assumptions: list[str] | None = None


class AttackSpec(BaseModel):
    from_arg_id: str
    to_arg_id: str
    type: Literal["rebut", "undermine", "undercut"] = "rebut"
    target_component: Literal["claim", "premise", "assumption"] = "claim"
    target_index: int = 0
    counter_proposition: str = ""
    rationale: str = ""


class CrystallizationResponse(BaseModel):
    new_args: list[NewArgumentSpec] = Field(default_factory=list)
    updated_args: list[ArgumentUpdateSpec] = Field(default_factory=list)
    removed_arg_ids: list[str] = Field(default_factory=list)
    new_attacks: list[AttackSpec] = Field(default_factory=list)
    removed_attack_ids: list[str] = Field(default_factory=list)


class DiscoveredAttackSpec(AttackSpec):
    evidence: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    valid: bool = True
    attack_strength: float | None = Field(default=None, ge=0.0, le=1.0)


class DiscoveryResponse(BaseModel):
    attacks: list[DiscoveredAttackSpec] = Field(default_factory=list)


# ─── QBAF extraction ────────────────────────────────────────


class RootClaimResponse(BaseModel):
    claim: str
    grounding: list[str] = Field(default_factory=list)


class StancedClaim(BaseModel):
    claim: str
    type: Literal["pro", "con"]
    grounding: list[str] = Field(default_factory=list)


class ArgumentsResponse(BaseModel):
    arguments: list[StancedClaim]


class SubArgumentsResponse(BaseModel):
    sub_arguments: list[StancedClaim]


class BaseScoresResponse(BaseModel):
    scores: dict[str, float]


# ─── Belief-graph rounds ────────────────────────────────────


class DebateMoveSpec(BaseModel):
    target_node_id: str
    claim: str
    type: Literal["attack", "support"]
    weight: float = 0.5  # clamped on apply
    grounding: list[str] = Field(default_factory=list)


class DebateMovesResponse(BaseModel):
    moves: list[DebateMoveSpec] = Field(default_factory=list)


class TargetStrengthResponse(BaseModel):
    target_strength: float


class RevisionResistanceResponse(BaseModel):
    epistemic_openness: float = 0.5
    stakes_rigidity: float = 0.5
    flip_triggered: bool = False
    resistance: float
    reasoning: str = ""


# ─── Community graph ────────────────────────────────────────


class ClaimPairSpec(BaseModel):
    index_a: int = Field(ge=0)
    index_b: int = Field(ge=0)
    relationship: Literal["agreement", "opposition", "related"]
    confidence: float = Field(ge=0.0, le=1.0)
    shared_topic: str = ""


class ClaimComparisonResponse(BaseModel):
    mappings: list[ClaimPairSpec] = Field(default_factory=list)


# ─── Provider checks ────────────────────────────────────────


class HealthResponse(BaseModel):
    status: str
