"""
Evaluator Data Model

Value objects shared by every evaluation unit: the input/verdict pair,
preset and composite configuration, LLM grading configuration, and the
callback signatures the engine expects its host to inject.

All of these are constructed per evaluation request and discarded once the
EvaluatorOutput has been returned.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union


class PresetType(str, Enum):
    """Built-in deterministic matchers."""

    EXACT_MATCH = "exact_match"
    CONTAINS = "contains"
    REGEX = "regex"
    JSON_SCHEMA = "json_schema"
    SIMILARITY = "similarity"


class SimilarityAlgorithm(str, Enum):
    """String similarity algorithms used by the similarity preset."""

    LEVENSHTEIN = "levenshtein"
    COSINE = "cosine"
    JACCARD = "jaccard"


class ExecutionMode(str, Enum):
    """How a composite evaluator schedules its children."""

    PARALLEL = "parallel"
    SERIAL = "serial"


class AggregationMode(str, Enum):
    """How a composite evaluator combines child verdicts."""

    AND = "and"
    OR = "or"
    WEIGHTED_AVERAGE = "weighted_average"


class EvaluatorType(str, Enum):
    """Kinds of evaluators the runner can dispatch."""

    PRESET = "PRESET"
    CODE = "CODE"
    LLM = "LLM"
    COMPOSITE = "COMPOSITE"

    @classmethod
    def parse(cls, value: Union[str, "EvaluatorType"]) -> "EvaluatorType":
        """Accept enum members or case-insensitive names ("preset", "LLM")."""
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().upper())


def clamp_score(value: float) -> float:
    """Clamp a score into [0, 1]. NaN maps to 0."""
    value = float(value)
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


@dataclass(frozen=True)
class EvaluatorInput:
    """One model output to evaluate, with the prompt that produced it."""

    input: str
    output: str
    expected: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EvaluatorOutput:
    """Normalized verdict returned by every evaluation unit.

    ``score`` is optional but always within [0, 1] when present. ``passed``
    is not required to be a threshold of ``score``. ``details`` is
    diagnostic only.
    """

    passed: bool
    score: Optional[float] = None
    reason: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @property
    def effective_score(self) -> float:
        """Score used by aggregation: the score, or 1/0 from ``passed``."""
        if self.score is not None:
            return self.score
        return 1.0 if self.passed else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dict, omitting absent fields."""
        data: Dict[str, Any] = {"passed": self.passed}
        if self.score is not None:
            data["score"] = self.score
        if self.reason is not None:
            data["reason"] = self.reason
        if self.details is not None:
            data["details"] = self.details
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EvaluatorOutput":
        """Build a verdict from an untrusted mapping (e.g. a sandbox result).

        Raises:
            ValueError: If the mapping has no boolean ``passed`` or the score
                is not a finite number.
        """
        if not isinstance(data, Mapping):
            raise ValueError(f"evaluator result must be an object, got {type(data).__name__}")

        passed = data.get("passed")
        if not isinstance(passed, bool):
            raise ValueError("evaluator result is missing a boolean 'passed' field")

        score = data.get("score")
        if score is not None:
            if isinstance(score, bool) or not isinstance(score, (int, float)):
                raise ValueError("evaluator result 'score' must be a number")
            if not math.isfinite(score):
                raise ValueError("evaluator result 'score' must be finite")
            score = clamp_score(score)

        reason = data.get("reason")
        details = data.get("details")
        return cls(
            passed=passed,
            score=score,
            reason=str(reason) if reason is not None else None,
            details=dict(details) if isinstance(details, Mapping) else None,
        )


@dataclass
class TokenUsage:
    """Token accounting reported by a model invocation."""

    input: int = 0
    output: int = 0
    total: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"input": self.input, "output": self.output, "total": self.total}


@dataclass
class LLMEvaluatorOutput(EvaluatorOutput):
    """Verdict from the LLM grading adapter, with usage accounting."""

    token_usage: Optional[TokenUsage] = None
    cost: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.token_usage is not None:
            data["tokenUsage"] = self.token_usage.to_dict()
        if self.cost is not None:
            data["cost"] = self.cost
        return data


@dataclass
class ChatMessage:
    """A single message sent to the grading model."""

    role: str  # "system", "user", "assistant"
    content: str


@dataclass
class ModelResponse:
    """What a ModelInvoker returns."""

    output: str
    tokens: TokenUsage = field(default_factory=TokenUsage)
    latency_ms: float = 0.0
    cost: Optional[float] = None


@dataclass
class ScoreRange:
    """Raw score scale the grading model is asked to use."""

    min: float = 0.0
    max: float = 10.0

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ScoreRange":
        if not data:
            return cls()
        return cls(min=float(data.get("min", 0.0)), max=float(data.get("max", 10.0)))


@dataclass
class LLMEvaluatorConfig:
    """Configuration of an LLM-graded evaluator."""

    model_id: str
    prompt: Optional[str] = None
    score_range: ScoreRange = field(default_factory=ScoreRange)
    pass_threshold: float = 0.6

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LLMEvaluatorConfig":
        """Load from the API/YAML shape (camelCase or snake_case keys)."""
        model_id = data.get("modelId", data.get("model_id"))
        if not model_id:
            raise ValueError("LLM evaluator requires a modelId")
        threshold = data.get("passThreshold", data.get("pass_threshold"))
        return cls(
            model_id=str(model_id),
            prompt=data.get("prompt") or None,
            score_range=ScoreRange.from_dict(data.get("scoreRange", data.get("score_range"))),
            pass_threshold=0.6 if threshold is None else float(threshold),
        )


@dataclass
class CompositeEvaluatorConfig:
    """An evaluator defined as an aggregation over other evaluators."""

    evaluator_ids: List[str] = field(default_factory=list)
    mode: ExecutionMode = ExecutionMode.PARALLEL
    aggregation: AggregationMode = AggregationMode.AND
    weights: Optional[List[float]] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CompositeEvaluatorConfig":
        """Load from the API/YAML shape (camelCase or snake_case keys)."""
        ids = data.get("evaluatorIds", data.get("evaluator_ids")) or []
        weights = data.get("weights")
        if weights is not None:
            weights = [float(w) for w in weights]
            if not all(math.isfinite(w) for w in weights):
                raise ValueError(f"weights must be finite numbers, got {weights}")
        return cls(
            evaluator_ids=[str(i) for i in ids],
            mode=ExecutionMode(data.get("mode") or ExecutionMode.PARALLEL.value),
            aggregation=AggregationMode(data.get("aggregation") or AggregationMode.AND.value),
            weights=weights,
        )


# --- Injected collaborator contracts ---

ModelInvoker = Callable[[str, List[ChatMessage]], Awaitable[ModelResponse]]
"""(model_id, messages) -> ModelResponse. May be slow, may fail."""

SandboxExecutor = Callable[
    [str, EvaluatorInput, int], Awaitable[Union[EvaluatorOutput, Mapping[str, Any]]]
]
"""(code, input, timeout_ms) -> verdict. Enforces its own timeout and isolation."""

EvaluatorExecutor = Callable[[str, EvaluatorInput], Awaitable[EvaluatorOutput]]
"""(evaluator_id, input) -> verdict for a composite's child, whatever its kind."""

ConfigLookup = Callable[[str], Optional[CompositeEvaluatorConfig]]
"""evaluator_id -> composite config, or None for leaf evaluators."""


@dataclass
class EvaluatorDefinition:
    """Tagged evaluator definition dispatched by the runner."""

    type: EvaluatorType
    id: str = ""
    name: str = ""
    description: str = ""
    # PRESET
    preset_type: Optional[Union[PresetType, str]] = None
    params: Dict[str, Any] = field(default_factory=dict)
    # CODE
    code: Optional[str] = None
    timeout_ms: int = 5000
    language: str = "python"
    # LLM
    llm: Optional[LLMEvaluatorConfig] = None
    # COMPOSITE
    composite: Optional[CompositeEvaluatorConfig] = None
