"""
eval-engine: Evaluator Engine for LLM Outputs

Scores a model output against an expected answer or a rule and returns a
normalized verdict (passed, score in [0, 1], reason, details).

Main components:
- similarity: Levenshtein, cosine and Jaccard string similarity
- presets: exact_match, contains, regex, json_schema, similarity matchers
- llm: LLM-as-grader adapter (prompt rendering, tolerant output parsing)
- composite: AND / OR / weighted-average aggregation with cycle detection
- runner: single dispatch point for every evaluator kind
- registry, suite, reporting: YAML-driven evaluation runs and reports
- providers: Ollama and Google grading-model backends
"""

from .composite import aggregate, detect_cycle, find_cycle, run_composite_evaluator
from .llm import extract_score_from_text, parse_llm_output, render_template, run_llm_evaluator
from .presets import SchemaValidatorCache, run_preset_evaluator
from .runner import run_evaluator
from .similarity import calculate_similarity
from .types import (
    AggregationMode,
    CompositeEvaluatorConfig,
    EvaluatorDefinition,
    EvaluatorInput,
    EvaluatorOutput,
    EvaluatorType,
    ExecutionMode,
    LLMEvaluatorConfig,
    LLMEvaluatorOutput,
    PresetType,
    ScoreRange,
    SimilarityAlgorithm,
)

__version__ = "0.1.0"

__all__ = [
    "AggregationMode",
    "CompositeEvaluatorConfig",
    "EvaluatorDefinition",
    "EvaluatorInput",
    "EvaluatorOutput",
    "EvaluatorType",
    "ExecutionMode",
    "LLMEvaluatorConfig",
    "LLMEvaluatorOutput",
    "PresetType",
    "SchemaValidatorCache",
    "ScoreRange",
    "SimilarityAlgorithm",
    "aggregate",
    "calculate_similarity",
    "detect_cycle",
    "extract_score_from_text",
    "find_cycle",
    "parse_llm_output",
    "render_template",
    "run_composite_evaluator",
    "run_evaluator",
    "run_llm_evaluator",
    "run_preset_evaluator",
]
