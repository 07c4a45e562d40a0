"""
LLM Grading Adapter

Uses a grading model to score a response. The adapter renders the grading
prompt, calls an injected ModelInvoker, and turns the model's raw text into
a normalized EvaluatorOutput.

The grading model is asked to answer with a JSON object such as:

    {"overall": 8, "dimensions": {"accuracy": 9}, "reason": "..."}

``overall`` is mapped from the configured score range onto [0, 1] and
compared with the pass threshold. When no JSON can be found at all, a
plain-text score ("score: 7", "8/10", "评分: 8") is accepted as a fallback.

Usage:
    from eval_engine.llm import run_llm_evaluator
    from eval_engine.types import LLMEvaluatorConfig

    config = LLMEvaluatorConfig(model_id="ollama/qwen2.5:7b")
    result = await run_llm_evaluator(config, evaluator_input, model_invoker)
    print(result.score, result.reason)
"""

import json
import logging
import math
import re
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .types import (
    ChatMessage,
    EvaluatorInput,
    EvaluatorOutput,
    LLMEvaluatorConfig,
    LLMEvaluatorOutput,
    ModelInvoker,
    ModelResponse,
    ScoreRange,
    TokenUsage,
    clamp_score,
)

logger = logging.getLogger(__name__)

DEFAULT_PASS_THRESHOLD = 0.6

DEFAULT_EVALUATION_PROMPT = """You are an expert evaluator. Judge the quality of the response below.

Question/Task:
{{input}}

Response to evaluate:
{{output}}
{{#if expected}}
Reference answer:
{{expected}}
{{/if}}

Score the response from 0 to 10 for relevance, accuracy and clarity, then give
an overall score. Answer with a single JSON object in this exact format:
```json
{"overall": <number 0-10>, "dimensions": {"relevance": <number>, "accuracy": <number>, "clarity": <number>}, "reason": "<one or two sentences>"}
```
"""

CONDITIONAL_BLOCK = re.compile(r"\{\{#if expected\}\}(.*?)\{\{/if\}\}", re.DOTALL)
PLACEHOLDER = re.compile(r"\{\{(input|output|expected)\}\}")

JSON_CODE_BLOCK = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

# Checked in order; the first match wins.
TEXT_SCORE_PATTERNS = [
    re.compile(
        r"(?:评分|得分|分数|score|overall)\s*(?:[:：]|为|is)?\s*(-?\d+(?:\.\d+)?)",
        re.IGNORECASE,
    ),
    re.compile(r"(-?\d+(?:\.\d+)?)\s*/\s*\d+(?:\.\d+)?"),
]


def render_template(template: str, input: EvaluatorInput) -> str:
    """Render a grading prompt.

    ``{{#if expected}}...{{/if}}`` blocks are dropped entirely when there is
    no expected value and unwrapped otherwise. Then ``{{input}}``,
    ``{{output}}`` and ``{{expected}}`` are substituted in a single pass, so
    substituted text is never expanded again.
    """
    if input.expected is None:
        rendered = CONDITIONAL_BLOCK.sub("", template)
    else:
        rendered = CONDITIONAL_BLOCK.sub(lambda m: m.group(1), template)

    values = {
        "input": input.input,
        "output": input.output,
        "expected": input.expected if input.expected is not None else "",
    }
    return PLACEHOLDER.sub(lambda m: values[m.group(1)], rendered)


def _normalize(raw: float, score_range: ScoreRange) -> float:
    return clamp_score((raw - score_range.min) / (score_range.max - score_range.min))


def _valid_range(score_range: ScoreRange) -> bool:
    return (
        math.isfinite(score_range.min)
        and math.isfinite(score_range.max)
        and score_range.max > score_range.min
    )


def _finite_number(value: Any) -> Optional[float]:
    """Return value as a finite float, or None (bools and huge ints included)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def extract_json_object(text: str) -> Tuple[Optional[Any], Optional[str]]:
    """Pull a JSON value out of free-form model text.

    Tries a fenced ```json block first, then the widest ``{...}`` span.

    Returns:
        (parsed_value, None) on success, (None, error_message) otherwise.
    """
    candidates = []
    block = JSON_CODE_BLOCK.search(text)
    if block:
        candidates.append(block.group(1))
    obj = JSON_OBJECT.search(text)
    if obj:
        candidates.append(obj.group(0))

    if not candidates:
        return None, "could not extract JSON from LLM output"

    last_error = ""
    for candidate in candidates:
        try:
            return json.loads(candidate), None
        except json.JSONDecodeError as e:
            last_error = str(e)
    return None, f"could not extract JSON from LLM output (failed to parse: {last_error})"


def parse_llm_output(
    text: str,
    score_range: Optional[ScoreRange] = None,
    pass_threshold: float = DEFAULT_PASS_THRESHOLD,
) -> EvaluatorOutput:
    """Turn raw grading-model text into a verdict. Never raises.

    Args:
        text: Raw model output.
        score_range: Scale of the model's ``overall`` score (default 0-10).
        pass_threshold: Minimum normalized score to pass.
    """
    score_range = score_range or ScoreRange()
    if not _valid_range(score_range):
        return EvaluatorOutput(passed=False, score=0.0, reason="invalid score range")

    parsed, error = extract_json_object(text)
    if error is not None:
        return EvaluatorOutput(
            passed=False, score=0.0, reason=error, details={"stage": "extract", "raw": text}
        )

    overall = parsed.get("overall") if isinstance(parsed, dict) else None
    raw_score = _finite_number(overall)
    if raw_score is None:
        return EvaluatorOutput(
            passed=False, score=0.0, reason="missing overall score", details={"parsed": parsed}
        )

    score = _normalize(raw_score, score_range)
    passed = score >= pass_threshold

    reason = parsed.get("reason")
    if not isinstance(reason, str) or not reason.strip():
        reason = (
            f"overall score {overall} on a {score_range.min:g}-{score_range.max:g} scale "
            f"({'passed' if passed else 'below'} threshold {pass_threshold})"
        )

    details: Dict[str, Any] = {
        "rawScore": overall,
        "scoreRange": {"min": score_range.min, "max": score_range.max},
        "passThreshold": pass_threshold,
    }
    if "dimensions" in parsed:
        details["dimensions"] = parsed["dimensions"]

    return EvaluatorOutput(passed=passed, score=score, reason=reason, details=details)


def extract_score_from_text(
    text: str, score_range: Optional[ScoreRange] = None
) -> Optional[float]:
    """Find a plain-text score and normalize it onto [0, 1].

    Recognizes "评分: 8", "评分为 8/10", "score: 7", "overall: 9.5" and
    "8/10" (case-insensitive). Returns None when nothing matches.
    """
    score_range = score_range or ScoreRange()
    if not _valid_range(score_range):
        return None

    for pattern in TEXT_SCORE_PATTERNS:
        match = pattern.search(text)
        if match:
            return _normalize(float(match.group(1)), score_range)
    return None


def _coerce_response(response: Union[ModelResponse, Mapping[str, Any]]) -> ModelResponse:
    """Accept a ModelResponse or the equivalent camelCase mapping."""
    if isinstance(response, ModelResponse):
        return response
    if isinstance(response, Mapping):
        tokens = response.get("tokens") or {}
        return ModelResponse(
            output=str(response.get("output", "")),
            tokens=TokenUsage(
                input=int(tokens.get("input", 0)),
                output=int(tokens.get("output", 0)),
                total=int(tokens.get("total", 0)),
            ),
            latency_ms=float(response.get("latencyMs", response.get("latency_ms", 0.0))),
            cost=response.get("cost"),
        )
    raise TypeError(f"model invoker returned {type(response).__name__}, expected ModelResponse")


def _grade(text: str, config: LLMEvaluatorConfig) -> Tuple[EvaluatorOutput, Dict[str, Any]]:
    verdict = parse_llm_output(text, config.score_range, config.pass_threshold)
    details = dict(verdict.details or {})
    if details.get("stage") != "extract":
        return verdict, details

    fallback = extract_score_from_text(text, config.score_range)
    if fallback is None:
        return verdict, details

    verdict = EvaluatorOutput(
        passed=fallback >= config.pass_threshold,
        score=fallback,
        reason=f"score read from plain-text LLM output ({fallback:.2f})",
    )
    details = {
        "extraction": "text",
        "scoreRange": {"min": config.score_range.min, "max": config.score_range.max},
        "passThreshold": config.pass_threshold,
    }
    return verdict, details


async def run_llm_evaluator(
    config: LLMEvaluatorConfig,
    input: EvaluatorInput,
    model_invoker: ModelInvoker,
) -> LLMEvaluatorOutput:
    """Grade one output with the configured model. Never raises."""
    try:
        prompt = render_template(config.prompt or DEFAULT_EVALUATION_PROMPT, input)
        messages = [ChatMessage(role="user", content=prompt)]
        response = _coerce_response(await model_invoker(config.model_id, messages))
        verdict, details = _grade(response.output, config)
    except Exception as e:
        logger.warning("LLM evaluation with %s failed: %s", config.model_id, e)
        return LLMEvaluatorOutput(passed=False, score=0.0, reason=f"LLM evaluation failed: {e}")

    details["modelId"] = config.model_id
    details["modelLatencyMs"] = response.latency_ms

    logger.debug(
        "LLM grade from %s -> passed=%s score=%s", config.model_id, verdict.passed, verdict.score
    )
    return LLMEvaluatorOutput(
        passed=verdict.passed,
        score=verdict.score,
        reason=verdict.reason,
        details=details,
        token_usage=response.tokens,
        cost=response.cost,
    )
