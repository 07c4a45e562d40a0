"""
Evaluator Runner

Single entry point that dispatches an EvaluatorDefinition to the right
evaluation unit (preset, sandboxed code, LLM grading, composite), times it,
and guarantees a verdict is returned instead of an exception.

Usage:
    from eval_engine.runner import run_evaluator

    result = await run_evaluator(definition, evaluator_input, model_invoker=invoker)
    print(result.passed, result.details["latencyMs"])
"""

import dataclasses
import logging
import time
from typing import Any, Iterable, Mapping, Optional, assert_never

import config
from utils.exceptions import ConfigError, SandboxUnavailableError

from .composite import run_composite_evaluator
from .llm import run_llm_evaluator
from .presets import SchemaValidatorCache, run_preset_evaluator
from .types import (
    EvaluatorDefinition,
    EvaluatorExecutor,
    EvaluatorInput,
    EvaluatorOutput,
    EvaluatorType,
    ModelInvoker,
    SandboxExecutor,
)

logger = logging.getLogger(__name__)

DEFAULT_CODE_TIMEOUT_MS = config.CODE_TIMEOUT_MS


async def _run_code(
    definition: EvaluatorDefinition,
    input: EvaluatorInput,
    sandbox_executor: Optional[SandboxExecutor],
) -> EvaluatorOutput:
    if not definition.code:
        raise ConfigError("code evaluator has no code")
    if sandbox_executor is None:
        raise SandboxUnavailableError("no sandbox executor configured for code evaluators")

    timeout_ms = definition.timeout_ms or DEFAULT_CODE_TIMEOUT_MS
    result: Any = await sandbox_executor(definition.code, input, timeout_ms)
    if isinstance(result, EvaluatorOutput):
        result = result.to_dict()
    if isinstance(result, Mapping):
        return EvaluatorOutput.from_dict(result)
    raise ValueError(f"sandbox returned {type(result).__name__}, expected an evaluator result")


async def _dispatch(
    definition: EvaluatorDefinition,
    input: EvaluatorInput,
    sandbox_executor: Optional[SandboxExecutor],
    model_invoker: Optional[ModelInvoker],
    executor: Optional[EvaluatorExecutor],
    visited_ids: Optional[Iterable[str]],
    schema_cache: Optional[SchemaValidatorCache],
) -> EvaluatorOutput:
    evaluator_type = EvaluatorType.parse(definition.type)

    if evaluator_type is EvaluatorType.PRESET:
        if not definition.preset_type:
            raise ConfigError("preset evaluator has no preset type")
        return run_preset_evaluator(
            definition.preset_type, input, definition.params, schema_cache=schema_cache
        )
    elif evaluator_type is EvaluatorType.CODE:
        return await _run_code(definition, input, sandbox_executor)
    elif evaluator_type is EvaluatorType.LLM:
        if definition.llm is None:
            raise ConfigError("LLM evaluator has no configuration")
        if model_invoker is None:
            raise ConfigError("no model invoker configured for LLM evaluators")
        return await run_llm_evaluator(definition.llm, input, model_invoker)
    elif evaluator_type is EvaluatorType.COMPOSITE:
        if definition.composite is None:
            raise ConfigError("composite evaluator has no configuration")
        if executor is None:
            raise ConfigError("no evaluator executor configured for composite evaluators")
        return await run_composite_evaluator(
            definition.composite, input, executor, visited_ids=visited_ids
        )
    else:
        assert_never(evaluator_type)


async def run_evaluator(
    definition: EvaluatorDefinition,
    input: EvaluatorInput,
    *,
    sandbox_executor: Optional[SandboxExecutor] = None,
    model_invoker: Optional[ModelInvoker] = None,
    executor: Optional[EvaluatorExecutor] = None,
    visited_ids: Optional[Iterable[str]] = None,
    schema_cache: Optional[SchemaValidatorCache] = None,
) -> EvaluatorOutput:
    """Run one evaluator and return its verdict with ``details.latencyMs``.

    Never raises: a missing collaborator, a sandbox failure or a malformed
    result becomes ``passed=False`` with reason
    ``"evaluator execution failed: <message>"``.

    Args:
        definition: What to run.
        input: The output under evaluation.
        sandbox_executor: Required for CODE evaluators.
        model_invoker: Required for LLM evaluators.
        executor: Runs children by id; required for COMPOSITE evaluators.
        visited_ids: Ids already on the current evaluation path.
        schema_cache: Compiled JSON-schema validators to reuse.
    """
    start = time.perf_counter()
    try:
        result = await _dispatch(
            definition,
            input,
            sandbox_executor,
            model_invoker,
            executor,
            visited_ids,
            schema_cache,
        )
    except Exception as e:
        logger.warning("Evaluator %s failed: %s", definition.id or definition.type, e)
        result = EvaluatorOutput(
            passed=False, score=0.0, reason=f"evaluator execution failed: {e}"
        )

    latency_ms = (time.perf_counter() - start) * 1000
    logger.debug(
        "Evaluator %s -> passed=%s score=%s (%.1fms)",
        definition.id or definition.type,
        result.passed,
        result.score,
        latency_ms,
    )
    return dataclasses.replace(result, details={**(result.details or {}), "latencyMs": latency_ms})
