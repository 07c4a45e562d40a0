"""
Composite Evaluators

A composite evaluator runs a list of other evaluators (by id) and combines
their verdicts with AND, OR or a weighted average. Children run either
concurrently or one after another; a serial AND stops at the first failure.

Children are executed through an injected EvaluatorExecutor so a composite
can nest any evaluator kind, including other composites. Reference cycles
are rejected both statically (detect_cycle / find_cycle, used when saving
a configuration) and at runtime (visited_ids).

Usage:
    from eval_engine.composite import run_composite_evaluator
    from eval_engine.types import CompositeEvaluatorConfig

    config = CompositeEvaluatorConfig(evaluator_ids=["a", "b"], aggregation="or")
    result = await run_composite_evaluator(config, evaluator_input, executor)
"""

import asyncio
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, assert_never

from .types import (
    AggregationMode,
    CompositeEvaluatorConfig,
    ConfigLookup,
    EvaluatorExecutor,
    EvaluatorInput,
    EvaluatorOutput,
    ExecutionMode,
)

logger = logging.getLogger(__name__)

WEIGHTED_PASS_THRESHOLD = 0.6
SKIPPED_REASON = "skipped due to prior evaluator failure"


def _child_failure(evaluator_id: str, error: BaseException) -> EvaluatorOutput:
    """Verdict standing in for a child evaluator that raised."""
    return EvaluatorOutput(
        passed=False,
        score=0.0,
        reason=f"evaluator execution failed: {error}",
        details={"evaluatorId": evaluator_id, "error": True},
    )


def _skipped() -> EvaluatorOutput:
    return EvaluatorOutput(passed=False, score=0.0, reason=SKIPPED_REASON, details={"skipped": True})


def _resolve_weights(weights: Optional[Sequence[float]], count: int) -> List[float]:
    """Weights to use for ``count`` results; equal weights when unusable."""
    if (
        weights is None
        or len(weights) != count
        or any(not math.isfinite(w) or w < 0 for w in weights)
        or not 0 < sum(weights) < math.inf
    ):
        return [1.0] * count
    return [float(w) for w in weights]


def aggregate(
    results: Sequence[EvaluatorOutput],
    aggregation: AggregationMode,
    weights: Optional[Sequence[float]] = None,
    evaluator_ids: Optional[Sequence[str]] = None,
) -> EvaluatorOutput:
    """Combine child verdicts into one.

    Scores default to 1/0 from ``passed`` when a child reports none. An
    empty result list passes with score 1.0.

    Args:
        results: Child verdicts, in configuration order.
        aggregation: and (all pass, min score), or (any pass, max score),
            weighted_average (weighted mean, passes at 0.6).
        weights: Per-child weights for weighted_average. Ignored in favor of
            equal weights on length mismatch, negative entries or a zero sum.
        evaluator_ids: Child ids, used only to name failures in the reason.
    """
    aggregation = AggregationMode(aggregation)
    passed_count = sum(1 for r in results if r.passed)
    failed_count = len(results) - passed_count

    details: Dict[str, Any] = {
        "aggregation": aggregation.value,
        "passedCount": passed_count,
        "failedCount": failed_count,
        "individualResults": [r.to_dict() for r in results],
    }

    if not results:
        return EvaluatorOutput(
            passed=True, score=1.0, reason="no evaluators to aggregate", details=details
        )

    scores = [r.effective_score for r in results]

    if aggregation is AggregationMode.AND:
        passed = failed_count == 0
        score = min(scores)
    elif aggregation is AggregationMode.OR:
        passed = passed_count > 0
        score = max(scores)
    elif aggregation is AggregationMode.WEIGHTED_AVERAGE:
        resolved = _resolve_weights(weights, len(results))
        score = sum(s * w for s, w in zip(scores, resolved)) / sum(resolved)
        passed = score >= WEIGHTED_PASS_THRESHOLD
        details["weights"] = resolved
    else:
        assert_never(aggregation)

    reason = f"{passed_count}/{len(results)} evaluators passed ({aggregation.value})"
    if evaluator_ids and failed_count:
        failed_ids = [eid for eid, r in zip(evaluator_ids, results) if not r.passed]
        reason += f"; failed: {', '.join(failed_ids)}"

    return EvaluatorOutput(passed=passed, score=score, reason=reason, details=details)


async def _run_parallel(
    evaluator_ids: Sequence[str], input: EvaluatorInput, executor: EvaluatorExecutor
) -> List[EvaluatorOutput]:
    outcomes = await asyncio.gather(
        *(executor(eid, input) for eid in evaluator_ids), return_exceptions=True
    )
    results: List[EvaluatorOutput] = []
    for eid, outcome in zip(evaluator_ids, outcomes):
        if isinstance(outcome, Exception):
            logger.warning("Composite child %s failed: %s", eid, outcome)
            results.append(_child_failure(eid, outcome))
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            results.append(outcome)
    return results


async def _run_serial(
    evaluator_ids: Sequence[str],
    input: EvaluatorInput,
    executor: EvaluatorExecutor,
    short_circuit: bool,
) -> List[EvaluatorOutput]:
    results: List[EvaluatorOutput] = []
    for index, eid in enumerate(evaluator_ids):
        try:
            result = await executor(eid, input)
        except Exception as e:
            logger.warning("Composite child %s failed: %s", eid, e)
            result = _child_failure(eid, e)
        results.append(result)

        if short_circuit and not result.passed:
            remaining = len(evaluator_ids) - index - 1
            if remaining:
                logger.debug("Short-circuit after %s; skipping %d evaluator(s)", eid, remaining)
            results.extend(_skipped() for _ in range(remaining))
            break
    return results


async def run_composite_evaluator(
    config: CompositeEvaluatorConfig,
    input: EvaluatorInput,
    executor: EvaluatorExecutor,
    visited_ids: Optional[Iterable[str]] = None,
) -> EvaluatorOutput:
    """Run every child evaluator and aggregate their verdicts. Never raises.

    Args:
        config: Child ids, execution mode, aggregation and weights.
        input: Passed unchanged to every child.
        executor: Runs a child evaluator by id.
        visited_ids: Ids already on the current evaluation path; any child
            in this set fails the whole composite without running anything.
    """
    visited: Set[str] = set(visited_ids or ())
    for eid in config.evaluator_ids:
        if eid in visited:
            logger.warning("Circular dependency detected at evaluator %s", eid)
            return EvaluatorOutput(
                passed=False,
                score=0.0,
                reason=f"circular dependency detected: {eid}",
                details={"evaluatorId": eid},
            )

    try:
        mode = ExecutionMode(config.mode)
        aggregation = AggregationMode(config.aggregation)

        if mode is ExecutionMode.PARALLEL:
            results = await _run_parallel(config.evaluator_ids, input, executor)
        elif mode is ExecutionMode.SERIAL:
            results = await _run_serial(
                config.evaluator_ids,
                input,
                executor,
                short_circuit=aggregation is AggregationMode.AND,
            )
        else:
            assert_never(mode)

        result = aggregate(results, aggregation, config.weights, config.evaluator_ids)
        result.details = dict(result.details or {}, mode=mode.value)
        return result

    except Exception as e:
        logger.error("Composite evaluation failed: %s", e)
        return EvaluatorOutput(
            passed=False, score=0.0, reason=f"composite evaluation failed: {e}"
        )


def find_cycle(
    evaluator_id: str,
    config: CompositeEvaluatorConfig,
    get_config: ConfigLookup,
) -> Optional[List[str]]:
    """Return the first reference cycle reachable from a composite, or None.

    The cycle is reported as the chain of ids that leads back to an id
    already on the path, e.g. ``["a", "b", "a"]``. Ids for which
    ``get_config`` returns None are treated as leaves.
    """
    path: List[str] = []
    on_path: Set[str] = set()
    explored: Set[str] = set()

    def visit(node_id: str, node_config: CompositeEvaluatorConfig) -> Optional[List[str]]:
        path.append(node_id)
        on_path.add(node_id)
        for child_id in node_config.evaluator_ids:
            if child_id in on_path:
                return path[path.index(child_id):] + [child_id]
            if child_id in explored:
                continue
            child_config = get_config(child_id)
            if child_config is None:
                continue
            cycle = visit(child_id, child_config)
            if cycle is not None:
                return cycle
        on_path.discard(node_id)
        path.pop()
        explored.add(node_id)
        return None

    return visit(evaluator_id, config)


def detect_cycle(
    evaluator_id: str,
    config: CompositeEvaluatorConfig,
    get_config: ConfigLookup,
) -> bool:
    """True if saving ``config`` under ``evaluator_id`` would create a reference cycle.

    Diamonds (two children sharing a descendant) are not cycles.
    """
    return find_cycle(evaluator_id, config, get_config) is not None
