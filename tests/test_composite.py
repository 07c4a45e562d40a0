"""Tests for composite evaluators: aggregation, execution modes, cycles."""

import asyncio
import math
from typing import Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from eval_engine.composite import (
    SKIPPED_REASON,
    WEIGHTED_PASS_THRESHOLD,
    aggregate,
    detect_cycle,
    find_cycle,
    run_composite_evaluator,
)
from eval_engine.types import (
    AggregationMode,
    CompositeEvaluatorConfig,
    EvaluatorInput,
    EvaluatorOutput,
    ExecutionMode,
)

INPUT = EvaluatorInput(input="q", output="a", expected="a")


def verdict(passed: bool, score: Optional[float]) -> EvaluatorOutput:
    return EvaluatorOutput(passed=passed, score=score)


def scripted_executor(results: Dict[str, EvaluatorOutput]) -> AsyncMock:
    """Executor returning a fixed verdict per child id."""

    async def run(evaluator_id: str, _input: EvaluatorInput) -> EvaluatorOutput:
        return results[evaluator_id]

    return AsyncMock(side_effect=run)


class TestAggregate:
    SCORES = [verdict(True, 0.9), verdict(False, 0.4), verdict(True, 0.8)]

    def test_and_uses_min(self) -> None:
        result = aggregate(self.SCORES, AggregationMode.AND)
        assert result.passed is False
        assert result.score == 0.4

    def test_or_uses_max(self) -> None:
        result = aggregate(self.SCORES, AggregationMode.OR)
        assert result.passed is True
        assert result.score == 0.9

    def test_or_all_failed(self) -> None:
        result = aggregate([verdict(False, 0.1), verdict(False, 0.3)], "or")
        assert result.passed is False
        assert result.score == 0.3

    def test_weighted_average(self) -> None:
        result = aggregate(
            [verdict(True, 0.9), verdict(False, 0.5)], "weighted_average", [2, 1]
        )
        assert result.score == pytest.approx(0.7667, abs=1e-4)
        assert result.passed is True
        assert result.details["weights"] == [2.0, 1.0]

    def test_weighted_average_below_threshold(self) -> None:
        result = aggregate([verdict(True, 0.7), verdict(False, 0.4)], "weighted_average")
        assert result.score == pytest.approx(0.55)
        assert result.passed is False

    def test_weighted_threshold_is_inclusive(self) -> None:
        result = aggregate([verdict(False, WEIGHTED_PASS_THRESHOLD)], "weighted_average")
        assert result.passed is True

    @pytest.mark.parametrize(
        "weights",
        [
            [1],
            [1, 2, 3],
            [-1, 2],
            [0, 0],
            [math.nan, 1],
            [math.inf, 1],
            [1e308, 1e308],
        ],
    )
    def test_unusable_weights_fall_back_to_equal(self, weights: List[float]) -> None:
        result = aggregate([verdict(True, 1.0), verdict(False, 0.0)], "weighted_average", weights)
        assert result.score == pytest.approx(0.5)
        assert result.details["weights"] == [1.0, 1.0]

    @pytest.mark.parametrize("mode", list(AggregationMode))
    def test_empty_results_pass(self, mode: AggregationMode) -> None:
        result = aggregate([], mode)
        assert result.passed is True
        assert result.score == 1.0

    def test_missing_scores_derive_from_passed(self) -> None:
        result = aggregate([verdict(True, None), verdict(False, None)], "weighted_average")
        assert result.score == pytest.approx(0.5)
        and_result = aggregate([verdict(True, None), verdict(True, None)], "and")
        assert and_result.score == 1.0

    def test_details(self) -> None:
        result = aggregate(self.SCORES, "and", evaluator_ids=["a", "b", "c"])
        assert result.details["aggregation"] == "and"
        assert result.details["passedCount"] == 2
        assert result.details["failedCount"] == 1
        assert result.details["individualResults"][1] == {"passed": False, "score": 0.4}
        assert "2/3" in result.reason
        assert "b" in result.reason

    def test_passed_and_score_are_independent(self) -> None:
        # A failed child can still carry a high score.
        result = aggregate([verdict(False, 0.95)], "and")
        assert result.passed is False
        assert result.score == 0.95


class TestRunCompositeEvaluator:
    @pytest.mark.asyncio
    async def test_parallel_and(self) -> None:
        executor = scripted_executor({"a": verdict(True, 0.9), "b": verdict(True, 0.7)})
        config = CompositeEvaluatorConfig(evaluator_ids=["a", "b"])

        result = await run_composite_evaluator(config, INPUT, executor)

        assert result.passed is True
        assert result.score == 0.7
        assert executor.await_count == 2
        assert result.details["mode"] == "parallel"

    @pytest.mark.asyncio
    async def test_parallel_runs_children_concurrently(self) -> None:
        running = 0
        peak = 0

        async def run(evaluator_id: str, _input: EvaluatorInput) -> EvaluatorOutput:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return verdict(True, 1.0)

        config = CompositeEvaluatorConfig(evaluator_ids=["a", "b", "c"])
        await run_composite_evaluator(config, INPUT, run)
        assert peak == 3

    @pytest.mark.asyncio
    async def test_serial_and_short_circuits(self) -> None:
        executor = scripted_executor(
            {"a": verdict(True, 0.9), "b": verdict(False, 0.3), "c": verdict(True, 0.8)}
        )
        config = CompositeEvaluatorConfig(
            evaluator_ids=["a", "b", "c"], mode=ExecutionMode.SERIAL
        )

        result = await run_composite_evaluator(config, INPUT, executor)

        assert executor.await_count == 2
        assert result.passed is False
        assert result.score == 0.0
        skipped = result.details["individualResults"][2]
        assert skipped["reason"] == SKIPPED_REASON
        assert skipped["details"] == {"skipped": True}
        assert skipped["score"] == 0.0

    @pytest.mark.asyncio
    async def test_serial_preserves_order(self) -> None:
        order: List[str] = []

        async def run(evaluator_id: str, _input: EvaluatorInput) -> EvaluatorOutput:
            order.append(evaluator_id)
            await asyncio.sleep(0)
            return verdict(True, 1.0)

        config = CompositeEvaluatorConfig(evaluator_ids=["c", "a", "b"], mode="serial")
        await run_composite_evaluator(config, INPUT, run)
        assert order == ["c", "a", "b"]

    @pytest.mark.asyncio
    async def test_serial_or_runs_everything(self) -> None:
        executor = scripted_executor(
            {"a": verdict(False, 0.1), "b": verdict(False, 0.2), "c": verdict(True, 0.9)}
        )
        config = CompositeEvaluatorConfig(
            evaluator_ids=["a", "b", "c"], mode="serial", aggregation="or"
        )

        result = await run_composite_evaluator(config, INPUT, executor)

        assert executor.await_count == 3
        assert result.passed is True
        assert result.score == 0.9

    @pytest.mark.asyncio
    async def test_input_passed_unchanged(self) -> None:
        executor = scripted_executor({"a": verdict(True, 1.0)})
        config = CompositeEvaluatorConfig(evaluator_ids=["a"])
        await run_composite_evaluator(config, INPUT, executor)
        executor.assert_awaited_once_with("a", INPUT)

    @pytest.mark.asyncio
    async def test_circular_dependency_runs_nothing(self) -> None:
        executor = scripted_executor({"a": verdict(True, 1.0), "b": verdict(True, 1.0)})
        config = CompositeEvaluatorConfig(evaluator_ids=["a", "b"])

        result = await run_composite_evaluator(config, INPUT, executor, visited_ids={"b"})

        assert result.passed is False
        assert result.reason == "circular dependency detected: b"
        executor.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_parallel_child_exception_is_attributed(self) -> None:
        async def run(evaluator_id: str, _input: EvaluatorInput) -> EvaluatorOutput:
            if evaluator_id == "broken":
                raise RuntimeError("sandbox crashed")
            return verdict(True, 1.0)

        config = CompositeEvaluatorConfig(
            evaluator_ids=["ok", "broken"], aggregation="or"
        )
        result = await run_composite_evaluator(config, INPUT, run)

        assert result.passed is True
        failed = result.details["individualResults"][1]
        assert failed["passed"] is False
        assert failed["reason"] == "evaluator execution failed: sandbox crashed"
        assert failed["details"] == {"evaluatorId": "broken", "error": True}

    @pytest.mark.asyncio
    async def test_serial_child_exception_short_circuits(self) -> None:
        calls: List[str] = []

        async def run(evaluator_id: str, _input: EvaluatorInput) -> EvaluatorOutput:
            calls.append(evaluator_id)
            if evaluator_id == "a":
                raise ValueError("boom")
            return verdict(True, 1.0)

        config = CompositeEvaluatorConfig(evaluator_ids=["a", "b"], mode="serial")
        result = await run_composite_evaluator(config, INPUT, run)

        assert calls == ["a"]
        assert result.passed is False
        assert result.details["individualResults"][1]["reason"] == SKIPPED_REASON

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failure(self) -> None:
        executor = scripted_executor({"a": verdict(True, 1.0)})
        config = CompositeEvaluatorConfig(evaluator_ids=["a"], aggregation="median")

        result = await run_composite_evaluator(config, INPUT, executor)

        assert result.passed is False
        assert result.reason.startswith("composite evaluation failed:")

    @pytest.mark.asyncio
    async def test_empty_composite_passes(self) -> None:
        executor = scripted_executor({})
        result = await run_composite_evaluator(CompositeEvaluatorConfig(), INPUT, executor)
        assert result.passed is True
        assert result.score == 1.0

    @pytest.mark.asyncio
    async def test_weighted_average_uses_config_weights(self) -> None:
        executor = scripted_executor({"a": verdict(True, 0.9), "b": verdict(False, 0.5)})
        config = CompositeEvaluatorConfig(
            evaluator_ids=["a", "b"], aggregation="weighted_average", weights=[2, 1]
        )
        result = await run_composite_evaluator(config, INPUT, executor)
        assert result.score == pytest.approx(0.7667, abs=1e-4)
        assert result.passed is True


class TestCycleDetection:
    @staticmethod
    def lookup(graph: Dict[str, List[str]]):
        def get_config(evaluator_id: str) -> Optional[CompositeEvaluatorConfig]:
            if evaluator_id not in graph:
                return None
            return CompositeEvaluatorConfig(evaluator_ids=graph[evaluator_id])

        return get_config

    def test_three_node_cycle(self) -> None:
        graph = {
            "composite-a": ["composite-b"],
            "composite-b": ["composite-c"],
            "composite-c": ["composite-a"],
        }
        get_config = self.lookup(graph)
        assert detect_cycle("composite-a", get_config("composite-a"), get_config) is True

    def test_tree_without_repeats(self) -> None:
        graph = {
            "composite-a": ["composite-b", "eval-1"],
            "composite-b": ["eval-2", "eval-3"],
        }
        get_config = self.lookup(graph)
        assert detect_cycle("composite-a", get_config("composite-a"), get_config) is False

    def test_diamond_is_not_a_cycle(self) -> None:
        graph = {
            "top": ["left", "right"],
            "left": ["shared"],
            "right": ["shared"],
            "shared": ["leaf"],
        }
        get_config = self.lookup(graph)
        assert detect_cycle("top", get_config("top"), get_config) is False

    def test_self_reference(self) -> None:
        config = CompositeEvaluatorConfig(evaluator_ids=["self"])
        assert detect_cycle("self", config, lambda _id: None) is True

    def test_unsaved_config_closes_cycle(self) -> None:
        # Saving "a" -> "b" would close the existing b -> a edge.
        graph = {"b": ["a"]}
        proposed = CompositeEvaluatorConfig(evaluator_ids=["b"])
        assert detect_cycle("a", proposed, self.lookup(graph)) is True

    def test_find_cycle_reports_path(self) -> None:
        graph = {"a": ["x", "b"], "b": ["c"], "c": ["b"]}
        get_config = self.lookup(graph)
        assert find_cycle("a", get_config("a"), get_config) == ["b", "c", "b"]

    def test_find_cycle_none(self) -> None:
        graph = {"a": ["b"], "b": ["c"]}
        get_config = self.lookup(graph)
        assert find_cycle("a", get_config("a"), get_config) is None

    def test_shared_subgraph_visited_once(self) -> None:
        graph = {"top": ["left", "right"], "left": ["shared"], "right": ["shared"], "shared": []}
        seen: List[str] = []
        base = self.lookup(graph)

        def get_config(evaluator_id: str) -> Optional[CompositeEvaluatorConfig]:
            seen.append(evaluator_id)
            return base(evaluator_id)

        assert detect_cycle("top", base("top"), get_config) is False
        assert seen.count("shared") == 1
