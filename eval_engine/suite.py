"""
Evaluation Suites

A suite is a list of recorded model outputs (test cases) checked against a
set of registered evaluators. SuiteRunner evaluates every case with every
evaluator and collects the verdicts into a SuiteResult.

YAML format:
    name: support-bot
    description: Regression checks for the support bot
    registry: evaluators.yaml        # or an embedded "evaluators:" list
    evaluator_ids: [has-answer, gate]  # default: every registered evaluator
    cases:
      - id: refund-policy
        input: How do I get a refund?
        output: You can request a refund within 30 days.
        expected: refund within 30 days
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from utils.exceptions import ConfigError

from .registry import EvaluatorRegistry
from .types import EvaluatorInput, EvaluatorOutput, ModelInvoker, SandboxExecutor

logger = logging.getLogger(__name__)


@dataclass
class TestCase:
    """One recorded model output to evaluate."""

    __test__ = False  # not a pytest test class

    id: str
    input: str
    output: str
    expected: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_input(self) -> EvaluatorInput:
        return EvaluatorInput(
            input=self.input,
            output=self.output,
            expected=self.expected,
            metadata=dict(self.metadata),
        )


@dataclass
class EvaluationSuite:
    """Test cases plus the evaluators to run against them."""

    name: str
    cases: List[TestCase] = field(default_factory=list)
    description: str = ""
    evaluator_ids: List[str] = field(default_factory=list)
    registry: Optional[EvaluatorRegistry] = None

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "EvaluationSuite":
        """Load a suite file.

        The ``registry`` path is resolved relative to the suite file.

        Raises:
            ConfigError: If the file, its registry or any case is invalid.
        """
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Suite file not found: {path}")

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if "evaluators" in data:
            registry = EvaluatorRegistry.from_dict(data)
        elif data.get("registry"):
            registry = EvaluatorRegistry.from_yaml(path.parent / data["registry"])
        else:
            raise ConfigError(f"{path}: suite needs an 'evaluators' list or a 'registry' file")

        cases = []
        for index, raw in enumerate(data.get("cases") or []):
            if not isinstance(raw, dict) or "output" not in raw:
                raise ConfigError(f"{path}: case {index} must be a mapping with an 'output'")
            expected = raw.get("expected")
            cases.append(
                TestCase(
                    id=str(raw.get("id") or f"case-{index + 1}"),
                    input=str(raw.get("input") or ""),
                    output=str(raw["output"]),
                    expected=str(expected) if expected is not None else None,
                    metadata=dict(raw.get("metadata") or {}),
                )
            )

        evaluator_ids = [str(i) for i in data.get("evaluator_ids") or registry.ids()]
        unknown = [i for i in evaluator_ids if i not in registry]
        if unknown:
            raise ConfigError(f"{path}: unknown evaluator(s): {', '.join(unknown)}")

        return cls(
            name=str(data.get("name") or path.stem),
            description=str(data.get("description") or ""),
            cases=cases,
            evaluator_ids=evaluator_ids,
            registry=registry,
        )


@dataclass
class CaseResult:
    """Verdict of one evaluator on one test case."""

    case_id: str
    evaluator_id: str
    output: EvaluatorOutput

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case_id": self.case_id,
            "evaluator_id": self.evaluator_id,
            "result": self.output.to_dict(),
        }


@dataclass
class SuiteResult:
    """All verdicts from one suite run."""

    suite_name: str
    results: List[CaseResult] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)
    duration_ms: float = 0.0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed_count(self) -> int:
        return sum(1 for r in self.results if r.output.passed)

    @property
    def pass_rate(self) -> float:
        return self.passed_count / self.total if self.total else 0.0

    @property
    def all_passed(self) -> bool:
        return all(r.output.passed for r in self.results)

    def evaluator_summaries(self) -> Dict[str, Dict[str, Any]]:
        """Pass rate and mean score per evaluator, in first-seen order."""
        grouped: Dict[str, List[EvaluatorOutput]] = {}
        for r in self.results:
            grouped.setdefault(r.evaluator_id, []).append(r.output)

        summaries = {}
        for evaluator_id, outputs in grouped.items():
            passed = sum(1 for o in outputs if o.passed)
            summaries[evaluator_id] = {
                "total": len(outputs),
                "passed": passed,
                "pass_rate": passed / len(outputs),
                "mean_score": sum(o.effective_score for o in outputs) / len(outputs),
            }
        return summaries

    def to_dict(self) -> Dict[str, Any]:
        return {
            "suite_name": self.suite_name,
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": self.duration_ms,
            "total": self.total,
            "passed": self.passed_count,
            "pass_rate": self.pass_rate,
            "evaluators": self.evaluator_summaries(),
            "results": [r.to_dict() for r in self.results],
        }


class SuiteRunner:
    """Runs every suite case through every selected evaluator."""

    def __init__(
        self,
        registry: EvaluatorRegistry,
        model_invoker: Optional[ModelInvoker] = None,
        sandbox_executor: Optional[SandboxExecutor] = None,
    ):
        self.registry = registry
        self.model_invoker = model_invoker
        self.sandbox_executor = sandbox_executor

    async def run(self, suite: EvaluationSuite) -> SuiteResult:
        """Evaluate the suite. Cases run in order, one evaluator at a time."""
        evaluator_ids = suite.evaluator_ids or self.registry.ids()
        logger.info(
            f"Running suite '{suite.name}': {len(suite.cases)} case(s) x "
            f"{len(evaluator_ids)} evaluator(s)"
        )

        result = SuiteResult(suite_name=suite.name)
        start = time.perf_counter()
        for case in suite.cases:
            evaluator_input = case.to_input()
            for evaluator_id in evaluator_ids:
                output = await self.registry.evaluate(
                    evaluator_id,
                    evaluator_input,
                    model_invoker=self.model_invoker,
                    sandbox_executor=self.sandbox_executor,
                )
                result.results.append(CaseResult(case.id, evaluator_id, output))
        result.duration_ms = (time.perf_counter() - start) * 1000

        logger.info(
            f"Suite '{suite.name}' finished: {result.passed_count}/{result.total} passed "
            f"in {result.duration_ms:.0f}ms"
        )
        return result
