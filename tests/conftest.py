"""
Shared test fixtures for eval-engine.

Provides common setup: temporary directories, environment overrides,
evaluator inputs, a scripted model invoker and a sample registry file.
"""

from pathlib import Path
from typing import Callable, List

import pytest

import config
from eval_engine.types import ChatMessage, EvaluatorInput, ModelResponse, TokenUsage


@pytest.fixture
def tmp_project_dir(tmp_path: Path) -> Path:
    """Create a temporary project directory with standard structure."""
    for d in ["logs", "reports"]:
        (tmp_path / d).mkdir()
    return tmp_path


@pytest.fixture
def mock_env(monkeypatch: pytest.MonkeyPatch, tmp_project_dir: Path) -> Path:
    """Point configuration at temporary directories."""
    monkeypatch.setenv("EVAL_ENGINE_STATE_DIR", str(tmp_project_dir))
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setattr(config, "STATE_DIR", tmp_project_dir / "state")
    monkeypatch.setattr(config, "LOG_DIR", tmp_project_dir / "state" / "logs")
    return tmp_project_dir


@pytest.fixture
def qa_input() -> EvaluatorInput:
    """A question/answer pair whose output matches the expected value."""
    return EvaluatorInput(
        input="What is the capital of France?",
        output="Paris",
        expected="Paris",
    )


@pytest.fixture
def make_invoker() -> Callable[[str], "ScriptedInvoker"]:
    """Factory for model invokers that always answer with the given text."""

    def factory(text: str) -> "ScriptedInvoker":
        return ScriptedInvoker(text)

    return factory


class ScriptedInvoker:
    """ModelInvoker double that records calls and returns a fixed completion."""

    def __init__(self, text: str):
        self.text = text
        self.calls: List[tuple] = []

    async def __call__(self, model_id: str, messages: List[ChatMessage]) -> ModelResponse:
        self.calls.append((model_id, messages))
        return ModelResponse(
            output=self.text,
            tokens=TokenUsage(input=100, output=50, total=150),
            latency_ms=500.0,
            cost=0.001,
        )


SAMPLE_REGISTRY = """\
evaluators:
  - id: exact
    type: preset
    config:
      presetType: exact_match
  - id: mentions-paris
    type: preset
    config:
      presetType: contains
  - id: short
    type: preset
    config:
      presetType: regex
      params:
        pattern: "^.{1,20}$"
  - id: grader
    type: llm
    config:
      modelId: ollama/qwen2.5:7b
      passThreshold: 0.7
  - id: gate
    type: composite
    name: Answer gate
    config:
      evaluatorIds: [exact, short]
      mode: serial
      aggregation: and
  - id: blended
    type: COMPOSITE
    config:
      evaluatorIds: [gate, grader]
      aggregation: weighted_average
      weights: [3, 1]
"""


@pytest.fixture
def registry_file(tmp_path: Path) -> Path:
    """Write a small evaluator registry YAML file."""
    f = tmp_path / "evaluators.yaml"
    f.write_text(SAMPLE_REGISTRY, encoding="utf-8")
    return f
