"""
Evaluator Registry

Holds evaluator definitions by id, loads them from YAML, rejects composite
reference cycles, and evaluates by id with a recursive executor so that
composites can reference any registered evaluator.

YAML format:
    evaluators:
      - id: has-answer
        type: preset
        config:
          presetType: contains
      - id: quality
        type: llm
        config:
          modelId: ollama/qwen2.5:7b
          passThreshold: 0.7
      - id: gate
        type: composite
        config:
          evaluatorIds: [has-answer, quality]
          mode: serial
          aggregation: and

Usage:
    registry = EvaluatorRegistry.from_yaml("evaluators.yaml")
    registry.validate()
    result = await registry.evaluate("gate", evaluator_input, model_invoker=invoker)
"""

import logging
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Union

import yaml

from utils.exceptions import ConfigError, CycleError
from utils.logging_config import LogContext

from .composite import find_cycle
from .presets import SchemaValidatorCache
from .runner import DEFAULT_CODE_TIMEOUT_MS, run_evaluator
from .types import (
    CompositeEvaluatorConfig,
    EvaluatorDefinition,
    EvaluatorInput,
    EvaluatorOutput,
    EvaluatorType,
    LLMEvaluatorConfig,
    ModelInvoker,
    PresetType,
    SandboxExecutor,
)

logger = logging.getLogger(__name__)


def _parse_definition(data: Mapping[str, Any], default_timeout_ms: int) -> EvaluatorDefinition:
    """Build a definition from one ``evaluators:`` entry.

    Raises:
        ConfigError: If the entry is malformed.
    """
    if not isinstance(data, Mapping):
        raise ConfigError(f"evaluator entry must be a mapping, got {type(data).__name__}")

    evaluator_id = str(data.get("id") or "").strip()
    if not evaluator_id:
        raise ConfigError("evaluator entry is missing an id")

    try:
        evaluator_type = EvaluatorType.parse(data.get("type", ""))
    except ValueError:
        raise ConfigError(f"{evaluator_id}: unknown evaluator type {data.get('type')!r}") from None

    cfg = data.get("config") or {}
    if not isinstance(cfg, Mapping):
        raise ConfigError(f"{evaluator_id}: config must be a mapping")

    definition = EvaluatorDefinition(
        type=evaluator_type,
        id=evaluator_id,
        name=str(data.get("name") or evaluator_id),
        description=str(data.get("description") or ""),
    )

    try:
        if evaluator_type is EvaluatorType.PRESET:
            preset_type = cfg.get("presetType", cfg.get("preset_type"))
            definition.preset_type = PresetType(preset_type)
            definition.params = dict(cfg.get("params") or {})
        elif evaluator_type is EvaluatorType.CODE:
            if not cfg.get("code"):
                raise ConfigError(f"{evaluator_id}: code evaluator requires code")
            definition.code = str(cfg["code"])
            definition.language = str(cfg.get("language") or "python")
            definition.timeout_ms = int(cfg.get("timeout") or default_timeout_ms)
        elif evaluator_type is EvaluatorType.LLM:
            definition.llm = LLMEvaluatorConfig.from_dict(cfg)
        elif evaluator_type is EvaluatorType.COMPOSITE:
            composite = CompositeEvaluatorConfig.from_dict(cfg)
            if not composite.evaluator_ids:
                raise ConfigError(f"{evaluator_id}: composite evaluator requires evaluatorIds")
            definition.composite = composite
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{evaluator_id}: invalid {evaluator_type.value} config: {e}") from e

    return definition


class EvaluatorRegistry:
    """Evaluator definitions keyed by id."""

    def __init__(self, schema_cache: Optional[SchemaValidatorCache] = None):
        self._definitions: Dict[str, EvaluatorDefinition] = {}
        self.schema_cache = schema_cache or SchemaValidatorCache()

    def __len__(self) -> int:
        return len(self._definitions)

    def __contains__(self, evaluator_id: object) -> bool:
        return evaluator_id in self._definitions

    def register(self, definition: EvaluatorDefinition, replace: bool = False) -> None:
        """Add a definition.

        Raises:
            ConfigError: If the id is empty, or already registered and
                ``replace`` is False.
        """
        if not definition.id:
            raise ConfigError("evaluator definition has no id")
        if definition.id in self._definitions and not replace:
            raise ConfigError(f"duplicate evaluator id: {definition.id}")
        self._definitions[definition.id] = definition

    def get(self, evaluator_id: str) -> Optional[EvaluatorDefinition]:
        return self._definitions.get(evaluator_id)

    def get_config(self, evaluator_id: str) -> Optional[CompositeEvaluatorConfig]:
        """Composite config for an id, or None for leaf and unknown evaluators."""
        definition = self._definitions.get(evaluator_id)
        if definition is None or EvaluatorType.parse(definition.type) is not EvaluatorType.COMPOSITE:
            return None
        return definition.composite

    def ids(self) -> List[str]:
        return list(self._definitions)

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Any], default_timeout_ms: int = DEFAULT_CODE_TIMEOUT_MS
    ) -> "EvaluatorRegistry":
        """Build a registry from a parsed ``evaluators:`` document.

        Raises:
            ConfigError: If any entry is invalid or ids repeat.
        """
        entries = data.get("evaluators") if isinstance(data, Mapping) else None
        if not isinstance(entries, list):
            raise ConfigError("expected an 'evaluators' list")

        registry = cls()
        for entry in entries:
            registry.register(_parse_definition(entry, default_timeout_ms))
        logger.info(f"Loaded {len(registry)} evaluator(s)")
        return registry

    @classmethod
    def from_yaml(cls, path: Union[str, Path], **kwargs: Any) -> "EvaluatorRegistry":
        """Load a registry from a YAML file.

        Raises:
            ConfigError: If the file is missing, unparseable or invalid.
        """
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Registry file not found: {path}")
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        return cls.from_dict(data, **kwargs)

    def validate(self) -> List[str]:
        """Check composite references.

        Returns:
            Warnings for children that reference unknown ids.

        Raises:
            CycleError: If any composite reaches itself.
        """
        warnings: List[str] = []
        for evaluator_id, definition in self._definitions.items():
            if definition.composite is None:
                continue

            for child_id in definition.composite.evaluator_ids:
                if child_id not in self._definitions:
                    message = f"{evaluator_id}: references unknown evaluator '{child_id}'"
                    logger.warning(message)
                    warnings.append(message)

            cycle = find_cycle(evaluator_id, definition.composite, self.get_config)
            if cycle:
                raise CycleError(f"circular dependency: {' -> '.join(cycle)}", path=cycle)
        return warnings

    async def evaluate(
        self,
        evaluator_id: str,
        input: EvaluatorInput,
        *,
        model_invoker: Optional[ModelInvoker] = None,
        sandbox_executor: Optional[SandboxExecutor] = None,
    ) -> EvaluatorOutput:
        """Run a registered evaluator by id. Never raises."""
        with LogContext(logger, evaluator_id=evaluator_id):
            return await self._execute(
                evaluator_id, input, frozenset(), model_invoker, sandbox_executor
            )

    async def _execute(
        self,
        evaluator_id: str,
        input: EvaluatorInput,
        visited: FrozenSet[str],
        model_invoker: Optional[ModelInvoker],
        sandbox_executor: Optional[SandboxExecutor],
    ) -> EvaluatorOutput:
        definition = self._definitions.get(evaluator_id)
        if definition is None:
            logger.warning(f"Evaluator not found: {evaluator_id}")
            return EvaluatorOutput(
                passed=False, score=0.0, reason=f"evaluator not found: {evaluator_id}"
            )

        path = visited | {evaluator_id}

        async def child_executor(child_id: str, child_input: EvaluatorInput) -> EvaluatorOutput:
            return await self._execute(
                child_id, child_input, path, model_invoker, sandbox_executor
            )

        return await run_evaluator(
            definition,
            input,
            sandbox_executor=sandbox_executor,
            model_invoker=model_invoker,
            executor=child_executor,
            visited_ids=path,
            schema_cache=self.schema_cache,
        )
