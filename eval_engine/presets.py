"""
Preset Evaluators

Five deterministic matchers that check a model output against an expected
value or a declarative rule. Each matcher takes an EvaluatorInput plus an
optional params mapping and returns an EvaluatorOutput; none of them raise.

Usage:
    from eval_engine.presets import run_preset_evaluator
    from eval_engine.types import EvaluatorInput

    result = run_preset_evaluator(
        "regex", EvaluatorInput(input="", output="2024-01-15"), {"pattern": r"^\\d{4}-\\d{2}-\\d{2}$"}
    )
    print(result.passed)
"""

import hashlib
import json
import logging
import re
from collections import OrderedDict
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union, assert_never

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from .similarity import calculate_similarity
from .types import EvaluatorInput, EvaluatorOutput, PresetType, SimilarityAlgorithm

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.8
MISSING_EXPECTED = "missing expected value"
DEFAULT_SCHEMA_CACHE_SIZE = 256

# JavaScript-style regex flags -> Python re flags. "g", "y" and "u" have no
# effect on a single search over a str.
REGEX_FLAGS: Dict[str, int] = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
    "g": 0,
    "y": 0,
    "u": 0,
}


class SchemaValidatorCache:
    """Compiled JSON-schema validators keyed by schema content.

    Owned by the caller and passed to ``json_schema``; validators are
    read-only once built, so one cache can be shared by concurrent
    evaluations. Holds at most ``max_size`` validators, evicting the least
    recently used.
    """

    def __init__(self, max_size: int = DEFAULT_SCHEMA_CACHE_SIZE) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._validators: "OrderedDict[str, Draft7Validator]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._validators)

    @staticmethod
    def key_for(schema: Any) -> str:
        canonical = json.dumps(schema, sort_keys=True, ensure_ascii=False, default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def get(self, schema: Any) -> Draft7Validator:
        """Return a compiled validator, building it on first use.

        Raises:
            SchemaError: If the schema itself is invalid.
        """
        key = self.key_for(schema)
        validator = self._validators.get(key)
        if validator is not None:
            self._validators.move_to_end(key)
            return validator

        Draft7Validator.check_schema(schema)
        validator = Draft7Validator(schema)
        self._validators[key] = validator
        if len(self._validators) > self.max_size:
            self._validators.popitem(last=False)
        return validator

    def clear(self) -> None:
        self._validators.clear()


_default_schema_cache = SchemaValidatorCache()


def _params(params: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return params if params is not None else {}


def exact_match(
    input: EvaluatorInput, params: Optional[Mapping[str, Any]] = None
) -> EvaluatorOutput:
    """Pass when the output equals the expected value exactly (case-sensitive)."""
    if input.expected is None:
        return EvaluatorOutput(passed=False, score=0.0, reason=MISSING_EXPECTED)

    passed = input.output == input.expected
    return EvaluatorOutput(
        passed=passed,
        score=1.0 if passed else 0.0,
        reason="output matches expected value" if passed else "output does not match expected value",
    )


def contains(
    input: EvaluatorInput, params: Optional[Mapping[str, Any]] = None
) -> EvaluatorOutput:
    """Pass when the output contains the expected value. An empty expected value always passes."""
    if input.expected is None:
        return EvaluatorOutput(passed=False, score=0.0, reason=MISSING_EXPECTED)

    passed = input.expected in input.output
    return EvaluatorOutput(
        passed=passed,
        score=1.0 if passed else 0.0,
        reason="output contains expected value" if passed else "output does not contain expected value",
    )


def _compile_pattern(pattern: str, flags: str) -> "re.Pattern[str]":
    """Compile a pattern with JavaScript-style flag letters.

    Raises:
        re.error: On an unknown flag or an invalid pattern.
    """
    compiled_flags = 0
    for flag in flags:
        if flag not in REGEX_FLAGS:
            raise re.error(f"unsupported flag '{flag}'")
        compiled_flags |= REGEX_FLAGS[flag]
    return re.compile(pattern, compiled_flags)


def regex(
    input: EvaluatorInput, params: Optional[Mapping[str, Any]] = None
) -> EvaluatorOutput:
    """Pass when the pattern matches anywhere in the output.

    Params:
        pattern: Regular expression (required).
        flags: JavaScript-style flag letters, e.g. "i" or "ms".
    """
    params = _params(params)
    pattern = params.get("pattern")
    flags = params.get("flags") or ""
    if not pattern:
        return EvaluatorOutput(passed=False, score=0.0, reason="missing regular expression pattern")

    try:
        compiled = _compile_pattern(str(pattern), str(flags))
    except re.error as e:
        return EvaluatorOutput(
            passed=False,
            score=0.0,
            reason=f"invalid regular expression: {e}",
            details={"pattern": pattern, "flags": flags},
        )

    match = compiled.search(input.output)
    passed = match is not None
    return EvaluatorOutput(
        passed=passed,
        score=1.0 if passed else 0.0,
        reason="output matches pattern" if passed else "output does not match pattern",
        details={"pattern": pattern, "flags": flags, "match": match.group(0) if match else None},
    )


def _error_path(path: Any) -> str:
    parts = [str(p) for p in path]
    return "/" + "/".join(parts) if parts else "/"


def _schema_errors(validator: Draft7Validator, instance: Any) -> List[Dict[str, str]]:
    errors = sorted(validator.iter_errors(instance), key=lambda e: [str(p) for p in e.absolute_path])
    return [
        {
            "path": _error_path(error.absolute_path),
            "message": error.message,
            "keyword": str(error.validator),
        }
        for error in errors
    ]


def json_schema(
    input: EvaluatorInput,
    params: Optional[Mapping[str, Any]] = None,
    schema_cache: Optional[SchemaValidatorCache] = None,
) -> EvaluatorOutput:
    """Pass when the output parses as JSON and conforms to the schema (Draft-07).

    Params:
        schema: JSON schema as an object (or a JSON string).
    """
    params = _params(params)
    schema = params.get("schema")
    if schema is None:
        return EvaluatorOutput(passed=False, score=0.0, reason="missing JSON schema")

    if isinstance(schema, str):
        try:
            schema = json.loads(schema)
        except json.JSONDecodeError as e:
            return EvaluatorOutput(passed=False, score=0.0, reason=f"invalid JSON schema: {e}")

    try:
        instance = json.loads(input.output)
    except (json.JSONDecodeError, TypeError) as e:
        return EvaluatorOutput(passed=False, score=0.0, reason=f"output is not valid JSON: {e}")

    cache = schema_cache if schema_cache is not None else _default_schema_cache
    try:
        validator = cache.get(schema)
    except SchemaError as e:
        return EvaluatorOutput(passed=False, score=0.0, reason=f"invalid JSON schema: {e.message}")

    try:
        errors = _schema_errors(validator, instance)
    except Exception as e:
        # Unresolvable $ref and similar surface only while validating.
        return EvaluatorOutput(passed=False, score=0.0, reason=f"invalid JSON schema: {e}")
    if errors:
        return EvaluatorOutput(
            passed=False,
            score=0.0,
            reason="output does not conform to JSON schema",
            details={"errors": errors},
        )

    return EvaluatorOutput(passed=True, score=1.0, reason="output conforms to JSON schema")


def similarity(
    input: EvaluatorInput, params: Optional[Mapping[str, Any]] = None
) -> EvaluatorOutput:
    """Pass when the similarity to the expected value reaches the threshold.

    Params:
        threshold: Minimum similarity in [0, 1] (default 0.8).
        algorithm: levenshtein (default), cosine or jaccard.
    """
    params = _params(params)
    if input.expected is None:
        return EvaluatorOutput(passed=False, score=0.0, reason=MISSING_EXPECTED)

    threshold = params.get("threshold")
    try:
        threshold = DEFAULT_SIMILARITY_THRESHOLD if threshold is None else float(threshold)
    except (TypeError, ValueError):
        return EvaluatorOutput(passed=False, score=0.0, reason=f"invalid threshold: {threshold!r}")
    algorithm = params.get("algorithm") or SimilarityAlgorithm.LEVENSHTEIN.value

    try:
        algorithm = SimilarityAlgorithm(algorithm)
    except ValueError:
        return EvaluatorOutput(
            passed=False, score=0.0, reason=f"unknown similarity algorithm: {algorithm}"
        )

    score = calculate_similarity(input.output, input.expected, algorithm)
    passed = score >= threshold
    return EvaluatorOutput(
        passed=passed,
        score=score,
        reason=f"similarity {score:.3f} {'>=' if passed else '<'} threshold {threshold}",
        details={"similarity": score, "threshold": threshold, "algorithm": algorithm.value},
    )


def _parse_preset_type(value: Union[PresetType, str]) -> Tuple[Optional[PresetType], str]:
    try:
        return PresetType(value), ""
    except ValueError:
        return None, f"unknown preset type: {value}"


def run_preset_evaluator(
    preset_type: Union[PresetType, str],
    input: EvaluatorInput,
    params: Optional[Mapping[str, Any]] = None,
    schema_cache: Optional[SchemaValidatorCache] = None,
) -> EvaluatorOutput:
    """Run the named preset matcher. Never raises."""
    preset, error = _parse_preset_type(preset_type)
    if preset is None:
        return EvaluatorOutput(passed=False, score=0.0, reason=error)

    try:
        if preset is PresetType.EXACT_MATCH:
            result = exact_match(input, params)
        elif preset is PresetType.CONTAINS:
            result = contains(input, params)
        elif preset is PresetType.REGEX:
            result = regex(input, params)
        elif preset is PresetType.JSON_SCHEMA:
            result = json_schema(input, params, schema_cache=schema_cache)
        elif preset is PresetType.SIMILARITY:
            result = similarity(input, params)
        else:
            assert_never(preset)
    except Exception as e:
        logger.warning("Preset evaluator %s failed: %s", preset.value, e)
        return EvaluatorOutput(passed=False, score=0.0, reason=f"preset evaluator failed: {e}")

    logger.debug("Preset %s -> passed=%s score=%s", preset.value, result.passed, result.score)
    return result
