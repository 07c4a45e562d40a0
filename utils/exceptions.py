"""
Custom exception hierarchy for eval-engine.

All project-specific exceptions inherit from EvalEngineError. The public
evaluation entry points never let these escape; they are raised by host-side
loaders and converted into failed verdicts inside the engine.
"""

from typing import List, Optional


class EvalEngineError(Exception):
    """Base exception for eval-engine."""

    pass


class ConfigError(EvalEngineError):
    """Invalid or missing configuration."""

    pass


class CycleError(ConfigError):
    """A composite evaluator transitively references itself."""

    def __init__(self, message: str, path: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.path = path or []


class ModelInvocationError(EvalEngineError):
    """The model provider returned an error instead of a completion."""

    pass


class SandboxUnavailableError(EvalEngineError):
    """A code evaluator was run without a sandbox executor."""

    pass


class ReportingError(EvalEngineError):
    """Error during report generation."""

    pass
