"""
Grading Model Providers

Unified interface for grading-model backends (Ollama, Google) plus a
ModelInvoker that plugs them into the LLM grading adapter.

Usage:
    from eval_engine.providers import ProviderModelInvoker

    invoker = ProviderModelInvoker()
    response = await invoker("ollama/qwen2.5:7b", messages)
"""

from .base import (
    BaseProvider,
    GenerationConfig,
    GenerationMetrics,
    GenerationResponse,
    ProviderFactory,
    ProviderType,
)
from .ollama_provider import OllamaProvider
from .google_provider import GoogleProvider
from .invoker import ProviderModelInvoker, split_model_id

__all__ = [
    # Base classes and types
    "BaseProvider",
    "GenerationConfig",
    "GenerationMetrics",
    "GenerationResponse",
    "ProviderFactory",
    "ProviderType",
    # Providers
    "OllamaProvider",
    "GoogleProvider",
    # Invoker
    "ProviderModelInvoker",
    "split_model_id",
]
