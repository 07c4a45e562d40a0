"""
Base Provider Abstraction Layer

Defines the interface grading-model backends implement. The LLM grading
adapter never talks to a provider directly; it goes through a
ProviderModelInvoker, which turns provider responses into ModelResponse
objects.

Usage:
    from eval_engine.providers import ProviderFactory
    from eval_engine.types import ChatMessage

    provider = ProviderFactory.create("ollama", model="qwen2.5:7b")
    response = await provider.generate_chat([ChatMessage(role="user", content="Hi")])
    print(response.text, response.metrics.total_tokens)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Dict, List, Optional

from ..types import ChatMessage

logger = logging.getLogger(__name__)


class ProviderType(Enum):
    """Supported grading-model provider types."""

    OLLAMA = auto()
    GOOGLE = auto()


@dataclass
class GenerationConfig:
    """Sampling configuration for grading requests.

    Grading wants repeatable verdicts, so the default temperature is low.
    """

    temperature: float = 0.0
    max_tokens: int = 1024
    top_p: float = 1.0
    seed: Optional[int] = None


@dataclass
class GenerationMetrics:
    """Token and timing figures from one request."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    total_duration_ms: float = 0.0


@dataclass
class GenerationResponse:
    """Response from a chat request."""

    text: str
    model: str
    provider: ProviderType
    metrics: GenerationMetrics
    timestamp: datetime = field(default_factory=datetime.now)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        """Whether the generation succeeded."""
        return self.error is None


class BaseProvider(ABC):
    """
    Abstract base class for grading-model providers.

    Providers must implement:
    - generate_chat(): Multi-message completion
    - list_models(): Available models
    - health_check(): Connectivity test

    generate_chat() reports failures through ``GenerationResponse.error``
    rather than raising.
    """

    def __init__(
        self,
        model: str,
        config: Optional[GenerationConfig] = None,
        timeout: float = 120.0,
    ):
        """
        Args:
            model: Model name/identifier.
            config: Generation configuration.
            timeout: Request timeout in seconds.
        """
        self.model = model
        self.config = config or GenerationConfig()
        self.timeout = timeout

    @property
    @abstractmethod
    def provider_type(self) -> ProviderType:
        """Return the provider type enum."""
        ...

    @property
    def is_local(self) -> bool:
        """Whether this provider runs locally (no API costs)."""
        return self.provider_type == ProviderType.OLLAMA

    @abstractmethod
    async def generate_chat(
        self,
        messages: List[ChatMessage],
        config: Optional[GenerationConfig] = None,
    ) -> GenerationResponse:
        """
        Generate a completion for a list of messages.

        Args:
            messages: Messages to send (system, user, assistant).
            config: Override default generation config.

        Returns:
            GenerationResponse with text, metrics, and error (if any).
        """
        ...

    @abstractmethod
    async def list_models(self) -> List[str]:
        """List available models from this provider."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the provider is reachable and working."""
        ...


class ProviderFactory:
    """
    Factory for creating provider instances.

    Usage:
        provider = ProviderFactory.create("ollama", model="qwen2.5:7b")
    """

    _registry: Dict[str, type] = {}

    @classmethod
    def register(cls, name: str, provider_class: type) -> None:
        """Register a provider class."""
        cls._registry[name.lower()] = provider_class

    @classmethod
    def create(
        cls,
        provider_name: str,
        model: str,
        config: Optional[GenerationConfig] = None,
        **kwargs: Any,
    ) -> BaseProvider:
        """
        Create a provider instance.

        Args:
            provider_name: Provider name (ollama, google).
            model: Model name/identifier.
            config: Generation configuration.
            **kwargs: Provider-specific arguments.

        Raises:
            ValueError: If provider is not registered.
        """
        provider_class = cls._registry.get(provider_name.lower())
        if provider_class is None:
            available = ", ".join(cls._registry.keys())
            raise ValueError(
                f"Unknown provider '{provider_name}'. Available: {available}"
            )
        return provider_class(model=model, config=config, **kwargs)

    @classmethod
    def available_providers(cls) -> List[str]:
        """List registered provider names."""
        return list(cls._registry.keys())
