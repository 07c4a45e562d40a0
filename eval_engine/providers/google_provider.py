"""
Google Gemini Provider Implementation

Cloud grading models via the google-genai SDK.

Usage:
    provider = GoogleProvider(model="gemini-2.5-flash")
    response = await provider.generate_chat(messages)
"""

import logging
import os
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..types import ChatMessage
from .base import (
    BaseProvider,
    GenerationConfig,
    GenerationMetrics,
    GenerationResponse,
    ProviderFactory,
    ProviderType,
)

logger = logging.getLogger(__name__)

GEMINI_MODELS = [
    "gemini-2.5-pro",
    "gemini-2.5-flash",
    "gemini-2.0-flash",
]


class GoogleProvider(BaseProvider):
    """
    Google Gemini provider.

    Requires GOOGLE_API_KEY environment variable or explicit api_key.
    """

    def __init__(
        self,
        model: str,
        config: Optional[GenerationConfig] = None,
        timeout: float = 120.0,
        api_key: Optional[str] = None,
    ):
        """
        Args:
            model: Gemini model name (e.g., "gemini-2.5-flash").
            config: Generation configuration.
            timeout: Request timeout in seconds.
            api_key: Google API key (defaults to GOOGLE_API_KEY env var).
        """
        super().__init__(model, config, timeout)
        self._api_key = api_key or os.getenv("GOOGLE_API_KEY")
        self._client: Any = None
        self._genai: Any = None

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.GOOGLE

    def _ensure_client(self) -> None:
        """Lazily initialize the Google GenAI client."""
        if self._client is not None:
            return

        if not self._api_key:
            raise ValueError(
                "Google API key required. Set GOOGLE_API_KEY env var or pass api_key."
            )

        from google import genai

        self._genai = genai
        self._client = genai.Client(api_key=self._api_key)

    async def generate_chat(
        self,
        messages: List[ChatMessage],
        config: Optional[GenerationConfig] = None,
    ) -> GenerationResponse:
        """Send messages to Gemini. System messages become the system instruction."""
        cfg = config or self.config

        # Gemini uses "user" and "model" roles
        contents = []
        system_instruction = None
        for msg in messages:
            if msg.role == "system":
                system_instruction = msg.content
            elif msg.role == "assistant":
                contents.append({"role": "model", "parts": [{"text": msg.content}]})
            else:
                contents.append({"role": "user", "parts": [{"text": msg.content}]})

        generation_config: Dict[str, Any] = {
            "temperature": cfg.temperature,
            "max_output_tokens": cfg.max_tokens,
            "top_p": cfg.top_p,
        }
        if cfg.seed is not None:
            generation_config["seed"] = cfg.seed
        if system_instruction:
            generation_config["system_instruction"] = system_instruction

        try:
            self._ensure_client()
            start_time = time.perf_counter()

            response = await self._client.aio.models.generate_content(
                model=self.model,
                contents=contents,
                config=self._genai.types.GenerateContentConfig(**generation_config),
            )

            duration_ms = (time.perf_counter() - start_time) * 1000

            usage = getattr(response, "usage_metadata", None)
            prompt_tokens = (getattr(usage, "prompt_token_count", 0) or 0) if usage else 0
            completion_tokens = (
                (getattr(usage, "candidates_token_count", 0) or 0) if usage else 0
            )

            result = GenerationResponse(
                text=response.text or "",
                model=self.model,
                provider=self.provider_type,
                metrics=GenerationMetrics(
                    prompt_tokens=prompt_tokens,
                    completion_tokens=completion_tokens,
                    total_tokens=prompt_tokens + completion_tokens,
                    total_duration_ms=duration_ms,
                ),
                timestamp=datetime.now(),
            )
            return result

        except Exception as e:
            logger.error(f"Google chat failed: {e}")
            return GenerationResponse(
                text="",
                model=self.model,
                provider=self.provider_type,
                metrics=GenerationMetrics(),
                error=str(e),
            )

    async def list_models(self) -> List[str]:
        """Commonly used Gemini grading models."""
        return list(GEMINI_MODELS)

    async def health_check(self) -> bool:
        """Check that the client can be configured."""
        try:
            self._ensure_client()
            return True
        except Exception as e:
            logger.warning(f"Google health check failed: {e}")
            return False


ProviderFactory.register("google", GoogleProvider)
