"""Gemini provider using google-genai SDK with native async."""

import asyncio
import logging
import time

from google import genai
from google.genai import types as genai_types

from config.config_loader import ModelConfig
from cruxmap.models import ModelResponse
from cruxmap.providers.base import AIProvider, ProviderError, require_api_key

logger = logging.getLogger(__name__)


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        self._client = genai.Client(api_key=require_api_key(config))

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    def _generation_config(
        self, system: str | None, temperature: float | None, json_mode: bool,
    ) -> genai_types.GenerateContentConfig:
        return genai_types.GenerateContentConfig(
            max_output_tokens=self._config.max_tokens,
            system_instruction=system,
            temperature=temperature,
            response_mime_type="application/json" if json_mode else None,
        )

    async def generate(
        self,
        prompt: str,
        system: str | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
    ) -> ModelResponse:
        start = time.monotonic()
        try:
            result = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self._config.model,
                    contents=prompt,
                    config=self._generation_config(system, temperature, json_mode),
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc
        latency = time.monotonic() - start

        if not result.text:
            raise ProviderError(self._config.name, "Empty response text")

        usage = result.usage_metadata
        token_count = usage.total_token_count if usage else None
        logger.info("%s: %.2fs, %s tokens, json_mode=%s", self._config.name, latency, token_count, json_mode)

        return ModelResponse(
            provider=self._config.name,
            model=self._config.model,
            content=result.text,
            latency_sec=latency,
            token_count=token_count,
        )
