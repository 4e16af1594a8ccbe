"""OpenAI-compatible provider (OpenAI, xAI Grok, ...) using openai SDK with native async."""

import asyncio
import logging
import time

from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from cruxmap.models import ModelResponse
from cruxmap.providers.base import AIProvider, ProviderError, require_api_key

logger = logging.getLogger(__name__)

_JSON_FORMAT = {"type": "json_object"}


class OpenAIProvider(AIProvider):
    """Chat-completions provider; base_url selects an OpenAI-compatible vendor."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        self._client = AsyncOpenAI(api_key=require_api_key(config), base_url=config.base_url)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def generate(
        self,
        prompt: str,
        system: str | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
    ) -> ModelResponse:
        messages = [{"role": "system", "content": system}] if system else []
        messages.append({"role": "user", "content": prompt})
        options: dict = {"max_tokens": self._config.max_tokens}
        if temperature is not None:
            options["temperature"] = temperature
        if json_mode:
            options["response_format"] = _JSON_FORMAT

        start = time.monotonic()
        try:
            completion = await asyncio.wait_for(
                self._client.chat.completions.create(model=self._config.model, messages=messages, **options),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc
        latency = time.monotonic() - start

        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise ProviderError(self._config.name, "Empty response content")

        token_count = completion.usage.total_tokens if completion.usage else None
        logger.info("%s: %.2fs, %s tokens, json_mode=%s", self._config.name, latency, token_count, json_mode)

        return ModelResponse(
            provider=self._config.name,
            model=self._config.model,
            content=content,
            latency_sec=latency,
            token_count=token_count,
        )
