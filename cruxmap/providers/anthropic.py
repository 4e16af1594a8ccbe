"""Anthropic Claude provider using anthropic SDK with native async."""

import asyncio
import logging
import time

import anthropic as anthropic_sdk

from config.config_loader import ModelConfig
from cruxmap.models import ModelResponse
from cruxmap.providers.base import AIProvider, ProviderError, require_api_key

logger = logging.getLogger(__name__)


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider via anthropic SDK.

    The Messages API has no JSON response mode, so json_mode is accepted and
    ignored; the schema block in the prompt carries the format.
    """

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        self._client = anthropic_sdk.AsyncAnthropic(api_key=require_api_key(config))

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
        request: dict = {
            "model": self._config.model,
            "max_tokens": self._config.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            request["system"] = system
        if temperature is not None:
            request["temperature"] = temperature

        start = time.monotonic()
        try:
            message = await asyncio.wait_for(self._client.messages.create(**request), timeout=self._config.timeout_sec)
        except TimeoutError as exc:
            raise ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s") from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc
        latency = time.monotonic() - start

        text = "\n".join(block.text for block in (message.content or []) if block.type == "text")
        if not text:
            raise ProviderError(self._config.name, f"No text in response (stop_reason={message.stop_reason})")

        usage = message.usage
        token_count = usage.input_tokens + usage.output_tokens if usage else None
        logger.info("%s: %.2fs, %s tokens, stop=%s", self._config.name, latency, token_count, message.stop_reason)

        return ModelResponse(
            provider=self._config.name,
            model=self._config.model,
            content=text,
            latency_sec=latency,
            token_count=token_count,
        )
