"""Text-generation port: the only non-deterministic capability the core uses."""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from cruxmap.providers.base import AIProvider, ProviderError, ResponseFormatError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class TextGenerator(ABC):
    """Narrow request/response contract consumed by the reasoning core."""

    @abstractmethod
    async def complete_json(
        self,
        system: str | None,
        prompt: str,
        schema: type[T],
        temperature: float | None = None,
    ) -> T:
        """Return a parsed object matching schema.

        Raises:
            ProviderError: On call failure.
            ResponseFormatError: If the response does not match schema.
        """
        ...

    @abstractmethod
    async def complete_text(
        self,
        system: str | None,
        prompt: str,
        temperature: float | None = None,
    ) -> str:
        """Return plain trimmed text. Raises ProviderError on failure."""
        ...

    @property
    def total_tokens(self) -> int:
        return 0


def strip_code_fences(text: str) -> str:
    """Drop a surrounding ``` or ```json fence if the model added one."""
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    return match.group(1) if match else stripped


def parse_json_response(provider_name: str, text: str, schema: type[T]) -> T:
    """Parse text as JSON and validate it against schema.

    Raises ResponseFormatError; never returns a partial object.
    """
    body = strip_code_fences(text)
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        # Models sometimes wrap JSON in prose; try the outermost object.
        start, end = body.find("{"), body.rfind("}")
        if start == -1 or end <= start:
            raise ResponseFormatError(provider_name, f"Response is not JSON: {exc}") from exc
        try:
            payload = json.loads(body[start:end + 1])
        except json.JSONDecodeError as inner:
            raise ResponseFormatError(provider_name, f"Response is not JSON: {inner}") from inner

    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise ResponseFormatError(
            provider_name,
            f"Response does not match {schema.__name__}: {exc.error_count()} error(s)",
        ) from exc


class ProviderTextGenerator(TextGenerator):
    """TextGenerator backed by a configured AIProvider."""

    def __init__(self, provider: AIProvider) -> None:
        self._provider = provider
        self._total_tokens = 0

    @property
    def provider(self) -> AIProvider:
        return self._provider

    @property
    def total_tokens(self) -> int:
        return self._total_tokens

    async def _generate(
        self, system: str | None, prompt: str, temperature: float | None, json_mode: bool = False,
    ) -> str:
        response = await self._provider.generate(prompt, system=system, temperature=temperature, json_mode=json_mode)
        if response.token_count:
            self._total_tokens += response.token_count
        return response.content

    async def complete_json(
        self,
        system: str | None,
        prompt: str,
        schema: type[T],
        temperature: float | None = None,
    ) -> T:
        schema_block = json.dumps(schema.model_json_schema(), indent=2)
        full_prompt = (
            f"{prompt.rstrip()}\n\n"
            "Respond with ONLY valid JSON matching this JSON schema. "
            f"No text outside the JSON.\n{schema_block}"
        )
        content = await self._generate(system, full_prompt, temperature, json_mode=True)
        return parse_json_response(self._provider.name(), content, schema)

    async def complete_text(
        self,
        system: str | None,
        prompt: str,
        temperature: float | None = None,
    ) -> str:
        content = (await self._generate(system, prompt, temperature)).strip()
        if not content:
            raise ProviderError(self._provider.name(), "Empty text response")
        return content
