"""Abstract base for the text-generation providers the core consumes."""

import os
from abc import ABC, abstractmethod

from config.config_loader import ModelConfig
from cruxmap.models import ModelResponse


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class ResponseFormatError(ProviderError):
    """Raised when a response cannot be parsed against the requested schema."""


def require_api_key(config: ModelConfig) -> str:
    """Read the key named by config.api_key_env. Raises ProviderError if unset or blank."""
    api_key = os.environ.get(config.api_key_env, "").strip()
    if not api_key:
        raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
    return api_key


class AIProvider(ABC):
    """Abstract base for all AI model providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the configured provider name (e.g. 'claude', 'grok')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system: str | None = None,
        temperature: float | None = None,
        json_mode: bool = False,
    ) -> ModelResponse:
        """Generate a response for the given prompt.

        Args:
            prompt: The user-turn prompt text.
            system: Optional system instructions.
            temperature: Optional sampling temperature; provider default if None.
            json_mode: Ask for a JSON-only reply where the vendor supports it.

        Returns:
            ModelResponse dataclass with content and metadata.

        Raises:
            ProviderError: On API failure, timeout, or empty response.
        """
        ...
