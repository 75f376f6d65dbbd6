"""Abstract base class for LLM providers."""

import json
from abc import ABC, abstractmethod
from typing import Any


def schema_instruction(schema: dict[str, Any]) -> str:
    """Prompt suffix for providers without native JSON-schema output."""
    return (
        "\n\nReturn ONLY a JSON object (no markdown, no explanation) that "
        "validates against this JSON schema:\n" + json.dumps(schema, indent=2)
    )


class LLMProvider(ABC):
    """Base class that every LLM provider must implement."""

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Unique identifier for this provider (e.g. 'anthropic')."""

    @abstractmethod
    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
        schema: dict[str, Any] | None = None,
    ) -> str:
        """Send a prompt to the LLM and return raw response text.

        Args:
            prompt: The user message.
            model: Override the provider's default model. None uses default.
            system: System prompt, if any.
            schema: JSON schema the response must follow. Providers with
                native structured output enforce it; others get it appended
                to the system prompt.

        Returns:
            Raw text response from the LLM (expected to be JSON when a
            schema is given).
        """

    def embed(self, texts: list[str], model: str | None = None) -> list[list[float]]:
        """Return one embedding vector per input text, in input order."""
        msg = f"Provider '{self.provider_id}' does not support embeddings"
        raise NotImplementedError(msg)

    @property
    @abstractmethod
    def default_model(self) -> str:
        """The default model ID used when no override is specified."""

    @property
    def default_embedding_model(self) -> str | None:
        """Embedding model used when none is configured; None if unsupported."""
        return None

    @property
    @abstractmethod
    def env_var(self) -> str | None:
        """Environment variable name for the API key, or None if not needed."""
