"""Ollama local LLM provider (OpenAI-compatible API)."""

import logging
from typing import Any

from src.llm.base import LLMProvider, schema_instruction

logger = logging.getLogger(__name__)

_OLLAMA_BASE_URL = "http://localhost:11434/v1"
_DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"


class OllamaProvider(LLMProvider):
    """LLM provider using a local Ollama instance via OpenAI-compatible API."""

    @property
    def provider_id(self) -> str:
        return "ollama"

    @property
    def default_model(self) -> str:
        return "llama3"

    @property
    def default_embedding_model(self) -> str:
        return _DEFAULT_EMBEDDING_MODEL

    @property
    def env_var(self) -> None:
        return None

    def _client(self) -> Any:
        try:
            import openai
        except ImportError:
            msg = (
                "openai is required for Ollama (OpenAI-compatible API). "
                "Install with: pip install 'job-matching-engine[openai]'"
            )
            raise ImportError(msg) from None

        return openai.OpenAI(base_url=_OLLAMA_BASE_URL, api_key="ollama")

    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
        schema: dict[str, Any] | None = None,
    ) -> str:
        client = self._client()
        use_model = model or self.default_model

        use_system = system or ""
        kwargs: dict[str, Any] = {}
        if schema is not None:
            # Ollama's compatibility layer only understands json_object mode.
            use_system += schema_instruction(schema)
            kwargs["response_format"] = {"type": "json_object"}

        messages = []
        if use_system:
            messages.append({"role": "system", "content": use_system})
        messages.append({"role": "user", "content": prompt})

        logger.info("Sending prompt to Ollama (%s)...", use_model)
        response = client.chat.completions.create(
            model=use_model, messages=messages, **kwargs
        )

        return response.choices[0].message.content  # type: ignore[no-any-return]

    def embed(self, texts: list[str], model: str | None = None) -> list[list[float]]:
        if not texts:
            return []
        client = self._client()
        use_model = model or self.default_embedding_model

        logger.info("Embedding %d text(s) with Ollama (%s)...", len(texts), use_model)
        response = client.embeddings.create(model=use_model, input=texts)
        ordered = sorted(response.data, key=lambda d: d.index)
        return [list(d.embedding) for d in ordered]
