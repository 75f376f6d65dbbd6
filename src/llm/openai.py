"""OpenAI LLM provider."""

import logging
import os
from typing import Any

from src.llm.base import LLMProvider

logger = logging.getLogger(__name__)

_DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


class OpenAIProvider(LLMProvider):
    """LLM provider using the OpenAI API.

    Structured calls use ``response_format={"type": "json_schema", ...}``
    with ``strict`` enabled, so the schema is enforced server-side.
    """

    @property
    def provider_id(self) -> str:
        return "openai"

    @property
    def default_model(self) -> str:
        return "gpt-4.1-mini"

    @property
    def default_embedding_model(self) -> str:
        return _DEFAULT_EMBEDDING_MODEL

    @property
    def env_var(self) -> str:
        return "OPENAI_API_KEY"

    def _client(self) -> Any:
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            msg = "OPENAI_API_KEY environment variable is required"
            raise ValueError(msg)

        try:
            import openai
        except ImportError:
            msg = (
                "openai is required for the OpenAI provider. "
                "Install with: pip install 'job-matching-engine[openai]'"
            )
            raise ImportError(msg) from None

        return openai.OpenAI(api_key=api_key)

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

        messages = []
        if system is not None:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        kwargs: dict[str, Any] = {}
        if schema is not None:
            kwargs["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "output", "strict": True, "schema": schema},
            }

        logger.info("Sending prompt to OpenAI API (%s)...", use_model)
        response = client.chat.completions.create(
            model=use_model, messages=messages, **kwargs
        )

        return response.choices[0].message.content  # type: ignore[no-any-return]

    def embed(self, texts: list[str], model: str | None = None) -> list[list[float]]:
        if not texts:
            return []
        client = self._client()
        use_model = model or self.default_embedding_model

        logger.info("Embedding %d text(s) with OpenAI (%s)...", len(texts), use_model)
        response = client.embeddings.create(model=use_model, input=texts)

        # The API may return entries out of order; index restores input order.
        ordered = sorted(response.data, key=lambda d: d.index)
        return [list(d.embedding) for d in ordered]
