"""Google Gemini LLM provider (google-genai SDK)."""

import logging
import os
from typing import Any

from src.llm.base import LLMProvider, schema_instruction

logger = logging.getLogger(__name__)

_DEFAULT_EMBEDDING_MODEL = "text-embedding-004"


class GeminiProvider(LLMProvider):
    """LLM provider using the Google Gemini API.

    Structured calls switch the response MIME type to JSON; the schema
    itself travels in the system instruction.
    """

    @property
    def provider_id(self) -> str:
        return "gemini"

    @property
    def default_model(self) -> str:
        return "gemini-2.5-flash"

    @property
    def default_embedding_model(self) -> str:
        return _DEFAULT_EMBEDDING_MODEL

    @property
    def env_var(self) -> str:
        return "GOOGLE_API_KEY"

    def _sdk(self) -> tuple[Any, Any]:
        api_key = os.environ.get(self.env_var)
        if not api_key:
            msg = f"{self.env_var} environment variable is required"
            raise ValueError(msg)

        try:
            from google import genai
            from google.genai import types
        except ImportError:
            msg = (
                "google-genai is required for the Gemini provider. "
                "Install with: pip install 'job-matching-engine[gemini]'"
            )
            raise ImportError(msg) from None

        return genai.Client(api_key=api_key), types

    def complete(
        self,
        prompt: str,
        model: str | None = None,
        *,
        system: str | None = None,
        schema: dict[str, Any] | None = None,
    ) -> str:
        client, types = self._sdk()
        use_model = model or self.default_model

        config: dict[str, Any] = {}
        instructions = (system or "") + (schema_instruction(schema) if schema else "")
        if instructions:
            config["system_instruction"] = instructions
        if schema is not None:
            config["response_mime_type"] = "application/json"

        logger.info("Sending prompt to Gemini API (%s, %d chars)", use_model, len(prompt))
        response = client.models.generate_content(
            model=use_model,
            contents=prompt,
            config=types.GenerateContentConfig(**config),
        )

        # Blocked or empty candidates come back with text=None
        if response.text is None:
            msg = f"Gemini returned no text for model {use_model}"
            raise ValueError(msg)
        return response.text  # type: ignore[no-any-return]

    def embed(self, texts: list[str], model: str | None = None) -> list[list[float]]:
        client, _ = self._sdk()
        use_model = model or self.default_embedding_model
        logger.debug("Embedding %d text(s) with Gemini (%s)", len(texts), use_model)
        response = client.models.embed_content(model=use_model, contents=texts)
        return [list(item.values) for item in response.embeddings]
