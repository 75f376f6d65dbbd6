"""Anthropic Claude LLM provider.

Claude has no server-side JSON-schema mode on the Messages API, so
structured calls carry the schema in the system prompt and rely on
``call_structured`` to validate what comes back.
"""

import logging
import os
from typing import Any

from src.llm.base import LLMProvider, schema_instruction

logger = logging.getLogger(__name__)

_MAX_OUTPUT_TOKENS = 8192


class AnthropicProvider(LLMProvider):
    @property
    def provider_id(self) -> str:
        return "anthropic"

    @property
    def default_model(self) -> str:
        return "claude-sonnet-4-20250514"

    @property
    def env_var(self) -> str:
        return "ANTHROPIC_API_KEY"

    def _client(self) -> Any:
        api_key = os.environ.get(self.env_var)
        if not api_key:
            msg = f"{self.env_var} environment variable is required"
            raise ValueError(msg)

        try:
            import anthropic
        except ImportError:
            msg = (
                "anthropic is required for the Anthropic provider. "
                "Install with: pip install 'job-matching-engine[anthropic]'"
            )
            raise ImportError(msg) from None

        return anthropic.Anthropic(api_key=api_key)

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
        instructions = (system or "") + (schema_instruction(schema) if schema else "")

        kwargs: dict[str, Any] = {}
        if instructions:
            kwargs["system"] = instructions

        logger.info("Sending prompt to Anthropic API (%s, %d chars)", use_model, len(prompt))
        message = client.messages.create(
            model=use_model,
            max_tokens=_MAX_OUTPUT_TOKENS,
            messages=[{"role": "user", "content": prompt}],
            **kwargs,
        )

        if message.stop_reason == "max_tokens":
            # Truncated JSON fails validation downstream; flag the cause here.
            logger.warning("Anthropic response hit max_tokens (%d)", _MAX_OUTPUT_TOKENS)

        return "".join(block.text for block in message.content if block.type == "text")
