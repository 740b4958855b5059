"""
AI suggestion generator backed by an OpenAI-compatible chat endpoint (OpenRouter).

generate() is the primary, large-output call used for opportunity
suggestions; explain() uses a cheaper model for short explanations. The
returned text is untrusted and goes through services/json_repair.py.
"""

from typing import Optional

from openai import OpenAI

from opportunity_engine.core.config import settings
from opportunity_engine.core.errors import ConfigurationError, UpstreamCallError
from opportunity_engine.core.logging_config import get_logger
from opportunity_engine.schemas import TokenUsage

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are an SEO strategist for an experiences marketplace. "
    "Respond with a JSON array only, no prose and no markdown."
)


class OpenAISuggestionGenerator:
    """SuggestionGenerator over the OpenAI chat completions API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        explanation_model: Optional[str] = None,
        client: Optional[OpenAI] = None,
    ):
        api_key = api_key or settings.OPENROUTER_API_KEY
        if client is None and not api_key:
            raise ConfigurationError("OPENROUTER_API_KEY not set")

        self.client = client or OpenAI(base_url=base_url or settings.AI_BASE_URL, api_key=api_key)
        self.model = model or settings.AI_SUGGESTION_MODEL
        self.explanation_model = explanation_model or settings.AI_EXPLANATION_MODEL
        self.last_usage: Optional[TokenUsage] = None

    def _complete(self, model: str, prompt: str, max_tokens: int, system: Optional[str] = None) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        self.last_usage = None
        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
            )
        except Exception as e:
            raise UpstreamCallError("ai", str(e), getattr(e, "status_code", None)) from e

        usage = getattr(response, "usage", None)
        if usage is not None:
            self.last_usage = TokenUsage(
                input_tokens=usage.prompt_tokens or 0,
                output_tokens=usage.completion_tokens or 0,
            )

        if not response.choices:
            raise UpstreamCallError("ai", "Empty response from model")
        content = response.choices[0].message.content or ""
        logger.debug("AI completion", model=model, chars=len(content), usage=self.last_usage.total if self.last_usage else None)
        return content

    def generate(self, prompt: str) -> str:
        return self._complete(self.model, prompt, settings.AI_SUGGESTION_MAX_TOKENS, SYSTEM_PROMPT)

    def explain(self, prompt: str) -> str:
        return self._complete(self.explanation_model, prompt, settings.AI_EXPLANATION_MAX_TOKENS)


def get_suggestion_generator() -> Optional[OpenAISuggestionGenerator]:
    """Generator from settings, or None when no API key is configured."""
    if not settings.OPENROUTER_API_KEY:
        logger.warning("OPENROUTER_API_KEY not set, AI suggestions unavailable")
        return None
    return OpenAISuggestionGenerator()
