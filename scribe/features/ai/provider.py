"""
Completion provider protocol.

The metered operations only need "submit a prompt, get text and a token
count" from the model host. Groq is the real implementation; a disabled
implementation stands in when GROQ_API_KEY is not set.
"""
from dataclasses import dataclass
import logging
from typing import Any, Dict, List, Optional, Protocol

import groq

from scribe.core.config import Settings, settings
from scribe.core.errors import ConfigurationError, UpstreamProviderError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Completion:
    text: str
    tokens_used: int


class CompletionProvider(Protocol):
    enabled: bool

    def complete(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: str,
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
    ) -> Completion:
        """
        Run one chat completion.

        Raises:
            CompletionProviderError: If the provider call fails or times out
        """
        ...


class CompletionProviderError(UpstreamProviderError):
    code = "completion_provider_error"


class GroqCompletionProvider:
    """Groq-backed completions with a bounded timeout and no retries."""

    enabled = True

    def __init__(self, api_key: Optional[str] = None, cfg: Optional[Settings] = None):
        cfg = cfg or settings
        api_key = api_key or cfg.GROQ_API_KEY
        if not api_key:
            raise ConfigurationError("GROQ_API_KEY not configured", code="ai_disabled")
        self.client = groq.Groq(
            api_key=api_key,
            timeout=cfg.PROVIDER_TIMEOUT_SECONDS,
            max_retries=0,
        )

    def complete(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: str,
        temperature: float = 0.3,
        max_tokens: Optional[int] = None,
    ) -> Completion:
        params: Dict[str, Any] = {"model": model, "messages": messages, "temperature": temperature}
        if max_tokens:
            params["max_tokens"] = max_tokens
        try:
            response = self.client.chat.completions.create(**params)
        except groq.APIError as e:
            logger.error("ai.completion.failed", extra={"model": model, "error": str(e)})
            raise CompletionProviderError(f"Groq completion failed: {e}") from e

        text = (response.choices[0].message.content or "").strip()
        tokens_used = response.usage.total_tokens if response.usage else 0
        return Completion(text=text, tokens_used=tokens_used)


class DisabledCompletionProvider:
    enabled = False

    def complete(self, messages, *, model, temperature=0.3, max_tokens=None) -> Completion:
        raise ConfigurationError("AI features are not configured. Set GROQ_API_KEY.", code="ai_disabled")


def get_completion_provider() -> CompletionProvider:
    if not settings.GROQ_API_KEY:
        return DisabledCompletionProvider()
    return GroqCompletionProvider()
