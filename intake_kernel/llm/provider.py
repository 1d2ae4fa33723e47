"""
LLM Provider — the optional generation/embedding collaborator.

Injected as a capability, never a module-level singleton. Every caller pairs
a call with a deterministic fallback, so a None (or an exception) from the
provider only ever means "use the fallback".
"""

import json
import logging
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from openai import OpenAI

from intake_kernel.config import IntakeSettings

logger = logging.getLogger(__name__)


@runtime_checkable
class LLMProvider(Protocol):
    """Minimal interface: JSON-object generation and text embeddings."""

    def generate_json(
        self,
        system: str,
        user: str,
        *,
        temperature: float = 0.2,
        max_tokens: int = 800,
    ) -> Optional[Dict[str, Any]]:
        ...

    def embed(self, text: str) -> Optional[List[float]]:
        ...


class NullLLMProvider:
    """Offline provider. Every call falls through to the deterministic path."""

    def generate_json(self, system: str, user: str, *, temperature: float = 0.2,
                      max_tokens: int = 800) -> Optional[Dict[str, Any]]:
        return None

    def embed(self, text: str) -> Optional[List[float]]:
        return None


class StaticLLMProvider:
    """
    Deterministic scripted provider for tests.

    Returns payloads in order; once exhausted, repeats the last one. A payload
    that is an Exception instance is raised instead of returned.
    """

    def __init__(self, payloads: Optional[List[Any]] = None, embedding: Optional[List[float]] = None):
        self._payloads = list(payloads or [None])
        self._embedding = embedding
        self._i = 0
        self.calls: List[Dict[str, str]] = []

    def generate_json(self, system: str, user: str, *, temperature: float = 0.2,
                      max_tokens: int = 800) -> Optional[Dict[str, Any]]:
        self.calls.append({"system": system, "user": user})
        payload = self._payloads[min(self._i, len(self._payloads) - 1)]
        self._i += 1
        if isinstance(payload, Exception):
            raise payload
        return payload

    def embed(self, text: str) -> Optional[List[float]]:
        return self._embedding


class OpenAILLMProvider:
    """Real transport using the OpenAI Python SDK (chat completions in JSON mode)."""

    def __init__(self, settings: IntakeSettings, client: Optional[OpenAI] = None):
        self.settings = settings
        if client is None:
            # The OpenAI() constructor pulls from env by default; these kwargs override when provided.
            kwargs: Dict[str, Any] = {"timeout": settings.llm_timeout_seconds, "max_retries": 1}
            if settings.openai_api_key:
                kwargs["api_key"] = settings.openai_api_key
            if settings.openai_base_url:
                kwargs["base_url"] = settings.openai_base_url
            client = OpenAI(**kwargs)
        self._client = client

    def generate_json(self, system: str, user: str, *, temperature: float = 0.2,
                      max_tokens: int = 800) -> Optional[Dict[str, Any]]:
        resp = self._client.chat.completions.create(
            model=self.settings.openai_model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
        )
        content = resp.choices[0].message.content if resp.choices else None
        if not content:
            return None
        parsed = json.loads(content)
        return parsed if isinstance(parsed, dict) else None

    def embed(self, text: str) -> Optional[List[float]]:
        resp = self._client.embeddings.create(model=self.settings.embedding_model, input=text)
        if not resp.data:
            return None
        return list(resp.data[0].embedding)


def build_llm_provider(settings: IntakeSettings) -> LLMProvider:
    """OpenAI when a key is configured, otherwise the offline provider."""
    if settings.llm_enabled:
        logger.info("LLM provider: openai (%s)", settings.openai_model)
        return OpenAILLMProvider(settings)
    logger.info("LLM provider: offline (deterministic fallbacks only)")
    return NullLLMProvider()


def safe_generate_json(
    provider: LLMProvider,
    purpose: str,
    system: str,
    user: str,
    **kwargs: Any,
) -> Optional[Dict[str, Any]]:
    """Call the provider; any failure is logged and becomes None."""
    try:
        return provider.generate_json(system, user, **kwargs)
    except Exception as e:
        logger.warning("LLM %s failed, using deterministic fallback: %s", purpose, e)
        return None


def safe_embed(provider: LLMProvider, text: str) -> Optional[List[float]]:
    try:
        return provider.embed(text)
    except Exception as e:
        logger.warning("LLM embedding failed: %s", e)
        return None
