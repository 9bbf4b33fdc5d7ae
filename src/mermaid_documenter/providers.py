"""Model provider adapters."""

from __future__ import annotations

from typing import ClassVar, Protocol

from loguru import logger
from republic import LLM

from mermaid_documenter.errors import UpstreamError

SUPPORTED_PROVIDERS = ("openai", "anthropic", "google")


class ModelProvider(Protocol):
    """Turns one prompt into one completion."""

    def generate(self, prompt: str, model: str, api_key: str) -> str: ...


class RepublicProvider:
    """Provider backed by the Republic LLM client.

    Request and response shaping for each vendor is delegated to Republic; the
    agent only ever sends one flattened prompt and reads back text.
    """

    REPUBLIC_PROVIDER_NAMES: ClassVar[dict[str, str]] = {
        "openai": "openai",
        "anthropic": "anthropic",
        "google": "gemini",
    }

    def __init__(self, provider: str, *, api_base: str | None = None, max_tokens: int = 4096) -> None:
        self._provider = provider
        self._api_base = api_base
        self._max_tokens = max_tokens
        self._clients: dict[tuple[str, str], LLM] = {}

    def model_id(self, model: str) -> str:
        if ":" in model:
            return model
        prefix = self.REPUBLIC_PROVIDER_NAMES.get(self._provider, self._provider)
        return f"{prefix}:{model}"

    def generate(self, prompt: str, model: str, api_key: str) -> str:
        llm = self._client(model, api_key)
        try:
            text = llm.chat(prompt, max_tokens=self._max_tokens)
        except Exception as exc:
            logger.exception("model.call.error provider={} model={}", self._provider, model)
            raise UpstreamError(f"LLM call failed: {exc!s}") from exc
        if not isinstance(text, str) or not text.strip():
            raise UpstreamError("LLM call failed: no content in response")
        return text

    def _client(self, model: str, api_key: str) -> LLM:
        key = (model, api_key)
        if key not in self._clients:
            self._clients[key] = LLM(self.model_id(model), api_key=api_key, api_base=self._api_base)
        return self._clients[key]
