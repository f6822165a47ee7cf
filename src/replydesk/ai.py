"""Summary: Completion backend abstraction and implementations.

Importance: Centralizes LLM access so reply generation is backend-agnostic.
Alternatives: Call provider SDKs directly in the reply generator.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from replydesk.config import AppConfig


class AiProvider(ABC):
    """Summary: Abstract interface for chat-style text completion.

    Importance: Allows switching between local and cloud LLMs without refactors.
    Alternatives: Use a single vendor SDK and accept lock-in risk.
    """

    @abstractmethod
    def complete(self, system: str, user: str, temperature: float, max_tokens: int) -> str:
        """Summary: Generate a completion for a system and user message pair.

        Importance: Standardizes outputs for the reply generator.
        Alternatives: Return provider-specific response objects directly.
        """


class MockAiProvider(AiProvider):
    """Summary: Deterministic completion backend for local testing.

    Importance: Enables offline workflows and repeatable tests.
    Alternatives: Use a small local LLM for all development tasks.
    """

    def complete(self, system: str, user: str, temperature: float, max_tokens: int) -> str:
        first_line = next((line for line in user.splitlines() if line.strip()), "")
        return f"Thanks for your email.\n\n[mock reply] {first_line.strip()[:200]}"


class OllamaProvider(AiProvider):
    """Summary: Completion backend that targets a local Ollama server.

    Importance: Supports privacy-sensitive drafting on local hardware.
    Alternatives: Use llama.cpp directly with a Python binding.
    """

    def __init__(self, base_url: str, model: str) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model

    def complete(self, system: str, user: str, temperature: float, max_tokens: int) -> str:
        """Summary: Generate text using the Ollama chat API.

        Importance: Keeps the system/user split identical to cloud backends.
        Alternatives: Use Ollama's generate endpoint with a merged prompt.
        """

        payload = {
            "model": self._model,
            "messages": _chat_messages(system, user),
            "stream": False,
            "options": {"temperature": temperature, "num_predict": max_tokens},
        }
        raw = _post_json(f"{self._base_url}/api/chat", payload, {}, "Ollama")
        return (raw.get("message") or {}).get("content", "")


class OpenAiProvider(AiProvider):
    """Summary: Completion backend using OpenAI's chat completion API.

    Importance: Produces higher-quality drafts when configured.
    Alternatives: Use other cloud providers or a local model.
    """

    def __init__(self, api_key: str, model: str) -> None:
        self._api_key = api_key
        self._model = model

    def complete(self, system: str, user: str, temperature: float, max_tokens: int) -> str:
        payload = {
            "model": self._model,
            "messages": _chat_messages(system, user),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        raw = _post_json(
            "https://api.openai.com/v1/chat/completions",
            payload,
            {"Authorization": f"Bearer {self._api_key}"},
            "OpenAI",
        )
        try:
            return raw["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise RuntimeError(f"OpenAI response missing content: {exc}") from exc


@dataclass(frozen=True)
class AiProviderFactory:
    """Summary: Factory for selecting completion backends from configuration.

    Importance: Keeps provider selection logic centralized.
    Alternatives: Wire providers manually at the application entrypoint.
    """

    config: AppConfig

    def build(self) -> AiProvider:
        if self.config.ai_provider == "ollama":
            return OllamaProvider(self.config.ollama_url, self.config.ollama_model)
        if self.config.ai_provider == "openai":
            if not self.config.openai_api_key:
                raise ValueError("OPENAI_API_KEY is required for openai provider")
            return OpenAiProvider(self.config.openai_api_key, self.config.openai_model)
        return MockAiProvider()


def _chat_messages(system: str, user: str) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def _post_json(url: str, payload: dict[str, Any], headers: dict[str, str], backend: str) -> dict[str, Any]:
    """Summary: POST a JSON payload and parse the JSON response.

    Importance: Shares transport and error wrapping across HTTP backends.
    Alternatives: Use requests or httpx.
    """

    request = urllib.request.Request(
        url=url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json", **headers},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=60) as response:
            return json.loads(response.read().decode("utf-8"))
    except urllib.error.URLError as exc:
        raise RuntimeError(f"{backend} request failed: {exc}") from exc
