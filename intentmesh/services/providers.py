"""
LLM Providers — Abstraction over the models behind classification and extraction

Supports: OpenAI, Claude, Ollama (local).
All providers implement the same complete(system, user) interface, so the
classifier and extractor never see provider differences.

SDKs are optional: a provider whose package or API key is missing reports
is_available = False and get_provider() falls back to MockProvider.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..config import Config, LLMConfig

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Response from LLM including token usage."""
    text: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class LLMProvider(ABC):
    """Abstract base for LLM providers."""

    name = "abstract"

    @abstractmethod
    def complete(self, system: str, user: str, max_tokens: int = 4096) -> LLMResponse:
        """
        Get completion from LLM.

        Args:
            system: System prompt
            user: User message
            max_tokens: Maximum tokens in response

        Returns:
            LLMResponse with text and token usage
        """

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Check if provider is configured and ready."""


class ClaudeProvider(LLMProvider):
    """Anthropic Claude provider."""

    name = "claude"

    def __init__(self, config: LLMConfig):
        self.config = config
        self._client = None
        self._init_client()

    def _init_client(self):
        if not self.config.api_key:
            return
        try:
            import anthropic
            self._client = anthropic.Anthropic(api_key=self.config.api_key)
        except ImportError:
            logger.warning("anthropic package not installed; Claude provider unavailable")

    @property
    def is_available(self) -> bool:
        return self._client is not None

    def complete(self, system: str, user: str, max_tokens: int = 4096) -> LLMResponse:
        if not self._client:
            raise RuntimeError("Claude client not initialized")

        message = self._client.messages.create(
            model=self.config.effective_model,
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": user}]
        )

        return LLMResponse(
            text=message.content[0].text,
            input_tokens=getattr(message.usage, 'input_tokens', 0),
            output_tokens=getattr(message.usage, 'output_tokens', 0)
        )


class OpenAIProvider(LLMProvider):
    """OpenAI GPT provider."""

    name = "openai"

    def __init__(self, config: LLMConfig):
        self.config = config
        self._client = None
        self._init_client()

    def _init_client(self):
        if not self.config.api_key:
            return
        try:
            import openai
            self._client = openai.OpenAI(api_key=self.config.api_key)
        except ImportError:
            logger.warning("openai package not installed; OpenAI provider unavailable")

    @property
    def is_available(self) -> bool:
        return self._client is not None

    def complete(self, system: str, user: str, max_tokens: int = 4096) -> LLMResponse:
        if not self._client:
            raise RuntimeError("OpenAI client not initialized")

        response = self._client.chat.completions.create(
            model=self.config.effective_model,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user}
            ]
        )

        usage = getattr(response, 'usage', None)
        return LLMResponse(
            text=response.choices[0].message.content or "",
            input_tokens=getattr(usage, 'prompt_tokens', 0) if usage else 0,
            output_tokens=getattr(usage, 'completion_tokens', 0) if usage else 0
        )


class OllamaProvider(LLMProvider):
    """
    Ollama local LLM provider.

    Uses the OpenAI-compatible API at <base_url>/v1/chat/completions.
    No external package required - uses stdlib urllib.
    """

    name = "ollama"

    def __init__(self, config: LLMConfig):
        self.config = config
        self._available: Optional[bool] = None  # Cached availability

    @property
    def base_url(self) -> str:
        return (self.config.effective_base_url or "http://localhost:11434").rstrip("/")

    def _check_ollama_running(self) -> bool:
        import urllib.request
        import urllib.error

        try:
            req = urllib.request.Request(f"{self.base_url}/api/tags", method='GET')
            with urllib.request.urlopen(req, timeout=5) as response:
                return response.status == 200
        except (urllib.error.URLError, urllib.error.HTTPError, OSError):
            return False

    @property
    def is_available(self) -> bool:
        if self._available is None:
            self._available = self._check_ollama_running()
        return self._available

    def complete(self, system: str, user: str, max_tokens: int = 4096) -> LLMResponse:
        import urllib.request
        import urllib.error

        if not self.is_available:
            raise RuntimeError(f"Ollama not running at {self.base_url}. Start with: ollama serve")

        payload = {
            "model": self.config.effective_model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user}
            ],
            "max_tokens": max_tokens,
            "stream": False
        }
        req = urllib.request.Request(
            f"{self.base_url}/v1/chat/completions",
            data=json.dumps(payload).encode('utf-8'),
            headers={'Content-Type': 'application/json'},
            method='POST'
        )

        try:
            with urllib.request.urlopen(req, timeout=120) as response:
                result = json.loads(response.read().decode('utf-8'))
        except urllib.error.HTTPError as e:
            if e.code == 404:
                raise RuntimeError(
                    f"Model '{self.config.effective_model}' not found. "
                    f"Pull with: ollama pull {self.config.effective_model}"
                )
            raise RuntimeError(f"Ollama API error: {e.code} {e.reason}")
        except urllib.error.URLError:
            raise RuntimeError(f"Cannot connect to Ollama at {self.base_url}. Ensure Ollama is running: ollama serve")
        except json.JSONDecodeError as e:
            raise RuntimeError(f"Invalid response from Ollama: {e}")

        usage = result.get('usage', {})
        return LLMResponse(
            text=result.get('choices', [{}])[0].get('message', {}).get('content', ''),
            input_tokens=usage.get('prompt_tokens', 0),
            output_tokens=usage.get('completion_tokens', 0)
        )


class MockProvider(LLMProvider):
    """Offline provider: reports nothing for every request."""

    name = "mock"

    def __init__(self, text: str = '{"violations": [], "intents": []}'):
        self.text = text
        self.calls = []

    @property
    def is_available(self) -> bool:
        return True

    def complete(self, system: str, user: str, max_tokens: int = 4096) -> LLMResponse:
        self.calls.append((system, user))
        return LLMResponse(text=self.text)


PROVIDER_CLASSES = {
    "claude": ClaudeProvider,
    "openai": OpenAIProvider,
    "ollama": OllamaProvider,
}


def get_provider(config: Config) -> LLMProvider:
    """
    Get LLM provider based on configuration.

    Returns:
        Configured provider, or MockProvider if it is not available
    """
    provider_class = PROVIDER_CLASSES.get(config.llm.provider)
    if provider_class is not None:
        provider = provider_class(config.llm)
        if provider.is_available:
            return provider
        logger.info("LLM provider %s not available, using mock provider", config.llm.provider)
    return MockProvider()
