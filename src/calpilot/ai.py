"""Summary: LLM provider abstraction and vendor implementations.

Importance: One capability interface per backend keeps vendor details out of the router.
Alternatives: Call provider SDKs directly in each service.
"""

from __future__ import annotations

import http.client
import json
import os
import time
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from calpilot.config import AIConfig, ProviderConfig
from calpilot.errors import ProviderError, ProviderTimeout
from calpilot.models import Usage


@dataclass(frozen=True)
class AiResult:
    """Summary: Captures AI output and metadata.

    Importance: Normalizes downstream handling of AI responses and usage.
    Alternatives: Use dicts or provider response objects.
    """

    text: str
    latency_ms: int
    usage: Usage = Usage()


class AiProvider(ABC):
    """Summary: Abstract interface for AI text generation.

    Importance: Allows switching between local and cloud LLMs without refactors.
    Alternatives: Use a single vendor SDK and accept lock-in risk.
    """

    name: str = "provider"
    model: str = ""
    local: bool = False

    @abstractmethod
    def complete(self, prompt: str, capability: str) -> AiResult:
        """Summary: Generate a response for a prompt.

        Importance: Standardizes AI outputs and usage reports for the router.
        Alternatives: Return provider-specific response objects directly.
        """


class MockAiProvider(AiProvider):
    """Summary: Deterministic AI provider for local testing.

    Importance: Enables offline workflows and repeatable tests.
    Alternatives: Use a small local LLM for all development tasks.
    """

    name = "mock"
    model = "mock"
    local = True

    def __init__(self, responses: dict[str, str] | None = None) -> None:
        """Summary: Initialize with optional canned responses per capability.

        Importance: Lets tests script structured replies such as intent JSON.
        Alternatives: Subclass the provider for every scenario.
        """

        self._responses = dict(responses or {})

    def complete(self, prompt: str, capability: str) -> AiResult:
        """Summary: Return a canned response or echo the prompt.

        Importance: Allows core flows without external dependencies.
        Alternatives: Use fixture-based responses loaded from files.
        """

        started = time.time()
        text = self._responses.get(capability, f"[mock:{capability}] {prompt[:240]}")
        latency_ms = int((time.time() - started) * 1000)
        usage = Usage(prompt_tokens=estimate_tokens(prompt), completion_tokens=estimate_tokens(text))
        return AiResult(text=text, latency_ms=latency_ms, usage=usage)


class _HttpProvider(AiProvider):
    """Summary: Shared HTTP plumbing for vendor adapters."""

    def __init__(self, config: ProviderConfig, api_key: str | None = None) -> None:
        self.name = config.name
        self.model = config.model
        self.local = config.local
        self._config = config
        self._base_url = config.host.rstrip("/")
        self._api_key = api_key

    def _require_key(self) -> str:
        if not self._api_key:
            env_name = self._config.api_key_env or "API key"
            raise ProviderError(self.name, f"{env_name} is not configured")
        return self._api_key

    def _post_json(self, url: str, payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        """Summary: POST a JSON payload and decode the JSON response.

        Importance: Converts every transport and decoding failure into ProviderError.
        Alternatives: Let urllib exceptions propagate to the router.
        """

        request = urllib.request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json", **headers},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._config.timeout_seconds) as response:
                body = response.read().decode("utf-8")
        except urllib.error.HTTPError as exc:
            raise ProviderError(self.name, f"HTTP {exc.code} from {url}") from exc
        except urllib.error.URLError as exc:
            if isinstance(exc.reason, TimeoutError):
                raise ProviderTimeout(self.name, f"timed out after {self._config.timeout_seconds}s") from exc
            raise ProviderError(self.name, f"request failed: {exc.reason}") from exc
        except TimeoutError as exc:
            raise ProviderTimeout(self.name, f"timed out after {self._config.timeout_seconds}s") from exc
        except (http.client.HTTPException, OSError) as exc:
            raise ProviderError(self.name, f"connection failed: {exc!r}") from exc
        try:
            raw = json.loads(body)
        except json.JSONDecodeError as exc:
            raise ProviderError(self.name, "malformed response body") from exc
        if not isinstance(raw, dict):
            raise ProviderError(self.name, "malformed response body")
        return raw

    def _usage(self, prompt_tokens: int, completion_tokens: int) -> Usage:
        return Usage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            cost=estimate_cost(self._config, prompt_tokens, completion_tokens),
        )


class OllamaProvider(_HttpProvider):
    """Summary: AI provider that targets a local Ollama server.

    Importance: Supports privacy-sensitive workflows on local hardware.
    Alternatives: Use llama.cpp directly with a Python binding.
    """

    def complete(self, prompt: str, capability: str) -> AiResult:
        """Summary: Generate text using the Ollama HTTP API.

        Importance: Enables local inference for intent extraction and suggestions.
        Alternatives: Use Ollama's CLI and parse its output.
        """

        started = time.time()
        raw = self._post_json(
            f"{self._base_url}/api/generate",
            {
                "model": self.model,
                "system": f"You are CalPilot. Task: {capability}.",
                "prompt": prompt,
                "stream": False,
            },
            {},
        )
        text = raw.get("response")
        if not isinstance(text, str):
            raise ProviderError(self.name, "response field missing")
        latency_ms = int((time.time() - started) * 1000)
        usage = self._usage(
            int(raw.get("prompt_eval_count") or estimate_tokens(prompt)),
            int(raw.get("eval_count") or estimate_tokens(text)),
        )
        return AiResult(text=text, latency_ms=latency_ms, usage=usage)


class OpenAiCompatibleProvider(_HttpProvider):
    """Summary: AI provider for OpenAI-style chat completion APIs.

    Importance: Covers OpenAI, Groq, and OpenRouter with one wire format.
    Alternatives: Write a separate adapter per vendor.
    """

    def complete(self, prompt: str, capability: str) -> AiResult:
        """Summary: Generate text using chat completions.

        Importance: Enables cloud-grade reasoning for scheduling workflows.
        Alternatives: Use the responses API or a different provider.
        """

        api_key = self._require_key()
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": f"You are CalPilot. Task: {capability}."},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.2,
        }
        started = time.time()
        raw = self._post_json(
            f"{self._base_url}/v1/chat/completions",
            payload,
            {"Authorization": f"Bearer {api_key}"},
        )
        try:
            text = raw["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderError(self.name, "choices missing from response") from exc
        latency_ms = int((time.time() - started) * 1000)
        usage_raw = raw.get("usage") or {}
        usage = self._usage(
            int(usage_raw.get("prompt_tokens") or estimate_tokens(prompt)),
            int(usage_raw.get("completion_tokens") or estimate_tokens(text or "")),
        )
        return AiResult(text=text or "", latency_ms=latency_ms, usage=usage)


class ClaudeProvider(_HttpProvider):
    """Summary: AI provider using Anthropic's messages API.

    Importance: Common fallback target for higher-quality suggestions.
    Alternatives: Reach Claude through an OpenAI-compatible gateway.
    """

    def complete(self, prompt: str, capability: str) -> AiResult:
        api_key = self._require_key()
        payload = {
            "model": self.model,
            "system": f"You are CalPilot. Task: {capability}.",
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": 1024,
        }
        started = time.time()
        raw = self._post_json(
            f"{self._base_url}/v1/messages",
            payload,
            {"x-api-key": api_key, "anthropic-version": "2023-06-01"},
        )
        blocks = raw.get("content")
        if not isinstance(blocks, list):
            raise ProviderError(self.name, "content missing from response")
        text = "".join(
            block.get("text", "")
            for block in blocks
            if isinstance(block, dict) and block.get("type") == "text"
        )
        latency_ms = int((time.time() - started) * 1000)
        usage_raw = raw.get("usage") or {}
        usage = self._usage(
            int(usage_raw.get("input_tokens") or estimate_tokens(prompt)),
            int(usage_raw.get("output_tokens") or estimate_tokens(text)),
        )
        return AiResult(text=text, latency_ms=latency_ms, usage=usage)


@dataclass(frozen=True)
class AiProviderFactory:
    """Summary: Factory for building provider adapters from configuration.

    Importance: Keeps vendor selection and credential resolution centralized.
    Alternatives: Wire providers manually at the application entrypoint.
    """

    config: AIConfig
    environ: dict[str, str] = field(default_factory=lambda: dict(os.environ))

    def build(self, name: str) -> AiProvider:
        """Summary: Construct one configured provider adapter.

        Importance: Resolves the credential reference only at construction time.
        Alternatives: Use dependency injection frameworks.
        """

        provider_config = self.config.providers.get(name) or ProviderConfig.from_dict(name, {})
        api_key = self.environ.get(provider_config.api_key_env) if provider_config.api_key_env else None
        if name == "mock":
            return MockAiProvider()
        if name == "ollama":
            return OllamaProvider(provider_config)
        if name == "claude":
            return ClaudeProvider(provider_config, api_key)
        if name in ("openai", "groq", "openrouter"):
            return OpenAiCompatibleProvider(provider_config, api_key)
        raise ValueError(f"Unknown AI provider: {name}")

    def build_all(self) -> dict[str, AiProvider]:
        return {name: self.build(name) for name in self.config.providers}


def estimate_tokens(text: str) -> int:
    """Summary: Estimate tokens from text length.

    Importance: Provides a rough metric when a vendor omits usage counts.
    Alternatives: Use provider token counters or tiktoken.
    """

    return max(1, len(text) // 4)


def estimate_cost(config: ProviderConfig, prompt_tokens: int, completion_tokens: int) -> float:
    """Summary: Price a call from the provider's per-1K token rates.

    Importance: Feeds the monthly budget ledger; local providers are always free.
    Alternatives: Pull billing data from each vendor's usage API.
    """

    if config.local:
        return 0.0
    return (
        prompt_tokens / 1000 * config.cost_per_1k_input
        + completion_tokens / 1000 * config.cost_per_1k_output
    )
