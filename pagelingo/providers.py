"""Translation backend abstractions."""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional, Sequence

import openai
from openai import AsyncAzureOpenAI, AsyncOpenAI

from .errors import (
    BackendError,
    ParseError,
    TranslationProviderConfigurationError,
    TransportError,
)

logger = logging.getLogger(__name__)

Message = Dict[str, str]


def extract_content(response: Mapping[str, Any]) -> str:
    """Pull the first choice's message content out of a chat response."""

    if not isinstance(response, Mapping):
        raise ParseError("Invalid API response format: expected an object.")
    choices = response.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ParseError("Invalid API response format: no choices returned.")
    first = choices[0]
    message = first.get("message") if isinstance(first, Mapping) else None
    content = message.get("content") if isinstance(message, Mapping) else None
    if isinstance(content, list):
        parts = [
            str(part.get("text"))
            for part in content
            if isinstance(part, Mapping) and part.get("text")
        ]
        content = "\n".join(parts) if parts else None
    if not isinstance(content, str):
        raise ParseError("Invalid API response format: message content missing.")
    return content.strip()


class TranslationBackend(ABC):
    """Abstract adapter for chat-style translation backends."""

    name = "backend"
    supports_system_role = True

    @abstractmethod
    async def call(
        self,
        messages: Sequence[Message],
        *,
        model: Optional[str],
        temperature: float,
        max_tokens: int,
    ) -> Dict[str, Any]:
        """Send ``messages`` and return ``{"choices": [{"message": {"content": ...}}]}``."""


class EchoBackend(TranslationBackend):
    """A backend that returns the user text unchanged (useful for testing)."""

    name = "echo"

    def __init__(self) -> None:
        self.calls: List[List[Message]] = []

    async def call(
        self,
        messages: Sequence[Message],
        *,
        model: Optional[str],
        temperature: float,
        max_tokens: int,
    ) -> Dict[str, Any]:
        self.calls.append(list(messages))
        user_messages = [message for message in messages if message.get("role") == "user"]
        content = user_messages[-1]["content"] if user_messages else ""
        return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class OpenAIChatBackend(TranslationBackend):
    """Backend that uses the OpenAI (or Azure OpenAI) Chat Completions API."""

    name = "openai"
    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        *,
        provider_kind: str = "openai",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        azure_endpoint: Optional[str] = None,
        azure_api_version: Optional[str] = None,
        azure_deployment: Optional[str] = None,
        debug: bool = False,
    ) -> None:
        self.debug = debug
        self.provider_kind = provider_kind
        if provider_kind == "azure_openai":
            self._client, self.default_model = self._build_azure_client(
                api_key or os.getenv("AZURE_OPENAI_API_KEY"),
                azure_endpoint or os.getenv("AZURE_OPENAI_ENDPOINT"),
                azure_api_version or os.getenv("AZURE_OPENAI_API_VERSION"),
                azure_deployment or os.getenv("AZURE_OPENAI_DEPLOYMENT_NAME"),
            )
        else:
            self._client, self.default_model = self._build_openai_client(
                api_key or os.getenv("OPENAI_API_KEY"),
                base_url or os.getenv("OPENAI_BASE_URL"),
            )

    def _build_openai_client(
        self, api_key: Optional[str], base_url: Optional[str]
    ) -> tuple[Any, str]:
        if not api_key:
            raise TranslationProviderConfigurationError(
                "OpenAI configuration missing. Set OPENAI_API_KEY or choose a "
                "different provider."
            )
        return AsyncOpenAI(api_key=api_key, base_url=base_url or None), self.DEFAULT_MODEL

    def _build_azure_client(
        self,
        api_key: Optional[str],
        endpoint: Optional[str],
        api_version: Optional[str],
        deployment_name: Optional[str],
    ) -> tuple[Any, str]:
        missing = [
            name
            for name, value in {
                "AZURE_OPENAI_API_KEY": api_key,
                "AZURE_OPENAI_ENDPOINT": endpoint,
                "AZURE_OPENAI_API_VERSION": api_version,
                "AZURE_OPENAI_DEPLOYMENT_NAME": deployment_name,
            }.items()
            if not value
        ]
        if missing:
            raise TranslationProviderConfigurationError(
                "Azure OpenAI configuration incomplete. Please set: "
                + ", ".join(missing)
                + "."
            )

        client = AsyncAzureOpenAI(
            api_key=api_key,
            api_version=api_version,
            azure_endpoint=endpoint,
        )
        return client, deployment_name  # type: ignore[return-value]

    async def call(
        self,
        messages: Sequence[Message],
        *,
        model: Optional[str],
        temperature: float,
        max_tokens: int,
    ) -> Dict[str, Any]:
        self._log_debug("provider.request.messages", list(messages))
        try:
            response = await self._client.chat.completions.create(
                model=model or self.default_model,
                temperature=temperature,
                max_tokens=max_tokens,
                messages=list(messages),
            )
        except openai.APITimeoutError as exc:
            raise TransportError(f"Request timeout: {exc}") from exc
        except openai.APIConnectionError as exc:
            raise TransportError(f"Network error occurred: {exc}") from exc
        except openai.APIStatusError as exc:
            raise BackendError.from_status(exc.status_code, str(exc)) from exc

        payload = self._safe_dump_response(response)
        self._log_debug("provider.response.raw", payload)
        if not isinstance(payload, dict):
            raise ParseError("Translation provider response empty or unrecognised.")
        return payload

    def _log_debug(self, label: str, payload: Any) -> None:
        """Emit structured debug information when enabled."""

        if not self.debug:
            return
        try:
            if isinstance(payload, (dict, list)):
                message = json.dumps(payload, ensure_ascii=False, indent=2)
            else:
                message = str(payload)
        except (TypeError, ValueError):
            message = repr(payload)
        logger.debug("%s:\n%s", label, message)

    def _safe_dump_response(self, response: Any) -> Any:
        """Best-effort conversion of SDK objects into JSON-friendly data."""

        dump = getattr(response, "model_dump", None)
        if callable(dump):
            return dump()
        if isinstance(response, dict):
            return response
        return None


def build_backend(
    name: Optional[str],
    *,
    settings: Any = None,
    debug: bool = False,
) -> TranslationBackend:
    """Factory to create backends by name, reading credentials from settings."""

    normalized = (name or getattr(settings, "LLM_PROVIDER", None) or "openai").strip().lower()
    if normalized in {"echo", "noop", "mock"}:
        return EchoBackend()
    if normalized in {"azure_openai", "azure-openai", "azure"}:
        return OpenAIChatBackend(
            provider_kind="azure_openai",
            api_key=getattr(settings, "AZURE_OPENAI_API_KEY", None),
            azure_endpoint=getattr(settings, "AZURE_OPENAI_ENDPOINT", None),
            azure_api_version=getattr(settings, "AZURE_OPENAI_API_VERSION", None),
            azure_deployment=getattr(settings, "AZURE_OPENAI_DEPLOYMENT_NAME", None),
            debug=debug,
        )
    if normalized in {"openai", "gpt", "default"}:
        return OpenAIChatBackend(
            api_key=getattr(settings, "OPENAI_API_KEY", None),
            base_url=getattr(settings, "OPENAI_BASE_URL", None),
            debug=debug,
        )
    raise TranslationProviderConfigurationError(
        f"Unknown translation provider '{name}'."
    )
