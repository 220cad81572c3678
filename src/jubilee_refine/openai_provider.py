"""OpenAI provider -- chat completions through the official ``openai`` SDK."""

from __future__ import annotations

import os
from typing import Any

from .provider import (
    ChatRequest,
    ChatResponse,
    GenerationError,
    LLMProvider,
    TokenUsage,
)

_DEFAULT_MODEL = "gpt-4o"
_DEFAULT_TIMEOUT = 120


class OpenAIProvider(LLMProvider):
    """LLM provider backed by ``openai.AsyncOpenAI``.

    Configuration via environment variables:
        - ``OPENAI_API_KEY``: API key (required on first call)
        - ``JUBILEE_OPENAI_MODEL``: model name (default ``gpt-4o``)
        - ``JUBILEE_LLM_TIMEOUT_SEC``: transport timeout in seconds (default 120)
    """

    def __init__(
        self,
        model: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        client: Any | None = None,
    ) -> None:
        self._model = model or os.environ.get("JUBILEE_OPENAI_MODEL", _DEFAULT_MODEL)
        self._api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self._timeout = timeout or float(
            os.environ.get("JUBILEE_LLM_TIMEOUT_SEC", str(_DEFAULT_TIMEOUT))
        )
        self._client = client

    def name(self) -> str:
        return "openai"

    @property
    def model(self) -> str:
        """Return the configured model name."""
        return self._model

    def _get_client(self) -> Any:
        """Lazy initialization of the async OpenAI client."""
        if self._client is None:
            from openai import AsyncOpenAI

            if not self._api_key:
                msg = (
                    "OpenAI API key required. Set OPENAI_API_KEY "
                    "or set JUBILEE_LLM_PROVIDER=stub to use the stub provider."
                )
                raise GenerationError(msg, provider="openai")
            self._client = AsyncOpenAI(api_key=self._api_key, timeout=self._timeout)
        return self._client

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Send the request via ``chat.completions.create``."""
        client = self._get_client()
        kwargs: dict[str, Any] = {
            "model": request.model or self._model,
            "messages": [{"role": m.role.value, "content": m.content} for m in request.messages],
        }
        if request.max_tokens is not None:
            kwargs["max_tokens"] = request.max_tokens
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature

        completion = await client.chat.completions.create(**kwargs)
        if not completion.choices:
            raise GenerationError("OpenAI returned no choices", provider="openai")

        content = completion.choices[0].message.content or ""
        usage = None
        if completion.usage is not None:
            usage = TokenUsage(
                prompt_tokens=completion.usage.prompt_tokens,
                completion_tokens=completion.usage.completion_tokens,
            )
        return ChatResponse(content=content, usage=usage)
