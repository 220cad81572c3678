"""Generation providers -- pluggable backend for real and stub LLMs."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from enum import StrEnum

from pydantic import BaseModel

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


class ChatRole(StrEnum):
    """Role of a message participant."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """Single message in a conversation."""

    role: ChatRole
    content: str


class ChatRequest(BaseModel):
    """Request payload sent to an LLM provider."""

    model: str
    messages: list[ChatMessage]
    max_tokens: int | None = None
    temperature: float | None = None


class TokenUsage(BaseModel):
    """Token consumption metrics for a single request."""

    prompt_tokens: int
    completion_tokens: int


class ChatResponse(BaseModel):
    """Response returned from an LLM provider."""

    content: str
    usage: TokenUsage | None = None


class GenerationRequest(BaseModel):
    """One stateless text-generation call, as the refinement core sees it."""

    system_prompt: str
    user_prompt: str
    max_output_tokens: int
    temperature: float


class GenerationError(Exception):
    """Raised when the generation backend fails to return text."""

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)


# ---------------------------------------------------------------------------
# LLMProvider ABC
# ---------------------------------------------------------------------------


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the canonical provider name (e.g. 'openai', 'stub')."""

    @abstractmethod
    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Send a chat completion request."""


# ---------------------------------------------------------------------------
# Stub implementation (for testing / offline development)
# ---------------------------------------------------------------------------


class StubLLMProvider(LLMProvider):
    """Returns scripted responses without making real HTTP calls.

    Each call pops the next item from *responses*; an ``Exception`` item is
    raised instead of returned. Once the script runs out the last item is
    repeated, and with no script a canned sentence is returned. Every request
    is kept in :attr:`requests` for assertions.
    """

    _CANNED = "This is a stub response for testing purposes."

    def __init__(self, responses: Iterable[str | Exception] | None = None) -> None:
        self._script: list[str | Exception] = list(responses or [])
        self._last: str | Exception | None = None
        self.requests: list[ChatRequest] = []

    def name(self) -> str:
        return "stub"

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Return the next scripted (or canned) response."""
        self.requests.append(request)
        if self._script:
            self._last = self._script.pop(0)
        item = self._last if self._last is not None else self._CANNED
        if isinstance(item, Exception):
            raise item

        prompt_tokens = sum(len(m.content.split()) for m in request.messages)
        return ChatResponse(
            content=item,
            usage=TokenUsage(
                prompt_tokens=prompt_tokens,
                completion_tokens=len(item.split()),
            ),
        )


# ---------------------------------------------------------------------------
# GenerationClient
# ---------------------------------------------------------------------------


class GenerationClient:
    """Adapts an :class:`LLMProvider` to the single-call generation contract.

    Any provider failure surfaces as :class:`GenerationError`; callers decide
    whether that costs an iteration or triggers a fallback.
    """

    def __init__(self, provider: LLMProvider, model: str) -> None:
        self._provider = provider
        self._model = model

    @property
    def provider_name(self) -> str:
        return self._provider.name()

    async def generate(self, request: GenerationRequest) -> str:
        chat_request = ChatRequest(
            model=self._model,
            messages=[
                ChatMessage(role=ChatRole.SYSTEM, content=request.system_prompt),
                ChatMessage(role=ChatRole.USER, content=request.user_prompt),
            ],
            max_tokens=request.max_output_tokens,
            temperature=request.temperature,
        )
        try:
            response = await self._provider.chat(chat_request)
        except GenerationError:
            raise
        except Exception as exc:
            raise GenerationError(
                f"{self.provider_name} generation failed: {exc}", provider=self.provider_name
            ) from exc

        if response.usage is not None:
            _log.debug(
                "Generation usage: prompt=%d completion=%d",
                response.usage.prompt_tokens,
                response.usage.completion_tokens,
            )
        return response.content
