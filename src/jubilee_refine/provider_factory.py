"""Provider factory -- deterministic provider selection from environment."""

from __future__ import annotations

import logging
import os

from .openai_provider import OpenAIProvider
from .provider import LLMProvider, StubLLMProvider

_log = logging.getLogger(__name__)

# Valid provider names for JUBILEE_LLM_PROVIDER
_VALID_PROVIDERS = frozenset({"openai", "stub"})


class ProviderFactory:
    """Creates the generation provider based on configuration.

    Resolution logic:
        1. Read ``JUBILEE_LLM_PROVIDER`` env var (openai | stub).
        2. If set: return that exact provider.
        3. If unset and ``fallback=True``: openai when ``OPENAI_API_KEY`` is
           present, else stub.
        4. If unset and ``fallback=False`` (default): return stub.
    """

    @staticmethod
    def create(fallback: bool = False) -> LLMProvider:
        """Create a provider based on ``JUBILEE_LLM_PROVIDER``.

        Raises:
            ValueError: If ``JUBILEE_LLM_PROVIDER`` is set to an unknown value.
        """
        env_provider = os.environ.get("JUBILEE_LLM_PROVIDER", "").strip().lower()

        if env_provider:
            return ProviderFactory._create_explicit(env_provider)

        if fallback and os.environ.get("OPENAI_API_KEY"):
            return OpenAIProvider()

        if fallback:
            _log.warning(
                "JUBILEE_LLM_PROVIDER unset and no OPENAI_API_KEY, falling back to StubLLMProvider"
            )
        else:
            _log.warning("JUBILEE_LLM_PROVIDER unset, using StubLLMProvider")
        return StubLLMProvider()

    @staticmethod
    def _create_explicit(provider_name: str) -> LLMProvider:
        if provider_name not in _VALID_PROVIDERS:
            msg = (
                f"Unknown provider '{provider_name}'. "
                f"Valid values for JUBILEE_LLM_PROVIDER: {', '.join(sorted(_VALID_PROVIDERS))}"
            )
            raise ValueError(msg)

        if provider_name == "openai":
            return OpenAIProvider()
        return StubLLMProvider()

    @staticmethod
    def describe(provider: LLMProvider) -> str:
        """Return a human-readable description of a provider for CLI output."""
        if isinstance(provider, OpenAIProvider):
            return f"OpenAIProvider (model={provider.model})"
        if isinstance(provider, StubLLMProvider):
            return "StubLLMProvider (scripted responses)"
        return f"{type(provider).__name__}"
