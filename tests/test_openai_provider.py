"""Tests for the OpenAI provider (client is faked; e2e test needs a real key)."""

import os
from types import SimpleNamespace

import pytest

from jubilee_refine.openai_provider import OpenAIProvider
from jubilee_refine.provider import ChatMessage, ChatRequest, ChatRole, GenerationError


class _FakeCompletions:
    def __init__(self, content: str | None = "Bereshit bara Elohim", choices: bool = True):
        self.calls: list[dict] = []
        self._content = content
        self._choices = choices

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        choices = [SimpleNamespace(message=SimpleNamespace(content=self._content))]
        return SimpleNamespace(
            choices=choices if self._choices else [],
            usage=SimpleNamespace(prompt_tokens=12, completion_tokens=4),
        )


def _fake_client(completions: _FakeCompletions) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def _request(**kwargs) -> ChatRequest:
    return ChatRequest(
        model="",
        messages=[
            ChatMessage(role=ChatRole.SYSTEM, content="sys"),
            ChatMessage(role=ChatRole.USER, content="hi"),
        ],
        **kwargs,
    )


def test_defaults_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("JUBILEE_OPENAI_MODEL", "gpt-4o-mini")
    monkeypatch.setenv("JUBILEE_LLM_TIMEOUT_SEC", "30")
    provider = OpenAIProvider()
    assert provider.model == "gpt-4o-mini"
    assert provider.name() == "openai"


@pytest.mark.asyncio
async def test_chat_maps_request_and_usage() -> None:
    completions = _FakeCompletions()
    provider = OpenAIProvider(model="gpt-4o", client=_fake_client(completions))
    response = await provider.chat(_request(max_tokens=500, temperature=0.1))

    assert response.content == "Bereshit bara Elohim"
    assert response.usage is not None
    assert response.usage.prompt_tokens == 12
    call = completions.calls[0]
    assert call["model"] == "gpt-4o"
    assert call["messages"][0] == {"role": "system", "content": "sys"}
    assert call["max_tokens"] == 500
    assert call["temperature"] == 0.1


@pytest.mark.asyncio
async def test_chat_omits_unset_sampling_params() -> None:
    completions = _FakeCompletions(content=None)
    provider = OpenAIProvider(client=_fake_client(completions))
    response = await provider.chat(_request())
    assert response.content == ""
    assert "max_tokens" not in completions.calls[0]
    assert "temperature" not in completions.calls[0]


@pytest.mark.asyncio
async def test_no_choices_raises() -> None:
    provider = OpenAIProvider(client=_fake_client(_FakeCompletions(choices=False)))
    with pytest.raises(GenerationError, match="no choices"):
        await provider.chat(_request())


@pytest.mark.asyncio
async def test_missing_api_key_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    provider = OpenAIProvider()
    with pytest.raises(GenerationError, match="OPENAI_API_KEY") as info:
        await provider.chat(_request())
    assert info.value.provider == "openai"


@pytest.mark.e2e
@pytest.mark.skipif(not os.environ.get("OPENAI_API_KEY"), reason="OPENAI_API_KEY not set")
@pytest.mark.asyncio
async def test_real_completion() -> None:
    provider = OpenAIProvider()
    response = await provider.chat(
        ChatRequest(
            model=provider.model,
            messages=[ChatMessage(role=ChatRole.USER, content="Reply with the word: shalom")],
            max_tokens=10,
            temperature=0.0,
        )
    )
    assert response.content
