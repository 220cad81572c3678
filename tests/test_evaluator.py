"""Tests for the rubric fallback evaluator."""

import json

import pytest

from jubilee_refine.evaluator import (
    EVALUATOR_SYSTEM_PROMPT,
    FALLBACK_SCORES,
    EvaluationError,
    RubricEvaluator,
    ScoreSource,
    extract_json_object,
)
from jubilee_refine.provider import GenerationClient, StubLLMProvider
from jubilee_refine.rubric import DEFAULT_RUBRIC
from jubilee_refine.scoring import Grade, aggregate
from jubilee_refine.testament import TestamentClassifier

GENESIS = TestamentClassifier().classify("genesis 1:1")
VERSE = "In the beginning, Elohim created the heavens and the earth."


def _evaluator(*responses) -> tuple[RubricEvaluator, StubLLMProvider]:
    provider = StubLLMProvider(list(responses))
    return RubricEvaluator(GenerationClient(provider, "gpt-4o")), provider


def _payload(value: float = 9.2, **overrides) -> str:
    data = {k: value for k in DEFAULT_RUBRIC.keys}
    data.update(overrides)
    return json.dumps(data)


def test_fallback_scores_total_820():
    result = aggregate(FALLBACK_SCORES)
    assert result.total == 820
    assert result.grade == Grade.C
    assert set(FALLBACK_SCORES) == set(DEFAULT_RUBRIC.keys)


@pytest.mark.asyncio
async def test_valid_json_scores():
    evaluator, provider = _evaluator(f"Here you go:\n{_payload()}\nThanks")
    result = await evaluator.evaluate_detailed(VERSE, "Genesis 1:1", GENESIS)
    assert result.source == ScoreSource.EVALUATOR
    assert result.scores == {k: 9.2 for k in DEFAULT_RUBRIC.keys}

    request = provider.requests[0]
    assert request.temperature == 0.1
    assert request.max_tokens == 500
    assert request.messages[0].content == EVALUATOR_SYSTEM_PROMPT
    assert '"pastoral_utility_score": <number>' in request.messages[1].content
    assert "SOURCE: Hebrew (Old Testament)" in request.messages[1].content


@pytest.mark.asyncio
async def test_scores_are_clamped_and_defaulted():
    payload = _payload(
        hebraic_worldview_score=12,
        sacred_names_score=0.2,
        modern_clarity_score="high",
        archaic_avoidance_score=True,
    )
    data = json.loads(payload)
    del data["pastoral_utility_score"]
    evaluator, _ = _evaluator(json.dumps(data))
    scores = await evaluator.evaluate(VERSE, "Genesis 1:1", GENESIS)
    assert len(scores) == 20
    assert scores["hebraic_worldview_score"] == 10.0
    assert scores["sacred_names_score"] == 1.0
    assert scores["modern_clarity_score"] == 7.0
    assert scores["archaic_avoidance_score"] == 7.0
    assert scores["pastoral_utility_score"] == 7.0


@pytest.mark.asyncio
async def test_no_json_returns_fallback():
    evaluator, _ = _evaluator("I cannot score this verse.")
    result = await evaluator.evaluate_detailed(VERSE, "Genesis 1:1", GENESIS)
    assert result.source == ScoreSource.FALLBACK
    assert result.scores == dict(FALLBACK_SCORES)


@pytest.mark.asyncio
async def test_invalid_json_returns_fallback():
    evaluator, _ = _evaluator("{'hebraic_worldview_score': 9}")
    result = await evaluator.evaluate_detailed(VERSE, "Genesis 1:1", GENESIS)
    assert result.source == ScoreSource.FALLBACK


@pytest.mark.asyncio
async def test_transport_error_returns_fallback():
    evaluator, _ = _evaluator(RuntimeError("connection reset"))
    scores = await evaluator.evaluate(VERSE, "Genesis 1:1", GENESIS)
    assert aggregate(scores).total == 820


def test_extract_first_balanced_object():
    text = 'noise {"a": {"b": "}"}, "c": 1} trailing {"d": 2}'
    assert extract_json_object(text) == '{"a": {"b": "}"}, "c": 1}'


def test_extract_unbalanced_raises():
    with pytest.raises(EvaluationError, match="Unbalanced"):
        extract_json_object('{"a": 1')
    with pytest.raises(EvaluationError, match="No JSON"):
        extract_json_object("nothing here")
