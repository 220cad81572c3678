"""Tests for the refinement loop: convergence, exhaustion and best tracking."""

import asyncio
import json

import pytest

from jubilee_refine.config import RefinementConfig
from jubilee_refine.evaluator import EVALUATOR_SYSTEM_PROMPT, RubricEvaluator, ScoreSource
from jubilee_refine.loop import (
    IterationRecord,
    RefinementLoop,
    RefinementSession,
    SessionState,
    reduce_best,
)
from jubilee_refine.prompting import OutputMode
from jubilee_refine.provider import GenerationClient, StubLLMProvider
from jubilee_refine.rubric import DEFAULT_RUBRIC
from jubilee_refine.scoring import Grade, aggregate_from_total
from jubilee_refine.testament import TestamentClassifier

ORIGINAL = "In the beginning, God created the heavens and the earth."
REFINED = "In the beginning, Elohim created the heavens and the earth."
GENESIS = TestamentClassifier().classify("genesis 1:1")
NOISE = " ".join(f"criterion {i} rating {800 + i} of 1000;" for i in range(1, 41))


def structured(translation: str, value: int, count: int = 20, total: int | None = None) -> str:
    lines = ["### Translated Verse", translation, "", "### Benchmark Scores (0–1000)"]
    lines += [f"{c.id}. {c.name} — {value}" for c in list(DEFAULT_RUBRIC)[:count]]
    if total is not None:
        lines.append(f"**Aggregate Result:** {total} / 1000")
    return "\n".join(lines)


def _loop(responses, **config) -> tuple[RefinementLoop, StubLLMProvider]:
    provider = StubLLMProvider(responses)
    client = GenerationClient(provider, "gpt-4o")
    cfg = RefinementConfig(**config)
    return RefinementLoop(client, RubricEvaluator(client, config=cfg), config=cfg), provider


def _record(iteration: int, total: int, text: str = REFINED) -> IterationRecord:
    return IterationRecord(
        iteration=iteration,
        text=text,
        scores={},
        aggregate=aggregate_from_total(total),
        source=ScoreSource.PARSED,
    )


# ---------------------------------------------------------------------------
# Session state and best tracking
# ---------------------------------------------------------------------------


def test_session_transitions():
    session = RefinementSession(original_text=ORIGINAL, target_score=990, max_iterations=5)
    assert session.state == SessionState.INIT
    session.transition(SessionState.ITERATING)
    session.transition(SessionState.EXHAUSTED)
    with pytest.raises(ValueError, match="Invalid transition"):
        session.transition(SessionState.ITERATING)


def test_init_cannot_skip_to_converged():
    session = RefinementSession(original_text=ORIGINAL, target_score=990, max_iterations=5)
    with pytest.raises(ValueError, match="Invalid transition"):
        session.transition(SessionState.CONVERGED)


def test_reduce_best_is_monotonic():
    first = _record(1, 900)
    assert reduce_best(None, first) is first
    assert reduce_best(first, _record(2, 850)) is first
    assert reduce_best(first, _record(3, 900)) is first
    better = _record(4, 950)
    assert reduce_best(first, better) is better


def test_empty_session_reports_original():
    session = RefinementSession(original_text=ORIGINAL, target_score=990, max_iterations=5)
    assert session.best_text == ORIGINAL
    assert session.best_scores is None
    assert session.best_aggregate.total == 0


# ---------------------------------------------------------------------------
# Loop scenarios
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_converges_on_first_pass():
    loop, provider = _loop([structured(REFINED, 990)])
    outcome = await loop.run(ORIGINAL, "Genesis 1:1", GENESIS)

    assert outcome.state == SessionState.CONVERGED
    assert outcome.iterations == 1
    assert outcome.target_met
    assert outcome.best_text == REFINED
    assert outcome.best_aggregate.total == 990
    assert outcome.best_aggregate.grade == Grade.A_PLUS
    assert outcome.history[0].source == ScoreSource.PARSED
    assert len(provider.requests) == 1


@pytest.mark.asyncio
async def test_noise_exhausts_budget_and_returns_input():
    loop, provider = _loop([NOISE])
    outcome = await loop.run(ORIGINAL, "Genesis 1:1", GENESIS)

    assert outcome.state == SessionState.EXHAUSTED
    assert outcome.iterations == 5
    assert outcome.best_text == ORIGINAL
    assert outcome.best_scores is None
    assert not outcome.target_met
    assert outcome.history == ()
    assert len(provider.requests) == 5
    assert len(outcome.warnings) == 5


@pytest.mark.asyncio
async def test_partial_scores_invoke_evaluator():
    evaluation = json.dumps({k: 9.9 for k in DEFAULT_RUBRIC.keys})
    loop, provider = _loop([structured(REFINED, 990, count=6), evaluation])
    outcome = await loop.run(ORIGINAL, "Genesis 1:1", GENESIS)

    assert len(provider.requests) == 2
    assert provider.requests[1].messages[0].content == EVALUATOR_SYSTEM_PROMPT
    record = outcome.history[0]
    assert record.source == ScoreSource.EVALUATOR
    assert len(record.scores) == 20
    assert outcome.best_aggregate.total == 990
    assert outcome.state == SessionState.CONVERGED


@pytest.mark.asyncio
async def test_best_never_regresses_and_seeds_next_prompt():
    first = "In the beginning Elohim created the heavens and the earth."
    second = "At first Elohim made the sky and the land."
    third = "In the beginning Elohim fashioned the heavens and the earth."
    loop, provider = _loop(
        [structured(first, 900), structured(second, 850), structured(third, 950)],
        max_iterations=3,
    )
    outcome = await loop.run(ORIGINAL, "Genesis 1:1", GENESIS)

    assert [r.aggregate.total for r in outcome.history] == [900, 850, 950]
    assert outcome.best_text == third
    assert outcome.best_aggregate.total == 950
    assert outcome.state == SessionState.EXHAUSTED
    # pass 3 is prompted from pass 1, the best so far
    assert f'Current Text: "{first}"' in provider.requests[2].messages[1].content
    assert f'Current Text: "{ORIGINAL}"' in provider.requests[0].messages[1].content


@pytest.mark.asyncio
async def test_weaknesses_from_best_feed_next_prompt():
    loop, provider = _loop([structured(REFINED, 900), structured(REFINED, 900)], max_iterations=2)
    await loop.run(ORIGINAL, "Genesis 1:1", GENESIS)
    second_prompt = provider.requests[1].messages[1].content
    assert "- Hebraic Worldview & Covenant Fidelity: 9.0/10" in second_prompt
    assert "No specific weaknesses identified" in provider.requests[0].messages[1].content


@pytest.mark.asyncio
async def test_generation_failure_wastes_a_slot():
    loop, provider = _loop([RuntimeError("upstream 503"), structured(REFINED, 995)])
    outcome = await loop.run(ORIGINAL, "Genesis 1:1", GENESIS)

    assert outcome.iterations == 2
    assert len(outcome.history) == 1
    assert outcome.history[0].iteration == 2
    assert outcome.state == SessionState.CONVERGED
    assert "pass 1: generation failed" in outcome.warnings


@pytest.mark.asyncio
async def test_temperature_schedule():
    loop, provider = _loop([structured(REFINED, 900)], max_iterations=3)
    await loop.run(ORIGINAL, "Genesis 1:1", GENESIS)
    assert [r.temperature for r in provider.requests] == [0.3, 0.2, 0.2]
    assert all(r.max_tokens == 4000 for r in provider.requests)


@pytest.mark.asyncio
async def test_provider_aggregate_used_with_enough_scores():
    loop, _ = _loop([structured(REFINED, 900, count=12, total=995)])
    outcome = await loop.run(ORIGINAL, "Genesis 1:1", GENESIS)
    assert outcome.best_aggregate.total == 995
    assert outcome.target_met


@pytest.mark.asyncio
async def test_raw_mode_always_uses_evaluator():
    evaluation = json.dumps({k: 9.0 for k in DEFAULT_RUBRIC.keys})
    loop, provider = _loop([REFINED, evaluation], max_iterations=1, output_mode=OutputMode.RAW)
    outcome = await loop.run(ORIGINAL, "Genesis 1:1", GENESIS)

    assert provider.requests[0].messages[1].content.endswith("TRANSLATED VERSE:")
    assert outcome.history[0].source == ScoreSource.EVALUATOR
    assert outcome.best_text == REFINED
    assert outcome.best_aggregate.total == 900


@pytest.mark.asyncio
async def test_independent_sessions_run_concurrently():
    loop_a, _ = _loop([structured(REFINED, 990)])
    loop_b, _ = _loop([NOISE], max_iterations=2)
    a, b = await asyncio.gather(
        loop_a.run(ORIGINAL, "Genesis 1:1", GENESIS),
        loop_b.run(ORIGINAL, "Genesis 1:1", GENESIS),
    )
    assert a.target_met
    assert not b.target_met
    assert b.best_text == ORIGINAL


@pytest.mark.asyncio
async def test_parsed_scores_completed_before_grading():
    loop, provider = _loop([structured(REFINED, 995, count=19)])
    outcome = await loop.run(ORIGINAL, "Genesis 1:1", GENESIS)

    record = outcome.history[0]
    assert record.source == ScoreSource.PARSED
    assert len(record.scores) == 20
    assert record.scores[list(DEFAULT_RUBRIC)[-1].key] == 10.0
    assert outcome.best_aggregate.total == 995
    assert outcome.state == SessionState.CONVERGED
    assert len(provider.requests) == 1
