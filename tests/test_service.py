"""Tests for the verse optimization service."""

import json
from collections.abc import Mapping
from typing import Any

import pytest

from jubilee_refine.config import RefinementConfig
from jubilee_refine.persistence import InMemoryResultStore, PersistenceError, StoredResult
from jubilee_refine.provider import GenerationClient, StubLLMProvider
from jubilee_refine.rubric import DEFAULT_RUBRIC
from jubilee_refine.scoring import aggregate
from jubilee_refine.service import (
    APPROVED,
    NEEDS_REVIEW,
    OptimizationRequest,
    VerseOptimizer,
    display_reference,
)
from jubilee_refine.testament import TestamentClassifier

ORIGINAL = "In the beginning, God created the heavens and the earth."
REFINED = "In the beginning, Elohim created the heavens and the earth."
NOISE = " ".join(f"criterion {i} rating {800 + i} of 1000;" for i in range(1, 41))


def structured(translation: str, value: int, count: int = 20, recommendations=()) -> str:
    lines = ["### Translated Verse", translation, "", "### Benchmark Scores (0–1000)"]
    lines += [f"{c.id}. {c.name} — {value}" for c in list(DEFAULT_RUBRIC)[:count]]
    if recommendations:
        lines += ["", "### Recommendations", *(f"- {r}" for r in recommendations)]
    return "\n".join(lines)


class _FailingStore(InMemoryResultStore):
    def store(
        self,
        document_id: str,
        final_text: str,
        scores: Mapping[str, float],
        metadata: Mapping[str, Any] | None = None,
    ) -> StoredResult:
        raise PersistenceError("disk full", document_id=document_id)


def _optimizer(responses, store=None, **config) -> tuple[VerseOptimizer, StubLLMProvider]:
    provider = StubLLMProvider(responses)
    optimizer = VerseOptimizer(
        GenerationClient(provider, "gpt-4o"),
        persister=store,
        config=RefinementConfig(**config),
    )
    return optimizer, provider


def _request(document_id: str = "genesis 1:1", text: str = ORIGINAL, **kwargs):
    return OptimizationRequest(document_id=document_id, current_text=text, **kwargs)


@pytest.mark.asyncio
async def test_optimize_converges_and_persists():
    store = InMemoryResultStore()
    optimizer, _ = _optimizer([structured(REFINED, 990)], store)
    response = await optimizer.optimize(_request())

    assert response.final_text == REFINED
    assert response.final_aggregate.total == 990
    assert response.final_aggregate.grade == "A+"
    assert response.target_met
    assert response.iterations == 1
    assert response.state == "converged"
    assert response.corpus == "old"
    assert response.source_language == "Hebrew"
    assert response.author_perspective == "Moses and the Exodus generation"
    assert len(response.final_scores) == 20
    assert [(h.iteration, h.aggregate_total, h.grade) for h in response.iteration_history] == [
        (1, 990, "A+")
    ]

    stored = store.get("genesis 1:1")
    assert stored is not None
    assert stored.final_text == REFINED
    assert stored.metadata["recommendation"] == APPROVED
    assert stored.metadata["total"] == 990
    assert len(stored.metadata["breakdown"]) == 20
    assert stored.metadata["improvements"] == []


@pytest.mark.asyncio
async def test_optimize_unusable_output_returns_input():
    store = InMemoryResultStore()
    optimizer, provider = _optimizer([NOISE], store)
    response = await optimizer.optimize(_request())

    assert response.final_text == ORIGINAL
    assert not response.target_met
    assert response.iterations == 5
    assert response.state == "exhausted"
    assert response.final_aggregate.total == 0
    assert response.final_scores == {}
    assert response.iteration_history == []
    assert store.list_results() == []
    assert len(provider.requests) == 5


@pytest.mark.asyncio
async def test_missing_criteria_filled_before_storage():
    store = InMemoryResultStore()
    optimizer, _ = _optimizer([structured(REFINED, 900, count=12)], store, max_iterations=1)
    response = await optimizer.optimize(_request())

    # 12 parsed at 9.0, the other 8 completed at 10.0
    assert response.final_aggregate.total == 940
    assert response.final_aggregate == aggregate(response.final_scores)
    assert response.final_scores["hebraic_worldview_score"] == 9.0
    assert response.final_scores["doctrinal_drift_risk_score"] == 10.0
    stored = store.get("genesis 1:1")
    assert stored.scores == response.final_scores
    assert stored.metadata["total"] == 940
    assert stored.metadata["recommendation"] == NEEDS_REVIEW
    assert stored.metadata["improvements"][0].endswith(": 45/50")


@pytest.mark.asyncio
async def test_one_missing_criterion_still_converges():
    store = InMemoryResultStore()
    optimizer, provider = _optimizer([structured(REFINED, 995, count=19)], store)
    response = await optimizer.optimize(_request())

    assert response.final_aggregate.total == 995
    assert response.final_aggregate == aggregate(response.final_scores)
    assert response.target_met
    assert response.iterations == 1
    assert response.state == "converged"
    assert len(provider.requests) == 1
    assert store.get("genesis 1:1").metadata["total"] == 995


@pytest.mark.asyncio
async def test_persistence_failure_becomes_warning():
    optimizer, _ = _optimizer([structured(REFINED, 990)], _FailingStore())
    response = await optimizer.optimize(_request())

    assert response.final_text == REFINED
    assert response.target_met
    assert any("persistence failed: disk full" in w for w in response.warnings)


@pytest.mark.asyncio
async def test_fine_tune_instructions_reach_prompt():
    optimizer, provider = _optimizer([structured(REFINED, 990)])
    await optimizer.optimize(_request(fine_tune_instructions="Render YHWH as 'the LORD'."))
    assert "Render YHWH as 'the LORD'." in provider.requests[0].messages[1].content


@pytest.mark.asyncio
async def test_evaluate_single_pass():
    store = InMemoryResultStore()
    optimizer, provider = _optimizer(
        [structured(REFINED, 950, recommendations=["Keep Elohim for the divine name"])], store
    )
    response = await optimizer.evaluate(_request())

    assert len(provider.requests) == 1
    assert response.iterations == 1
    assert response.final_text == REFINED
    assert response.final_aggregate.total == 950
    assert not response.target_met
    stored = store.get("genesis 1:1")
    assert stored.metadata["score_source"] == "parsed"
    assert stored.metadata["strengths"] == ["Keep Elohim for the divine name"]


@pytest.mark.asyncio
async def test_evaluate_generation_failure_scores_input():
    evaluation = json.dumps({k: 8.0 for k in DEFAULT_RUBRIC.keys})
    optimizer, provider = _optimizer([RuntimeError("timeout"), evaluation])
    response = await optimizer.evaluate(_request())

    assert response.final_text == ORIGINAL
    assert response.final_aggregate.total == 800
    assert "generation failed; input text scored" in response.warnings
    assert f'VERSE: "{ORIGINAL}"' in provider.requests[1].messages[1].content


@pytest.mark.asyncio
async def test_evaluate_fallback_scores_warn():
    optimizer, _ = _optimizer([structured(REFINED, 950, count=3), "not json"])
    response = await optimizer.evaluate(_request())
    assert response.final_aggregate.total == 820
    assert "evaluation failed; fallback scores used" in response.warnings


@pytest.mark.asyncio
async def test_new_testament_reference_in_prompt():
    optimizer, provider = _optimizer([structured("In the beginning was the Word.", 990)])
    response = await optimizer.optimize(_request("john 1:1", "In the beginning was the Word."))
    assert response.corpus == "new"
    assert "Reference: John 1:1" in provider.requests[0].messages[1].content


def test_display_reference():
    classifier = TestamentClassifier()
    assert display_reference("1 samuel 3:4", classifier.classify("1 samuel 3:4")) == "1 Samuel 3:4"
    assert display_reference("ruth", classifier.classify("ruth")) == "Ruth"
    assert display_reference(" enoch 1:1 ", classifier.classify("enoch 1:1")) == "enoch 1:1"


def test_from_env_builds_stub_optimizer(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("JUBILEE_LLM_PROVIDER", "stub")
    monkeypatch.setenv("JUBILEE_MAX_ITERATIONS", "2")
    optimizer = VerseOptimizer.from_env()
    assert optimizer.config.max_iterations == 2
