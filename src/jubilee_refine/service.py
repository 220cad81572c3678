"""Verse optimization service -- request in, refined verse and scores out."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .config import JUBILEE_PRESET, RefinementConfig
from .evaluator import RubricEvaluator, ScoreSource
from .loop import RefinementLoop, RefinementOutcome
from .parsing import ResponseParser
from .persistence import PersistenceError, ResultPersister
from .prompting import OutputMode, PromptComposer, load_prompt_template
from .provider import GenerationClient, GenerationError, GenerationRequest, LLMProvider
from .provider_factory import ProviderFactory
from .rubric import DEFAULT_RUBRIC, Rubric
from .scoring import (
    AggregateScore,
    aggregate,
    improvements,
    score_breakdown,
)
from .testament import ContextMetadata, TestamentClassifier, parse_reference

_log = logging.getLogger(__name__)

APPROVED = "Approved for Jubilee Bible inclusion"
NEEDS_REVIEW = "May require additional review"

# ---------------------------------------------------------------------------
# Request / response
# ---------------------------------------------------------------------------


class OptimizationRequest(BaseModel):
    document_id: str
    current_text: str
    fine_tune_instructions: str | None = None


class IterationSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    iteration: int
    text: str
    aggregate_total: int
    grade: str


class OptimizationResponse(BaseModel):
    """What a caller gets back from :meth:`VerseOptimizer.optimize`."""

    final_text: str
    final_aggregate: AggregateScore
    target_met: bool
    iterations: int
    iteration_history: list[IterationSummary] = Field(default_factory=list)
    corpus: str
    source_language: str
    author_perspective: str
    final_scores: dict[str, float] = Field(default_factory=dict)
    state: str | None = None
    warnings: list[str] = Field(default_factory=list)


def display_reference(document_id: str, context: ContextMetadata) -> str:
    """``"Genesis 1:1"`` style reference, or the raw id for unknown books."""
    ref = parse_reference(document_id)
    if context.book_name is None:
        return document_id.strip()
    if ref.chapter is None:
        return context.book_name
    return f"{context.book_name} {ref.chapter}:{ref.verse}"


# ---------------------------------------------------------------------------
# VerseOptimizer
# ---------------------------------------------------------------------------


class VerseOptimizer:
    """Runs refinement sessions and persists their best result.

    Sessions share nothing mutable, so several ``optimize`` calls may be
    awaited concurrently on one optimizer.
    """

    def __init__(
        self,
        client: GenerationClient,
        persister: ResultPersister | None = None,
        rubric: Rubric = DEFAULT_RUBRIC,
        config: RefinementConfig = JUBILEE_PRESET,
        classifier: TestamentClassifier | None = None,
        composer: PromptComposer | None = None,
    ) -> None:
        self._client = client
        self._persister = persister
        self._rubric = rubric
        self._config = config
        self._classifier = classifier or TestamentClassifier()
        self._composer = composer or PromptComposer(
            rubric, load_prompt_template(config.prompt_template_path)
        )
        self._parser = ResponseParser(rubric)
        self._evaluator = RubricEvaluator(client, rubric, config)
        self._loop = RefinementLoop(
            client,
            self._evaluator,
            composer=self._composer,
            parser=self._parser,
            rubric=rubric,
            config=config,
        )

    @classmethod
    def from_env(
        cls,
        persister: ResultPersister | None = None,
        provider: LLMProvider | None = None,
    ) -> VerseOptimizer:
        """Build an optimizer from ``JUBILEE_*`` environment variables."""
        config = RefinementConfig.from_env()
        provider = provider or ProviderFactory.create(fallback=True)
        return cls(GenerationClient(provider, config.model), persister=persister, config=config)

    @property
    def config(self) -> RefinementConfig:
        return self._config

    # -- operations ----------------------------------------------------------

    async def optimize(self, request: OptimizationRequest) -> OptimizationResponse:
        """Iteratively refine the verse and persist the best candidate."""
        context = self._classifier.classify(request.document_id)
        reference = display_reference(request.document_id, context)

        outcome = await self._loop.run(
            request.current_text,
            reference,
            context,
            request.fine_tune_instructions,
        )
        warnings = list(outcome.warnings)

        final_scores: dict[str, float] = {}
        if outcome.best_scores is not None:
            final_scores = self._rubric.require_complete(outcome.best_scores)
            stored_aggregate = aggregate(final_scores, self._rubric)
            metadata = self._summary(
                context,
                stored_aggregate,
                final_scores,
                strengths=[
                    "Optimized through iterative refinement",
                    f"Achieved {stored_aggregate.total}/1000 benchmark score",
                    f"{context.source_language} source text fidelity",
                ],
                assessment=(
                    f"Translation optimized through {outcome.iterations} iteration(s) achieving "
                    f"{stored_aggregate.total}/1000 benchmark compliance."
                ),
            )
            metadata["iterations"] = outcome.iterations
            metadata["state"] = outcome.state.value
            self._persist(request.document_id, outcome.best_text, final_scores, metadata, warnings)
        else:
            _log.warning(
                "No usable translation for %s after %d passes, returning input unchanged",
                reference,
                outcome.iterations,
            )

        return self._response(outcome, context, final_scores, warnings)

    async def evaluate(self, request: OptimizationRequest) -> OptimizationResponse:
        """Single structured pass: translate once, score, persist. No iteration."""
        context = self._classifier.classify(request.document_id)
        reference = display_reference(request.document_id, context)
        warnings: list[str] = []

        prompt = self._composer.compose(
            request.current_text,
            reference,
            context,
            [],
            request.fine_tune_instructions,
            1,
            OutputMode.STRUCTURED,
        )
        generation = GenerationRequest(
            system_prompt=self._composer.system_prompt(OutputMode.STRUCTURED),
            user_prompt=prompt,
            max_output_tokens=self._config.max_output_tokens,
            temperature=self._config.temperature_for(1),
        )

        final_text = request.current_text
        recommendations: tuple[str, ...] = ()
        try:
            raw = await self._client.generate(generation)
        except GenerationError:
            _log.warning("Generation failed for %s, scoring input text", reference, exc_info=True)
            warnings.append("generation failed; input text scored")
            result = await self._evaluator.evaluate_detailed(final_text, reference, context)
            scores, source = result.scores, result.source
            total = aggregate(scores, self._rubric)
        else:
            parsed = self._parser.parse(raw)
            candidate = parsed.translation or ""
            if len(candidate) >= self._config.min_translation_length:
                final_text = candidate
            recommendations = parsed.recommendations
            scores, total, source = await self._loop.score_candidate(
                final_text, parsed, reference, context
            )

        if source == ScoreSource.FALLBACK:
            warnings.append("evaluation failed; fallback scores used")

        final_scores = self._rubric.require_complete(scores)
        metadata = self._summary(
            context,
            total,
            final_scores,
            strengths=list(recommendations[:3])
            or ["Optimized through AI translation", f"Achieved {total.total}/1000 benchmark score"],
            assessment=(
                f"Translation evaluated achieving {total.total}/1000 benchmark compliance."
            ),
        )
        metadata["score_source"] = source.value
        self._persist(request.document_id, final_text, final_scores, metadata, warnings)

        return OptimizationResponse(
            final_text=final_text,
            final_aggregate=total,
            target_met=total.target_met,
            iterations=1,
            iteration_history=[
                IterationSummary(
                    iteration=1,
                    text=final_text,
                    aggregate_total=total.total,
                    grade=total.grade.value,
                )
            ],
            corpus=context.corpus.value,
            source_language=context.source_language,
            author_perspective=context.author_perspective,
            final_scores=final_scores,
            warnings=warnings,
        )

    # -- helpers -------------------------------------------------------------

    def _summary(
        self,
        context: ContextMetadata,
        total: AggregateScore,
        scores: Mapping[str, float],
        strengths: list[str],
        assessment: str,
    ) -> dict[str, Any]:
        return {
            "total": total.total,
            "percentage": total.percentage,
            "grade": total.grade.value,
            "breakdown": score_breakdown(scores, self._rubric),
            "strengths": strengths,
            "improvements": improvements(scores, self._rubric),
            "overall_assessment": assessment,
            "recommendation": APPROVED if total.target_met else NEEDS_REVIEW,
            "corpus": context.corpus.value,
            "source_language": context.source_language,
            "author_perspective": context.author_perspective,
        }

    def _persist(
        self,
        document_id: str,
        final_text: str,
        scores: dict[str, float],
        metadata: dict[str, Any],
        warnings: list[str],
    ) -> None:
        if self._persister is None:
            return
        try:
            self._persister.store(document_id, final_text, scores, metadata)
        except PersistenceError as exc:
            _log.error("Failed to persist result for %s", document_id, exc_info=True)
            warnings.append(f"persistence failed: {exc}")

    def _response(
        self,
        outcome: RefinementOutcome,
        context: ContextMetadata,
        final_scores: dict[str, float],
        warnings: list[str],
    ) -> OptimizationResponse:
        return OptimizationResponse(
            final_text=outcome.best_text,
            final_aggregate=outcome.best_aggregate,
            target_met=outcome.target_met,
            iterations=outcome.iterations,
            iteration_history=[
                IterationSummary(
                    iteration=r.iteration,
                    text=r.text,
                    aggregate_total=r.aggregate.total,
                    grade=r.aggregate.grade.value,
                )
                for r in outcome.history
            ],
            corpus=context.corpus.value,
            source_language=context.source_language,
            author_perspective=context.author_perspective,
            final_scores=final_scores,
            state=outcome.state.value,
            warnings=warnings,
        )

