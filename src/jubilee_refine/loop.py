"""Refinement loop -- bounded generate/parse/score iterations with monotonic best."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from .config import JUBILEE_PRESET, RefinementConfig
from .evaluator import RubricEvaluator, ScoreSource
from .parsing import ParsedResponse, ResponseParser
from .prompting import OutputMode, PromptComposer, find_weaknesses
from .provider import GenerationClient, GenerationError, GenerationRequest
from .rubric import DEFAULT_RUBRIC, MAX_SCORE, Rubric
from .scoring import ZERO_AGGREGATE, AggregateScore, aggregate, aggregate_from_total
from .telemetry import trace_generate, trace_iteration, trace_session
from .testament import ContextMetadata

_log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Session state machine
# ---------------------------------------------------------------------------


class SessionState(StrEnum):
    INIT = "init"
    ITERATING = "iterating"
    CONVERGED = "converged"
    EXHAUSTED = "exhausted"


_TRANSITIONS: dict[SessionState, list[SessionState]] = {
    SessionState.INIT: [SessionState.ITERATING],
    SessionState.ITERATING: [SessionState.CONVERGED, SessionState.EXHAUSTED],
    SessionState.CONVERGED: [],
    SessionState.EXHAUSTED: [],
}


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class IterationRecord(BaseModel):
    """One scored candidate. Discarded passes never produce a record."""

    model_config = ConfigDict(frozen=True)

    iteration: int
    text: str
    scores: dict[str, float]
    aggregate: AggregateScore
    source: ScoreSource
    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))


def reduce_best(best: IterationRecord | None, record: IterationRecord) -> IterationRecord:
    """Keep whichever record has the strictly higher total; ties keep *best*."""
    if best is None or record.aggregate.total > best.aggregate.total:
        return record
    return best


class RefinementSession(BaseModel):
    """Mutable per-request state, owned by a single :class:`RefinementLoop` run."""

    original_text: str
    target_score: int
    max_iterations: int
    iteration: int = 0
    state: SessionState = SessionState.INIT
    best: IterationRecord | None = None
    history: list[IterationRecord] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def best_text(self) -> str:
        return self.best.text if self.best is not None else self.original_text

    @property
    def best_scores(self) -> dict[str, float] | None:
        return self.best.scores if self.best is not None else None

    @property
    def best_aggregate(self) -> AggregateScore:
        return self.best.aggregate if self.best is not None else ZERO_AGGREGATE

    def can_transition(self, target: SessionState) -> bool:
        return target in _TRANSITIONS.get(self.state, [])

    def transition(self, target: SessionState) -> None:
        if not self.can_transition(target):
            raise ValueError(f"Invalid transition: {self.state} -> {target}")
        self.state = target

    def record(self, record: IterationRecord) -> None:
        self.history.append(record)
        self.best = reduce_best(self.best, record)


class RefinementOutcome(BaseModel):
    """Final result of a refinement session."""

    model_config = ConfigDict(frozen=True)

    best_text: str
    best_scores: dict[str, float] | None
    best_aggregate: AggregateScore
    history: tuple[IterationRecord, ...]
    target_met: bool
    iterations: int
    state: SessionState
    warnings: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# RefinementLoop
# ---------------------------------------------------------------------------


class RefinementLoop:
    """Drives one verse through up to ``max_iterations`` refinement passes.

    Each pass prompts from the best text so far, so a bad candidate never
    becomes the basis of the next prompt. The loop stops early once the best
    total reaches ``target_score``.
    """

    def __init__(
        self,
        client: GenerationClient,
        evaluator: RubricEvaluator,
        composer: PromptComposer | None = None,
        parser: ResponseParser | None = None,
        rubric: Rubric = DEFAULT_RUBRIC,
        config: RefinementConfig = JUBILEE_PRESET,
    ) -> None:
        self._client = client
        self._evaluator = evaluator
        self._rubric = rubric
        self._composer = composer or PromptComposer(rubric)
        self._parser = parser or ResponseParser(rubric)
        self._config = config

    @property
    def output_mode(self) -> OutputMode:
        # A file template always asks for structured output.
        if self._composer.uses_template:
            return OutputMode.STRUCTURED
        return self._config.output_mode

    async def run(
        self,
        current_text: str,
        reference: str,
        context: ContextMetadata,
        fine_tune_text: str | None = None,
    ) -> RefinementOutcome:
        cfg = self._config
        session = RefinementSession(
            original_text=current_text,
            target_score=cfg.target_score,
            max_iterations=cfg.max_iterations,
        )
        mode = self.output_mode

        with trace_session(reference, mode.value) as span:
            session.transition(SessionState.ITERATING)
            _log.info(
                "Starting refinement of %s (%s, target %d, max %d passes)",
                reference,
                context.source_language,
                cfg.target_score,
                cfg.max_iterations,
            )

            while session.iteration < cfg.max_iterations:
                session.iteration += 1
                with trace_iteration(session.iteration):
                    record = await self._run_pass(session, reference, context, fine_tune_text, mode)
                if record is None:
                    continue

                session.record(record)
                _log.info(
                    "Pass %d for %s: %d (%s), best %d",
                    record.iteration,
                    reference,
                    record.aggregate.total,
                    record.aggregate.grade,
                    session.best_aggregate.total,
                )
                if session.best_aggregate.total >= cfg.target_score:
                    _log.info("Target %d reached for %s", cfg.target_score, reference)
                    session.transition(SessionState.CONVERGED)
                    break

            if session.state == SessionState.ITERATING:
                _log.info(
                    "Iteration budget exhausted for %s, best %d",
                    reference,
                    session.best_aggregate.total,
                )
                session.transition(SessionState.EXHAUSTED)

            span.set_attribute("refine.state", session.state.value)
            span.set_attribute("refine.best_total", session.best_aggregate.total)

        return RefinementOutcome(
            best_text=session.best_text,
            best_scores=session.best_scores,
            best_aggregate=session.best_aggregate,
            history=tuple(session.history),
            target_met=session.best_aggregate.total >= cfg.target_score,
            iterations=session.iteration,
            state=session.state,
            warnings=tuple(session.warnings),
        )

    async def _run_pass(
        self,
        session: RefinementSession,
        reference: str,
        context: ContextMetadata,
        fine_tune_text: str | None,
        mode: OutputMode,
    ) -> IterationRecord | None:
        cfg = self._config
        weaknesses = find_weaknesses(
            session.best_scores, self._rubric, cfg.weakness_threshold, cfg.weakness_limit
        )
        prompt = self._composer.compose(
            session.best_text,
            reference,
            context,
            weaknesses,
            fine_tune_text,
            session.iteration,
            mode,
        )
        temperature = cfg.temperature_for(session.iteration)
        request = GenerationRequest(
            system_prompt=self._composer.system_prompt(mode),
            user_prompt=prompt,
            max_output_tokens=cfg.max_output_tokens,
            temperature=temperature,
        )

        try:
            with trace_generate(self._client.provider_name, temperature):
                raw = await self._client.generate(request)
        except GenerationError:
            _log.warning(
                "Generation failed on pass %d for %s, slot wasted",
                session.iteration,
                reference,
                exc_info=True,
            )
            session.warnings.append(f"pass {session.iteration}: generation failed")
            return None

        if mode == OutputMode.RAW:
            parsed = self._parser.parse_plain(raw)
        else:
            parsed = self._parser.parse(raw)

        text = parsed.translation
        if not text or len(text) < cfg.min_translation_length:
            _log.warning(
                "Pass %d for %s produced no usable translation, keeping previous best",
                session.iteration,
                reference,
            )
            session.warnings.append(f"pass {session.iteration}: no usable translation")
            return None

        scores, total, source = await self.score_candidate(text, parsed, reference, context)
        if source == ScoreSource.FALLBACK:
            session.warnings.append(f"pass {session.iteration}: fallback scores used")
        return IterationRecord(
            iteration=session.iteration,
            text=text,
            scores=scores,
            aggregate=total,
            source=source,
        )

    async def score_candidate(
        self,
        text: str,
        parsed: ParsedResponse,
        reference: str,
        context: ContextMetadata,
    ) -> tuple[dict[str, float], AggregateScore, ScoreSource]:
        """Score a candidate from its own response, or through the evaluator.

        Parsed scores are trusted only when at least ``min_parsed_scores``
        criteria were read; only then may a provider aggregate stand in for
        the computed total. Criteria the response left out are scored
        ``MAX_SCORE``, the same completion applied before storage.
        """
        if parsed.score_count >= self._config.min_parsed_scores:
            if not self._rubric.is_complete(parsed.scores):
                _log.debug(
                    "Completing %d parsed scores for %s with %.1f",
                    parsed.score_count,
                    reference,
                    MAX_SCORE,
                )
            scores = self._rubric.fill_missing(parsed.scores, MAX_SCORE)
            if parsed.aggregate:
                return scores, aggregate_from_total(parsed.aggregate), ScoreSource.PARSED
            return scores, aggregate(scores, self._rubric), ScoreSource.PARSED

        if parsed.score_count:
            _log.warning(
                "Only %d scores parsed for %s, using rubric evaluator",
                parsed.score_count,
                reference,
            )
        result = await self._evaluator.evaluate_detailed(text, reference, context)
        return result.scores, aggregate(result.scores, self._rubric), result.source
