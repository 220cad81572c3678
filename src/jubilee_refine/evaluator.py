"""Rubric-only fallback evaluation through the generation backend."""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping
from enum import StrEnum
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict

from .config import JUBILEE_PRESET, RefinementConfig
from .provider import GenerationClient, GenerationRequest
from .rubric import DEFAULT_RUBRIC, Rubric, clamp_score
from .telemetry import trace_evaluate
from .testament import ContextMetadata, Corpus

_log = logging.getLogger(__name__)

DEFAULT_MISSING_SCORE = 7.0

EVALUATOR_SYSTEM_PROMPT = (
    "You are a rigorous Bible translation evaluator. Return ONLY valid JSON with numeric scores."
)

# Moderate scores used when evaluation fails outright (total 820, grade C).
FALLBACK_SCORES: Mapping[str, float] = MappingProxyType(
    {
        "hebraic_worldview_score": 8.0,
        "original_languages_score": 8.0,
        "early_church_alignment_score": 8.0,
        "covenant_terminology_score": 7.5,
        "sacred_names_score": 7.5,
        "hebraic_tense_score": 8.0,
        "modern_clarity_score": 9.0,
        "archaic_avoidance_score": 9.5,
        "doctrinal_stability_score": 8.5,
        "replacement_theology_score": 8.0,
        "jewish_context_score": 7.5,
        "covenant_terms_precision_score": 7.5,
        "law_grace_integration_score": 8.0,
        "misinterpretation_risk_score": 8.5,
        "discipleship_suitability_score": 8.5,
        "narrative_coherence_score": 8.5,
        "eschatological_clarity_score": 8.0,
        "translation_consistency_score": 8.0,
        "pastoral_utility_score": 9.0,
        "doctrinal_drift_risk_score": 8.5,
    }
)


class ScoreSource(StrEnum):
    """Where an iteration's ScoreSet came from."""

    PARSED = "parsed"
    EVALUATOR = "evaluator"
    FALLBACK = "fallback"


class EvaluationError(Exception):
    """Evaluator output could not be turned into scores."""

    def __init__(self, message: str, response: str | None = None) -> None:
        self.response = response
        super().__init__(message)


class EvaluationResult(BaseModel):
    """A complete ScoreSet and the path that produced it."""

    model_config = ConfigDict(frozen=True)

    scores: dict[str, float]
    source: ScoreSource


def extract_json_object(text: str) -> str:
    """Return the first balanced ``{...}`` span in *text*.

    Braces inside JSON string literals are ignored.

    Raises:
        EvaluationError: if no complete object is present.
    """
    start = text.find("{")
    if start < 0:
        raise EvaluationError("No JSON object in evaluation response", response=text)

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    raise EvaluationError("Unbalanced JSON object in evaluation response", response=text)


def _is_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return not math.isnan(value)


class RubricEvaluator:
    """Scores a translation against the rubric with a separate, rubric-only prompt.

    Always yields a complete ScoreSet: missing or non-numeric keys default to
    7.0, and any failure returns :data:`FALLBACK_SCORES`.
    """

    def __init__(
        self,
        client: GenerationClient,
        rubric: Rubric = DEFAULT_RUBRIC,
        config: RefinementConfig = JUBILEE_PRESET,
    ) -> None:
        self._client = client
        self._rubric = rubric
        self._config = config

    def build_prompt(self, text: str, reference: str, context: ContextMetadata) -> str:
        testament = "Old" if context.corpus == Corpus.OLD else "New"
        key_lines = ",\n".join(f'  "{key}": <number>' for key in self._rubric.keys)
        return (
            "BENCHMARK EVALUATION - Score this Bible verse translation\n\n"
            f'VERSE: "{text}"\n'
            f"REFERENCE: {reference}\n"
            f"SOURCE: {context.source_language} ({testament} Testament)\n\n"
            "Score each criterion from 1.0 to 10.0 (use decimals for precision).\n"
            "All criteria use direct scoring: 10 = excellent/best, 1 = poor/worst.\n\n"
            "Return ONLY a JSON object with these exact keys and numeric scores:\n"
            f"{{\n{key_lines}\n}}\n\n"
            "Evaluate rigorously. Only truly exceptional translations should score 9.5+ "
            "on all criteria.\n"
            "Return ONLY the JSON object, no other text."
        )

    def parse_scores(self, response: str) -> dict[str, float]:
        """Turn an evaluator response into a complete, clamped ScoreSet.

        Raises:
            EvaluationError: if the response holds no parseable JSON object.
        """
        span = extract_json_object(response)
        try:
            payload = json.loads(span)
        except json.JSONDecodeError as exc:
            raise EvaluationError(f"Invalid JSON in evaluation response: {exc}", response) from exc
        if not isinstance(payload, dict):
            raise EvaluationError("Evaluation response JSON is not an object", response)

        scores: dict[str, float] = {}
        defaulted = []
        for key in self._rubric.keys:
            value = payload.get(key)
            if not _is_number(value):
                defaulted.append(key)
                value = DEFAULT_MISSING_SCORE
            scores[key] = clamp_score(float(value))
        if defaulted:
            _log.warning(
                "Evaluator omitted %d criteria, defaulting to %.1f: %s",
                len(defaulted),
                DEFAULT_MISSING_SCORE,
                ", ".join(defaulted),
            )
        return self._rubric.require_complete(scores)

    async def evaluate_detailed(
        self, text: str, reference: str, context: ContextMetadata
    ) -> EvaluationResult:
        with trace_evaluate(reference) as span:
            request = GenerationRequest(
                system_prompt=EVALUATOR_SYSTEM_PROMPT,
                user_prompt=self.build_prompt(text, reference, context),
                max_output_tokens=self._config.evaluator_max_tokens,
                temperature=self._config.evaluator_temperature,
            )
            try:
                response = await self._client.generate(request)
                scores = self.parse_scores(response)
            except Exception:
                _log.error(
                    "Rubric evaluation failed for %s, using fallback scores",
                    reference,
                    exc_info=True,
                )
                span.set_attribute("refine.score_source", ScoreSource.FALLBACK.value)
                return EvaluationResult(
                    scores=self._rubric.fill_missing(FALLBACK_SCORES, DEFAULT_MISSING_SCORE),
                    source=ScoreSource.FALLBACK,
                )
            span.set_attribute("refine.score_source", ScoreSource.EVALUATOR.value)
            return EvaluationResult(scores=scores, source=ScoreSource.EVALUATOR)

    async def evaluate(
        self, text: str, reference: str, context: ContextMetadata
    ) -> dict[str, float]:
        """Score *text*; never raises."""
        result = await self.evaluate_detailed(text, reference, context)
        return result.scores
