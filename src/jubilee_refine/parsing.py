"""Tolerant extraction of translation, scores and recommendations from model output.

Model output is only loosely structured: headings may be missing, scores may
be numbered or labelled, and translations sometimes leak score tables or
come back in the source script. Each field is resolved independently by an
ordered list of pure strategies; the first strategy that yields a value wins
and no strategy sees another field's result.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .rubric import DEFAULT_RUBRIC, Rubric, clamp_score

_log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ParserThresholds:
    """Empirically chosen limits for translation extraction."""

    max_translation_length: int = 500
    min_leading_length: int = 5
    min_sentence_length: int = 10
    max_sentence_length: int = 300
    max_source_script_ratio: float = 0.3
    min_recommendation_length: int = 10
    max_numbered_index: int = 20
    max_aggregate: int = 1000
    max_alternate_aggregate: int = 20000
    alternate_aggregate_divisor: int = 20


DEFAULT_THRESHOLDS = ParserThresholds()


class ParsedResponse(BaseModel):
    """Structured view of one raw model response. Empty fields mean 'not found'."""

    model_config = ConfigDict(frozen=True)

    translation: str | None = None
    scores: dict[str, float] = Field(default_factory=dict)
    aggregate: int | None = None
    recommendations: tuple[str, ...] = ()
    raw_response: str = ""

    @property
    def score_count(self) -> int:
        return len(self.scores)

    @property
    def has_translation(self) -> bool:
        return bool(self.translation)


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_TRANSLATION_HEADING = "translated verse"
_SCORES_HEADING = "benchmark scores"
_RECOMMENDATION_HEADING = "recommendation"

_SECTION_SPLIT_RE = re.compile(r"###\s*")
_TRANSLATION_SPAN_RE = re.compile(
    r"Translated\s*Verse[:\s\-–—]*\n?([\s\S]*?)(?=Benchmark\s*Scores|$)", re.IGNORECASE
)
_SCORES_SPLIT_RE = re.compile(r"Benchmark\s*Scores", re.IGNORECASE)
_TRANSLATION_HEADER_RE = re.compile(r"^[\s\S]*?Translated\s*Verse[:\s\-–—]*", re.IGNORECASE)
_SCORE_LIST_SHAPE_RE = re.compile(r"\d+\.\s+[A-Za-z]+.*:\s*\d+")
_SCORES_SPAN_RE = re.compile(r"Benchmark\s*Scores[\s\S]*?(?=Recommendation|$)", re.IGNORECASE)
_RECOMMENDATIONS_SPAN_RE = re.compile(r"Recommendations?[\s\S]*$", re.IGNORECASE)

# Leaked score/aggregate/recommendation material inside a translation candidate.
_LEAK_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"Benchmark\s*Scores[\s\S]*", re.IGNORECASE),
    re.compile(r"\d+\.\s+[A-Za-z\s&]+[:\-–—]\s*\*?\*?\d{3,4}\*?\*?"),
    re.compile(r"Aggregate\s*Result[\s\S]*", re.IGNORECASE),
    re.compile(r"Recommendation[\s\S]*", re.IGNORECASE),
    re.compile(r"\d+\s*[.)]\s*[A-Za-z\s]+:\s*\d+"),
    re.compile(r"\*\*\d+\*\*"),
    re.compile(r"–\s*\d+"),
)
_RATIO_RE = re.compile(r"\d{3,4}\s*[/|]\s*\d{3,4}")
_SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s")
_SOURCE_SCRIPT_RE = re.compile(r"[\u0590-\u05FF\u0370-\u03FF]")
_WHITESPACE_RE = re.compile(r"\s")

_NUMBERED_SCORE_RE = re.compile(r"^\s*(\d{1,2})\.\s*[^—:\d]*[—:\-–]\s*\*?\*?(\d{3,4})\*?\*?")
_LABELED_SCORE_RE = re.compile(r"([A-Za-z\s&\-/]+)[—:\-–]\s*\*?\*?(\d{3,4})\*?\*?")
_AGGREGATE_RE = re.compile(
    r"(?:aggregate|total)\s*(?:result|score)?[\s:*]*(\d{3,5})\s*(?:/\s*\d+)?", re.IGNORECASE
)
_BULLET_RE = re.compile(r"^\s*(?:[*\-•]|\d+[.)])\s*")


def _split_sections(raw: str) -> list[str]:
    if "###" not in raw:
        return []
    return [s.strip() for s in _SECTION_SPLIT_RE.split(raw) if s.strip()]


def _section_body(raw: str, heading: str) -> str | None:
    """Full text (heading line included) of the first ``###`` section starting with *heading*."""
    for section in _split_sections(raw):
        if section.lower().startswith(heading):
            return section
    return None


# ---------------------------------------------------------------------------
# Translation strategies
# ---------------------------------------------------------------------------


def translation_from_sections(raw: str, limits: ParserThresholds) -> str | None:
    section = _section_body(raw, _TRANSLATION_HEADING)
    if section is None:
        return None
    parts: list[str] = []
    for line in section.split("\n")[1:]:
        if _SCORES_HEADING in line.lower():
            break
        parts.append(line)
    text = " ".join(parts).strip()
    return text or None


def translation_from_span(raw: str, limits: ParserThresholds) -> str | None:
    match = _TRANSLATION_SPAN_RE.search(raw)
    if match is None:
        return None
    return match.group(1).strip() or None


def translation_from_leading_text(raw: str, limits: ParserThresholds) -> str | None:
    before = _SCORES_SPLIT_RE.split(raw, maxsplit=1)[0]
    cleaned = _TRANSLATION_HEADER_RE.sub("", before, count=1).strip()
    if not cleaned:
        cleaned = before.strip()
    if not limits.min_leading_length < len(cleaned) < limits.max_translation_length:
        return None
    if _SCORE_LIST_SHAPE_RE.search(cleaned):
        return None
    return cleaned


TRANSLATION_STRATEGIES: tuple[Callable[[str, ParserThresholds], str | None], ...] = (
    translation_from_sections,
    translation_from_span,
    translation_from_leading_text,
)


def source_script_ratio(text: str) -> float:
    """Share of non-whitespace characters in Hebrew or Greek script."""
    non_whitespace = len(_WHITESPACE_RE.sub("", text))
    if not non_whitespace:
        return 0.0
    return len(_SOURCE_SCRIPT_RE.findall(text)) / non_whitespace


def _reject_source_script(text: str, limits: ParserThresholds) -> str | None:
    ratio = source_script_ratio(text)
    if ratio > limits.max_source_script_ratio:
        _log.warning("Translation is %.0f%% Hebrew/Greek script, discarding candidate", ratio * 100)
        return None
    return text or None


def sanitize_translation(text: str, limits: ParserThresholds = DEFAULT_THRESHOLDS) -> str | None:
    """Strip leaked scoring material and reject source-script output.

    Returns ``None`` when nothing usable remains.
    """
    for pattern in _LEAK_PATTERNS:
        text = pattern.sub("", text)
    text = text.strip()

    if len(text) > limits.max_translation_length or _RATIO_RE.search(text):
        first_sentence = _SENTENCE_END_RE.split(text, maxsplit=1)[0]
        if limits.min_sentence_length <= len(first_sentence) < limits.max_sentence_length:
            text = first_sentence

    return _reject_source_script(text, limits)


# ---------------------------------------------------------------------------
# Score / recommendation section locators
# ---------------------------------------------------------------------------


def scores_from_sections(raw: str, limits: ParserThresholds) -> str | None:
    return _section_body(raw, _SCORES_HEADING)


def scores_from_span(raw: str, limits: ParserThresholds) -> str | None:
    match = _SCORES_SPAN_RE.search(raw)
    return match.group(0) if match else None


def scores_from_whole_text(raw: str, limits: ParserThresholds) -> str | None:
    return raw or None


SCORE_SECTION_STRATEGIES: tuple[Callable[[str, ParserThresholds], str | None], ...] = (
    scores_from_sections,
    scores_from_span,
    scores_from_whole_text,
)


def recommendations_from_sections(raw: str, limits: ParserThresholds) -> str | None:
    return _section_body(raw, _RECOMMENDATION_HEADING)


def recommendations_from_span(raw: str, limits: ParserThresholds) -> str | None:
    match = _RECOMMENDATIONS_SPAN_RE.search(raw)
    return match.group(0) if match else None


RECOMMENDATION_SECTION_STRATEGIES: tuple[Callable[[str, ParserThresholds], str | None], ...] = (
    recommendations_from_sections,
    recommendations_from_span,
)


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


class ResponseParser:
    """Multi-strategy parser for semi-structured translation responses.

    ``parse`` never raises: a field that no strategy can resolve comes back
    empty, and the caller decides whether to fall back to rubric evaluation.
    """

    def __init__(
        self,
        rubric: Rubric = DEFAULT_RUBRIC,
        thresholds: ParserThresholds = DEFAULT_THRESHOLDS,
    ) -> None:
        self._rubric = rubric
        self._limits = thresholds

    def parse(self, raw: str | None) -> ParsedResponse:
        if not raw:
            return ParsedResponse(raw_response=raw or "")

        translation = self._first(TRANSLATION_STRATEGIES, raw)
        if translation is not None:
            translation = sanitize_translation(translation, self._limits)

        scores: dict[str, float] = {}
        aggregate: int | None = None
        score_text = self._first(SCORE_SECTION_STRATEGIES, raw)
        if score_text is not None:
            scores = self.parse_scores(score_text)
            aggregate = self.parse_aggregate(score_text)

        recommendations: tuple[str, ...] = ()
        rec_text = self._first(RECOMMENDATION_SECTION_STRATEGIES, raw)
        if rec_text is not None:
            recommendations = self.parse_recommendations(rec_text)

        parsed = ParsedResponse(
            translation=translation,
            scores=scores,
            aggregate=aggregate,
            recommendations=recommendations,
            raw_response=raw,
        )
        _log.debug(
            "Parsed response: translation=%s length=%d scores=%d aggregate=%s recommendations=%d",
            parsed.has_translation,
            len(parsed.translation or ""),
            parsed.score_count,
            parsed.aggregate,
            len(parsed.recommendations),
        )
        return parsed

    def parse_plain(self, raw: str | None) -> ParsedResponse:
        """Treat *raw* as a bare translation (raw output mode). No scores are read."""
        text = (raw or "").strip()
        translation = _reject_source_script(text, self._limits) if text else None
        return ParsedResponse(translation=translation, raw_response=raw or "")

    def _first(
        self, strategies: Sequence[Callable[[str, ParserThresholds], T | None]], raw: str
    ) -> T | None:
        for strategy in strategies:
            try:
                value = strategy(raw, self._limits)
            except Exception:  # noqa: BLE001
                _log.error("Parse strategy %s failed", strategy.__name__, exc_info=True)
                continue
            if value is not None:
                return value
        return None

    def parse_scores(self, text: str) -> dict[str, float]:
        """Read criterion scores from *text*, numbered lines first.

        Labelled lines only fill criteria that no numbered line provided.
        """
        lines = text.split("\n")
        scores: dict[str, float] = {}
        numbered_lines: set[int] = set()

        for i, line in enumerate(lines):
            match = _NUMBERED_SCORE_RE.match(line)
            if match is None:
                continue
            numbered_lines.add(i)
            index, value = int(match.group(1)), int(match.group(2))
            if not 1 <= index <= self._limits.max_numbered_index or value > 1000:
                continue
            criterion = self._rubric.by_id(index)
            if criterion is not None:
                scores[criterion.key] = clamp_score(value / 100)

        for i, line in enumerate(lines):
            if i in numbered_lines:
                continue
            match = _LABELED_SCORE_RE.search(line)
            if match is None:
                continue
            value = int(match.group(2))
            if value > 1000:
                continue
            key = self._rubric.match_label(match.group(1))
            if key is not None and key not in scores:
                scores[key] = clamp_score(value / 100)

        return scores

    def parse_aggregate(self, text: str) -> int | None:
        """Provider-reported aggregate on the 0-1000 scale, if any.

        Values up to 20000 are taken to be on a 20x scale and divided down;
        anything larger is ignored.
        """
        aggregate: int | None = None
        for line in text.split("\n"):
            if _NUMBERED_SCORE_RE.match(line):
                continue
            match = _AGGREGATE_RE.search(line)
            if match is None:
                continue
            value = int(match.group(1))
            if value <= self._limits.max_aggregate:
                aggregate = value
            elif value <= self._limits.max_alternate_aggregate:
                # TODO: drop the 20x scale once no provider prompt asks for 20-point criteria.
                aggregate = round(value / self._limits.alternate_aggregate_divisor)
        return aggregate

    def parse_recommendations(self, text: str) -> tuple[str, ...]:
        out: list[str] = []
        for line in text.split("\n")[1:]:
            cleaned = _BULLET_RE.sub("", line).strip()
            if (
                len(cleaned) > self._limits.min_recommendation_length
                and not cleaned.lower().startswith(_RECOMMENDATION_HEADING)
            ):
                out.append(cleaned)
        return tuple(out)
