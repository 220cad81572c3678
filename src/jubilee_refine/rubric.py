"""Benchmark rubric -- the fixed, ordered 20-criterion quality table."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict

MIN_SCORE = 1.0
MAX_SCORE = 10.0
CRITERIA_COUNT = 20


class IncompleteScoreSetError(ValueError):
    """Raised when a ScoreSet does not carry every rubric criterion."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"ScoreSet is missing {len(missing)} criteria: {', '.join(missing)}")


class RubricCriterion(BaseModel):
    """One of the 20 quality dimensions, scored 1-10."""

    model_config = ConfigDict(frozen=True)

    id: int
    slug: str
    key: str
    name: str


# (id, slug, canonical key, display name)
_CRITERIA: tuple[tuple[int, str, str, str], ...] = (
    (1, "hebraic_worldview_covenant_fidelity", "hebraic_worldview_score",
     "Hebraic Worldview & Covenant Fidelity"),
    (2, "accuracy_original_languages", "original_languages_score",
     "Accuracy to Original Languages"),
    (3, "early_church_alignment", "early_church_alignment_score",
     "Early Church (Acts-Based) Alignment"),
    (4, "covenant_kingdom_terminology", "covenant_terminology_score",
     "Covenant & Kingdom Terminology Fidelity"),
    (5, "sacred_names_divine_titles", "sacred_names_score",
     "Sacred Names & Divine Title Integrity"),
    (6, "hebraic_tense_fidelity", "hebraic_tense_score",
     "Proper Hebraic Ever-Present Tense Fidelity"),
    (7, "modern_english_clarity", "modern_clarity_score", "Modern English Clarity"),
    (8, "avoidance_archaic_language", "archaic_avoidance_score",
     "Avoidance of Archaic / Obscure Language"),
    (9, "doctrinal_stability", "doctrinal_stability_score",
     "Doctrinal Stability Under Pressure"),
    (10, "resistance_replacement_theology", "replacement_theology_score",
     "Resistance to Replacement Theology"),
    (11, "jewish_cultural_context", "jewish_context_score",
     "Faithfulness to Jewish Cultural Context"),
    (12, "precision_covenant_terms", "covenant_terms_precision_score",
     "Precision of Key Covenant Terms"),
    (13, "law_grace_integration", "law_grace_integration_score",
     "Law-Grace Integration Accuracy"),
    (14, "interpretive_clarity", "misinterpretation_risk_score",
     "Interpretive Clarity & Precision"),
    (15, "discipleship_suitability", "discipleship_suitability_score",
     "Discipleship Suitability in Hebraic Frame"),
    (16, "narrative_coherence", "narrative_coherence_score",
     "Narrative Coherence (Acts-Revelation)"),
    (17, "eschatological_clarity", "eschatological_clarity_score", "Eschatological Clarity"),
    (18, "translation_consistency", "translation_consistency_score",
     "Translation Consistency of Key Words"),
    (19, "pastoral_teaching_utility", "pastoral_utility_score", "Pastoral & Teaching Utility"),
    (20, "doctrinal_stability_longevity", "doctrinal_drift_risk_score",
     "Doctrinal Stability & Longevity"),
)

# Free-text label fragments -> criterion key. Order matters: the first
# keyword contained in a label wins.
_KEYWORDS: tuple[tuple[str, str], ...] = (
    ("hebraic worldview", "hebraic_worldview_score"),
    ("covenant fidelity", "hebraic_worldview_score"),
    ("original languages", "original_languages_score"),
    ("accuracy", "original_languages_score"),
    ("early church", "early_church_alignment_score"),
    ("acts", "early_church_alignment_score"),
    ("kingdom terminology", "covenant_terminology_score"),
    ("sacred name", "sacred_names_score"),
    ("divine title", "sacred_names_score"),
    ("hebraic tense", "hebraic_tense_score"),
    ("tense fidelity", "hebraic_tense_score"),
    ("modern english", "modern_clarity_score"),
    ("modern clarity", "modern_clarity_score"),
    ("archaic", "archaic_avoidance_score"),
    ("obscure language", "archaic_avoidance_score"),
    ("doctrinal stability under", "doctrinal_stability_score"),
    ("replacement theology", "replacement_theology_score"),
    ("jewish cultural", "jewish_context_score"),
    ("cultural context", "jewish_context_score"),
    ("covenant terms", "covenant_terms_precision_score"),
    ("precision of key", "covenant_terms_precision_score"),
    ("law-grace", "law_grace_integration_score"),
    ("law grace", "law_grace_integration_score"),
    ("interpretive clarity", "misinterpretation_risk_score"),
    ("interpretive", "misinterpretation_risk_score"),
    ("discipleship", "discipleship_suitability_score"),
    ("narrative coherence", "narrative_coherence_score"),
    ("eschatological", "eschatological_clarity_score"),
    ("translation consistency", "translation_consistency_score"),
    ("key words", "translation_consistency_score"),
    ("pastoral", "pastoral_utility_score"),
    ("teaching utility", "pastoral_utility_score"),
    ("longevity", "doctrinal_drift_risk_score"),
    ("stability & longevity", "doctrinal_drift_risk_score"),
)


def clamp_score(value: float) -> float:
    """Clamp a raw criterion score into [1.0, 10.0]."""
    return max(MIN_SCORE, min(MAX_SCORE, value))


class Rubric:
    """Immutable registry of rubric criteria.

    Built once and handed by reference to the parser, the evaluator and the
    prompt composer, so all three agree on index, key and keyword mapping.
    """

    def __init__(
        self,
        criteria: tuple[RubricCriterion, ...],
        keywords: tuple[tuple[str, str], ...],
    ) -> None:
        ids = [c.id for c in criteria]
        if ids != list(range(1, len(criteria) + 1)):
            raise ValueError(f"Rubric ids must be 1..{len(criteria)} in order, got {ids}")
        self._criteria = criteria
        self._by_id: Mapping[int, RubricCriterion] = MappingProxyType({c.id: c for c in criteria})
        self._by_key: Mapping[str, RubricCriterion] = MappingProxyType(
            {c.key: c for c in criteria}
        )
        unknown = [k for _, k in keywords if k not in self._by_key]
        if unknown:
            raise ValueError(f"Keyword table references unknown keys: {unknown}")
        self._keywords = keywords

    def __iter__(self) -> Iterator[RubricCriterion]:
        return iter(self._criteria)

    def __len__(self) -> int:
        return len(self._criteria)

    @property
    def keys(self) -> tuple[str, ...]:
        return tuple(c.key for c in self._criteria)

    @property
    def keywords(self) -> tuple[tuple[str, str], ...]:
        return self._keywords

    def by_id(self, criterion_id: int) -> RubricCriterion | None:
        return self._by_id.get(criterion_id)

    def by_key(self, key: str) -> RubricCriterion | None:
        return self._by_key.get(key)

    def match_label(self, label: str) -> str | None:
        """Return the criterion key whose keyword occurs in *label*."""
        lowered = label.strip().lower()
        for keyword, key in self._keywords:
            if keyword in lowered:
                return key
        return None

    def missing(self, scores: Mapping[str, float]) -> list[str]:
        return [k for k in self.keys if k not in scores]

    def is_complete(self, scores: Mapping[str, float]) -> bool:
        return not self.missing(scores)

    def require_complete(self, scores: Mapping[str, float]) -> dict[str, float]:
        """Return *scores* restricted to rubric keys, or raise if any is absent."""
        missing = self.missing(scores)
        if missing:
            raise IncompleteScoreSetError(missing)
        return {k: float(scores[k]) for k in self.keys}

    def fill_missing(self, scores: Mapping[str, float], value: float) -> dict[str, float]:
        """Return a complete ScoreSet, using *value* for absent criteria."""
        return {k: float(scores[k]) if k in scores else value for k in self.keys}


def build_default_rubric() -> Rubric:
    criteria = tuple(
        RubricCriterion(id=cid, slug=slug, key=key, name=name)
        for cid, slug, key, name in _CRITERIA
    )
    return Rubric(criteria, _KEYWORDS)


DEFAULT_RUBRIC = build_default_rubric()
