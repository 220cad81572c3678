"""Score aggregation -- the single source of truth for totals and grades."""

from __future__ import annotations

import math
from collections.abc import Mapping
from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from .rubric import DEFAULT_RUBRIC, Rubric

TARGET_SCORE = 990
MAX_TOTAL = 1000
POINTS_PER_CRITERION = 50
IMPROVEMENT_THRESHOLD = 9.5

# (minimum total, grade), highest first
_GRADE_THRESHOLDS: tuple[tuple[int, str], ...] = (
    (990, "A+"),
    (900, "A"),
    (850, "B"),
    (750, "C"),
)


class Grade(StrEnum):
    A_PLUS = "A+"
    A = "A"
    B = "B"
    C = "C"
    F = "F"


class AggregateScore(BaseModel):
    """Composite 0-1000 score derived from a ScoreSet."""

    model_config = ConfigDict(frozen=True)

    total: int
    percentage: float
    grade: Grade

    @property
    def target_met(self) -> bool:
        return self.total >= TARGET_SCORE


ZERO_AGGREGATE = AggregateScore(total=0, percentage=0.0, grade=Grade.F)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def grade_for_total(total: int) -> Grade:
    """Map a 0-1000 total onto the fixed grade thresholds."""
    for minimum, grade in _GRADE_THRESHOLDS:
        if total >= minimum:
            return Grade(grade)
    return Grade.F


def aggregate_from_total(total: int) -> AggregateScore:
    """Build an AggregateScore from an already-computed total.

    Used for provider-supplied aggregates, which the loop trusts only when
    enough criteria were parsed independently.
    """
    return AggregateScore(
        total=total,
        percentage=total / MAX_TOTAL * 100,
        grade=grade_for_total(total),
    )


def aggregate(scores: Mapping[str, float], rubric: Rubric = DEFAULT_RUBRIC) -> AggregateScore:
    """Compute total, percentage and grade for a complete ScoreSet.

    Each criterion is worth up to 50 points (raw 1-10 times 5), so the total
    lands in [100, 1000]. Keys outside *rubric* are ignored.

    Raises:
        IncompleteScoreSetError: if any rubric criterion is missing.
    """
    complete = rubric.require_complete(scores)
    return aggregate_from_total(_round_half_up(sum(complete.values()) * 5))


def score_breakdown(
    scores: Mapping[str, float], rubric: Rubric = DEFAULT_RUBRIC
) -> list[dict]:
    """Per-criterion display rows: raw 1-10 score and scaled 0-50 score."""
    rows: list[dict] = []
    for criterion in rubric:
        raw = float(scores.get(criterion.key, 0.0))
        rows.append(
            {
                "number": criterion.id,
                "name": criterion.name,
                "raw_score": raw,
                "score": _round_half_up(raw * 5),
                "max_score": POINTS_PER_CRITERION,
            }
        )
    return rows


def improvements(
    scores: Mapping[str, float],
    rubric: Rubric = DEFAULT_RUBRIC,
    limit: int = 3,
    threshold: float = IMPROVEMENT_THRESHOLD,
) -> list[str]:
    """Lowest criteria below *threshold*, ascending, as ``name: NN/50`` strings."""
    weak = sorted(
        ((key, value) for key, value in scores.items() if value < threshold),
        key=lambda kv: kv[1],
    )[:limit]
    out: list[str] = []
    for key, value in weak:
        criterion = rubric.by_key(key)
        name = criterion.name if criterion else key.removesuffix("_score").replace("_", " ")
        out.append(f"{name}: {_round_half_up(value * 5)}/{POINTS_PER_CRITERION}")
    return out
