"""Prompt composition for refinement passes."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from enum import StrEnum
from pathlib import Path

from .rubric import DEFAULT_RUBRIC, Rubric
from .testament import ContextMetadata, Corpus

_log = logging.getLogger(__name__)

VERSE_PLACEHOLDER = "{{verse}}"
NO_WEAKNESSES = "No specific weaknesses identified"


class OutputMode(StrEnum):
    """What the model is asked to return."""

    RAW = "raw"  # translated text only
    STRUCTURED = "structured"  # translation + scores + recommendations


_SYSTEM_PROMPTS: dict[OutputMode, str] = {
    OutputMode.RAW: (
        "You are a master biblical translator for the Jubilee Bible project.\n"
        "Your translations must achieve 1000/1000 on all benchmark criteria.\n"
        "Return ONLY the translated verse text, nothing else."
    ),
    OutputMode.STRUCTURED: (
        "You are a master biblical translator specializing in historically faithful, "
        "covenantally accurate translations. Follow all instructions in the user prompt "
        "exactly and provide the complete structured output as specified."
    ),
}

_EXCLUSIONS = (
    "Denominational theological biases (Catholic, Protestant, Orthodox interpretive traditions)",
    "Post-biblical theological developments (Trinity formulations, etc. - unless clearly in text)",
    "Replacement theology or supersessionism",
    "Dispensationalist or other systematic theology frameworks",
    "Later rabbinic interpretations not contemporary with the author",
    "Western/Greek philosophical categories foreign to Hebrew thought",
)

# Short guidance appended to each criterion name in the prompt.
_CRITERION_HINTS: dict[int, str] = {
    1: "preserve Hebrew thought patterns",
    2: "faithful to the {language} source",
    3: "1st-century understanding",
    4: "berit, malkut, etc.",
    5: "Elohim, YHWH, Adonai",
    6: "verb aspects preserved",
    7: "clear, dignified, readable",
    8: "no thee/thou/hath",
    9: "theologically sound rendering",
    10: "Israel's role preserved",
    11: "cultural elements maintained",
    12: "accurate technical terms",
    13: "Torah and grace balanced",
    14: "unambiguous rendering",
    15: "teachable and applicable",
    16: "fits biblical storyline",
    17: "end-times elements clear",
    18: "key terms rendered consistently",
    19: "ministry-ready",
    20: "stable, enduring",
}


def _source_instructions(context: ContextMetadata) -> str:
    if context.corpus == Corpus.OLD:
        lines = [
            "SOURCE TEXT INSTRUCTIONS (Old Testament - Hebrew):",
            "- Reference the original Hebrew (Masoretic Text) as the authoritative source",
            f"- Interpret from {context.author_perspective}'s historical and cultural perspective",
            "- Preserve Hebrew idioms, thought patterns, and worldview",
            '- Use "Elohim" instead of generic "God"',
            '- Use "YHWH" or "Yahweh" for the divine name',
            "- Maintain Hebrew verb aspects (perfect/imperfect tense nuances)",
            "- Preserve Hebraic cosmology and covenant concepts",
            "- Reflect Ancient Near Eastern cultural context without anachronism",
        ]
    else:
        lines = [
            "SOURCE TEXT INSTRUCTIONS (New Testament - Greek):",
            "- Reference the original Koine Greek as the authoritative source",
            "- Interpret from first-century Jewish and apostolic perspective",
            "- Preserve Hebraic thought patterns underlying the Greek",
            '- Use "Yeshua" instead of "Jesus" where contextually appropriate',
            '- Use "Messiah" alongside or instead of "Christ" where appropriate',
            "- Maintain Jewish cultural and religious context",
            "- Reflect Second Temple Judaism understanding",
            "- Preserve apostolic teaching emphasis",
        ]
    return "\n".join(lines)


def find_weaknesses(
    scores: Mapping[str, float] | None,
    rubric: Rubric = DEFAULT_RUBRIC,
    threshold: float = 9.5,
    limit: int = 5,
) -> list[tuple[str, float]]:
    """Lowest-scoring criteria below *threshold*, ascending, at most *limit*.

    Returns ``(criterion name, raw score)`` pairs; empty when *scores* is
    ``None`` (first pass) or nothing falls below the threshold.
    """
    if not scores:
        return []
    weak: list[tuple[str, float]] = []
    for criterion in rubric:
        value = scores.get(criterion.key)
        if value is not None and value < threshold:
            weak.append((criterion.name, value))
    weak.sort(key=lambda pair: pair[1])
    return weak[:limit]


def load_prompt_template(path: str | Path | None) -> str | None:
    """Read a prompt template containing a ``{{verse}}`` placeholder.

    Returns ``None`` (and logs a warning) when the file does not exist, so
    callers fall back to the built-in prompt.
    """
    if path is None:
        return None
    template_path = Path(path)
    if not template_path.is_file():
        _log.warning("Prompt template not found, using built-in prompt: %s", template_path)
        return None
    template = template_path.read_text(encoding="utf-8")
    _log.debug("Loaded prompt template from %s", template_path)
    return template


def _fill_template(
    template: str, current_text: str, reference: str, fine_tune_text: str | None
) -> str:
    prompt = template.replace(VERSE_PLACEHOLDER, f'{reference}: "{current_text}"')
    if fine_tune_text:
        prompt += f"\n\nAdditional fine-tuning instructions: {fine_tune_text}"
    return prompt


class PromptComposer:
    """Builds the instruction text for one refinement pass.

    Stateless apart from the rubric and an optional file template; the same
    inputs always yield the same prompt.
    """

    def __init__(self, rubric: Rubric = DEFAULT_RUBRIC, template: str | None = None) -> None:
        self._rubric = rubric
        self._template = template

    @property
    def uses_template(self) -> bool:
        return self._template is not None

    def system_prompt(self, mode: OutputMode) -> str:
        if self._template is not None:
            return _SYSTEM_PROMPTS[OutputMode.STRUCTURED]
        return _SYSTEM_PROMPTS[mode]

    def compose(
        self,
        current_text: str,
        reference: str,
        context: ContextMetadata,
        weaknesses: Sequence[tuple[str, float]],
        fine_tune_text: str | None,
        iteration: int,
        mode: OutputMode = OutputMode.STRUCTURED,
    ) -> str:
        if self._template is not None:
            return _fill_template(self._template, current_text, reference, fine_tune_text)

        criteria_lines = []
        for criterion in self._rubric:
            hint = _CRITERION_HINTS.get(criterion.id, "")
            hint = hint.format(language=context.source_language)
            suffix = f" ({hint})" if hint else ""
            criteria_lines.append(f"{criterion.id}. {criterion.name}{suffix}")

        if weaknesses:
            weakness_block = "\n".join(f"- {name}: {score}/10" for name, score in weaknesses)
        else:
            weakness_block = NO_WEAKNESSES

        sections = [
            f"JUBILEE BIBLE TRANSLATION OPTIMIZATION - ITERATION {iteration}",
            "",
            "You are a master biblical translator specializing in Hebraic-roots "
            "translation methodology.",
            f"Your goal is to produce a translation scoring 99%+ across all "
            f"{len(self._rubric)} benchmark criteria.",
            "",
            "=== VERSE TO TRANSLATE ===",
            f"Reference: {reference}",
            f'Current Text: "{current_text}"',
            f"Source Language: {context.source_language}",
            f"Cultural Context: {context.cultural_context}",
            f"Author Perspective: {context.author_perspective}",
            "",
            _source_instructions(context),
            "",
            "=== EXCLUSIONS (DO NOT INCORPORATE) ===",
            *(f"- {item}" for item in _EXCLUSIONS),
            "",
            "=== BENCHMARK CRITERIA TO MAXIMIZE (all must score 9.5+ for 99%) ===",
            *criteria_lines,
            "",
            "=== CURRENT WEAKNESSES TO ADDRESS ===",
            weakness_block,
        ]

        if fine_tune_text:
            sections += [
                "",
                "=== ADDITIONAL FINE-TUNING INSTRUCTIONS ===",
                fine_tune_text,
                "",
                "Apply these specific instructions while maintaining benchmark compliance.",
            ]

        sections += ["", *self._output_requirements(mode)]
        return "\n".join(sections)

    def _output_requirements(self, mode: OutputMode) -> list[str]:
        if mode == OutputMode.RAW:
            return [
                "=== OUTPUT REQUIREMENTS ===",
                "Return ONLY the translated verse text.",
                "- No quotation marks around the output",
                "- No explanations or commentary",
                "- No verse reference in the output",
                "- Just the pure translated text",
                "",
                "TRANSLATED VERSE:",
            ]
        score_lines = [f"{c.id}. {c.name} — <score 0-1000>" for c in self._rubric]
        return [
            "=== OUTPUT REQUIREMENTS ===",
            "Respond in exactly this structure, with no other text:",
            "",
            "### Translated Verse",
            "<the translated verse text only>",
            "",
            "### Benchmark Scores (0–1000)",
            *score_lines,
            "**Aggregate Result:** <average of the scores above> / 1000",
            "",
            "### Recommendations",
            "* <one concrete recommendation per line>",
        ]
