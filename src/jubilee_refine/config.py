"""Configuration for a refinement session."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields

from .prompting import OutputMode


@dataclass(frozen=True)
class RefinementConfig:
    """Knobs for the optimize loop and the fallback evaluator.

    Hard-coded defaults keep runs deterministic and auditable; the 0-1000
    scale puts the target at 99%.
    """

    target_score: int = 990
    max_iterations: int = 5
    min_parsed_scores: int = 10
    min_translation_length: int = 5
    temperature_initial: float = 0.3
    temperature_refinement: float = 0.2
    max_output_tokens: int = 4000
    model: str = "gpt-4o"
    weakness_threshold: float = 9.5
    weakness_limit: int = 5
    output_mode: OutputMode = OutputMode.STRUCTURED
    prompt_template_path: str | None = None
    evaluator_temperature: float = 0.1
    evaluator_max_tokens: int = 500

    def temperature_for(self, iteration: int) -> float:
        """Exploratory on the first pass, conservative afterwards."""
        return self.temperature_initial if iteration == 1 else self.temperature_refinement

    @classmethod
    def from_env(cls, base: RefinementConfig | None = None) -> RefinementConfig:
        """Overlay ``JUBILEE_*`` environment variables onto *base*.

        Recognised: ``JUBILEE_TARGET_SCORE``, ``JUBILEE_MAX_ITERATIONS``,
        ``JUBILEE_MAX_OUTPUT_TOKENS``, ``JUBILEE_OPENAI_MODEL``,
        ``JUBILEE_OUTPUT_MODE`` (raw | structured), ``JUBILEE_PROMPT_TEMPLATE``.
        """
        base = base or JUBILEE_PRESET
        values = {f.name: getattr(base, f.name) for f in fields(base)}

        int_vars = {
            "JUBILEE_TARGET_SCORE": "target_score",
            "JUBILEE_MAX_ITERATIONS": "max_iterations",
            "JUBILEE_MAX_OUTPUT_TOKENS": "max_output_tokens",
        }
        for env_name, attr in int_vars.items():
            raw = os.environ.get(env_name, "").strip()
            if raw:
                try:
                    values[attr] = int(raw)
                except ValueError as exc:
                    raise ValueError(f"{env_name} must be an integer, got {raw!r}") from exc

        model = os.environ.get("JUBILEE_OPENAI_MODEL", "").strip()
        if model:
            values["model"] = model

        mode = os.environ.get("JUBILEE_OUTPUT_MODE", "").strip().lower()
        if mode:
            values["output_mode"] = OutputMode(mode)

        template = os.environ.get("JUBILEE_PROMPT_TEMPLATE", "").strip()
        if template:
            values["prompt_template_path"] = template

        return cls(**values)


JUBILEE_PRESET = RefinementConfig()
