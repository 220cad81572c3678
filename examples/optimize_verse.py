#!/usr/bin/env python3
"""optimize_verse.py — refine Genesis 1:1 with a scripted provider.

Runs one optimization session against a StubLLMProvider that answers in the
structured output contract, so the demo is deterministic and offline. The
first pass scores 930, the second 990, and the session converges.

Set JUBILEE_LLM_PROVIDER=openai (with OPENAI_API_KEY) to use the real
backend instead.

Usage:
    python examples/optimize_verse.py
"""

from __future__ import annotations

import asyncio
import os

from jubilee_refine import (
    DEFAULT_RUBRIC,
    InMemoryResultStore,
    OptimizationRequest,
    ProviderFactory,
    StubLLMProvider,
    VerseOptimizer,
)


def _scripted(translation: str, value: int) -> str:
    scores = "\n".join(f"{c.id}. {c.name} — {value}" for c in DEFAULT_RUBRIC)
    return (
        f"### Translated Verse\n{translation}\n\n"
        f"### Benchmark Scores (0–1000)\n{scores}\n\n"
        "### Recommendations\n"
        "* Keep Elohim as the rendering of the plural divine title"
    )


async def main() -> None:
    # ------------------------------------------------------------------
    # 1. Pick the provider: scripted stub unless one is configured.
    # ------------------------------------------------------------------
    if os.environ.get("JUBILEE_LLM_PROVIDER"):
        provider = ProviderFactory.create()
    else:
        provider = StubLLMProvider(
            [
                _scripted("In the beginning, Elohim created the heavens and the earth.", 930),
                _scripted("In the beginning Elohim created the heavens and the land.", 990),
            ]
        )
    print(f"Provider: {ProviderFactory.describe(provider)}")

    # ------------------------------------------------------------------
    # 2. Run the session and keep the result in memory.
    # ------------------------------------------------------------------
    store = InMemoryResultStore()
    optimizer = VerseOptimizer.from_env(persister=store, provider=provider)
    response = await optimizer.optimize(
        OptimizationRequest(
            document_id="genesis 1:1",
            current_text="In the beginning, God created the heavens and the earth.",
        )
    )

    # ------------------------------------------------------------------
    # 3. Inspect the outcome and the stored evaluation summary.
    # ------------------------------------------------------------------
    print(f"Final:   {response.final_text}")
    print(f"Score:   {response.final_aggregate.total}/1000 ({response.final_aggregate.grade})")
    print(f"Passes:  {response.iterations} ({response.state})")
    for item in response.iteration_history:
        print(f"  #{item.iteration} {item.aggregate_total} {item.grade}: {item.text}")

    stored = store.get("genesis 1:1")
    if stored is not None:
        print(f"Stored:  {stored.metadata['recommendation']}")


if __name__ == "__main__":
    asyncio.run(main())
