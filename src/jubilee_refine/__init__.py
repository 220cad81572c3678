"""Jubilee Refine -- iterative verse translation refinement and rubric scoring."""

from __future__ import annotations

__version__ = "0.1.0"

from .config import JUBILEE_PRESET, RefinementConfig
from .evaluator import FALLBACK_SCORES, EvaluationError, RubricEvaluator, ScoreSource
from .loop import (
    IterationRecord,
    RefinementLoop,
    RefinementOutcome,
    RefinementSession,
    SessionState,
    reduce_best,
)
from .openai_provider import OpenAIProvider
from .parsing import ParsedResponse, ParserThresholds, ResponseParser
from .persistence import (
    InMemoryResultStore,
    PersistenceError,
    ResultPersister,
    SQLiteResultStore,
    StoredResult,
)
from .prompting import OutputMode, PromptComposer, find_weaknesses, load_prompt_template
from .provider import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatRole,
    GenerationClient,
    GenerationError,
    GenerationRequest,
    LLMProvider,
    StubLLMProvider,
    TokenUsage,
)
from .provider_factory import ProviderFactory
from .rubric import DEFAULT_RUBRIC, IncompleteScoreSetError, Rubric, RubricCriterion
from .scoring import (
    AggregateScore,
    Grade,
    aggregate,
    aggregate_from_total,
    grade_for_total,
    improvements,
    score_breakdown,
)
from .service import (
    IterationSummary,
    OptimizationRequest,
    OptimizationResponse,
    VerseOptimizer,
)
from .telemetry import RefineTracer, TelemetryConfig
from .testament import ContextMetadata, Corpus, TestamentClassifier, VerseReference

__all__ = [
    "AggregateScore",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "ChatRole",
    "ContextMetadata",
    "Corpus",
    "DEFAULT_RUBRIC",
    "EvaluationError",
    "FALLBACK_SCORES",
    "GenerationClient",
    "GenerationError",
    "GenerationRequest",
    "Grade",
    "IncompleteScoreSetError",
    "InMemoryResultStore",
    "IterationRecord",
    "IterationSummary",
    "JUBILEE_PRESET",
    "LLMProvider",
    "OpenAIProvider",
    "OptimizationRequest",
    "OptimizationResponse",
    "OutputMode",
    "ParsedResponse",
    "ParserThresholds",
    "PersistenceError",
    "PromptComposer",
    "ProviderFactory",
    "RefineTracer",
    "RefinementConfig",
    "RefinementLoop",
    "RefinementOutcome",
    "RefinementSession",
    "ResponseParser",
    "ResultPersister",
    "Rubric",
    "RubricCriterion",
    "RubricEvaluator",
    "SQLiteResultStore",
    "ScoreSource",
    "SessionState",
    "StoredResult",
    "StubLLMProvider",
    "TelemetryConfig",
    "TestamentClassifier",
    "TokenUsage",
    "VerseOptimizer",
    "VerseReference",
    "aggregate",
    "aggregate_from_total",
    "find_weaknesses",
    "grade_for_total",
    "improvements",
    "load_prompt_template",
    "reduce_best",
    "score_breakdown",
]
