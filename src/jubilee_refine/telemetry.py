"""OpenTelemetry spans for refinement sessions.

One ``refine/session`` span per verse, a ``refine/iteration`` child per pass,
and ``refine/generate`` / ``refine/evaluate`` spans around provider calls.
Nothing is exported unless :func:`configure_tracing` selects an exporter.
"""

from __future__ import annotations

import contextlib
import os
from collections.abc import Generator
from dataclasses import dataclass
from typing import Any

from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.trace import NoOpTracer, Span, Tracer

EXPORTERS = ("none", "stdout", "otlp")


@dataclass
class TelemetryConfig:
    service_name: str = "jubilee-refine"
    exporter: str = "none"
    otlp_endpoint: str = "http://localhost:4317"

    @classmethod
    def from_env(cls) -> TelemetryConfig:
        """Read ``JUBILEE_TRACE_EXPORTER`` and ``JUBILEE_OTLP_ENDPOINT``."""
        return cls(
            exporter=os.environ.get("JUBILEE_TRACE_EXPORTER", "none").strip().lower() or "none",
            otlp_endpoint=os.environ.get("JUBILEE_OTLP_ENDPOINT", cls.otlp_endpoint),
        )


def _span_processor(config: TelemetryConfig) -> SpanProcessor | None:
    """Processor for the configured exporter, or ``None`` to stay on the noop tracer."""
    if config.exporter not in EXPORTERS:
        raise ValueError(
            f"Unknown trace exporter '{config.exporter}' ({' | '.join(EXPORTERS)})"
        )
    if config.exporter == "stdout":
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

        return SimpleSpanProcessor(ConsoleSpanExporter())
    if config.exporter == "otlp":
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
            from opentelemetry.sdk.trace.export import BatchSpanProcessor
        except ImportError:  # pragma: no cover
            # otlp extra not installed
            return None
        return BatchSpanProcessor(OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=True))
    return None


class RefineTracer:
    """Tracer for refinement spans; a noop until :meth:`init` finds an exporter."""

    def __init__(self, config: TelemetryConfig | None = None) -> None:
        self._config = config or TelemetryConfig()
        self._provider: TracerProvider | None = None
        self._tracer: Tracer = NoOpTracer()

    def init(self) -> None:
        """Install the exporter named by the config.

        Raises:
            ValueError: for an exporter name outside :data:`EXPORTERS`.
        """
        processor = _span_processor(self._config)
        if processor is None:
            return
        provider = TracerProvider(
            resource=Resource.create({"service.name": self._config.service_name})
        )
        provider.add_span_processor(processor)
        self._provider = provider
        self._tracer = provider.get_tracer(self._config.service_name)

    @contextlib.contextmanager
    def span(self, name: str, attributes: dict[str, Any]) -> Generator[Span, None, None]:
        with self._tracer.start_as_current_span(name, attributes=attributes) as current:
            yield current

    def shutdown(self) -> None:
        """Flush and drop the provider; a second call does nothing."""
        if self._provider is not None:
            self._provider.shutdown()
            self._provider = None


_DEFAULT_TRACER: RefineTracer | None = None


def get_tracer() -> RefineTracer:
    global _DEFAULT_TRACER  # noqa: PLW0603
    if _DEFAULT_TRACER is None:
        _DEFAULT_TRACER = RefineTracer()
    return _DEFAULT_TRACER


def configure_tracing(config: TelemetryConfig) -> RefineTracer:
    """Replace the process-wide tracer with one built from *config*."""
    global _DEFAULT_TRACER  # noqa: PLW0603
    tracer = RefineTracer(config)
    tracer.init()
    if _DEFAULT_TRACER is not None:
        _DEFAULT_TRACER.shutdown()
    _DEFAULT_TRACER = tracer
    return tracer


# ---------------------------------------------------------------------------
# Refinement spans
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def trace_session(reference: str, mode: str) -> Generator[Span, None, None]:
    attrs = {"refine.reference": reference, "refine.mode": mode}
    with get_tracer().span("refine/session", attrs) as span:
        yield span


@contextlib.contextmanager
def trace_iteration(iteration: int) -> Generator[Span, None, None]:
    with get_tracer().span("refine/iteration", {"refine.iteration": iteration}) as span:
        yield span


@contextlib.contextmanager
def trace_generate(provider: str, temperature: float) -> Generator[Span, None, None]:
    attrs = {"llm.provider": provider, "llm.temperature": temperature}
    with get_tracer().span("refine/generate", attrs) as span:
        yield span


@contextlib.contextmanager
def trace_evaluate(reference: str) -> Generator[Span, None, None]:
    with get_tracer().span("refine/evaluate", {"refine.reference": reference}) as span:
        yield span
