"""Command-line entry point for verse optimization and evaluation."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Sequence

from .persistence import PersistenceError, ResultPersister, SQLiteResultStore
from .provider import StubLLMProvider
from .provider_factory import ProviderFactory
from .service import OptimizationRequest, OptimizationResponse, VerseOptimizer
from .telemetry import TelemetryConfig, configure_tracing

_log = logging.getLogger(__name__)

STUB_WARNING = "stub provider in use; output is canned and was not stored"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jubilee-refine",
        description="Refine and score Bible verse translations against the 20-criterion rubric",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    for name, help_text in (
        ("optimize", "iterate until the target score or the pass budget is reached"),
        ("evaluate", "single structured pass: translate, score and store"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("document_id", help='verse reference, e.g. "genesis 1:1"')
        cmd.add_argument("text", help="current verse text")
        cmd.add_argument("--fine-tune", default=None, help="extra instructions for the translator")
        cmd.add_argument(
            "--db",
            default=os.environ.get("JUBILEE_DB_PATH"),
            help="SQLite result store path (default: $JUBILEE_DB_PATH, none to skip storing)",
        )
        cmd.add_argument("--json", action="store_true", help="print the full response as JSON")
    return parser


def _print_result(response: OptimizationResponse) -> None:
    """Format and print an optimization response."""
    total = response.final_aggregate
    print(f"  {response.final_text}")
    print(
        f"  Score: {total.total}/1000 ({total.grade}) "
        f"target {'met' if response.target_met else 'not met'} "
        f"after {response.iterations} pass(es)"
    )
    print(f"  Source: {response.source_language} ({response.corpus.upper()})")
    print(f"  Perspective: {response.author_perspective}")
    for item in response.iteration_history:
        print(f"    #{item.iteration}: {item.aggregate_total} ({item.grade})")
    for warning in response.warnings:
        print(f"  Warning: {warning}")


async def _run(args: argparse.Namespace) -> OptimizationResponse:
    provider = ProviderFactory.create(fallback=True)
    _log.info("Provider: %s", ProviderFactory.describe(provider))

    # Canned stub output is never stored as a verse's final text.
    stub = isinstance(provider, StubLLMProvider)
    if stub and args.db:
        _log.warning("Stub provider in use, not storing results in %s", args.db)
    persister: ResultPersister | None = None
    if args.db and not stub:
        persister = SQLiteResultStore(args.db)

    optimizer = VerseOptimizer.from_env(persister=persister, provider=provider)
    request = OptimizationRequest(
        document_id=args.document_id,
        current_text=args.text,
        fine_tune_instructions=args.fine_tune,
    )
    try:
        if args.command == "optimize":
            response = await optimizer.optimize(request)
        else:
            response = await optimizer.evaluate(request)
    finally:
        if isinstance(persister, SQLiteResultStore):
            persister.close()

    if stub:
        response.warnings.append(STUB_WARNING)
    return response


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``jubilee-refine`` command."""
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=os.environ.get("JUBILEE_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        tracer = configure_tracing(TelemetryConfig.from_env())
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    try:
        response = asyncio.run(_run(args))
    except (ValueError, PersistenceError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    finally:
        tracer.shutdown()

    if args.json:
        print(response.model_dump_json(indent=2))
    else:
        _print_result(response)
    return 0


if __name__ == "__main__":
    sys.exit(main())
