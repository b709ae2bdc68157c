"""Command line interface for the booklens analysis pipeline."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Sequence

from .analysis import AnalysisCache, BookAnalysisStore, ChunkAnalyzer, Synthesizer
from .config import BookLensConfig, load_config
from .io import DocumentUnavailableError, load_document
from .llm import ModelGateway, build_gateway
from .logs import configure_logging
from .services import DocumentQA, StyleRewriter
from .text import chunk_text

__all__ = ["build_parser", "main"]

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="booklens",
        description="Analyse, question and restyle books with a locally hosted language model.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    subparsers = parser.add_subparsers(dest="command")

    analyze = _add_command(subparsers, "analyze", "Run the full chunk analysis and synthesis for a book.")
    _register_input_arguments(analyze)
    analyze.add_argument("--book-id", dest="book_id", default=None, help="Identifier used for state and cache.")
    analyze.add_argument("--force", action="store_true", help="Re-run even if a completed analysis exists.")
    analyze.add_argument("--max-tokens", dest="max_tokens", type=_positive_int, default=None, help="Chunk budget.")
    analyze.add_argument("--min-tokens", dest="min_tokens", type=int, default=None, help="Smallest standalone chunk.")
    analyze.add_argument("--output", default=None, help="Write the result payload to this JSON file.")
    analyze.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait before cancelling the run after its current chunk.",
    )

    results = _add_command(subparsers, "results", "Show the stored analysis state for a book.")
    results.add_argument("--book-id", dest="book_id", required=True, help="Identifier used at analysis time.")

    ask = _add_command(subparsers, "ask", "Ask a question about a document.")
    _register_input_arguments(ask)
    ask.add_argument("--question", required=True, help="Question to answer.")

    rewrite = _add_command(subparsers, "rewrite", "Stream a rewrite of a document in another style.")
    _register_input_arguments(rewrite)
    rewrite.add_argument("--style", required=True, help="Target style, e.g. 'noir detective'.")

    return parser


def _add_command(subparsers: Any, name: str, help_text: str) -> argparse.ArgumentParser:
    sub = subparsers.add_parser(
        name,
        help=help_text,
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )
    _register_shared_arguments(sub)
    return sub


def _register_shared_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--model", default=None, help="Model name (defaults to OLLAMA_MODEL).")
    parser.add_argument("--api-url", dest="api_url", default=None, help="Generate endpoint (defaults to OLLAMA_API_URL).")
    parser.add_argument("--cache-dir", dest="cache_dir", default=None, help="Directory for cached analyses.")
    parser.add_argument("--verbose", action="store_true", help="Log raw model responses.")


def _register_input_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--input", required=True, help="Path to the book (.pdf, .txt or .md).")
    parser.add_argument("--first-page", dest="first_page", type=_positive_int, default=None, help="First PDF page.")
    parser.add_argument("--last-page", dest="last_page", type=_positive_int, default=None, help="Last PDF page.")


def _positive_int(token: str) -> int:
    try:
        value = int(token)
    except ValueError as exc:  # pragma: no cover - argparse formatting
        raise argparse.ArgumentTypeError(f"Invalid integer value: {token}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError("Values must be positive integers")
    return value


def _build_config(args: argparse.Namespace) -> BookLensConfig:
    return load_config().with_overrides(
        api_url=args.api_url,
        model=args.model,
        cache_dir=args.cache_dir,
        max_tokens=getattr(args, "max_tokens", None),
        min_tokens=getattr(args, "min_tokens", None),
    )


def _build_gateway(config: BookLensConfig) -> ModelGateway:
    return build_gateway(**config.gateway.gateway_kwargs())


def _build_store(config: BookLensConfig, gateway: ModelGateway) -> BookAnalysisStore:
    cache = AnalysisCache(config.store.cache_path) if config.store.persist else None
    return BookAnalysisStore(
        ChunkAnalyzer(gateway),
        Synthesizer(gateway),
        cache=cache,
        max_workers=config.store.max_workers,
    )


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _run_analyze(args: argparse.Namespace, config: BookLensConfig) -> int:
    document = load_document(args.input, book_id=args.book_id, first_page=args.first_page, last_page=args.last_page)
    chunks = chunk_text(
        document.content,
        max_tokens=config.chunking.max_tokens,
        min_tokens=config.chunking.min_tokens,
    )
    gateway = _build_gateway(config)
    store = _build_store(config, gateway)
    try:
        ack = store.start_analysis(document.book_id, chunks, document.book_info, force=args.force)
        logger.info("Analysis request for '%s': %s", document.book_id, ack["status"])
        state = store.wait(document.book_id, timeout=args.timeout)
        if state is not None and state.status.is_active and store.cancel(document.book_id):
            logger.warning("Timed out after %ss; stopping after the current chunk", args.timeout)
            store.wait(document.book_id)
        payload = store.get_results(document.book_id)
    finally:
        store.shutdown()

    logger.info("Token usage: %s", gateway.usage_tracker.summary())
    if args.output:
        output = Path(args.output).expanduser()
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        print(f"Wrote {payload['status']} analysis to {output}")
    else:
        _print_json(payload)

    if payload["status"] == "failed":
        print(f"Error: {payload.get('error')}", file=sys.stderr)
        return 1
    return 0


def _run_results(args: argparse.Namespace, config: BookLensConfig) -> int:
    gateway = _build_gateway(config)
    store = _build_store(config, gateway)
    try:
        payload = store.get_results(args.book_id)
    finally:
        store.shutdown()
    _print_json(payload)
    return 0 if payload["status"] == "completed" else 1


def _run_ask(args: argparse.Namespace, config: BookLensConfig) -> int:
    document = load_document(args.input, first_page=args.first_page, last_page=args.last_page)
    answer = DocumentQA(_build_gateway(config)).ask(document.content, args.question)
    print(answer)
    return 0


def _run_rewrite(args: argparse.Namespace, config: BookLensConfig) -> int:
    document = load_document(args.input, first_page=args.first_page, last_page=args.last_page)
    rewriter = StyleRewriter(_build_gateway(config))
    failures = 0
    for event in rewriter.rewrite(document.content, args.style):
        kind = event.get("type")
        if kind == "chunk_start":
            sys.stdout.write(f"\n\n## {event['title']} ({event['index'] + 1}/{event['total']})\n\n")
        elif kind == "token":
            sys.stdout.write(event["text"])
        elif kind == "error":
            failures += 1
            print(f"\nError: {event['message']}", file=sys.stderr)
        sys.stdout.flush()
    sys.stdout.write("\n")
    return 1 if failures else 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    command_map: dict[str, Callable[[argparse.Namespace, BookLensConfig], int]] = {
        "analyze": _run_analyze,
        "results": _run_results,
        "ask": _run_ask,
        "rewrite": _run_rewrite,
    }

    runner = command_map.get(args.command)
    if runner is None:
        parser.print_help()
        return 0

    configure_logging(verbose=args.verbose)

    try:
        config = _build_config(args)
        return runner(args, config)
    except (DocumentUnavailableError, ValueError, RuntimeError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
