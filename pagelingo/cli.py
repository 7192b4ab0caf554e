"""Command line interface for the pagelingo translator."""

from __future__ import annotations

import argparse
import asyncio
import logging
import pathlib
import re
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from .configuration import TranslationOptions, get_settings, options_from_settings
from .documents import detect_handler
from .errors import (
    ConfigurationError,
    OverwriteRefusedError,
    PagelingoError,
    TranslationProviderConfigurationError,
)
from .providers import build_backend
from .session import PageSession

logger = logging.getLogger(__name__)


@dataclass
class TranslationSummary:
    """Report returned after processing a page."""

    input_path: pathlib.Path
    output_path: pathlib.Path
    document_type: str
    total_units: int
    translated_units: int
    failed_units: int
    skipped_units: int
    total_batches: int
    total_calls: int
    provider_name: str
    model: str | None
    mode: str
    target_language: str
    source_language: str | None
    elapsed_seconds: float
    error_messages: List[str] = field(default_factory=list)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pagelingo",
        description="Translate the text of an HTML page in place, keeping its markup.",
    )
    parser.add_argument(
        "input_file",
        help="Path to the .html file to translate.",
    )
    parser.add_argument(
        "-t",
        "--target-language",
        help="Destination language code (default from configuration, zh-CN).",
    )
    parser.add_argument(
        "-s",
        "--source-language",
        help="Optional source language hint (default: auto).",
    )
    parser.add_argument(
        "-o",
        "--output",
        help="Output file path. Defaults to appending the target language code.",
    )
    parser.add_argument(
        "--mode",
        choices=["replace", "bilingual"],
        help="Replace the original text or append translations below it.",
    )
    parser.add_argument(
        "-p",
        "--provider",
        help="Translation provider identifier (openai, azure_openai or echo).",
    )
    parser.add_argument(
        "-m",
        "--model",
        help="Provider-specific model or deployment identifier.",
    )
    parser.add_argument(
        "--budget",
        type=int,
        help="Token budget per request (default: 8000).",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        help="Maximum number of concurrent backend calls (default: 6).",
    )
    parser.add_argument(
        "--no-merge",
        action="store_true",
        help="Translate every paragraph in its own request.",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        metavar="SELECTOR",
        default=[],
        help="Extra CSS selector whose content must not be translated (repeatable).",
    )
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Allow overwriting the output file if it already exists.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show detailed progress information.",
    )
    parser.add_argument(
        "--debug-provider",
        action="store_true",
        help="Log complete provider requests and responses for troubleshooting.",
    )
    return parser


def sanitise_language_for_filename(language: str) -> str:
    """Generate a filesystem-friendly suffix from a language descriptor."""

    collapsed = re.sub(r"\s+", "-", language.strip())
    ascii_only = collapsed.encode("ascii", "ignore").decode("ascii")
    cleaned = re.sub(r"[^A-Za-z0-9\-]+", "", ascii_only)
    return cleaned or "translated"


def derive_output_path(input_path: pathlib.Path, language: str) -> pathlib.Path:
    addition = sanitise_language_for_filename(language)
    return input_path.with_name(f"{input_path.stem}_{addition}{input_path.suffix}")


def validate_paths(
    input_path: pathlib.Path,
    output_path: pathlib.Path,
    force_overwrite: bool,
) -> None:
    """Validate input/output path combinations and overwrite policy."""

    if not input_path.exists():
        raise FileNotFoundError("Input file not found. Please provide a readable .html file.")
    if not input_path.is_file():
        raise PagelingoError("Input path must be a file.")

    if input_path.resolve() == output_path.resolve():
        raise OverwriteRefusedError(
            "The output path matches the input page. Refusing to overwrite the source file."
        )

    if output_path.exists() and not force_overwrite:
        raise OverwriteRefusedError(
            "The output file already exists. Rename it or use the overwrite flag."
        )


def execute_translation(
    *,
    input_file: str,
    output_file: str | None,
    options: TranslationOptions,
    force_overwrite: bool,
    settings: Any = None,
) -> tuple[int, TranslationSummary | None, str | None]:
    """Execute a translation run and return the exit code, summary, and message."""

    start_time = time.monotonic()
    input_path = pathlib.Path(input_file).expanduser().resolve()
    output_path = (
        pathlib.Path(output_file).expanduser().resolve()
        if output_file
        else derive_output_path(input_path, options.target_language)
    )

    try:
        validate_paths(input_path, output_path, force_overwrite=force_overwrite)
        document_type, document = detect_handler(input_path)
        backend = build_backend(
            options.provider, settings=settings, debug=options.provider_debug
        )
    except FileNotFoundError as exc:
        return 1, None, str(exc)
    except OverwriteRefusedError as exc:
        return 1, None, str(exc)
    except PagelingoError as exc:
        return 1, None, str(exc)

    session = PageSession(document, backend, options)
    try:
        results = asyncio.run(session.translate_page())
    except PagelingoError as exc:
        return 1, None, str(exc)
    except KeyboardInterrupt:
        return 2, None, "Translation interrupted by user."
    except Exception as exc:  # pragma: no cover - last resort for the CLI
        error_message = (
            f"{exc}\n"
            "An unexpected error occurred. Please rerun with --verbose for more details."
        )
        return 1, None, error_message

    output_path.parent.mkdir(parents=True, exist_ok=True)
    document.save(output_path)

    stats = session.get_stats()
    orchestrator_stats = session.orchestrator.stats if session.orchestrator else None
    summary = TranslationSummary(
        input_path=input_path,
        output_path=output_path,
        document_type=document_type,
        total_units=len(session.units),
        translated_units=stats["translated_count"],
        failed_units=sum(1 for result in results if not result.success),
        skipped_units=stats["skipped_count"],
        total_batches=orchestrator_stats.batches if orchestrator_stats else 0,
        total_calls=orchestrator_stats.calls if orchestrator_stats else 0,
        provider_name=getattr(backend, "name", options.provider),
        model=options.model,
        mode=options.mode.value,
        target_language=options.target_language,
        source_language=options.source_language,
        elapsed_seconds=time.monotonic() - start_time,
        error_messages=session.policy.messages(),
    )
    return 0, summary, None


def print_summary(summary: TranslationSummary) -> None:
    """Output a friendly report once processing completes."""

    print("\nTranslation complete.")
    print(f"  Input file:      {summary.input_path}")
    print(f"  Output file:     {summary.output_path}")
    print(f"  Document type:   {summary.document_type}")
    print(
        "  Paragraphs:      "
        f"{summary.translated_units} translated / {summary.total_units} total "
        f"({summary.failed_units} failed, {summary.skipped_units} skipped)"
    )
    print(f"  Requests:        {summary.total_calls} ({summary.total_batches} batches)")
    print(
        f"  Provider:        {summary.provider_name}"
        + (f" ({summary.model})" if summary.model else "")
    )
    print(f"  Mode:            {summary.mode}")
    if summary.source_language:
        print(f"  Source language: {summary.source_language}")
    print(f"  Target language: {summary.target_language}")
    print(f"  Elapsed time:    {summary.elapsed_seconds:.2f} seconds")
    if summary.error_messages:
        print("  Notes:")
        for message in summary.error_messages:
            print(f"    - {message}")


def configure_logging(verbose: bool, provider_debug: bool) -> None:
    if provider_debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def resolve_options(overrides: dict[str, Any]) -> tuple[TranslationOptions, Any]:
    """Layered settings plus command line overrides.

    The echo provider needs no credentials, so a missing configuration only
    matters for real backends.
    """

    try:
        settings = get_settings()
    except TranslationProviderConfigurationError:
        if str(overrides.get("provider") or "").lower() != "echo":
            raise
        values = {key: value for key, value in overrides.items() if value is not None}
        return TranslationOptions(**values), None
    return options_from_settings(settings, **overrides), settings


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    overrides = {
        "target_language": args.target_language,
        "source_language": args.source_language,
        "provider": args.provider,
        "model": args.model,
        "mode": args.mode,
        "token_budget": args.budget,
        "max_concurrency": args.concurrency,
        "enable_merge": False if args.no_merge else None,
        "exclude_rules": tuple(args.exclude) or None,
        "provider_debug": True if args.debug_provider else None,
    }

    try:
        options, settings = resolve_options(overrides)
    except (TranslationProviderConfigurationError, ConfigurationError) as exc:
        print(exc)
        return 1

    configure_logging(args.verbose, options.provider_debug)

    exit_code, summary, message = execute_translation(
        input_file=args.input_file,
        output_file=args.output,
        options=options,
        force_overwrite=args.force,
        settings=settings,
    )

    if message:
        print(message)
    if summary:
        print_summary(summary)
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
