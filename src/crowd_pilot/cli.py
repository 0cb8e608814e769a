"""Command-line entry point.

CLI: crowd-pilot-serialize
Serializes recorded CSV sessions into training/validation JSONL.
"""

from __future__ import annotations

import argparse
import logging
import os
from collections.abc import Sequence

from . import config as defaults
from .config import SerializerConfig
from .errors import SerializerError
from .pipeline import process_all_sessions, write_jsonl_output
from .serializer import default_system_prompt
from .telemetry import TelemetryConfig, configure_tracing, shutdown_tracing
from .tokenizer import create_tokenizer

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crowd-pilot-serialize",
        description="Serialize crowd-pilot CSV sessions into JSONL conversations",
    )
    parser.add_argument("--csv-root", required=True, help="Directory containing CSV session files")
    parser.add_argument("--output-dir", required=True, help="Directory for the JSONL output")
    parser.add_argument(
        "--tokenizer",
        default="approx",
        help="'approx', 'approx:N' or a Hugging Face tokenizer name/path (default: approx)",
    )
    parser.add_argument(
        "--max-tokens-per-conversation", type=int, default=defaults.MAX_TOKENS_PER_CONVERSATION
    )
    parser.add_argument("--max-tokens-per-message", type=int, default=defaults.MAX_TOKENS_PER_MESSAGE)
    parser.add_argument(
        "--max-tokens-per-terminal-output", type=int, default=defaults.MAX_TOKENS_PER_TERMINAL_OUTPUT
    )
    parser.add_argument(
        "--min-conversation-messages", type=int, default=defaults.MIN_CONVERSATION_MESSAGES
    )
    parser.add_argument("--viewport-radius", type=int, default=defaults.VIEWPORT_RADIUS)
    parser.add_argument("--coalesce-radius", type=int, default=defaults.COALESCE_RADIUS)
    parser.add_argument("--val-ratio", type=float, default=defaults.VAL_RATIO)
    parser.add_argument(
        "--workers",
        type=int,
        default=min(8, os.cpu_count() or 1),
        help="Sessions processed in parallel",
    )
    parser.add_argument(
        "--lock-tokenizer",
        action="store_true",
        help="Serialize tokenizer calls across workers (for backends that are not thread-safe)",
    )
    parser.add_argument("--format", choices=("chat", "nemo"), default="chat", dest="output_format")
    parser.add_argument("--system-prompt", default=None, help="Override the default system prompt")
    parser.add_argument(
        "--capture-file-before-edit",
        action="store_true",
        help="Show a file's contents before its first edit",
    )
    parser.add_argument("--trace", choices=("none", "stdout", "otlp"), default=None)
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    telemetry = TelemetryConfig.from_env()
    if args.trace is not None:
        telemetry.exporter = args.trace
    configure_tracing(telemetry)

    try:
        config = SerializerConfig(
            viewport_radius=args.viewport_radius,
            coalesce_radius=args.coalesce_radius,
            max_tokens_per_message=args.max_tokens_per_message,
            max_tokens_per_terminal_output=args.max_tokens_per_terminal_output,
            max_tokens_per_conversation=args.max_tokens_per_conversation,
            min_conversation_messages=args.min_conversation_messages,
            val_ratio=args.val_ratio,
            capture_file_before_edit=args.capture_file_before_edit,
        )
        logger.info("Loading tokenizer %s", args.tokenizer)
        tokenizer = create_tokenizer(args.tokenizer)

        logger.info("Processing CSV files from %s", args.csv_root)
        batch = process_all_sessions(
            args.csv_root, tokenizer, config, max_workers=args.workers, lock_tokenizer=args.lock_tokenizer
        )

        system_prompt = args.system_prompt or default_system_prompt(config.viewport_radius)
        metadata = write_jsonl_output(
            batch.sessions,
            args.output_dir,
            val_ratio=config.val_ratio,
            system_prompt=system_prompt,
            output_format=args.output_format,
            config={
                **config.as_dict(),
                "csv_root": str(args.csv_root),
                "output_dir": str(args.output_dir),
                "tokenizer": tokenizer.name(),
            },
            failed_sessions=len(batch.failures),
        )
    except (SerializerError, FileNotFoundError, ValueError) as e:
        logger.error("%s", e)
        return 1
    finally:
        shutdown_tracing()

    counts, stats = metadata.counts, metadata.stats
    print("[summary]")  # noqa: T201
    print(f"  Total sessions processed: {counts.total_sessions}")  # noqa: T201
    print(f"  Failed sessions: {counts.failed_sessions}")  # noqa: T201
    print(f"  Train conversations: {counts.train_conversations}")  # noqa: T201
    print(f"  Val conversations: {counts.val_conversations}")  # noqa: T201
    print(f"  Total messages: {stats.total_messages}")  # noqa: T201
    print(f"  Total tokens: {stats.total_tokens}")  # noqa: T201
    print(f"  Output: {args.output_dir}")  # noqa: T201
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
