"""Command-line entry point for the BODS to Loki pipeline."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from contextlib import suppress
from datetime import timedelta

from bods_loki.config import PipelineConfig, Settings, get_settings, parse_duration, split_line_refs
from bods_loki.errors import PipelineError
from bods_loki.logging import get_logger, setup_logging
from bods_loki.pipeline import Pipeline

logger = get_logger(__name__)

EPILOG = """
Environment Variables:
  BODS_API_KEY        Your BODS API key (required)
  BODS_DATASET_ID     BODS dataset ID (default: 699)
  BODS_LINE_REFS      Bus line references, comma-separated (default: 49x)
  BODS_LOKI_URL       Loki URL (default: http://localhost:3100)
  BODS_LOKI_USER      Loki username (for Grafana Cloud)
  BODS_LOKI_PASSWORD  Loki password/token (for Grafana Cloud)
  BODS_INTERVAL       Polling interval (default: 30s)

Examples:
  # Dry run mode (safe for testing)
  bods-loki --dry-run --api-key=YOUR_API_KEY --line-refs=49x

  # Production mode with OSS Loki
  bods-loki --api-key=YOUR_API_KEY --line-refs=49x,7 --loki-url=http://localhost:3100

  # Production mode with Grafana Cloud
  bods-loki --api-key=YOUR_API_KEY --line-refs=49x,7 \\
    --loki-url=https://logs-prod-us-central1.grafana.net \\
    --loki-user=123456 --loki-password=your_token
"""


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bods-loki",
        description=(
            "Fetches live bus tracking data from the UK Bus Open Data Service (BODS), "
            "converts the SIRI-VM XML to JSON and sends it to Grafana Loki."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=EPILOG,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=settings.dry_run,
        help="Print data to stdout instead of sending to Loki",
    )
    parser.add_argument("--api-key", default=settings.api_key, help="BODS API key (required)")
    parser.add_argument("--dataset-id", default=settings.dataset_id, help="BODS dataset ID")
    parser.add_argument(
        "--line-refs",
        default=settings.line_refs,
        help="Bus line references, comma-separated",
    )
    parser.add_argument("--loki-url", default=settings.loki_url, help="Grafana Loki URL")
    parser.add_argument("--loki-user", default=settings.loki_user, help="Loki username")
    parser.add_argument(
        "--loki-password",
        default=settings.loki_password,
        help="Loki password/token",
    )
    parser.add_argument(
        "--interval",
        default=settings.interval,
        help="Polling interval, e.g. 30s or 1m30s",
    )
    parser.add_argument("--log-level", default=settings.log_level, help="Log level")
    return parser


def build_config(args: argparse.Namespace, settings: Settings) -> PipelineConfig:
    """Turn parsed arguments into a pipeline config.

    Raises:
        ValueError: If the interval is not a valid positive duration.
    """
    interval = parse_duration(args.interval)
    if interval <= timedelta(0):
        msg = f"interval must be positive, got {args.interval!r}"
        raise ValueError(msg)

    return PipelineConfig(
        api_key=args.api_key,
        line_refs=split_line_refs(args.line_refs),
        dataset_id=args.dataset_id,
        dry_run=args.dry_run,
        loki_url=args.loki_url,
        loki_user=args.loki_user,
        loki_password=args.loki_password,
        interval=interval,
        shutdown_grace=timedelta(seconds=settings.shutdown_grace_sec),
        http_timeout_sec=settings.http_timeout_sec,
    )


async def serve(pipeline: Pipeline) -> None:
    """Run the pipeline until SIGINT or SIGTERM."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    try:
        await pipeline.run(stop_event)
    finally:
        await pipeline.aclose()
    logger.info("BODS to Loki pipeline shutdown complete", stats=pipeline.stats.snapshot())


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    parser = build_parser(settings)
    args = parser.parse_args(argv)

    if not args.api_key:
        print(
            "Error: API key is required. Use --api-key or set BODS_API_KEY environment variable.\n",
            file=sys.stderr,
        )
        parser.print_help(sys.stderr)
        return 1

    try:
        config = build_config(args, settings)
    except ValueError as exc:
        print(f"Error: invalid interval: {exc}", file=sys.stderr)
        return 1

    setup_logging(args.log_level, settings.environment)

    try:
        pipeline = Pipeline(config)
    except PipelineError as exc:
        print(f"Error: failed to create pipeline: {exc}", file=sys.stderr)
        parser.print_usage(sys.stderr)
        return 1

    if config.dry_run:
        logger.info("Starting BODS to Loki pipeline in DRY RUN mode")
    else:
        logger.info("Starting BODS to Loki pipeline in PRODUCTION mode", loki_url=config.loki_url)

    asyncio.run(serve(pipeline))
    return 0


def cli_main() -> None:
    """Synchronous entry point for the console script."""
    sys.exit(main())


if __name__ == "__main__":
    cli_main()
