"""Digest pipeline runner script.

Runs the complete digest pipeline locally:
1. Locate and download the latest guide PDF
2. Extract events page by page (LLM)
3. Filter, bucket into this-week / rest-of-month windows
4. Persist upcoming events (SQLite)
5. Deliver the digest to Telegram or Slack (skipped with --dry-run)

Can run once or continuously with configurable interval.
"""

import argparse
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from scripts import pipeline_runtime
from event_digest.adapters.document_source import GuideDocumentSource
from event_digest.adapters.llm_client import LLMClient
from event_digest.config.logging_config import get_logger, setup_logging
from event_digest.config.settings import Settings, load_settings
from event_digest.domain.exceptions import ConfigurationError, EventDigestError
from event_digest.use_cases.run_digest import (
    DigestDependencies,
    is_run_in_progress,
    notify_configuration_failure,
    run_digest_use_case,
)

logger = get_logger(__name__)


class LoggingProgressReporter:
    """Publishes extraction progress to the structured log."""

    def update(
        self, *, progress: float | None = None, message: str | None = None
    ) -> None:
        logger.info(
            "digest_progress",
            progress=round(progress, 2) if progress is not None else None,
            message=message,
        )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Build and deliver the event digest from the latest guide",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run once and deliver
  python scripts/run_pipeline.py

  # Run once without sending anything
  python scripts/run_pipeline.py --dry-run

  # Run every 24 hours
  python scripts/run_pipeline.py --interval-seconds 86400

  # Show which units the current guide covers
  python scripts/run_pipeline.py --list-units
        """,
    )
    parser.add_argument(
        "--interval-seconds",
        type=float,
        default=None,
        help="Repeat the run at this interval (default: run once)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Extract, classify and persist, but log the digest instead of sending it",
    )
    parser.add_argument(
        "--list-units",
        action="store_true",
        help="Print the units found in the current guide and exit",
    )
    parser.add_argument(
        "--max-rounds",
        type=int,
        default=None,
        help="Override the extraction round cap",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs in JSON format",
    )
    return parser.parse_args(argv)


def list_units(settings: Settings) -> list[str]:
    """Ask the model which units the current guide covers."""
    source = GuideDocumentSource(timeout_seconds=settings.http_timeout_seconds)
    ref = source.find_latest_document(settings.source_page_url)
    payload = source.download(ref)

    client = LLMClient(
        api_key=settings.openai_api_key.get_secret_value(),
        model=settings.llm_model,
        timeout=settings.llm_timeout_seconds,
        prompt_file=settings.llm_prompt_file,
    )
    return client.extract_units(payload)


def _fail_configuration(error: ConfigurationError) -> int:
    logger.error("configuration_invalid", error=str(error))
    notify_configuration_failure(error)
    return 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        settings = load_settings()
    except ConfigurationError as e:
        setup_logging(json_logs=args.json_logs)
        return _fail_configuration(e)

    if args.max_rounds is not None:
        if args.max_rounds < 1:
            setup_logging(log_level=settings.log_level, json_logs=args.json_logs)
            return _fail_configuration(
                ConfigurationError("--max-rounds must be at least 1")
            )
        settings = settings.model_copy(update={"max_rounds": args.max_rounds})

    pipeline_runtime.initialize_logging(settings, json_logs=args.json_logs)

    if args.list_units:
        try:
            units = list_units(settings)
        except EventDigestError as e:
            logger.error("unit_listing_failed", error=str(e))
            return 1
        for unit in units:
            print(unit)
        logger.info("unit_listing_completed", units=len(units))
        return 0

    try:
        deps = DigestDependencies.from_settings(settings, dry_run=args.dry_run)
    except ConfigurationError as e:
        return _fail_configuration(e)

    progress = LoggingProgressReporter()

    def _run_iteration() -> None:
        if is_run_in_progress(deps):
            logger.warning("digest_run_skipped", reason="execution_already_running")
            return
        run_digest_use_case(settings, deps, dry_run=args.dry_run, progress=progress)

    controller = pipeline_runtime.create_shutdown_controller()
    pipeline_runtime.install_signal_handlers(controller)

    run_once = args.interval_seconds is None
    logger.info(
        "digest_pipeline_started",
        mode="single run" if run_once else "continuous",
        interval_seconds=args.interval_seconds,
        dry_run=args.dry_run,
        delivery_channel=settings.delivery_channel,
        max_rounds=settings.max_rounds,
    )

    try:
        pipeline_runtime.run_scheduler_loop(
            controller=controller,
            interval_seconds=args.interval_seconds or 0.0,
            run_once=run_once,
            action=_run_iteration,
        )
    except Exception as e:  # noqa: BLE001
        logger.error("digest_pipeline_failed", error=str(e), error_type=type(e).__name__)
        return 1

    if controller.is_set():
        logger.info("digest_pipeline_shutdown_completed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
