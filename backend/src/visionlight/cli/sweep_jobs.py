"""CLI command for settling stuck generation jobs.

Runs the same sweep the API process runs in the background: stale NEW jobs
are failed and refunded, PROCESSING jobs are polled and finalized, failed or
timed out.

Usage:
    python -m visionlight.cli [OPTIONS]

Examples:
    # Single pass, then exit
    python -m visionlight.cli --once

    # Keep sweeping until interrupted
    python -m visionlight.cli --loop

    # Verbose logging
    python -m visionlight.cli -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from visionlight.core import timezone  # noqa: F401
from visionlight.core.config import Settings, configure_logging
from visionlight.core.database import setup_db_session
from visionlight.services.orchestrator import build_orchestrator
from visionlight.uow import create_uow_factory
from visionlight.workers.job_sweep_worker import run_job_sweep_worker, sweep_once

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Poll in-flight generation jobs and settle stuck ones",
        epilog="Every debited job ends delivered or refunded",
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--once",
        action="store_true",
        default=True,
        help="Run a single sweep pass and exit (default)",
    )
    mode.add_argument(
        "--loop",
        action="store_true",
        help="Sweep continuously at SWEEP_INTERVAL_SECONDS",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (pass completed with per-job errors)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)
    orchestrator = build_orchestrator(settings, uow_factory)

    logger.info("cli.started", mode="loop" if args.loop else "once")

    try:
        if args.loop:
            await run_job_sweep_worker(orchestrator, settings)
            return 0

        stats = await sweep_once(orchestrator, settings)

        print("\n" + "=" * 60)
        print("Job Sweep Summary")
        print("=" * 60)
        print(f"Stale submissions failed: {stats.stale_failed}")
        print(f"Jobs polled: {stats.polled}")
        print(f"Jobs completed: {stats.ready}")
        print(f"Jobs failed: {stats.failed}")
        print(f"Poll errors: {stats.errors}")
        print("=" * 60 + "\n")

        return 2 if stats.errors else 0

    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nSweep interrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error(
            "cli.unexpected_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
