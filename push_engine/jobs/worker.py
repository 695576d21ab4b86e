"""
Generic background worker runner.

Reads the desired job name from CLI args or the WORKER_JOB environment
variable, runs that job once against a fresh database pool and exits.

    python -m push_engine.jobs.worker daily_sweep [--manual]
    python -m push_engine.jobs.worker campaign --campaign-id <id>
"""

import argparse
import asyncio
import os
from collections.abc import Awaitable, Callable

from push_engine.config import settings
from push_engine.db.pool import db_pool
from push_engine.features.push_notifications.jobs import run_campaign_job, run_daily_sweep
from push_engine.infrastructure.observability.logging import get_logger, setup_logging

logger = get_logger(__name__)

JobCoroutine = Callable[[argparse.Namespace], Awaitable[dict]]


async def _daily_sweep(args: argparse.Namespace) -> dict:
    return await run_daily_sweep(manual=args.manual)


async def _campaign(args: argparse.Namespace) -> dict:
    if not args.campaign_id:
        raise ValueError("The campaign job requires --campaign-id")
    return await run_campaign_job(args.campaign_id)


JOB_REGISTRY: dict[str, JobCoroutine] = {
    "daily_sweep": _daily_sweep,
    "campaign": _campaign,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="push_engine.jobs.worker")
    parser.add_argument("job", nargs="?", help="Job to run (defaults to WORKER_JOB)")
    parser.add_argument(
        "--manual", action="store_true", help="Ignore the daily send window"
    )
    parser.add_argument("--campaign-id", help="Campaign to send (campaign job only)")
    return parser


def _resolve_job_name(args: argparse.Namespace) -> str:
    """Pick the target job from CLI args or WORKER_JOB env variable."""
    if args.job:
        return args.job.strip().lower()
    return os.getenv("WORKER_JOB", "daily_sweep").strip().lower()


async def run_worker(job_name: str | None = None, argv: list[str] | None = None) -> dict:
    """Run the requested job once with its own database pool."""
    args = build_parser().parse_args(argv)
    name = (job_name or _resolve_job_name(args)).strip().lower()
    if name not in JOB_REGISTRY:
        raise ValueError(
            f"Unknown worker job '{name}'. "
            f"Available jobs: {', '.join(sorted(JOB_REGISTRY.keys()))}"
        )

    logger.info("Starting background worker", job=name, environment=settings.environment)

    await db_pool.initialize()
    try:
        return await JOB_REGISTRY[name](args)
    finally:
        await db_pool.close()


def main() -> None:
    """CLI entrypoint."""
    setup_logging(log_level=settings.LOG_LEVEL)
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
