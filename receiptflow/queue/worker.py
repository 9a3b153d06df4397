"""Entry point for the receipt extraction worker.

Run with: python -m receiptflow.queue.worker [--burst]
Or: arq receiptflow.queue.tasks.WorkerSettings
"""

import argparse
import logging

from arq import run_worker

from receiptflow.queue.tasks import WorkerSettings
from receiptflow.shared.config import Settings, get_settings

logger = logging.getLogger(__name__)


def configure_worker(settings: Settings) -> type[WorkerSettings]:
    """Copy Redis and concurrency limits from settings onto WorkerSettings."""
    WorkerSettings.redis_settings = WorkerSettings.get_redis_settings()
    WorkerSettings.max_jobs = settings.queue_max_jobs
    # A job may sit through the whole fallback chain with rate-limit waits
    WorkerSettings.job_timeout = settings.queue_job_timeout
    return WorkerSettings


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Process queued receipts")
    parser.add_argument(
        "--burst",
        action="store_true",
        help="Exit once the queue is empty instead of waiting for new jobs",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    logger.info(
        f"Worker for provider={settings.extraction_provider}, "
        f"monthly limit={settings.monthly_limit}, usage backend={settings.usage_backend}"
    )
    logger.info(
        f"Redis {settings.redis_url}: max_jobs={settings.queue_max_jobs}, "
        f"timeout={settings.queue_job_timeout}s"
    )

    run_worker(configure_worker(settings), burst=args.burst)  # type: ignore[arg-type]


if __name__ == "__main__":
    main()
