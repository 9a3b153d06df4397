"""Async task definitions for document processing.

Uses arq (async Redis queue) to run the document pipeline in a background
worker. Job status is kept in Redis under "job:<id>" for 24 hours.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from arq.connections import RedisSettings
from pydantic import BaseModel

from receiptflow.invoice.normalizer import to_raw
from receiptflow.pipeline.processor import (
    DocumentProcessor,
    ProcessingStatus,
    build_processor,
)
from receiptflow.sheets.projector import Actor
from receiptflow.shared.config import get_settings

logger = logging.getLogger(__name__)

JOB_TTL_SECONDS = 86400


def job_key(job_id: str) -> str:
    return f"job:{job_id}"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobResult(BaseModel):
    """Result of a background job.

    Attributes:
        job_id: Unique job identifier
        status: Job status (pending, processing, completed, failed)
        outcome: Pipeline outcome (processed, quota_exceeded, ...)
        reply: Reply text for the sender
        invoice: Extracted invoice in payload form
        image_url: Link to the stored document
        rows_appended: Number of sheet rows written
        error: Short error description (if failed)
        created_at: Job creation timestamp
        completed_at: Job completion timestamp
    """

    job_id: str
    status: str
    outcome: str | None = None
    reply: str | None = None
    invoice: dict[str, Any] | None = None
    image_url: str | None = None
    rows_appended: int = 0
    error: str | None = None
    created_at: str
    completed_at: str | None = None


async def process_document(
    ctx: dict[str, Any],
    job_id: str,
    file_content: bytes,
    content_type: str,
    user_id: str,
    display_name: str = "",
    tenant: str | None = None,
) -> dict[str, Any]:
    """Run one document through the pipeline.

    Args:
        ctx: arq context (contains redis connection and the processor)
        job_id: Unique job identifier
        file_content: Raw document bytes
        content_type: MIME type
        user_id: Sender id
        display_name: Sender display name
        tenant: Tenant to bill, resolved from the directory when omitted

    Returns:
        JobResult as dict
    """
    logger.info(f"Processing document job {job_id} for user {user_id}")

    processor: DocumentProcessor = ctx["processor"]
    redis = ctx["redis"]

    result = JobResult(job_id=job_id, status="processing", created_at=utc_now())
    await redis.set(job_key(job_id), result.model_dump_json(), ex=JOB_TTL_SECONDS)

    try:
        # The pipeline does blocking HTTP calls
        outcome = await asyncio.to_thread(
            processor.process,
            file_content,
            content_type,
            Actor(id=user_id, display_name=display_name),
            tenant,
        )
        result.outcome = outcome.status.value
        result.reply = outcome.reply
        result.image_url = outcome.image_url
        result.rows_appended = outcome.rows_appended
        if outcome.invoice is not None:
            result.invoice = to_raw(outcome.invoice)
        if outcome.status is ProcessingStatus.PROCESSED:
            result.status = "completed"
        else:
            result.status = "failed"
            result.error = outcome.error or outcome.status.value
    except Exception as e:
        logger.exception(f"Job {job_id} failed with error: {e}")
        result.status = "failed"
        result.error = type(e).__name__

    result.completed_at = utc_now()
    await redis.set(job_key(job_id), result.model_dump_json(), ex=JOB_TTL_SECONDS)
    logger.info(f"Job {job_id} completed with status: {result.status}")

    return result.model_dump()


async def startup(ctx: dict[str, Any]) -> None:
    """Build one processor per worker; jobs share its ledger cache and receipt ids."""
    settings = get_settings()
    ctx["settings"] = settings
    ctx["processor"] = build_processor(settings)
    logger.info(f"Receipt worker ready (provider={settings.extraction_provider})")


async def shutdown(ctx: dict[str, Any]) -> None:
    logger.info("Receipt worker stopping")


class WorkerSettings:
    """arq settings for the receipt worker.

    Redis location and concurrency come from Settings; see
    ``receiptflow.queue.worker.configure_worker``.
    """

    functions = [process_document]
    on_startup = startup
    on_shutdown = shutdown

    redis_settings: RedisSettings | None = None
    max_jobs = 10
    job_timeout = 300

    @classmethod
    def get_redis_settings(cls) -> RedisSettings:
        """Parse APP_REDIS_URL into arq connection settings."""
        return RedisSettings.from_dsn(get_settings().redis_url)
