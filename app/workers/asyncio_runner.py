from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import TypeVar

import structlog

from app.db.session import dispose_engine

T = TypeVar("T")

logger = structlog.get_logger(__name__)


async def _run_with_fresh_db_pool(awaitable: Awaitable[T]) -> T:
    # Each asyncio.run() gets its own loop; pooled asyncpg connections are bound to the old one.
    await dispose_engine()
    try:
        return await awaitable
    finally:
        await dispose_engine()


def run_async_job(awaitable: Awaitable[T], *, job_name: str) -> T:
    started = time.monotonic()
    try:
        return asyncio.run(_run_with_fresh_db_pool(awaitable))
    finally:
        logger.info(
            "worker_job_completed",
            job_name=job_name,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
