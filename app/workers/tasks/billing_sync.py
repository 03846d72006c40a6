from __future__ import annotations

from uuid import UUID

import structlog

from app.billing.services import build_billing_services
from app.core.config import get_settings
from app.db.repo.users_repo import UsersRepo
from app.db.session import SessionLocal
from app.services.user_auth import AuthenticatedUser
from app.workers.asyncio_runner import run_async_job
from app.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)


async def run_billing_sync_async(*, triggered_by_user_id: str) -> dict[str, int | str | None]:
    async with SessionLocal() as session:
        user = await UsersRepo.get_by_id(session, UUID(triggered_by_user_id))

    caller = (
        AuthenticatedUser(user_id=user.id, email=user.email, role=user.role)
        if user is not None
        else None
    )
    services = build_billing_services(get_settings())
    result = await services.billing_sync.run(caller=caller)
    logger.info("billing_sync_task_finished", triggered_by_user_id=triggered_by_user_id)
    return result.as_dict()


@celery_app.task(name="app.workers.tasks.billing_sync.run_billing_sync")
def run_billing_sync(triggered_by_user_id: str) -> dict[str, int | str | None]:
    return run_async_job(
        run_billing_sync_async(triggered_by_user_id=triggered_by_user_id),
        job_name="billing_sync",
    )
