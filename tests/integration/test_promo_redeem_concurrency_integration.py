from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from app.billing.promo.errors import PromoCodeAlreadyRedeemedError
from app.billing.promo.service import PromoRedemptionService
from app.db.session import SessionLocal
from tests.integration.billing_fixtures import (
    count_redemptions,
    create_promo_code,
    create_user,
    get_promo_uses,
)

UTC = timezone.utc


@pytest.mark.asyncio
async def test_parallel_redeem_collision_allows_only_one_redemption() -> None:
    now_utc = datetime.now(UTC)
    user = await create_user(email="parallel@example.com")
    promo_code_id = await create_promo_code(code="PARALLEL40", max_uses=100)
    barrier = asyncio.Event()

    async def _attempt() -> str:
        await barrier.wait()
        try:
            async with SessionLocal.begin() as session:
                await PromoRedemptionService.redeem(
                    session,
                    user=user,
                    promo_code="PARALLEL-40",
                    now_utc=now_utc,
                )
            return "accepted"
        except PromoCodeAlreadyRedeemedError:
            return "already_redeemed"

    task_1 = asyncio.create_task(_attempt())
    task_2 = asyncio.create_task(_attempt())
    barrier.set()
    outcomes = await asyncio.gather(task_1, task_2)

    assert sorted(outcomes) == ["accepted", "already_redeemed"]
    assert await count_redemptions(promo_code_id=promo_code_id, user_id=user.user_id) == 1
    assert await get_promo_uses(promo_code_id) == 1


@pytest.mark.asyncio
async def test_parallel_redeem_by_different_users_respects_max_uses() -> None:
    now_utc = datetime.now(UTC)
    first = await create_user(email="first@example.com")
    second = await create_user(email="second@example.com")
    promo_code_id = await create_promo_code(code="LASTSEAT", max_uses=1)
    barrier = asyncio.Event()

    async def _attempt(user) -> str:
        await barrier.wait()
        try:
            async with SessionLocal.begin() as session:
                await PromoRedemptionService.redeem(
                    session,
                    user=user,
                    promo_code="LASTSEAT",
                    now_utc=now_utc,
                )
            return "accepted"
        except Exception as exc:
            return type(exc).__name__

    tasks = [asyncio.create_task(_attempt(first)), asyncio.create_task(_attempt(second))]
    barrier.set()
    outcomes = await asyncio.gather(*tasks)

    assert sorted(outcomes) == ["PromoCodeDepletedError", "accepted"]
    assert await get_promo_uses(promo_code_id) == 1
