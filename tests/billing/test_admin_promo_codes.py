from __future__ import annotations

from types import SimpleNamespace

import pytest

from app.billing.admin import promo_codes as admin_promo_codes
from app.billing.admin.errors import (
    AdminForbiddenError,
    AdminInvalidPlanError,
    AdminPromoCodeExistsError,
    AdminPromoCodeInvalidError,
    AdminTargetNotFoundError,
)
from app.billing.admin.promo_codes import PromoCodeAdminService
from tests.billing.billing_fakes import OWNER_ID, USER_ID, make_user

ADMIN = make_user(user_id=OWNER_ID, email="admin@example.com", role="admin")
REGULAR = make_user(user_id=USER_ID)


class _FlushSession:
    def __init__(self) -> None:
        self.flushes = 0

    async def flush(self) -> None:
        self.flushes += 1


@pytest.fixture
def created_codes(monkeypatch) -> list[dict[str, object]]:
    created: list[dict[str, object]] = []

    async def _try_create_code(session, **kwargs):
        if kwargs["code"] == "TAKEN":
            return None
        created.append(kwargs)
        return SimpleNamespace(id=len(created), **kwargs)

    monkeypatch.setattr(admin_promo_codes.PromoRepo, "try_create_code", _try_create_code)
    return created


@pytest.mark.asyncio
async def test_create_code_normalizes_before_insert(created_codes) -> None:
    promo_code = await PromoCodeAdminService.create_code(
        object(),
        caller=ADMIN,
        code="  spring-50 ",
        plan_type="premium",
        max_uses=25,
        duration_days=30,
    )

    assert promo_code.id == 1
    assert created_codes[0]["code"] == "SPRING50"
    assert created_codes[0]["duration_days"] == 30
    assert created_codes[0]["max_uses"] == 25


@pytest.mark.asyncio
async def test_lifetime_code_drops_duration(created_codes) -> None:
    await PromoCodeAdminService.create_code(
        object(),
        caller=ADMIN,
        code="FOREVER",
        plan_type="lifetime",
        max_uses=1,
        duration_days=90,
    )

    assert created_codes[0]["duration_days"] is None


@pytest.mark.asyncio
async def test_duplicate_code_is_rejected(created_codes) -> None:
    with pytest.raises(AdminPromoCodeExistsError):
        await PromoCodeAdminService.create_code(
            object(),
            caller=ADMIN,
            code="taken",
            plan_type="premium",
            max_uses=5,
        )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("code", "plan_type", "max_uses", "error"),
    [
        ("   ", "premium", 5, AdminPromoCodeInvalidError),
        ("VALID", "premium", 0, AdminPromoCodeInvalidError),
        ("VALID", "none", 5, AdminInvalidPlanError),
    ],
)
async def test_invalid_code_input_is_rejected(created_codes, code, plan_type, max_uses, error) -> None:
    with pytest.raises(error):
        await PromoCodeAdminService.create_code(
            object(),
            caller=ADMIN,
            code=code,
            plan_type=plan_type,
            max_uses=max_uses,
        )

    assert created_codes == []


@pytest.mark.asyncio
async def test_regular_user_cannot_manage_codes(created_codes) -> None:
    with pytest.raises(AdminForbiddenError):
        await PromoCodeAdminService.create_code(
            object(),
            caller=REGULAR,
            code="NOPE",
            plan_type="premium",
            max_uses=5,
        )
    with pytest.raises(AdminForbiddenError):
        await PromoCodeAdminService.list_codes(object(), caller=None)


@pytest.mark.asyncio
async def test_list_codes_clamps_limit(monkeypatch) -> None:
    captured: dict[str, object] = {}

    async def _list_codes(session, *, is_active, limit):
        captured.update(is_active=is_active, limit=limit)
        return []

    monkeypatch.setattr(admin_promo_codes.PromoRepo, "list_codes", _list_codes)

    result = await PromoCodeAdminService.list_codes(
        object(),
        caller=ADMIN,
        is_active=True,
        limit=5000,
    )

    assert result == []
    assert captured == {"is_active": True, "limit": admin_promo_codes.MAX_LIST_LIMIT}


@pytest.mark.asyncio
async def test_set_active_flushes_only_on_change(monkeypatch) -> None:
    promo_code = SimpleNamespace(id=7, is_active=True)

    async def _get_code_by_id_for_update(session, promo_code_id):
        return promo_code if promo_code_id == 7 else None

    monkeypatch.setattr(
        admin_promo_codes.PromoRepo,
        "get_code_by_id_for_update",
        _get_code_by_id_for_update,
    )
    session = _FlushSession()

    await PromoCodeAdminService.set_active(session, caller=ADMIN, promo_code_id=7, is_active=True)
    assert session.flushes == 0

    await PromoCodeAdminService.set_active(session, caller=ADMIN, promo_code_id=7, is_active=False)
    assert promo_code.is_active is False
    assert session.flushes == 1

    with pytest.raises(AdminTargetNotFoundError):
        await PromoCodeAdminService.set_active(session, caller=ADMIN, promo_code_id=8, is_active=True)
