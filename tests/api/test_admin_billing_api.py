from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from app.api import deps
from app.api.routes import admin_billing
from app.billing.admin.errors import AdminPromoCodeExistsError, AdminTargetNotFoundError
from app.billing.admin.service import AdminGrantResult
from app.billing.sync.errors import BillingSyncForbiddenError
from app.billing.sync.types import BillingSyncResult
from app.main import app
from tests.api.api_fakes import OWNER, USER, FakeSessionLocal


class _FakeSync:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.callers: list[object] = []

    async def run(self, *, caller):
        self.callers.append(caller)
        if self.error is not None:
            raise self.error
        return BillingSyncResult(
            run_id=12,
            status="OK",
            synced_subscriptions=3,
            synced_payments=1,
            skipped_records=0,
        )


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(admin_billing, "SessionLocal", FakeSessionLocal())
    yield TestClient(app)
    app.dependency_overrides.clear()


def _authenticate(user) -> None:
    app.dependency_overrides[deps.get_current_user_optional] = lambda: user


def test_owner_can_run_sync(client, monkeypatch) -> None:
    sync = _FakeSync()
    monkeypatch.setattr(app.state, "billing_services", SimpleNamespace(billing_sync=sync))
    _authenticate(OWNER)

    response = client.post("/admin/billing/sync")

    assert response.status_code == 200
    assert response.json() == {
        "run_id": 12,
        "status": "OK",
        "synced_subscriptions": 3,
        "synced_payments": 1,
        "skipped_records": 0,
    }
    assert sync.callers == [OWNER]


def test_non_owner_sync_is_forbidden(client, monkeypatch) -> None:
    monkeypatch.setattr(
        app.state,
        "billing_services",
        SimpleNamespace(billing_sync=_FakeSync(error=BillingSyncForbiddenError())),
    )
    _authenticate(USER)

    response = client.post("/admin/billing/sync")

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}


def test_enqueue_sync_returns_task_id(client, monkeypatch) -> None:
    captured: dict[str, object] = {}

    def _fake_delay(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="task-123")

    monkeypatch.setattr(admin_billing, "run_billing_sync", SimpleNamespace(delay=_fake_delay))
    _authenticate(OWNER)

    response = client.post("/admin/billing/sync/enqueue")

    assert response.status_code == 202
    assert response.json() == {"task_id": "task-123"}
    assert captured == {"triggered_by_user_id": str(OWNER.user_id)}


def test_enqueue_sync_reports_broker_failure(client, monkeypatch) -> None:
    def _fake_delay(**kwargs):
        raise ConnectionError("broker down")

    monkeypatch.setattr(admin_billing, "run_billing_sync", SimpleNamespace(delay=_fake_delay))
    _authenticate(OWNER)

    response = client.post("/admin/billing/sync/enqueue")

    assert response.status_code == 503
    assert response.json() == {"detail": {"code": "E_SYNC_ENQUEUE_FAILED"}}


def test_enqueue_sync_is_owner_only(client, monkeypatch) -> None:
    def _fail_delay(**kwargs):
        raise AssertionError("must not enqueue")

    monkeypatch.setattr(admin_billing, "run_billing_sync", SimpleNamespace(delay=_fail_delay))
    _authenticate(USER)

    response = client.post("/admin/billing/sync/enqueue")

    assert response.status_code == 403


def test_grant_returns_period_end(client, monkeypatch) -> None:
    period_end = datetime(2026, 6, 1, 23, 59, 59, 999000, tzinfo=timezone.utc)

    async def _fake_grant_access(session, *, caller, target_user_id, plan_type, duration_days):
        assert caller == OWNER
        assert duration_days == 30
        return AdminGrantResult(
            user_id=target_user_id,
            plan_type=plan_type,
            period_end=period_end,
            subscription_id=5,
        )

    monkeypatch.setattr(admin_billing.AdminGrantService, "grant_access", _fake_grant_access)
    _authenticate(OWNER)

    response = client.post(
        "/admin/billing/grants",
        json={"user_id": str(USER.user_id), "plan_type": "premium", "duration_days": 30},
    )

    assert response.status_code == 200
    assert response.json()["user_id"] == str(USER.user_id)
    assert response.json()["plan_type"] == "premium"


def test_grant_for_unknown_user_is_not_found(client, monkeypatch) -> None:
    async def _fake_grant_access(session, **kwargs):
        raise AdminTargetNotFoundError

    monkeypatch.setattr(admin_billing.AdminGrantService, "grant_access", _fake_grant_access)
    _authenticate(OWNER)

    response = client.post(
        "/admin/billing/grants",
        json={"user_id": str(USER.user_id), "plan_type": "premium"},
    )

    assert response.status_code == 404
    assert response.json() == {"detail": {"code": "E_USER_NOT_FOUND"}}


def test_revoke_reports_outcome(client, monkeypatch) -> None:
    async def _fake_revoke_access(session, *, caller, target_user_id):
        return False

    monkeypatch.setattr(admin_billing.AdminGrantService, "revoke_access", _fake_revoke_access)
    _authenticate(OWNER)

    response = client.post("/admin/billing/grants/revoke", json={"user_id": str(USER.user_id)})

    assert response.status_code == 200
    assert response.json() == {"user_id": str(USER.user_id), "revoked": False}


def _promo_code(**overrides) -> SimpleNamespace:
    fields = {
        "id": 3,
        "code": "SPRING50",
        "plan_type": "premium",
        "duration_days": 30,
        "max_uses": 100,
        "current_uses": 0,
        "expires_at": None,
        "is_active": True,
        "created_at": datetime(2026, 4, 1, tzinfo=timezone.utc),
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


def test_create_promo_code_returns_created_view(client, monkeypatch) -> None:
    async def _fake_create_code(session, *, caller, code, plan_type, max_uses, duration_days, expires_at):
        assert caller == OWNER
        return _promo_code(code=code.upper(), max_uses=max_uses)

    monkeypatch.setattr(admin_billing.PromoCodeAdminService, "create_code", _fake_create_code)
    _authenticate(OWNER)

    response = client.post(
        "/admin/billing/promo-codes",
        json={"code": "spring50", "plan_type": "premium", "max_uses": 100, "duration_days": 30},
    )

    assert response.status_code == 201
    assert response.json()["code"] == "SPRING50"
    assert response.json()["current_uses"] == 0


def test_create_duplicate_promo_code_conflicts(client, monkeypatch) -> None:
    async def _fake_create_code(session, **kwargs):
        raise AdminPromoCodeExistsError

    monkeypatch.setattr(admin_billing.PromoCodeAdminService, "create_code", _fake_create_code)
    _authenticate(OWNER)

    response = client.post(
        "/admin/billing/promo-codes",
        json={"code": "SPRING50", "plan_type": "premium", "max_uses": 10},
    )

    assert response.status_code == 409
    assert response.json() == {"detail": {"code": "E_PROMO_CODE_EXISTS"}}


def test_list_promo_codes_passes_filter(client, monkeypatch) -> None:
    captured: dict[str, object] = {}

    async def _fake_list_codes(session, *, caller, is_active, limit):
        captured.update(is_active=is_active, limit=limit)
        return [_promo_code(is_active=False)]

    monkeypatch.setattr(admin_billing.PromoCodeAdminService, "list_codes", _fake_list_codes)
    _authenticate(OWNER)

    response = client.get("/admin/billing/promo-codes", params={"is_active": "false", "limit": 10})

    assert response.status_code == 200
    assert [item["is_active"] for item in response.json()["items"]] == [False]
    assert captured == {"is_active": False, "limit": 10}


def test_toggle_unknown_promo_code_is_not_found(client, monkeypatch) -> None:
    async def _fake_set_active(session, **kwargs):
        raise AdminTargetNotFoundError

    monkeypatch.setattr(admin_billing.PromoCodeAdminService, "set_active", _fake_set_active)
    _authenticate(OWNER)

    response = client.post("/admin/billing/promo-codes/404/active", json={"is_active": False})

    assert response.status_code == 404
    assert response.json() == {"detail": {"code": "E_PROMO_CODE_NOT_FOUND"}}


def test_latest_sync_run_is_reported(client, monkeypatch) -> None:
    run = SimpleNamespace(
        id=41,
        status="PARTIAL",
        started_at=datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc),
        finished_at=datetime(2026, 5, 1, 9, 1, tzinfo=timezone.utc),
        synced_subscriptions=7,
        synced_payments=2,
        skipped_records=1,
    )

    async def _get_latest(session):
        return run

    monkeypatch.setattr(admin_billing.BillingSyncRunsRepo, "get_latest", _get_latest)
    _authenticate(OWNER)

    response = client.get("/admin/billing/sync/latest")

    assert response.status_code == 200
    assert response.json()["run_id"] == 41
    assert response.json()["status"] == "PARTIAL"
    assert response.json()["skipped_records"] == 1


def test_latest_sync_run_missing_is_not_found(client, monkeypatch) -> None:
    async def _get_latest(session):
        return None

    monkeypatch.setattr(admin_billing.BillingSyncRunsRepo, "get_latest", _get_latest)
    _authenticate(OWNER)

    response = client.get("/admin/billing/sync/latest")

    assert response.status_code == 404
    assert response.json() == {"detail": {"code": "E_SYNC_RUN_NOT_FOUND"}}


def test_latest_sync_run_is_owner_only(client) -> None:
    _authenticate(USER)

    response = client.get("/admin/billing/sync/latest")

    assert response.status_code == 403
