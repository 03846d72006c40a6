from app.workers.celery_app import celery_app
from app.workers.tasks import billing_sync


def test_billing_sync_task_is_registered() -> None:
    assert billing_sync.run_billing_sync.name == "app.workers.tasks.billing_sync.run_billing_sync"
    assert "app.workers.tasks.billing_sync.run_billing_sync" in celery_app.tasks
    assert celery_app.conf.timezone == "UTC"
