from app.workers.tasks.billing_sync import run_billing_sync

__all__ = [
    "run_billing_sync",
]
