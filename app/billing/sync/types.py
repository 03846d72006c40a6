from __future__ import annotations

from dataclasses import dataclass

SYNC_STATUS_OK = "OK"
SYNC_STATUS_PARTIAL = "PARTIAL"
SYNC_STATUS_FAILED = "FAILED"


@dataclass(slots=True)
class BillingSyncResult:
    run_id: int | None
    status: str
    synced_subscriptions: int
    synced_payments: int
    skipped_records: int

    def as_dict(self) -> dict[str, int | str | None]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "synced_subscriptions": self.synced_subscriptions,
            "synced_payments": self.synced_payments,
            "skipped_records": self.skipped_records,
        }
