from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

SOURCE_LOCAL_GRANT = "local_grant"
SOURCE_LIVE_SUBSCRIPTION = "live_subscription"
SOURCE_LIVE_PURCHASE = "live_purchase"

MARKER_UNAUTHENTICATED = "UNAUTHENTICATED"
MARKER_TOKEN_EXPIRED = "TOKEN_EXPIRED"
MARKER_INVALID_TOKEN = "INVALID_TOKEN"


@dataclass(frozen=True, slots=True)
class EntitlementVerdict:
    plan: str
    expires_at: datetime | None = None
    source: str | None = None
    error: str | None = None

    @property
    def is_entitled(self) -> bool:
        return self.plan != "none"
