from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(slots=True)
class PromoRedeemResult:
    redemption_id: UUID
    granted_plan: str
    period_end: datetime
    subscription_id: int
    current_uses: int
