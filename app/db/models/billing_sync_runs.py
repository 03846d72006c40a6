from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class BillingSyncRun(Base):
    __tablename__ = "billing_sync_runs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('OK','PARTIAL','FAILED')",
            name="ck_billing_sync_runs_status",
        ),
        Index("idx_billing_sync_runs_started_at", "started_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    triggered_by_user_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=True,
    )
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    synced_subscriptions: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    synced_payments: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    skipped_records: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
