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
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint(
            "payment_type IN ('one_time','recurring')",
            name="ck_payments_payment_type",
        ),
        CheckConstraint("amount >= 0", name="ck_payments_amount_non_negative"),
        UniqueConstraint(
            "stripe_payment_intent_id",
            name="uq_payments_stripe_payment_intent_id",
        ),
        Index("idx_payments_user_created", "user_id", "created_at"),
        Index("idx_payments_customer", "stripe_customer_id"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    stripe_payment_intent_id: Mapped[str] = mapped_column(String(255), nullable=False)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("users.id"),
        nullable=True,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, server_default=text("'eur'"))
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    payment_type: Mapped[str] = mapped_column(String(16), nullable=False)
    customer_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    metadata_: Mapped[dict[str, object]] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        server_default=text("'{}'::jsonb"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
