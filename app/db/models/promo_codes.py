from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    BOOLEAN,
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.models.base import Base


class PromoCode(Base):
    __tablename__ = "promo_codes"
    __table_args__ = (
        CheckConstraint(
            "plan_type IN ('premium','lifetime')",
            name="ck_promo_codes_plan_type",
        ),
        CheckConstraint(
            "duration_days IS NULL OR duration_days > 0",
            name="ck_promo_codes_duration_days_positive",
        ),
        CheckConstraint("max_uses > 0", name="ck_promo_codes_max_uses_positive"),
        CheckConstraint("current_uses >= 0", name="ck_promo_codes_current_uses_non_negative"),
        CheckConstraint(
            "current_uses <= max_uses",
            name="ck_promo_codes_current_uses_le_max",
        ),
        CheckConstraint("code = upper(code)", name="ck_promo_codes_code_normalized"),
        UniqueConstraint("code", name="uq_promo_codes_code"),
        Index("idx_promo_codes_expires_at", "expires_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    is_active: Mapped[bool] = mapped_column(BOOLEAN, nullable=False, server_default=text("true"))
    plan_type: Mapped[str] = mapped_column(String(16), nullable=False)
    duration_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_uses: Mapped[int] = mapped_column(Integer, nullable=False)
    current_uses: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
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
