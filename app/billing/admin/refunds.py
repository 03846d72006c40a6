from __future__ import annotations

from dataclasses import dataclass, field as dataclass_field
from datetime import datetime, timezone
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.admin.errors import AdminRefundNotAllowedError, AdminTargetNotFoundError
from app.billing.admin.service import ensure_admin
from app.billing.constants import (
    GRANT_SOURCE_STRIPE_SUBSCRIPTION,
    PAYMENT_STATUS_REFUNDED,
    REFUND_REASON_CUSTOMER,
)
from app.billing.stripe_records import customer_email_of, field, object_id, payment_intent_settled
from app.db.repo.payments_repo import PaymentsRepo
from app.db.repo.subscriptions_repo import SubscriptionsRepo
from app.db.repo.users_repo import UsersRepo
from app.services.stripe_gateway import (
    PaymentProcessorClient,
    PaymentProcessorError,
    PaymentProcessorNotFoundError,
)
from app.services.user_auth import AuthenticatedUser

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class RefundResult:
    refund_id: str
    payment_intent_id: str
    amount: int
    currency: str | None
    user_id: UUID | None
    canceled_subscription_ids: list[str] = dataclass_field(default_factory=list)


class RefundService:
    """Refunds a settled payment and withdraws the buyer's access."""

    def __init__(self, *, processor: PaymentProcessorClient) -> None:
        self._processor = processor

    async def refund_payment(
        self,
        session: AsyncSession,
        *,
        caller: AuthenticatedUser | None,
        payment_intent_id: str,
        now_utc: datetime | None = None,
    ) -> RefundResult:
        admin = ensure_admin(caller)
        now_utc = now_utc or datetime.now(timezone.utc)
        try:
            payment_intent = await self._processor.retrieve_payment_intent(payment_intent_id)
        except PaymentProcessorNotFoundError as exc:
            raise AdminTargetNotFoundError from exc
        if not payment_intent_settled(payment_intent):
            raise AdminRefundNotAllowedError

        refund = await self._processor.create_refund(
            payment_intent_id,
            reason=REFUND_REASON_CUSTOMER,
        )
        logger.info(
            "admin_refund_created",
            admin_user_id=str(admin.user_id),
            payment_intent_id=payment_intent_id,
            refund_id=field(refund, "id"),
            amount=field(refund, "amount"),
        )

        payment = await PaymentsRepo.set_status(
            session,
            stripe_payment_intent_id=payment_intent_id,
            status=PAYMENT_STATUS_REFUNDED,
        )
        user_id = payment.user_id if payment is not None else None
        if user_id is None:
            user_id = await self._user_id_from_customer(session, payment_intent)

        canceled_ids: list[str] = []
        if user_id is not None:
            canceled = await SubscriptionsRepo.cancel_all_for_user(
                session,
                user_id=user_id,
                canceled_at=now_utc,
            )
            canceled_ids = [row.stripe_subscription_id for row in canceled]
            for row in canceled:
                if row.grant_source == GRANT_SOURCE_STRIPE_SUBSCRIPTION:
                    await self._cancel_processor_subscription(row.stripe_subscription_id)
        else:
            logger.warning("admin_refund_user_unresolved", payment_intent_id=payment_intent_id)

        return RefundResult(
            refund_id=field(refund, "id"),
            payment_intent_id=payment_intent_id,
            amount=int(field(refund, "amount", field(payment_intent, "amount", 0))),
            currency=field(refund, "currency", field(payment_intent, "currency")),
            user_id=user_id,
            canceled_subscription_ids=canceled_ids,
        )

    async def _user_id_from_customer(
        self,
        session: AsyncSession,
        payment_intent: object,
    ) -> UUID | None:
        customer_id = object_id(field(payment_intent, "customer"))
        if customer_id is None:
            return None
        customer = await self._processor.retrieve_customer(customer_id)
        email = customer_email_of(customer)
        if email is None:
            return None
        user = await UsersRepo.get_by_email(session, email)
        return user.id if user is not None else None

    async def _cancel_processor_subscription(self, subscription_id: str) -> None:
        # The refund has already gone through, so a failed cancel is only logged.
        try:
            await self._processor.cancel_subscription(subscription_id)
        except PaymentProcessorNotFoundError:
            return
        except PaymentProcessorError as exc:
            logger.warning(
                "admin_refund_subscription_cancel_failed",
                subscription_id=subscription_id,
                error_type=type(exc).__name__,
            )
