"""
Payment Reconciliation (Domain Logic).

Drives a Payment from creation at the gateway to a terminal state. Three
paths move a payment forward and all of them go through
`apply_provider_status`:

    create   -> provider answered the creation call
    webhook  -> provider pushed a delivery (at-least-once, unordered)
    poll     -> client asked us to check with the provider

COMPLETED and FAILED are terminal and sticky. Status changes are guarded
updates (`WHERE status = <observed>`), so racing webhook and poll calls
apply a transition exactly once and only the winner notifies.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dinetrack.app.core.caller import CallerContext
from dinetrack.app.core.exceptions import (
    InvalidArgumentError,
    ResourceNotFoundError,
    PermissionDeniedError,
    ValidationFailedError,
    UnauthenticatedError,
    UpstreamFailureError,
    ConflictError,
)
from dinetrack.app.domain.payments import gateway as gw
from dinetrack.app.domain.payments.gateway import PayChanguGateway, PaymentGatewayError
from dinetrack.app.domain.payments.signature import verify_signature
from dinetrack.app.models.enums import (
    OrderStatus,
    OrderPaymentStatus,
    PaymentMethod,
    PaymentStatus,
)
from dinetrack.app.models.establishment import Establishment
from dinetrack.app.models.order import Order
from dinetrack.app.models.payment import Payment
from dinetrack.app.models.reconciliation import PaymentReconciliationItem
from dinetrack.app.models.user import User
from dinetrack.app.schemas.payment import InitiatePaymentRequest
from dinetrack.app.services.notification_service import RealtimeNotifier, order_topic

logger = logging.getLogger("dinetrack.payments")

PROVIDER_SUCCESS = "successful"
PROVIDER_WAITING = {"pending", "initiated", "created"}
PROVIDER_PROCESSING = {"processing"}

ORDER_STATUS_FOR = {
    PaymentStatus.PROCESSING: OrderPaymentStatus.PROCESSING,
    PaymentStatus.COMPLETED: OrderPaymentStatus.PAID,
    PaymentStatus.FAILED: OrderPaymentStatus.FAILED,
}


def map_provider_status(raw_status: Optional[str]) -> Optional[PaymentStatus]:
    """
    Map a provider status onto our lifecycle.

    Returns None when the provider is still waiting on the payer.
    """
    status = (raw_status or "").strip().lower()
    if status == PROVIDER_SUCCESS:
        return PaymentStatus.COMPLETED
    if status in PROVIDER_WAITING:
        return None
    if status in PROVIDER_PROCESSING:
        return PaymentStatus.PROCESSING
    return PaymentStatus.FAILED


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PaymentInitiation:
    payment: Payment
    order_number: str
    replayed: bool = False


@dataclass
class TransitionResult:
    payment: Payment
    previous: PaymentStatus
    changed: bool

    @property
    def was_terminal(self) -> bool:
        return self.previous.is_terminal


@dataclass
class WebhookResult:
    outcome: str  # processed | already_processed | unmatched
    payment_id: Optional[str] = None
    status: Optional[PaymentStatus] = None


@dataclass
class PaymentStatusView:
    payment: Payment
    order: Order
    checked_at: datetime
    from_provider: bool = False
    provider_status: Optional[str] = None


class PaymentReconciler:
    """
    Payment lifecycle coordinator.

    Args:
        session_factory: async_sessionmaker for payment/order reads and writes
        gateway: PayChanguGateway client
        notifier: RealtimeNotifier for payment_completed events
        currency: currency of gateway payments
        callback_url: webhook URL handed to the provider
        public_app_url: base URL for the default return page
        webhook_secret: HMAC secret for webhook signatures
        allow_unsigned_webhooks: accept deliveries when no secret is configured
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        gateway: PayChanguGateway,
        notifier: RealtimeNotifier,
        currency: str = "MWK",
        callback_url: str = "",
        public_app_url: str = "",
        webhook_secret: Optional[str] = None,
        allow_unsigned_webhooks: bool = False,
    ):
        self.session_factory = session_factory
        self.gateway = gateway
        self.notifier = notifier
        self.currency = currency
        self.callback_url = callback_url
        self.public_app_url = public_app_url.rstrip("/")
        self.webhook_secret = webhook_secret
        self.allow_unsigned_webhooks = allow_unsigned_webhooks

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def initiate_payment(
        self,
        caller: CallerContext,
        request: InitiatePaymentRequest,
        idempotency_key: Optional[str] = None,
    ) -> PaymentInitiation:
        """
        Create a PENDING payment and register it with the gateway.

        A key that was already used returns the stored payment untouched,
        provided the caller may act for its payer.

        Raises:
            ResourceNotFoundError: order or payer missing
            PermissionDeniedError: caller is neither the payer nor staff
            ValidationFailedError: payer/order mismatch, order paid or cancelled, nothing due
            UpstreamFailureError: gateway rejected or unreachable (payment marked failed)
        """
        key = idempotency_key or str(uuid.uuid4())

        replay = await self._replay(caller, key)
        if replay:
            return replay

        async with self.session_factory() as session:
            order = await session.get(Order, request.order_id)
            if not order:
                raise ResourceNotFoundError("Order", request.order_id)

            payer = await session.get(User, request.payer_customer_id)
            if not payer:
                raise ResourceNotFoundError("User", request.payer_customer_id)

            if not caller.can_act_for(payer.id):
                raise PermissionDeniedError("You can only pay for your own orders")
            if order.customer_id != payer.id:
                raise ValidationFailedError("Payer is not the customer of this order")
            if order.status == OrderStatus.CANCELLED:
                raise ValidationFailedError("Order has been cancelled")
            if order.payment_status == OrderPaymentStatus.PAID:
                raise ValidationFailedError("Order is already paid")

            amount = round(order.total_amount - (order.dine_coins_used or 0), 2)
            if amount <= 0:
                raise ValidationFailedError("Nothing left to pay on this order", details={"amount_due": amount})

            establishment = await session.get(Establishment, order.establishment_id)
            phone = request.phone_number or payer.phone

            payment = Payment(
                order_id=order.id,
                payer_customer_id=payer.id,
                amount=amount,
                currency=self.currency,
                payment_method=PaymentMethod.PAYCHANGU,
                status=PaymentStatus.PENDING,
                idempotency_key=key,
                meta_data={
                    "order_number": order.order_number,
                    "table_id": order.table_id,
                    "establishment_name": establishment.name if establishment else None,
                    "customer_email": payer.email,
                    "customer_phone": phone,
                    "payment_method": request.payment_method,
                    "validated_at": utcnow_iso(),
                },
            )
            session.add(payment)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                replay = await self._replay(caller, key)
                if replay:
                    return replay
                raise ConflictError("Payment could not be created", details={"idempotency_key": key})
            await session.refresh(payment)

            order_number = order.order_number
            payload = {
                "amount": round(amount * 100),  # minor units
                "currency": self.currency,
                "payment_method": "momo" if request.payment_method == "mobile_money" else request.payment_method,
                "customer": {
                    "email": payer.email,
                    "phone_number": phone,
                    "name": payer.display_name or "Customer",
                },
                "metadata": {
                    "payment_id": payment.id,
                    "order_id": order.id,
                    "order_number": order_number,
                    "establishment_name": establishment.name if establishment else None,
                    "payer_customer_id": payer.id,
                },
                "callback_url": self.callback_url,
                "return_url": request.return_url or f"{self.public_app_url}/payment/complete?payment_id={payment.id}",
            }

        logger.info("Payment %s created for order %s, calling PayChangu", payment.id, order.id)

        try:
            data = await self.gateway.create_payment(payload, idempotency_key=key)
        except PaymentGatewayError as exc:
            await self._record_creation_failure(payment.id, exc)
            raise UpstreamFailureError(
                "Payment gateway rejected the payment",
                details={"payment_id": payment.id, "status_code": exc.status_code, "provider_response": exc.body}
            )

        await self._record_creation_success(payment.id, data)

        try:
            raw_status = gw.provider_status(data)
        except PaymentGatewayError as exc:
            # left pending; webhook or poll settles it
            logger.warning("Payment %s created with %s", payment.id, exc)
        else:
            if map_provider_status(raw_status) is not None:
                await self.apply_provider_status(payment.id, raw_status, data, source="create")

        payment, _ = await self._load(payment.id)
        return PaymentInitiation(payment=payment, order_number=order_number)

    async def _replay(self, caller: CallerContext, key: str) -> Optional[PaymentInitiation]:
        async with self.session_factory() as session:
            result = await session.execute(select(Payment).where(Payment.idempotency_key == key))
            existing = result.scalar_one_or_none()
            if not existing:
                return None
            if not caller.can_act_for(existing.payer_customer_id):
                logger.warning("Caller %s presented idempotency key of payment %s", caller.caller_id, existing.id)
                raise PermissionDeniedError("You can only pay for your own orders")
            order = await session.get(Order, existing.order_id)
        logger.info("Idempotent replay for key %s -> payment %s", key, existing.id)
        return PaymentInitiation(
            payment=existing,
            order_number=order.order_number if order else "",
            replayed=True,
        )

    async def _record_creation_failure(self, payment_id: str, exc: PaymentGatewayError) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                payment = await self._lock(session, payment_id)
                if payment.status.is_terminal:
                    return
                metadata = dict(payment.meta_data or {})
                metadata["paychangu_error"] = exc.body if exc.body is not None else str(exc)
                metadata["failed_at"] = utcnow_iso()
                payment.status = PaymentStatus.FAILED
                payment.meta_data = metadata
                await self._set_order_payment_status(session, payment.order_id, PaymentStatus.FAILED)
        logger.warning("Payment %s failed at creation: %s", payment_id, exc)

    async def _record_creation_success(self, payment_id: str, data: Dict[str, Any]) -> None:
        provider_id = gw.provider_payment_id(data)
        async with self.session_factory() as session:
            async with session.begin():
                payment = await self._lock(session, payment_id)
                metadata = dict(payment.meta_data or {})
                metadata["paychangu_response"] = data
                metadata["provider_payment_id"] = provider_id
                payment.provider_payment_id = provider_id
                payment.checkout_url = gw.checkout_url(data)
                payment.meta_data = metadata
                await session.execute(
                    update(Order)
                    .where(Order.id == payment.order_id, Order.payment_status != OrderPaymentStatus.PAID)
                    .values(payment_status=OrderPaymentStatus.PROCESSING)
                )
        logger.info("Payment %s registered at PayChangu as %s", payment_id, provider_id)

    # ------------------------------------------------------------------
    # Shared transition
    # ------------------------------------------------------------------

    async def apply_provider_status(
        self,
        payment_id: str,
        raw_status: Optional[str],
        payload: Dict[str, Any],
        source: str,
    ) -> TransitionResult:
        """
        Apply a provider-reported status to a payment and its order.

        Terminal payments are never changed. A success reported for a
        FAILED payment is queued for manual reconciliation instead.
        Webhook deliveries are appended to `provider_events` even when they
        do not move the status.
        """
        target = map_provider_status(raw_status)
        event = {"source": source, "provider_status": raw_status, "payload": payload, "received_at": utcnow_iso()}
        changed = False

        async with self.session_factory() as session:
            async with session.begin():
                payment = await self._lock(session, payment_id)
                previous = payment.status

                if previous.is_terminal:
                    if previous == PaymentStatus.FAILED and target == PaymentStatus.COMPLETED:
                        session.add(PaymentReconciliationItem(
                            provider_payment_id=payment.provider_payment_id,
                            payment_id=payment.id,
                            reason="Provider reported success for a failed payment",
                            payload=payload,
                        ))
                        logger.warning("Payment %s is failed but provider reports success; queued for review", payment.id)
                else:
                    moves = target is not None and target != previous
                    if moves or source == "webhook":
                        values = {"meta_data": self._append_event(payment.meta_data, event)}
                        if moves:
                            values["status"] = target
                        if source == "webhook":
                            values["webhook_received_at"] = datetime.now(timezone.utc)

                        result = await session.execute(
                            update(Payment)
                            .where(Payment.id == payment.id, Payment.status == previous)
                            .values(**values)
                            .execution_options(synchronize_session=False)
                        )
                        if result.rowcount == 1 and moves:
                            changed = True
                            await self._set_order_payment_status(session, payment.order_id, target)

        payment, _ = await self._load(payment_id)

        if changed:
            logger.info("Payment %s: %s -> %s via %s", payment_id, previous.value, target.value, source)
            if target == PaymentStatus.COMPLETED:
                await self.notifier.publish(
                    order_topic(payment.order_id),
                    "payment_completed",
                    {
                        "order_id": payment.order_id,
                        "payment_id": payment.id,
                        "amount": payment.amount,
                        "provider_payment_id": payment.provider_payment_id,
                        "timestamp": utcnow_iso(),
                    },
                )

        return TransitionResult(payment=payment, previous=previous, changed=changed)

    @staticmethod
    def _append_event(metadata: Optional[Dict[str, Any]], event: Dict[str, Any]) -> Dict[str, Any]:
        merged = dict(metadata or {})
        merged["provider_events"] = list(merged.get("provider_events") or []) + [event]
        return merged

    async def _set_order_payment_status(self, session: AsyncSession, order_id: str, status: PaymentStatus) -> None:
        stmt = update(Order).where(Order.id == order_id)
        if status != PaymentStatus.COMPLETED:
            # another attempt may already have paid the order
            stmt = stmt.where(Order.payment_status != OrderPaymentStatus.PAID)
        await session.execute(stmt.values(payment_status=ORDER_STATUS_FOR[status]))

    # ------------------------------------------------------------------
    # Webhook
    # ------------------------------------------------------------------

    async def handle_webhook(self, body: bytes, signature: Optional[str]) -> WebhookResult:
        """
        Process one provider delivery.

        Raises:
            UnauthenticatedError: bad or missing signature
            InvalidArgumentError: body is not JSON, lacks a payment id or carries an unreadable status
        """
        if not verify_signature(body, signature, self.webhook_secret, self.allow_unsigned_webhooks):
            logger.error("Invalid webhook signature")
            raise UnauthenticatedError("Invalid webhook signature")

        try:
            data = json.loads(body)
        except ValueError:
            raise InvalidArgumentError("Invalid JSON payload")
        if not isinstance(data, dict):
            raise InvalidArgumentError("Invalid JSON payload")

        provider_id = gw.provider_payment_id(data)
        if not provider_id:
            raise InvalidArgumentError("No provider payment ID in webhook")
        try:
            raw_status = gw.provider_status(data)
        except PaymentGatewayError:
            raise InvalidArgumentError("Invalid payment status in webhook", details={"provider_payment_id": provider_id})

        logger.info("Webhook received for %s with status %s", provider_id, raw_status)

        payment = await self._find_by_provider_id(provider_id)
        if not payment:
            await self._queue_unmatched(provider_id, data)
            return WebhookResult(outcome="unmatched")

        if payment.status == PaymentStatus.COMPLETED and map_provider_status(raw_status) == PaymentStatus.COMPLETED:
            logger.info("Payment %s already completed, ignoring duplicate webhook", payment.id)
            return WebhookResult(outcome="already_processed", payment_id=payment.id, status=payment.status)

        transition = await self.apply_provider_status(payment.id, raw_status, data, source="webhook")
        outcome = "already_processed" if transition.was_terminal else "processed"
        return WebhookResult(outcome=outcome, payment_id=payment.id, status=transition.payment.status)

    async def _find_by_provider_id(self, provider_id: str) -> Optional[Payment]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Payment).where(Payment.provider_payment_id == provider_id).limit(1)
            )
            payment = result.scalar_one_or_none()
            if payment:
                return payment

            # fallback: id only recorded in metadata
            result = await session.execute(
                select(Payment)
                .where(Payment.meta_data["provider_payment_id"].as_string() == provider_id)
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def _queue_unmatched(self, provider_id: str, data: Dict[str, Any]) -> None:
        amount = data.get("amount")
        async with self.session_factory() as session:
            async with session.begin():
                session.add(PaymentReconciliationItem(
                    provider_payment_id=provider_id,
                    reason="Payment record not found",
                    payload={
                        "webhook_data": data,
                        "amount": amount / 100 if isinstance(amount, (int, float)) else None,
                        "currency": data.get("currency") or self.currency,
                        "processed_at": utcnow_iso(),
                    },
                ))
        logger.error("Payment not found for provider ID %s; queued for manual reconciliation", provider_id)

    # ------------------------------------------------------------------
    # Poll
    # ------------------------------------------------------------------

    async def check_status(self, caller: CallerContext, payment_id: str) -> PaymentStatusView:
        """
        Return the payment's status, asking the provider when it is not final.

        Gateway failures fall back to the stored state.
        """
        payment, order = await self._load(payment_id)
        if not caller.can_act_for(order.customer_id) and caller.caller_id != payment.payer_customer_id:
            raise PermissionDeniedError("You do not have permission to view this payment")

        if payment.status.is_terminal or not payment.provider_payment_id:
            return PaymentStatusView(payment=payment, order=order, checked_at=datetime.now(timezone.utc))

        try:
            data = await self.gateway.get_payment(payment.provider_payment_id)
            raw_status = gw.provider_status(data)
        except PaymentGatewayError as exc:
            logger.warning("Status check with PayChangu failed for %s: %s", payment.id, exc)
            return PaymentStatusView(payment=payment, order=order, checked_at=datetime.now(timezone.utc))

        target = map_provider_status(raw_status)
        if target is not None and target != payment.status:
            await self.apply_provider_status(payment.id, raw_status, data, source="poll")
            payment, order = await self._load(payment.id)

        return PaymentStatusView(
            payment=payment,
            order=order,
            checked_at=datetime.now(timezone.utc),
            from_provider=True,
            provider_status=raw_status,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _lock(self, session: AsyncSession, payment_id: str) -> Payment:
        result = await session.execute(select(Payment).where(Payment.id == payment_id).with_for_update())
        payment = result.scalar_one_or_none()
        if not payment:
            raise ResourceNotFoundError("Payment", payment_id)
        return payment

    async def _load(self, payment_id: str) -> Tuple[Payment, Order]:
        async with self.session_factory() as session:
            payment = await session.get(Payment, payment_id)
            if not payment:
                raise ResourceNotFoundError("Payment", payment_id)
            order = await session.get(Order, payment.order_id)
        return payment, order
