"""
Order Workflow Coordinator (Domain Logic).

Validates an order against the catalog, then persists order + items +
payment and the DineCoins debit in one transaction.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from dinetrack.app.core.caller import CallerContext
from dinetrack.app.core.exceptions import (
    ValidationFailedError,
    InsufficientBalanceError,
    ResourceNotFoundError,
    InternalError,
    TransientStoreError,
)
from dinetrack.app.domain.ledger.ledger_engine import LedgerEngine, is_retryable
from dinetrack.app.models.enums import (
    TargetType,
    OrderStatus,
    OrderPaymentStatus,
    PaymentStatus,
)
from dinetrack.app.models.establishment import Establishment
from dinetrack.app.models.ledger_entry import LedgerEntry
from dinetrack.app.models.menu_item import MenuItem
from dinetrack.app.models.order import Order, OrderItem
from dinetrack.app.models.payment import Payment
from dinetrack.app.models.user import User
from dinetrack.app.schemas.order import PlaceOrderRequest

logger = logging.getLogger("dinetrack.orders")


@dataclass
class PricedLine:
    menu_item_id: str
    quantity: int
    unit_price: float
    special_instructions: Optional[str] = None

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity


@dataclass
class PlacedOrder:
    order: Order
    payment: Payment
    item_count: int
    ledger_entry: Optional[LedgerEntry] = None


class OrderWorkflow:
    """
    Places orders for the calling customer.

    Args:
        session_factory: async_sessionmaker for order reads/writes
        ledger: LedgerEngine used for balance checks and DineCoins debits
        tolerance: allowed gap between declared and catalog totals
    """

    def __init__(self, session_factory: async_sessionmaker, ledger: LedgerEngine, tolerance: float = 0.01):
        self.session_factory = session_factory
        self.ledger = ledger
        self.tolerance = tolerance

    async def place_order(self, caller: CallerContext, request: PlaceOrderRequest) -> PlacedOrder:
        """
        Place an order.

        Flow:
        1. Batch-read the catalog; collect every invalid line
        2. Compare catalog total with the declared total
        3. Check DineCoins balance (ledger sum) when coins are spent
        4. Insert order, items and payment in one transaction
        5. Debit DineCoins in that same transaction, under a savepoint

        The debit's balance guard is authoritative: when a concurrent order
        spent the coins first, the whole order rolls back. Any other debit
        failure is logged and the order stands.

        Raises:
            ResourceNotFoundError: establishment or customer missing
            ValidationFailedError: invalid lines, total mismatch, coins above total
            InsufficientBalanceError: coins requested exceed the balance
            TransientStoreError: write conflicts persisted after all retries
            InternalError: the order transaction failed and was rolled back
        """
        customer_id = caller.caller_id
        declared_total = request.total_amount
        dine_coins_used = request.dine_coins_used or 0

        # 1. Validate catalog items
        lines = await self._price_lines(request, customer_id)

        # 2. Authoritative total
        calculated_total = round(sum(line.line_total for line in lines), 2)
        if abs(calculated_total - declared_total) > self.tolerance:
            raise ValidationFailedError(
                "Total amount mismatch",
                details={"calculated": calculated_total, "provided": declared_total},
                error_code="ERR_TOTAL_MISMATCH"
            )

        if dine_coins_used > declared_total:
            raise ValidationFailedError(
                "DineCoins used cannot exceed the order total",
                details={"dine_coins_used": dine_coins_used, "total_amount": declared_total}
            )

        # 3. DineCoins balance
        if dine_coins_used > 0:
            balance = await self.ledger.get_ledger_balance(TargetType.USER, customer_id)
            if dine_coins_used > balance:
                raise InsufficientBalanceError(balance=balance, requested=dine_coins_used)

        # 4. Persist
        amount_due = round(declared_total - dine_coins_used, 2)
        payment_status = PaymentStatus.COMPLETED if amount_due <= 0 else PaymentStatus.PENDING

        for attempt in range(1, self.ledger.max_retries + 1):
            try:
                order, payment, ledger_entry = await self._persist(
                    request, customer_id, lines, amount_due, payment_status, dine_coins_used
                )
                break
            except DBAPIError as exc:
                if not is_retryable(exc):
                    logger.exception("Order transaction rolled back for customer %s", customer_id)
                    raise InternalError("Failed to create order") from exc
                logger.warning(
                    "Order write conflict for customer %s (attempt %d/%d)",
                    customer_id, attempt, self.ledger.max_retries
                )
                if attempt < self.ledger.max_retries:
                    await asyncio.sleep(self.ledger.retry_backoff * attempt)
        else:
            raise TransientStoreError(attempts=self.ledger.max_retries)

        logger.info(
            "Order %s placed by %s: total=%s coins=%s payment=%s",
            order.id, customer_id, order.total_amount, dine_coins_used, payment.status.value
        )
        return PlacedOrder(order=order, payment=payment, item_count=len(lines), ledger_entry=ledger_entry)

    async def _price_lines(self, request: PlaceOrderRequest, customer_id: str) -> List[PricedLine]:
        menu_item_ids = list({item.menu_item_id for item in request.items})

        async with self.session_factory() as session:
            establishment = await session.get(Establishment, request.establishment_id)
            if not establishment:
                raise ResourceNotFoundError("Establishment", request.establishment_id)

            customer = await session.get(User, customer_id)
            if not customer:
                raise ResourceNotFoundError("User", customer_id)

            result = await session.execute(select(MenuItem).where(MenuItem.id.in_(menu_item_ids)))
            menu_items: Dict[str, MenuItem] = {item.id: item for item in result.scalars().all()}

        errors = []
        lines = []
        for index, item in enumerate(request.items):
            menu_item = menu_items.get(item.menu_item_id)
            if not menu_item:
                errors.append(f"Item at index {index}: Menu item not found")
            elif menu_item.establishment_id != request.establishment_id:
                errors.append(f"Item at index {index}: \"{menu_item.name}\" does not belong to this establishment")
            elif not menu_item.is_available:
                errors.append(f"Item at index {index}: \"{menu_item.name}\" is not available")
            elif item.quantity <= 0:
                errors.append(f"Item at index {index}: Quantity must be greater than 0")
            else:
                lines.append(PricedLine(
                    menu_item_id=menu_item.id,
                    quantity=item.quantity,
                    unit_price=menu_item.price,
                    special_instructions=item.special_instructions,
                ))

        if errors:
            raise ValidationFailedError("Validation failed", details={"errors": errors})

        return lines

    async def _persist(
        self,
        request: PlaceOrderRequest,
        customer_id: str,
        lines: List[PricedLine],
        amount_due: float,
        payment_status: PaymentStatus,
        dine_coins_used: float,
    ) -> Tuple[Order, Payment, Optional[LedgerEntry]]:
        ledger_entry = None
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    order = await self._insert_order(session, request, customer_id, payment_status)
                    await self._insert_items(session, order, lines)
                    payment = await self._insert_payment(session, order, request, customer_id, amount_due, payment_status)
                    if dine_coins_used > 0:
                        ledger_entry = await self._debit(session, order, customer_id, dine_coins_used)
            except DBAPIError:
                raise
            except SQLAlchemyError as exc:
                logger.exception("Order transaction rolled back for customer %s", customer_id)
                raise InternalError("Failed to create order") from exc

        return order, payment, ledger_entry

    async def _debit(
        self,
        session: AsyncSession,
        order: Order,
        customer_id: str,
        dine_coins_used: float,
    ) -> Optional[LedgerEntry]:
        try:
            async with session.begin_nested():
                entry = await self.ledger.apply_in_transaction(
                    session,
                    TargetType.USER,
                    customer_id,
                    -dine_coins_used,
                    actor_id=None,
                    reason=f"Payment for order {order.order_number}",
                    order_id=order.id,
                )
        except InsufficientBalanceError:
            logger.warning("DineCoins of customer %s were spent concurrently; order %s rolled back", customer_id, order.id)
            raise
        except Exception as exc:
            if isinstance(exc, DBAPIError) and is_retryable(exc):
                raise
            logger.exception(
                "DineCoins debit of %s failed for order %s; order kept, needs reconciliation",
                dine_coins_used, order.id
            )
            return None

        logger.info("DineCoins debit of %s recorded for order %s", dine_coins_used, order.id)
        return entry

    async def _insert_order(
        self,
        session: AsyncSession,
        request: PlaceOrderRequest,
        customer_id: str,
        payment_status: PaymentStatus,
    ) -> Order:
        order = Order(
            establishment_id=request.establishment_id,
            table_id=request.table_id,
            customer_id=customer_id,
            group_session_id=request.group_session_id,
            status=OrderStatus.PENDING,
            payment_status=OrderPaymentStatus.PAID if payment_status == PaymentStatus.COMPLETED else OrderPaymentStatus.UNPAID,
            total_amount=request.total_amount,
            dine_coins_used=request.dine_coins_used or 0,
            special_instructions=request.special_instructions,
        )
        session.add(order)
        await session.flush()
        await session.refresh(order)
        return order

    async def _insert_items(self, session: AsyncSession, order: Order, lines: List[PricedLine]) -> None:
        session.add_all([
            OrderItem(
                order_id=order.id,
                menu_item_id=line.menu_item_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                line_total=line.line_total,
                special_instructions=line.special_instructions,
            )
            for line in lines
        ])
        await session.flush()

    async def _insert_payment(
        self,
        session: AsyncSession,
        order: Order,
        request: PlaceOrderRequest,
        customer_id: str,
        amount_due: float,
        payment_status: PaymentStatus,
    ) -> Payment:
        payment = Payment(
            order_id=order.id,
            payer_customer_id=customer_id,
            amount=max(amount_due, 0),
            payment_method=request.payment_method,
            dine_coins_used=request.dine_coins_used or 0,
            status=payment_status,
            idempotency_key=f"order:{order.id}",
            meta_data={"order_number": order.order_number, "table_id": order.table_id},
        )
        session.add(payment)
        await session.flush()
        await session.refresh(payment)
        return payment
