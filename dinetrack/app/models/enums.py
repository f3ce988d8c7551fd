"""
Role and domain enumerations for DineTrack.
"""

import enum


class Role(str, enum.Enum):
    """
    Caller role carried in the Identity Provider's role claim.

    Roles:
        SUPERVISOR: Platform supervisor, may adjust DineCoins balances
        OPERATOR: Establishment operator
        KITCHEN: Kitchen display staff
        STAFF: Floor staff
        CUSTOMER: Diner (default role)
    """
    SUPERVISOR = "supervisor"
    OPERATOR = "operator"
    KITCHEN = "kitchen"
    STAFF = "staff"
    CUSTOMER = "customer"


# Roles allowed to act on payments of other customers
STAFF_ROLES = frozenset({Role.SUPERVISOR, Role.OPERATOR, Role.STAFF})


class TargetType(str, enum.Enum):
    """Kind of entity holding a DineCoins balance."""
    USER = "user"
    ESTABLISHMENT = "establishment"


class LedgerEntryType(str, enum.Enum):
    """Ledger entry type, derived from the sign of the amount."""
    CREDIT = "credit"  # amount >= 0
    DEBIT = "debit"  # amount < 0

    @classmethod
    def from_amount(cls, amount: float) -> "LedgerEntryType":
        return cls.CREDIT if amount >= 0 else cls.DEBIT


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class OrderPaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"


class PaymentStatus(str, enum.Enum):
    """Payment lifecycle: PENDING -> PROCESSING -> COMPLETED | FAILED."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PaymentStatus.COMPLETED, PaymentStatus.FAILED)


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    MOBILE_MONEY = "mobile_money"
    DINE_COINS = "dine_coins"
    PAYCHANGU = "paychangu"


class ReconciliationStatus(str, enum.Enum):
    PENDING_REVIEW = "pending_review"
    RESOLVED = "resolved"
