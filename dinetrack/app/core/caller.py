"""
Caller identity passed explicitly into domain operations.
"""

from dataclasses import dataclass

from dinetrack.app.models.enums import Role, STAFF_ROLES


@dataclass(frozen=True)
class CallerContext:
    """Authenticated caller identity and role claim."""
    caller_id: str
    role: Role

    @property
    def is_supervisor(self) -> bool:
        return self.role == Role.SUPERVISOR

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def can_act_for(self, customer_id: str) -> bool:
        """True when the caller is the customer or a staff member."""
        return self.is_staff or self.caller_id == customer_id
