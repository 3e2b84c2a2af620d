import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field

from .money import ZERO, Money, to_money


class LossType(str, Enum):
    DAMAGED_INBOUND = "damaged_inbound"
    DAMAGED_WAREHOUSE = "damaged_warehouse"
    DAMAGED_CUSTOMER = "damaged_customer"
    LOST_INBOUND = "lost_inbound"
    LOST_WAREHOUSE = "lost_warehouse"
    DISPOSED = "disposed"
    EXPIRED = "expired"
    RECALLED = "recalled"
    WRITE_OFF = "write_off"


class ReimbursementStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETE = "complete"
    DENIED = "denied"


class ReimbursementEvent(BaseModel):
    """Audit row written every time the reimbursement state of a loss changes."""
    model_config = {"frozen": True}

    status: ReimbursementStatus
    amount: Money
    date: dt.date
    reference: Optional[str] = None
    recorded_at: dt.datetime = Field(default_factory=lambda: dt.datetime.now(dt.timezone.utc))


class InventoryLoss(BaseModel):
    """
    A single inventory loss event and its cost recovery.

    reimbursement_amount is the cumulative amount recovered so far;
    total_cost and net_loss are always derived.
    """
    id: str = Field(default_factory=lambda: uuid4().hex)
    loss_type: LossType
    sku: str
    description: Optional[str] = None
    marketplace: Optional[str] = None
    batch_id: Optional[str] = None
    quantity: int = Field(ge=0)
    unit_cost: Money
    loss_date: dt.date = Field(default_factory=dt.date.today)
    reimbursement_status: ReimbursementStatus = ReimbursementStatus.NONE
    reimbursement_amount: Money = ZERO
    reimbursement_date: Optional[dt.date] = None
    reimbursement_reference: Optional[str] = None
    claim_reference: Optional[str] = None      # marketplace case id
    reimbursement_history: List[ReimbursementEvent] = Field(default_factory=list)
    include_in_cogs: bool = True
    notes: Optional[str] = None
    version: int = 0

    @computed_field
    @property
    def total_cost(self) -> Decimal:
        return to_money(self.quantity * self.unit_cost)

    @computed_field
    @property
    def net_loss(self) -> Decimal:
        return max(ZERO, self.total_cost - self.reimbursement_amount)


class InventoryLossSummary(BaseModel):
    total_losses: int = 0
    total_units: int = 0
    total_cost: Money = ZERO
    total_reimbursed: Money = ZERO
    total_net_loss: Money = ZERO
    pending_reimbursements: int = 0
