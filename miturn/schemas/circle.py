from datetime import datetime, timezone
from typing import List, Optional
import uuid
from pydantic import field_validator
from sqlmodel import SQLModel, Field
from miturn.models.enums import CircleRole, CircleStatus, CycleStatus, Frequency, PayoutPreference, ReminderTier
from miturn.schemas.transaction import TransactionRead

# Circle Schemas
class CircleBase(SQLModel):
    """
    Base Circle schema with shared properties.
    """
    name: str
    description: str | None = None
    contribution_amount: int = Field(gt=0, description="Per member, per cycle, in cents")
    frequency: Frequency
    cycle_start_date: datetime | None = None
    target_members: int | None = None
    payout_preference: PayoutPreference = PayoutPreference.FIXED
    grace_period_days: int | None = Field(default=None, ge=0)

    @field_validator("cycle_start_date")
    @classmethod
    def to_naive_utc(cls, v: datetime | None) -> datetime | None:
        """Stored timestamps are naive UTC."""
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

class CircleCreate(CircleBase):
    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Family Savings",
                "description": "Saving for summer vacation",
                "contribution_amount": 50000,
                "frequency": "monthly",
                "cycle_start_date": "2026-01-01T00:00:00Z",
                "target_members": 5,
                "payout_preference": "random"
            }
        }
    }

class CircleRead(CircleBase):
    id: uuid.UUID
    status: CircleStatus
    invite_code: str
    current_cycle: int
    rotation_pointer: int
    created_by: uuid.UUID

class CircleDetail(CircleRead):
    """
    Circle details with the balance folded from the ledger.
    """
    balance: int = 0

# Circle Member Schemas
class CircleMemberRead(SQLModel):
    circle_id: uuid.UUID
    user_id: uuid.UUID
    role: CircleRole
    payout_position: int
    is_active: bool
    join_date: datetime

class RotationMember(SQLModel):
    user_id: uuid.UUID
    display_name: str | None = None
    payout_position: int
    role: CircleRole
    is_active: bool
    has_received_payout: bool

class RotationStatus(SQLModel):
    circle_id: uuid.UUID
    status: CircleStatus
    total_members: int
    current_cycle: int
    current_payout_position: int
    next_payout_member: Optional[uuid.UUID] = None
    next_payout_date: Optional[datetime] = None
    rotation_complete: bool
    members: List[RotationMember] = []

class PayoutResult(SQLModel):
    """
    Outcome of asking a circle to pay out its current cycle.
    """
    circle_id: uuid.UUID
    cycle_number: int
    status: CycleStatus
    reason: str | None = None
    overdue_user_ids: List[uuid.UUID] = []
    transaction: TransactionRead | None = None

class ReminderRequest(SQLModel):
    tier: ReminderTier = ReminderTier.GENTLE
    cycle_number: int | None = Field(default=None, ge=1)

class ReminderRead(SQLModel):
    success: bool
    recipient: uuid.UUID
    tier: ReminderTier
    cycle_number: int
    error: str | None = None
