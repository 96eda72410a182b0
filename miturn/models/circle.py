import uuid
from datetime import datetime
from sqlmodel import SQLModel, Field
from sqlalchemy import BigInteger, UniqueConstraint
from miturn.models.enums import Frequency, CircleStatus, PayoutPreference, CircleRole
from miturn.models.user import get_utc_now

class Circle(SQLModel, table=True):
    """
    Savings circle whose members contribute every cycle and take turns receiving the pot.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, description="Unique identifier for the circle")
    name: str = Field(description="Name of the circle")
    description: str | None = Field(default=None, description="Description of the circle goal")
    contribution_amount: int = Field(sa_type=BigInteger, gt=0, description="Contribution amount per member per cycle in cents")
    frequency: Frequency = Field(description="Length of one cycle")
    cycle_start_date: datetime | None = Field(default=None, description="Start of cycle 1")
    status: CircleStatus = Field(default=CircleStatus.PENDING, description="Current status of the circle")
    invite_code: str = Field(unique=True, description="Unique code for inviting members")
    target_members: int | None = Field(default=None, description="Target number of members needed to start")
    payout_preference: PayoutPreference = Field(default=PayoutPreference.FIXED, description="Payout order preference")
    current_cycle: int = Field(default=1, ge=1, description="Cycle whose payout is being collected")
    rotation_pointer: int = Field(default=1, ge=1, description="Payout position to be paid in the current cycle")
    grace_period_days: int | None = Field(default=None, ge=0, description="Overrides the configured payout grace period")
    last_payout_id: uuid.UUID | None = Field(default=None, description="Payout that moved the rotation into the current cycle")
    created_by: uuid.UUID = Field(foreign_key="user.id", description="ID of the user who created the circle")
    created_at: datetime = Field(default_factory=get_utc_now)

class CircleMember(SQLModel, table=True):
    """
    Association model between User and Circle.
    """
    __table_args__ = (UniqueConstraint("circle_id", "payout_position", name="uq_circlemember_position"),)

    user_id: uuid.UUID = Field(foreign_key="user.id", primary_key=True, description="ID of the user")
    circle_id: uuid.UUID = Field(foreign_key="circle.id", primary_key=True, description="ID of the circle")
    payout_position: int = Field(description="Rank in the payout rotation (1, 2, 3...)")
    role: CircleRole = Field(default=CircleRole.MEMBER, description="Role in the circle")
    is_active: bool = Field(default=True, description="Inactive members are skipped by the rotation")
    join_date: datetime = Field(default_factory=get_utc_now, description="Timestamp when the user joined the circle")
