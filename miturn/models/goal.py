import uuid
import datetime
from sqlmodel import SQLModel, Field
from sqlalchemy import BigInteger, UniqueConstraint
from miturn.models.enums import AllocationStatus
from miturn.models.user import get_utc_now

class SavingsGoal(SQLModel, table=True):
    """
    Solo savings target, independent of any circle.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)
    name: str
    target_amount: int = Field(sa_type=BigInteger, description="Target in cents")
    amount_saved: int = Field(default=0, sa_type=BigInteger, description="Completed contributions so far, in cents")
    deadline: datetime.date
    is_active: bool = Field(default=True)
    created_at: datetime.datetime = Field(default_factory=get_utc_now)

class SavingsPreference(SQLModel, table=True):
    """
    Per-user limits applied to daily allocation suggestions.
    """
    user_id: uuid.UUID = Field(foreign_key="user.id", primary_key=True)
    max_monthly_limit: int | None = Field(default=None, sa_type=BigInteger, description="Cap on suggestions per 30 days, in cents")
    vacation_mode: bool = Field(default=False, description="Suspends suggestions while enabled")

class DailyAllocation(SQLModel, table=True):
    """
    Suggested contribution toward a goal for one calendar day.
    """
    __table_args__ = (UniqueConstraint("goal_id", "date", name="uq_dailyallocation_goal_date"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)
    goal_id: uuid.UUID = Field(foreign_key="savingsgoal.id", index=True)
    date: datetime.date
    suggested_amount: int = Field(default=0, sa_type=BigInteger, description="Suggested amount in cents")
    suggested_percentage: float | None = Field(default=None, description="Share of the funding account balance")
    status: AllocationStatus = Field(default=AllocationStatus.PENDING)
    updated_at: datetime.datetime = Field(default_factory=get_utc_now)
