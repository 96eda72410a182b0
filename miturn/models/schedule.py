import uuid
from datetime import date, datetime
from sqlmodel import SQLModel, Field
from sqlalchemy import BigInteger
from miturn.models.enums import Frequency
from miturn.models.user import get_utc_now

class RecurringContribution(SQLModel, table=True):
    """
    A member's standing instruction to contribute to a circle on a cadence.

    Exactly one of ``day_of_week`` / ``day_of_month`` is set, matching ``frequency``.
    Entries are paused, never deleted.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)
    circle_id: uuid.UUID = Field(foreign_key="circle.id", index=True)
    amount: int = Field(sa_type=BigInteger, description="Amount per contribution in cents")
    frequency: Frequency
    day_of_week: int | None = Field(default=None, description="0 (Sunday) to 6 (Saturday)")
    day_of_month: int | None = Field(default=None, description="1 to 31, clamped to the month's last day")
    is_active: bool = Field(default=True)
    next_contribution_date: date = Field(index=True)
    created_at: datetime = Field(default_factory=get_utc_now)
    updated_at: datetime = Field(default_factory=get_utc_now)
