import uuid
from datetime import datetime
from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from miturn.models.enums import ReminderTier, ReminderStatus
from miturn.models.user import get_utc_now

class ReminderLog(SQLModel, table=True):
    """
    One row per reminder tier sent to a member for a circle cycle.
    """
    __table_args__ = (
        UniqueConstraint("circle_id", "user_id", "cycle_number", "tier", name="uq_reminderlog_member_cycle_tier"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    circle_id: uuid.UUID = Field(foreign_key="circle.id", index=True)
    user_id: uuid.UUID = Field(foreign_key="user.id")
    cycle_number: int
    tier: ReminderTier
    status: ReminderStatus = Field(default=ReminderStatus.SENT)
    error: str | None = Field(default=None, description="Delivery failure reported by the notification service")
    sent_at: datetime = Field(default_factory=get_utc_now)
