import uuid
from datetime import datetime
from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from miturn.models.enums import LoyaltyTier
from miturn.models.user import get_utc_now

class UserTier(SQLModel, table=True):
    """
    Loyalty standing earned through on-time contributions.
    """
    user_id: uuid.UUID = Field(foreign_key="user.id", primary_key=True)
    tier: LoyaltyTier = Field(default=LoyaltyTier.BRONZE)
    points: int = Field(default=0)
    current_streak: int = Field(default=0)
    longest_streak: int = Field(default=0)
    updated_at: datetime = Field(default_factory=get_utc_now)

class UserBadge(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "badge", name="uq_userbadge_user_badge"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)
    badge: str
    earned_at: datetime = Field(default_factory=get_utc_now)
