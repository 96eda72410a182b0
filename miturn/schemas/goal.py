import datetime
import uuid
from sqlmodel import SQLModel, Field
from miturn.models.enums import AllocationStatus

class SavingsGoalCreate(SQLModel):
    name: str
    target_amount: int = Field(gt=0, description="Target in cents")
    deadline: datetime.date

    model_config = {
        "json_schema_extra": {
            "example": {"name": "Emergency fund", "target_amount": 100000, "deadline": "2026-12-31"}
        }
    }

class SavingsGoalRead(SQLModel):
    id: uuid.UUID
    user_id: uuid.UUID
    name: str
    target_amount: int
    amount_saved: int
    deadline: datetime.date
    is_active: bool

class GoalContribution(SQLModel):
    amount: int = Field(gt=0, description="Amount in cents")

class SavingsPreferenceUpdate(SQLModel):
    max_monthly_limit: int | None = Field(default=None, ge=0)
    vacation_mode: bool = False

class SavingsPreferenceRead(SavingsPreferenceUpdate):
    user_id: uuid.UUID

class DailyAllocationRead(SQLModel):
    id: uuid.UUID
    goal_id: uuid.UUID
    date: datetime.date
    suggested_amount: int
    suggested_percentage: float | None
    status: AllocationStatus

class AllocationSuggestion(SQLModel):
    """
    Today's suggestion for a goal. ``allocation`` is empty when nothing is suggested.
    """
    goal_id: uuid.UUID
    status: str
    allocation: DailyAllocationRead | None = None
    message: str | None = None
