from datetime import date
from typing import Annotated, Literal, Union
import uuid
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from sqlmodel import SQLModel
from miturn.models.enums import Frequency

class WeeklyCadence(BaseModel):
    model_config = ConfigDict(extra="forbid")

    frequency: Literal["weekly"]
    day_of_week: int = Field(ge=0, le=6, description="0 (Sunday) to 6 (Saturday)")

class BiweeklyCadence(BaseModel):
    model_config = ConfigDict(extra="forbid")

    frequency: Literal["biweekly"]
    day_of_week: int = Field(ge=0, le=6, description="0 (Sunday) to 6 (Saturday)")

class MonthlyCadence(BaseModel):
    model_config = ConfigDict(extra="forbid")

    frequency: Literal["monthly"]
    day_of_month: int = Field(ge=1, le=31, description="Clamped to the last day of shorter months")

Cadence = Annotated[Union[WeeklyCadence, BiweeklyCadence, MonthlyCadence], Field(discriminator="frequency")]

cadence_adapter = TypeAdapter(Cadence)

def cadence_columns(cadence: Cadence) -> dict:
    """
    Flattens a cadence into the ``frequency`` / ``day_of_week`` / ``day_of_month`` columns.
    """
    return {
        "frequency": Frequency(cadence.frequency),
        "day_of_week": getattr(cadence, "day_of_week", None),
        "day_of_month": getattr(cadence, "day_of_month", None),
    }

class RecurringContributionCreate(BaseModel):
    circle_id: uuid.UUID
    amount: int = Field(gt=0, description="Amount per contribution in cents")
    cadence: Cadence

    model_config = {
        "json_schema_extra": {
            "example": {
                "circle_id": "6f1c2c1e-8a7b-4b59-9a51-0c7f7b0e2d11",
                "amount": 5000,
                "cadence": {"frequency": "monthly", "day_of_month": 1}
            }
        }
    }

class RecurringContributionUpdate(BaseModel):
    amount: int | None = Field(default=None, gt=0)
    cadence: Cadence | None = None

class RecurringContributionRead(SQLModel):
    id: uuid.UUID
    user_id: uuid.UUID
    circle_id: uuid.UUID
    amount: int
    frequency: Frequency
    day_of_week: int | None
    day_of_month: int | None
    is_active: bool
    next_contribution_date: date
    status: Literal["active", "paused", "overdue"] = "active"
