from datetime import datetime
import uuid
from sqlmodel import SQLModel, Field
from miturn.models.enums import TransactionType, TransactionStatus

class TransactionDraft(SQLModel):
    """
    Input for a new ledger entry. The ledger always stores it as ``pending``.
    """
    user_id: uuid.UUID
    amount: int
    type: TransactionType
    circle_id: uuid.UUID | None = None
    goal_id: uuid.UUID | None = None
    cycle_number: int | None = None
    transaction_date: datetime | None = None
    description: str | None = None

class TransactionRead(SQLModel):
    id: uuid.UUID
    circle_id: uuid.UUID | None
    goal_id: uuid.UUID | None
    user_id: uuid.UUID
    amount: int
    type: TransactionType
    status: TransactionStatus
    cycle_number: int | None
    transaction_date: datetime
    description: str | None
    provider_reference: str | None

class TransactionFilters(SQLModel):
    circle_id: uuid.UUID | None = None
    goal_id: uuid.UUID | None = None
    user_id: uuid.UUID | None = None
    type: TransactionType | None = None
    status: TransactionStatus | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)

class TransactionStats(SQLModel):
    total_contributions: int = 0
    total_payouts: int = 0
    pending_amount: int = 0
    completed_amount: int = 0
    failed_amount: int = 0
    transaction_count: int = 0

class TransactionTransition(SQLModel):
    """
    Schema for moving a pending transaction to a terminal status.
    """
    status: TransactionStatus
    provider_reference: str | None = None

    model_config = {
        "json_schema_extra": {
            "example": {"status": "completed", "provider_reference": "tr_123"}
        }
    }
