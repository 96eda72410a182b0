import uuid
from datetime import datetime
from typing import Optional
from sqlmodel import SQLModel, Field
from sqlalchemy import BigInteger
from .enums import TransactionType, TransactionStatus
from .user import get_utc_now

class Transaction(SQLModel, table=True):
    """
    Ledger entry for a contribution or payout.

    Rows are only ever appended; the status moves once, out of ``pending``.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, description="Unique identifier for the transaction")
    circle_id: Optional[uuid.UUID] = Field(default=None, foreign_key="circle.id", index=True, description="Circle the money moved in or out of")
    goal_id: Optional[uuid.UUID] = Field(default=None, foreign_key="savingsgoal.id", index=True, description="Solo goal funded by this contribution")
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True, description="Contributor, or recipient of a payout")
    amount: int = Field(sa_type=BigInteger, description="Amount in cents")
    type: TransactionType = Field(description="contribution or payout")
    status: TransactionStatus = Field(default=TransactionStatus.PENDING, description="Status of the transaction")
    cycle_number: Optional[int] = Field(default=None, description="Circle cycle this transaction belongs to")
    transaction_date: datetime = Field(default_factory=get_utc_now, description="Business date of the movement")
    description: str | None = Field(default=None, description="Description of the transaction")
    provider_reference: Optional[str] = Field(default=None, description="Banking provider transfer id")

    created_at: datetime = Field(default_factory=get_utc_now)
    updated_at: datetime = Field(default_factory=get_utc_now)
