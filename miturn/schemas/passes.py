from datetime import date, datetime
from typing import List
import uuid
from sqlmodel import SQLModel, Field

class DeferredPayout(SQLModel):
    circle_id: uuid.UUID
    cycle_number: int
    reason: str
    overdue_user_ids: List[uuid.UUID] = Field(default_factory=list)

class PayoutPassSummary(SQLModel):
    """
    Outcome of one payout pass over every active circle.
    """
    run_at: datetime
    circles_checked: int = 0
    payouts_processed: int = 0
    payouts_recovered: int = 0
    deferred: List[DeferredPayout] = Field(default_factory=list)
    reminders_sent: int = 0
    errors: List[str] = Field(default_factory=list)

class RecurringPassSummary(SQLModel):
    run_on: date
    entries_due: int = 0
    contributions_completed: int = 0
    contributions_failed: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)

class AllocationPassSummary(SQLModel):
    run_on: date
    goals_checked: int = 0
    allocations_suggested: int = 0
    goals_met: int = 0
    allocations_failed: int = 0
    skipped: int = 0
