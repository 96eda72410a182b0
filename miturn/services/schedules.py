"""
Recurring contribution schedules.

An entry carries a cadence (weekly or biweekly on a weekday, monthly on a day
of the month) and the next date it fires. The daily pass turns every due,
active entry into one circle contribution and then moves the date forward.
Paused entries keep their row and produce nothing.
"""
import logging
import uuid
from datetime import date, datetime
from typing import Any, List

import pydantic
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from miturn.core.exceptions import CollaboratorError, ConflictError, NotFoundError, ValidationError
from miturn.models.circle import Circle, CircleMember
from miturn.models.enums import CircleStatus
from miturn.models.schedule import RecurringContribution
from miturn.models.user import get_utc_now
from miturn.schemas.passes import RecurringPassSummary
from miturn.schemas.schedule import (
    Cadence,
    RecurringContributionCreate,
    RecurringContributionRead,
    RecurringContributionUpdate,
    cadence_adapter,
    cadence_columns,
)
from miturn.services.contributions import ContributionService
from miturn.utils.cycles import following_occurrence, next_occurrence

logger = logging.getLogger(__name__)

def parse_cadence(raw: Any) -> Cadence:
    """
    Validate a raw cadence mapping, e.g. ``{"frequency": "weekly", "day_of_week": 1}``.
    """
    try:
        return cadence_adapter.validate_python(raw)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Invalid cadence: {e.errors()[0]['msg']}", cadence=raw) from e

class ScheduleService:
    def __init__(self, session: AsyncSession, contributions: ContributionService):
        self.session = session
        self.contributions = contributions

    @staticmethod
    def next_occurrence(entry: RecurringContribution, on_or_after: date) -> date:
        return next_occurrence(entry.frequency, on_or_after, entry.day_of_week, entry.day_of_month)

    @staticmethod
    def status_of(entry: RecurringContribution, today: date) -> str:
        if not entry.is_active:
            return "paused"
        if entry.next_contribution_date < today:
            return "overdue"
        return "active"

    def to_read(self, entry: RecurringContribution, today: date) -> RecurringContributionRead:
        return RecurringContributionRead.model_validate(entry, update={"status": self.status_of(entry, today)})

    async def get(self, entry_id: uuid.UUID, user_id: uuid.UUID) -> RecurringContribution:
        entry = await self.session.get(RecurringContribution, entry_id)
        if not entry or entry.user_id != user_id:
            raise NotFoundError("Recurring contribution not found", entry_id=entry_id)
        return entry

    async def list_for_user(self, user_id: uuid.UUID) -> List[RecurringContribution]:
        query = select(RecurringContribution).where(RecurringContribution.user_id == user_id).order_by(
            RecurringContribution.next_contribution_date
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def create(self, user_id: uuid.UUID, data: RecurringContributionCreate, today: date) -> RecurringContribution:
        circle = await self.session.get(Circle, data.circle_id)
        if not circle:
            raise NotFoundError("Circle not found", circle_id=data.circle_id)
        if circle.status == CircleStatus.COMPLETED:
            raise ValidationError("Circle has already completed its rotation", circle_id=circle.id)

        member = await self.session.get(CircleMember, (user_id, circle.id))
        if not member or not member.is_active:
            raise NotFoundError("Not an active member of this circle", circle_id=circle.id)

        query = select(RecurringContribution).where(
            RecurringContribution.user_id == user_id,
            RecurringContribution.circle_id == circle.id,
            RecurringContribution.is_active == True,  # noqa: E712
        )
        result = await self.session.execute(query)
        if result.scalars().first():
            raise ConflictError("An active recurring contribution already exists for this circle", circle_id=circle.id)

        entry = RecurringContribution(
            user_id=user_id,
            circle_id=circle.id,
            amount=data.amount,
            next_contribution_date=today,
            **cadence_columns(data.cadence),
        )
        entry.next_contribution_date = self.next_occurrence(entry, today)
        self.session.add(entry)
        await self.session.commit()
        await self.session.refresh(entry)

        logger.info(f"Recurring contribution {entry.id} created, first run on {entry.next_contribution_date}")
        return entry

    async def update(
        self,
        entry_id: uuid.UUID,
        user_id: uuid.UUID,
        data: RecurringContributionUpdate,
        today: date,
    ) -> RecurringContribution:
        entry = await self.get(entry_id, user_id)
        if data.amount is not None:
            entry.amount = data.amount
        if data.cadence is not None:
            for key, value in cadence_columns(data.cadence).items():
                setattr(entry, key, value)
            entry.next_contribution_date = self.next_occurrence(entry, today)

        entry.updated_at = get_utc_now()
        self.session.add(entry)
        await self.session.commit()
        await self.session.refresh(entry)
        return entry

    async def pause(self, entry_id: uuid.UUID, user_id: uuid.UUID) -> RecurringContribution:
        entry = await self.get(entry_id, user_id)
        if entry.is_active:
            entry.is_active = False
            entry.updated_at = get_utc_now()
            self.session.add(entry)
            await self.session.commit()
            logger.info(f"Recurring contribution {entry.id} paused")
        return entry

    async def resume(self, entry_id: uuid.UUID, user_id: uuid.UUID, today: date) -> RecurringContribution:
        """
        Reactivate a paused entry. Occurrences missed while paused are not charged.
        """
        entry = await self.get(entry_id, user_id)
        if not entry.is_active:
            entry.is_active = True
            if entry.next_contribution_date < today:
                entry.next_contribution_date = self.next_occurrence(entry, today)
            entry.updated_at = get_utc_now()
            self.session.add(entry)
            await self.session.commit()
            logger.info(f"Recurring contribution {entry.id} resumed, next run on {entry.next_contribution_date}")
        return entry

    async def advance(self, entry: RecurringContribution, today: date) -> RecurringContribution:
        """
        Move ``next_contribution_date`` past ``today`` along the cadence.
        """
        next_date = entry.next_contribution_date
        while next_date <= today:
            next_date = following_occurrence(entry.frequency, next_date, entry.day_of_week, entry.day_of_month)

        entry.next_contribution_date = next_date
        entry.updated_at = get_utc_now()
        self.session.add(entry)
        await self.session.commit()
        return entry

    async def _deactivate(self, entry: RecurringContribution, reason: str) -> None:
        entry.is_active = False
        entry.updated_at = get_utc_now()
        self.session.add(entry)
        await self.session.commit()
        logger.info(f"Recurring contribution {entry.id} paused: {reason}")

    async def run_pass(self, today: date, now: datetime | None = None) -> RecurringPassSummary:
        """
        Turn every active entry due on or before ``today`` into a contribution.

        A refused debit leaves the entry's date where it is, so the next pass
        tries again; the failure is reported in the summary.
        """
        now = now or get_utc_now()
        summary = RecurringPassSummary(run_on=today)

        query = select(RecurringContribution).where(
            RecurringContribution.is_active == True,  # noqa: E712
            RecurringContribution.next_contribution_date <= today,
        ).order_by(RecurringContribution.next_contribution_date)
        result = await self.session.execute(query)
        entries = list(result.scalars().all())
        summary.entries_due = len(entries)

        for entry in entries:
            entry_id = entry.id
            circle = await self.session.get(Circle, entry.circle_id)
            if not circle or circle.status == CircleStatus.COMPLETED:
                await self._deactivate(entry, "circle finished")
                summary.skipped += 1
                continue
            if circle.status != CircleStatus.ACTIVE:
                # not started yet, try again tomorrow
                summary.skipped += 1
                continue

            try:
                await self.contributions.contribute(circle, entry.user_id, now, amount=entry.amount)
                summary.contributions_completed += 1
            except NotFoundError:
                await self._deactivate(entry, "no longer a member")
                summary.skipped += 1
                continue
            except ConflictError as e:
                logger.info(f"Recurring contribution {entry_id} skipped: {e.message}")
                summary.skipped += 1
            except CollaboratorError as e:
                logger.error(f"Recurring contribution {entry_id} failed: {e.message}")
                summary.contributions_failed += 1
                summary.errors.append(f"{entry_id}: {e.message}")
                continue

            await self.advance(entry, today)

        logger.info(
            f"Recurring pass for {today}: {summary.contributions_completed} completed, "
            f"{summary.contributions_failed} failed, {summary.skipped} skipped"
        )
        return summary
