"""
Escalating payment reminders for circle members.

Each (circle, member, cycle, tier) is reminded at most once: the log row is
claimed before the notification goes out, and a unique constraint turns a
concurrent second claim into a ``ConflictError``. Failed deliveries are
recorded on the row and are not retried automatically.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from miturn.core.config import settings
from miturn.core.exceptions import CollaboratorError, ConflictError, NotFoundError
from miturn.models.circle import Circle, CircleMember
from miturn.models.enums import ReminderStatus, ReminderTier, TransactionStatus, TransactionType
from miturn.models.reminder import ReminderLog
from miturn.models.user import User, get_utc_now
from miturn.services.analytics import AnalyticsService
from miturn.services.events import LedgerEvent
from miturn.services.notifications import NotificationService
from miturn.utils.cycles import cycle_due_date

logger = logging.getLogger(__name__)

@dataclass
class ReminderResult:
    success: bool
    recipient: uuid.UUID
    tier: ReminderTier
    cycle_number: int
    error: Optional[str] = None

def format_amount(cents: int) -> str:
    return f"{cents / 100:,.2f}"

class ReminderDispatcher:
    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationService,
        analytics: AnalyticsService,
        urgent_after_days: int | None = None,
    ):
        self.session = session
        self.notifier = notifier
        self.analytics = analytics
        self.urgent_after_days = settings.REMINDER_URGENT_AFTER_DAYS if urgent_after_days is None else urgent_after_days

    def tier_for(self, late_by: timedelta, grace_period_days: int) -> ReminderTier:
        """
        Gentle while just late, urgent after ``REMINDER_URGENT_AFTER_DAYS``,
        overdue once the payout grace period is exceeded.
        """
        if late_by > timedelta(days=grace_period_days):
            return ReminderTier.OVERDUE
        if late_by >= timedelta(days=self.urgent_after_days):
            return ReminderTier.URGENT
        return ReminderTier.GENTLE

    async def _existing(self, circle_id: uuid.UUID, user_id: uuid.UUID, cycle_number: int, tier: ReminderTier) -> ReminderLog | None:
        query = select(ReminderLog).where(
            ReminderLog.circle_id == circle_id,
            ReminderLog.user_id == user_id,
            ReminderLog.cycle_number == cycle_number,
            ReminderLog.tier == tier,
        )
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def _claim(self, circle_id: uuid.UUID, user_id: uuid.UUID, cycle_number: int, tier: ReminderTier) -> ReminderLog:
        log = await self._existing(circle_id, user_id, cycle_number, tier)
        if log and log.status == ReminderStatus.SENT:
            raise ConflictError(
                f"A {tier} reminder was already sent for cycle {cycle_number}",
                circle_id=circle_id,
                user_id=user_id,
            )

        if log:
            # a failed delivery may be re-sent by hand
            log.status = ReminderStatus.SENT
            log.error = None
            log.sent_at = get_utc_now()
        else:
            log = ReminderLog(circle_id=circle_id, user_id=user_id, cycle_number=cycle_number, tier=tier)
        self.session.add(log)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError(
                f"A {tier} reminder is already being sent for cycle {cycle_number}",
                circle_id=circle_id,
                user_id=user_id,
            ) from e
        return log

    async def dispatch(
        self,
        circle_id: uuid.UUID,
        member_id: uuid.UUID,
        tier: ReminderTier,
        cycle_number: int | None = None,
    ) -> ReminderResult:
        """
        Send one reminder tier to a circle member.

        Returns ``success=False`` when the notification service refuses the
        message; that failure is kept on the reminder log.
        """
        tier = ReminderTier(tier)
        circle = await self.session.get(Circle, circle_id)
        if not circle:
            raise NotFoundError("Circle not found", circle_id=circle_id)
        member = await self.session.get(CircleMember, (member_id, circle_id))
        user = await self.session.get(User, member_id)
        if not member or not user:
            raise NotFoundError("Member not found", circle_id=circle_id, member_id=member_id)

        cycle_number = cycle_number or circle.current_cycle
        data = {
            "circle_name": circle.name,
            "currency": "USD",
            "amount": format_amount(circle.contribution_amount),
            "frequency": circle.frequency,
            "cycle": cycle_number,
            "due_date": cycle_due_date(circle, cycle_number).strftime("%Y-%m-%d") if circle.cycle_start_date else "soon",
            "cycle_closed": cycle_number < circle.current_cycle,
        }

        log = await self._claim(circle_id, member_id, cycle_number, tier)
        properties = {"circle_id": circle_id, "cycle_number": cycle_number, "tier": tier}
        try:
            await self.notifier.send(user, f"reminder_{tier}", data)
        except CollaboratorError as e:
            log.status = ReminderStatus.FAILED
            log.error = e.message
            self.session.add(log)
            await self.session.commit()
            self.analytics.track("reminder_failed", member_id, {**properties, "error": e.message})
            logger.warning(f"Reminder {tier} for member {member_id} in circle {circle_id} failed: {e.message}")
            return ReminderResult(success=False, recipient=member_id, tier=tier, cycle_number=cycle_number, error=e.message)

        self.analytics.track("reminder_sent", member_id, properties)
        logger.info(f"Reminder {tier} sent to member {member_id} for circle {circle_id} cycle {cycle_number}")
        return ReminderResult(success=True, recipient=member_id, tier=tier, cycle_number=cycle_number)

    async def remind_overdue(self, circle: Circle, cycle_number: int, overdue_members: list, grace_period_days: int) -> List[ReminderResult]:
        """
        Send the tier each overdue member has reached, skipping tiers already logged.
        """
        circle_id = circle.id
        results = []
        for member in overdue_members:
            tier = self.tier_for(member.late_by, grace_period_days)
            if await self._existing(circle_id, member.user_id, cycle_number, tier):
                continue
            try:
                results.append(await self.dispatch(circle_id, member.user_id, tier, cycle_number))
            except ConflictError:
                logger.info(f"Reminder {tier} for member {member.user_id} claimed by another pass")
        return results

    async def on_ledger_event(self, event: LedgerEvent) -> None:
        transaction = event.transaction
        if transaction.type != TransactionType.PAYOUT or transaction.status != TransactionStatus.COMPLETED:
            return

        circle = await self.session.get(Circle, transaction.circle_id)
        user = await self.session.get(User, transaction.user_id)
        if not circle or not user:
            return
        try:
            await self.notifier.send(user, "payout_received", {
                "circle_name": circle.name,
                "currency": "USD",
                "amount": format_amount(transaction.amount),
                "cycle": transaction.cycle_number,
            })
        except CollaboratorError as e:
            self.analytics.track("notification_failed", user.id, {"template": "payout_received", "error": e.message})
            logger.warning(f"Payout notification for transaction {transaction.id} failed: {e.message}")
