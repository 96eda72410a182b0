"""
Daily allocation suggestions for solo savings goals.

For each active goal the suggester proposes what to put aside today so the
goal is met by its deadline: the remaining amount spread evenly over the
days left, rounded half-up to whole cents and clamped to the configured
minimum and maximum. Suggestions are upserted per (goal, day), so a pass can
be re-run without creating duplicates.
"""
import logging
import uuid
from collections import defaultdict
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from miturn.core.config import settings
from miturn.core.exceptions import AllocationFailed, NotFoundError, ValidationError
from miturn.models.enums import AllocationStatus, TransactionStatus, TransactionType
from miturn.models.goal import DailyAllocation, SavingsGoal, SavingsPreference
from miturn.models.user import User, get_utc_now
from miturn.schemas.passes import AllocationPassSummary
from miturn.services.analytics import AnalyticsService
from miturn.services.events import LedgerEvent

logger = logging.getLogger(__name__)

class AllocationSuggester:
    def __init__(
        self,
        session: AsyncSession,
        analytics: AnalyticsService,
        min_amount: int | None = None,
        max_amount: int | None = None,
        shared_funding: bool | None = None,
    ):
        self.session = session
        self.analytics = analytics
        self.min_amount = settings.ALLOCATION_MIN_AMOUNT if min_amount is None else min_amount
        self.max_amount = settings.ALLOCATION_MAX_AMOUNT if max_amount is None else max_amount
        self.shared_funding = settings.ALLOCATION_SHARED_FUNDING if shared_funding is None else shared_funding

    @staticmethod
    def days_remaining(goal: SavingsGoal, today: date) -> int:
        return max(1, (goal.deadline - today).days)

    def compute(self, goal: SavingsGoal, today: date, cap: int | None = None) -> int:
        """
        Suggested amount in cents for ``today``; 0 once the goal is met.
        """
        remaining = goal.target_amount - goal.amount_saved
        if remaining <= 0:
            return 0

        per_day = (Decimal(remaining) / Decimal(self.days_remaining(goal, today))).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        amount = max(self.min_amount, min(int(per_day), self.max_amount))
        if cap is not None:
            amount = min(amount, cap)
        return max(0, min(amount, remaining))

    async def preference_for(self, user_id: uuid.UUID) -> Optional[SavingsPreference]:
        return await self.session.get(SavingsPreference, user_id)

    @staticmethod
    def daily_cap(preference: Optional[SavingsPreference]) -> int | None:
        if preference and preference.max_monthly_limit is not None:
            return preference.max_monthly_limit // 30
        return None

    async def _find(self, goal_id: uuid.UUID, day: date) -> Optional[DailyAllocation]:
        query = select(DailyAllocation).where(DailyAllocation.goal_id == goal_id, DailyAllocation.date == day)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def _upsert(
        self,
        goal_id: uuid.UUID,
        user_id: uuid.UUID,
        day: date,
        amount: int,
        percentage: float | None,
        status: AllocationStatus,
    ) -> DailyAllocation:
        values = {
            "suggested_amount": amount,
            "suggested_percentage": percentage,
            "status": status,
            "updated_at": get_utc_now(),
        }
        for attempt in range(2):
            allocation = await self._find(goal_id, day)
            if allocation and allocation.status == AllocationStatus.PROCESSED:
                return allocation
            if allocation:
                for key, value in values.items():
                    setattr(allocation, key, value)
            else:
                allocation = DailyAllocation(goal_id=goal_id, user_id=user_id, date=day, **values)
            self.session.add(allocation)
            try:
                await self.session.commit()
            except IntegrityError:
                # another pass inserted the same day first; update that row instead
                await self.session.rollback()
                if attempt:
                    raise
                continue
            await self.session.refresh(allocation)
            return allocation

    async def suggest(
        self,
        goal: SavingsGoal,
        today: date,
        account_balance: int | None = None,
        cap: int | None = None,
    ) -> Optional[DailyAllocation]:
        """
        Upsert today's suggestion for one goal.

        Returns ``None`` when the goal is already met or its owner is on
        vacation. Raises ``AllocationFailed`` (carrying the failed row) when
        the deadline has passed with the goal still short.
        """
        goal_id, user_id = goal.id, goal.user_id
        if not goal.is_active:
            raise ValidationError("Savings goal is not active", goal_id=goal_id)

        if goal.amount_saved >= goal.target_amount:
            logger.info(f"Goal {goal_id} already met, no allocation for {today}")
            return None

        remaining = goal.target_amount - goal.amount_saved
        if (goal.deadline - today).days <= 0:
            allocation = await self._upsert(goal_id, user_id, today, 0, None, AllocationStatus.FAILED)
            self.analytics.track("allocation_failed", user_id, {
                "goal_id": goal_id,
                "date": today,
                "remaining": remaining,
            })
            raise AllocationFailed(
                "Goal deadline has passed before the target was reached",
                allocation=allocation,
                goal_id=goal_id,
            )

        preference = await self.preference_for(user_id)
        if preference and preference.vacation_mode:
            logger.info(f"User {user_id} is on vacation, no allocation for goal {goal_id}")
            return None
        if cap is None:
            cap = self.daily_cap(preference)

        amount = self.compute(goal, today, cap)
        percentage = None
        if account_balance:
            percentage = round(amount / account_balance * 100, 2)

        allocation = await self._upsert(goal_id, user_id, today, amount, percentage, AllocationStatus.PENDING)
        self.analytics.track("allocation_calculated", user_id, {"goal_id": goal_id, "date": today, "amount": amount})
        return allocation

    async def suggest_for_goal(self, goal_id: uuid.UUID, user_id: uuid.UUID, today: date, account_balance: int | None = None) -> Optional[DailyAllocation]:
        goal = await self.session.get(SavingsGoal, goal_id)
        if not goal or goal.user_id != user_id:
            raise NotFoundError("Savings goal not found", goal_id=goal_id)
        return await self.suggest(goal, today, account_balance)

    def shared_caps(self, goals: list, today: date, cap: int) -> Dict[uuid.UUID, int]:
        """
        Scale each goal's own suggestion down so their sum fits one daily cap.
        """
        raw = {goal.id: self.compute(goal, today) for goal in goals}
        total = sum(raw.values())
        if total <= cap:
            return raw
        return {goal_id: amount * cap // total for goal_id, amount in raw.items()}

    async def expire_stale(self, today: date) -> int:
        """
        Fail suggestions from earlier days that no contribution settled.
        """
        query = select(DailyAllocation).where(
            DailyAllocation.status == AllocationStatus.PENDING,
            DailyAllocation.date < today,
        )
        result = await self.session.execute(query)
        stale = list(result.scalars().all())
        now = get_utc_now()
        for allocation in stale:
            allocation.status = AllocationStatus.FAILED
            allocation.updated_at = now
            self.session.add(allocation)
            self.analytics.track("allocation_failed", allocation.user_id, {
                "goal_id": allocation.goal_id,
                "date": allocation.date,
                "reason": "no_contribution",
            })
        if stale:
            await self.session.commit()
            logger.info(f"Marked {len(stale)} allocation(s) before {today} failed")
        return len(stale)

    async def run_pass(self, today: date, balances: Dict[uuid.UUID, int] | None = None) -> AllocationPassSummary:
        """
        Suggest today's allocation for every active goal of every active user.
        """
        balances = balances or {}
        summary = AllocationPassSummary(run_on=today)
        summary.allocations_failed += await self.expire_stale(today)

        query = (
            select(SavingsGoal.id, SavingsGoal.user_id)
            .join(User, User.id == SavingsGoal.user_id)
            .where(SavingsGoal.is_active == True, User.is_active == True)  # noqa: E712
            .order_by(SavingsGoal.user_id, SavingsGoal.deadline)
        )
        result = await self.session.execute(query)
        goal_ids_by_user = defaultdict(list)
        for goal_id, user_id in result.all():
            goal_ids_by_user[user_id].append(goal_id)

        for user_id, goal_ids in goal_ids_by_user.items():
            summary.goals_checked += len(goal_ids)
            preference = await self.preference_for(user_id)
            if preference and preference.vacation_mode:
                summary.skipped += len(goal_ids)
                continue

            caps = {}
            if self.shared_funding and len(goal_ids) > 1:
                user_cap = self.daily_cap(preference)
                goals = [await self._load_goal(goal_id) for goal_id in goal_ids]
                caps = self.shared_caps(goals, today, self.max_amount if user_cap is None else user_cap)

            for goal_id in goal_ids:
                # a rolled back upsert expires every loaded goal
                goal = await self._load_goal(goal_id)
                try:
                    allocation = await self.suggest(goal, today, balances.get(user_id), caps.get(goal_id))
                except AllocationFailed:
                    summary.allocations_failed += 1
                    continue
                if allocation is None:
                    summary.goals_met += 1
                else:
                    summary.allocations_suggested += 1

        logger.info(
            f"Allocation pass for {today}: {summary.allocations_suggested} suggested, "
            f"{summary.goals_met} met, {summary.allocations_failed} failed, {summary.skipped} skipped"
        )
        return summary

    async def _load_goal(self, goal_id: uuid.UUID) -> SavingsGoal:
        return await self.session.get(SavingsGoal, goal_id, populate_existing=True)

    async def _settle_day(self, goal_id: uuid.UUID, day: date, status: AllocationStatus) -> Optional[DailyAllocation]:
        allocation = await self._find(goal_id, day)
        # a contribution posted after the day was given up on still settles it
        if allocation and allocation.status != AllocationStatus.PROCESSED:
            allocation.status = status
            allocation.updated_at = get_utc_now()
            self.session.add(allocation)
        return allocation

    async def mark_processed(self, goal_id: uuid.UUID, day: date, amount: int = 0) -> Optional[DailyAllocation]:
        """
        Record a completed contribution: grow the goal and settle that day's suggestion.
        """
        goal = await self.session.get(SavingsGoal, goal_id)
        if not goal:
            raise NotFoundError("Savings goal not found", goal_id=goal_id)
        goal.amount_saved += amount
        self.session.add(goal)
        allocation = await self._settle_day(goal_id, day, AllocationStatus.PROCESSED)
        await self.session.commit()
        logger.info(f"Goal {goal_id} saved {amount}, now at {goal.amount_saved} of {goal.target_amount}")
        return allocation

    async def on_ledger_event(self, event: LedgerEvent) -> None:
        transaction = event.transaction
        if transaction.goal_id is None or transaction.type != TransactionType.CONTRIBUTION:
            return

        day = transaction.transaction_date.date()
        if transaction.status == TransactionStatus.COMPLETED:
            await self.mark_processed(transaction.goal_id, day, transaction.amount)
        elif transaction.status == TransactionStatus.FAILED:
            await self._settle_day(transaction.goal_id, day, AllocationStatus.FAILED)
            await self.session.commit()
