import logging
import uuid

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from miturn.models.enums import LoyaltyTier, TransactionStatus, TransactionType
from miturn.models.gamification import UserBadge, UserTier
from miturn.models.transaction import Transaction
from miturn.models.user import get_utc_now
from miturn.services.events import LedgerEvent

logger = logging.getLogger(__name__)

POINTS_PER_CONTRIBUTION = 10

STREAK_BADGES = {
    5: "streak_master",
    10: "perfect_attendance",
}

TIER_THRESHOLDS = [
    (100, LoyaltyTier.BRONZE),
    (300, LoyaltyTier.SILVER),
    (600, LoyaltyTier.GOLD),
]

def tier_for_points(points: int) -> LoyaltyTier:
    for limit, tier in TIER_THRESHOLDS:
        if points < limit:
            return tier
    return LoyaltyTier.DIAMOND

class GamificationService:
    """
    Rewards on-time circle contributions with points, streaks and badges.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def standing(self, user_id: uuid.UUID) -> UserTier:
        standing = await self.session.get(UserTier, user_id)
        if not standing:
            standing = UserTier(user_id=user_id)
            self.session.add(standing)
        return standing

    async def _paid_previous_cycle(self, transaction: Transaction) -> bool:
        if not transaction.cycle_number or transaction.cycle_number <= 1:
            return False
        query = select(Transaction.id).where(
            Transaction.circle_id == transaction.circle_id,
            Transaction.user_id == transaction.user_id,
            Transaction.type == TransactionType.CONTRIBUTION,
            Transaction.cycle_number == transaction.cycle_number - 1,
            Transaction.status == TransactionStatus.COMPLETED,
        )
        result = await self.session.execute(query)
        return result.first() is not None

    async def award_badge(self, user_id: uuid.UUID, badge: str) -> bool:
        query = select(UserBadge).where(UserBadge.user_id == user_id, UserBadge.badge == badge)
        result = await self.session.execute(query)
        if result.scalar_one_or_none():
            return False
        self.session.add(UserBadge(user_id=user_id, badge=badge))
        return True

    async def record_contribution(self, transaction: Transaction) -> UserTier:
        user_id = transaction.user_id
        standing = await self.standing(user_id)
        standing.points += POINTS_PER_CONTRIBUTION

        if transaction.circle_id is not None:
            if await self._paid_previous_cycle(transaction):
                standing.current_streak += 1
            else:
                standing.current_streak = 1
            standing.longest_streak = max(standing.longest_streak, standing.current_streak)

            badge = STREAK_BADGES.get(standing.current_streak)
            if badge and await self.award_badge(user_id, badge):
                logger.info(f"User {user_id} earned badge {badge}")

        previous_tier = standing.tier
        standing.tier = tier_for_points(standing.points)
        standing.updated_at = get_utc_now()
        self.session.add(standing)
        try:
            await self.session.commit()
        except IntegrityError:
            # a concurrent contribution created the standing row; points land on the next one
            await self.session.rollback()
            await self.session.refresh(transaction)
            logger.warning(f"Skipped loyalty update for user {user_id}, standing was created concurrently")
            return await self.standing(user_id)

        if standing.tier != previous_tier:
            logger.info(f"User {user_id} moved from {previous_tier} to {standing.tier}")
        return standing

    async def on_ledger_event(self, event: LedgerEvent) -> None:
        transaction = event.transaction
        if transaction.type == TransactionType.CONTRIBUTION and transaction.status == TransactionStatus.COMPLETED:
            await self.record_contribution(transaction)
