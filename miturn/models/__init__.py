from miturn.models.user import User
from miturn.models.circle import Circle, CircleMember
from miturn.models.goal import SavingsGoal, SavingsPreference, DailyAllocation
from miturn.models.transaction import Transaction
from miturn.models.schedule import RecurringContribution
from miturn.models.reminder import ReminderLog
from miturn.models.gamification import UserTier, UserBadge

__all__ = [
    "User",
    "Circle",
    "CircleMember",
    "SavingsGoal",
    "SavingsPreference",
    "DailyAllocation",
    "Transaction",
    "RecurringContribution",
    "ReminderLog",
    "UserTier",
    "UserBadge",
]
